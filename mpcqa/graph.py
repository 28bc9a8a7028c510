# mpcqa/graph.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import matplotlib.dates as mdates

from mpcqa.catalog import DEFAULT_Y_AXIS_DOMAIN, default_domain, metric_color, sanitize_key, to_finite_float
from mpcqa.models import GraphDataPoint
from mpcqa.series import series_frame

THRESHOLD_BUFFER = 0.5
WARNING_BAND_WIDTH = 0.1

COLOR_WARN = "#f59e0b"
COLOR_FAIL = "#ef4444"
COLOR_EDGE = "#fef3c7"


# =============================================================================
# Domain
# =============================================================================
def _finite(a: Iterable[float]) -> np.ndarray:
    a = np.asarray(list(a), dtype=float)
    return a[np.isfinite(a)]


def compute_domain(
    selected: Iterable[str],
    chart_data: List[GraphDataPoint],
    effective_threshold: Optional[float] = None,
    baseline_values: Optional[Mapping[str, Optional[float]]] = None,
) -> Tuple[float, float]:
    """
    Y range for a multi-metric chart:
      - union of each selected metric's default range
      - widened to every sample of the selected metrics
      - widened to every numeric baseline
      - with a threshold, at least [-t - 0.5, t + 0.5]
    then padded by max(10% of range, 0.1), or max(|min| * 10%, 0.5) when the
    range collapsed to a point. No selection gives the global default.
    """
    labels = list(selected)
    if not labels:
        return DEFAULT_Y_AXIS_DOMAIN

    defaults = np.array([default_domain(m) for m in labels], dtype=float)
    lo = float(np.min(defaults[:, 0]))
    hi = float(np.max(defaults[:, 1]))

    keys = [sanitize_key(m) for m in labels]
    raw = [p.get(k) for p in chart_data for k in keys]
    if baseline_values:
        raw.extend(baseline_values.values())
    samples = _finite(v for v in (to_finite_float(r) for r in raw) if v is not None)
    if samples.size:
        lo = min(lo, float(np.min(samples)))
        hi = max(hi, float(np.max(samples)))

    t = to_finite_float(effective_threshold)
    if t is not None:
        hi = max(hi, t + THRESHOLD_BUFFER)
        lo = min(lo, -t - THRESHOLD_BUFFER)

    if lo == hi:
        pad = max(abs(lo) * 0.1, 0.5)
    else:
        pad = max((hi - lo) * 0.1, 0.1)
    return (lo - pad, hi + pad)


@dataclass(frozen=True)
class Band:
    y0: float
    y1: float
    kind: str   # "warning" | "fail" | "edge"


def shading_bands(threshold: Optional[float], domain: Tuple[float, float]) -> List[Band]:
    """Warning strips just inside ±t, fail zones from ±t to the axis edges."""
    t = to_finite_float(threshold)
    if t is None:
        return []
    lo, hi = domain
    return [
        Band(t - WARNING_BAND_WIDTH, t, "warning"),
        Band(t, hi, "fail"),
        Band(-t, -t + WARNING_BAND_WIDTH, "warning"),
        Band(lo, -t, "fail"),
    ]


def edge_bands(
    domain: Tuple[float, float],
    top_percent: Optional[float],
    bottom_percent: Optional[float],
) -> List[Band]:
    """Strips covering the top and bottom share of the y range, in percent."""
    lo, hi = domain
    span = hi - lo
    bands: List[Band] = []
    top = to_finite_float(top_percent)
    if top is not None and top > 0:
        bands.append(Band(hi - span * min(top, 100.0) / 100.0, hi, "edge"))
    bottom = to_finite_float(bottom_percent)
    if bottom is not None and bottom > 0:
        bands.append(Band(lo, lo + span * min(bottom, 100.0) / 100.0, "edge"))
    return bands


# =============================================================================
# Rendering
# =============================================================================
def _add_threshold_bands(
    ax: plt.Axes,
    bands: List[Band],
    threshold: float,
    *,
    color_warn: str = COLOR_WARN,
    color_fail: str = COLOR_FAIL,
    alpha: float = 0.20,
) -> None:
    y0, y1 = ax.get_ylim()
    for b in bands:
        color = color_warn if b.kind == "warning" else color_fail
        ax.axhspan(b.y0, b.y1, alpha=alpha, color=color, zorder=0, linewidth=0)
    ax.axhline(threshold, linestyle="--", linewidth=1.2, color=color_fail, alpha=0.9)
    ax.axhline(-threshold, linestyle="--", linewidth=1.2, color=color_fail, alpha=0.9)
    ax.set_ylim(y0, y1)


def _add_edge_bands(ax: plt.Axes, bands: List[Band], *, color: str = COLOR_EDGE, alpha: float = 0.30) -> None:
    y0, y1 = ax.get_ylim()
    for b in bands:
        ax.axhspan(b.y0, b.y1, alpha=alpha, color=color, zorder=0, linewidth=0)
    ax.set_ylim(y0, y1)


def _set_smart_date_axis(ax: plt.Axes) -> None:
    locator = mdates.AutoDateLocator(minticks=4, maxticks=8)
    ax.xaxis.set_major_locator(locator)
    ax.xaxis.set_major_formatter(mdates.ConciseDateFormatter(locator))
    ax.tick_params(axis="x", labelsize=10, pad=6)


def _set_smart_xlim(ax: plt.Axes, x: pd.Series) -> None:
    """A single day would otherwise get a multi-year axis."""
    if len(x) == 0:
        return
    xmin = pd.Timestamp(x.min())
    xmax = pd.Timestamp(x.max())
    if xmin == xmax:
        pad = pd.Timedelta(days=1)
    else:
        pad = (xmax - xmin) * 0.03
    ax.set_xlim(xmin - pad, xmax + pad)


def plot_metric_trend(
    series: List[GraphDataPoint],
    selected: Iterable[str],
    domain: Tuple[float, float],
    threshold: Optional[float] = None,
    baselines: Optional[Mapping[str, Optional[float]]] = None,
    title: str = "Metric Trend",
    warn_color: str = COLOR_WARN,
    edge_percent: Optional[Tuple[float, float]] = None,
    edge_color: str = COLOR_EDGE,
) -> plt.Figure:
    """
    One line per selected metric, a dashed reference line per numeric
    baseline, and warning/fail shading around ±threshold. `edge_percent`
    (top, bottom) additionally shades that share of the y range at each edge.
    """
    labels = list(selected)
    fig, ax = plt.subplots(figsize=(10.0, 4.6), dpi=150)

    df = series_frame(series, labels)
    if not labels or df.empty:
        ax.set_title("Select metrics to plot" if not labels else "No data in range")
        ax.axis("off")
        fig.tight_layout()
        return fig

    ax.set_ylim(*domain)
    baselines = baselines or {}
    x = df["Date"]
    for i, label in enumerate(labels):
        color = metric_color(i)
        y = df[label].to_numpy(dtype=float)
        mask = np.isfinite(y)
        if mask.any():
            ax.plot(x[mask], y[mask], linewidth=2.2, marker="o", markersize=5, color=color, label=label)
        base = to_finite_float(baselines.get(sanitize_key(label)))
        if base is not None:
            ax.axhline(base, linestyle=(0, (5, 5)), linewidth=1.2, color=color, alpha=0.6)
            ax.annotate(
                "B", xy=(1.0, base), xycoords=("axes fraction", "data"),
                xytext=(4, 0), textcoords="offset points", color=color, fontsize=9, va="center",
            )

    if edge_percent is not None:
        _add_edge_bands(ax, edge_bands(domain, *edge_percent), color=edge_color)
    t = to_finite_float(threshold)
    if t is not None:
        _add_threshold_bands(ax, shading_bands(t, domain), t, color_warn=warn_color)

    _set_smart_xlim(ax, x)
    _set_smart_date_axis(ax)

    ax.set_title(title, fontsize=13, fontweight="bold")
    ax.set_xlabel("Date", fontsize=11)
    ax.grid(True, axis="y", alpha=0.22)
    ax.grid(False, axis="x")
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    ax.legend(loc="upper left", fontsize=9, frameon=False, ncol=min(3, len(labels)))

    fig.tight_layout()
    return fig
