# mpcqa/baseline.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from mpcqa.catalog import sanitize_key, to_finite_float
from mpcqa.models import BaselineSettings, GraphDataPoint

FetchDay = Callable[[str], Optional[GraphDataPoint]]

# label substring -> manual value attribute
_MANUAL_MATCHERS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("output change",), "output_change"),
    (("uniformity change",), "uniformity_change"),
    (("center shift",), "center_shift"),
)


@dataclass(frozen=True)
class BaselineComputation:
    values_by_key: Dict[str, Optional[float]] = field(default_factory=dict)
    has_numeric_baseline: bool = False
    baseline_date_in_range: bool = False
    requested_date: Optional[str] = None


def manual_baseline_for(settings: BaselineSettings, label: str) -> float:
    lower = str(label).lower()
    for needles, attr in _MANUAL_MATCHERS:
        if any(n in lower for n in needles):
            return float(getattr(settings.manual_values, attr))
    return 0.0


def compute_baseline(
    settings: BaselineSettings,
    selected: Iterable[str],
    series: List[GraphDataPoint],
    fetch_day: Optional[FetchDay] = None,
) -> BaselineComputation:
    """
    Baseline per selected metric (keyed by sanitize_key(label)).

    manual: the configured value whose name the label mentions, else 0.
    date:   the metric's own value on settings.date, taken from `series` when
            that day is loaded, otherwise from fetch_day(date). None when the
            day has no value for the metric.
    """
    labels = list(selected)
    values: Dict[str, Optional[float]] = {}
    in_range = False
    point: Optional[GraphDataPoint] = None

    if settings.mode == "date" and settings.date:
        point = next((p for p in series if p.get("fullDate") == settings.date), None)
        in_range = point is not None
        if point is None and labels and fetch_day is not None:
            point = fetch_day(settings.date)

    for label in labels:
        key = sanitize_key(label)
        if settings.mode == "manual":
            values[key] = manual_baseline_for(settings, label)
        elif point is not None:
            values[key] = to_finite_float(point.get(key))
        else:
            values[key] = None

    return BaselineComputation(
        values_by_key=values,
        has_numeric_baseline=any(v is not None for v in values.values()),
        baseline_date_in_range=in_range,
        requested_date=settings.date,
    )


def apply_baseline(series: List[GraphDataPoint], computation: BaselineComputation) -> List[GraphDataPoint]:
    """New points with value - baseline (3 d.p.) for every metric that has a numeric baseline."""
    if not computation.has_numeric_baseline:
        return [dict(p) for p in series]
    out: List[GraphDataPoint] = []
    for p in series:
        q = dict(p)
        for key, base in computation.values_by_key.items():
            if base is None:
                continue
            v = to_finite_float(q.get(key))
            if v is not None:
                q[key] = round(v - base, 3)
        out.append(q)
    return out


def normalize_for_baseline(
    settings: BaselineSettings,
    selected: Iterable[str],
    series: List[GraphDataPoint],
    fetch_day: Optional[FetchDay] = None,
) -> Tuple[List[GraphDataPoint], BaselineComputation]:
    comp = compute_baseline(settings, selected, series, fetch_day=fetch_day)
    return apply_baseline(series, comp), comp


def baseline_summary(
    settings: BaselineSettings,
    n_selected: int,
    computation: Optional[BaselineComputation] = None,
) -> Tuple[str, str]:
    """(message, tone) for the banner above the chart; tone is muted/info/warning."""
    if settings.mode == "date":
        if not settings.date:
            return "Select a baseline date in Settings to see reference lines.", "muted"
        if n_selected <= 0:
            return f"Baseline from {settings.date}. Select metrics to view.", "muted"
        if computation is not None and not computation.has_numeric_baseline:
            return (
                f"No measurements on {settings.date} for the selected metrics. "
                "Adjust ranges or update the baseline in Settings.",
                "warning",
            )
        return f"Baseline from {settings.date}. Dashed lines show baseline values.", "info"
    return "Baseline uses manual values.", "info"
