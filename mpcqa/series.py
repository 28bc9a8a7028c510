# mpcqa/series.py
from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple

import pandas as pd

from mpcqa.catalog import (
    BEAM_METRICS,
    GEO_GROUPS,
    natural_sort_key,
    qualify_beam_metric,
    sanitize_key,
    to_finite_float,
)
from mpcqa.models import BeamCheckRecord, GeoCheckRecord, GraphDataPoint, parse_date, sorted_leaves

_BEAM_ATTRS = {
    "Relative Output": "relative_output",
    "Relative Uniformity": "relative_uniformity",
    "Center Shift": "center_shift",
}


def day_label(ts: pd.Timestamp) -> str:
    """'Mar 5' style axis label."""
    return f"{ts.strftime('%b')} {ts.day}"


def _beam_values(record: BeamCheckRecord) -> Iterator[Tuple[str, Any]]:
    variant = record.beam_variant_name
    if not variant:
        return
    for base in BEAM_METRICS:
        yield qualify_beam_metric(base, variant), getattr(record, _BEAM_ATTRS[base])


def _geo_values(record: GeoCheckRecord) -> Iterator[Tuple[str, Any]]:
    for group in GEO_GROUPS:
        if group.leaves_attr:
            for leaf, value in sorted_leaves(getattr(record, group.leaves_attr) or {}):
                yield f"{group.leaf_prefix} {leaf}", value
        else:
            for f in group.fields:
                yield f.label, getattr(record, f.attr)


def build_series(
    start: Any,
    end: Any,
    beams: Iterable[BeamCheckRecord],
    geo_checks: Iterable[GeoCheckRecord],
    selected: Optional[Iterable[str]] = None,
) -> List[GraphDataPoint]:
    """
    One point per calendar day in [start, end]:

        {"date": "Mar 5", "fullDate": "2024-03-05", <metric key>: value, ...}

    A record belongs to a day when either its date or its timestamp starts with
    that ISO day. Beam values are keyed by the variant-qualified label,
    geometry values by their plain label; keys are sanitize_key(label).
    Several beam records for one variant on one day: latest timestamp wins.
    Several geometry records: latest timestamp wins.
    """
    start_d = parse_date(start)
    end_d = parse_date(end)
    if end_d < start_d:
        return []

    allowed: Optional[Set[str]] = None
    if selected is not None:
        allowed = {sanitize_key(s) for s in selected}

    beams_by_day: Dict[str, List[BeamCheckRecord]] = {}
    for r in sorted(beams, key=lambda b: (b.timestamp or "", b.id)):
        for d in set(r.days):
            beams_by_day.setdefault(d, []).append(r)

    geo_by_day: Dict[str, GeoCheckRecord] = {}
    for g in sorted(geo_checks, key=lambda r: (r.timestamp or "", r.id)):
        for d in set(g.days):
            geo_by_day[d] = g

    out: List[GraphDataPoint] = []
    for ts in pd.date_range(start_d, end_d, freq="D"):
        iso = ts.strftime("%Y-%m-%d")
        point: GraphDataPoint = {"date": day_label(ts), "fullDate": iso}

        pairs: List[Tuple[str, Any]] = []
        for r in beams_by_day.get(iso, []):
            pairs.extend(_beam_values(r))
        geo = geo_by_day.get(iso)
        if geo is not None:
            pairs.extend(_geo_values(geo))

        for label, raw in pairs:
            value = to_finite_float(raw)
            if value is None:
                continue
            key = sanitize_key(label)
            if allowed is not None and key not in allowed:
                continue
            point[key] = value
        out.append(point)
    return out


def available_metrics(
    beams: Iterable[BeamCheckRecord],
    geo_checks: Iterable[GeoCheckRecord],
) -> List[str]:
    """Labels of every metric with at least one finite value, beam first, natural order."""
    beam_labels: Set[str] = set()
    for r in beams:
        for label, raw in _beam_values(r):
            if to_finite_float(raw) is not None:
                beam_labels.add(label)
    geo_labels: Dict[str, None] = {}
    for g in geo_checks:
        for label, raw in _geo_values(g):
            if to_finite_float(raw) is not None:
                geo_labels.setdefault(label, None)
    return sorted(beam_labels, key=natural_sort_key) + list(geo_labels)


def series_frame(series: List[GraphDataPoint], selected: Iterable[str]) -> pd.DataFrame:
    """Long-to-wide view: one row per day, one column per selected label."""
    labels = list(selected)
    rows = []
    for p in series:
        row = {"Date": pd.Timestamp(p["fullDate"])}
        for label in labels:
            row[label] = p.get(sanitize_key(label))
        rows.append(row)
    df = pd.DataFrame(rows, columns=["Date"] + labels)
    for label in labels:
        df[label] = pd.to_numeric(df[label], errors="coerce")
    return df
