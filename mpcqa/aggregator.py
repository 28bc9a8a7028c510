# mpcqa/aggregator.py
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from mpcqa.catalog import (
    GEO_GROUPS,
    GeoGroup,
    natural_sort_key,
    qualify_beam_metric,
    to_finite_float,
)
from mpcqa.doc import current_factor
from mpcqa.models import (
    BeamCheckRecord,
    BeamVariant,
    CheckMetric,
    CheckResult,
    DocFactor,
    GeoCheckRecord,
    Threshold,
    parse_date,
    sorted_leaves,
)
from mpcqa.thresholds import (
    MAGNITUDE,
    MAGNITUDE_FINE,
    SYMMETRIC,
    SYMMETRIC_PERCENT,
    ThresholdResolver,
    format_tolerance,
)

LOG = logging.getLogger(__name__)

ThresholdsLike = Union[ThresholdResolver, Iterable[Threshold]]

# metric -> (record attr, per-metric status attr, tolerance style)
_BEAM_FIELDS: Dict[str, Tuple[str, str, str]] = {
    "Relative Output": ("relative_output", "rel_output_status", SYMMETRIC_PERCENT),
    "Relative Uniformity": ("relative_uniformity", "rel_uniformity_status", SYMMETRIC_PERCENT),
    "Center Shift": ("center_shift", "center_shift_status", MAGNITUDE_FINE),
}


def _as_resolver(thresholds: ThresholdsLike) -> ThresholdResolver:
    if isinstance(thresholds, ThresholdResolver):
        return thresholds
    return ThresholdResolver(thresholds or ())


def group_status(metrics: Iterable[CheckMetric]) -> str:
    """FAIL if any metric failed; warning never escalates."""
    return "FAIL" if any(m.status == "fail" for m in metrics) else "PASS"


def _metric_status(raw: Optional[str]) -> str:
    s = str(raw or "pass").lower()
    return s if s in ("pass", "fail", "warning") else "pass"


# =============================================================================
# Beam checks
# =============================================================================
def _latest_per_variant(records: Iterable[BeamCheckRecord]) -> Dict[str, BeamCheckRecord]:
    """variant key (id, else name) -> record with the latest timestamp."""
    out: Dict[str, BeamCheckRecord] = {}
    for r in records:
        key = r.beam_variant_id or r.beam_variant_name
        if not key:
            continue
        prev = out.get(key)
        if prev is None or (r.timestamp or "", r.id) > (prev.timestamp or "", prev.id):
            out[key] = r
    return out


def _absolute_output(rel: Optional[float], factor: Optional[DocFactor]) -> str:
    if rel is None or factor is None or not factor.doc_factor:
        return ""
    val = np.float64(rel) * np.float64(factor.doc_factor)
    if not np.isfinite(val):
        return ""
    return f"{float(val):.4f}"


def _beam_group(
    machine_id: str,
    variant_id: Optional[str],
    variant_name: str,
    record: Optional[BeamCheckRecord],
    resolver: ThresholdResolver,
    doc_factors: Sequence[DocFactor],
    on_date: Any,
) -> CheckResult:
    factor = None
    if record is not None and on_date is not None:
        factor = current_factor(doc_factors, machine_id, variant_id, on_date, variant_name=variant_name)

    metrics: List[CheckMetric] = []
    for base, (attr, status_attr, style) in _BEAM_FIELDS.items():
        tol = resolver.resolve(machine_id, "beam", base, beam_variant=variant_id, variant_name=variant_name)
        name = qualify_beam_metric(base, variant_name)
        if record is None:
            metrics.append(CheckMetric(name, "-", format_tolerance(tol, style), "", "warning"))
            continue
        value = getattr(record, attr)
        absolute = _absolute_output(value, factor) if attr == "relative_output" else ""
        metrics.append(CheckMetric(
            name=name,
            value="-" if value is None else value,
            thresholds=format_tolerance(tol, style),
            absolute_value=absolute,
            status=_metric_status(getattr(record, status_attr)) if value is not None else "warning",
        ))

    return CheckResult(
        id=f"beam-{variant_name}",
        name=f"Beam Check ({variant_name})",
        status=group_status(metrics),
        metrics=tuple(metrics),
        source_id=record.id if record is not None else None,
        approved_by=record.approved_by if record is not None else None,
        approved_date=record.approved_date if record is not None else None,
    )


def aggregate_beams(
    records: Iterable[BeamCheckRecord],
    variants: Sequence[BeamVariant],
    thresholds: ThresholdsLike = (),
    doc_factors: Sequence[DocFactor] = (),
    on_date: Any = None,
    machine_id: Optional[str] = None,
) -> List[CheckResult]:
    """
    One group per beam variant for the day. Variants with no record get
    placeholder rows ("-", warning); records for variants not in `variants`
    are added as their own groups. When `on_date` is given only records from
    that day are considered, and it is also the DOC factor lookup date.
    """
    resolver = _as_resolver(thresholds)
    recs = list(records)
    if on_date is not None:
        day = parse_date(on_date).isoformat()
        recs = [r for r in recs if day in r.days]
    if machine_id is None:
        machine_id = next((r.machine_id for r in recs if r.machine_id), "")

    latest = _latest_per_variant(recs)
    groups: List[CheckResult] = []
    seen_names = set()
    used = set()

    for v in variants:
        rec = latest.get(v.id) or latest.get(v.variant)
        for k in (v.id, v.variant):
            if k in latest:
                used.add(k)
        seen_names.add(v.variant)
        groups.append(_beam_group(machine_id, v.id, v.variant, rec, resolver, doc_factors, on_date))

    for key, rec in latest.items():
        if key in used:
            continue
        name = rec.beam_variant_name or key
        if name in seen_names:
            continue
        seen_names.add(name)
        LOG.debug("beam record for unlisted variant %s", name)
        groups.append(_beam_group(machine_id, rec.beam_variant_id, name, rec, resolver, doc_factors, on_date))

    groups.sort(key=lambda g: natural_sort_key(g.id))
    return groups


# =============================================================================
# Geometry checks
# =============================================================================
def _scalar_group(group: GeoGroup, record: GeoCheckRecord, resolver: ThresholdResolver, machine_id: str) -> CheckResult:
    metrics: List[CheckMetric] = []
    for f in group.fields:
        value = to_finite_float(getattr(record, f.attr))
        tol = resolver.resolve(machine_id, "geometry", f.label)
        metrics.append(CheckMetric(
            name=f.label,
            value="" if value is None else value,
            thresholds=format_tolerance(tol, SYMMETRIC),
            absolute_value="" if value is None else f"{abs(value):.3f}",
            status=_metric_status(record.status_for(f.status_key)),
        ))
    return CheckResult(
        id=group.id,
        name=group.name,
        status=group_status(metrics),
        metrics=tuple(metrics),
        source_id=record.id,
        approved_by=record.approved_by,
        approved_date=record.approved_date,
    )


def _leaf_group(group: GeoGroup, record: GeoCheckRecord, resolver: ThresholdResolver, machine_id: str) -> CheckResult:
    leaves = getattr(record, group.leaves_attr) or {}
    style = MAGNITUDE if group.leaf_metric == "mlc_backlash" else SYMMETRIC
    tol = format_tolerance(resolver.resolve(machine_id, "geometry", group.leaf_metric), style)

    metrics = tuple(
        CheckMetric(
            name=f"{group.leaf_prefix} {leaf}",
            value=value,
            thresholds=tol,
            absolute_value="",
            status="pass",   # upstream only flags the group
        )
        for leaf, value in sorted_leaves(leaves)
    )
    failed = bool(leaves) and record.status_for(group.leaf_metric) == "FAIL"
    return CheckResult(
        id=group.id,
        name=group.name,
        status="FAIL" if failed else "PASS",
        metrics=metrics,
        source_id=record.id,
        approved_by=record.approved_by,
        approved_date=record.approved_date,
    )


def aggregate_geometry(
    record: Optional[GeoCheckRecord],
    thresholds: ThresholdsLike = (),
    machine_id: Optional[str] = None,
) -> List[CheckResult]:
    """Expand one geometry record into the fixed group layout; [] when absent."""
    if record is None:
        return []
    resolver = _as_resolver(thresholds)
    machine_id = machine_id or record.machine_id
    out: List[CheckResult] = []
    for group in GEO_GROUPS:
        if group.leaves_attr:
            out.append(_leaf_group(group, record, resolver, machine_id))
        else:
            out.append(_scalar_group(group, record, resolver, machine_id))
    return out


def pick_geo_record(records: Iterable[GeoCheckRecord], on_date: Any) -> Optional[GeoCheckRecord]:
    """The day's geometry record; latest timestamp if the service returned several."""
    day = parse_date(on_date).isoformat()
    todays = [r for r in records if day in r.days]
    if not todays:
        return None
    return max(todays, key=lambda r: (r.timestamp or "", r.id))
