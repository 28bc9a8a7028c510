# mpcqa/thresholds.py
from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from mpcqa.catalog import BEAM_METRICS, GEO_METRICS, MetricFamily, MetricId, to_finite_float
from mpcqa.errors import MpcQaError, ValidationError
from mpcqa.models import BeamVariant, Threshold

LOG = logging.getLogger(__name__)

# Tolerance display styles
SYMMETRIC_PERCENT = "symmetric_percent"   # "± 3.00%"
SYMMETRIC = "symmetric"                   # "± 0.50"
MAGNITUDE = "magnitude"                   # "≤ 0.50"
MAGNITUDE_FINE = "magnitude_fine"         # "≤ 0.500"


def format_tolerance(value: Optional[float], style: str = SYMMETRIC) -> str:
    """
    Render a resolved tolerance. None (no threshold configured) renders as ""
    and must never be read as a zero tolerance.
    """
    v = to_finite_float(value)
    if v is None:
        return ""
    if style == SYMMETRIC_PERCENT:
        return f"± {v:.2f}%"
    if style == SYMMETRIC:
        return f"± {v:.2f}"
    if style == MAGNITUDE:
        return f"≤ {v:.2f}"
    if style == MAGNITUDE_FINE:
        return f"≤ {v:.3f}"
    raise ValueError(f"format_tolerance(): unknown style {style!r}")


# =============================================================================
# Resolution
# =============================================================================
class ThresholdResolver:
    """Read-only lookup over a snapshot of configured thresholds."""

    def __init__(self, thresholds: Iterable[Threshold] = ()):
        self.thresholds: Tuple[Threshold, ...] = tuple(thresholds)

    def resolve(
        self,
        machine_id: str,
        check_type: str,
        metric_type: str,
        beam_variant: Optional[str] = None,
        variant_name: Optional[str] = None,
    ) -> Optional[float]:
        """
        Lookup order:
          1) machine + check type + metric (case-insensitive) + variant, where
             the variant may match either beamVariantId or the legacy
             beamVariant name
          2) without a variant: machine + check type + metric alone
        """
        metric = str(metric_type).lower()
        check = str(check_type).lower()
        candidates = [
            t for t in self.thresholds
            if t.machine_id == machine_id
            and t.check_type == check
            and t.metric_type.lower() == metric
        ]

        wanted = {v for v in (beam_variant, variant_name) if v}
        if wanted:
            for t in candidates:
                if t.beam_variant_id in wanted or t.beam_variant in wanted:
                    return t.value
            return None

        for t in candidates:
            return t.value
        return None

    def resolve_metric(
        self,
        machine_id: str,
        metric: MetricId,
        variant_ids: Optional[Mapping[str, str]] = None,
    ) -> Optional[float]:
        if metric.family is MetricFamily.BEAM:
            variant_id = (variant_ids or {}).get(metric.variant or "")
            return self.resolve(
                machine_id, "beam", metric.base,
                beam_variant=variant_id or metric.variant, variant_name=metric.variant,
            )
        return self.resolve(machine_id, "geometry", metric.base)

    def effective_threshold(
        self,
        machine_id: str,
        selected_metrics: Iterable[str],
        variants: Sequence[BeamVariant] = (),
    ) -> Optional[float]:
        """
        Smallest absolute tolerance among the selected metrics. A label of the
        form "Base (variant)" is resolved as a beam metric, anything else as
        geometry. None when no selected metric has a tolerance.
        """
        variant_ids = {v.variant: v.id for v in variants}
        vals = []
        for label in selected_metrics:
            v = self.resolve_metric(machine_id, MetricId.from_label(label), variant_ids)
            if v is not None:
                vals.append(abs(v))
        if not vals:
            return None
        return float(np.min(vals))


def upsert(thresholds: Sequence[Threshold], new: Threshold) -> Tuple[List[Threshold], Threshold]:
    """
    Replace the threshold sharing new's (machine, check type, metric, variant)
    key, carrying its id forward, or append. Returns (updated list, saved).
    """
    out = list(thresholds)
    for i, t in enumerate(out):
        if t.same_key(new) or (new.id and t.id == new.id):
            saved = replace(new, id=new.id or t.id)
            out[i] = saved
            return out, saved
    out.append(new)
    return out, new


# =============================================================================
# Persistence (through the results service)
# =============================================================================
@dataclass
class BatchResult:
    succeeded: List[Any] = field(default_factory=list)
    failed: List[Tuple[Any, str]] = field(default_factory=list)   # (item, message)

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self) -> str:
        total = len(self.succeeded) + len(self.failed)
        if not self.failed:
            return f"Saved {total} item(s)."
        return f"Saved {len(self.succeeded)} of {total}; {len(self.failed)} failed."


def _now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat()


class ThresholdService:
    """
    Writes thresholds one at a time through the client and keeps a local
    snapshot in step with what the service accepted. Batches are sequential
    and not atomic: a failure leaves earlier writes in place.
    """

    def __init__(self, client: Any, thresholds: Iterable[Threshold] = ()):
        self.client = client
        self.thresholds: List[Threshold] = list(thresholds)

    def refresh(self) -> List[Threshold]:
        self.thresholds = list(self.client.list_thresholds())
        return self.thresholds

    def resolver(self) -> ThresholdResolver:
        return ThresholdResolver(self.thresholds)

    def save(self, threshold: Threshold) -> Threshold:
        if to_finite_float(threshold.value) is None:
            raise ValidationError(f"Threshold value must be numeric: {threshold.value!r}")
        existing = [t for t in self.thresholds if t.same_key(threshold)]
        if existing and not threshold.id:
            threshold = replace(threshold, id=existing[0].id)
        if not threshold.last_updated:
            threshold = replace(threshold, last_updated=_now_iso())

        stored = self.client.upsert_threshold(threshold) or threshold
        self.thresholds, saved = upsert(self.thresholds, stored)
        LOG.info(
            "saved threshold %s/%s/%s%s = %s",
            saved.machine_id, saved.check_type, saved.metric_type,
            f" [{saved.beam_variant or saved.beam_variant_id}]" if saved.check_type == "beam" else "",
            saved.value,
        )
        return saved

    def _save_many(self, targets: List[Threshold]) -> BatchResult:
        result = BatchResult()
        for t in targets:
            try:
                result.succeeded.append(self.save(t))
            except MpcQaError as e:
                LOG.warning("threshold save failed for %s: %s", t.metric_type, e)
                result.failed.append((t, str(e)))
        return result

    def apply_to_all_variants(
        self,
        machine_id: str,
        values: Mapping[str, Any],
        variants: Sequence[BeamVariant],
    ) -> BatchResult:
        """
        Copy one value per beam metric (keyed by BEAM_METRICS name) to every
        variant. Metrics missing from `values` are skipped.
        """
        targets: List[Threshold] = []
        for variant in variants:
            for metric in BEAM_METRICS:
                value = to_finite_float(values.get(metric))
                if value is None:
                    continue
                targets.append(Threshold(
                    machine_id=machine_id,
                    check_type="beam",
                    metric_type=metric,
                    value=value,
                    beam_variant_id=variant.id,
                    beam_variant=variant.variant,
                ))
        return self._save_many(targets)

    def apply_to_all_geometry(self, machine_id: str, value: Any) -> BatchResult:
        """
        Broadcast a single tolerance to every geometry metric, or, given a
        mapping, save each listed geometry metric with its own value.
        """
        if isinstance(value, Mapping):
            per_metric: Dict[str, Any] = dict(value)
        else:
            if to_finite_float(value) is None:
                raise ValidationError(f"Threshold value must be numeric: {value!r}")
            per_metric = {metric: value for metric in GEO_METRICS}

        targets: List[Threshold] = []
        for metric in GEO_METRICS:
            v = to_finite_float(per_metric.get(metric))
            if v is None:
                continue
            targets.append(Threshold(
                machine_id=machine_id, check_type="geometry", metric_type=metric, value=v,
            ))
        return self._save_many(targets)
