# mpcqa/engine.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from mpcqa.aggregator import aggregate_beams, aggregate_geometry, pick_geo_record
from mpcqa.baseline import BaselineComputation, normalize_for_baseline
from mpcqa.errors import ValidationError
from mpcqa.graph import Band, compute_domain, shading_bands
from mpcqa.models import (
    BaselineSettings,
    BeamCheckRecord,
    CheckResult,
    DayResults,
    GeoCheckRecord,
    GraphDataPoint,
    parse_date,
)
from mpcqa.series import build_series
from mpcqa.settings import AppSettings, SettingsStore
from mpcqa.thresholds import ThresholdResolver

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class GraphView:
    series: List[GraphDataPoint]
    selected: Tuple[str, ...]
    baseline: BaselineComputation
    effective_threshold: Optional[float]
    domain: Tuple[float, float]
    bands: Tuple[Band, ...] = field(default_factory=tuple)
    deltas: bool = False


@dataclass(frozen=True)
class ApprovalResult:
    beams: List[BeamCheckRecord]
    geo_checks: List[GeoCheckRecord]


class QAEngine:
    """
    Produces the day table, trend series and chart geometry for one machine.

    Every call reads what it needs from the client and settings store and
    derives its result from that snapshot alone; nothing is cached between
    calls.
    """

    def __init__(self, client: Any, settings_store: SettingsStore):
        self.client = client
        self.settings_store = settings_store

    def settings(self) -> AppSettings:
        return self.settings_store.load()

    # =========================================================================
    # Day table
    # =========================================================================
    def aggregate_day(self, machine_id: str, date: Any) -> DayResults:
        day = parse_date(date)
        beams = self.client.list_beam_checks(machine_id, day, day)
        geo = self.client.list_geo_checks(machine_id, day, day)
        variants = self.client.list_beam_variants()
        resolver = ThresholdResolver(self.client.list_thresholds())
        factors = self.client.list_doc_factors(machine_id)

        beam_groups = aggregate_beams(
            beams, variants, resolver, factors, on_date=day, machine_id=machine_id,
        )
        geo_groups = aggregate_geometry(pick_geo_record(geo, day), resolver, machine_id=machine_id)
        LOG.debug(
            "aggregated %s on %s: %d beam group(s), %d geometry group(s)",
            machine_id, day, len(beam_groups), len(geo_groups),
        )
        return DayResults(beam_groups=tuple(beam_groups), geo_groups=tuple(geo_groups))

    def approve(self, groups: Iterable[CheckResult], approved_by: str) -> ApprovalResult:
        """Sign off the records behind the given groups; beam and geometry ids go to their own endpoints."""
        if not str(approved_by or "").strip():
            raise ValidationError("approve(): approved_by is required")
        beam_ids: List[str] = []
        geo_ids: List[str] = []
        for g in groups:
            if not g.source_id:
                continue
            target = beam_ids if g.id.startswith("beam-") else geo_ids
            if g.source_id not in target:
                target.append(g.source_id)
        beams = self.client.approve_beam_checks(beam_ids, approved_by) if beam_ids else []
        geo = self.client.approve_geo_checks(geo_ids, approved_by) if geo_ids else []
        LOG.info("approved %d beam and %d geometry record(s) as %s", len(beam_ids), len(geo_ids), approved_by)
        return ApprovalResult(beams=list(beams), geo_checks=list(geo))

    # =========================================================================
    # Trend
    # =========================================================================
    def build_series(
        self,
        machine_id: str,
        start: Any,
        end: Any,
        selected: Optional[Iterable[str]] = None,
    ) -> List[GraphDataPoint]:
        beams = self.client.list_beam_checks(machine_id, start, end)
        geo = self.client.list_geo_checks(machine_id, start, end)
        return build_series(start, end, beams, geo, selected)

    def _fetch_day(self, machine_id: str, selected: Sequence[str]):
        def fetch(date: str) -> Optional[GraphDataPoint]:
            points = self.build_series(machine_id, date, date, selected)
            return points[0] if points else None
        return fetch

    def normalize_for_baseline(
        self,
        settings: BaselineSettings,
        selected: Iterable[str],
        series: List[GraphDataPoint],
        machine_id: Optional[str] = None,
    ) -> Tuple[List[GraphDataPoint], BaselineComputation]:
        """
        Baseline-relative copy of `series`. In date mode a baseline day outside
        the loaded range is fetched on its own when `machine_id` is given.
        """
        labels = list(selected)
        fetch = self._fetch_day(machine_id, labels) if machine_id else None
        return normalize_for_baseline(settings, labels, series, fetch_day=fetch)

    def effective_threshold(self, machine_id: str, selected: Iterable[str]) -> Optional[float]:
        resolver = ThresholdResolver(self.client.list_thresholds())
        return resolver.effective_threshold(machine_id, selected, self.client.list_beam_variants())

    def domain_for(
        self,
        selected: Iterable[str],
        series: List[GraphDataPoint],
        threshold: Optional[float] = None,
        baseline_values: Optional[Dict[str, Optional[float]]] = None,
    ) -> Tuple[float, float]:
        return compute_domain(selected, series, threshold, baseline_values)

    def graph_for(
        self,
        machine_id: str,
        start: Any,
        end: Any,
        selected: Iterable[str],
        deltas: bool = False,
    ) -> GraphView:
        """
        Everything the trend chart needs. With deltas=False the raw values are
        plotted and baselines drawn as reference lines; with deltas=True the
        series is baseline-relative and no reference lines are drawn.
        """
        labels = tuple(selected)
        raw = self.build_series(machine_id, start, end, labels)
        normalized, comp = self.normalize_for_baseline(self.settings().baseline, labels, raw, machine_id)
        threshold = self.effective_threshold(machine_id, labels) if labels else None

        plotted = normalized if deltas and comp.has_numeric_baseline else raw
        baseline_values = None
        if comp.has_numeric_baseline and plotted is raw:
            baseline_values = comp.values_by_key
        domain = self.domain_for(labels, plotted, threshold, baseline_values)
        return GraphView(
            series=plotted,
            selected=labels,
            baseline=comp,
            effective_threshold=threshold,
            domain=domain,
            bands=tuple(shading_bands(threshold, domain)),
            deltas=plotted is normalized,
        )

    # =========================================================================
    # Reports
    # =========================================================================
    def request_report(self, machine_id: str, start: Any, end: Any, selected_checks: Iterable[str]) -> bytes:
        checks = list(selected_checks)
        if not checks:
            raise ValidationError("request_report(): select at least one check")
        return self.client.request_report({
            "machineId": machine_id,
            "startDate": start,
            "endDate": end,
            "selectedChecks": checks,
        })
