from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, List, Optional

import pytest

from mpcqa.errors import UpstreamError
from mpcqa.models import (
    BeamCheckRecord,
    BeamVariant,
    DocFactor,
    GeoCheckRecord,
    Machine,
    Threshold,
    parse_date,
)


def beam(
    variant: str,
    day: str = "2024-03-05",
    *,
    id: str = "",
    time: str = "08:00:00",
    output: Optional[float] = 0.5,
    uniformity: Optional[float] = 0.2,
    shift: Optional[float] = 0.1,
    **kwargs: Any,
) -> BeamCheckRecord:
    return BeamCheckRecord(
        id=id or f"b-{variant}-{day}-{time}",
        machine_id="M1",
        beam_variant_id=f"v-{variant}",
        beam_variant_name=variant,
        timestamp=f"{day}T{time}",
        date=day,
        relative_output=output,
        relative_uniformity=uniformity,
        center_shift=shift,
        **kwargs,
    )


def geo(day: str = "2024-03-05", *, id: str = "", time: str = "08:00:00", **kwargs: Any) -> GeoCheckRecord:
    return GeoCheckRecord(
        id=id or f"g-{day}-{time}",
        machine_id="M1",
        date=day,
        timestamp=f"{day}T{time}",
        **kwargs,
    )


class FakeClient:
    """In-memory stand-in for ResultsClient."""

    def __init__(self) -> None:
        self.machines: List[Machine] = [Machine(id="M1", name="TrueBeam 1")]
        self.variants: List[BeamVariant] = [
            BeamVariant(id="v-6x", variant="6x"),
            BeamVariant(id="v-10x", variant="10x"),
        ]
        self.beams: List[BeamCheckRecord] = []
        self.geos: List[GeoCheckRecord] = []
        self.thresholds: List[Threshold] = []
        self.factors: List[DocFactor] = []
        self.fail_metrics: set = set()
        self.reports: List[Dict[str, Any]] = []
        self.calls: List[str] = []

    def list_machines(self) -> List[Machine]:
        return list(self.machines)

    def list_beam_variants(self) -> List[BeamVariant]:
        return list(self.variants)

    def _in_range(self, record: Any, start: Any, end: Any) -> bool:
        day = parse_date(record.days[0])
        return parse_date(start) <= day <= parse_date(end)

    def list_beam_checks(self, machine_id: str, start: Any = None, end: Any = None) -> List[BeamCheckRecord]:
        self.calls.append(f"beams {start}..{end}")
        return [b for b in self.beams if b.machine_id == machine_id and self._in_range(b, start, end)]

    def list_geo_checks(self, machine_id: str, start: Any = None, end: Any = None) -> List[GeoCheckRecord]:
        self.calls.append(f"geo {start}..{end}")
        return [g for g in self.geos if g.machine_id == machine_id and self._in_range(g, start, end)]

    def approve_beam_checks(self, ids, approved_by):
        out = []
        for i, b in enumerate(self.beams):
            if b.id in ids:
                self.beams[i] = b.with_approval(approved_by, "2024-03-06")
                out.append(self.beams[i])
        return out

    def approve_geo_checks(self, ids, approved_by):
        out = []
        for i, g in enumerate(self.geos):
            if g.id in ids:
                self.geos[i] = g.with_approval(approved_by, "2024-03-06")
                out.append(self.geos[i])
        return out

    def list_thresholds(self) -> List[Threshold]:
        return list(self.thresholds)

    def upsert_threshold(self, threshold: Threshold) -> Threshold:
        if threshold.metric_type in self.fail_metrics:
            raise UpstreamError("500 Internal Server Error", status=500)
        saved = threshold if threshold.id else replace(threshold, id=f"t{len(self.thresholds) + 1}")
        self.thresholds = [t for t in self.thresholds if t.id != saved.id] + [saved]
        return saved

    def list_doc_factors(self, machine_id: Optional[str] = None) -> List[DocFactor]:
        return [f for f in self.factors if machine_id is None or f.machine_id == machine_id]

    def create_doc_factor(self, factor: DocFactor) -> DocFactor:
        saved = replace(factor, id=f"d{len(self.factors) + 1}")
        self.factors.append(saved)
        return saved

    def delete_doc_factor(self, factor_id: str) -> None:
        self.factors = [f for f in self.factors if f.id != factor_id]

    def request_report(self, payload: Dict[str, Any]) -> bytes:
        self.reports.append(dict(payload))
        return b"%PDF-1.4 fake"


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()
