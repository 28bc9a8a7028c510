# mpcqa/doc.py
"""
Dose Output Correction (DOC) factors.

A factor converts a relative output reading into an absolute dose ratio:

    docFactor = msdAbs / (1 + mpcRel / 100)

Factors are time-versioned per (machine, beam variant); the one current at a
date is the latest whose startDate is not after it and whose endDate (if any)
is after it.
"""
from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from mpcqa.catalog import to_finite_float
from mpcqa.errors import MpcQaError, ValidationError
from mpcqa.models import BeamCheckRecord, DocFactor, parse_date, parse_optional_date

LOG = logging.getLogger(__name__)

MSD_ABS_MIN = 0.97
MSD_ABS_MAX = 1.03


def compute_doc_factor(msd_abs: Any, mpc_rel: Any) -> Optional[float]:
    msd = to_finite_float(msd_abs)
    rel = to_finite_float(mpc_rel)
    if msd is None or rel is None:
        return None
    with np.errstate(divide="ignore", invalid="ignore"):
        factor = np.float64(msd) / (1.0 + np.float64(rel) / 100.0)
    if not np.isfinite(factor):
        return None
    return float(factor)


def validate_msd_abs(msd_abs: Any) -> float:
    msd = to_finite_float(msd_abs)
    if msd is None:
        raise ValidationError(f"MSD Abs must be numeric: {msd_abs!r}")
    if not (MSD_ABS_MIN <= msd <= MSD_ABS_MAX):
        raise ValidationError(
            f"MSD Abs {msd:g} is outside the accepted range [{MSD_ABS_MIN}, {MSD_ABS_MAX}]"
        )
    return msd


def _matches_variant(f: DocFactor, beam_variant_id: Optional[str], variant_name: Optional[str]) -> bool:
    if beam_variant_id and f.beam_variant_id == beam_variant_id:
        return True
    # legacy rows stored the variant name instead of its id
    if variant_name and variant_name in (f.beam_variant_name, f.beam_variant_id):
        return True
    return False


def current_factor(
    factors: Iterable[DocFactor],
    machine_id: str,
    beam_variant_id: Optional[str],
    on_date: Any,
    variant_name: Optional[str] = None,
) -> Optional[DocFactor]:
    day = parse_date(on_date)
    pool = [
        f for f in factors
        if f.machine_id == machine_id and _matches_variant(f, beam_variant_id, variant_name)
    ]
    if beam_variant_id and any(f.beam_variant_id == beam_variant_id for f in pool):
        pool = [f for f in pool if f.beam_variant_id == beam_variant_id]

    # a closed later factor must not hide an earlier open one
    live = [f for f in pool if f.is_current_on(day)]
    if not live:
        return None
    return max(live, key=lambda f: f.start_date)


def _overlaps(a_start: dt.date, a_end: Optional[dt.date], b_start: dt.date, b_end: Optional[dt.date]) -> bool:
    # half-open [start, end); open end = unbounded
    a_before_b_end = b_end is None or a_start < b_end
    b_before_a_end = a_end is None or b_start < a_end
    return a_before_b_end and b_before_a_end


def find_overlaps(factors: Iterable[DocFactor], candidate: DocFactor) -> List[DocFactor]:
    return [
        f for f in factors
        if f.machine_id == candidate.machine_id
        and f.beam_variant_id == candidate.beam_variant_id
        and f.id != candidate.id
        and _overlaps(f.start_date, f.end_date, candidate.start_date, candidate.end_date)
    ]


# =============================================================================
# Creation workflow
# =============================================================================
@dataclass(frozen=True)
class DocFactorInput:
    machine_id: str
    beam_variant_id: str
    msd_abs: Any
    mpc_rel: Any
    measurement_date: Any
    start_date: Any = None          # defaults to measurement_date
    end_date: Any = None
    beam_id: str = ""
    beam_variant_name: Optional[str] = None


@dataclass
class DocBatchResult:
    created: List[DocFactor] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)    # (variant, reason)
    failed: List[Tuple[str, str]] = field(default_factory=list)     # (variant, upstream error)


def build_factor(entry: DocFactorInput) -> DocFactor:
    """Validate an input and derive the factor. Raises ValidationError."""
    msd = validate_msd_abs(entry.msd_abs)
    rel = to_finite_float(entry.mpc_rel)
    if rel is None:
        raise ValidationError(f"MPC Rel must be numeric: {entry.mpc_rel!r}")
    factor = compute_doc_factor(msd, rel)
    if factor is None:
        raise ValidationError("DOC factor is not finite for the given MPC Rel")

    measured = parse_date(entry.measurement_date)
    start = parse_date(entry.start_date) if entry.start_date else measured
    end = parse_optional_date(entry.end_date)
    if end is not None and end <= start:
        raise ValidationError(f"End date {end} must be after start date {start}")

    return DocFactor(
        machine_id=entry.machine_id,
        beam_variant_id=entry.beam_variant_id,
        beam_variant_name=entry.beam_variant_name,
        beam_id=entry.beam_id,
        msd_abs=msd,
        mpc_rel=rel,
        doc_factor=factor,
        measurement_date=measured,
        start_date=start,
        end_date=end,
    )


class DocFactorService:
    def __init__(self, client: Any):
        self.client = client

    def list(self, machine_id: str) -> List[DocFactor]:
        return list(self.client.list_doc_factors(machine_id))

    def create(self, entry: DocFactorInput, reject_overlap: bool = True) -> DocFactor:
        factor = build_factor(entry)
        clashes = find_overlaps(self.list(entry.machine_id), factor)
        if clashes:
            spans = ", ".join(
                f"{c.start_date}..{c.end_date or 'open'}" for c in clashes
            )
            if reject_overlap:
                raise ValidationError(
                    f"DOC factor for {entry.beam_variant_name or entry.beam_variant_id} "
                    f"overlaps existing interval(s): {spans}"
                )
            LOG.warning("creating overlapping DOC factor (%s)", spans)

        created = self.client.create_doc_factor(factor)
        LOG.info(
            "created DOC factor %.5f for %s from %s",
            factor.doc_factor, entry.beam_variant_name or entry.beam_variant_id, factor.start_date,
        )
        return created or factor

    def measurement_for(
        self,
        machine_id: str,
        beam_variant_id: Optional[str],
        measurement_date: Any,
        variant_name: Optional[str] = None,
        beam_id: Optional[str] = None,
        checks: Optional[Sequence[BeamCheckRecord]] = None,
    ) -> Optional[BeamCheckRecord]:
        """
        The beam check a factor is measured from: the variant's check on
        measurement_date carrying a relative output (latest timestamp, or the
        one with id `beam_id` when given). `checks` reuses an already fetched
        day of records.
        """
        day = parse_date(measurement_date)
        if checks is None:
            checks = self.client.list_beam_checks(machine_id, day, day)
        iso = day.isoformat()
        pool = [
            r for r in checks
            if iso in r.days
            and r.relative_output is not None
            and ((beam_variant_id and r.beam_variant_id == beam_variant_id)
                 or (variant_name and r.beam_variant_name == variant_name))
        ]
        if beam_id:
            pool = [r for r in pool if r.id == beam_id]
        if not pool:
            return None
        return max(pool, key=lambda r: (r.timestamp or "", r.id))

    def create_batch(
        self,
        machine_id: str,
        entries: Sequence[Mapping[str, Any]],
        reject_overlap: bool = True,
    ) -> DocBatchResult:
        """
        One submission per beam variant. Each entry needs beam_variant_id,
        msd_abs and measurement_date, and may carry beam_variant_name,
        start_date, end_date and beam_id. MPC Rel and the beam id come from the
        variant's beam check on measurement_date. Entries without an MSD Abs,
        without a beam check on that day, or with an invalid value are skipped
        and reported; the rest still go through.
        """
        result = DocBatchResult()
        by_day: Dict[dt.date, List[BeamCheckRecord]] = {}
        for raw in entries:
            variant = str(raw.get("beam_variant_name") or raw.get("beam_variant_id") or "?")
            if raw.get("msd_abs") in (None, ""):
                result.skipped.append((variant, "no MSD Abs"))
                continue
            try:
                day = parse_date(raw.get("measurement_date"))
                if day not in by_day:
                    by_day[day] = list(self.client.list_beam_checks(machine_id, day, day))
                check = self.measurement_for(
                    machine_id,
                    raw.get("beam_variant_id"),
                    day,
                    variant_name=raw.get("beam_variant_name"),
                    beam_id=raw.get("beam_id"),
                    checks=by_day[day],
                )
                if check is None:
                    result.skipped.append((variant, "no measurement"))
                    continue
                entry = DocFactorInput(
                    machine_id=machine_id,
                    beam_variant_id=str(raw.get("beam_variant_id") or check.beam_variant_id or ""),
                    beam_variant_name=raw.get("beam_variant_name") or check.beam_variant_name,
                    beam_id=check.id,
                    msd_abs=raw.get("msd_abs"),
                    mpc_rel=check.relative_output,
                    measurement_date=day,
                    start_date=raw.get("start_date"),
                    end_date=raw.get("end_date"),
                )
                result.created.append(self.create(entry, reject_overlap=reject_overlap))
            except ValidationError as e:
                result.skipped.append((variant, str(e)))
            except MpcQaError as e:
                LOG.warning("DOC factor create failed for %s: %s", variant, e)
                result.failed.append((variant, str(e)))
        return result

    def delete(self, factor_id: str) -> None:
        if not factor_id:
            raise ValidationError("DOC factor id is required")
        self.client.delete_doc_factor(factor_id)
        LOG.info("deleted DOC factor %s", factor_id)

