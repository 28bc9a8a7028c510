# mpcqa/models.py
from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pandas as pd

from mpcqa.catalog import to_finite_float
from mpcqa.errors import ValidationError

GraphDataPoint = Dict[str, Any]

# =============================================================================
# Wire helpers
# =============================================================================
_SNAKE_RE = re.compile(r"_([a-z0-9])")
_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


def to_camel_case(obj: Any) -> Any:
    """
    Recursively convert dict keys from snake_case / PascalCase to camelCase.
    Lists are walked, scalars returned unchanged.
    """
    if isinstance(obj, list):
        return [to_camel_case(v) for v in obj]
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            key = _SNAKE_RE.sub(lambda m: m.group(1).upper(), str(k))
            key = key[:1].lower() + key[1:]
            out[key] = to_camel_case(v)
        return out
    return obj


def _norm_key(k: Any) -> str:
    return _NON_ALNUM.sub("", str(k)).lower()


def _lookup(d: Mapping[str, Any], *names: str) -> Any:
    """First present value among `names`, matched case- and separator-insensitively."""
    index = {_norm_key(k): v for k, v in d.items()}
    for n in names:
        v = index.get(_norm_key(n))
        if v is not None:
            return v
    return None


def _opt_str(x: Any) -> Optional[str]:
    if x is None:
        return None
    s = str(x).strip()
    return s or None


def parse_date(x: Any) -> dt.date:
    """Date-like -> datetime.date. Raises ValidationError when unparseable."""
    if isinstance(x, dt.datetime):
        return x.date()
    if isinstance(x, dt.date):
        return x
    if x is None or (isinstance(x, str) and not x.strip()):
        raise ValidationError("Missing date")
    ts = pd.to_datetime(str(x)[:10], errors="coerce", format="%Y-%m-%d")
    if pd.isna(ts):
        raise ValidationError(f"Malformed date: {x!r}")
    return ts.date()


def parse_optional_date(x: Any) -> Optional[dt.date]:
    if x is None or (isinstance(x, str) and not x.strip()):
        return None
    return parse_date(x)


def day_of(date_str: Optional[str], timestamp: Optional[str]) -> Tuple[str, ...]:
    """ISO day prefixes a record can be matched on (date field, then timestamp)."""
    out = []
    for s in (date_str, timestamp):
        if s:
            out.append(str(s)[:10])
    return tuple(out)


def normalize_leaf_map(data: Any) -> Optional[Dict[str, float]]:
    """
    MLC leaf/backlash payloads come either as {leaf: value} or as
    [{leafNumber, value}] (leaf_number / leaf_value / backlash_value also seen).
    Returns {str(leaf): value} or None when there is nothing usable.
    """
    if not data:
        return None
    if isinstance(data, Mapping):
        return {str(k): v for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        record: Dict[str, float] = {}
        for entry in data:
            if not isinstance(entry, Mapping):
                continue
            leaf = _lookup(entry, "leafNumber", "leaf_number")
            val = _lookup(entry, "value", "leafValue", "backlashValue")
            if leaf is None or val is None:
                continue
            record[str(leaf)] = val
        return record or None
    return None


def _leaf_sort_key(k: str) -> Tuple[int, Any]:
    try:
        return (0, int(float(k)))
    except ValueError:
        return (1, k)


def sorted_leaves(leaves: Mapping[str, Any]) -> List[Tuple[str, Any]]:
    return sorted(leaves.items(), key=lambda kv: _leaf_sort_key(kv[0]))


# =============================================================================
# Reference entities
# =============================================================================
@dataclass(frozen=True)
class Machine:
    id: str
    name: str
    location: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Machine":
        return cls(
            id=str(_lookup(d, "id")),
            name=str(_lookup(d, "name") or _lookup(d, "id")),
            location=_opt_str(_lookup(d, "location")),
            type=_opt_str(_lookup(d, "type")),
            status=_opt_str(_lookup(d, "status")),
        )


@dataclass(frozen=True)
class BeamVariant:
    id: str
    variant: str

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "BeamVariant":
        return cls(id=str(_lookup(d, "id")), variant=str(_lookup(d, "variant", "name", "type")))


# =============================================================================
# Raw check records
# =============================================================================
@dataclass(frozen=True)
class BeamCheckRecord:
    id: str
    machine_id: str
    beam_variant_id: Optional[str]
    beam_variant_name: str
    timestamp: Optional[str] = None
    date: Optional[str] = None
    relative_output: Optional[float] = None
    relative_uniformity: Optional[float] = None
    center_shift: Optional[float] = None
    status: Optional[str] = None
    rel_output_status: Optional[str] = None
    rel_uniformity_status: Optional[str] = None
    center_shift_status: Optional[str] = None
    approved_by: Optional[str] = None
    approved_date: Optional[str] = None

    @property
    def days(self) -> Tuple[str, ...]:
        return day_of(self.date, self.timestamp)

    def with_approval(self, approved_by: str, approved_date: str) -> "BeamCheckRecord":
        return replace(self, approved_by=approved_by, approved_date=approved_date)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "BeamCheckRecord":
        return cls(
            id=str(_lookup(d, "id") or ""),
            machine_id=str(_lookup(d, "machineId") or ""),
            beam_variant_id=_opt_str(_lookup(d, "beamVariantId", "typeID", "typeId")),
            beam_variant_name=str(_lookup(d, "beamVariantName", "type", "variant") or ""),
            timestamp=_opt_str(_lookup(d, "timestamp")),
            date=_opt_str(_lookup(d, "date")),
            relative_output=to_finite_float(_lookup(d, "relativeOutput", "relOutput")),
            relative_uniformity=to_finite_float(_lookup(d, "relativeUniformity", "relUniformity")),
            center_shift=to_finite_float(_lookup(d, "centerShift")),
            status=_opt_str(_lookup(d, "status")),
            rel_output_status=_opt_str(_lookup(d, "relOutputStatus")),
            rel_uniformity_status=_opt_str(_lookup(d, "relUniformityStatus")),
            center_shift_status=_opt_str(_lookup(d, "centerShiftStatus")),
            approved_by=_opt_str(_lookup(d, "approvedBy", "acceptedBy")),
            approved_date=_opt_str(_lookup(d, "approvedDate", "acceptedDate")),
        )


# attr -> extra wire aliases (the attr name itself is always tried)
_GEO_ALIASES: Dict[str, Tuple[str, ...]] = {
    "rotation_induced_couch_shift": ("rotationInducedCouchShiftFullRange", "rotationInducedShift"),
    "couch_max_position_error": ("maxPositionError",),
}

_GEO_SCALARS = (
    "iso_center_size", "iso_center_mv_offset", "iso_center_kv_offset",
    "relative_output", "relative_uniformity", "center_shift",
    "collimation_rotation_offset", "gantry_absolute", "gantry_relative",
    "couch_lat", "couch_lng", "couch_vrt", "couch_rtn_fine", "couch_rtn_large",
    "couch_max_position_error", "rotation_induced_couch_shift",
    "mean_offset_a", "mean_offset_b", "max_offset_a", "max_offset_b",
    "mlc_backlash_max_a", "mlc_backlash_max_b", "mlc_backlash_mean_a", "mlc_backlash_mean_b",
    "jaw_x1", "jaw_x2", "jaw_y1", "jaw_y2",
    "jaw_parallelism_x1", "jaw_parallelism_x2", "jaw_parallelism_y1", "jaw_parallelism_y2",
)
_GEO_LEAVES = ("mlc_leaves_a", "mlc_leaves_b", "mlc_backlash_a", "mlc_backlash_b")


@dataclass(frozen=True)
class GeoCheckRecord:
    id: str
    machine_id: str
    date: Optional[str] = None
    timestamp: Optional[str] = None
    type: Optional[str] = None

    iso_center_size: Optional[float] = None
    iso_center_mv_offset: Optional[float] = None
    iso_center_kv_offset: Optional[float] = None

    relative_output: Optional[float] = None
    relative_uniformity: Optional[float] = None
    center_shift: Optional[float] = None

    collimation_rotation_offset: Optional[float] = None
    gantry_absolute: Optional[float] = None
    gantry_relative: Optional[float] = None

    couch_lat: Optional[float] = None
    couch_lng: Optional[float] = None
    couch_vrt: Optional[float] = None
    couch_rtn_fine: Optional[float] = None
    couch_rtn_large: Optional[float] = None
    couch_max_position_error: Optional[float] = None
    rotation_induced_couch_shift: Optional[float] = None

    mean_offset_a: Optional[float] = None
    mean_offset_b: Optional[float] = None
    max_offset_a: Optional[float] = None
    max_offset_b: Optional[float] = None

    mlc_backlash_max_a: Optional[float] = None
    mlc_backlash_max_b: Optional[float] = None
    mlc_backlash_mean_a: Optional[float] = None
    mlc_backlash_mean_b: Optional[float] = None

    jaw_x1: Optional[float] = None
    jaw_x2: Optional[float] = None
    jaw_y1: Optional[float] = None
    jaw_y2: Optional[float] = None

    jaw_parallelism_x1: Optional[float] = None
    jaw_parallelism_x2: Optional[float] = None
    jaw_parallelism_y1: Optional[float] = None
    jaw_parallelism_y2: Optional[float] = None

    # leaf number (as string) -> value
    mlc_leaves_a: Optional[Dict[str, float]] = None
    mlc_leaves_b: Optional[Dict[str, float]] = None
    mlc_backlash_a: Optional[Dict[str, float]] = None
    mlc_backlash_b: Optional[Dict[str, float]] = None

    metric_statuses: Dict[str, str] = field(default_factory=dict)
    approved_by: Optional[str] = None
    approved_date: Optional[str] = None

    @property
    def days(self) -> Tuple[str, ...]:
        return day_of(self.date, self.timestamp)

    def status_for(self, key: str) -> str:
        """Upstream PASS/FAIL flag for a metric key; PASS when absent."""
        wanted = _norm_key(key)
        for k, v in self.metric_statuses.items():
            if _norm_key(k) == wanted:
                return str(v or "PASS").upper()
        return "PASS"

    def with_approval(self, approved_by: str, approved_date: str) -> "GeoCheckRecord":
        return replace(self, approved_by=approved_by, approved_date=approved_date)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "GeoCheckRecord":
        kwargs: Dict[str, Any] = {
            "id": str(_lookup(d, "id") or ""),
            "machine_id": str(_lookup(d, "machineId") or ""),
            "date": _opt_str(_lookup(d, "date")),
            "timestamp": _opt_str(_lookup(d, "timestamp")),
            "type": _opt_str(_lookup(d, "type")),
            "approved_by": _opt_str(_lookup(d, "approvedBy", "acceptedBy")),
            "approved_date": _opt_str(_lookup(d, "approvedDate", "acceptedDate")),
        }
        for attr in _GEO_SCALARS:
            kwargs[attr] = to_finite_float(_lookup(d, attr, *_GEO_ALIASES.get(attr, ())))
        for attr in _GEO_LEAVES:
            kwargs[attr] = normalize_leaf_map(_lookup(d, attr))
        statuses = _lookup(d, "metricStatuses") or {}
        kwargs["metric_statuses"] = {str(k): str(v) for k, v in dict(statuses).items()}
        return cls(**kwargs)


# =============================================================================
# Configuration entities
# =============================================================================
@dataclass(frozen=True)
class Threshold:
    machine_id: str
    check_type: str                      # "beam" | "geometry"
    metric_type: str
    value: float
    beam_variant_id: Optional[str] = None
    beam_variant: Optional[str] = None   # legacy variant name
    id: Optional[str] = None
    last_updated: Optional[str] = None

    def same_key(self, other: "Threshold") -> bool:
        """Same (machine, check type, metric, variant) tuple; variant by id or legacy name."""
        if (self.machine_id, self.check_type) != (other.machine_id, other.check_type):
            return False
        if self.metric_type.lower() != other.metric_type.lower():
            return False
        if self.check_type != "beam":
            return True
        mine = {v for v in (self.beam_variant_id, self.beam_variant) if v}
        theirs = {v for v in (other.beam_variant_id, other.beam_variant) if v}
        if not mine and not theirs:
            return True
        return bool(mine & theirs)

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "machineId": self.machine_id,
            "checkType": self.check_type,
            "metricType": self.metric_type,
            "value": self.value,
            "beamVariantId": self.beam_variant_id,
            "beamVariant": self.beam_variant,
            "lastUpdated": self.last_updated,
        }
        if self.id:
            out["id"] = self.id
        return {k: v for k, v in out.items() if v is not None}

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Threshold":
        value = to_finite_float(_lookup(d, "value"))
        if value is None:
            raise ValidationError(f"Threshold value must be numeric: {_lookup(d, 'value')!r}")
        return cls(
            machine_id=str(_lookup(d, "machineId") or ""),
            check_type=str(_lookup(d, "checkType") or "").lower(),
            metric_type=str(_lookup(d, "metricType") or ""),
            value=value,
            beam_variant_id=_opt_str(_lookup(d, "beamVariantId")),
            beam_variant=_opt_str(_lookup(d, "beamVariant")),
            id=_opt_str(_lookup(d, "id")),
            last_updated=_opt_str(_lookup(d, "lastUpdated")),
        )


@dataclass(frozen=True)
class DocFactor:
    machine_id: str
    beam_variant_id: str
    beam_id: str
    msd_abs: float
    mpc_rel: float
    doc_factor: Optional[float]
    measurement_date: dt.date
    start_date: dt.date
    end_date: Optional[dt.date] = None
    beam_variant_name: Optional[str] = None
    id: Optional[str] = None

    def is_current_on(self, on_date: dt.date) -> bool:
        if self.start_date > on_date:
            return False
        return self.end_date is None or self.end_date > on_date

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "machineId": self.machine_id,
            "beamVariantId": self.beam_variant_id,
            "beamVariantName": self.beam_variant_name,
            "beamId": self.beam_id,
            "msdAbs": self.msd_abs,
            "mpcRel": self.mpc_rel,
            "docFactorValue": self.doc_factor,
            "measurementDate": self.measurement_date.isoformat(),
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat() if self.end_date else None,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "DocFactor":
        return cls(
            id=_opt_str(_lookup(d, "id")),
            machine_id=str(_lookup(d, "machineId") or ""),
            beam_variant_id=str(_lookup(d, "beamVariantId") or ""),
            beam_variant_name=_opt_str(_lookup(d, "beamVariantName")),
            beam_id=str(_lookup(d, "beamId") or ""),
            msd_abs=to_finite_float(_lookup(d, "msdAbs")),
            mpc_rel=to_finite_float(_lookup(d, "mpcRel")),
            doc_factor=to_finite_float(_lookup(d, "docFactorValue", "docFactor")),
            measurement_date=parse_date(_lookup(d, "measurementDate", "startDate")),
            start_date=parse_date(_lookup(d, "startDate")),
            end_date=parse_optional_date(_lookup(d, "endDate")),
        )


# =============================================================================
# Display tree
# =============================================================================
@dataclass(frozen=True)
class CheckMetric:
    name: str
    value: Any
    thresholds: str
    absolute_value: str
    status: str  # "pass" | "fail" | "warning"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "thresholds": self.thresholds,
            "absoluteValue": self.absolute_value,
            "status": self.status,
        }


@dataclass(frozen=True)
class CheckResult:
    id: str
    name: str
    status: str  # "PASS" | "FAIL"
    metrics: Tuple[CheckMetric, ...]
    source_id: Optional[str] = None   # raw record id, used for approval
    approved_by: Optional[str] = None
    approved_date: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "metrics": [m.to_dict() for m in self.metrics],
        }
        if self.approved_by:
            out["approvedBy"] = self.approved_by
        if self.approved_date:
            out["approvedDate"] = self.approved_date
        return out


@dataclass(frozen=True)
class DayResults:
    beam_groups: Tuple[CheckResult, ...]
    geo_groups: Tuple[CheckResult, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "beamGroups": [g.to_dict() for g in self.beam_groups],
            "geoGroups": [g.to_dict() for g in self.geo_groups],
        }


# =============================================================================
# Baseline configuration
# =============================================================================
@dataclass(frozen=True)
class BaselineManualValues:
    output_change: float = 0.0
    uniformity_change: float = 0.0
    center_shift: float = 0.0


@dataclass(frozen=True)
class BaselineSettings:
    mode: str = "date"                   # "manual" | "date"
    date: Optional[str] = None           # ISO date
    manual_values: BaselineManualValues = field(default_factory=BaselineManualValues)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "date": self.date,
            "manualValues": {
                "outputChange": self.manual_values.output_change,
                "uniformityChange": self.manual_values.uniformity_change,
                "centerShift": self.manual_values.center_shift,
            },
        }

    @classmethod
    def from_dict(cls, d: Optional[Mapping[str, Any]]) -> "BaselineSettings":
        d = d or {}
        mv = _lookup(d, "manualValues") or {}
        defaults = BaselineManualValues()

        def _num(name: str, fallback: float) -> float:
            v = to_finite_float(_lookup(mv, name))
            return fallback if v is None else v

        mode = str(_lookup(d, "mode") or "date").lower()
        if mode not in ("manual", "date"):
            raise ValidationError(f"Unknown baseline mode: {mode!r}")
        date = _opt_str(_lookup(d, "date"))
        if date is not None:
            date = parse_date(date).isoformat()
        return cls(
            mode=mode,
            date=date,
            manual_values=BaselineManualValues(
                output_change=_num("outputChange", defaults.output_change),
                uniformity_change=_num("uniformityChange", defaults.uniformity_change),
                center_shift=_num("centerShift", defaults.center_shift),
            ),
        )
