# mpcqa/catalog.py
from __future__ import annotations

import math
import re
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

# =============================================================================
# Display ranges / colors
# =============================================================================
Y_AXIS_DOMAINS: Dict[str, Tuple[float, float]] = {
    "output change": (-6.0, 6.0),
    "uniformity change": (-5.0, 5.0),
    "center shift": (-4.0, 4.0),
}
DEFAULT_Y_AXIS_DOMAIN: Tuple[float, float] = (-6.0, 6.0)

GRAPH_METRIC_COLORS = [
    "#420039",  # purple
    "#8B5CF6",
    "#EC4899",
    "#F59E0B",
    "#10B981",
    "#3B82F6",
    "#EF4444",
    "#06B6D4",
]

# =============================================================================
# Canonical metrics (label -> settings label with unit)
# =============================================================================
BEAM_METRICS: Dict[str, str] = {
    "Relative Output": "Relative Output (%)",
    "Relative Uniformity": "Relative Uniformity (%)",
    "Center Shift": "Center Shift (mm)",
}

GEO_METRICS: Dict[str, str] = {
    # IsoCenter
    "Iso Center Size": "Iso Center Size (mm)",
    "Iso Center MV Offset": "Iso Center MV Offset (mm)",
    "Iso Center KV Offset": "Iso Center KV Offset (mm)",
    # Collimation
    "Collimation Rotation Offset": "Collimation Rotation Offset (deg)",
    # Gantry
    "Gantry Absolute": "Gantry Absolute (deg)",
    "Gantry Relative": "Gantry Relative (deg)",
    # Couch
    "Couch Lat": "Couch Lat (mm)",
    "Couch Lng": "Couch Lng (mm)",
    "Couch Vrt": "Couch Vrt (mm)",
    "Couch Rtn Fine": "Couch Rtn Fine (deg)",
    "Couch Rtn Large": "Couch Rtn Large (deg)",
    "Max Position Error": "Max Position Error (mm)",
    "Rotation Induced Shift": "Rotation Induced Shift (mm)",
    # MLC offsets
    "Mean Offset A": "Mean Offset A (mm)",
    "Max Offset A": "Max Offset A (mm)",
    "Mean Offset B": "Mean Offset B (mm)",
    "Max Offset B": "Max Offset B (mm)",
    # Jaws
    "Jaw X1": "Jaw X1 (mm)",
    "Jaw X2": "Jaw X2 (mm)",
    "Jaw Y1": "Jaw Y1 (mm)",
    "Jaw Y2": "Jaw Y2 (mm)",
    # Jaws parallelism
    "Parallelism X1": "Parallelism X1 (deg)",
    "Parallelism X2": "Parallelism X2 (deg)",
    "Parallelism Y1": "Parallelism Y1 (deg)",
    "Parallelism Y2": "Parallelism Y2 (deg)",
}

MLC_LEAF_METRIC = "mlc_leaf_position"
MLC_BACKLASH_METRIC = "mlc_backlash"


@dataclass(frozen=True)
class GeoField:
    label: str          # display name, also the geometry threshold metricType
    attr: str           # GeoCheckRecord attribute
    status_key: str     # key in GeoCheckRecord.metric_statuses


@dataclass(frozen=True)
class GeoGroup:
    id: str
    name: str
    fields: Tuple[GeoField, ...] = ()
    leaves_attr: Optional[str] = None     # set for per-leaf groups
    leaf_prefix: str = ""
    leaf_metric: str = ""                 # shared threshold / status key


# Fixed layout; order is the rendering order.
GEO_GROUPS: Tuple[GeoGroup, ...] = (
    GeoGroup("geo-isocenter", "IsoCenter Group", (
        GeoField("Iso Center Size", "iso_center_size", "IsoCenterSize"),
        GeoField("Iso Center MV Offset", "iso_center_mv_offset", "IsoCenterMVOffset"),
        GeoField("Iso Center KV Offset", "iso_center_kv_offset", "IsoCenterKVOffset"),
    )),
    GeoGroup("geo-beam", "Beam Group", (
        GeoField("Relative Output", "relative_output", "RelativeOutput"),
        GeoField("Relative Uniformity", "relative_uniformity", "RelativeUniformity"),
        GeoField("Center Shift", "center_shift", "CenterShift"),
    )),
    GeoGroup("geo-collimation", "Collimation Group", (
        GeoField("Collimation Rotation Offset", "collimation_rotation_offset", "CollimationRotationOffset"),
    )),
    GeoGroup("geo-gantry", "Gantry Group", (
        GeoField("Gantry Absolute", "gantry_absolute", "GantryAbsolute"),
        GeoField("Gantry Relative", "gantry_relative", "GantryRelative"),
    )),
    GeoGroup("geo-couch", "Enhanced Couch Group", (
        GeoField("Couch Lat", "couch_lat", "CouchLat"),
        GeoField("Couch Lng", "couch_lng", "CouchLng"),
        GeoField("Couch Vrt", "couch_vrt", "CouchVrt"),
        GeoField("Couch Rtn Fine", "couch_rtn_fine", "CouchRtnFine"),
        GeoField("Couch Rtn Large", "couch_rtn_large", "CouchRtnLarge"),
        GeoField("Max Position Error", "couch_max_position_error", "MaxPositionError"),
        GeoField("Rotation Induced Shift", "rotation_induced_couch_shift", "RotationInducedShift"),
    )),
    GeoGroup("geo-mlc-a", "MLC Leaves A", leaves_attr="mlc_leaves_a",
             leaf_prefix="MLC A Leaf", leaf_metric=MLC_LEAF_METRIC),
    GeoGroup("geo-mlc-b", "MLC Leaves B", leaves_attr="mlc_leaves_b",
             leaf_prefix="MLC B Leaf", leaf_metric=MLC_LEAF_METRIC),
    GeoGroup("geo-mlc-offsets", "MLC Offsets", (
        GeoField("Mean Offset A", "mean_offset_a", "MeanOffsetA"),
        GeoField("Max Offset A", "max_offset_a", "MaxOffsetA"),
        GeoField("Mean Offset B", "mean_offset_b", "MeanOffsetB"),
        GeoField("Max Offset B", "max_offset_b", "MaxOffsetB"),
    )),
    GeoGroup("geo-backlash-a", "Backlash Leaves A", leaves_attr="mlc_backlash_a",
             leaf_prefix="Backlash A Leaf", leaf_metric=MLC_BACKLASH_METRIC),
    GeoGroup("geo-backlash-b", "Backlash Leaves B", leaves_attr="mlc_backlash_b",
             leaf_prefix="Backlash B Leaf", leaf_metric=MLC_BACKLASH_METRIC),
    GeoGroup("geo-jaws", "Jaws Group", (
        GeoField("Jaw X1", "jaw_x1", "JawX1"),
        GeoField("Jaw X2", "jaw_x2", "JawX2"),
        GeoField("Jaw Y1", "jaw_y1", "JawY1"),
        GeoField("Jaw Y2", "jaw_y2", "JawY2"),
    )),
    GeoGroup("geo-jaws-parallelism", "Jaws Parallelism", (
        GeoField("Parallelism X1", "jaw_parallelism_x1", "ParallelismX1"),
        GeoField("Parallelism X2", "jaw_parallelism_x2", "ParallelismX2"),
        GeoField("Parallelism Y1", "jaw_parallelism_y1", "ParallelismY1"),
        GeoField("Parallelism Y2", "jaw_parallelism_y2", "ParallelismY2"),
    )),
)


# =============================================================================
# Keys / labels
# =============================================================================
_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")
_QUALIFIED = re.compile(r"^(.*) \((.*)\)$")
_DIGITS = re.compile(r"(\d+)")


def sanitize_key(name: str) -> str:
    """Every character outside [A-Za-z0-9] becomes '_'. Not injective."""
    return _NON_ALNUM.sub("_", str(name))


def qualify_beam_metric(base: str, variant: Optional[str]) -> str:
    if not variant:
        return base
    return f"{base} ({variant})"


def split_qualified_metric(name: str) -> Tuple[str, Optional[str]]:
    """'Relative Output (6x)' -> ('Relative Output', '6x'); unqualified -> (name, None)."""
    m = _QUALIFIED.match(str(name))
    if not m:
        return str(name), None
    return m.group(1), m.group(2)


def natural_sort_key(s: str) -> List[Any]:
    """Numeric-aware, case-insensitive key: 'beam-2.5x' < 'beam-6x' < 'beam-10x'."""
    parts = _DIGITS.split(str(s))
    return [(0, int(p)) if p.isdigit() else (1, p.lower()) for p in parts if p != ""]


def detect_key_collisions(labels: Iterable[str]) -> Dict[str, List[str]]:
    """Sanitized keys shared by more than one distinct label."""
    by_key: Dict[str, set] = defaultdict(set)
    for label in labels:
        by_key[sanitize_key(label)].add(str(label))
    return {k: sorted(v) for k, v in by_key.items() if len(v) > 1}


class MetricFamily(str, Enum):
    BEAM = "beam"
    GEO = "geometry"


@dataclass(frozen=True)
class MetricId:
    """
    Explicit metric identity. Beam metrics always carry a variant; geometry
    metrics never do. `label` and `key` are derived, never parsed back except
    through from_label().
    """

    family: MetricFamily
    base: str
    variant: Optional[str] = None

    @property
    def label(self) -> str:
        if self.family is MetricFamily.BEAM:
            return qualify_beam_metric(self.base, self.variant)
        return self.base

    @property
    def key(self) -> str:
        return sanitize_key(self.label)

    @property
    def check_type(self) -> str:
        return self.family.value

    @classmethod
    def beam(cls, base: str, variant: str) -> "MetricId":
        return cls(MetricFamily.BEAM, base, variant)

    @classmethod
    def geo(cls, base: str) -> "MetricId":
        return cls(MetricFamily.GEO, base)

    @classmethod
    def from_label(cls, label: str) -> "MetricId":
        base, variant = split_qualified_metric(label)
        if variant:
            return cls(MetricFamily.BEAM, base, variant)
        return cls(MetricFamily.GEO, str(label))


# =============================================================================
# Formatting
# =============================================================================
def to_finite_float(value: Any) -> Optional[float]:
    """float(value) when numeric and finite, else None (bools excluded)."""
    if value is None or isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def format_value(metric_name: str, value: Any) -> str:
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return "-"
    try:
        num = float(value)
    except (TypeError, ValueError):
        return str(value)
    if not math.isfinite(num):
        return "-"

    lower = str(metric_name).lower()
    if "output change" in lower or "uniformity change" in lower:
        return f"{num:.2f}%"
    if "center shift" in lower:
        return f"{num:.3f}"
    return f"{num:.3f}"


def default_domain(metric_name: str) -> Tuple[float, float]:
    lower = str(metric_name).lower()
    for needle, dom in Y_AXIS_DOMAINS.items():
        if needle in lower:
            return dom
    return DEFAULT_Y_AXIS_DOMAIN


def metric_color(index: int) -> str:
    return GRAPH_METRIC_COLORS[int(index) % len(GRAPH_METRIC_COLORS)]
