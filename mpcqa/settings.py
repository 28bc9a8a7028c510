# mpcqa/settings.py
"""
Client-local settings: theme, accent color, chart shading and baseline.

Stored as one JSON blob, rewritten whole on every change. The blob carries a
schemaVersion; older blobs are migrated step by step on load.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol, Union

from mpcqa import config
from mpcqa.catalog import to_finite_float
from mpcqa.errors import ValidationError
from mpcqa.models import BaselineSettings

LOG = logging.getLogger(__name__)

SCHEMA_VERSION = 1
DEFAULT_ACCENT_COLOR = "#420039"
THEMES = ("light", "dark")

_HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")


@dataclass(frozen=True)
class AppSettings:
    theme: str = "light"
    accent_color: str = DEFAULT_ACCENT_COLOR
    graph_threshold_top_percent: float = 16.67
    graph_threshold_bottom_percent: float = 16.67
    graph_threshold_color: str = "#fef3c7"
    baseline: BaselineSettings = field(default_factory=BaselineSettings)
    schema_version: int = SCHEMA_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schemaVersion": self.schema_version,
            "theme": self.theme,
            "accentColor": self.accent_color,
            "graphThresholdTopPercent": self.graph_threshold_top_percent,
            "graphThresholdBottomPercent": self.graph_threshold_bottom_percent,
            "graphThresholdColor": self.graph_threshold_color,
            "baseline": self.baseline.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "AppSettings":
        """Missing keys fall back to defaults; bad values raise ValidationError."""
        defaults = cls()

        def _num(key: str, fallback: float) -> float:
            if key not in d:
                return fallback
            v = to_finite_float(d[key])
            if v is None:
                raise ValidationError(f"{key} must be numeric: {d[key]!r}")
            return v

        theme = str(d.get("theme", defaults.theme))
        if theme not in THEMES:
            raise ValidationError(f"Unknown theme: {theme!r}")
        return cls(
            theme=theme,
            accent_color=_check_color(d.get("accentColor", defaults.accent_color)),
            graph_threshold_top_percent=_num("graphThresholdTopPercent", defaults.graph_threshold_top_percent),
            graph_threshold_bottom_percent=_num("graphThresholdBottomPercent", defaults.graph_threshold_bottom_percent),
            graph_threshold_color=_check_color(d.get("graphThresholdColor", defaults.graph_threshold_color)),
            baseline=BaselineSettings.from_dict(d.get("baseline")),
            schema_version=SCHEMA_VERSION,
        )


def _check_color(value: Any) -> str:
    s = str(value)
    if not _HEX_COLOR.match(s):
        raise ValidationError(f"Expected a #RRGGBB color, got {value!r}")
    return s


# =============================================================================
# Migration
# =============================================================================
def _migrate_v0(blob: Dict[str, Any]) -> Dict[str, Any]:
    # v0 kept per-beam min/max thresholds locally; those now live in the results service.
    out = dict(blob)
    out.pop("thresholds", None)
    out["schemaVersion"] = 1
    return out


_MIGRATIONS = {0: _migrate_v0}


def migrate(blob: Mapping[str, Any]) -> Dict[str, Any]:
    out = dict(blob)
    version = int(out.get("schemaVersion", 0) or 0)
    if version > SCHEMA_VERSION:
        LOG.warning("settings schemaVersion %s is newer than supported %s", version, SCHEMA_VERSION)
        return out
    while version < SCHEMA_VERSION:
        out = _MIGRATIONS[version](out)
        version = int(out["schemaVersion"])
        LOG.info("migrated settings to schemaVersion %s", version)
    return out


# =============================================================================
# Stores
# =============================================================================
class SettingsStore(Protocol):
    def load(self) -> AppSettings: ...

    def save(self, settings: AppSettings) -> None: ...


class _UpdatesMixin:
    """Read-modify-write helpers; each persists immediately."""

    def load(self) -> AppSettings:  # pragma: no cover - provided by subclasses
        raise NotImplementedError

    def save(self, settings: AppSettings) -> None:  # pragma: no cover
        raise NotImplementedError

    def update_theme(self, theme: str) -> AppSettings:
        if theme not in THEMES:
            raise ValidationError(f"Unknown theme: {theme!r}")
        s = replace(self.load(), theme=theme)
        self.save(s)
        return s

    def update_accent_color(self, color: str) -> AppSettings:
        s = replace(self.load(), accent_color=_check_color(color))
        self.save(s)
        return s

    def update_graph_thresholds(
        self,
        top_percent: Optional[float] = None,
        bottom_percent: Optional[float] = None,
        color: Optional[str] = None,
    ) -> AppSettings:
        s = self.load()
        changes: Dict[str, Any] = {}
        for name, value in (("graph_threshold_top_percent", top_percent),
                            ("graph_threshold_bottom_percent", bottom_percent)):
            if value is None:
                continue
            v = to_finite_float(value)
            if v is None:
                raise ValidationError(f"{name} must be numeric: {value!r}")
            changes[name] = v
        if color is not None:
            changes["graph_threshold_color"] = _check_color(color)
        s = replace(s, **changes)
        self.save(s)
        return s

    def update_baseline(
        self,
        mode: Optional[str] = None,
        date: Any = "",
        manual_values: Optional[Mapping[str, Any]] = None,
    ) -> AppSettings:
        """
        Partial update. `date=None` clears the baseline date; leaving it at ""
        keeps the stored one. manual_values is merged over the stored values
        (keys outputChange / uniformityChange / centerShift).
        """
        s = self.load()
        current = s.baseline.to_dict()
        if mode is not None:
            current["mode"] = mode
        if date != "":
            current["date"] = date
        if manual_values:
            current["manualValues"] = {**current["manualValues"], **dict(manual_values)}
        baseline = BaselineSettings.from_dict(current)
        s = replace(s, baseline=baseline)
        self.save(s)
        return s


class JsonSettingsStore(_UpdatesMixin):
    def __init__(self, path: Union[str, Path, None] = None):
        self.path = Path(path) if path is not None else config.SETTINGS_PATH

    def load(self) -> AppSettings:
        if not self.path.exists():
            return AppSettings()
        try:
            blob = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(blob, dict):
                raise ValidationError("settings blob is not a JSON object")
            return AppSettings.from_dict(migrate(blob))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            LOG.warning("could not read settings from %s, using defaults: %s", self.path, e)
            return AppSettings()

    def save(self, settings: AppSettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(settings.to_dict(), indent=2), encoding="utf-8")
        tmp.replace(self.path)
        LOG.debug("settings written to %s", self.path)


class MemorySettingsStore(_UpdatesMixin):
    def __init__(self, settings: Optional[AppSettings] = None):
        self._settings = settings or AppSettings()

    def load(self) -> AppSettings:
        return self._settings

    def save(self, settings: AppSettings) -> None:
        self._settings = settings

