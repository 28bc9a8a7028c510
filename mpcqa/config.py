# mpcqa/config.py
"""
Environment parsing for the MPC QA engine.

All MPCQA_* variables are read here and exported as module-level constants;
other modules import from this one rather than reading os.environ.
"""
from __future__ import annotations

import os
from pathlib import Path


def _float_env(name: str, default: float) -> float:
    val = os.getenv(name)
    if not val:
        return default
    try:
        return float(val)
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    val = os.getenv(name)
    if not val:
        return default
    try:
        return max(1, int(float(val)))
    except ValueError:
        return default


# =============================================================================
# Results service
# =============================================================================
API_URL: str = os.getenv("MPCQA_API_URL", "").rstrip("/")
"""Base URL of the results REST service. Empty disables remote calls."""

API_KEY: str = os.getenv("MPCQA_API_KEY", "")
"""Optional publishable key sent as the `apikey` header."""

HTTP_TIMEOUT_S: float = _float_env("MPCQA_HTTP_TIMEOUT_S", 15.0)

# =============================================================================
# Client-local settings
# =============================================================================
SETTINGS_PATH: Path = Path(
    os.getenv("MPCQA_SETTINGS_PATH", str(Path.home() / ".mpcqa" / "settings.json"))
).expanduser()

# =============================================================================
# Graph defaults
# =============================================================================
DEFAULT_GRAPH_DAYS: int = _int_env("MPCQA_GRAPH_DAYS", 14)
"""Days before the selected date shown in the trend chart."""
