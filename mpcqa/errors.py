# mpcqa/errors.py
from __future__ import annotations

from typing import Optional


class MpcQaError(Exception):
    """Base class for engine errors."""


class ValidationError(MpcQaError, ValueError):
    """
    Input rejected before any persistence call
    (out-of-band MSD Abs, malformed date, overlapping DOC interval, ...).
    """


class UpstreamError(MpcQaError, RuntimeError):
    """Results service returned an error or could not be reached."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body

    @property
    def is_not_found(self) -> bool:
        return self.status == 404
