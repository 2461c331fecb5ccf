"""Failure taxonomy for a probe run.

Every :class:`ProbeError` carries the severity it is reported with, so the
coordinator can turn any of them into the single output line without a
lookup table.
"""
from __future__ import annotations

from typing import ClassVar

from .models import Severity


class ProbeError(RuntimeError):
    """Base class for failures that terminate a probe run."""

    severity: ClassVar[Severity] = Severity.UNKNOWN


class PreconditionError(ProbeError):
    """Raised when the multipathd helper binary is missing or not executable."""

    severity = Severity.UNKNOWN


class PrivilegeError(ProbeError):
    """Raised when a privileged query reports that it needs root."""

    severity = Severity.WARN


class DaemonDownError(ProbeError):
    """Raised when no running multipathd process is reported."""

    severity = Severity.WARN


class StaleCacheError(ProbeError):
    """The cache outlived the producer window; the cron job looks inactive."""

    severity = Severity.WARN


class ParseAmbiguityError(ProbeError):
    """Raised when a fresh cache file carries no severity keyword."""

    severity = Severity.UNKNOWN


class CacheWriteError(RuntimeError):
    """Raised when a result cannot be persisted.

    Not a :class:`ProbeError`: a failed write never changes the severity of a
    result that has already been emitted.
    """


__all__ = [
    "CacheWriteError",
    "DaemonDownError",
    "ParseAmbiguityError",
    "PreconditionError",
    "PrivilegeError",
    "ProbeError",
    "StaleCacheError",
]
