"""Enumerations for plugin exit codes consumed by the monitoring system."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Nagios plugin exit codes; the mapping is fixed by contract."""

    OK = 0
    WARN = 1
    CRITICAL = 2
    UNKNOWN = 3
