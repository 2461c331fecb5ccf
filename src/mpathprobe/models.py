"""Result models shared by the parser, the cache and the coordinator."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from .exit_codes import ExitCode

DEFAULT_PROBE_NAME = "MULTIPATH"


class Severity(str, Enum):
    """Monitoring severity reported on the single output line."""

    OK = "OK"
    WARN = "WARN"
    CRITICAL = "CRITICAL"
    UNKNOWN = "UNKNOWN"

    @property
    def exit_code(self) -> ExitCode:
        """Return the plugin exit code for this severity."""
        return SEVERITY_EXIT_CODES[self]


SEVERITY_EXIT_CODES: Mapping[Severity, ExitCode] = {
    Severity.OK: ExitCode.OK,
    Severity.WARN: ExitCode.WARN,
    Severity.CRITICAL: ExitCode.CRITICAL,
    Severity.UNKNOWN: ExitCode.UNKNOWN,
}

# Keyword precedence when re-parsing a stored line. A line could in principle
# carry several keywords; the first one in this order governs.
KEYWORD_PRECEDENCE: tuple[Severity, ...] = (
    Severity.CRITICAL,
    Severity.WARN,
    Severity.UNKNOWN,
    Severity.OK,
)

_KEYWORD_PATTERNS: Mapping[Severity, re.Pattern[str]] = {
    severity: re.compile(rf"\b{severity.value}\b") for severity in KEYWORD_PRECEDENCE
}


@dataclass(slots=True, frozen=True)
class ProbeResult:
    """Outcome of one probe cycle.

    ``message`` is the complete line handed to the monitoring system and the
    exact content stored in the cache file.
    """

    severity: Severity
    message: str

    @property
    def exit_code(self) -> ExitCode:
        """Return the exit code matching :attr:`severity`."""
        return self.severity.exit_code


def render_line(
    severity: Severity,
    summary: str,
    perfdata: str | None = None,
    *,
    probe_name: str = DEFAULT_PROBE_NAME,
) -> str:
    """Render ``<probe name> <SEVERITY> - <summary> | <perfdata>`` on one line."""
    text = " ".join(summary.split())
    line = f"{probe_name} {severity.value} - {text}"
    if perfdata:
        line = f"{line} | {perfdata.strip()}"
    return line


def build_result(
    severity: Severity,
    summary: str,
    perfdata: str | None = None,
    *,
    probe_name: str = DEFAULT_PROBE_NAME,
) -> ProbeResult:
    """Create a :class:`ProbeResult` with a rendered output line."""
    return ProbeResult(
        severity=severity,
        message=render_line(severity, summary, perfdata, probe_name=probe_name),
    )


def severity_from_text(text: str) -> Severity | None:
    """Return the governing severity keyword embedded in *text*, if any."""
    for severity in KEYWORD_PRECEDENCE:
        if _KEYWORD_PATTERNS[severity].search(text):
            return severity
    return None


__all__ = [
    "DEFAULT_PROBE_NAME",
    "KEYWORD_PRECEDENCE",
    "ProbeResult",
    "Severity",
    "build_result",
    "render_line",
    "severity_from_text",
]
