"""Parsers for ``multipathd show paths`` and ``multipathd show daemon`` output.

``show paths`` prints a header followed by fixed-column rows::

    hcil     dev dev_t pri dm_st  chk_st dev_st  next_check
    10:0:0:10 sdm 8:192 50  active ready  running XXXXXXXX.. 17/20

Only rows for ``sd*`` devices are considered; headers, blank lines and other
device types are skipped without complaint. A "need to be root" line is not
a parse failure but a signal that the query ran without privileges, and it
stops the stream immediately.
"""
from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum

from .errors import DaemonDownError, PrivilegeError


class CheckerState(str, Enum):
    """Path checker classification; the authoritative health signal."""

    READY = "ready"
    GHOST = "ghost"
    FAULTY = "faulty"
    SHAKY = "shaky"


_PATH_ROW_PATTERN = re.compile(
    r"""
    ^\s*
    (?P<hcil>\d+:\d+:\d+:\d+)\s+
    (?P<device>sd[a-z]+)\s+
    (?P<dev_t>\d+:\d+)\s+
    (?P<priority>\d+)\s+
    (?P<dm_state>[a-z]+)\s+
    (?P<checker_state>[a-z]+)
    (?:\s+(?P<device_state>[a-z]+))?
    (?:\s|$)
    """,
    re.VERBOSE,
)

_DAEMON_PATTERN = re.compile(r"^\s*pid\s+(?P<pid>\d+)\s+(?P<state>running|idle)\b")

_PRIVILEGE_PATTERN = re.compile(
    r"^\s*(?:multipathd:\s*)?(?:need to be root|permission denied)",
    re.IGNORECASE,
)


@dataclass(slots=True, frozen=True)
class PathRecord:
    """One row of ``multipathd show paths``."""

    hcil: str
    device: str
    dev_t: str
    priority: int
    dm_state: str
    checker_state: str
    device_state: str | None = None


@dataclass(slots=True, frozen=True)
class DaemonStatus:
    """Process information reported by ``multipathd show daemon``."""

    pid: int
    state: str


def is_privilege_signal(line: str) -> bool:
    """Return ``True`` when *line* reports missing root privileges."""
    return bool(_PRIVILEGE_PATTERN.match(line))


def parse_path_line(line: str) -> PathRecord | None:
    """Parse a single row, returning ``None`` for lines that are not records."""
    match = _PATH_ROW_PATTERN.match(line)
    if match is None:
        return None
    return PathRecord(
        hcil=match.group("hcil"),
        device=match.group("device"),
        dev_t=match.group("dev_t"),
        priority=int(match.group("priority")),
        dm_state=match.group("dm_state"),
        checker_state=match.group("checker_state"),
        device_state=match.group("device_state"),
    )


def parse_path_records(lines: Iterable[str]) -> Iterator[PathRecord]:
    """Yield path records from *lines*, consuming the input once.

    Raises :class:`PrivilegeError` as soon as a privilege line is seen.
    """
    for line in lines:
        if is_privilege_signal(line):
            raise PrivilegeError(f"multipathd path query needs root: {line.strip()}")
        record = parse_path_line(line)
        if record is not None:
            yield record


def parse_daemon_status(lines: Iterable[str]) -> DaemonStatus:
    """Return the daemon status from ``show daemon`` output.

    Raises :class:`PrivilegeError` when the query ran unprivileged and
    :class:`DaemonDownError` when no ``pid <N> running|idle`` line is present.
    """
    for line in lines:
        if is_privilege_signal(line):
            raise PrivilegeError(f"multipathd daemon query needs root: {line.strip()}")
        match = _DAEMON_PATTERN.match(line)
        if match is not None:
            return DaemonStatus(pid=int(match.group("pid")), state=match.group("state"))
    raise DaemonDownError("multipathd is not running")


__all__ = [
    "CheckerState",
    "DaemonStatus",
    "PathRecord",
    "is_privilege_signal",
    "parse_daemon_status",
    "parse_path_line",
    "parse_path_records",
]
