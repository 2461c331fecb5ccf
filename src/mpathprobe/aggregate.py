"""Reduce parsed path records to counts and a single severity."""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from .models import DEFAULT_PROBE_NAME, ProbeResult, Severity, build_result
from .paths import CheckerState, PathRecord


@dataclass(slots=True, frozen=True)
class AggregateCounts:
    """Per-category path tallies.

    ``total`` counts every de-duplicated record; checker states outside the
    four tracked categories land in none of the buckets, so the buckets need
    not add up to ``total``.
    """

    active: int = 0
    passive: int = 0
    faulty: int = 0
    shaky: int = 0
    total: int = 0

    @property
    def untracked(self) -> int:
        """Return the number of records with an unrecognised checker state."""
        return self.total - (self.active + self.passive + self.faulty + self.shaky)

    def perfdata(self) -> str:
        """Return the perf-metric segment for the output line."""
        return (
            f"active={self.active} passive={self.passive} "
            f"faulty={self.faulty} shaky={self.shaky}"
        )


def index_by_device(records: Iterable[PathRecord]) -> dict[str, PathRecord]:
    """Key *records* by device name; the last record for a device wins."""
    indexed: dict[str, PathRecord] = {}
    for record in records:
        device = record.device.strip()
        if not device:
            continue
        indexed[device] = record
    return indexed


def count_paths(records: Mapping[str, PathRecord] | Iterable[PathRecord]) -> AggregateCounts:
    """Count checker states across *records*.

    Accepts either a device-keyed mapping (as produced by
    :func:`index_by_device`) or a plain iterable, which is indexed first.
    """
    indexed = records if isinstance(records, Mapping) else index_by_device(records)
    active = passive = faulty = shaky = 0
    for record in indexed.values():
        state = record.checker_state
        if state == CheckerState.READY:
            active += 1
        elif state == CheckerState.GHOST:
            passive += 1
        elif state == CheckerState.FAULTY:
            faulty += 1
        elif state == CheckerState.SHAKY:
            shaky += 1
    return AggregateCounts(
        active=active,
        passive=passive,
        faulty=faulty,
        shaky=shaky,
        total=len(indexed),
    )


def evaluate(counts: AggregateCounts) -> tuple[Severity, str]:
    """Derive the severity and summary text for *counts*.

    Faulty paths take precedence over shaky ones. Aggregation never yields
    CRITICAL; that severity only comes back through a cached line.
    """
    if counts.faulty > 0:
        return Severity.WARN, f"{counts.faulty} faulty of {counts.total} paths"
    if counts.shaky > 0:
        return Severity.WARN, f"{counts.shaky} shaky of {counts.total} paths"
    return (
        Severity.OK,
        f"{counts.active} active, {counts.passive} passive of {counts.total} paths",
    )


def aggregate_result(
    records: Iterable[PathRecord],
    *,
    probe_name: str = DEFAULT_PROBE_NAME,
) -> tuple[ProbeResult, AggregateCounts]:
    """Build the final :class:`ProbeResult` for *records*."""
    counts = count_paths(index_by_device(records))
    severity, summary = evaluate(counts)
    result = build_result(severity, summary, counts.perfdata(), probe_name=probe_name)
    return result, counts


__all__ = [
    "AggregateCounts",
    "aggregate_result",
    "count_paths",
    "evaluate",
    "index_by_device",
]
