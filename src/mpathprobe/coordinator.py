"""Top-level probe state machine.

::

    CheckCache --hit--> Emit
        |
        miss
        v
    DaemonStatus -> PathStatus -> Parse -> Aggregate -> Emit -> Persist

A cache hit never touches multipathd, which is what lets the unprivileged
monitoring agent succeed without root. Results are emitted before they are
persisted, so a failed cache write cannot swallow them.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

from .aggregate import AggregateCounts, aggregate_result
from .cache import CacheStore
from .errors import CacheWriteError, PreconditionError, ProbeError
from .models import DEFAULT_PROBE_NAME, ProbeResult, Severity, build_result
from .paths import DaemonStatus, parse_daemon_status, parse_path_records
from .providers.multipathd import MultipathdError, MultipathdProvider

ResultSource = Literal["cache", "live", "error"]


@dataclass(slots=True, frozen=True)
class ProbeOutcome:
    """What a probe run produced and where the result came from."""

    result: ProbeResult
    source: ResultSource
    persisted: bool = False
    counts: AggregateCounts | None = None
    daemon: DaemonStatus | None = None
    persist_error: str | None = None


def _ignore(message: str) -> None:
    return None


class ProbeCoordinator:
    """Run one probe cycle against the cache and, on a miss, multipathd."""

    def __init__(
        self,
        cache: CacheStore,
        provider: MultipathdProvider,
        *,
        probe_name: str = DEFAULT_PROBE_NAME,
        trace: Callable[[str], None] | None = None,
    ) -> None:
        """Store collaborators; *trace* receives verbose diagnostic lines."""
        self._cache = cache
        self._provider = provider
        self._probe_name = probe_name
        self._trace = trace or _ignore

    def run(self, emit: Callable[[ProbeResult], None]) -> ProbeOutcome:
        """Execute the probe, calling *emit* exactly once with the result."""
        try:
            outcome = self._probe(emit)
        except ProbeError as exc:
            self._trace(f"{type(exc).__name__}: {exc}")
            outcome = ProbeOutcome(result=self._error_result(exc.severity, exc), source="error")
            emit(outcome.result)
        except MultipathdError as exc:
            self._trace(f"multipathd query failed: {exc}")
            outcome = ProbeOutcome(
                result=self._error_result(Severity.UNKNOWN, exc), source="error"
            )
            emit(outcome.result)
        return outcome

    # ------------------------------------------------------------------
    def _probe(self, emit: Callable[[ProbeResult], None]) -> ProbeOutcome:
        binary = self._provider.resolve_binary()
        if binary is None:
            raise PreconditionError(
                f"{self._provider.multipathd_bin} not found or not executable"
            )
        self._trace(f"using helper {binary}")

        cached = self._cache.read_if_fresh()
        if cached is not None:
            self._trace(f"cache hit: {self._cache.path}")
            emit(cached)
            return ProbeOutcome(result=cached, source="cache")
        self._trace(f"cache miss: {self._cache.path}; querying multipathd")

        daemon = parse_daemon_status(self._provider.daemon_status())
        self._trace(f"multipathd pid {daemon.pid} {daemon.state}")

        result, counts = aggregate_result(
            parse_path_records(self._provider.path_status()),
            probe_name=self._probe_name,
        )
        self._trace(f"path counts: {counts.perfdata()} total={counts.total}")
        emit(result)

        try:
            persisted = self._cache.write_once_if_absent(result)
        except CacheWriteError as exc:
            self._trace(str(exc))
            return ProbeOutcome(
                result=result,
                source="live",
                counts=counts,
                daemon=daemon,
                persist_error=str(exc),
            )
        if not persisted:
            self._trace("cache already written by another run; keeping it")
        return ProbeOutcome(
            result=result,
            source="live",
            persisted=persisted,
            counts=counts,
            daemon=daemon,
        )

    def _error_result(self, severity: Severity, exc: Exception) -> ProbeResult:
        return build_result(severity, str(exc), probe_name=self._probe_name)


__all__ = ["ProbeCoordinator", "ProbeOutcome", "ResultSource"]
