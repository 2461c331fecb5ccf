"""Shared cache file between the privileged producer and unprivileged readers.

The producer (a root cron job) runs the live query and leaves its output line
in a well-known file. Any later invocation, privileged or not, replays that
line while it is fresh. Two age thresholds govern the file:

``stale_after``
    Older files are deleted by whoever can write them, forcing the next
    privileged run to query live again. Readers that cannot write the file
    leave it alone because they could not recreate it.

``absent_after``
    A file this old that is still present means nobody with write access has
    run for a while: the producer cron job is presumed inactive.

Writes are exclusive. A result is staged in a temporary file and hard-linked
onto the cache path, which fails if another process got there first. That
loser's result is simply not persisted.
"""
from __future__ import annotations

import os
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from .errors import CacheWriteError, ParseAmbiguityError, StaleCacheError
from .models import DEFAULT_PROBE_NAME, ProbeResult, build_result, severity_from_text

DEFAULT_CACHE_PATH = Path("/var/tmp/check_multipath.cache")
DEFAULT_STALE_AFTER = 240.0
DEFAULT_ABSENT_AFTER = 900.0
DEFAULT_CACHE_MODE = 0o644


@dataclass(slots=True)
class CacheStore:
    """Read and persist probe results through a single cache file."""

    path: Path = DEFAULT_CACHE_PATH
    stale_after: float = DEFAULT_STALE_AFTER
    absent_after: float = DEFAULT_ABSENT_AFTER
    mode: int = DEFAULT_CACHE_MODE
    probe_name: str = DEFAULT_PROBE_NAME
    clock: Callable[[], float] = field(default=time.time)

    def age(self) -> float | None:
        """Return the cache age in seconds, or ``None`` when the file is missing."""
        try:
            info = self.path.stat()
        except FileNotFoundError:
            return None
        return max(self.clock() - info.st_mtime, 0.0)

    def evict(self) -> bool:
        """Delete the cache file if this process may; return ``True`` on removal."""
        if not self._can_evict():
            return False
        try:
            self.path.unlink()
        except OSError:
            return False
        return True

    def read_if_fresh(self) -> ProbeResult | None:
        """Return the cached result, or ``None`` when a live query is needed.

        Raises :class:`ParseAmbiguityError` when a fresh file carries no
        severity keyword.
        """
        age = self.age()
        if age is None:
            return None

        if age >= self.stale_after:
            self.evict()
            if not self.path.exists():
                return None

        if age >= self.absent_after:
            return self._inactive_result(age)

        try:
            text = self.path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            # Evicted by a concurrent writer between stat and read.
            return None

        line = _first_meaningful_line(text)
        severity = severity_from_text(line) if line else None
        if severity is None:
            raise ParseAmbiguityError(
                f"cache file {self.path} has no recognisable severity keyword"
            )
        return ProbeResult(severity=severity, message=line)

    def write_once_if_absent(self, result: ProbeResult) -> bool:
        """Persist *result* unless a cache file already exists.

        Returns ``True`` when this call created the file and ``False`` when
        another process had already written one. Raises
        :class:`CacheWriteError` for any other filesystem failure.
        """
        if self.path.exists():
            return False

        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_name = tempfile.mkstemp(dir=str(directory), prefix=f".{self.path.name}.")
        except OSError as exc:
            raise CacheWriteError(f"Cannot create cache file {self.path}: {exc}") from exc

        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                handle.write(f"{result.message}\n")
            os.chmod(tmp_path, self.mode)
            os.link(tmp_path, self.path)
        except FileExistsError:
            return False
        except OSError as exc:
            raise CacheWriteError(f"Cannot write cache file {self.path}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)
        return True

    # ------------------------------------------------------------------
    def _can_evict(self) -> bool:
        return os.access(self.path, os.W_OK)

    def _inactive_result(self, age: float) -> ProbeResult:
        error = StaleCacheError(
            f"cache file {self.path} is {int(age)}s old, "
            "the multipath cron job appears inactive"
        )
        return build_result(error.severity, str(error), probe_name=self.probe_name)


def _first_meaningful_line(text: str) -> str:
    for line in text.splitlines():
        stripped = line.strip()
        if stripped:
            return stripped
    return ""


__all__ = [
    "CacheStore",
    "DEFAULT_ABSENT_AFTER",
    "DEFAULT_CACHE_MODE",
    "DEFAULT_CACHE_PATH",
    "DEFAULT_STALE_AFTER",
]
