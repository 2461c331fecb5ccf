"""Tests for the shared cache file protocol."""
from __future__ import annotations

import errno
import stat
from collections.abc import Callable
from pathlib import Path

import pytest

from mpathprobe.cache import CacheStore
from mpathprobe.errors import CacheWriteError, ParseAmbiguityError
from mpathprobe.models import ProbeResult, Severity, build_result

WARN_LINE = "MULTIPATH WARN - 2 faulty of 8 paths | active=6 passive=0 faulty=2 shaky=0"
OK_LINE = "MULTIPATH OK - 8 active, 0 passive of 8 paths | active=8 passive=0 faulty=0 shaky=0"


@pytest.fixture
def unprivileged(monkeypatch: pytest.MonkeyPatch) -> None:
    """Behave like a reader that cannot write the cache file."""
    monkeypatch.setattr(CacheStore, "_can_evict", lambda self: False)


def test_missing_file_is_a_miss(store: CacheStore) -> None:
    """No cache file means a live query is needed."""
    assert store.read_if_fresh() is None
    assert store.age() is None


@pytest.mark.parametrize("age", [0.0, 30.0, 239.0])
def test_fresh_file_is_replayed_and_kept(
    store: CacheStore,
    write_cache: Callable[..., Path],
    age: float,
) -> None:
    """Files younger than the stale window are never deleted."""
    path = write_cache(f"{WARN_LINE}\n", age=age)

    result = store.read_if_fresh()

    assert result == ProbeResult(severity=Severity.WARN, message=WARN_LINE)
    assert path.exists()


def test_read_is_idempotent(store: CacheStore, write_cache: Callable[..., Path]) -> None:
    """Re-reading an unmodified fresh file yields equal results."""
    write_cache(f"\n\n{OK_LINE}\n", age=10)

    first = store.read_if_fresh()
    second = store.read_if_fresh()

    assert first is not None
    assert first == second
    assert first.severity is Severity.OK


@pytest.mark.parametrize("age", [240.0, 500.0, 899.0])
def test_stale_writable_file_is_evicted(
    store: CacheStore,
    write_cache: Callable[..., Path],
    age: float,
) -> None:
    """A writable file past the stale window is removed and the read misses."""
    path = write_cache(f"{OK_LINE}\n", age=age)

    assert store.read_if_fresh() is None
    assert not path.exists()


@pytest.mark.usefixtures("unprivileged")
def test_stale_unwritable_file_is_still_replayed(
    store: CacheStore,
    write_cache: Callable[..., Path],
) -> None:
    """A reader that cannot recreate the file leaves it alone."""
    path = write_cache(f"{WARN_LINE}\n", age=600)

    result = store.read_if_fresh()

    assert result is not None
    assert result.severity is Severity.WARN
    assert path.exists()


@pytest.mark.usefixtures("unprivileged")
@pytest.mark.parametrize("content", [f"{OK_LINE}\n", "MULTIPATH CRITICAL - x\n", "", "garbage\n"])
def test_absent_producer_yields_inactive_warning(
    store: CacheStore,
    write_cache: Callable[..., Path],
    content: str,
) -> None:
    """A surviving file past the absent window always reports an inactive producer."""
    path = write_cache(content, age=900)

    result = store.read_if_fresh()

    assert result is not None
    assert result.severity is Severity.WARN
    assert "cron job appears inactive" in result.message
    assert str(path) in result.message
    assert path.exists()


def test_absent_writable_file_is_evicted(
    store: CacheStore,
    write_cache: Callable[..., Path],
) -> None:
    """The producer itself removes an ancient file and queries live."""
    path = write_cache(f"{OK_LINE}\n", age=5000)

    assert store.read_if_fresh() is None
    assert not path.exists()


@pytest.mark.parametrize(
    ("line", "severity"),
    [
        ("MULTIPATH CRITICAL - replayed", Severity.CRITICAL),
        ("MULTIPATH UNKNOWN - replayed", Severity.UNKNOWN),
        ("MULTIPATH OK - but WARN mentioned", Severity.WARN),
        ("MULTIPATH WARN - and CRITICAL mentioned", Severity.CRITICAL),
    ],
)
def test_keyword_precedence_on_replay(
    store: CacheStore,
    write_cache: Callable[..., Path],
    line: str,
    severity: Severity,
) -> None:
    """CRITICAL beats WARN beats UNKNOWN beats OK when several appear."""
    write_cache(f"{line}\n")

    result = store.read_if_fresh()

    assert result is not None
    assert result.severity is severity
    assert result.message == line


@pytest.mark.parametrize("content", ["", "\n  \n", "no keyword here\n"])
def test_unrecognised_content_raises_and_keeps_file(
    store: CacheStore,
    write_cache: Callable[..., Path],
    content: str,
) -> None:
    """A fresh file without a keyword is an explicit parse ambiguity, left in place."""
    path = write_cache(content, age=5)

    with pytest.raises(ParseAmbiguityError):
        store.read_if_fresh()
    assert path.exists()


def test_unrecognised_content_clears_once_stale(
    store: CacheStore,
    write_cache: Callable[..., Path],
) -> None:
    """A corrupt entry goes away through the normal stale eviction."""
    path = write_cache("garbage\n", age=300)

    assert store.read_if_fresh() is None
    assert not path.exists()


def test_evict_tolerates_filesystem_errors(
    store: CacheStore,
    write_cache: Callable[..., Path],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Eviction is best effort: a read-only filesystem does not escape."""
    path = write_cache(f"{OK_LINE}\n", age=300)

    def fail_unlink(self: Path, *args: object, **kwargs: object) -> None:
        raise OSError(errno.EROFS, "Read-only file system")

    monkeypatch.setattr(Path, "unlink", fail_unlink)

    assert store.evict() is False
    result = store.read_if_fresh()
    assert result is not None
    assert result.severity is Severity.OK
    assert path.exists()


def test_write_once_creates_world_readable_file(store: CacheStore, cache_path: Path) -> None:
    """The first write creates the file with 0644 permissions."""
    result = build_result(Severity.WARN, "2 faulty of 8 paths", "faulty=2")

    assert store.write_once_if_absent(result) is True

    assert cache_path.read_text(encoding="utf-8") == f"{result.message}\n"
    assert stat.S_IMODE(cache_path.stat().st_mode) == 0o644
    assert [entry.name for entry in cache_path.parent.iterdir()] == [cache_path.name]


def test_write_once_never_clobbers(store: CacheStore, cache_path: Path) -> None:
    """A second write leaves the first content untouched."""
    first = build_result(Severity.WARN, "2 faulty of 8 paths")
    second = build_result(Severity.OK, "8 active, 0 passive of 8 paths")

    assert store.write_once_if_absent(first) is True
    assert store.write_once_if_absent(second) is False

    assert cache_path.read_text(encoding="utf-8") == f"{first.message}\n"


def test_write_loses_race_quietly(
    store: CacheStore,
    cache_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """If another process links first, the write reports False and cleans up."""
    winner = build_result(Severity.OK, "8 active, 0 passive of 8 paths")
    loser = build_result(Severity.WARN, "1 faulty of 8 paths")
    cache_path.parent.mkdir(parents=True)

    original_exists = Path.exists
    calls = {"count": 0}

    def racing_exists(self: Path) -> bool:
        if self == cache_path and calls["count"] == 0:
            calls["count"] += 1
            cache_path.write_text(f"{winner.message}\n", encoding="utf-8")
            return False
        return original_exists(self)

    monkeypatch.setattr(Path, "exists", racing_exists)

    assert store.write_once_if_absent(loser) is False
    assert cache_path.read_text(encoding="utf-8") == f"{winner.message}\n"
    assert [entry.name for entry in cache_path.parent.iterdir()] == [cache_path.name]


def test_write_failure_raises_cache_write_error(
    store: CacheStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Filesystem failures other than a lost race surface as CacheWriteError."""

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        raise PermissionError("read-only")

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    with pytest.raises(CacheWriteError, match="Cannot create cache file"):
        store.write_once_if_absent(build_result(Severity.OK, "fine"))


def test_written_entry_is_replayed(store: CacheStore) -> None:
    """What the producer writes, the consumer reads back verbatim."""
    result = build_result(Severity.WARN, "3 shaky of 8 paths", "shaky=3")
    store.write_once_if_absent(result)

    assert store.read_if_fresh() == result


def test_clock_drives_age(cache_path: Path, write_cache: Callable[..., Path]) -> None:
    """Age is measured against the injected clock."""
    path = write_cache(f"{OK_LINE}\n")
    mtime = path.stat().st_mtime
    store = CacheStore(path=cache_path, clock=lambda: mtime + 300)

    assert store.age() == pytest.approx(300)
    assert store.read_if_fresh() is None
