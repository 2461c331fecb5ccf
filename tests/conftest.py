"""Shared fixtures for the mpathprobe test suite."""

from __future__ import annotations

import os
import time
from collections.abc import Callable
from pathlib import Path

import pytest

from mpathprobe.cache import CacheStore

PATHS_HEADER = "hcil     dev dev_t pri dm_st  chk_st dev_st  next_check"


def _path_row(index: int, checker: str, *, dm_state: str = "active") -> str:
    device = "sd" + chr(ord("b") + index)
    return (
        f"{index + 1}:0:0:{index} {device} 8:{16 * (index + 1)} 50 "
        f"{dm_state} {checker} running XX........ 1/20"
    )


@pytest.fixture
def paths_output() -> Callable[..., list[str]]:
    """Return a builder for ``multipathd show paths`` output.

    ``paths_output(faulty=2, ready=6)`` yields a header plus one row per
    path, each on its own ``sd`` device.
    """

    def _build(**states: int) -> list[str]:
        lines = [PATHS_HEADER]
        index = 0
        for checker, count in states.items():
            for _ in range(count):
                dm_state = "failed" if checker == "faulty" else "active"
                lines.append(_path_row(index, checker, dm_state=dm_state))
                index += 1
        return lines

    return _build


@pytest.fixture
def cache_path(tmp_path: Path) -> Path:
    """Return the cache location used by a test (not created)."""
    return tmp_path / "cache" / "check_multipath.cache"


@pytest.fixture
def store(cache_path: Path) -> CacheStore:
    """Return a cache store with the default thresholds."""
    return CacheStore(path=cache_path)


@pytest.fixture
def write_cache(cache_path: Path) -> Callable[..., Path]:
    """Return a helper that writes the cache file and back-dates its mtime."""

    def _write(content: str, *, age: float = 0.0) -> Path:
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        cache_path.write_text(content, encoding="utf-8")
        stamp = time.time() - age
        os.utime(cache_path, (stamp, stamp))
        return cache_path

    return _write
