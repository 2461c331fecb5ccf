"""Provider interfaces for mpathprobe."""
from __future__ import annotations

from .multipathd import DEFAULT_MULTIPATHD_BIN, MultipathdError, MultipathdProvider

__all__ = [
    "DEFAULT_MULTIPATHD_BIN",
    "MultipathdError",
    "MultipathdProvider",
]
