"""multipathd provider: the privileged data source behind the probe."""
from __future__ import annotations

import os
import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..paths import is_privilege_signal


class MultipathdError(RuntimeError):
    """Raised when the multipathd helper cannot be executed."""


DEFAULT_MULTIPATHD_BIN = "/sbin/multipathd"


@dataclass(slots=True)
class MultipathdProvider:
    """Run ``multipathd show`` queries and hand back their output lines."""

    multipathd_bin: str = DEFAULT_MULTIPATHD_BIN
    timeout: float | None = None

    def resolve_binary(self) -> Path | None:
        """Return the executable helper path, or ``None`` when unavailable."""
        candidate = Path(self.multipathd_bin)
        if candidate.is_absolute() or str(candidate.parent) not in {"", "."}:
            if candidate.is_file() and os.access(candidate, os.X_OK):
                return candidate
            return None
        resolved = shutil.which(self.multipathd_bin)
        if resolved is None or not os.access(resolved, os.X_OK):
            return None
        return Path(resolved)

    def daemon_status(self) -> list[str]:
        """Return the output lines of ``multipathd show daemon``.

        A non-zero exit is not an error here: it is how a stopped daemon
        shows up, and the caller reads that from the missing pid line.
        """
        return self._show("daemon", check=False)

    def path_status(self) -> list[str]:
        """Return the output lines of ``multipathd show paths``.

        Raises :class:`MultipathdError` when the query exits non-zero without
        reporting missing privileges.
        """
        return self._show("paths", check=True)

    # ------------------------------------------------------------------
    def _show(self, topic: str, *, check: bool) -> list[str]:
        error_prefix = f"{self.multipathd_bin} show {topic}"
        result = self._run_command(
            [self.multipathd_bin, "show", topic],
            error_prefix=error_prefix,
        )
        # Privilege complaints arrive on stderr; scan them before any rows.
        stderr = getattr(result, "stderr", "") or ""
        stdout = getattr(result, "stdout", "") or ""
        lines = [*stderr.splitlines(), *stdout.splitlines()]
        returncode = getattr(result, "returncode", 0)
        if check and returncode != 0 and not any(is_privilege_signal(line) for line in lines):
            detail = stderr.strip() or stdout.strip() or "no output"
            raise MultipathdError(f"{error_prefix} failed (exit {returncode}): {detail}")
        return lines

    def _run_command(
        self,
        args: Sequence[str],
        *,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(  # noqa: S603
                list(args),
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise MultipathdError(f"{args[0]} not found: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise MultipathdError(
                f"{error_prefix} timed out after {exc.timeout:g}s"
            ) from exc
        except OSError as exc:
            raise MultipathdError(f"{error_prefix} failed: {exc}") from exc


__all__ = ["DEFAULT_MULTIPATHD_BIN", "MultipathdError", "MultipathdProvider"]
