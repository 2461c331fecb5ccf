"""Structured operation log.

Each probe run is recorded as one JSON object appended to
``<logs_dir>/operations.jsonl``. The log is best effort: the unprivileged
monitoring agent normally cannot write the log directory, so the logger
disables itself on the first filesystem failure instead of disturbing the
single-line plugin output.
"""
from __future__ import annotations

import json
import os
import secrets
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

OPERATIONS_LOG_NAME = "operations.jsonl"


def _sanitize(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [_sanitize(item) for item in value]
    return str(value)


def _iso_now() -> str:
    return datetime.now(UTC).isoformat()


class OperationScope:
    """Collects steps and the final result for a single logged operation."""

    def __init__(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Start timing *command*."""
        self.command = command
        self.op_id = secrets.token_hex(8)
        self._args = dict(args or {})
        self._target = dict(target or {})
        self._started_at = _iso_now()
        self._start = time.perf_counter()
        self._steps: list[dict[str, object]] = []
        self._result: dict[str, object] | None = None

    @property
    def completed(self) -> bool:
        """Return ``True`` once a result has been recorded."""
        return self._result is not None

    def add_step(self, name: str, *, status: str = "success", detail: object = None) -> None:
        """Record an intermediate step."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail is not None:
            step["detail"] = _sanitize(detail)
        self._steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a successful outcome."""
        self._set_result(
            "success",
            message,
            rc=0,
            changed=changed,
            warnings=warnings,
            context=context,
        )

    def warning(
        self,
        message: str,
        *,
        rc: int | None = None,
        changed: int = 0,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record an outcome that completed with warnings."""
        self._set_result(
            "warning",
            message,
            rc=rc,
            changed=changed,
            warnings=warnings,
            errors=errors,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        rc: int | None = None,
        errors: Sequence[str] | None = None,
        warnings: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a failed outcome; ``errors`` defaults to ``[message]``."""
        self._set_result(
            "error",
            message,
            rc=rc,
            warnings=warnings,
            errors=errors or [message],
            context=context,
        )

    def to_record(self) -> dict[str, object]:
        """Return the JSON-safe record for this operation."""
        result = self._result or {"status": "success", "message": "Operation completed."}
        return {
            "id": self.op_id,
            "command": self.command,
            "args": _sanitize(self._args),
            "target": _sanitize(self._target),
            "pid": os.getpid(),
            "started_at": self._started_at,
            "finished_at": _iso_now(),
            "duration_ms": int((time.perf_counter() - self._start) * 1000),
            "steps": list(self._steps),
            "result": result,
        }

    # ------------------------------------------------------------------
    def _set_result(
        self,
        status: str,
        message: str,
        *,
        rc: int | None = None,
        changed: int = 0,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {
            "status": status,
            "message": message,
            "changed": changed,
        }
        if rc is not None:
            result["rc"] = rc
        if warnings:
            result["warnings"] = [str(item) for item in warnings]
        if errors:
            result["errors"] = [str(item) for item in errors]
        if context:
            result["context"] = _sanitize(context)
        self._result = result


class StructuredLogger:
    """Append operation records to a JSON-lines file."""

    def __init__(self, log_dir: Path) -> None:
        """Prepare *log_dir*; disable logging when it cannot be created."""
        self._log_dir = Path(log_dir)
        self._operations_log_path = self._log_dir / OPERATIONS_LOG_NAME
        self._enabled = True
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False

    @property
    def enabled(self) -> bool:
        """Return ``True`` while records are still being written."""
        return self._enabled

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Log the enclosed block as one operation.

        An exception escaping the block is recorded as an error (unless a
        result was already recorded) and then re-raised.
        """
        scope = OperationScope(command, args=args, target=target)
        try:
            yield scope
        except Exception as exc:
            if not scope.completed:
                scope.error(f"{type(exc).__name__}: {exc}")
            raise
        finally:
            self._write(scope.to_record())

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError:
            self._enabled = False


__all__ = ["OPERATIONS_LOG_NAME", "OperationScope", "StructuredLogger"]
