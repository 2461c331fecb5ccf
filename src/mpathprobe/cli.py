"""Typer-powered command line entry point for ``check_multipath``.

The plugin prints exactly one line to stdout and exits with the Nagios code
for its severity. Everything else (verbose tracing, configuration problems
found before a result exists) goes to stderr or to the operation log.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from . import __version__
from .cache import CacheStore
from .config import AppConfig, ConfigError, load_config
from .coordinator import ProbeCoordinator, ProbeOutcome
from .logging import OperationScope, StructuredLogger
from .models import DEFAULT_PROBE_NAME, ProbeResult, Severity, build_result
from .providers import MultipathdProvider

console = Console(highlight=False, emoji=False)
err_console = Console(stderr=True, highlight=False, emoji=False)

app = typer.Typer(
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
    help="Report dm-multipath path health to Nagios-compatible monitoring.",
)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to mpathprobe's YAML config file.",
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects for one invocation."""

    config: AppConfig
    logger: StructuredLogger
    cache: CacheStore
    provider: MultipathdProvider


def _build_runtime(config_file: Path | None) -> RuntimeContext:
    config = load_config(config_file=config_file)
    cache = CacheStore(
        path=config.cache.path,
        stale_after=config.cache.stale_after,
        absent_after=config.cache.absent_after,
        mode=config.cache.mode,
        probe_name=config.probe_name,
    )
    provider = MultipathdProvider(
        multipathd_bin=config.multipathd.bin,
        timeout=config.multipathd.timeout,
    )
    return RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        cache=cache,
        provider=provider,
    )


def _emit(result: ProbeResult) -> None:
    console.print(result.message, markup=False, soft_wrap=True)


def _tracer(verbose: bool) -> Callable[[str], None] | None:
    if not verbose:
        return None

    def _trace(message: str) -> None:
        err_console.print(f"[dim]check_multipath:[/dim] {escape(message)}")

    return _trace


def _record_outcome(op: OperationScope, outcome: ProbeOutcome) -> None:
    result = outcome.result
    context: dict[str, object] = {
        "source": outcome.source,
        "line": result.message,
        "persisted": outcome.persisted,
    }
    if outcome.counts is not None:
        context["counts"] = {
            "active": outcome.counts.active,
            "passive": outcome.counts.passive,
            "faulty": outcome.counts.faulty,
            "shaky": outcome.counts.shaky,
            "total": outcome.counts.total,
        }
    if outcome.daemon is not None:
        context["daemon"] = {"pid": outcome.daemon.pid, "state": outcome.daemon.state}

    op.add_step(f"result.{outcome.source}", detail=result.severity.value)
    if outcome.persist_error:
        op.add_step("cache.write", status="error", detail=outcome.persist_error)
    elif outcome.source == "live":
        op.add_step(
            "cache.write",
            status="success" if outcome.persisted else "skipped",
            detail=str(outcome.persisted),
        )

    rc = int(result.exit_code)
    warnings = [outcome.persist_error] if outcome.persist_error else None
    if result.severity is Severity.OK:
        if warnings:
            op.warning("Probe reported OK; cache write failed.", rc=rc, warnings=warnings, context=context)
        else:
            op.success("Probe reported OK.", context=context)
    elif result.severity is Severity.WARN:
        op.warning("Probe reported WARN.", rc=rc, warnings=warnings, context=context)
    else:
        op.error(
            f"Probe reported {result.severity.value}.",
            rc=rc,
            warnings=warnings,
            context=context,
        )


@app.command()
def main(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Trace probe decisions to stderr.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the mpathprobe version and exit.",
    ),
) -> None:
    """Check multipath path states, replaying the shared cache when fresh."""
    if version:
        console.print(f"mpathprobe {__version__}", markup=False)
        raise typer.Exit(code=0)

    trace = _tracer(verbose)
    try:
        runtime = _build_runtime(config_file)
    except ConfigError as exc:
        if trace is not None:
            trace(f"configuration error: {exc}")
        result = build_result(
            Severity.UNKNOWN, f"configuration error: {exc}", probe_name=DEFAULT_PROBE_NAME
        )
        _emit(result)
        raise typer.Exit(code=int(result.exit_code)) from exc

    if trace is not None and not runtime.logger.enabled:
        trace(f"operation log disabled; cannot write {runtime.config.logs_dir}")

    coordinator = ProbeCoordinator(
        runtime.cache,
        runtime.provider,
        probe_name=runtime.config.probe_name,
        trace=trace,
    )
    emitted: list[ProbeResult] = []

    def emit(result: ProbeResult) -> None:
        emitted.append(result)
        _emit(result)

    with runtime.logger.operation(
        "check",
        args={"verbose": verbose, "config_file": config_file},
        target={"kind": "cache", "path": runtime.config.cache.path},
    ) as op:
        try:
            outcome = coordinator.run(emit)
        except Exception as exc:  # noqa: BLE001 - the plugin must always print a line
            if trace is not None:
                trace(f"unexpected failure: {exc!r}")
            if emitted:
                result = emitted[0]
            else:
                result = build_result(
                    Severity.UNKNOWN,
                    f"unexpected error: {exc}",
                    probe_name=runtime.config.probe_name,
                )
                _emit(result)
            op.error(f"Unexpected failure: {exc}", rc=int(result.exit_code))
            raise typer.Exit(code=int(result.exit_code)) from exc
        _record_outcome(op, outcome)

    raise typer.Exit(code=int(outcome.result.exit_code))


__all__ = ["app", "main"]
