"""Map exceptions to clean stderr messages and exit codes."""

from __future__ import annotations

import typer

from sqlmi_provisioner.cli.formatting import ACTION_STYLES, format_counts
from sqlmi_provisioner.config.loader import ConfigError
from sqlmi_provisioner.engine.errors import (
    ApplyCanceled,
    ApplyError,
    OperationTimeoutError,
    ResourceImportError,
    StalePlanError,
    StateLockError,
    StateWorkspaceMismatchError,
    ValidationError,
)

_LABELS: tuple[tuple[type[Exception], str], ...] = (
    (ConfigError, "Configuration error"),
    (StalePlanError, "Plan is stale"),
    (StateWorkspaceMismatchError, "State mismatch"),
    (StateLockError, "State locked"),
    (ResourceImportError, "Import failed"),
    (OperationTimeoutError, "Timeout"),
)


def _err(msg: str, *, fg: str | None) -> None:
    typer.echo(typer.style(msg, fg=fg), err=True)


def _partial(exc: ApplyError, fg: str | None) -> None:
    summary = exc.result.summary()
    if summary:
        done = {action: style.done for action, style in ACTION_STYLES.items()}
        _err(f"  Completed before the failure: {format_counts(summary, done)}.", fg=fg)


def handle_error(exc: Exception, *, color: bool = True) -> int:
    """Print a clean error message to stderr and return an exit code.

    All errors map to exit code 1.  No tracebacks are printed.
    """
    fg = typer.colors.RED if color else None

    if isinstance(exc, ValidationError):
        _err("Validation failed:", fg=fg)
        for e in exc.errors:
            _err(f"  - {e}", fg=fg)
    elif isinstance(exc, ApplyCanceled):
        _err(f"Apply canceled at {exc.address}; state keeps what completed.", fg=fg)
        _partial(exc, fg)
    elif isinstance(exc, ApplyError):
        _err(f"Apply failed: {exc}", fg=fg)
        _partial(exc, fg)
    else:
        label = next((text for kind, text in _LABELS if isinstance(exc, kind)), "Error")
        _err(f"{label}: {exc}", fg=fg)
    return 1
