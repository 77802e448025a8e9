"""Command line interface: ``sqlmi-provisioner plan | apply | destroy | refresh | import``."""

from __future__ import annotations

import logging
import os
import sys

import typer

from sqlmi_provisioner import __version__

app = typer.Typer(
    name="sqlmi-provisioner",
    no_args_is_help=True,
    add_completion=False,
)

LOG_ENV = "SQLMI_LOG"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"sqlmi-provisioner {__version__}")
        raise typer.Exit


def _log_level(verbose: int) -> int | None:
    """``SQLMI_LOG`` wins over ``-v``/``-vv``; ``None`` leaves logging unconfigured."""
    name = os.environ.get(LOG_ENV, "").strip().upper()
    if name:
        level = logging.getLevelName(name)
        if isinstance(level, int):
            return level
        typer.echo(f"WARNING: ignoring unknown {LOG_ENV} level {name!r}; using INFO", err=True)
        return logging.INFO
    if verbose:
        return logging.DEBUG if verbose > 1 else logging.INFO
    return None


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase log verbosity (-v info, -vv debug).",
    ),
) -> None:
    """Manage transparent data encryption protectors of Azure SQL Managed Instances."""
    _ = version
    level = _log_level(verbose)
    if level is None:
        return
    logging.basicConfig(
        level=logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )
    # Azure SDK loggers stay at WARNING.
    logging.getLogger("sqlmi_provisioner").setLevel(level)


# Register commands after app is created to avoid circular imports.
from sqlmi_provisioner.cli import commands as _commands  # noqa: E402, F401
