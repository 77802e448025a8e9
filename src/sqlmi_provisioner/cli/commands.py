"""CLI command implementations."""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Literal

import typer

from sqlmi_provisioner.cli import app
from sqlmi_provisioner.cli.errors import handle_error
from sqlmi_provisioner.cli.formatting import (
    ACTION_STYLES,
    format_apply_summary,
    format_drift,
    format_plan,
    format_plan_summary,
    key_description,
    styler,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sqlmi_provisioner.config.schema import Config
    from sqlmi_provisioner.engine.types import ApplyResult, Plan, ProtectorChange

DEFAULT_CONFIG = Path("sqlmi-provisioner.yaml")

ConfigPath = Annotated[
    Path,
    typer.Option("--config", "-c", help="Path to the configuration file."),
]

NoColor = Annotated[
    bool,
    typer.Option("--no-color", help="Disable colored output."),
]

AutoApprove = Annotated[
    bool,
    typer.Option("--auto-approve", help="Skip interactive approval."),
]

NoRefresh = Annotated[
    bool,
    typer.Option("--no-refresh", help="Plan against state as recorded, without reading Azure."),
]


def _use_color(no_color: bool) -> bool:
    return not (no_color or os.environ.get("NO_COLOR"))


@contextmanager
def _errors_to_exit(color: bool) -> Iterator[None]:
    try:
        yield
    except (typer.Exit, typer.Abort):
        raise
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc


def _confirm(question: str, *, canceled: str) -> None:
    try:
        typer.confirm(question, abort=True)
    except typer.Abort as e:
        typer.echo(canceled, err=True)
        raise typer.Exit(1) from e


def _apply_with_progress(plan_obj: Plan, cfg: Config, *, color: bool) -> ApplyResult:
    """Apply a plan with a Rich progress bar and a status line per protector."""
    from rich.console import Console
    from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

    from sqlmi_provisioner.config import apply

    console = Console(no_color=not color)
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Applying", total=len(plan_obj.actionable))

        def on_progress(change: ProtectorChange, event: Literal["start", "done"]) -> None:
            s = ACTION_STYLES[change.action]
            if event == "start":
                progress.update(task, description=f"{change.address}: {s.running}...")
            else:
                progress.console.print(f"  {change.address}: {s.done}")
                progress.advance(task)

        return apply(plan_obj, cfg, progress=on_progress)


def _show_and_apply(
    plan_obj: Plan, cfg: Config, *, color: bool, auto_approve: bool, question: str
) -> None:
    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(plan_obj, color=color))
    typer.echo()

    if not auto_approve:
        _confirm(question, canceled="Apply canceled.")

    with _errors_to_exit(color):
        result = _apply_with_progress(plan_obj, cfg, color=color)

    typer.echo()
    typer.echo(format_apply_summary(result.summary(), color=color))


@app.command()
def plan(
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
    no_refresh: NoRefresh = False,
) -> None:
    """Show the protector changes the configuration requires. Exits 2 when there are any."""
    from sqlmi_provisioner.config import load
    from sqlmi_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    with _errors_to_exit(color):
        plan_obj = plan_fn(load(config), refresh=not no_refresh)

    typer.echo(format_plan(plan_obj, color=color))
    if plan_obj.actionable:
        typer.echo()
        typer.echo(format_plan_summary(plan_obj, color=color))
        raise typer.Exit(2)


@app.command(name="apply")
def apply_cmd(
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
    no_refresh: NoRefresh = False,
) -> None:
    """Point each managed instance at its configured protector key."""
    from sqlmi_provisioner.config import load
    from sqlmi_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    with _errors_to_exit(color):
        cfg = load(config)
        plan_obj = plan_fn(cfg, refresh=not no_refresh)

    if not plan_obj.actionable:
        typer.echo("No changes. Protectors are up-to-date.")
        return
    _show_and_apply(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        question="Do you want to apply these changes?",
    )


@app.command()
def destroy(
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Reset every managed protector to the service-managed key and forget it."""
    from sqlmi_provisioner.config import load
    from sqlmi_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    with _errors_to_exit(color):
        cfg = load(config)
        plan_obj = plan_fn(cfg, destroy=True)

    if not plan_obj.actionable:
        typer.echo("No protectors are managed in this workspace.")
        return
    _show_and_apply(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        question="Reset these managed instances to the service-managed key?",
    )


@app.command(name="refresh")
def refresh_cmd(
    config: ConfigPath = DEFAULT_CONFIG,
    check: Annotated[
        bool,
        typer.Option("--check", help="Only report drift; exit 2 when there is any."),
    ] = False,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Re-read managed protectors from Azure and update the state file."""
    from sqlmi_provisioner.config import load, save_state
    from sqlmi_provisioner.config import refresh as refresh_fn

    color = _use_color(no_color)
    with _errors_to_exit(color):
        cfg = load(config)
        state, found = refresh_fn(cfg)

    if not found:
        typer.echo("No drift. State matches Azure.")
        return

    typer.echo("Drift detected:\n")
    typer.echo(format_drift(found, color=color))
    typer.echo()
    if check:
        raise typer.Exit(2)

    if not auto_approve:
        _confirm("Do you want to update the state file?", canceled="Refresh canceled.")

    with _errors_to_exit(color):
        save_state(cfg, state)
    count = len(state.protectors)
    typer.echo(f"State refreshed. {count} protector{'s' if count != 1 else ''} tracked.")


@app.command(name="import")
def import_cmd(
    address: Annotated[
        str,
        typer.Argument(help="Resource address, e.g. sqlmi_transparent_data_encryption.main"),
    ],
    resource_id: Annotated[
        str,
        typer.Argument(help="Azure ID of the managed instance encryption protector."),
    ],
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Adopt an existing encryption protector into state."""
    from sqlmi_provisioner.config import import_resource, load

    color = _use_color(no_color)
    with _errors_to_exit(color):
        entry = import_resource(load(config), address, resource_id)

    p = entry.protector
    typer.echo(styler(color)(f"Imported {p.id} as {entry.address}.", fg="green"))
    typer.echo(f"  {key_description(p.server_key_type, p.server_key_name)}")


@app.command()
def validate(
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Check the configuration without contacting Azure."""
    from sqlmi_provisioner.config import load
    from sqlmi_provisioner.config import validate as validate_fn

    color = _use_color(no_color)
    with _errors_to_exit(color):
        cfg = load(config)
        validate_fn(cfg)

    count = len(cfg.resources)
    message = f"Configuration is valid ({count} protector{'s' if count != 1 else ''})."
    typer.echo(styler(color)(message, fg="green"))
