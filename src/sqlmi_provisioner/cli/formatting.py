"""Rendering of protector plans, drift and apply summaries."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, NamedTuple

import typer

from sqlmi_provisioner.engine.types import Action

if TYPE_CHECKING:
    from collections import Counter
    from collections.abc import Callable, Iterable

    from sqlmi_provisioner.engine.types import Plan, ProtectorChange


class ActionStyle(NamedTuple):
    color: str
    symbol: str
    title: str
    running: str
    done: str


ACTION_STYLES: dict[Action, ActionStyle] = {
    Action.CREATE: ActionStyle("green", "+", "will be configured", "Configuring", "configured"),
    Action.UPDATE: ActionStyle("yellow", "~", "will be updated in-place", "Updating", "updated"),
    Action.REPLACE: ActionStyle(
        "magenta", "-/+", "moves to another managed instance", "Moving", "moved"
    ),
    Action.DELETE: ActionStyle("red", "-", "will be released", "Releasing", "released"),
    Action.NOOP: ActionStyle("bright_black", " ", "is up-to-date", "", ""),
}

_COUNTED = (Action.CREATE, Action.UPDATE, Action.REPLACE, Action.DELETE)
_PLAN_VERBS = {
    Action.CREATE: "to configure",
    Action.UPDATE: "to update",
    Action.REPLACE: "to move",
    Action.DELETE: "to release",
}


def styler(color: bool) -> Callable[..., str]:
    """Return ``typer.style`` when *color* is True, otherwise a passthrough."""
    if color:
        return typer.style
    return lambda text, **_kw: text


def _value(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, str):
        return f'"{value}"'
    return "null" if value is None else str(value)


def _aligned(items: dict[str, str]) -> list[str]:
    width = max((len(k) for k in items), default=0)
    return [f"{k.ljust(width)} = {v}" for k, v in items.items()]


def key_description(key_type: str, key_name: str) -> str:
    if key_name:
        return f"{key_type} key {key_name}"
    return f"{key_type} key"


def _settings_lines(change: ProtectorChange) -> list[str]:
    if change.action is Action.CREATE and change.desired is not None:
        return _aligned({k: _value(v) for k, v in change.desired.items() if k != "name"})
    lines = {}
    for field, fc in change.changes.items():
        text = f"{_value(fc.before)} -> {_value(fc.after)}"
        lines[field] = text + (" # forces replacement" if fc.forces_replacement else "")
    return _aligned(lines)


def _release_line(change: ProtectorChange) -> str | None:
    if change.prior is None or change.action not in (Action.DELETE, Action.REPLACE):
        return None
    instance = change.prior.managed_instance_id
    if change.handover_to is not None:
        return f"= {instance} keeps its protector, now managed by {change.handover_to}"
    return f"! {instance} will be reset to the service-managed key"


def format_change(change: ProtectorChange, *, color: bool = True) -> str:
    """Render one planned protector change."""
    style = styler(color)
    s = ACTION_STYLES[change.action]
    fg = {"fg": s.color}
    inner = "~" if change.action is Action.REPLACE else s.symbol

    lines = [
        style(f"  # {change.address} {s.title}", bold=True, **fg),
        style(f'  {s.symbol} protector "{change.name}" {{', **fg),
    ]
    if change.desired is not None:
        lines.append(
            style(f"      key: {key_description(change.key_type, change.key_name)}", **fg)
        )
    lines.extend(style(f"      {inner} {line}", **fg) for line in _settings_lines(change))
    lines.append(style("    }", **fg))

    release = _release_line(change)
    if release is not None:
        warn = release.startswith("!")
        lines.append(style(f"    {release}", fg="red" if warn else None, bold=warn))
    return "\n".join(lines)


def format_plan(plan: Plan, *, color: bool = True) -> str:
    blocks = [format_change(c, color=color) for c in plan.actionable]
    if not blocks:
        return "No changes. Protectors are up-to-date."
    return "\n\n".join(blocks)


def format_drift(changes: Iterable[ProtectorChange], *, color: bool = True) -> str:
    """Render what a refresh found changed in Azure since state was written."""
    style = styler(color)
    blocks = []
    for change in changes:
        if change.action is Action.DELETE:
            blocks.append(
                style(f"  # {change.address} no longer exists in Azure", bold=True, fg="red")
            )
            continue
        lines = [style(f"  # {change.address} changed outside sqlmi-provisioner", fg="yellow")]
        lines.extend(
            style(f"      ~ {line}", fg="yellow") for line in _settings_lines(change)
        )
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def count_resets(changes: Iterable[ProtectorChange]) -> int:
    return sum(1 for c in changes if c.resets_instance)


def format_counts(summary: Counter[Action], verbs: dict[Action, str]) -> str:
    return ", ".join(f"{summary.get(action, 0)} {verbs[action]}" for action in _COUNTED)


def format_plan_summary(plan: Plan, *, color: bool = True) -> str:
    """Render ``Plan: 1 to configure, 0 to update, 0 to move, 1 to release.``"""
    line = f"Plan: {format_counts(plan.summary(), _PLAN_VERBS)}."
    resets = count_resets(plan.changes)
    if resets:
        noun = "instance" if resets == 1 else "instances"
        warning = f"{resets} managed {noun} will be reset to the service-managed key."
        line += " " + styler(color)(warning, fg="red", bold=True)
    return line


def format_apply_summary(summary: Counter[Action], *, color: bool = True) -> str:
    """Render ``Apply complete! Protectors: 1 configured, 0 updated, 0 moved, 0 released.``"""
    header = styler(color)("Apply complete!", fg="green", bold=True)
    done = {a: ACTION_STYLES[a].done for a in _COUNTED}
    return f"{header} Protectors: {format_counts(summary, done)}."
