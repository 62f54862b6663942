"""Plan and apply output rendering (Terraform-style)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, NamedTuple

import typer

from aws_provisioner.engine.types import Action
from aws_provisioner.resources.references import UNKNOWN

if TYPE_CHECKING:
    from collections.abc import Callable

    from aws_provisioner.engine.types import Plan, ResourceChange


class _ActionStyle(NamedTuple):
    color: str
    symbol: str
    progress_verb: str
    done_verb: str
    description: str


_ACTION_STYLES: dict[str, _ActionStyle] = {
    "create": _ActionStyle("green", "+", "Creating", "Creation complete", "will be created"),
    "update": _ActionStyle(
        "yellow", "~", "Modifying", "Modifications complete", "will be updated in-place"
    ),
    "replace": _ActionStyle(
        "magenta", "-/+", "Replacing", "Replacement complete", "must be replaced"
    ),
    "delete": _ActionStyle("red", "-", "Destroying", "Destruction complete", "will be destroyed"),
    "no-op": _ActionStyle("bright_black", " ", "", "", "is up-to-date"),
}

# Identity attributes shown for a resource that is about to be destroyed.
_DESTROY_KEYS = ("id", "cidr_block", "group_name", "key_name")


def styler(color: bool) -> Callable[..., str]:
    """Return ``typer.style`` when *color* is True, otherwise a passthrough."""
    if color:
        return typer.style
    return lambda text, **_kw: text


def has_actionable_changes(plan: Plan) -> bool:
    """Return True if the plan contains any non-NOOP changes."""
    return bool(plan.actionable())


# ---------------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------------


def _format_value(value: Any) -> str:
    """Render a value the way HCL would print it."""
    if value == UNKNOWN:
        return value
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return f'"{value}"'
    if isinstance(value, list | tuple):
        return f"[{', '.join(_format_value(v) for v in value)}]"
    if isinstance(value, dict):
        if not value:
            return "{}"
        inner = ", ".join(f"{k} = {_format_value(v)}" for k, v in value.items())
        return f"{{ {inner} }}"
    return str(value)


def _aligned(attrs: dict[str, str], symbol: str) -> list[str]:
    """One ``symbol key = value`` line per attribute, with ``=`` signs lined up."""
    if not attrs:
        return []
    width = max(len(k) for k in attrs)
    return [f"      {symbol} {k.ljust(width)} = {v}" for k, v in attrs.items()]


# ---------------------------------------------------------------------------
# Plan rendering
# ---------------------------------------------------------------------------


def _diff_attrs(change: ResourceChange) -> dict[str, str]:
    attrs: dict[str, str] = {}
    for k, d in (change.diff or {}).items():
        text = f"{_format_value(d['from'])} -> {_format_value(d['to'])}"
        if k in change.replace_reasons:
            text += " # forces replacement"
        attrs[k] = text
    return attrs


def _change_attrs(change: ResourceChange) -> tuple[dict[str, str], int]:
    """Displayable attributes for a change and how many were left out."""
    match change.action:
        case Action.CREATE:
            planned = change.planned or {}
            return {k: _format_value(v) for k, v in planned.items()}, 0
        case Action.UPDATE | Action.REPLACE:
            shown = _diff_attrs(change)
            return shown, max(len(change.planned or {}) - len(shown), 0)
        case Action.DELETE:
            prior = change.prior or {}
            shown = {k: _format_value(prior[k]) for k in _DESTROY_KEYS if k in prior}
            return shown, 0
        case _:
            return {}, 0


def format_change(change: ResourceChange, *, color: bool = True) -> str:
    """Render a single ResourceChange as a Terraform-style block."""
    style = styler(color)
    s = _ACTION_STYLES[change.action.value]
    sc = {"fg": s.color}

    desc = s.description
    if change.action == Action.REPLACE and not change.diff:
        desc = "will be replaced, as requested"

    attrs, hidden = _change_attrs(change)
    lines = [
        style(f"  # {change.address} {desc}", bold=True, **sc),
        style(f'  {s.symbol} resource "{change.resource_type}" "{change.name}" {{', **sc),
        *[style(line, **sc) for line in _aligned(attrs, s.symbol)],
    ]
    if hidden:
        noun = "attribute" if hidden == 1 else "attributes"
        lines.append(style(f"        # ({hidden} unchanged {noun} hidden)", fg="bright_black"))
    lines.append(style("    }", **sc))
    return "\n".join(lines)


def format_changes(changes: list[ResourceChange], *, color: bool = True) -> str:
    """Render a list of changes as Terraform-style diff blocks."""
    blocks = [format_change(c, color=color) for c in changes if c.is_actionable]
    if not blocks:
        return "No changes. Resources are up-to-date."
    return "\n\n".join(blocks)


def format_plan(plan: Plan, *, color: bool = True) -> str:
    """Render the full plan output with per-change diff blocks."""
    return format_changes(plan.changes, color=color)


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


def changes_summary(changes: list[ResourceChange]) -> dict[str, int]:
    """Count changes by create/update/delete; a replacement counts as one of each side."""
    summary: dict[str, int] = {"create": 0, "update": 0, "delete": 0}
    for c in changes:
        match c.action:
            case Action.NOOP:
                continue
            case Action.REPLACE:
                summary["create"] += 1
                summary["delete"] += 1
            case _:
                summary[c.action.value] += 1
    return summary


def _counts(summary: dict[str, int], verbs: tuple[str, str, str], *, color: bool) -> str:
    style = styler(color)
    parts = []
    for key, verb, fg in zip(
        ("create", "update", "delete"), verbs, ("green", "yellow", "red"), strict=True
    ):
        n = summary.get(key, 0)
        text = f"{n} {verb}"
        parts.append(style(text, fg=fg) if n else text)
    return ", ".join(parts)


def format_plan_summary(
    summary: dict[str, int], *, color: bool = True, header: str = "Plan"
) -> str:
    """Render ``Plan: 2 to add, 1 to change, 0 to destroy.``"""
    counts = _counts(summary, ("to add", "to change", "to destroy"), color=color)
    return f"{header}: {counts}."


def format_apply_summary(summary: dict[str, int], *, color: bool = True) -> str:
    """Render ``Apply complete! Resources: 2 added, 0 changed, 0 destroyed.``"""
    header = styler(color)("Apply complete!", fg="green", bold=True)
    counts = _counts(summary, ("added", "changed", "destroyed"), color=color)
    return f"{header} Resources: {counts}."
