"""CLI command implementations."""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer

from aws_provisioner.cli import app
from aws_provisioner.cli.errors import handle_error

if TYPE_CHECKING:
    from collections.abc import Iterator

    from aws_provisioner.config.schema import Config
    from aws_provisioner.engine.executor import ProgressEvent
    from aws_provisioner.engine.types import ApplyResult, Plan, ResourceChange

ConfigPath = Annotated[
    Path,
    typer.Option("--config", "-c", help="Path to the configuration file."),
]

WorkspaceOpt = Annotated[
    str | None,
    typer.Option(
        "--workspace",
        "-w",
        help="Workspace to operate on; overrides the config file and AWS_PROVISIONER_WORKSPACE.",
    ),
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
    typer.Option("--no-refresh", help="Skip refreshing state from AWS."),
]

Parallelism = Annotated[
    int | None,
    typer.Option("--parallelism", min=1, help="Limit the number of concurrent operations."),
]

Replace = Annotated[
    list[str] | None,
    typer.Option("--replace", help="Force replacement of a resource address (repeatable)."),
]

_DEFAULT_CONFIG = Path("aws-provisioner.yaml")
_UP_TO_DATE = "No changes. Resources are up-to-date."


def _use_color(no_color: bool) -> bool:
    return not (no_color or os.environ.get("NO_COLOR"))


@contextmanager
def _exit_on_error(color: bool) -> Iterator[None]:
    """Report any exception raised in the block and exit with its code."""
    try:
        yield
    except typer.Exit:
        raise
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc


def _confirm(prompt: str, *, canceled: str) -> None:
    """Ask for a yes; anything else prints *canceled* and exits 1."""
    try:
        typer.confirm(prompt, abort=True)
    except typer.Abort as e:
        typer.echo(canceled, err=True)
        raise typer.Exit(1) from e


def _apply_with_progress(
    plan_obj: Plan, cfg: Config, *, color: bool, parallelism: int | None
) -> ApplyResult:
    """Run apply under a rich progress bar, one status line per finished resource."""
    from rich.console import Console
    from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

    from aws_provisioner.cli.formatting import _ACTION_STYLES, changes_summary
    from aws_provisioner.config import apply

    console = Console(no_color=not color)
    # A replacement runs as a destroy plus a create.
    total = sum(changes_summary(plan_obj.changes).values())

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Applying", total=total)

        def on_progress(change: ResourceChange, event: ProgressEvent) -> None:
            verbs = _ACTION_STYLES[change.action.value]
            match event:
                case "start":
                    progress.update(
                        task, description=f"{change.address}: {verbs.progress_verb}..."
                    )
                case "done":
                    progress.console.print(f"  {change.address}: {verbs.done_verb}")
                    progress.advance(task)
                case "failed":
                    progress.console.print(f"  {change.address}: [red]Failed[/red]")
                    progress.advance(task)

        return apply(plan_obj, cfg, progress=on_progress, parallelism=parallelism)


def _show_confirm_apply(
    plan_obj: Plan,
    cfg: Config,
    *,
    color: bool,
    auto_approve: bool,
    prompt: str,
    nothing_to_do: str,
    parallelism: int | None = None,
) -> None:
    """Print the plan, ask, apply with progress and print the totals.

    Exits 0 without asking when the plan holds nothing but no-ops.
    """
    from aws_provisioner.cli.formatting import (
        changes_summary,
        format_apply_summary,
        format_plan,
        format_plan_summary,
        has_actionable_changes,
    )

    if not has_actionable_changes(plan_obj):
        typer.echo(nothing_to_do)
        raise typer.Exit(0)

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(changes_summary(plan_obj.changes), color=color))
    typer.echo()

    if not auto_approve:
        _confirm(prompt, canceled="Apply canceled.")

    with _exit_on_error(color):
        result = _apply_with_progress(plan_obj, cfg, color=color, parallelism=parallelism)

    typer.echo()
    typer.echo(format_apply_summary(changes_summary(result.applied), color=color))


@app.command()
def plan(
    config: ConfigPath = _DEFAULT_CONFIG,
    workspace: WorkspaceOpt = None,
    out: Annotated[
        Path | None,
        typer.Option("--out", "-o", help="Save plan to file."),
    ] = None,
    replace: Replace = None,
    no_color: NoColor = False,
    no_refresh: NoRefresh = False,
) -> None:
    """Show changes required by the current configuration.

    Exits 0 when there is nothing to do and 2 when the plan has changes.
    """
    from aws_provisioner.cli.formatting import (
        changes_summary,
        format_plan,
        format_plan_summary,
        has_actionable_changes,
    )
    from aws_provisioner.config import load
    from aws_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    with _exit_on_error(color):
        cfg = load(config, workspace=workspace)
        plan_obj = plan_fn(cfg, refresh=not no_refresh, replace=replace or ())

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(changes_summary(plan_obj.changes), color=color))

    if out is not None:
        plan_obj.save(out)
        typer.echo(f"\nPlan saved to {out}")

    if has_actionable_changes(plan_obj):
        raise typer.Exit(2)


@app.command(name="apply")
def apply_cmd(
    plan_file: Annotated[
        Path | None,
        typer.Argument(help="Saved plan file to apply."),
    ] = None,
    config: ConfigPath = _DEFAULT_CONFIG,
    workspace: WorkspaceOpt = None,
    replace: Replace = None,
    auto_approve: AutoApprove = False,
    parallelism: Parallelism = None,
    no_color: NoColor = False,
    no_refresh: NoRefresh = False,
) -> None:
    """Apply a saved plan, or plan and apply the current configuration."""
    from aws_provisioner.config import load
    from aws_provisioner.config import plan as plan_fn
    from aws_provisioner.engine.types import Plan

    color = _use_color(no_color)
    with _exit_on_error(color):
        cfg = load(config, workspace=workspace)
        if plan_file is not None:
            plan_obj = Plan.load(plan_file)
        else:
            plan_obj = plan_fn(cfg, refresh=not no_refresh, replace=replace or ())

    _show_confirm_apply(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        prompt="Do you want to apply these changes?",
        nothing_to_do=_UP_TO_DATE,
        parallelism=parallelism,
    )


@app.command()
def destroy(
    config: ConfigPath = _DEFAULT_CONFIG,
    workspace: WorkspaceOpt = None,
    auto_approve: AutoApprove = False,
    parallelism: Parallelism = None,
    no_color: NoColor = False,
) -> None:
    """Destroy every resource recorded in the workspace state."""
    from aws_provisioner.config import load
    from aws_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    with _exit_on_error(color):
        cfg = load(config, workspace=workspace)
        plan_obj = plan_fn(cfg, destroy=True)

    _show_confirm_apply(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        prompt="Do you really want to destroy all resources?",
        nothing_to_do="No resources to destroy.",
        parallelism=parallelism,
    )


@app.command(name="refresh")
def refresh_cmd(
    config: ConfigPath = _DEFAULT_CONFIG,
    workspace: WorkspaceOpt = None,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Re-read every recorded resource from AWS and update the state."""
    from aws_provisioner.cli.formatting import changes_summary, format_changes, format_plan_summary
    from aws_provisioner.config import load, save_state
    from aws_provisioner.config import refresh as refresh_fn

    color = _use_color(no_color)
    with _exit_on_error(color):
        cfg = load(config, workspace=workspace)
        changes, state = refresh_fn(cfg)

    if not changes:
        typer.echo("No changes. State is up-to-date with AWS.")
        raise typer.Exit(0)

    typer.echo(format_changes(changes, color=color))
    typer.echo()
    typer.echo(format_plan_summary(changes_summary(changes), color=color, header="Refresh"))
    typer.echo()

    if not auto_approve:
        _confirm("Do you want to update the state?", canceled="Refresh canceled.")

    with _exit_on_error(color):
        save_state(cfg, state)
    count = len(state.resources)
    typer.echo(f"State refreshed. {count} resource{'s' if count != 1 else ''} tracked.")


@app.command()
def drift(
    config: ConfigPath = _DEFAULT_CONFIG,
    workspace: WorkspaceOpt = None,
    no_color: NoColor = False,
) -> None:
    """Show what changed in AWS since the state was written. Read-only."""
    from aws_provisioner.cli.formatting import format_changes
    from aws_provisioner.config import drift as drift_fn
    from aws_provisioner.config import load

    color = _use_color(no_color)
    with _exit_on_error(color):
        changes = drift_fn(load(config, workspace=workspace))

    if not changes:
        typer.echo("No drift detected. State is up-to-date with AWS.")
        raise typer.Exit(0)

    typer.echo("Drift detected:\n")
    typer.echo(format_changes(changes, color=color))


@app.command()
def validate(
    config: ConfigPath = _DEFAULT_CONFIG,
    workspace: WorkspaceOpt = None,
    no_color: NoColor = False,
) -> None:
    """Check the configuration, its references and plan-time rules without calling AWS."""
    from aws_provisioner.cli.formatting import styler
    from aws_provisioner.config import load
    from aws_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    with _exit_on_error(color):
        plan_fn(load(config, workspace=workspace), refresh=False)

    typer.echo(styler(color)("Configuration is valid.", fg="green"))


@app.command(name="force-unlock")
def force_unlock_cmd(
    lock_id: Annotated[
        str | None,
        typer.Argument(help="ID of the lock to remove (checked when the backend records it)."),
    ] = None,
    config: ConfigPath = _DEFAULT_CONFIG,
    workspace: WorkspaceOpt = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Don't ask for confirmation."),
    ] = False,
    no_color: NoColor = False,
) -> None:
    """Remove a state lock left behind by a run that died."""
    from aws_provisioner.cli.formatting import styler
    from aws_provisioner.config import force_unlock, load

    color = _use_color(no_color)
    with _exit_on_error(color):
        cfg = load(config, workspace=workspace)

    if not force:
        _confirm(
            f"Remove the lock on {cfg.state_location}? Only do this if no run is active.",
            canceled="Unlock canceled.",
        )

    with _exit_on_error(color):
        force_unlock(cfg, lock_id)

    typer.echo(styler(color)("State has been unlocked.", fg="green"))
