"""Map exceptions to clean stderr messages and exit codes."""

from __future__ import annotations

from typing import Any

import typer


def _err(msg: str, *, fg: str | None) -> None:
    """Print a styled message to stderr."""
    typer.echo(typer.style(msg, fg=fg), err=True)


def _partial_result(result: Any, *, fg: str | None) -> None:
    """Tell the operator what did get applied so they can reconcile."""
    if result is None:
        return
    from aws_provisioner.cli.formatting import changes_summary

    s = changes_summary(result.applied)
    parts = [
        f"{n} {verb}"
        for n, verb in (
            (s["create"], "added"),
            (s["update"], "changed"),
            (s["delete"], "destroyed"),
        )
        if n
    ]
    if parts:
        _err(f"  Partial result: {', '.join(parts)}.", fg=fg)
    if result.skipped:
        _err(f"  Not attempted: {', '.join(result.skipped)}", fg=fg)


def _aws_error(exc: Exception) -> str | None:
    """Operator-facing text for SDK errors that escape the engine, else None."""
    from botocore.exceptions import (
        ClientError,
        NoCredentialsError,
        NoRegionError,
        ProfileNotFound,
    )

    if isinstance(exc, NoCredentialsError):
        return (
            "AWS credentials not found. Configure a profile or set "
            "AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY."
        )
    if isinstance(exc, NoRegionError):
        return "No AWS region configured. Set provider.region or AWS_REGION."
    if isinstance(exc, ProfileNotFound):
        return f"AWS profile not found: {exc}"
    if isinstance(exc, ClientError):
        err = exc.response.get("Error", {})
        return f"AWS error ({err.get('Code', 'Unknown')}): {err.get('Message', exc)}"
    return None


def handle_error(exc: Exception, *, color: bool = True) -> int:
    """Print a clean error message to stderr and return an exit code.

    All errors map to exit code 1.  No tracebacks are printed.
    """
    from aws_provisioner.config.loader import ConfigError
    from aws_provisioner.engine.errors import (
        ApplyCanceled,
        ApplyError,
        CycleError,
        LockHeldError,
        PlanConflictError,
        StalePlanError,
        StateWorkspaceMismatchError,
        UnresolvedReferenceError,
        ValidationError,
    )

    fg = typer.colors.RED if color else None

    if isinstance(exc, ConfigError):
        _err(f"Configuration error: {exc}", fg=fg)
    elif isinstance(exc, ValidationError):
        _err("Validation failed:", fg=fg)
        for e in exc.errors:
            _err(f"  - {e}", fg=fg)
    elif isinstance(exc, CycleError | UnresolvedReferenceError):
        _err(f"Invalid dependencies: {exc}", fg=fg)
    elif isinstance(exc, PlanConflictError):
        _err(f"Plan conflict: {exc}", fg=fg)
    elif isinstance(exc, StalePlanError):
        _err(f"Plan is stale: {exc}", fg=fg)
    elif isinstance(exc, StateWorkspaceMismatchError):
        _err(f"State mismatch: {exc}", fg=fg)
    elif isinstance(exc, LockHeldError):
        _err(f"State is locked: {exc}", fg=fg)
        lock_id = exc.holder.get("id")
        if lock_id:
            _err(f"  If that run is dead: aws-provisioner force-unlock {lock_id}", fg=fg)
    elif isinstance(exc, ApplyError):
        _err(f"Apply failed: {exc}", fg=fg)
        for address, failure in sorted(exc.failures.items()):
            _err(f"  - {address}: {failure.message}", fg=fg)
        _partial_result(exc.result, fg=fg)
    elif isinstance(exc, ApplyCanceled):
        _err("Apply canceled.", fg=fg)
        _partial_result(exc.result, fg=fg)
    elif (aws_msg := _aws_error(exc)) is not None:
        _err(aws_msg, fg=fg)
    else:
        _err(f"Error: {exc}", fg=fg)

    return 1
