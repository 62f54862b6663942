"""YAML configuration loading and convenience plan/apply API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from aws_provisioner.config.loader import ConfigError, load_config
from aws_provisioner.config.registry import default_registry
from aws_provisioner.config.schema import (
    Config,
    ExecutionConfig,
    LocalBackendConfig,
    ProviderConfig,
    S3BackendConfig,
)
from aws_provisioner.core.backend import LocalBackend, S3Backend
from aws_provisioner.core.provider import AWSProvider
from aws_provisioner.core.state import State
from aws_provisioner.engine.engine import ProgressCallback, ProvisioningEngine
from aws_provisioner.engine.executor import RetryPolicy
from aws_provisioner.engine.types import Action, ResourceChange

if TYPE_CHECKING:
    from collections.abc import Collection
    from pathlib import Path

    from aws_provisioner.core.backend import StateBackend
    from aws_provisioner.engine.types import ApplyResult, Plan

__all__ = [
    "Config",
    "ConfigError",
    "ExecutionConfig",
    "LocalBackendConfig",
    "ProviderConfig",
    "S3BackendConfig",
    "State",
    "apply",
    "backend_from_config",
    "drift",
    "engine_from_config",
    "force_unlock",
    "load",
    "load_config",
    "plan",
    "plan_and_apply",
    "refresh",
    "save_state",
]


def load(path: Path | str, *, workspace: str | None = None) -> Config:
    """Load a YAML configuration file, optionally forcing the workspace."""
    return load_config(path, workspace=workspace)


def backend_from_config(config: Config) -> StateBackend:
    """Build the state backend named by ``config.backend``."""
    match config.backend:
        case S3BackendConfig() as b:
            return S3Backend(
                bucket=b.bucket,
                key=b.key,
                region=b.region or config.provider.region,
                lock_table=b.lock_table,
                encrypt=b.encrypt,
            )
        case LocalBackendConfig() as b:
            return LocalBackend(config.config_dir / b.path)
        case _:  # pragma: no cover - the schema only admits the two above
            raise ConfigError(f"Unsupported backend: {config.backend!r}")


def engine_from_config(config: Config, *, parallelism: int | None = None) -> ProvisioningEngine:
    """Build a ``ProvisioningEngine`` from a ``Config`` instance."""
    provider = AWSProvider(
        region=config.provider.region,
        profile=config.provider.profile,
        endpoint_url=config.provider.endpoint_url,
    )
    execution = config.execution
    return ProvisioningEngine(
        provider=provider,
        backend=backend_from_config(config),
        registry=default_registry(),
        workspace=config.workspace,
        parallelism=parallelism or execution.parallelism,
        retry=RetryPolicy(
            max_attempts=execution.max_attempts,
            initial=execution.backoff_initial,
            maximum=execution.backoff_max,
        ),
        failure_policy=execution.on_failure,
        lock_timeout=execution.lock_timeout,
    )


def plan(
    config: Config,
    *,
    destroy: bool = False,
    refresh: bool = True,
    replace: Collection[str] = (),
) -> Plan:
    """Plan changes for the given configuration."""
    engine = engine_from_config(config)
    return engine.plan(config.resources, destroy=destroy, refresh=refresh, replace=replace)


def apply(
    plan_obj: Plan,
    config: Config,
    *,
    progress: ProgressCallback | None = None,
    parallelism: int | None = None,
) -> ApplyResult:
    """Apply a previously computed plan."""
    engine = engine_from_config(config, parallelism=parallelism)
    return engine.apply(plan_obj, progress=progress)


def plan_and_apply(config: Config, *, destroy: bool = False, refresh: bool = True) -> ApplyResult:
    """Plan and apply in one step."""
    plan_obj = plan(config, destroy=destroy, refresh=refresh)
    return apply(plan_obj, config)


def refresh(config: Config) -> tuple[list[ResourceChange], State]:
    """Refresh state from AWS (not persisted).

    Returns the list of drift changes and the new state. Call
    :func:`save_state` to persist the returned state.
    """
    engine = engine_from_config(config)
    old_state, new_state = engine.refresh(persist=False)
    return _build_drift_changes(old_state, new_state), new_state


def save_state(config: Config, state: State) -> None:
    """Persist state to the configured backend."""
    engine_from_config(config).write_state(state)


def drift(config: Config) -> list[ResourceChange]:
    """Detect drift between recorded state and live AWS."""
    changes, _ = refresh(config)
    return changes


def force_unlock(config: Config, lock_id: str | None = None) -> None:
    """Remove a state lock left behind by a run that died."""
    backend_from_config(config).force_unlock(lock_id)


def _build_drift_changes(old_state: State, new_state: State) -> list[ResourceChange]:
    """Compare old vs new state and return a list of drift changes."""
    changes: list[ResourceChange] = []
    for addr, inst in new_state.resources.items():
        old_inst = old_state.resources.get(addr)
        if old_inst is None:
            continue
        old = old_inst.attributes
        if old != inst.attributes:
            all_keys = sorted(set(old) | set(inst.attributes))
            diff = {
                k: {"from": old.get(k), "to": inst.attributes.get(k)}
                for k in all_keys
                if old.get(k) != inst.attributes.get(k)
            }
            changes.append(
                ResourceChange(
                    address=addr,
                    resource_type=inst.resource_type,
                    action=Action.UPDATE,
                    prior=dict(old),
                    planned=dict(inst.attributes),
                    diff=diff,
                )
            )
    for addr in sorted(set(old_state.resources) - set(new_state.resources)):
        changes.append(
            ResourceChange(
                address=addr,
                resource_type=old_state.resources[addr].resource_type,
                action=Action.DELETE,
                prior=dict(old_state.resources[addr].attributes),
            )
        )
    return changes
