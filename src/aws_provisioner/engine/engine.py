"""Plan/apply engine."""

from __future__ import annotations

import contextlib
import hashlib
import json
import logging
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from aws_provisioner import __version__
from aws_provisioner.core.state import State, compute_state_digest
from aws_provisioner.engine.differ import Differ
from aws_provisioner.engine.errors import (
    ApplyCanceled,
    ApplyError,
    DuplicateAddressError,
    StalePlanError,
    StateWorkspaceMismatchError,
    ValidationError,
)
from aws_provisioner.engine.executor import Executor, ProgressCallback, RetryPolicy
from aws_provisioner.engine.graph import build_graph
from aws_provisioner.engine.handlers import EngineContext, PlanContext
from aws_provisioner.engine.operations import build_operations
from aws_provisioner.engine.recorder import StateRecorder
from aws_provisioner.engine.types import ApplyResult, FailurePolicy, Plan, PlanMetadata

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable, Collection, Sequence

    from aws_provisioner.core.backend import StateBackend
    from aws_provisioner.core.provider import AWSProvider
    from aws_provisioner.engine.registry import ResourceTypeRegistry
    from aws_provisioner.resources.base import Resource


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def _sha256_hex(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _compute_config_digest(resources: Sequence[Resource]) -> str:
    items: list[dict[str, Any]] = [
        {
            "address": r.address,
            "resource_type": r.resource_type,
            "declared": r.declared_attributes(),
            "depends_on": sorted(r.depends_on),
        }
        for r in resources
    ]
    items.sort(key=lambda x: x["address"])
    return _sha256_hex(_canonical_json(items))


class ProvisioningEngine:
    """Terraform-like plan/apply engine for AWS resources."""

    def __init__(
        self,
        *,
        provider: AWSProvider,
        backend: StateBackend,
        registry: ResourceTypeRegistry,
        workspace: str = "default",
        parallelism: int = 10,
        retry: RetryPolicy | None = None,
        failure_policy: FailurePolicy = FailurePolicy.CONTINUE,
        lock_timeout: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._provider = provider
        self._backend = backend
        self._registry = registry
        self._workspace = workspace
        self._parallelism = parallelism
        self._retry = retry or RetryPolicy()
        self._failure_policy = failure_policy
        self._lock_timeout = lock_timeout
        self._sleep = sleep
        self._differ = Differ(registry)
        self._executor: Executor | None = None

    @property
    def workspace(self) -> str:
        return self._workspace

    @property
    def backend(self) -> StateBackend:
        return self._backend

    def _ctx(self) -> EngineContext:
        return EngineContext(provider=self._provider, workspace=self._workspace)

    def _new_executor(self, progress: ProgressCallback | None = None) -> Executor:
        return Executor(
            parallelism=self._parallelism,
            retry=self._retry,
            failure_policy=self._failure_policy,
            progress=progress,
            sleep=self._sleep,
        )

    def _lock(self, operation: str) -> contextlib.AbstractContextManager[Any]:
        return self._backend.lock(timeout=self._lock_timeout, operation=operation)

    def _load_state(self) -> State:
        state = self._backend.read()
        if state is None:
            logger.debug("Created new state for workspace %s", self._workspace)
            return State(workspace=self._workspace)
        if state.workspace != self._workspace:
            raise StateWorkspaceMismatchError(self._workspace, state.workspace)
        logger.debug("State loaded: serial=%d, %d resources", state.serial, len(state.resources))
        return state

    def _load_state_for_apply(self, plan: Plan) -> State:
        state = self._backend.read()
        if state is None:
            # If no state exists, bootstrap from the plan metadata (saved-plan semantics).
            return State(
                workspace=self._workspace,
                lineage=plan.metadata.state_lineage,
                serial=plan.metadata.state_serial,
            )
        if state.workspace != self._workspace:
            raise StateWorkspaceMismatchError(self._workspace, state.workspace)
        return state

    def _refresh_state_in_place(self, state: State) -> bool:
        logger.debug("Refreshing state from AWS")
        changed = False
        ctx = self._ctx()
        executor = self._new_executor()

        for address, inst in list(state.resources.items()):
            handler = self._registry.get(inst.resource_type).handler
            attrs = executor.call(address, handler.read, ctx, inst)
            if attrs is None:
                logger.info("%s no longer exists; dropping it from state", address)
                del state.resources[address]
                changed = True
                continue

            if inst.set_attributes(attrs):
                changed = True

        logger.debug("State refreshed, changed=%s", changed)
        return changed

    def read_state(self) -> State:
        """Current applied state, read without locking."""
        return self._load_state()

    def refresh(self, *, persist: bool = False) -> tuple[State, State]:
        """Refresh state from AWS. Returns (pre_refresh, post_refresh)."""
        with self._lock("refresh"):
            state = self._load_state()
            snapshot = state.model_copy(deep=True)
            changed = self._refresh_state_in_place(state)
            if changed and persist:
                state.serial += 1
                self._backend.write(state)
            return snapshot, state

    def write_state(self, state: State) -> None:
        """Persist *state* under the lock, bumping its serial.

        *state* must descend from what is stored: same lineage and serial.
        A run that wrote in between makes this raise ``StalePlanError``
        instead of erasing that run's resources.
        """
        with self._lock("write-state"):
            stored = self._backend.read()
            if stored is not None:
                if stored.lineage != state.lineage:
                    raise StalePlanError("State lineage changed; re-run refresh")
                if stored.serial != state.serial:
                    raise StalePlanError(
                        f"State serial changed ({state.serial} -> {stored.serial}); re-run refresh"
                    )
            state.serial += 1
            self._backend.write(state)

    def force_unlock(self, lock_id: str | None = None) -> None:
        self._backend.force_unlock(lock_id)

    def _validate(self, desired_by_addr: dict[str, Resource], state: State) -> None:
        ctx = self._ctx()
        errors: list[str] = []
        for r in desired_by_addr.values():
            reg = self._registry.get(r.resource_type)
            errors.extend(reg.handler.validate(ctx, r))
        plan_ctx = PlanContext(desired_by_addr, state)
        for r in desired_by_addr.values():
            reg = self._registry.get(r.resource_type)
            errors.extend(reg.handler.validate_plan(ctx, r, plan_ctx))
        if errors:
            raise ValidationError(errors)

    def plan(
        self,
        resources: Sequence[Resource],
        *,
        destroy: bool = False,
        refresh: bool = True,
        replace: Collection[str] = (),
    ) -> Plan:
        logger.info(
            "Planning %d resources (destroy=%s, refresh=%s)", len(resources), destroy, refresh
        )
        # Only lock when refresh may write state.
        lock_cm = self._lock("plan") if refresh else contextlib.nullcontext()
        with lock_cm:
            state = self._load_state()

            if refresh:
                changed = self._refresh_state_in_place(state)
                if changed:
                    state.serial += 1
                    self._backend.write(state)

            desired_by_addr: dict[str, Resource] = {}
            for r in resources:
                if r.address in desired_by_addr:
                    raise DuplicateAddressError(r.address)
                self._registry.get(r.resource_type)
                desired_by_addr[r.address] = r

            if destroy:
                changes = self._differ.plan_deletes(state, set(state.resources))
            else:
                graph = build_graph(desired_by_addr.values())
                self._validate(desired_by_addr, state)
                changes = self._differ.diff(desired_by_addr, graph, state, replace=replace)

            metadata = PlanMetadata(
                workspace=self._workspace,
                created_at=datetime.now(UTC),
                destroy=destroy,
                refresh=refresh,
                state_lineage=state.lineage,
                state_serial=state.serial,
                state_digest=compute_state_digest(state),
                config_digest=_compute_config_digest([] if destroy else resources),
                engine_version=__version__,
            )

            return Plan(metadata=metadata, changes=changes)

    def cancel(self) -> None:
        """Ask a running apply to stop scheduling new operations."""
        if self._executor is not None:
            self._executor.cancel()

    def apply(self, plan: Plan, *, progress: ProgressCallback | None = None) -> ApplyResult:
        with self._lock("apply"):
            state = self._load_state_for_apply(plan)

            # Stale plan detection
            if state.lineage != plan.metadata.state_lineage:
                raise StalePlanError("State lineage changed; re-run plan")
            if state.serial != plan.metadata.state_serial:
                raise StalePlanError("State serial changed; re-run plan")
            if compute_state_digest(state) != plan.metadata.state_digest:
                raise StalePlanError("State digest changed; re-run plan")

            recorder = StateRecorder(self._backend, state)
            ops = build_operations(plan, state)
            priorities = {
                k: self._registry.priority_of(op.change.resource_type)
                for k, op in ops.items()
                if op.change is not None
            }

            self._executor = self._new_executor(progress)
            try:
                report = self._executor.run(
                    ops,
                    ctx=self._ctx(),
                    recorder=recorder,
                    registry=self._registry,
                    priorities=priorities,
                )
            finally:
                self._executor = None

            result = ApplyResult(
                applied=report.applied,
                failed={e.address: e.message for e in report.failed.values()},
                skipped=report.skipped,
            )
            logger.info(
                "Apply finished: %d applied, %d failed, %d skipped (%d state writes)",
                len(result.applied),
                len(result.failed),
                len(result.skipped),
                recorder.writes,
            )

            if report.canceled:
                raise ApplyCanceled("Apply canceled", result=result)
            if report.failed:
                failures = {e.address: e for e in report.failed.values()}
                raise ApplyError(result=result, failures=failures) from next(
                    iter(failures.values())
                )
            return result
