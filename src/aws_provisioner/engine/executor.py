"""Concurrent, dependency-gated execution of apply operations."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from tenacity import (
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from aws_provisioner.engine.errors import ProvisioningError, TransientProviderError
from aws_provisioner.engine.graph import DependencyGraph
from aws_provisioner.engine.types import FailurePolicy

if TYPE_CHECKING:
    from collections.abc import Mapping

    from aws_provisioner.engine.handlers import EngineContext
    from aws_provisioner.engine.operations import Operation
    from aws_provisioner.engine.recorder import StateRecorder
    from aws_provisioner.engine.registry import ResourceTypeRegistry
    from aws_provisioner.engine.types import ResourceChange

logger = logging.getLogger(__name__)

ProgressEvent = Literal["start", "done", "failed"]
ProgressCallback = Callable[["ResourceChange", ProgressEvent], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for transient provider errors."""

    max_attempts: int = 5
    initial: float = 1.0
    maximum: float = 30.0


@dataclass
class ExecutionReport:
    """What happened to each operation of a run."""

    applied: list[ResourceChange] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)
    failed: dict[str, ProvisioningError] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    canceled: bool = False


class Executor:
    """Run an operation graph on a bounded thread pool.

    An operation starts only once every operation it depends on has
    completed, which for resource operations includes the state write. When
    an operation fails its dependents are skipped; with
    ``FailurePolicy.CONTINUE`` unrelated operations keep being scheduled,
    with ``FailurePolicy.HALT`` nothing new starts and in-flight work drains.
    ``cancel()`` (or Ctrl-C in the calling thread) behaves like ``HALT``.
    Completed operations are never rolled back.
    """

    def __init__(
        self,
        *,
        parallelism: int = 10,
        retry: RetryPolicy | None = None,
        failure_policy: FailurePolicy = FailurePolicy.CONTINUE,
        progress: ProgressCallback | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        self._parallelism = parallelism
        self._retry = retry or RetryPolicy()
        self._failure_policy = failure_policy
        self._progress = progress
        self._sleep = sleep
        self._cancel = threading.Event()

    @property
    def parallelism(self) -> int:
        return self._parallelism

    def cancel(self) -> None:
        """Stop scheduling new operations; in-flight ones run to completion."""
        self._cancel.set()

    @property
    def canceled(self) -> bool:
        return self._cancel.is_set()

    def call(self, address: str, fn: Callable[..., Any], *args: Any) -> Any:
        """Invoke a provider function, retrying transient errors with backoff.

        Raises:
            ProvisioningError: Retries exhausted or a non-retryable failure.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self._retry.max_attempts),
            wait=wait_exponential(multiplier=self._retry.initial, max=self._retry.maximum),
            retry=retry_if_exception_type(TransientProviderError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            return retrying(fn, *args)
        except TransientProviderError as e:
            attempts = self._retry.max_attempts
            raise ProvisioningError(
                address, f"{e} (gave up after {attempts} attempts)", attempts=attempts
            ) from e
        except ProvisioningError:
            raise
        except RetryError as e:  # pragma: no cover - reraise=True surfaces the cause
            raise ProvisioningError(address, str(e)) from e

    def _run_one(
        self,
        op: Operation,
        *,
        ctx: EngineContext,
        recorder: StateRecorder,
        registry: ResourceTypeRegistry,
    ) -> ResourceChange | None:
        address = op.change.address if op.change is not None else op.key
        logger.debug("Applying %s: %s", op.key, type(op).__name__)
        try:
            return op.run(
                ctx=ctx,
                recorder=recorder,
                registry=registry,
                call=lambda fn, *args: self.call(address, fn, *args),
            )
        except ProvisioningError:
            raise
        except Exception as e:
            raise ProvisioningError(address, str(e)) from e

    def _emit(self, op: Operation, event: ProgressEvent) -> None:
        if self._progress is not None and op.change is not None:
            self._progress(op.change, event)

    def run(
        self,
        ops: Mapping[str, Operation],
        *,
        ctx: EngineContext,
        recorder: StateRecorder,
        registry: ResourceTypeRegistry,
        priorities: Mapping[str, int] | None = None,
    ) -> ExecutionReport:
        graph = DependencyGraph(ops.keys(), {k: op.deps for k, op in ops.items()}, priorities)
        # Deterministic submission order; also rejects cyclic operation graphs.
        order = graph.topological_order()
        remaining = {k: set(graph.dependencies_of(k)) for k in order}

        report = ExecutionReport()
        started: set[str] = set()
        blocked: set[str] = set()
        in_flight: dict[Future[ResourceChange | None], str] = {}
        halted = False

        logger.info("Applying %d operations (parallelism=%d)", len(ops), self._parallelism)
        with ThreadPoolExecutor(
            max_workers=self._parallelism, thread_name_prefix="provision"
        ) as pool:
            while True:
                if not (halted or self.canceled):
                    for key in order:
                        if key in started or key in blocked or remaining[key]:
                            continue
                        if len(in_flight) >= self._parallelism:
                            break
                        started.add(key)
                        self._emit(ops[key], "start")
                        future = pool.submit(
                            self._run_one, ops[key], ctx=ctx, recorder=recorder, registry=registry
                        )
                        in_flight[future] = key

                if not in_flight:
                    break

                try:
                    finished, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                except KeyboardInterrupt:
                    logger.warning(
                        "Interrupted; waiting for %d in-flight operations", len(in_flight)
                    )
                    self.cancel()
                    continue

                for future in finished:
                    key = in_flight.pop(future)
                    try:
                        applied = future.result()
                    except ProvisioningError as e:
                        logger.error("Operation %s failed: %s", key, e)
                        report.failed[key] = e
                        blocked |= graph.transitive_dependents(key)
                        self._emit(ops[key], "failed")
                        if self._failure_policy == FailurePolicy.HALT:
                            halted = True
                        continue

                    report.completed.append(key)
                    for child in graph.dependents_of(key):
                        remaining[child].discard(key)
                    if applied is not None:
                        report.applied.append(applied)
                        self._emit(ops[key], "done")

        for key in order:
            change = ops[key].change
            if key not in started and change is not None and change.address not in report.skipped:
                report.skipped.append(change.address)
        report.canceled = self.canceled
        return report
