from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from unittest.mock import MagicMock

import pytest

from aws_provisioner.engine import (
    Executor,
    FailurePolicy,
    ProvisioningError,
    RetryPolicy,
    TransientProviderError,
)
from aws_provisioner.engine.types import Action, ResourceChange


@dataclass
class FakeOp:
    key: str
    deps: list[str] = field(default_factory=list)
    body: Callable[[], Any] | None = None
    log: list[str] = field(default_factory=list)
    change: ResourceChange | None = None

    def __post_init__(self) -> None:
        if self.change is None:
            self.change = ResourceChange(
                address=self.key, resource_type="aws_vpc", action=Action.CREATE
            )

    def run(self, *, ctx: Any, recorder: Any, registry: Any, call: Any) -> ResourceChange | None:
        _ = ctx, recorder, registry
        if self.body is not None:
            call(self.body)
        self.log.append(self.key)
        return self.change


def _run(executor: Executor, ops: list[FakeOp]) -> Any:
    return executor.run(
        {op.key: op for op in ops}, ctx=MagicMock(), recorder=MagicMock(), registry=MagicMock()
    )


def _fail() -> None:
    raise RuntimeError("InvalidSubnet.Range")


def test_dependencies_complete_before_dependents() -> None:
    log: list[str] = []
    ops = [
        FakeOp("c", deps=["b"], log=log),
        FakeOp("b", deps=["a"], log=log),
        FakeOp("a", log=log),
    ]

    report = _run(Executor(parallelism=4), ops)

    assert log == ["a", "b", "c"]
    assert report.completed == ["a", "b", "c"]
    assert [c.address for c in report.applied] == ["a", "b", "c"]


def test_independent_operations_run_concurrently() -> None:
    barrier = threading.Barrier(2, timeout=5)
    ops = [FakeOp("a", body=barrier.wait), FakeOp("b", body=barrier.wait)]

    report = _run(Executor(parallelism=2), ops)

    assert report.failed == {}
    assert sorted(report.completed) == ["a", "b"]


def test_parallelism_bounds_in_flight_work() -> None:
    mutex = threading.Lock()
    running = 0
    peak = 0
    release = threading.Event()

    def body() -> None:
        nonlocal running, peak
        with mutex:
            running += 1
            peak = max(peak, running)
            if running == 2:
                release.set()
        release.wait(timeout=5)
        with mutex:
            running -= 1

    ops = [FakeOp(f"op{i}", body=body) for i in range(6)]

    report = _run(Executor(parallelism=2), ops)

    assert len(report.completed) == 6
    assert peak == 2


def test_failure_skips_transitive_dependents_and_continues_elsewhere() -> None:
    log: list[str] = []
    ops = [
        FakeOp("a", body=_fail, log=log),
        FakeOp("b", deps=["a"], log=log),
        FakeOp("c", deps=["b"], log=log),
        FakeOp("z", log=log),
    ]

    report = _run(Executor(parallelism=1), ops)

    assert list(report.failed) == ["a"]
    assert report.failed["a"].attempts == 1
    assert "InvalidSubnet.Range" in str(report.failed["a"])
    assert log == ["z"]
    assert report.skipped == ["b", "c"]


def test_halt_policy_starts_nothing_new_after_failure() -> None:
    log: list[str] = []
    ops = [FakeOp("a", body=_fail, log=log), FakeOp("z", log=log)]

    report = _run(Executor(parallelism=1, failure_policy=FailurePolicy.HALT), ops)

    assert list(report.failed) == ["a"]
    assert log == []
    assert report.skipped == ["z"]
    assert not report.canceled


def test_cancel_drains_in_flight_and_skips_the_rest() -> None:
    executor = Executor(parallelism=1)
    log: list[str] = []
    ops = [FakeOp("a", body=executor.cancel, log=log), FakeOp("b", log=log)]

    report = _run(executor, ops)

    assert log == ["a"]
    assert report.completed == ["a"]
    assert report.skipped == ["b"]
    assert report.canceled


def test_progress_events() -> None:
    events: list[tuple[str, str]] = []
    ops = [FakeOp("a"), FakeOp("b", deps=["a"], body=_fail), FakeOp("c", deps=["b"])]

    _run(Executor(progress=lambda c, e: events.append((c.address, e))), ops)

    assert events == [("a", "start"), ("a", "done"), ("b", "start"), ("b", "failed")]


def test_operations_without_a_change_are_not_reported() -> None:
    barrier = FakeOp("barrier")
    barrier.change = None
    ops = [FakeOp("a"), barrier, FakeOp("b", deps=["barrier"])]
    ops[1].deps = ["a"]

    report = _run(Executor(), ops)

    assert report.completed == ["a", "barrier", "b"]
    assert [c.address for c in report.applied] == ["a", "b"]


def test_parallelism_must_be_positive() -> None:
    with pytest.raises(ValueError, match="parallelism"):
        Executor(parallelism=0)


class TestCall:
    def test_retries_transient_errors_with_exponential_backoff(self) -> None:
        sleeps: list[float] = []
        outcomes: list[Any] = [
            TransientProviderError("Throttling"),
            TransientProviderError("Throttling"),
            {"id": "vpc-1"},
        ]

        def fn() -> Any:
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        executor = Executor(retry=RetryPolicy(max_attempts=5), sleep=sleeps.append)

        assert executor.call("aws_vpc.a", fn) == {"id": "vpc-1"}
        assert sleeps == [1.0, 2.0]

    def test_backoff_is_capped(self) -> None:
        sleeps: list[float] = []
        fn = MagicMock(side_effect=TransientProviderError("RequestLimitExceeded"))
        executor = Executor(
            retry=RetryPolicy(max_attempts=6, initial=1.0, maximum=5.0), sleep=sleeps.append
        )

        with pytest.raises(ProvisioningError):
            executor.call("aws_vpc.a", fn)

        assert sleeps == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_gives_up_after_max_attempts(self) -> None:
        fn = MagicMock(side_effect=TransientProviderError("RequestLimitExceeded"))
        executor = Executor(retry=RetryPolicy(max_attempts=3), sleep=lambda _: None)

        with pytest.raises(ProvisioningError) as exc_info:
            executor.call("aws_vpc.a", fn)

        assert fn.call_count == 3
        assert exc_info.value.address == "aws_vpc.a"
        assert exc_info.value.attempts == 3
        assert "gave up after 3 attempts" in exc_info.value.message
        assert isinstance(exc_info.value.__cause__, TransientProviderError)

    def test_permanent_errors_are_not_retried(self) -> None:
        fn = MagicMock(side_effect=RuntimeError("InvalidParameterValue"))
        sleep = MagicMock()
        executor = Executor(retry=RetryPolicy(max_attempts=3), sleep=sleep)

        with pytest.raises(RuntimeError):
            executor.call("aws_vpc.a", fn)

        assert fn.call_count == 1
        sleep.assert_not_called()

    def test_passes_arguments_through(self) -> None:
        fn = MagicMock(return_value={"id": "subnet-1"})

        assert Executor().call("aws_subnet.b", fn, "ctx", "desired") == {"id": "subnet-1"}
        fn.assert_called_once_with("ctx", "desired")
