from __future__ import annotations

from typing import TYPE_CHECKING

from aws_provisioner.engine.types import (
    Action,
    ApplyResult,
    Plan,
    PlanMetadata,
    ResourceChange,
)

if TYPE_CHECKING:
    from pathlib import Path

_META = PlanMetadata(
    workspace="default",
    destroy=False,
    refresh=False,
    state_lineage="lineage-1",
    state_serial=3,
    state_digest="sdigest",
    config_digest="cdigest",
    engine_version="0.1.0",
)


def _change(address: str, action: Action) -> ResourceChange:
    return ResourceChange(address=address, resource_type=address.split(".")[0], action=action)


class TestResourceChange:
    def test_name(self) -> None:
        assert _change("aws_subnet.public_a", Action.CREATE).name == "public_a"

    def test_noop_is_not_actionable(self) -> None:
        assert not _change("aws_vpc.main", Action.NOOP).is_actionable
        assert _change("aws_vpc.main", Action.REPLACE).is_actionable


class TestPlan:
    def test_summary_includes_zero_counts(self) -> None:
        plan = Plan(
            metadata=_META,
            changes=[
                _change("aws_vpc.main", Action.NOOP),
                _change("aws_subnet.a", Action.REPLACE),
                _change("aws_subnet.b", Action.CREATE),
                _change("aws_subnet.c", Action.CREATE),
            ],
        )
        assert plan.summary() == {
            "create": 2,
            "update": 0,
            "replace": 1,
            "delete": 0,
            "no-op": 1,
        }

    def test_actionable_keeps_order(self) -> None:
        plan = Plan(
            metadata=_META,
            changes=[
                _change("aws_subnet.b", Action.DELETE),
                _change("aws_vpc.main", Action.NOOP),
                _change("aws_subnet.a", Action.UPDATE),
            ],
        )
        assert [c.address for c in plan.actionable()] == ["aws_subnet.b", "aws_subnet.a"]

    def test_get(self) -> None:
        plan = Plan(metadata=_META, changes=[_change("aws_vpc.main", Action.CREATE)])
        assert plan.get("aws_vpc.main") is plan.changes[0]
        assert plan.get("aws_vpc.other") is None

    def test_save_and_load(self, tmp_path: Path) -> None:
        change = ResourceChange(
            address="aws_subnet.a",
            resource_type="aws_subnet",
            action=Action.REPLACE,
            diff={"cidr_block": {"from": "10.0.1.0/24", "to": "10.0.2.0/24"}},
            replace_reasons=["cidr_block"],
        )
        path = tmp_path / "plans" / "net.plan.json"
        Plan(metadata=_META, changes=[change]).save(path)

        loaded = Plan.load(path)

        assert loaded.metadata.state_serial == 3
        assert loaded.changes == [change]


class TestApplyResult:
    def test_ok(self) -> None:
        assert ApplyResult().ok
        assert not ApplyResult(failed={"aws_vpc.main": "boom"}).ok
        assert not ApplyResult(skipped=["aws_subnet.a"]).ok

    def test_replace_counts_as_delete_and_create(self) -> None:
        result = ApplyResult(
            applied=[
                _change("aws_subnet.a", Action.DELETE),
                _change("aws_subnet.a", Action.CREATE),
            ]
        )
        summary = result.summary()
        assert summary["create"] == 1
        assert summary["delete"] == 1
        assert summary["replace"] == 0
