from __future__ import annotations

import re
from typing import Any

from aws_provisioner.cli.formatting import (
    changes_summary,
    format_apply_summary,
    format_change,
    format_changes,
    format_plan,
    format_plan_summary,
    has_actionable_changes,
)
from aws_provisioner.engine.types import Action, Plan, PlanMetadata, ResourceChange

_META = PlanMetadata(
    workspace="default",
    destroy=False,
    refresh=True,
    state_lineage="lineage-1",
    state_serial=0,
    state_digest="digest",
    config_digest="cdigest",
    engine_version="0.1.0",
)


def _strip_ansi(text: str) -> str:
    return re.sub(r"\x1b\[[0-9;]*m", "", text)


def _change(action: Action, address: str = "aws_vpc.main", **kwargs: Any) -> ResourceChange:
    return ResourceChange(
        address=address, resource_type=address.split(".")[0], action=action, **kwargs
    )


class TestFormatPlanSummary:
    def test_all_zeros(self) -> None:
        result = format_plan_summary({"create": 0, "update": 0, "delete": 0}, color=False)
        assert result == "Plan: 0 to add, 0 to change, 0 to destroy."

    def test_with_counts(self) -> None:
        result = format_plan_summary({"create": 2, "update": 1, "delete": 3}, color=False)
        assert result == "Plan: 2 to add, 1 to change, 3 to destroy."

    def test_custom_header(self) -> None:
        result = format_plan_summary({"update": 1}, color=False, header="Refresh")
        assert result == "Refresh: 0 to add, 1 to change, 0 to destroy."

    def test_color_mode_contains_ansi(self) -> None:
        result = format_plan_summary({"create": 1, "update": 0, "delete": 0}, color=True)
        assert "\x1b[" in result
        assert "1 to add" in _strip_ansi(result)


class TestFormatApplySummary:
    def test_with_counts(self) -> None:
        result = format_apply_summary({"create": 1, "update": 2, "delete": 0}, color=False)
        assert result == "Apply complete! Resources: 1 added, 2 changed, 0 destroyed."

    def test_color_mode_contains_ansi(self) -> None:
        result = format_apply_summary({"create": 1, "update": 0, "delete": 0}, color=True)
        assert "\x1b[" in result


class TestChangesSummary:
    def test_replace_counts_on_both_sides(self) -> None:
        changes = [
            _change(Action.REPLACE),
            _change(Action.CREATE, "aws_subnet.a"),
            _change(Action.UPDATE, "aws_security_group.web"),
            _change(Action.NOOP, "aws_key_pair.deployer"),
        ]
        assert changes_summary(changes) == {"create": 2, "update": 1, "delete": 1}

    def test_empty(self) -> None:
        assert changes_summary([]) == {"create": 0, "update": 0, "delete": 0}


class TestFormatChange:
    def test_create_aligns_values(self) -> None:
        change = _change(
            Action.CREATE,
            "aws_subnet.public",
            planned={"cidr_block": "10.0.1.0/24", "vpc_id": "(known after apply)"},
        )
        result = format_change(change, color=False)
        assert result.splitlines() == [
            "  # aws_subnet.public will be created",
            '  + resource "aws_subnet" "public" {',
            '      + cidr_block = "10.0.1.0/24"',
            "      + vpc_id     = (known after apply)",
            "    }",
        ]

    def test_update(self) -> None:
        change = _change(
            Action.UPDATE,
            diff={"enable_dns_hostnames": {"from": False, "to": True}},
        )
        result = format_change(change, color=False)
        assert "will be updated in-place" in result
        assert "~ enable_dns_hostnames = false -> true" in result
        assert "forces replacement" not in result

    def test_replace_marks_forcing_attributes(self) -> None:
        change = _change(
            Action.REPLACE,
            diff={
                "cidr_block": {"from": "10.0.0.0/16", "to": "10.1.0.0/16"},
                "tags": {"from": {}, "to": {"Team": "a"}},
            },
            replace_reasons=["cidr_block"],
        )
        result = format_change(change, color=False)
        assert "aws_vpc.main must be replaced" in result
        assert '-/+ resource "aws_vpc" "main"' in result
        assert '"10.0.0.0/16" -> "10.1.0.0/16" # forces replacement' in result
        assert '{} -> { Team = "a" }' in result
        assert result.count("forces replacement") == 1

    def test_requested_replace_without_diff(self) -> None:
        result = format_change(_change(Action.REPLACE), color=False)
        assert "aws_vpc.main will be replaced, as requested" in result

    def test_delete(self) -> None:
        change = _change(Action.DELETE, prior={"id": "vpc-1"})
        result = format_change(change, color=False)
        assert "will be destroyed" in result
        assert '- resource "aws_vpc" "main" {' in result
        assert '- id = "vpc-1"' in result

    def test_update_hides_unchanged_attributes(self) -> None:
        change = _change(
            Action.UPDATE,
            "aws_instance.web",
            planned={
                "ami": "ami-1",
                "vpc_security_group_ids": ["sg-1", "sg-2"],
                "tags": {},
            },
            diff={"vpc_security_group_ids": {"from": ["sg-1"], "to": ["sg-1", "sg-2"]}},
        )
        result = format_change(change, color=False)
        assert '~ vpc_security_group_ids = ["sg-1"] -> ["sg-1", "sg-2"]' in result
        assert "# (2 unchanged attributes hidden)" in result

    def test_null_value(self) -> None:
        change = _change(Action.CREATE, "aws_subnet.a", planned={"availability_zone": None})
        assert "availability_zone = null" in format_change(change, color=False)

    def test_no_color_has_no_ansi(self) -> None:
        change = _change(Action.CREATE, planned={"cidr_block": "10.0.0.0/16"})
        assert "\x1b[" not in format_change(change, color=False)
        assert "\x1b[" in format_change(change, color=True)


class TestFormatPlan:
    def test_no_changes(self) -> None:
        plan = Plan(metadata=_META, changes=[_change(Action.NOOP)])
        assert format_plan(plan, color=False) == "No changes. Resources are up-to-date."

    def test_skips_noop(self) -> None:
        plan = Plan(
            metadata=_META,
            changes=[
                _change(Action.NOOP),
                _change(Action.CREATE, "aws_subnet.new", planned={"cidr_block": "10.0.2.0/24"}),
            ],
        )
        result = format_plan(plan, color=False)
        assert "aws_vpc.main" not in result
        assert "aws_subnet.new" in result

    def test_blocks_are_separated_by_blank_line(self) -> None:
        result = format_changes(
            [_change(Action.DELETE, "aws_subnet.a"), _change(Action.DELETE)], color=False
        )
        assert "    }\n\n  # aws_vpc.main will be destroyed" in result


class TestHasActionableChanges:
    def test_all_noop(self) -> None:
        plan = Plan(metadata=_META, changes=[_change(Action.NOOP)])
        assert has_actionable_changes(plan) is False

    def test_with_replace(self) -> None:
        plan = Plan(metadata=_META, changes=[_change(Action.REPLACE)])
        assert has_actionable_changes(plan) is True

    def test_empty_plan(self) -> None:
        assert has_actionable_changes(Plan(metadata=_META, changes=[])) is False
