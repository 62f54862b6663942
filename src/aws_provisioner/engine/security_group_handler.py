"""Security group handler implementing CRUD via the EC2 API."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Literal

from aws_provisioner.engine.aws_handler import AWSResourceHandler, tags_from_aws
from aws_provisioner.resources.security_group import SecurityGroupRule

if TYPE_CHECKING:
    from collections.abc import Iterable

    from aws_provisioner.core.state import ResourceInstance
    from aws_provisioner.engine.handlers import EngineContext
    from aws_provisioner.resources.security_group import SecurityGroupResource

logger = logging.getLogger(__name__)

Direction = Literal["ingress", "egress"]

_DIRECTIONS: tuple[Direction, ...] = ("ingress", "egress")
_PERMISSIONS_KEY: dict[Direction, str] = {
    "ingress": "IpPermissions",
    "egress": "IpPermissionsEgress",
}


def rule_to_permission(rule: SecurityGroupRule) -> dict[str, Any]:
    """Convert a rule to the ``IpPermissions`` shape."""
    ranges: list[dict[str, str]] = []
    for cidr in rule.cidr_blocks:
        entry = {"CidrIp": cidr}
        if rule.description:
            entry["Description"] = rule.description
        ranges.append(entry)
    permission: dict[str, Any] = {"IpProtocol": rule.protocol, "IpRanges": ranges}
    if rule.protocol != "-1":
        permission["FromPort"] = rule.from_port
        permission["ToPort"] = rule.to_port
    return permission


def permission_to_rule(permission: dict[str, Any]) -> SecurityGroupRule:
    """Convert an ``IpPermissions`` entry back to a rule.

    All IPv4 ranges of the entry are folded into one rule; the description
    of the first range wins.
    """
    ranges = permission.get("IpRanges", [])
    protocol = permission.get("IpProtocol", "-1")
    return SecurityGroupRule(
        protocol=protocol,
        from_port=0 if protocol == "-1" else permission.get("FromPort", 0),
        to_port=0 if protocol == "-1" else permission.get("ToPort", 0),
        cidr_blocks=tuple(r["CidrIp"] for r in ranges),
        description=ranges[0].get("Description", "") if ranges else "",
    )


def _rule_key(rule: SecurityGroupRule) -> str:
    return json.dumps(rule.model_dump(mode="json"), sort_keys=True)


class SecurityGroupHandler(AWSResourceHandler["SecurityGroupResource"]):
    """CRUD handler for VPC security groups.

    Rules are reconciled as sets: anything recorded but not declared is
    revoked, anything declared but not recorded is authorized.
    """

    tag_resource_type = "security-group"

    def _read_attrs(self, group: dict[str, Any], name: str) -> dict[str, Any]:
        """Extract security group attributes matching SecurityGroupResource model_dump output."""
        return {
            "id": group["GroupId"],
            "name": name,
            "group_name": group["GroupName"],
            "description": group.get("Description", ""),
            "vpc_id": group.get("VpcId"),
            "ingress": [
                permission_to_rule(p).model_dump(mode="json")
                for p in group.get("IpPermissions", [])
            ],
            "egress": [
                permission_to_rule(p).model_dump(mode="json")
                for p in group.get("IpPermissionsEgress", [])
            ],
            "tags": tags_from_aws(group.get("Tags")),
        }

    def _describe(self, ctx: EngineContext, group_id: str) -> dict[str, Any] | None:
        resp = self._describe_or_none(ctx, "describe_security_groups", GroupIds=[group_id])
        if not resp or not resp.get("SecurityGroups"):
            return None
        return resp["SecurityGroups"][0]

    def _sync_rules(
        self,
        ctx: EngineContext,
        group_id: str,
        direction: Direction,
        desired: Iterable[SecurityGroupRule],
        current: Iterable[SecurityGroupRule],
    ) -> None:
        wanted = {_rule_key(r): r for r in desired}
        present = {_rule_key(r): r for r in current}
        revoke = [rule_to_permission(r) for k, r in sorted(present.items()) if k not in wanted]
        authorize = [rule_to_permission(r) for k, r in sorted(wanted.items()) if k not in present]
        if revoke:
            logger.debug("Revoking %d %s rule(s) on %s", len(revoke), direction, group_id)
            self._call(
                ctx,
                f"revoke_security_group_{direction}",
                GroupId=group_id,
                IpPermissions=revoke,
            )
        if authorize:
            logger.debug("Authorizing %d %s rule(s) on %s", len(authorize), direction, group_id)
            self._call(
                ctx,
                f"authorize_security_group_{direction}",
                GroupId=group_id,
                IpPermissions=authorize,
            )

    def _current_rules(
        self, group: dict[str, Any], direction: Direction
    ) -> list[SecurityGroupRule]:
        return [permission_to_rule(p) for p in group.get(_PERMISSIONS_KEY[direction], [])]

    def validate(self, ctx: EngineContext, desired: SecurityGroupResource) -> list[str]:
        _ = ctx
        errors: list[str] = []
        for direction in _DIRECTIONS:
            for rule in getattr(desired, direction):
                if rule.protocol == "-1" and (rule.from_port, rule.to_port) != (0, 0):
                    errors.append(
                        f"Security group '{desired.name}': all-traffic {direction} rules "
                        "must use from_port=0 and to_port=0"
                    )
                if not rule.cidr_blocks:
                    errors.append(
                        f"Security group '{desired.name}': {direction} rule needs cidr_blocks"
                    )
        return errors

    def create(self, ctx: EngineContext, desired: SecurityGroupResource) -> dict[str, Any]:
        """Create a security group and reconcile its rules."""
        resp = self._call(
            ctx,
            "create_security_group",
            GroupName=desired.effective_group_name,
            Description=desired.description,
            VpcId=desired.vpc_id,
            **self._tag_specs(desired),
        )
        group_id = resp["GroupId"]
        logger.info("Created security group %s (%s)", group_id, desired.address)

        group = self._describe(ctx, group_id)
        if group is None:
            raise RuntimeError(f"Security group {group_id} disappeared right after creation")
        # New groups start with an allow-all egress rule and no ingress.
        for direction in _DIRECTIONS:
            self._sync_rules(
                ctx,
                group_id,
                direction,
                getattr(desired, direction),
                self._current_rules(group, direction),
            )

        group = self._describe(ctx, group_id)
        if group is None:
            raise RuntimeError(f"Security group {group_id} disappeared right after creation")
        return self._read_attrs(group, desired.name)

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        """Read a security group. Returns None if it no longer exists."""
        group = self._describe(ctx, prior.attributes["id"])
        if group is None:
            return None
        return self._read_attrs(group, prior.name)

    def update(
        self, ctx: EngineContext, desired: SecurityGroupResource, prior: ResourceInstance
    ) -> dict[str, Any]:
        """Reconcile rules and tags in place."""
        group_id = prior.attributes["id"]
        group = self._describe(ctx, group_id)
        if group is None:
            raise RuntimeError(f"Security group {group_id} not found for update")
        for direction in _DIRECTIONS:
            self._sync_rules(
                ctx,
                group_id,
                direction,
                getattr(desired, direction),
                self._current_rules(group, direction),
            )
        self._sync_tags(ctx, group_id, desired.tags, prior.attributes.get("tags", {}))

        group = self._describe(ctx, group_id)
        if group is None:
            raise RuntimeError(f"Security group {group_id} not found for update")
        return self._read_attrs(group, desired.name)

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        """Delete a security group."""
        self._delete_ignoring_missing(
            ctx, "delete_security_group", GroupId=prior.attributes["id"]
        )
