"""Subnet handler implementing CRUD via the EC2 API."""

from __future__ import annotations

import ipaddress
import logging
from typing import TYPE_CHECKING, Any

from aws_provisioner.engine.aws_handler import AWSResourceHandler, tags_from_aws
from aws_provisioner.resources.references import iter_refs

if TYPE_CHECKING:
    from aws_provisioner.core.state import ResourceInstance
    from aws_provisioner.engine.handlers import EngineContext, PlanContext
    from aws_provisioner.resources.subnet import SubnetResource

logger = logging.getLogger(__name__)


class SubnetHandler(AWSResourceHandler["SubnetResource"]):
    """CRUD handler for subnets."""

    tag_resource_type = "subnet"

    def _read_attrs(self, subnet: dict[str, Any], name: str) -> dict[str, Any]:
        """Extract subnet attributes matching SubnetResource model_dump output."""
        return {
            "id": subnet["SubnetId"],
            "name": name,
            "vpc_id": subnet["VpcId"],
            "cidr_block": subnet["CidrBlock"],
            "availability_zone": subnet.get("AvailabilityZone"),
            "map_public_ip_on_launch": subnet.get("MapPublicIpOnLaunch", False),
            "tags": tags_from_aws(subnet.get("Tags")),
        }

    def _describe(self, ctx: EngineContext, subnet_id: str) -> dict[str, Any] | None:
        resp = self._describe_or_none(ctx, "describe_subnets", SubnetIds=[subnet_id])
        if not resp or not resp.get("Subnets"):
            return None
        return resp["Subnets"][0]

    def _set_public_ip(self, ctx: EngineContext, subnet_id: str, value: bool) -> None:
        self._call(
            ctx,
            "modify_subnet_attribute",
            SubnetId=subnet_id,
            MapPublicIpOnLaunch={"Value": value},
        )

    def validate(self, ctx: EngineContext, desired: SubnetResource) -> list[str]:
        _ = ctx
        try:
            ipaddress.ip_network(desired.cidr_block)
        except ValueError as e:
            return [f"Subnet '{desired.name}' has an invalid cidr_block: {e}"]
        return []

    def validate_plan(
        self,
        ctx: EngineContext,
        desired: SubnetResource,
        plan_ctx: PlanContext,
    ) -> list[str]:
        """The CIDR must sit inside its VPC and clear of sibling subnets."""
        _ = ctx
        try:
            network = ipaddress.ip_network(desired.cidr_block)
        except ValueError:
            # Reported by validate().
            return []

        errors: list[str] = []
        for ref in iter_refs(desired.vpc_id):
            vpc_cidr = plan_ctx.get_attr(ref.address, "cidr_block")
            if not isinstance(vpc_cidr, str):
                continue
            try:
                inside = network.subnet_of(ipaddress.ip_network(vpc_cidr))
            except (TypeError, ValueError):
                # Reported by the VPC's own validation.
                continue
            if not inside:
                errors.append(
                    f"Subnet '{desired.name}' cidr_block {desired.cidr_block} is not inside "
                    f"{ref.address} ({vpc_cidr})"
                )

        # Each overlapping pair is reported once, on the later address.
        for other in plan_ctx.declared(desired.resource_type):
            other_cidr = getattr(other, "cidr_block", None)
            if other.address >= desired.address or getattr(other, "vpc_id", None) != desired.vpc_id:
                continue
            try:
                overlaps = network.overlaps(ipaddress.ip_network(other_cidr))
            except (TypeError, ValueError):
                continue
            if overlaps:
                errors.append(
                    f"Subnet '{desired.name}' cidr_block {desired.cidr_block} overlaps "
                    f"{other.address} ({other_cidr})"
                )
        return errors

    def create(self, ctx: EngineContext, desired: SubnetResource) -> dict[str, Any]:
        """Create a subnet and wait for it to become available."""
        kwargs: dict[str, Any] = {"VpcId": desired.vpc_id, "CidrBlock": desired.cidr_block}
        if desired.availability_zone is not None:
            kwargs["AvailabilityZone"] = desired.availability_zone
        resp = self._call(ctx, "create_subnet", **kwargs, **self._tag_specs(desired))
        subnet_id = resp["Subnet"]["SubnetId"]
        logger.info("Created subnet %s (%s)", subnet_id, desired.address)
        self._wait(ctx, "subnet_available", SubnetIds=[subnet_id])
        if desired.map_public_ip_on_launch:
            self._set_public_ip(ctx, subnet_id, True)
        subnet = self._describe(ctx, subnet_id)
        if subnet is None:
            raise RuntimeError(f"Subnet {subnet_id} disappeared right after creation")
        return self._read_attrs(subnet, desired.name)

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        """Read a subnet. Returns None if it no longer exists."""
        subnet = self._describe(ctx, prior.attributes["id"])
        if subnet is None:
            return None
        return self._read_attrs(subnet, prior.name)

    def update(
        self, ctx: EngineContext, desired: SubnetResource, prior: ResourceInstance
    ) -> dict[str, Any]:
        """Update the public IP mapping and tags in place."""
        subnet_id = prior.attributes["id"]
        if prior.attributes.get("map_public_ip_on_launch") != desired.map_public_ip_on_launch:
            self._set_public_ip(ctx, subnet_id, desired.map_public_ip_on_launch)
        self._sync_tags(ctx, subnet_id, desired.tags, prior.attributes.get("tags", {}))
        subnet = self._describe(ctx, subnet_id)
        if subnet is None:
            raise RuntimeError(f"Subnet {subnet_id} not found for update")
        return self._read_attrs(subnet, desired.name)

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        """Delete a subnet."""
        self._delete_ignoring_missing(ctx, "delete_subnet", SubnetId=prior.attributes["id"])
