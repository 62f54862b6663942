"""VPC handler implementing CRUD via the EC2 API."""

from __future__ import annotations

import ipaddress
import logging
from typing import TYPE_CHECKING, Any

from aws_provisioner.engine.aws_handler import AWSResourceHandler, tags_from_aws

if TYPE_CHECKING:
    from aws_provisioner.core.state import ResourceInstance
    from aws_provisioner.engine.handlers import EngineContext
    from aws_provisioner.resources.vpc import VpcResource

logger = logging.getLogger(__name__)

# ModifyVpcAttribute accepts a single attribute per call.
_DNS_ATTRIBUTES = {
    "enable_dns_support": ("enableDnsSupport", "EnableDnsSupport"),
    "enable_dns_hostnames": ("enableDnsHostnames", "EnableDnsHostnames"),
}


class VpcHandler(AWSResourceHandler["VpcResource"]):
    """CRUD handler for VPCs."""

    tag_resource_type = "vpc"

    def _read_attrs(self, ctx: EngineContext, vpc: dict[str, Any], name: str) -> dict[str, Any]:
        """Extract VPC attributes matching VpcResource model_dump output."""
        vpc_id = vpc["VpcId"]
        attrs: dict[str, Any] = {
            "id": vpc_id,
            "name": name,
            "cidr_block": vpc["CidrBlock"],
            "instance_tenancy": vpc.get("InstanceTenancy", "default"),
            "owner_id": vpc.get("OwnerId"),
            "tags": tags_from_aws(vpc.get("Tags")),
        }
        for field, (attribute, key) in _DNS_ATTRIBUTES.items():
            resp = self._call(ctx, "describe_vpc_attribute", VpcId=vpc_id, Attribute=attribute)
            attrs[field] = resp[key]["Value"]
        return attrs

    def _set_dns(
        self, ctx: EngineContext, vpc_id: str, desired: VpcResource, prior: dict[str, Any]
    ) -> None:
        for field, (_, key) in _DNS_ATTRIBUTES.items():
            value = getattr(desired, field)
            if prior.get(field) != value:
                self._call(ctx, "modify_vpc_attribute", VpcId=vpc_id, **{key: {"Value": value}})

    def _describe(self, ctx: EngineContext, vpc_id: str) -> dict[str, Any] | None:
        resp = self._describe_or_none(ctx, "describe_vpcs", VpcIds=[vpc_id])
        if not resp or not resp.get("Vpcs"):
            return None
        return resp["Vpcs"][0]

    def validate(self, ctx: EngineContext, desired: VpcResource) -> list[str]:
        _ = ctx
        try:
            network = ipaddress.ip_network(desired.cidr_block)
        except ValueError as e:
            return [f"VPC '{desired.name}' has an invalid cidr_block: {e}"]
        if not 16 <= network.prefixlen <= 28:
            return [f"VPC '{desired.name}' cidr_block must be between /16 and /28"]
        return []

    def create(self, ctx: EngineContext, desired: VpcResource) -> dict[str, Any]:
        """Create a VPC and wait for it to become available."""
        resp = self._call(
            ctx,
            "create_vpc",
            CidrBlock=desired.cidr_block,
            InstanceTenancy=desired.instance_tenancy,
            **self._tag_specs(desired),
        )
        vpc_id = resp["Vpc"]["VpcId"]
        logger.info("Created VPC %s (%s)", vpc_id, desired.address)
        self._wait(ctx, "vpc_available", VpcIds=[vpc_id])
        # New VPCs come with DNS support on and hostnames off.
        self._set_dns(
            ctx,
            vpc_id,
            desired,
            {"enable_dns_support": True, "enable_dns_hostnames": False},
        )
        vpc = self._describe(ctx, vpc_id)
        if vpc is None:
            raise RuntimeError(f"VPC {vpc_id} disappeared right after creation")
        return self._read_attrs(ctx, vpc, desired.name)

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        """Read a VPC. Returns None if it no longer exists."""
        vpc = self._describe(ctx, prior.attributes["id"])
        if vpc is None:
            return None
        return self._read_attrs(ctx, vpc, prior.name)

    def update(
        self, ctx: EngineContext, desired: VpcResource, prior: ResourceInstance
    ) -> dict[str, Any]:
        """Update DNS attributes and tags in place."""
        vpc_id = prior.attributes["id"]
        self._set_dns(ctx, vpc_id, desired, prior.attributes)
        self._sync_tags(ctx, vpc_id, desired.tags, prior.attributes.get("tags", {}))
        vpc = self._describe(ctx, vpc_id)
        if vpc is None:
            raise RuntimeError(f"VPC {vpc_id} not found for update")
        return self._read_attrs(ctx, vpc, desired.name)

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        """Delete a VPC."""
        self._delete_ignoring_missing(ctx, "delete_vpc", VpcId=prior.attributes["id"])
