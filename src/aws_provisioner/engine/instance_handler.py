"""EC2 instance handler implementing CRUD via the EC2 API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from botocore.exceptions import ClientError

from aws_provisioner.engine.aws_handler import AWSResourceHandler, is_not_found, tags_from_aws
from aws_provisioner.resources.references import iter_refs

if TYPE_CHECKING:
    from aws_provisioner.core.state import ResourceInstance
    from aws_provisioner.engine.handlers import EngineContext, PlanContext
    from aws_provisioner.resources.instance import InstanceResource

logger = logging.getLogger(__name__)

# Instances in these states are treated as gone.
_GONE_STATES = frozenset({"shutting-down", "terminated"})


def _is_expression(value: Any) -> bool:
    return next(iter_refs(value), None) is not None


class InstanceHandler(AWSResourceHandler["InstanceResource"]):
    """CRUD handler for EC2 instances."""

    tag_resource_type = "instance"

    def validate_plan(
        self,
        ctx: EngineContext,
        desired: InstanceResource,
        plan_ctx: PlanContext,
    ) -> list[str]:
        """Security groups must live in the same VPC as the instance's subnet."""
        _ = ctx
        subnet_vpcs = {
            plan_ctx.get_attr(ref.address, "vpc_id") for ref in iter_refs(desired.subnet_id)
        }
        subnet_vpcs.discard(None)
        if len(subnet_vpcs) != 1:
            return []
        (subnet_vpc,) = subnet_vpcs

        errors: list[str] = []
        for ref in iter_refs(desired.vpc_security_group_ids or []):
            sg_vpc = plan_ctx.get_attr(ref.address, "vpc_id")
            if sg_vpc is None or _is_expression(sg_vpc) != _is_expression(subnet_vpc):
                # A literal id and a reference cannot be compared before apply.
                continue
            if sg_vpc != subnet_vpc:
                errors.append(
                    f"Instance '{desired.name}' uses {ref.address} from a different VPC "
                    f"than its subnet ({sg_vpc} vs {subnet_vpc})"
                )
        return errors

    def _read_attrs(
        self, instance: dict[str, Any], name: str, prior: dict[str, Any]
    ) -> dict[str, Any]:
        """Extract instance attributes matching InstanceResource model_dump output."""
        return {
            "id": instance["InstanceId"],
            "name": name,
            "ami": instance["ImageId"],
            "instance_type": instance["InstanceType"],
            "subnet_id": instance.get("SubnetId"),
            "key_name": instance.get("KeyName"),
            "vpc_security_group_ids": sorted(
                g["GroupId"] for g in instance.get("SecurityGroups", [])
            ),
            # EC2 only reports the resulting address, not the launch flag.
            "associate_public_ip_address": prior.get("associate_public_ip_address"),
            "private_ip": instance.get("PrivateIpAddress"),
            "public_ip": instance.get("PublicIpAddress"),
            "instance_state": instance.get("State", {}).get("Name"),
            "tags": tags_from_aws(instance.get("Tags")),
        }

    def _describe(self, ctx: EngineContext, instance_id: str) -> dict[str, Any] | None:
        resp = self._describe_or_none(ctx, "describe_instances", InstanceIds=[instance_id])
        for reservation in (resp or {}).get("Reservations", []):
            for instance in reservation.get("Instances", []):
                if instance.get("State", {}).get("Name") not in _GONE_STATES:
                    return instance
        return None

    def _launch_params(self, desired: InstanceResource) -> dict[str, Any]:
        params: dict[str, Any] = {
            "ImageId": desired.ami,
            "InstanceType": desired.instance_type,
            "MinCount": 1,
            "MaxCount": 1,
            **self._tag_specs(desired),
        }
        if desired.key_name is not None:
            params["KeyName"] = desired.key_name
        if desired.associate_public_ip_address is None:
            params["SubnetId"] = desired.subnet_id
            if desired.vpc_security_group_ids:
                params["SecurityGroupIds"] = list(desired.vpc_security_group_ids)
        else:
            # The public IP flag is only accepted on an explicit network interface.
            interface: dict[str, Any] = {
                "DeviceIndex": 0,
                "SubnetId": desired.subnet_id,
                "AssociatePublicIpAddress": desired.associate_public_ip_address,
            }
            if desired.vpc_security_group_ids:
                interface["Groups"] = list(desired.vpc_security_group_ids)
            params["NetworkInterfaces"] = [interface]
        return params

    def create(self, ctx: EngineContext, desired: InstanceResource) -> dict[str, Any]:
        """Launch an instance and wait until it is running."""
        resp = self._call(ctx, "run_instances", **self._launch_params(desired))
        instance_id = resp["Instances"][0]["InstanceId"]
        logger.info("Launched instance %s (%s)", instance_id, desired.address)
        self._wait(ctx, "instance_running", InstanceIds=[instance_id])

        instance = self._describe(ctx, instance_id)
        if instance is None:
            raise RuntimeError(f"Instance {instance_id} terminated right after launch")
        return self._read_attrs(
            instance,
            desired.name,
            {"associate_public_ip_address": desired.associate_public_ip_address},
        )

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        """Read an instance. Returns None if it is gone or terminating."""
        instance = self._describe(ctx, prior.attributes["id"])
        if instance is None:
            return None
        return self._read_attrs(instance, prior.name, prior.attributes)

    def update(
        self, ctx: EngineContext, desired: InstanceResource, prior: ResourceInstance
    ) -> dict[str, Any]:
        """Change security groups and tags in place."""
        instance_id = prior.attributes["id"]
        groups = desired.vpc_security_group_ids
        if groups is not None and sorted(groups) != sorted(
            prior.attributes.get("vpc_security_group_ids") or []
        ):
            self._call(ctx, "modify_instance_attribute", InstanceId=instance_id, Groups=groups)
        self._sync_tags(ctx, instance_id, desired.tags, prior.attributes.get("tags", {}))

        instance = self._describe(ctx, instance_id)
        if instance is None:
            raise RuntimeError(f"Instance {instance_id} not found for update")
        return self._read_attrs(instance, desired.name, prior.attributes)

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        """Terminate an instance and wait until it is gone."""
        instance_id = prior.attributes["id"]
        try:
            self._call(ctx, "terminate_instances", InstanceIds=[instance_id])
        except ClientError as e:
            if not is_not_found(e):
                raise
            logger.info("Instance %s already gone", instance_id)
            return
        self._wait(ctx, "instance_terminated", InstanceIds=[instance_id])
