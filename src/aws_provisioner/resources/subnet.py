"""Subnet resource model."""

from __future__ import annotations

from typing import Annotated, ClassVar

from aws_provisioner.resources.base import Resource
from aws_provisioner.resources.markers import ForceNew, Ref


class SubnetResource(Resource):
    """A subnet carved out of a VPC."""

    resource_type: ClassVar[str] = "aws_subnet"
    namespace: ClassVar[str] = "subnet"
    plan_priority: ClassVar[int] = 10

    vpc_id: Annotated[str, Ref("aws_vpc"), ForceNew()]
    cidr_block: Annotated[str, ForceNew()]
    availability_zone: Annotated[str | None, ForceNew()] = None
    map_public_ip_on_launch: bool = False
