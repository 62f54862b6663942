"""VPC resource model."""

from __future__ import annotations

from typing import Annotated, ClassVar, Literal

from pydantic import Field

from aws_provisioner.resources.base import Resource
from aws_provisioner.resources.markers import ForceNew


class VpcResource(Resource):
    """An AWS VPC.

    The network every other shipped resource type lives in. Subnets and
    security groups reference its ``id``.
    """

    resource_type: ClassVar[str] = "aws_vpc"
    namespace: ClassVar[str] = "vpc"
    plan_priority: ClassVar[int] = 0

    cidr_block: Annotated[str, ForceNew()] = Field(pattern=r"^\d{1,3}(\.\d{1,3}){3}/\d{1,2}$")
    instance_tenancy: Annotated[Literal["default", "dedicated"], ForceNew()] = "default"
    enable_dns_support: bool = True
    enable_dns_hostnames: bool = False
