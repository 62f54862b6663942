"""EC2 instance resource model."""

from __future__ import annotations

from typing import Annotated, ClassVar

from pydantic import Field

from aws_provisioner.resources.base import Resource
from aws_provisioner.resources.markers import Compare, ForceNew, Ref


class InstanceResource(Resource):
    """A single EC2 instance.

    Everything but tags and security groups is fixed at launch time. Leaving
    ``vpc_security_group_ids`` unset uses the VPC default group.
    """

    resource_type: ClassVar[str] = "aws_instance"
    namespace: ClassVar[str] = "instance"
    plan_priority: ClassVar[int] = 50

    ami: Annotated[str, ForceNew()] = Field(min_length=1)
    instance_type: Annotated[str, ForceNew()] = "t3.micro"
    subnet_id: Annotated[str, Ref("aws_subnet"), ForceNew()]
    key_name: Annotated[str | None, Ref("aws_key_pair", "key_name"), ForceNew()] = None
    vpc_security_group_ids: Annotated[
        list[str] | None, Ref("aws_security_group"), Compare("set")
    ] = None
    associate_public_ip_address: Annotated[bool | None, ForceNew()] = None
