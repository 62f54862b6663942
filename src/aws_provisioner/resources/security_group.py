"""Security group resource model."""

from __future__ import annotations

from typing import Annotated, ClassVar, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from aws_provisioner.resources.base import Resource
from aws_provisioner.resources.markers import Compare, ForceNew, Ref


class SecurityGroupRule(BaseModel):
    """A single ingress or egress rule."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    protocol: Literal["tcp", "udp", "icmp", "-1"] = "tcp"
    from_port: int = Field(ge=-1, le=65535)
    to_port: int = Field(ge=-1, le=65535)
    cidr_blocks: tuple[str, ...] = ()
    description: str = ""

    @model_validator(mode="after")
    def _check_ports(self) -> Self:
        if self.protocol in ("tcp", "udp") and self.from_port > self.to_port:
            raise ValueError("'from_port' must not exceed 'to_port'")
        return self


_ALLOW_ALL_EGRESS = SecurityGroupRule(
    protocol="-1", from_port=0, to_port=0, cidr_blocks=("0.0.0.0/0",)
)


class SecurityGroupResource(Resource):
    """A VPC security group with inline rules.

    Rules are compared as sets; adding or removing one is applied in place
    through authorize/revoke calls.
    """

    resource_type: ClassVar[str] = "aws_security_group"
    namespace: ClassVar[str] = "security_group"
    plan_priority: ClassVar[int] = 20

    group_name: Annotated[str | None, ForceNew()] = None
    description: Annotated[str, ForceNew()] = "Managed by aws-provisioner"
    vpc_id: Annotated[str, Ref("aws_vpc"), ForceNew()]
    ingress: Annotated[list[SecurityGroupRule], Compare("set")] = Field(default_factory=list)
    egress: Annotated[list[SecurityGroupRule], Compare("set")] = Field(
        default_factory=lambda: [_ALLOW_ALL_EGRESS]
    )

    @property
    def effective_group_name(self) -> str:
        return self.group_name or self.name
