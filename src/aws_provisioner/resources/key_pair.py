"""Key pair resource model."""

from __future__ import annotations

from typing import Annotated, ClassVar

from pydantic import Field

from aws_provisioner.resources.base import Resource
from aws_provisioner.resources.markers import ForceNew


class KeyPairResource(Resource):
    """An imported EC2 key pair.

    Only the public half is ever sent to AWS. ``key_name`` defaults to the
    resource name.
    """

    resource_type: ClassVar[str] = "aws_key_pair"
    namespace: ClassVar[str] = "key_pair"
    plan_priority: ClassVar[int] = 0

    key_name: Annotated[str | None, ForceNew()] = None
    public_key: Annotated[str, ForceNew()] = Field(min_length=1)

    @property
    def effective_key_name(self) -> str:
        return self.key_name or self.name
