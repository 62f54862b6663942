"""Default resource type registry factory."""

from __future__ import annotations

from aws_provisioner.engine.instance_handler import InstanceHandler
from aws_provisioner.engine.key_pair_handler import KeyPairHandler
from aws_provisioner.engine.registry import ResourceTypeRegistry
from aws_provisioner.engine.security_group_handler import SecurityGroupHandler
from aws_provisioner.engine.subnet_handler import SubnetHandler
from aws_provisioner.engine.vpc_handler import VpcHandler
from aws_provisioner.resources.instance import InstanceResource
from aws_provisioner.resources.key_pair import KeyPairResource
from aws_provisioner.resources.security_group import SecurityGroupResource
from aws_provisioner.resources.subnet import SubnetResource
from aws_provisioner.resources.vpc import VpcResource


def default_registry() -> ResourceTypeRegistry:
    """Create a fresh registry with all built-in resource types and handlers."""
    registry = ResourceTypeRegistry()

    registry.register(VpcResource, VpcHandler())
    registry.register(SubnetResource, SubnetHandler())
    registry.register(SecurityGroupResource, SecurityGroupHandler())
    registry.register(KeyPairResource, KeyPairHandler())
    registry.register(InstanceResource, InstanceHandler())

    return registry
