"""AWS resource definitions."""

from aws_provisioner.resources.base import Resource
from aws_provisioner.resources.instance import InstanceResource
from aws_provisioner.resources.key_pair import KeyPairResource
from aws_provisioner.resources.security_group import SecurityGroupResource, SecurityGroupRule
from aws_provisioner.resources.subnet import SubnetResource
from aws_provisioner.resources.vpc import VpcResource

__all__ = [
    "InstanceResource",
    "KeyPairResource",
    "Resource",
    "SecurityGroupResource",
    "SecurityGroupRule",
    "SubnetResource",
    "VpcResource",
]
