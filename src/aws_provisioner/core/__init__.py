"""Core infrastructure components for aws-provisioner."""

from aws_provisioner.core.state import ResourceInstance, State
from aws_provisioner.core.provider import AWSProvider
from aws_provisioner.core.backend import LocalBackend, S3Backend, StateBackend

__all__ = ["AWSProvider", "LocalBackend", "ResourceInstance", "S3Backend", "State", "StateBackend"]
