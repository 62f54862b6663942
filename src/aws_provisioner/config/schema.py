"""Configuration models for YAML-based provisioning."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Discriminator, Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

from aws_provisioner.engine.types import FailurePolicy

# Pydantic resolves these annotations at runtime.
from aws_provisioner.resources.base import Resource  # noqa: TC001
from aws_provisioner.resources.instance import InstanceResource  # noqa: TC001
from aws_provisioner.resources.key_pair import KeyPairResource  # noqa: TC001
from aws_provisioner.resources.security_group import SecurityGroupResource  # noqa: TC001
from aws_provisioner.resources.subnet import SubnetResource  # noqa: TC001
from aws_provisioner.resources.vpc import VpcResource  # noqa: TC001


class ProviderConfig(BaseSettings):
    """AWS provider connection settings.

    Fields can be set via YAML (constructor kwargs) or environment variables
    with the ``AWS_`` prefix. Constructor kwargs take precedence.

    Credentials are never part of the config; boto3 picks them up from its
    usual chain (environment, shared credentials file, instance profile).
    """

    model_config = SettingsConfigDict(env_prefix="AWS_")

    region: str | None = None
    profile: str | None = None
    endpoint_url: str | None = None


class LocalBackendConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["local"] = "local"
    path: Path = Path(".aws-provisioner-state.json")


class S3BackendConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["s3"]
    bucket: str
    key: str
    region: str | None = None
    lock_table: str | None = None
    encrypt: bool = True


def _default_backend_type(v: Any) -> Any:
    if isinstance(v, dict) and "type" not in v:
        return {**v, "type": "local"}
    return v


BackendConfig = Annotated[
    LocalBackendConfig | S3BackendConfig,
    BeforeValidator(_default_backend_type),
    Discriminator("type"),
]


class ExecutionConfig(BaseModel):
    """Concurrency, retry and locking knobs for apply."""

    model_config = ConfigDict(extra="forbid")

    parallelism: int = Field(default=10, ge=1)
    max_attempts: int = Field(default=5, ge=1)
    backoff_initial: float = Field(default=1.0, gt=0)
    backoff_max: float = Field(default=30.0, gt=0)
    on_failure: FailurePolicy = FailurePolicy.CONTINUE
    lock_timeout: float = Field(default=0.0, ge=0)


def _none_to_list(v: Any) -> Any:
    return v if v is not None else []


def _none_to_dict(v: Any) -> Any:
    return v if v is not None else {}


class Config(BaseModel):
    """Provisioning configuration, validated straight from the YAML mapping."""

    provider: Annotated[ProviderConfig, BeforeValidator(_none_to_dict)] = Field(
        default_factory=ProviderConfig
    )
    workspace: str = Field(default="default", pattern=r"^[a-zA-Z0-9_-]+$")
    backend: Annotated[BackendConfig, BeforeValidator(_none_to_dict)] = Field(
        default_factory=LocalBackendConfig
    )
    execution: Annotated[ExecutionConfig, BeforeValidator(_none_to_dict)] = Field(
        default_factory=ExecutionConfig
    )
    vpcs: Annotated[list[VpcResource], BeforeValidator(_none_to_list)] = []
    subnets: Annotated[list[SubnetResource], BeforeValidator(_none_to_list)] = []
    security_groups: Annotated[list[SecurityGroupResource], BeforeValidator(_none_to_list)] = []
    key_pairs: Annotated[list[KeyPairResource], BeforeValidator(_none_to_list)] = []
    instances: Annotated[list[InstanceResource], BeforeValidator(_none_to_list)] = []
    config_dir: Path = Path()

    @computed_field  # type: ignore[prop-decorator]
    @property
    def resources(self) -> list[Resource]:
        """All declared resources, in no significant order."""
        return [
            *self.vpcs,
            *self.subnets,
            *self.security_groups,
            *self.key_pairs,
            *self.instances,
        ]

    @property
    def state_location(self) -> str:
        """Where state lives, for messages."""
        match self.backend:
            case S3BackendConfig(bucket=bucket, key=key):
                return f"s3://{bucket}/{key}"
            case _:
                return str(self.config_dir / self.backend.path)
