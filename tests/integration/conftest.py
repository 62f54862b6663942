"""Pytest fixtures for integration tests against LocalStack.

The suite is opt-in: set ``AWS_PROVISIONER_INTEGRATION=1`` and make sure a
Docker daemon is reachable. ``LOCALSTACK_IMAGE`` overrides the image tag.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

import pytest
from testcontainers.localstack import LocalStackContainer

from aws_provisioner.config.schema import Config, LocalBackendConfig, ProviderConfig

if TYPE_CHECKING:
    from collections.abc import Callable, Generator
    from pathlib import Path

_DEFAULT_IMAGE = "localstack/localstack:3.8"


@pytest.fixture(scope="session")
def localstack() -> Generator[LocalStackContainer]:
    """Start a LocalStack container for the test session."""
    if not os.environ.get("AWS_PROVISIONER_INTEGRATION"):
        pytest.skip("set AWS_PROVISIONER_INTEGRATION=1 to run LocalStack integration tests")

    container = LocalStackContainer(
        image=os.environ.get("LOCALSTACK_IMAGE", _DEFAULT_IMAGE), region_name="us-east-1"
    ).with_services("ec2", "s3", "dynamodb")
    try:
        container.start()
    except Exception as exc:
        pytest.skip(f"LocalStack could not be started: {exc}")

    with pytest.MonkeyPatch.context() as mp:
        mp.setenv("AWS_ACCESS_KEY_ID", "test")
        mp.setenv("AWS_SECRET_ACCESS_KEY", "test")
        mp.setenv("AWS_DEFAULT_REGION", "us-east-1")
        try:
            yield container
        finally:
            container.stop()


@pytest.fixture
def ec2(localstack: LocalStackContainer) -> Any:
    """A raw EC2 client, for simulating out-of-band changes."""
    return localstack.get_client("ec2")


@pytest.fixture
def make_config(localstack: LocalStackContainer, tmp_path: Path) -> Callable[..., Config]:
    """Factory for a ``Config`` pointed at LocalStack with local state under ``tmp_path``."""

    def _make(**resources: Any) -> Config:
        return Config(
            provider=ProviderConfig(region="us-east-1", endpoint_url=localstack.get_url()),
            backend=LocalBackendConfig(path=tmp_path / "state.json"),
            **resources,
        )

    return _make
