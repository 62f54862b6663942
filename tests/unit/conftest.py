"""Shared fixtures for unit tests."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import pytest

from aws_provisioner.config import load
from aws_provisioner.core import AWSProvider
from aws_provisioner.engine.handlers import EngineContext

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from aws_provisioner.config.schema import Config

_AWS_ENV_VARS = (
    "AWS_REGION",
    "AWS_PROFILE",
    "AWS_ENDPOINT_URL",
    "AWS_DEFAULT_REGION",
    "AWS_PROVISIONER_LOG",
    "AWS_PROVISIONER_WORKSPACE",
)


@pytest.fixture(autouse=True)
def _clean_aws_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove AWS_* env vars so unit tests don't leak account config."""
    for var in _AWS_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., Config]:
    """Factory fixture: write YAML + optional .env, return loaded Config."""

    def _make(yaml_str: str, *, dotenv: str | None = None) -> Config:
        (tmp_path / "config.yaml").write_text(yaml_str)
        if dotenv is not None:
            (tmp_path / ".env").write_text(dotenv)
        return load(tmp_path / "config.yaml")

    return _make


@pytest.fixture
def ec2() -> MagicMock:
    return MagicMock()


@pytest.fixture
def ctx(ec2: MagicMock) -> EngineContext:
    return EngineContext(provider=AWSProvider.from_client(ec2, region="eu-west-2"))
