"""Read ``aws-provisioner.yaml`` into a validated :class:`Config`."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dotenv import dotenv_values
from pydantic import ValidationError
from ruamel.yaml import YAML

from aws_provisioner.config.schema import Config

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from aws_provisioner.resources.base import Resource


class ConfigError(Exception):
    """Raised for configuration loading / validation errors."""


# Provider field -> environment variables consulted, first hit wins.
# boto3 reads both region variables, so both are accepted here as well.
_PROVIDER_ENV: dict[str, tuple[str, ...]] = {
    "region": ("AWS_REGION", "AWS_DEFAULT_REGION"),
    "profile": ("AWS_PROFILE",),
    "endpoint_url": ("AWS_ENDPOINT_URL",),
}

WORKSPACE_ENV = "AWS_PROVISIONER_WORKSPACE"


def _first_set(sources: Mapping[str, str | None], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        val = sources.get(key)
        if val:
            return val
    return None


def _resolve_provider(raw_provider: dict[str, Any], config_dir: Path) -> dict[str, Any]:
    """Fill unset provider fields from the process environment, then ``.env``.

    A value written in YAML always wins. The ``.env`` file is only read
    from the directory holding the config file.
    """
    unknown = sorted(set(raw_provider) - set(_PROVIDER_ENV))
    if unknown:
        raise ConfigError(f"Unknown provider field(s): {', '.join(unknown)}")

    env_file = config_dir / ".env"
    from_file = dotenv_values(env_file, encoding="utf-8-sig") if env_file.is_file() else {}

    resolved = {k: v for k, v in raw_provider.items() if v is not None}
    for field, env_keys in _PROVIDER_ENV.items():
        if field in resolved:
            continue
        val = _first_set(os.environ, env_keys) or _first_set(from_file, env_keys)
        if val is not None:
            logger.debug("provider.%s taken from environment", field)
            resolved[field] = val
    return resolved


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        raw = YAML(typ="safe").load(path)
    except Exception as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: top level must be a mapping, got {type(raw).__name__}")
    return raw


def _validate_unique_names(resources: list[Resource]) -> list[str]:
    """Two resources of the same type may not share a name."""
    first_seen: dict[tuple[str, str], str] = {}
    errors: list[str] = []
    for r in resources:
        key = (r.namespace, r.name)
        if key in first_seen:
            errors.append(
                f"Duplicate {r.namespace} name '{r.name}': "
                f"found in both {first_seen[key]} and {r.address}"
            )
        else:
            first_seen[key] = r.address
    return errors


def load_config(path: Path | str, *, workspace: str | None = None) -> Config:
    """Load a YAML configuration file and return a ``Config`` object.

    The workspace comes from *workspace* when given, otherwise from
    ``AWS_PROVISIONER_WORKSPACE``, otherwise from the file itself.

    Raises:
        ConfigError: On YAML parse errors, bad sections, or validation failures.
    """
    path = Path(path)
    raw = _read_yaml(path)

    override = workspace or os.environ.get(WORKSPACE_ENV)
    if override:
        raw["workspace"] = override

    try:
        raw["provider"] = _resolve_provider(raw.get("provider") or {}, path.parent)
        config = Config.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    config.config_dir = path.parent

    errors = _validate_unique_names(config.resources)
    if errors:
        raise ConfigError("\n".join(errors))

    logger.info(
        "Loaded config from %s (workspace=%s, %d resources)",
        path,
        config.workspace,
        len(config.resources),
    )
    return config
