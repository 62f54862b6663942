"""Applied state: the record of what was last provisioned."""

import contextlib
import hashlib
import json
import logging
import os
import tempfile
import uuid
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def _canonical_json(obj: Any) -> str:
    # `default=str` covers datetimes and paths nested in provider attributes.
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def _now() -> datetime:
    return datetime.now(UTC)


def compute_attributes_hash(attrs: Mapping[str, Any]) -> str:
    """Compute a stable hash for a resource's stored attributes."""
    payload = _canonical_json(attrs)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def write_atomic(path: Path, content: str) -> None:
    """Replace *path* with *content* via a temp file in the same directory.

    The previous file, if any, is kept as ``<path>.backup``.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with contextlib.suppress(FileNotFoundError):
        Path(f"{path}.backup").write_bytes(path.read_bytes())

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        tmp.replace(path)
    finally:
        with contextlib.suppress(FileNotFoundError):
            tmp.unlink()


class ResourceInstance(BaseModel):
    """One provisioned resource as recorded in state.

    Attributes:
        address: Unique resource address (e.g., "aws_subnet.public_a")
        resource_type: Type of the resource (e.g., "aws_subnet")
        name: Resource name (e.g., "public_a")
        attributes: Attribute values as last returned by the provider
        attributes_hash: SHA256 of the canonical attributes JSON
        dependencies: Addresses of every resource this one depends on
    """

    address: str
    resource_type: str
    name: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    attributes_hash: str = ""
    dependencies: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @classmethod
    def new(
        cls,
        *,
        address: str,
        resource_type: str,
        name: str,
        attributes: dict[str, Any],
        dependencies: list[str],
    ) -> "ResourceInstance":
        now = _now()
        return cls(
            address=address,
            resource_type=resource_type,
            name=name,
            attributes=attributes,
            attributes_hash=compute_attributes_hash(attributes),
            dependencies=list(dependencies),
            created_at=now,
            updated_at=now,
        )

    def set_attributes(self, attributes: dict[str, Any]) -> bool:
        """Store fresh provider attributes. Returns False when nothing changed."""
        new_hash = compute_attributes_hash(attributes)
        if attributes == self.attributes and new_hash == self.attributes_hash:
            return False
        self.attributes = attributes
        self.attributes_hash = new_hash
        self.updated_at = _now()
        return True


class State(BaseModel):
    """Terraform-style state for one workspace.

    ``serial`` goes up by one on every persisted write. ``lineage`` is fixed
    when the state is first created and ties saved plans to this history.
    """

    version: int = STATE_VERSION
    workspace: str = "default"
    serial: int = 0
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()))
    resources: dict[str, ResourceInstance] = Field(default_factory=dict)

    def dependents_of(self, address: str) -> set[str]:
        """Recorded resources that list *address* among their dependencies."""
        return {a for a, inst in self.resources.items() if address in inst.dependencies}

    def to_json(self) -> str:
        data = self.model_dump(mode="json")
        return json.dumps(data, indent=2, sort_keys=True) + "\n"

    @classmethod
    def from_json(cls, raw: str | bytes) -> "State":
        state = cls.model_validate_json(raw)
        if state.version > STATE_VERSION:
            raise ValueError(
                f"State version {state.version} is newer than supported ({STATE_VERSION})"
            )
        return state

    def save(self, path: Path) -> None:
        """Write state to a JSON file atomically, keeping a ``.backup`` of the old one."""
        write_atomic(path, self.to_json())
        logger.debug("State saved: serial=%d path=%s", self.serial, path)

    @classmethod
    def load(cls, path: Path) -> "State":
        """Load state from a JSON file."""
        state = cls.from_json(path.read_text(encoding="utf-8"))
        logger.debug("State loaded from %s", path)
        return state


def compute_state_digest(state: State) -> str:
    """Digest of everything a plan depends on, timestamps excluded.

    Two states with the same digest produce the same plan for the same
    declarations, so apply compares it to detect stale plans.
    """
    digestable = {
        "version": state.version,
        "workspace": state.workspace,
        "lineage": state.lineage,
        "serial": state.serial,
        "resources": [
            {
                "address": address,
                "resource_type": inst.resource_type,
                "name": inst.name,
                "attributes_hash": inst.attributes_hash,
                "dependencies": sorted(inst.dependencies),
            }
            for address, inst in sorted(state.resources.items())
        ],
    }
    payload = _canonical_json(digestable)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
