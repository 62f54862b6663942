"""Plan, change and apply-result models shared by the engine and the CLI."""

from __future__ import annotations

import json
from collections import Counter
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    NOOP = "no-op"


class FailurePolicy(str, Enum):
    """What the executor does with unrelated work once a resource fails."""

    CONTINUE = "continue"
    HALT = "halt"


class PlanMetadata(BaseModel):
    """Where a plan came from.

    ``state_lineage``, ``state_serial`` and ``state_digest`` pin the plan to
    the state it was computed against; apply refuses a plan whose state has
    moved on.
    """

    workspace: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    destroy: bool
    refresh: bool
    state_lineage: str
    state_serial: int
    state_digest: str
    config_digest: str
    engine_version: str


class ResourceChange(BaseModel):
    """One planned (or applied) action against a single resource address.

    ``desired`` is the declaration as written, ``prior`` the attributes in
    state and ``planned`` the values expected after apply, with unresolved
    references shown as unknown. For updates and replacements ``diff`` maps
    each differing attribute to ``{"from": ..., "to": ...}`` and
    ``replace_reasons`` names the attributes that cannot change in place.
    """

    address: str
    resource_type: str
    action: Action
    desired: dict[str, Any] | None = None
    prior: dict[str, Any] | None = None
    planned: dict[str, Any] | None = None
    diff: dict[str, Any] | None = None
    replace_reasons: list[str] = Field(default_factory=list)

    @property
    def name(self) -> str:
        return self.address.split(".", 1)[-1]

    @property
    def is_actionable(self) -> bool:
        return self.action != Action.NOOP


def _count(changes: list[ResourceChange]) -> dict[str, int]:
    counts = Counter(c.action.value for c in changes)
    return {a.value: counts[a.value] for a in Action}


class Plan(BaseModel):
    metadata: PlanMetadata
    changes: list[ResourceChange]

    def summary(self) -> dict[str, int]:
        """Number of changes per action, including zeros."""
        return _count(self.changes)

    def actionable(self) -> list[ResourceChange]:
        return [c for c in self.changes if c.is_actionable]

    def get(self, address: str) -> ResourceChange | None:
        return next((c for c in self.changes if c.address == address), None)

    def save(self, path: Path) -> None:
        """Write the plan as JSON so a later ``apply`` can run exactly it."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(self.model_dump(mode="json"), indent=2, sort_keys=True)
        path.write_text(payload + "\n", encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> Plan:
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))


class ApplyResult(BaseModel):
    """Outcome of an apply.

    A replacement shows up in ``applied`` twice: once as the delete of the
    old object and once as the create of the new one. ``failed`` maps each
    failed address to its error message; ``skipped`` lists addresses never
    attempted because something they depend on failed (or the run halted).
    """

    applied: list[ResourceChange] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)
    skipped: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped

    def summary(self) -> dict[str, int]:
        return _count(self.applied)
