"""Engine error types."""

from __future__ import annotations

from typing import Any


class EngineError(Exception):
    """Base exception for engine errors."""


class UnknownResourceTypeError(EngineError):
    """Raised when a resource type has no registration/handler."""

    def __init__(self, resource_type: str) -> None:
        super().__init__(f"Unknown resource type: {resource_type}")
        self.resource_type = resource_type


class DuplicateAddressError(EngineError):
    """Raised when multiple desired resources share the same address."""

    def __init__(self, address: str) -> None:
        super().__init__(f"Duplicate resource address: {address}")
        self.address = address


class UnresolvedReferenceError(EngineError):
    """Raised when a reference or ``depends_on`` entry points to nothing."""

    def __init__(self, address: str, target: str) -> None:
        super().__init__(f"Resource '{address}' references unknown target '{target}'")
        self.address = address
        self.target = target


class ReferenceTypeError(EngineError):
    """Raised when a typed reference field points at the wrong resource type."""

    def __init__(self, address: str, field: str, expected: str, got: str) -> None:
        super().__init__(
            f"Resource '{address}' field '{field}' must reference {expected}, got {got}"
        )
        self.address = address
        self.field = field
        self.expected = expected
        self.got = got


class CycleError(EngineError):
    """Raised when dependencies contain a cycle."""

    def __init__(self, addresses: list[str]) -> None:
        msg = "Dependency cycle detected"
        if addresses:
            msg += f": {' -> '.join(addresses)}"
        super().__init__(msg)
        self.addresses = addresses


class PlanConflictError(EngineError):
    """Raised when a replacement would orphan dependents that stay in place."""

    def __init__(self, address: str, dependents: list[str]) -> None:
        super().__init__(
            f"Resource '{address}' must be replaced but dependents would be left in place: "
            f"{', '.join(dependents)} (request their replacement too)"
        )
        self.address = address
        self.dependents = dependents


class StateWorkspaceMismatchError(EngineError):
    """Raised when the stored state belongs to a different workspace."""

    def __init__(self, expected: str, got: str) -> None:
        super().__init__(f"State workspace mismatch: expected {expected}, got {got}")
        self.expected = expected
        self.got = got


class StalePlanError(EngineError):
    """Raised when applying a plan against a different state than planned."""


class StateLockError(EngineError):
    """Raised when the state lock cannot be acquired or released."""


class LockHeldError(StateLockError):
    """Raised when another run already holds the state lock."""

    def __init__(self, location: str, holder: dict[str, Any] | None = None) -> None:
        self.location = location
        self.holder = holder or {}
        msg = f"State lock is held: {location}"
        if self.holder:
            who = ", ".join(f"{k}={v}" for k, v in sorted(self.holder.items()))
            msg += f" ({who})"
        super().__init__(msg)


class ValidationError(EngineError):
    """One or more resources failed plan validation."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        msg = "Validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(msg)


class TransientProviderError(EngineError):
    """A provider call failed in a way that is worth retrying (throttling, 5xx)."""


class ProvisioningError(EngineError):
    """A provider operation on a single resource failed for good."""

    def __init__(self, address: str, message: str, *, attempts: int = 1) -> None:
        super().__init__(f"{address}: {message}")
        self.address = address
        self.message = message
        self.attempts = attempts


class ApplyError(EngineError):
    """Raised when an apply finishes with one or more failed resources.

    Carries the partial result (what was applied before and around the
    failure) so callers can inspect progress. ``failures`` maps each failed
    address to its ``ProvisioningError``; the first one is chained via
    ``__cause__``.
    """

    def __init__(self, *, result: Any, failures: dict[str, ProvisioningError]) -> None:
        self.result = result
        self.failures = failures
        addresses = ", ".join(sorted(failures))
        first = next(iter(failures.values()))
        msg = f"Apply failed on {addresses}: {first.message}"
        if result.skipped:
            msg += f" ({len(result.skipped)} dependent resource(s) skipped)"
        super().__init__(msg)


class ApplyCanceled(EngineError):
    """Raised when an apply is canceled (e.g., Ctrl-C)."""

    def __init__(self, message: str, *, result: Any = None) -> None:
        super().__init__(message)
        self.result = result
