"""Plan and apply engine for AWS resources."""

from aws_provisioner.engine.engine import ProvisioningEngine
from aws_provisioner.engine.errors import (
    ApplyCanceled,
    ApplyError,
    CycleError,
    DuplicateAddressError,
    EngineError,
    LockHeldError,
    PlanConflictError,
    ProvisioningError,
    ReferenceTypeError,
    StalePlanError,
    StateLockError,
    StateWorkspaceMismatchError,
    TransientProviderError,
    UnknownResourceTypeError,
    UnresolvedReferenceError,
    ValidationError,
)
from aws_provisioner.engine.executor import Executor, ProgressCallback, RetryPolicy
from aws_provisioner.engine.graph import DependencyGraph, build_graph
from aws_provisioner.engine.handlers import EngineContext, PlanContext, ResourceHandler
from aws_provisioner.engine.registry import ResourceTypeRegistration, ResourceTypeRegistry
from aws_provisioner.engine.types import (
    Action,
    ApplyResult,
    FailurePolicy,
    Plan,
    PlanMetadata,
    ResourceChange,
)

__all__ = [
    "Action",
    "ApplyCanceled",
    "ApplyError",
    "ApplyResult",
    "CycleError",
    "DependencyGraph",
    "DuplicateAddressError",
    "EngineContext",
    "EngineError",
    "Executor",
    "FailurePolicy",
    "LockHeldError",
    "Plan",
    "PlanConflictError",
    "PlanContext",
    "PlanMetadata",
    "ProgressCallback",
    "ProvisioningEngine",
    "ProvisioningError",
    "ReferenceTypeError",
    "ResourceChange",
    "ResourceHandler",
    "ResourceTypeRegistration",
    "ResourceTypeRegistry",
    "RetryPolicy",
    "StalePlanError",
    "StateLockError",
    "StateWorkspaceMismatchError",
    "TransientProviderError",
    "UnknownResourceTypeError",
    "UnresolvedReferenceError",
    "ValidationError",
    "build_graph",
]
