"""In-memory stand-ins for AWS used by engine tests."""

from __future__ import annotations

import itertools
import threading
from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

from aws_provisioner.core import AWSProvider, LocalBackend
from aws_provisioner.engine import ProvisioningEngine, ResourceHandler, TransientProviderError
from aws_provisioner.engine.registry import ResourceTypeRegistry
from aws_provisioner.resources import (
    InstanceResource,
    KeyPairResource,
    SecurityGroupResource,
    SubnetResource,
    VpcResource,
)

if TYPE_CHECKING:
    from pathlib import Path

    from aws_provisioner.core.state import ResourceInstance
    from aws_provisioner.engine.handlers import EngineContext
    from aws_provisioner.resources.base import Resource


class FakeCloud:
    """Objects keyed by generated id, plus a log of every mutating call."""

    def __init__(self) -> None:
        self.objects: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str]] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def new_id(self, prefix: str) -> str:
        with self._lock:
            return f"{prefix}-{next(self._ids)}"

    def log(self, op: str, address: str) -> None:
        with self._lock:
            self.calls.append((op, address))

    def ops_for(self, address: str) -> list[str]:
        return [op for op, a in self.calls if a == address]


class InMemoryHandler(ResourceHandler[Any]):
    def __init__(self, cloud: FakeCloud, prefix: str) -> None:
        self.cloud = cloud
        self.prefix = prefix

    def _attrs(self, desired: Resource, object_id: str) -> dict[str, Any]:
        attrs = desired.declared_attributes()
        attrs["id"] = object_id
        return attrs

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        _ = ctx
        obj = self.cloud.objects.get(prior.attributes["id"])
        return dict(obj) if obj is not None else None

    def create(self, ctx: EngineContext, desired: Resource) -> dict[str, Any]:
        _ = ctx
        self.cloud.log("create", desired.address)
        attrs = self._attrs(desired, self.cloud.new_id(self.prefix))
        self.cloud.objects[attrs["id"]] = dict(attrs)
        return attrs

    def update(
        self, ctx: EngineContext, desired: Resource, prior: ResourceInstance
    ) -> dict[str, Any]:
        _ = ctx
        self.cloud.log("update", desired.address)
        attrs = self._attrs(desired, prior.attributes["id"])
        self.cloud.objects[attrs["id"]] = dict(attrs)
        return attrs

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        _ = ctx
        self.cloud.log("delete", prior.address)
        self.cloud.objects.pop(prior.attributes["id"], None)


class FlakyHandler(InMemoryHandler):
    """Fails ``create`` for selected addresses.

    ``transient_failures`` maps address -> number of throttling errors to
    raise before succeeding (``-1`` for always). ``broken`` addresses raise a
    non-retryable error.
    """

    def __init__(
        self,
        cloud: FakeCloud,
        prefix: str,
        *,
        transient_failures: dict[str, int] | None = None,
        broken: set[str] | None = None,
    ) -> None:
        super().__init__(cloud, prefix)
        self.transient_failures = dict(transient_failures or {})
        self.broken = set(broken or ())
        self.attempts: dict[str, int] = {}

    def create(self, ctx: EngineContext, desired: Resource) -> dict[str, Any]:
        address = desired.address
        self.attempts[address] = self.attempts.get(address, 0) + 1
        if address in self.broken:
            raise RuntimeError(f"InvalidParameterValue for {address}")
        remaining = self.transient_failures.get(address, 0)
        if remaining:
            if remaining > 0:
                self.transient_failures[address] = remaining - 1
            raise TransientProviderError("RequestLimitExceeded: Request limit exceeded.")
        return super().create(ctx, desired)


def make_registry(
    cloud: FakeCloud, overrides: dict[type[Resource], InMemoryHandler] | None = None
) -> ResourceTypeRegistry:
    handlers: dict[type[Resource], InMemoryHandler] = {
        VpcResource: InMemoryHandler(cloud, "vpc"),
        SubnetResource: InMemoryHandler(cloud, "subnet"),
        SecurityGroupResource: InMemoryHandler(cloud, "sg"),
        KeyPairResource: InMemoryHandler(cloud, "key"),
        InstanceResource: InMemoryHandler(cloud, "i"),
    }
    handlers.update(overrides or {})
    registry = ResourceTypeRegistry()
    for model, handler in handlers.items():
        registry.register(model, handler)
    return registry


def make_engine(
    tmp_path: Path,
    cloud: FakeCloud | None = None,
    *,
    overrides: dict[type[Resource], InMemoryHandler] | None = None,
    sleeps: list[float] | None = None,
    **kwargs: Any,
) -> tuple[ProvisioningEngine, FakeCloud]:
    cloud = cloud or FakeCloud()
    recorded = sleeps if sleeps is not None else []
    engine = ProvisioningEngine(
        provider=AWSProvider.from_client(MagicMock()),
        backend=LocalBackend(tmp_path / "state.json"),
        registry=make_registry(cloud, overrides),
        sleep=recorded.append,
        **kwargs,
    )
    return engine, cloud


def network(cidr: str = "10.0.0.0/16", **kwargs: Any) -> VpcResource:
    return VpcResource(name=kwargs.pop("name", "a"), cidr_block=cidr, **kwargs)


def subnet(cidr: str = "10.0.1.0/24", *, vpc: str = "a", **kwargs: Any) -> SubnetResource:
    return SubnetResource(
        name=kwargs.pop("name", "b"),
        vpc_id=f"${{aws_vpc.{vpc}.id}}",
        cidr_block=cidr,
        **kwargs,
    )


def client_error(code: str, operation: str = "Operation") -> ClientError:
    """A botocore ClientError carrying *code*."""
    return ClientError({"Error": {"Code": code, "Message": f"{code} raised"}}, operation)
