from typing import ClassVar

import pytest

from aws_provisioner.config.registry import default_registry
from aws_provisioner.engine.errors import UnknownResourceTypeError
from aws_provisioner.engine.handlers import ResourceHandler
from aws_provisioner.engine.registry import ResourceTypeRegistry
from aws_provisioner.resources.base import Resource


class DummyResource(Resource):
    resource_type: ClassVar[str] = "dummy"
    value: int


class DummyHandler(ResourceHandler["DummyResource"]):
    pass


def test_registry_register_and_get() -> None:
    registry = ResourceTypeRegistry()
    handler = DummyHandler()

    registry.register(DummyResource, handler)
    reg = registry.get("dummy")

    assert reg.resource_type == "dummy"
    assert reg.model is DummyResource
    assert reg.handler is handler
    assert reg.force_new == frozenset()
    assert "dummy" in registry


def test_registry_duplicate_registration() -> None:
    registry = ResourceTypeRegistry()
    handler = DummyHandler()

    registry.register(DummyResource, handler)
    with pytest.raises(ValueError, match="already registered"):
        registry.register(DummyResource, handler)


def test_registry_requires_resource_type() -> None:
    with pytest.raises(ValueError, match="resource_type"):
        ResourceTypeRegistry().register(Resource, DummyHandler())


def test_registry_unknown_type() -> None:
    registry = ResourceTypeRegistry()
    with pytest.raises(UnknownResourceTypeError, match="missing"):
        registry.get("missing")


class TestDefaultRegistry:
    def test_all_types_registered(self) -> None:
        types = {reg.resource_type for reg in default_registry()}
        assert types == {
            "aws_vpc",
            "aws_subnet",
            "aws_security_group",
            "aws_key_pair",
            "aws_instance",
        }

    def test_marker_metadata_is_collected(self) -> None:
        registry = default_registry()

        vpc = registry.get("aws_vpc")
        assert "cidr_block" in vpc.force_new
        assert "enable_dns_hostnames" not in vpc.force_new

        sg = registry.get("aws_security_group")
        assert sg.compare["ingress"] == "set"
        assert "vpc_id" in sg.force_new

    def test_independent_instances(self) -> None:
        a = default_registry()
        b = default_registry()
        assert a is not b
        assert a.get("aws_vpc").handler is not b.get("aws_vpc").handler


class TestPriority:
    def test_taken_from_model(self) -> None:
        registry = default_registry()
        assert registry.priority_of("aws_vpc") == 0
        assert registry.priority_of("aws_subnet") == 10
        assert registry.priority_of("aws_instance") == 50

    def test_base_default(self) -> None:
        registry = ResourceTypeRegistry()
        registry.register(DummyResource, DummyHandler())
        assert registry.get("dummy").priority == 100

    def test_unknown_type(self) -> None:
        with pytest.raises(UnknownResourceTypeError):
            ResourceTypeRegistry().priority_of("aws_nat_gateway")
