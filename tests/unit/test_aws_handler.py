"""Tests for the shared EC2 handler plumbing."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError
from fakes import client_error

from aws_provisioner.engine.aws_handler import (
    AWSResourceHandler,
    is_not_found,
    tag_specifications,
    tags_from_aws,
    translate_errors,
)
from aws_provisioner.engine.errors import TransientProviderError
from aws_provisioner.engine.handlers import EngineContext


class TestTranslateErrors:
    @pytest.mark.parametrize("code", ["RequestLimitExceeded", "Throttling", "InternalError"])
    def test_throttling_is_transient(self, code: str) -> None:
        with pytest.raises(TransientProviderError) as exc_info, translate_errors():
            raise client_error(code)
        assert isinstance(exc_info.value.__cause__, ClientError)

    def test_connection_errors_are_transient(self) -> None:
        with pytest.raises(TransientProviderError), translate_errors():
            raise EndpointConnectionError(endpoint_url="https://ec2.eu-west-2.amazonaws.com")

    def test_other_errors_pass_through(self) -> None:
        with pytest.raises(ClientError), translate_errors():
            raise client_error("InvalidParameterValue")


def test_is_not_found() -> None:
    assert is_not_found(client_error("InvalidVpcID.NotFound"))
    assert is_not_found(client_error("InvalidGroup.NotFound"))
    assert not is_not_found(client_error("DependencyViolation"))


def test_tag_specifications() -> None:
    assert tag_specifications("vpc", {}) == []
    assert tag_specifications("vpc", {"b": "2", "a": "1"}) == [
        {"ResourceType": "vpc", "Tags": [{"Key": "a", "Value": "1"}, {"Key": "b", "Value": "2"}]}
    ]


def test_tags_from_aws_drops_reserved_tags() -> None:
    tags = [
        {"Key": "Name", "Value": "web"},
        {"Key": "aws:cloudformation:stack-name", "Value": "x"},
    ]
    assert tags_from_aws(tags) == {"Name": "web"}
    assert tags_from_aws(None) == {}


class TestSyncTags:
    def test_removes_stale_and_writes_changed(self, ctx: EngineContext, ec2: MagicMock) -> None:
        handler: AWSResourceHandler = AWSResourceHandler()

        handler._sync_tags(
            ctx, "vpc-1", desired={"Name": "main", "Team": "b"}, prior={"Team": "a", "Old": "x"}
        )

        ec2.delete_tags.assert_called_once_with(Resources=["vpc-1"], Tags=[{"Key": "Old"}])
        ec2.create_tags.assert_called_once_with(
            Resources=["vpc-1"],
            Tags=[{"Key": "Name", "Value": "main"}, {"Key": "Team", "Value": "b"}],
        )

    def test_no_calls_when_equal(self, ctx: EngineContext, ec2: MagicMock) -> None:
        handler: AWSResourceHandler = AWSResourceHandler()
        handler._sync_tags(ctx, "vpc-1", desired={"a": "1"}, prior={"a": "1"})
        ec2.delete_tags.assert_not_called()
        ec2.create_tags.assert_not_called()

    def test_throttled_tag_call_is_transient(self, ctx: EngineContext, ec2: MagicMock) -> None:
        handler: AWSResourceHandler = AWSResourceHandler()
        ec2.create_tags.side_effect = client_error("RequestLimitExceeded", "CreateTags")
        with pytest.raises(TransientProviderError):
            handler._sync_tags(ctx, "vpc-1", desired={"a": "1"}, prior={})


def test_delete_ignoring_missing(ctx: EngineContext, ec2: MagicMock) -> None:
    handler: AWSResourceHandler = AWSResourceHandler()
    ec2.delete_vpc.side_effect = client_error("InvalidVpcID.NotFound", "DeleteVpc")
    handler._delete_ignoring_missing(ctx, "delete_vpc", VpcId="vpc-1")

    ec2.delete_vpc.side_effect = client_error("DependencyViolation", "DeleteVpc")
    with pytest.raises(ClientError):
        handler._delete_ignoring_missing(ctx, "delete_vpc", VpcId="vpc-1")
