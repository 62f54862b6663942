"""Shared plumbing for handlers backed by the EC2 API."""

from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING, Any, TypeVar

from botocore.exceptions import ClientError, EndpointConnectionError

from aws_provisioner.engine.errors import TransientProviderError
from aws_provisioner.engine.handlers import ResourceHandler
from aws_provisioner.resources.base import Resource

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from aws_provisioner.engine.handlers import EngineContext

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Resource)

TRANSIENT_ERROR_CODES = frozenset(
    {
        "RequestLimitExceeded",
        "Throttling",
        "ThrottlingException",
        "ServiceUnavailable",
        "InternalError",
        "Unavailable",
    }
)


def error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "") if exc.response else ""


def is_not_found(exc: ClientError) -> bool:
    """EC2 reports missing resources as ``Invalid<Thing>.NotFound``."""
    return error_code(exc).endswith(".NotFound")


@contextlib.contextmanager
def translate_errors() -> Iterator[None]:
    """Turn throttling and 5xx failures into ``TransientProviderError``."""
    try:
        yield
    except ClientError as e:
        if error_code(e) in TRANSIENT_ERROR_CODES:
            raise TransientProviderError(str(e)) from e
        raise
    except EndpointConnectionError as e:
        raise TransientProviderError(str(e)) from e


def tag_specifications(resource_type: str, tags: Mapping[str, str]) -> list[dict[str, Any]]:
    """``TagSpecifications`` for a create call; empty when there are no tags."""
    if not tags:
        return []
    return [
        {
            "ResourceType": resource_type,
            "Tags": [{"Key": k, "Value": v} for k, v in sorted(tags.items())],
        }
    ]


def tags_from_aws(tags: list[dict[str, str]] | None) -> dict[str, str]:
    """Tag list from a describe call as a dict, without AWS-reserved tags."""
    return {t["Key"]: t["Value"] for t in tags or [] if not t["Key"].startswith("aws:")}


class AWSResourceHandler(ResourceHandler[R]):
    """Base class for EC2-backed handlers.

    Subclasses call the API through ``self._call`` so throttling is retried
    by the engine, and use ``self._sync_tags`` for in-place tag updates.
    """

    #: ``ResourceType`` used in ``TagSpecifications``.
    tag_resource_type: str = ""

    def _ec2(self, ctx: EngineContext) -> Any:
        return ctx.provider.ec2

    def _call(self, ctx: EngineContext, operation: str, **kwargs: Any) -> Any:
        with translate_errors():
            return getattr(self._ec2(ctx), operation)(**kwargs)

    def _describe_or_none(self, ctx: EngineContext, operation: str, **kwargs: Any) -> Any:
        """Like ``_call`` but returns None when the resource is gone."""
        try:
            return self._call(ctx, operation, **kwargs)
        except ClientError as e:
            if is_not_found(e):
                return None
            raise

    def _delete_ignoring_missing(self, ctx: EngineContext, operation: str, **kwargs: Any) -> None:
        try:
            self._call(ctx, operation, **kwargs)
        except ClientError as e:
            if not is_not_found(e):
                raise
            logger.info("%s: resource already gone (%s)", operation, error_code(e))

    def _wait(self, ctx: EngineContext, waiter: str, **kwargs: Any) -> None:
        with translate_errors():
            self._ec2(ctx).get_waiter(waiter).wait(**kwargs)

    def _tag_specs(self, desired: Resource) -> dict[str, Any]:
        specs = tag_specifications(self.tag_resource_type, desired.tags)
        return {"TagSpecifications": specs} if specs else {}

    def _sync_tags(
        self,
        ctx: EngineContext,
        resource_id: str,
        desired: Mapping[str, str],
        prior: Mapping[str, str],
    ) -> None:
        stale = sorted(k for k in prior if k not in desired)
        changed = {k: v for k, v in desired.items() if prior.get(k) != v}
        if stale:
            self._call(
                ctx, "delete_tags", Resources=[resource_id], Tags=[{"Key": k} for k in stale]
            )
        if changed:
            self._call(
                ctx,
                "create_tags",
                Resources=[resource_id],
                Tags=[{"Key": k, "Value": v} for k, v in sorted(changed.items())],
            )
