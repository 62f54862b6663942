"""AWS Provider - Connection configuration for an AWS account/region."""

from functools import cached_property
from typing import Any, Self

import boto3
from botocore.config import Config as BotoConfig
from pydantic import BaseModel, ConfigDict


class AWSProvider(BaseModel):
    """Connection configuration for AWS.

    Credentials come from the usual boto3 chain (environment, shared config,
    instance profile). ``profile`` selects a named profile from the shared
    config. Use `from_client` to inject a pre-built (or mocked) EC2 client.

    Examples:
        provider = AWSProvider(region="eu-west-2", profile="sandbox")

        # Tests
        provider = AWSProvider.from_client(MagicMock())
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    region: str | None = None
    profile: str | None = None
    endpoint_url: str | None = None

    # Injected client (for testing)
    _injected_client: Any = None

    @classmethod
    def from_client(cls, client: Any, *, region: str | None = None) -> Self:
        """Create a provider with an injected EC2 client."""
        provider = cls.model_construct(region=region, profile=None, endpoint_url=None)
        provider._injected_client = client
        return provider

    @cached_property
    def session(self) -> boto3.Session:
        return boto3.Session(profile_name=self.profile, region_name=self.region)

    @cached_property
    def ec2(self) -> Any:
        """Get the EC2 client.

        botocore's own retry loop is limited to a single attempt so that
        throttling surfaces to the engine, which retries with its own backoff.
        """
        if self._injected_client is not None:
            return self._injected_client

        return self.session.client(
            "ec2",
            endpoint_url=self.endpoint_url,
            config=BotoConfig(retries={"max_attempts": 1, "mode": "standard"}),
        )
