"""Key pair handler implementing CRUD via the EC2 API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from aws_provisioner.engine.aws_handler import AWSResourceHandler, tags_from_aws

if TYPE_CHECKING:
    from aws_provisioner.core.state import ResourceInstance
    from aws_provisioner.engine.handlers import EngineContext
    from aws_provisioner.resources.key_pair import KeyPairResource

logger = logging.getLogger(__name__)

_KEY_PREFIXES = ("ssh-rsa ", "ssh-ed25519 ", "ecdsa-sha2-nistp")


class KeyPairHandler(AWSResourceHandler["KeyPairResource"]):
    """CRUD handler for imported key pairs."""

    tag_resource_type = "key-pair"

    def _read_attrs(self, key: dict[str, Any], name: str, public_key: str) -> dict[str, Any]:
        """Extract key pair attributes matching KeyPairResource model_dump output."""
        return {
            "id": key["KeyPairId"],
            "name": name,
            "key_name": key["KeyName"],
            # EC2 does not echo the imported material verbatim; keep what was sent.
            "public_key": public_key,
            "fingerprint": key.get("KeyFingerprint"),
            "tags": tags_from_aws(key.get("Tags")),
        }

    def _describe(self, ctx: EngineContext, key_pair_id: str) -> dict[str, Any] | None:
        resp = self._describe_or_none(ctx, "describe_key_pairs", KeyPairIds=[key_pair_id])
        if not resp or not resp.get("KeyPairs"):
            return None
        return resp["KeyPairs"][0]

    def validate(self, ctx: EngineContext, desired: KeyPairResource) -> list[str]:
        _ = ctx
        if not desired.public_key.startswith(_KEY_PREFIXES):
            return [f"Key pair '{desired.name}' public_key is not an OpenSSH public key"]
        return []

    def create(self, ctx: EngineContext, desired: KeyPairResource) -> dict[str, Any]:
        """Import the public key."""
        resp = self._call(
            ctx,
            "import_key_pair",
            KeyName=desired.effective_key_name,
            PublicKeyMaterial=desired.public_key.encode("utf-8"),
            **self._tag_specs(desired),
        )
        logger.info("Imported key pair %s (%s)", resp["KeyName"], desired.address)
        return self._read_attrs(resp, desired.name, desired.public_key)

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        """Read a key pair. Returns None if it no longer exists."""
        key = self._describe(ctx, prior.attributes["id"])
        if key is None:
            return None
        return self._read_attrs(key, prior.name, prior.attributes.get("public_key", ""))

    def update(
        self, ctx: EngineContext, desired: KeyPairResource, prior: ResourceInstance
    ) -> dict[str, Any]:
        """Only tags can change in place."""
        key_pair_id = prior.attributes["id"]
        self._sync_tags(ctx, key_pair_id, desired.tags, prior.attributes.get("tags", {}))
        key = self._describe(ctx, key_pair_id)
        if key is None:
            raise RuntimeError(f"Key pair {key_pair_id} not found for update")
        return self._read_attrs(key, desired.name, desired.public_key)

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        """Delete a key pair."""
        self._delete_ignoring_missing(ctx, "delete_key_pair", KeyPairId=prior.attributes["id"])
