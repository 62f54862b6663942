"""State backends: where applied state lives and how it is locked.

``LocalBackend`` keeps state in a JSON file next to the configuration and
locks it with an advisory file lock. ``S3Backend`` keeps it in an S3 object
(server-side encrypted) and locks it with a conditional write to a DynamoDB
table, the same layout Terraform's S3 backend uses.
"""

from __future__ import annotations

import contextlib
import logging
from functools import cached_property
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import boto3
from botocore.exceptions import ClientError

from aws_provisioner.core.state import State
from aws_provisioner.engine.errors import LockHeldError, StateLockError
from aws_provisioner.engine.lock import LockInfo, StateLock, wait_for

if TYPE_CHECKING:
    from collections.abc import Iterator
    from contextlib import AbstractContextManager

logger = logging.getLogger(__name__)


class StateBackend(Protocol):
    """Durable storage for applied state plus a lock primitive."""

    def read(self) -> State | None:
        """Return the stored state, or None if nothing has been stored yet."""

    def write(self, state: State) -> None:
        """Persist *state*, replacing what is stored."""

    def lock(self, *, timeout: float = 0.0, operation: str = "") -> AbstractContextManager[Any]:
        """Hold the exclusive state lock for the duration of the ``with`` block."""

    def force_unlock(self, lock_id: str | None = None) -> None:
        """Remove a lock left behind by a run that died."""

    def describe(self) -> str:
        """Human-readable location, used in messages."""


class LocalBackend:
    """State in a local JSON file."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> State | None:
        if not self._path.exists():
            return None
        return State.load(self._path)

    def write(self, state: State) -> None:
        state.save(self._path)

    def lock(self, *, timeout: float = 0.0, operation: str = "") -> StateLock:
        return StateLock(self._path, timeout=timeout, operation=operation)

    def force_unlock(self, lock_id: str | None = None) -> None:
        """Clear the holder record a dead run left behind.

        The file lock dies with its process, so a lock still held belongs to a
        live run. It is refused rather than broken, and the lock file is never
        unlinked, since a second run would then lock a fresh file.
        """
        lock = StateLock(self._path, operation="force-unlock")
        holder = lock.read_holder()
        if lock_id is not None and holder and holder.get("id") != lock_id:
            raise StateLockError(
                f"Lock ID mismatch: expected {lock_id}, held by {holder.get('id')}"
            )
        try:
            with lock:
                pass
        except LockHeldError as e:
            raise StateLockError(
                f"Lock on {self._path} is held by a running process "
                f"({e.holder.get('who', 'unknown')}); stop that run instead"
            ) from e
        logger.info("Cleared lock record %s", lock.lock_path)

    def describe(self) -> str:
        return str(self._path)


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


class S3Backend:
    """State in an S3 object, locked through a DynamoDB table.

    The lock table needs a string partition key named ``LockID``. Without a
    ``lock_table`` runs are not protected against each other.
    """

    def __init__(
        self,
        *,
        bucket: str,
        key: str,
        region: str | None = None,
        lock_table: str | None = None,
        encrypt: bool = True,
        s3_client: Any = None,
        dynamodb_client: Any = None,
    ) -> None:
        self._bucket = bucket
        self._key = key
        self._region = region
        self._lock_table = lock_table
        self._encrypt = encrypt
        self._injected_s3 = s3_client
        self._injected_dynamodb = dynamodb_client

    @cached_property
    def s3(self) -> Any:
        if self._injected_s3 is not None:
            return self._injected_s3
        return boto3.client("s3", region_name=self._region)

    @cached_property
    def dynamodb(self) -> Any:
        if self._injected_dynamodb is not None:
            return self._injected_dynamodb
        return boto3.client("dynamodb", region_name=self._region)

    @property
    def lock_id(self) -> str:
        return f"{self._bucket}/{self._key}"

    def describe(self) -> str:
        return f"s3://{self._bucket}/{self._key}"

    def read(self) -> State | None:
        try:
            resp = self.s3.get_object(Bucket=self._bucket, Key=self._key)
        except ClientError as e:
            if _error_code(e) in ("NoSuchKey", "404"):
                return None
            raise
        state = State.from_json(resp["Body"].read())
        logger.debug("State loaded from %s", self.describe())
        return state

    def write(self, state: State) -> None:
        extra: dict[str, Any] = {}
        if self._encrypt:
            extra["ServerSideEncryption"] = "AES256"
        self.s3.put_object(
            Bucket=self._bucket,
            Key=self._key,
            Body=state.to_json().encode("utf-8"),
            ContentType="application/json",
            **extra,
        )
        logger.debug("State saved: serial=%d location=%s", state.serial, self.describe())

    def _holder(self) -> dict[str, str]:
        resp = self.dynamodb.get_item(
            TableName=self._lock_table,
            Key={"LockID": {"S": self.lock_id}},
            ConsistentRead=True,
        )
        raw = resp.get("Item", {}).get("Info", {}).get("S")
        if not raw:
            return {}
        info = LockInfo.model_validate_json(raw)
        return {"who": info.who, "operation": info.operation, "id": info.id}

    @contextlib.contextmanager
    def lock(self, *, timeout: float = 0.0, operation: str = "") -> Iterator[LockInfo | None]:
        if self._lock_table is None:
            logger.warning("No lock table configured for %s; running unlocked", self.describe())
            yield None
            return

        info = LockInfo(operation=operation)
        payload = info.model_dump_json()

        def _try_acquire() -> bool:
            try:
                self.dynamodb.put_item(
                    TableName=self._lock_table,
                    Item={"LockID": {"S": self.lock_id}, "Info": {"S": payload}},
                    ConditionExpression="attribute_not_exists(LockID)",
                )
            except ClientError as e:
                if _error_code(e) == "ConditionalCheckFailedException":
                    return False
                raise StateLockError(f"Failed to acquire lock: {e}") from e
            return True

        try:
            wait_for(_try_acquire, timeout=timeout, location=self.describe())
        except LockHeldError as e:
            raise LockHeldError(e.location, self._holder()) from None
        logger.debug("Acquired lock %s (%s)", self.lock_id, info.id)

        try:
            yield info
        finally:
            try:
                self.dynamodb.delete_item(
                    TableName=self._lock_table,
                    Key={"LockID": {"S": self.lock_id}},
                    ConditionExpression="Info = :info",
                    ExpressionAttributeValues={":info": {"S": payload}},
                )
            except ClientError as e:
                if _error_code(e) != "ConditionalCheckFailedException":
                    raise StateLockError(f"Failed to release lock: {e}") from e
                logger.warning("Lock %s was removed by someone else", self.lock_id)

    def force_unlock(self, lock_id: str | None = None) -> None:
        if self._lock_table is None:
            return
        if lock_id is not None:
            holder = self._holder()
            if holder and holder.get("id") != lock_id:
                raise StateLockError(
                    f"Lock ID mismatch: expected {lock_id}, held by {holder.get('id')}"
                )
        self.dynamodb.delete_item(TableName=self._lock_table, Key={"LockID": {"S": self.lock_id}})
        logger.info("Removed lock %s", self.lock_id)
