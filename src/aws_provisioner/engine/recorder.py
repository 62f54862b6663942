"""Incremental, serialized persistence of applied state during a run."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

from aws_provisioner.core.state import ResourceInstance

if TYPE_CHECKING:
    from aws_provisioner.core.backend import StateBackend
    from aws_provisioner.core.state import State

logger = logging.getLogger(__name__)


class StateRecorder:
    """Owns the applied state for the duration of a run.

    Every ``record_*`` call mutates the in-memory state, bumps the serial and
    writes it to the backend before returning, so a run that dies half way
    leaves a record of exactly the operations that succeeded. Calls are
    serialized; the executor's worker threads may call in concurrently.

    The caller is expected to hold the backend lock.
    """

    def __init__(self, backend: StateBackend, state: State) -> None:
        self._backend = backend
        self._state = state
        self._mutex = threading.Lock()
        self._writes = 0

    @property
    def state(self) -> State:
        return self._state

    @property
    def writes(self) -> int:
        """Number of state writes performed by this recorder."""
        return self._writes

    def snapshot(self) -> State:
        with self._mutex:
            return self._state.model_copy(deep=True)

    def instance(self, address: str) -> ResourceInstance:
        with self._mutex:
            return self._state.resources[address].model_copy(deep=True)

    def attribute(self, address: str, attribute: str) -> Any:
        """Recorded value of one attribute. Raises KeyError if absent."""
        with self._mutex:
            return self._state.resources[address].attributes[attribute]

    def record_create(
        self,
        *,
        address: str,
        resource_type: str,
        name: str,
        attributes: dict[str, Any],
        dependencies: list[str],
    ) -> None:
        inst = ResourceInstance.new(
            address=address,
            resource_type=resource_type,
            name=name,
            attributes=attributes,
            dependencies=dependencies,
        )
        with self._mutex:
            self._state.resources[address] = inst
            self._persist(address, attributes)

    def record_update(
        self, *, address: str, attributes: dict[str, Any], dependencies: list[str]
    ) -> None:
        with self._mutex:
            inst = self._state.resources[address]
            inst.set_attributes(attributes)
            inst.dependencies = list(dependencies)
            self._persist(address, attributes)

    def record_delete(self, address: str) -> None:
        with self._mutex:
            del self._state.resources[address]
            self._persist(address, None)

    def _persist(self, address: str, attributes: dict[str, Any] | None) -> None:
        self._state.serial += 1
        try:
            self._backend.write(self._state)
        except Exception:
            # The provider change happened; the operator needs this to reconcile.
            logger.error(
                "Failed to persist state after %s succeeded (serial=%d); attributes=%s",
                address,
                self._state.serial,
                attributes,
            )
            raise
        self._writes += 1
        logger.debug("Recorded %s (serial=%d)", address, self._state.serial)
