"""In-memory control plane for dry runs and tests."""

from __future__ import annotations

import copy
import itertools
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from cloud_provisioner.clients.base import (
    Failed,
    OperationHandle,
    OperationStatus,
    ResourceAddress,
    Running,
    Succeeded,
    SubmitResult,
    SyncResult,
)
from cloud_provisioner.config.models import Action, ClientConfig
from cloud_provisioner.errors import ProvisioningError, ResourceNotFound
from cloud_provisioner.resources.ids import resource_id

logger = structlog.get_logger()

DRY_RUN_SUBSCRIPTION = "00000000-0000-0000-0000-000000000000"


@dataclass
class _Operation:
    remaining_polls: int
    apply: Callable[[], dict[str, Any] | None]
    failure: dict[str, Any] | None = None
    status: OperationStatus | None = None


@dataclass
class Call:
    """One recorded control-plane call."""

    verb: str
    resource_id: str
    payload: dict[str, Any] | None = field(default=None, repr=False)


class InMemoryControlPlane:
    """Simulates a control plane that answers with pollable operations.

    ``simulated_polls`` controls how many ``Running`` answers an operation
    gives before it completes; ``0`` makes every call synchronous.
    Deleting a resource removes its children too, like a resource group
    delete does.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        simulated_polls: int | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self._config = config or ClientConfig(client_type="memory")
        self._subscription_id = self._config.subscription_id or DRY_RUN_SUBSCRIPTION
        self._polls = (
            self._config.simulated_polls if simulated_polls is None else simulated_polls
        )
        self._poll_interval = poll_interval
        self._operations: dict[str, _Operation] = {}
        self._op_ids = itertools.count(1)
        self._submit_errors: dict[tuple[Action, str], ProvisioningError] = {}
        self._operation_failures: dict[tuple[Action, str], dict[str, Any]] = {}
        self.resources: dict[str, dict[str, Any]] = {}
        self.calls: list[Call] = []

    # -- Fault injection -------------------------------------------------------

    def fail_submit(
        self,
        name: str,
        error: ProvisioningError,
        *,
        action: Action = Action.CREATE_OR_UPDATE,
    ) -> None:
        """Make every submit of *action* on resource *name* raise *error*."""
        self._submit_errors[(action, name)] = error

    def fail_operation(
        self,
        name: str,
        detail: dict[str, Any],
        *,
        action: Action = Action.CREATE_OR_UPDATE,
    ) -> None:
        """Make operations of *action* on *name* end in ``Failed(detail)``."""
        self._operation_failures[(action, name)] = detail

    # -- Contract --------------------------------------------------------------

    def resource_id(self, address: ResourceAddress) -> str:
        return resource_id(self._subscription_id, address)

    async def close(self) -> None:
        return None

    async def submit(
        self,
        action: Action,
        address: ResourceAddress,
        payload: dict[str, Any] | None = None,
        *,
        api_version: str | None = None,
    ) -> SubmitResult:
        rid = self.resource_id(address)
        self.calls.append(Call(str(action), rid, payload))
        name = rid.rsplit("/", 1)[-1]

        error = self._submit_errors.get((action, name))
        if error is not None:
            raise error

        if action == Action.READ:
            return SyncResult(await self.fetch(address, api_version=api_version))

        if action == Action.CREATE_OR_UPDATE:

            def effect() -> dict[str, Any] | None:
                return self._store(rid, address, payload or {})

        else:
            if rid not in self.resources:
                raise ResourceNotFound(f"Resource '{rid}' was not found")

            def effect() -> dict[str, Any] | None:
                self._remove(rid)
                return None

        failure = self._operation_failures.get((action, name))
        if self._polls == 0 and failure is None:
            return SyncResult(effect())

        op_id = f"memory://operations/{next(self._op_ids)}"
        self._operations[op_id] = _Operation(
            remaining_polls=self._polls, apply=effect, failure=failure
        )
        logger.debug("memory.operation_started", operation=op_id, resource_id=rid)
        return OperationHandle(
            locator=op_id,
            min_poll_interval=self._poll_interval,
            api_version=api_version,
        )

    async def query_status(self, handle: OperationHandle) -> OperationStatus:
        self.calls.append(Call("poll", handle.locator))
        op = self._operations.get(handle.locator)
        if op is None:
            msg = f"Unknown operation '{handle.locator}'"
            raise ResourceNotFound(msg)
        if op.status is not None:
            return op.status
        if op.remaining_polls > 0:
            op.remaining_polls -= 1
            return Running()
        if op.failure is not None:
            op.status = Failed(op.failure)
        else:
            op.status = Succeeded(op.apply())
        return op.status

    async def fetch(
        self, address: ResourceAddress, *, api_version: str | None = None
    ) -> dict[str, Any]:
        rid = self.resource_id(address)
        self.calls.append(Call("get", rid))
        if rid not in self.resources:
            raise ResourceNotFound(f"Resource '{rid}' was not found")
        return copy.deepcopy(self.resources[rid])

    # -- State -----------------------------------------------------------------

    def _store(
        self, rid: str, address: ResourceAddress, payload: dict[str, Any]
    ) -> dict[str, Any]:
        body = copy.deepcopy(payload)
        body.update({"id": rid, "name": address.name, "type": address.kind})
        properties = dict(body.get("properties") or {})
        properties["provisioningState"] = "Succeeded"
        body["properties"] = properties
        self.resources[rid] = body
        return copy.deepcopy(body)

    def _remove(self, rid: str) -> None:
        prefix = rid.lower() + "/"
        for key in [k for k in self.resources if k.lower().startswith(prefix)]:
            del self.resources[key]
        self.resources.pop(rid, None)
