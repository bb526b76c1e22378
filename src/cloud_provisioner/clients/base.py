"""Resource API client protocol and the types that cross it.

Every control-plane call answers with either a ``SyncResult`` (the work is
already done) or an ``OperationHandle`` (the work continues remotely and must
be polled). Resource kinds never get their own code path.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from cloud_provisioner.config.models import Action

DEFAULT_POLL_INTERVAL_SECONDS = 10.0


@dataclass(frozen=True)
class ResourceAddress:
    """Where a resource lives: its kind, name and (optional) parent ID."""

    kind: str
    name: str
    parent_id: str | None = None
    # Full ID when already known (e.g. from a create result); wins over
    # kind/name/parent when the client builds a URL.
    resource_id: str | None = None


@dataclass(frozen=True)
class SyncResult:
    """Immediate result of a call that completed within the request."""

    resource: dict[str, Any] | None = None


@dataclass(frozen=True)
class OperationHandle:
    """Token for one in-flight remote operation.

    ``deadline`` is an absolute :func:`time.monotonic` value.
    """

    locator: str
    min_poll_interval: float | None = None
    deadline: float | None = None
    retry_after: float | None = None
    address: ResourceAddress | None = None
    api_version: str | None = None


SubmitResult = SyncResult | OperationHandle


@dataclass(frozen=True)
class Running:
    retry_after: float | None = None

    @property
    def terminal(self) -> bool:
        return False


@dataclass(frozen=True)
class Succeeded:
    result: dict[str, Any] | None = None

    @property
    def terminal(self) -> bool:
        return True


@dataclass(frozen=True)
class Failed:
    error_detail: dict[str, Any] = field(default_factory=dict)

    @property
    def terminal(self) -> bool:
        return True


@dataclass(frozen=True)
class Canceled:
    detail: str = ""

    @property
    def terminal(self) -> bool:
        return True


OperationStatus = Running | Succeeded | Failed | Canceled


@runtime_checkable
class ResourceAPIClient(Protocol):
    """Uniform contract over every resource kind."""

    def resource_id(self, address: ResourceAddress) -> str:
        """Full resource ID for *address* in this client's subscription."""
        ...

    async def submit(
        self,
        action: Action,
        address: ResourceAddress,
        payload: dict[str, Any] | None = None,
        *,
        api_version: str | None = None,
    ) -> SubmitResult:
        """Start a create-or-update or delete; never waits for completion."""
        ...

    async def query_status(self, handle: OperationHandle) -> OperationStatus:
        """Query the current status of an in-flight operation."""
        ...

    async def fetch(
        self, address: ResourceAddress, *, api_version: str | None = None
    ) -> dict[str, Any]:
        """Read a resource; raises ``ResourceNotFound`` when it is absent."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        ...
