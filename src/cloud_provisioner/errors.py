"""Error taxonomy for provisioning runs."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cloud_provisioner.engine.outcome import StepOutcome, TeardownOutcome


class ProvisioningError(Exception):
    """Base class for every error raised by the provisioner."""


# -- Remote API ----------------------------------------------------------------


class TransportError(ProvisioningError):
    """Transient failure talking to the control plane (timeouts, 5xx, 429).

    Retried by the caller; ``retry_after`` carries the server's hint in
    seconds when one was sent.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(message)


class RemoteRejected(ProvisioningError):
    """Non-retryable rejection (4xx other than 429) with server error detail."""

    def __init__(
        self,
        status_code: int,
        message: str = "",
        *,
        code: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.code = code
        self.message = message
        label = f"{status_code} {code}" if code else str(status_code)
        super().__init__(f"Remote rejected request ({label}): {message}")


class ResourceNotFound(RemoteRejected):
    """The addressed resource does not exist (404)."""

    def __init__(
        self, message: str = "Resource not found", *, code: str | None = None
    ) -> None:
        super().__init__(404, message, code=code or "NotFound")


class OperationFailed(RemoteRejected):
    """A long-running operation reached the ``Failed`` terminal state."""

    def __init__(self, detail: dict[str, object] | None = None) -> None:
        self.detail = detail or {}
        code = self.detail.get("code")
        message = str(self.detail.get("message", "operation failed"))
        super().__init__(0, message, code=str(code) if code else None)


class OperationCanceled(ProvisioningError):
    """A long-running operation was canceled on the remote side."""


class Timeout(ProvisioningError):
    """Poll deadline or run deadline elapsed before the operation finished.

    Raised on client-side abandonment only: the remote operation may still
    be running.
    """


# -- Plan construction ---------------------------------------------------------


class PlanError(ProvisioningError):
    """A plan cannot be built from its step declarations."""


class CyclicDependency(PlanError):
    """The step dependency graph contains a cycle."""

    def __init__(self, step_ids: Sequence[str]) -> None:
        self.step_ids = tuple(step_ids)
        super().__init__(
            "Cyclic dependency between steps: " + ", ".join(self.step_ids)
        )


class UnresolvedReference(PlanError):
    """A ``$ref`` payload value names an output that does not exist."""

    def __init__(self, ref: str, reason: str) -> None:
        self.ref = ref
        self.reason = reason
        super().__init__(f"Reference '{ref}' does not resolve: {reason}")


class UnresolvedDependency(ProvisioningError):
    """A step was asked to execute before one of its dependencies had a result."""

    def __init__(self, step_id: str, missing: Sequence[str]) -> None:
        self.step_id = step_id
        self.missing = tuple(missing)
        super().__init__(
            f"Step '{step_id}' has unresolved dependencies: {', '.join(self.missing)}"
        )


# -- Run outcome ---------------------------------------------------------------


class InvalidStateTransition(ProvisioningError):
    """Raised for run state transitions the lifecycle does not allow."""

    def __init__(self, from_state: str, to_state: str) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"invalid state transition: {from_state!r} -> {to_state!r}")


class PartialProvisioningFailure(ProvisioningError):
    """One or more forward steps failed."""

    def __init__(self, failed: Sequence[StepOutcome]) -> None:
        self.failed = tuple(failed)
        details = "; ".join(f"{s.step_id}: {s.error}" for s in self.failed)
        super().__init__(f"Provisioning failed for {len(self.failed)} step(s): {details}")


class TeardownFailure(ProvisioningError):
    """One or more resources could not be removed during teardown."""

    def __init__(self, failed: Sequence[TeardownOutcome]) -> None:
        self.failed = tuple(failed)
        leaked = ", ".join(
            f"{t.step_id} ({t.resource_id or 'unknown id'})" for t in self.failed
        )
        super().__init__(f"Teardown left {len(self.failed)} resource(s) behind: {leaked}")
