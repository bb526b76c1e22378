"""Run outcome reporting."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from cloud_provisioner.errors import PartialProvisioningFailure, TeardownFailure


class RunState(StrEnum):
    IDLE = "idle"
    PROVISIONING = "provisioning"
    PROVISIONED = "provisioned"
    PARTIALLY_FAILED = "partially_failed"
    TEARING_DOWN = "tearing_down"
    CLEANED = "cleaned"
    TEARDOWN_FAILED = "teardown_failed"


class StepStatus(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    NOT_ATTEMPTED = "not_attempted"


class TeardownStatus(StrEnum):
    DELETED = "deleted"
    FAILED = "failed"


@dataclass
class StepOutcome:
    step_id: str
    status: StepStatus = StepStatus.NOT_ATTEMPTED
    resource_id: str | None = None
    elapsed_seconds: float = 0.0
    error: str | None = None
    exception: BaseException | None = field(default=None, repr=False, compare=False)


@dataclass
class TeardownOutcome:
    step_id: str
    status: TeardownStatus
    resource_id: str | None = None
    elapsed_seconds: float = 0.0
    error: str | None = None
    exception: BaseException | None = field(default=None, repr=False, compare=False)


@dataclass
class RunOutcome:
    """Per-step report of one run, in plan order, plus teardown results."""

    plan_id: str
    state: RunState
    steps: list[StepOutcome] = field(default_factory=list)
    teardown: list[TeardownOutcome] = field(default_factory=list)
    # Plan index of the furthest step that succeeded; -1 when none did.
    last_completed_index: int = -1

    def step(self, step_id: str) -> StepOutcome:
        for outcome in self.steps:
            if outcome.step_id == step_id:
                return outcome
        raise KeyError(step_id)

    @property
    def failed_steps(self) -> list[StepOutcome]:
        return [s for s in self.steps if s.status == StepStatus.FAILED]

    @property
    def teardown_failures(self) -> list[TeardownOutcome]:
        return [t for t in self.teardown if t.status == TeardownStatus.FAILED]

    @property
    def ok(self) -> bool:
        return not self.failed_steps and not self.teardown_failures

    def raise_for_status(self) -> None:
        """Raise for leaked resources first, then for failed forward steps."""
        if self.teardown_failures:
            raise TeardownFailure(self.teardown_failures)
        if self.failed_steps:
            raise PartialProvisioningFailure(self.failed_steps)

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "state": self.state.value,
            "last_completed_index": self.last_completed_index,
            "steps": [
                {
                    "step_id": s.step_id,
                    "status": s.status.value,
                    "resource_id": s.resource_id,
                    "elapsed_seconds": round(s.elapsed_seconds, 3),
                    "error": s.error,
                }
                for s in self.steps
            ],
            "teardown": [
                {
                    "step_id": t.step_id,
                    "status": t.status.value,
                    "resource_id": t.resource_id,
                    "elapsed_seconds": round(t.elapsed_seconds, 3),
                    "error": t.error,
                }
                for t in self.teardown
            ],
        }
