"""Orchestrator — forward provisioning and best-effort reverse teardown."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping
from contextlib import nullcontext
from dataclasses import dataclass, field
from types import MappingProxyType

import structlog

from cloud_provisioner.clients.base import ResourceAddress, ResourceAPIClient
from cloud_provisioner.config.models import RunPolicy
from cloud_provisioner.engine.outcome import (
    RunOutcome,
    RunState,
    StepOutcome,
    StepStatus,
    TeardownOutcome,
    TeardownStatus,
)
from cloud_provisioner.engine.plan import ProvisioningPlan
from cloud_provisioner.engine.retry import Sleep
from cloud_provisioner.engine.steps import ExecutionContext, ResourceStep, StepResult
from cloud_provisioner.errors import InvalidStateTransition

logger = structlog.get_logger()

ALLOWED_TRANSITIONS: Mapping[RunState, frozenset[RunState]] = MappingProxyType(
    {
        # idle -> tearing_down is the destroy-only path.
        RunState.IDLE: frozenset({RunState.PROVISIONING, RunState.TEARING_DOWN}),
        RunState.PROVISIONING: frozenset(
            {RunState.PROVISIONED, RunState.PARTIALLY_FAILED}
        ),
        RunState.PROVISIONED: frozenset({RunState.TEARING_DOWN}),
        RunState.PARTIALLY_FAILED: frozenset({RunState.TEARING_DOWN}),
        RunState.TEARING_DOWN: frozenset(
            {RunState.CLEANED, RunState.TEARDOWN_FAILED}
        ),
        RunState.CLEANED: frozenset(),
        RunState.TEARDOWN_FAILED: frozenset(),
    }
)


@dataclass
class Run:
    """Lifecycle of one plan execution."""

    plan: ProvisioningPlan
    context: ExecutionContext
    state: RunState = RunState.IDLE
    halted: bool = False
    outcomes: dict[str, StepOutcome] = field(default_factory=dict)
    teardown: list[TeardownOutcome] = field(default_factory=list)

    @property
    def policy(self) -> RunPolicy:
        return self.context.policy

    def transition(self, to_state: RunState) -> None:
        if to_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidStateTransition(self.state.value, to_state.value)
        logger.info(
            "run.state_changed",
            plan_id=self.plan.plan_id,
            from_state=self.state.value,
            to_state=to_state.value,
        )
        self.state = to_state

    def succeeded(self) -> dict[str, StepOutcome]:
        return {
            sid: o for sid, o in self.outcomes.items() if o.status == StepStatus.SUCCEEDED
        }

    def outcome(self) -> RunOutcome:
        succeeded = self.succeeded()
        last = max((self.plan.index_of(sid) for sid in succeeded), default=-1)
        return RunOutcome(
            plan_id=self.plan.plan_id,
            state=self.state,
            steps=[self.outcomes[s.step_id] for s in self.plan if s.step_id in self.outcomes],
            teardown=list(self.teardown),
            last_completed_index=last,
        )


class Orchestrator:
    """Runs a :class:`ProvisioningPlan` forward, then optionally tears it down.

    Independent steps run concurrently, bounded by ``policy.parallelism``
    (0 = unbounded). The first failing step halts the forward pass: steps
    not yet started are never scheduled, in-flight ones finish and are
    recorded. Teardown deletes what was created, in reverse plan order,
    continuing past individual delete failures.

    Cancelling the task awaiting :meth:`run_plan` cancels every in-flight
    call and poll; no teardown runs in that case.
    """

    def __init__(
        self,
        client: ResourceAPIClient,
        policy: RunPolicy | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self._policy = policy or RunPolicy()
        self._sleep = sleep

    def _new_run(self, plan: ProvisioningPlan, policy: RunPolicy | None) -> Run:
        context = ExecutionContext(
            client=self._client, policy=policy or self._policy, sleep=self._sleep
        )
        return Run(plan=plan, context=context)

    async def run_plan(
        self, plan: ProvisioningPlan, policy: RunPolicy | None = None
    ) -> RunOutcome:
        """Provision every step, then tear down unless resources are retained.

        Never raises for step or teardown failures; inspect the returned
        outcome or call :meth:`RunOutcome.raise_for_status`.
        """
        run = self._new_run(plan, policy)
        run.outcomes = {s.step_id: StepOutcome(step_id=s.step_id) for s in plan}

        run.transition(RunState.PROVISIONING)
        await self._provision(run)
        failed = any(o.status == StepStatus.FAILED for o in run.outcomes.values())
        run.transition(RunState.PARTIALLY_FAILED if failed else RunState.PROVISIONED)

        if run.policy.tear_down_on_exit:
            succeeded = run.succeeded()
            await self._teardown(
                run,
                plan.reverse(completed=succeeded.keys()),
                {sid: o.resource_id for sid, o in succeeded.items()},
            )
        else:
            logger.info(
                "orchestrator.resources_retained",
                plan_id=plan.plan_id,
                resources=[o.resource_id for o in run.succeeded().values()],
            )

        return run.outcome()

    async def destroy(
        self, plan: ProvisioningPlan, policy: RunPolicy | None = None
    ) -> RunOutcome:
        """Delete every resource the plan declares, children first.

        Resources that do not exist are skipped as already deleted.
        """
        run = self._new_run(plan, policy)
        resource_ids: dict[str, str | None] = {}
        # Reads included; children of an existing resource need its ID.
        for step in plan:
            parent_id = resource_ids.get(step.parent) if step.parent else None
            resource_ids[step.step_id] = self._client.resource_id(
                ResourceAddress(step.kind, step.name, parent_id=parent_id)
            )
        await self._teardown(run, plan.reverse(completed=resource_ids.keys()), resource_ids)
        return run.outcome()

    # -- Forward pass ----------------------------------------------------------

    async def _provision(self, run: Run) -> None:
        loop = asyncio.get_running_loop()
        futures: dict[str, asyncio.Future[StepResult | None]] = {
            s.step_id: loop.create_future() for s in run.plan
        }
        limit = run.policy.parallelism
        semaphore = asyncio.Semaphore(limit) if limit > 0 else None

        async def run_step(step: ResourceStep) -> None:
            future = futures[step.step_id]
            try:
                resolved: dict[str, StepResult] = {}
                for dep in step.depends_on:
                    result = await futures[dep]
                    if result is None:
                        logger.info(
                            "orchestrator.step_skipped",
                            step_id=step.step_id,
                            blocked_by=dep,
                        )
                        return
                    resolved[dep] = result

                async with semaphore or nullcontext():
                    if run.halted:
                        logger.info("orchestrator.step_skipped", step_id=step.step_id)
                        return
                    future.set_result(await self._execute(run, step, resolved))
            finally:
                if not future.done():
                    future.set_result(None)

        await asyncio.gather(*(run_step(s) for s in run.plan))

    async def _execute(
        self, run: Run, step: ResourceStep, resolved: dict[str, StepResult]
    ) -> StepResult | None:
        outcome = run.outcomes[step.step_id]
        started = time.monotonic()
        try:
            result = await step.execute(run.context, resolved)
        except Exception as exc:
            run.halted = True
            outcome.status = StepStatus.FAILED
            outcome.elapsed_seconds = time.monotonic() - started
            outcome.error = str(exc)
            outcome.exception = exc
            logger.error(
                "orchestrator.step_failed",
                plan_id=run.plan.plan_id,
                step_id=step.step_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None

        outcome.status = StepStatus.SUCCEEDED
        outcome.resource_id = result.resource_id
        outcome.elapsed_seconds = result.elapsed
        return result

    # -- Teardown --------------------------------------------------------------

    async def _teardown(
        self,
        run: Run,
        steps: list[ResourceStep],
        resource_ids: Mapping[str, str | None],
    ) -> None:
        run.transition(RunState.TEARING_DOWN)
        logger.info(
            "orchestrator.teardown_started",
            plan_id=run.plan.plan_id,
            order=[s.step_id for s in steps],
        )

        for step in steps:
            resource_id = resource_ids.get(step.step_id)
            delete = step.teardown_step(resource_id)
            started = time.monotonic()
            try:
                await delete.execute(run.context, {})
            except Exception as exc:
                run.teardown.append(
                    TeardownOutcome(
                        step_id=step.step_id,
                        status=TeardownStatus.FAILED,
                        resource_id=resource_id,
                        elapsed_seconds=time.monotonic() - started,
                        error=str(exc),
                        exception=exc,
                    )
                )
                logger.error(
                    "orchestrator.teardown_step_failed",
                    step_id=step.step_id,
                    resource_id=resource_id,
                    error=str(exc),
                )
                continue
            run.teardown.append(
                TeardownOutcome(
                    step_id=step.step_id,
                    status=TeardownStatus.DELETED,
                    resource_id=resource_id,
                    elapsed_seconds=time.monotonic() - started,
                )
            )

        failures = [t for t in run.teardown if t.status == TeardownStatus.FAILED]
        if failures:
            run.transition(RunState.TEARDOWN_FAILED)
            logger.error(
                "orchestrator.teardown_failed",
                plan_id=run.plan.plan_id,
                leaked=[t.resource_id for t in failures],
            )
        else:
            run.transition(RunState.CLEANED)
