"""Resource steps — one provisioning action and its dependencies."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from cloud_provisioner.clients.base import (
    OperationHandle,
    ResourceAddress,
    ResourceAPIClient,
    SubmitResult,
)
from cloud_provisioner.config.models import Action, RunPolicy, StepConfig
from cloud_provisioner.engine.poller import OperationPoller
from cloud_provisioner.engine.retry import Sleep, transient_retry
from cloud_provisioner.errors import (
    RemoteRejected,
    ResourceNotFound,
    UnresolvedDependency,
)
from cloud_provisioner.resources.refs import referenced_steps, resolve_refs

logger = structlog.get_logger()

_NOT_FOUND_CODES = frozenset({"NotFound", "ResourceNotFound", "ResourceGroupNotFound"})


def _is_not_found(exc: RemoteRejected) -> bool:
    return (
        isinstance(exc, ResourceNotFound)
        or exc.status_code == 404
        or exc.code in _NOT_FOUND_CODES
    )


@dataclass(frozen=True)
class ExecutionContext:
    """Everything a step needs to talk to the control plane."""

    client: ResourceAPIClient
    policy: RunPolicy = field(default_factory=RunPolicy)
    sleep: Sleep = asyncio.sleep

    def poller(self) -> OperationPoller:
        return OperationPoller(self.client, self.policy, sleep=self.sleep)


@dataclass(frozen=True)
class StepResult:
    """Terminal, successful result of one step."""

    step_id: str
    resource_id: str | None
    resource: dict[str, Any] | None
    elapsed: float

    def output(self) -> dict[str, Any]:
        """The mapping ``$ref`` paths resolve against."""
        out = dict(self.resource or {})
        if self.resource_id:
            out.setdefault("id", self.resource_id)
        return out


@dataclass
class ResourceStep:
    """One create-or-update, read or delete against one resource.

    ``depends_on`` is normalised to the explicit dependencies plus ``parent``
    plus every step referenced from ``payload``, in that order.
    """

    step_id: str
    kind: str
    name: str
    action: Action = Action.CREATE_OR_UPDATE
    payload: dict[str, Any] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    parent: str | None = None
    api_version: str | None = None
    delete_on_teardown: bool = True
    # Explicit target; set on teardown steps built from a create result.
    resource_id: str | None = None
    result: StepResult | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        deps: dict[str, None] = dict.fromkeys(self.depends_on)
        if self.parent is not None:
            deps.setdefault(self.parent, None)
        for ref in referenced_steps(self.payload):
            deps.setdefault(ref, None)
        self.depends_on = tuple(deps)

    @classmethod
    def from_config(cls, config: StepConfig) -> ResourceStep:
        return cls(
            step_id=config.step_id,
            kind=config.kind,
            name=config.name,
            action=config.action,
            payload=dict(config.payload),
            depends_on=tuple(config.depends_on),
            parent=config.parent,
            api_version=config.api_version,
            delete_on_teardown=config.delete_on_teardown,
        )

    @property
    def creates_resource(self) -> bool:
        return self.action == Action.CREATE_OR_UPDATE

    def teardown_step(self, resource_id: str | None = None) -> ResourceStep:
        """The delete counterpart of this step, aimed at the created resource."""
        target = resource_id
        if target is None and self.result is not None:
            target = self.result.resource_id
        return ResourceStep(
            step_id=self.step_id,
            kind=self.kind,
            name=self.name,
            action=Action.DELETE,
            api_version=self.api_version,
            resource_id=target,
        )

    def address(self, resolved_inputs: Mapping[str, StepResult]) -> ResourceAddress:
        parent_id = None
        if self.parent is not None:
            parent_id = resolved_inputs[self.parent].resource_id
        return ResourceAddress(
            self.kind, self.name, parent_id=parent_id, resource_id=self.resource_id
        )

    async def execute(
        self,
        context: ExecutionContext,
        resolved_inputs: Mapping[str, StepResult],
    ) -> StepResult:
        """Run the action and wait until it is terminal.

        Synchronous answers return immediately; operation handles are polled
        to completion. Deleting a resource that is already gone succeeds.
        """
        missing = [d for d in self.depends_on if resolved_inputs.get(d) is None]
        if missing:
            raise UnresolvedDependency(self.step_id, missing)

        started = time.monotonic()
        address = self.address(resolved_inputs)
        target_id = context.client.resource_id(address)
        log = logger.bind(
            step_id=self.step_id, action=str(self.action), resource_id=target_id
        )
        log.info("step.started")

        try:
            resource = await self._run(context, address, resolved_inputs)
        except RemoteRejected as exc:
            if self.action != Action.DELETE or not _is_not_found(exc):
                raise
            log.info("step.already_absent")
            resource = None

        resource_id = target_id
        if resource and isinstance(resource.get("id"), str):
            resource_id = resource["id"]

        self.result = StepResult(
            step_id=self.step_id,
            resource_id=resource_id,
            resource=resource,
            elapsed=time.monotonic() - started,
        )
        log.info("step.succeeded", elapsed=round(self.result.elapsed, 3))
        return self.result

    async def _run(
        self,
        context: ExecutionContext,
        address: ResourceAddress,
        resolved_inputs: Mapping[str, StepResult],
    ) -> dict[str, Any] | None:
        client = context.client
        retrying = transient_retry(
            context.policy,
            operation=str(self.action),
            sleep=context.sleep,
            step_id=self.step_id,
        )

        if self.action == Action.READ:
            resource: dict[str, Any] | None = None
            async for attempt in retrying:
                with attempt:
                    resource = await client.fetch(address, api_version=self.api_version)
            return resource

        payload = None
        if self.action == Action.CREATE_OR_UPDATE:
            outputs = {k: v.output() for k, v in resolved_inputs.items()}
            payload = resolve_refs(self.payload, outputs)

        submitted: SubmitResult | None = None
        async for attempt in retrying:
            with attempt:
                submitted = await client.submit(
                    self.action, address, payload, api_version=self.api_version
                )
        assert submitted is not None

        if isinstance(submitted, OperationHandle):
            poller = context.poller().start(submitted)
            return await poller.poll_until_done()
        return submitted.resource
