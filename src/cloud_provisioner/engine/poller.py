"""Long-running operation polling."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import structlog

from cloud_provisioner.clients.base import (
    Canceled,
    Failed,
    OperationHandle,
    OperationStatus,
    ResourceAPIClient,
    Succeeded,
)
from cloud_provisioner.config.models import RunPolicy
from cloud_provisioner.engine.retry import Sleep, transient_retry
from cloud_provisioner.errors import OperationCanceled, OperationFailed, Timeout

logger = structlog.get_logger()


class Poller:
    """Tracks one :class:`OperationHandle` until it reaches a terminal state.

    Created by :meth:`OperationPoller.start`; owned by the step that started
    the operation and discarded once terminal.
    """

    def __init__(
        self,
        client: ResourceAPIClient,
        handle: OperationHandle,
        policy: RunPolicy,
        sleep: Sleep,
    ) -> None:
        self._client = client
        self._handle = handle
        self._policy = policy
        self._sleep = sleep
        self._status: OperationStatus | None = None
        self._result: dict[str, Any] | None = None
        self._resolved = False
        self._error: Exception | None = None
        self.polls = 0

    @property
    def handle(self) -> OperationHandle:
        return self._handle

    @property
    def done(self) -> bool:
        return self._status is not None

    @property
    def status(self) -> OperationStatus | None:
        """The terminal status, once observed."""
        return self._status

    async def poll_until_done(self) -> dict[str, Any] | None:
        """Poll until the operation is terminal and return its resulting resource.

        Raises :class:`OperationFailed` or :class:`OperationCanceled` for the
        matching terminal states and :class:`Timeout` when the poll deadline
        elapses. A timeout, or cancelling the awaiting task, only abandons
        the operation on the client side: the remote operation keeps running
        and nothing is sent to stop it.

        Once terminal, further calls return the cached outcome without
        querying the control plane again.
        """
        if self._error is not None:
            raise self._error
        if self._resolved:
            return self._result

        if self._status is None:
            timeout = self._time_budget()
            if timeout is not None and timeout <= 0:
                msg = f"Deadline already passed for operation {self._handle.locator}"
                raise Timeout(msg)
            try:
                async with asyncio.timeout(timeout):
                    self._status = await self._poll_loop()
            except TimeoutError as exc:
                logger.warning(
                    "poller.timeout",
                    locator=self._handle.locator,
                    polls=self.polls,
                    timeout=timeout,
                )
                msg = (
                    f"Operation {self._handle.locator} did not finish within "
                    f"{timeout}s; abandoned client-side, it may still be running"
                )
                raise Timeout(msg) from exc

        return await self._settle(self._status)

    def _time_budget(self) -> float | None:
        budgets: list[float] = []
        if self._policy.poll_timeout_seconds is not None:
            budgets.append(self._policy.poll_timeout_seconds)
        if self._handle.deadline is not None:
            budgets.append(self._handle.deadline - time.monotonic())
        return min(budgets) if budgets else None

    def _interval(self, status: OperationStatus) -> float:
        hint = getattr(status, "retry_after", None)
        if hint is not None:
            return float(hint)
        if self._handle.min_poll_interval is not None:
            return self._handle.min_poll_interval
        return self._policy.poll_interval_seconds

    async def _poll_loop(self) -> OperationStatus:
        if self._handle.retry_after:
            await self._sleep(self._handle.retry_after)
        while True:
            status = await self._query()
            if status.terminal:
                logger.info(
                    "poller.terminal",
                    locator=self._handle.locator,
                    status=type(status).__name__,
                    polls=self.polls,
                )
                return status
            delay = self._interval(status)
            logger.debug(
                "poller.running",
                locator=self._handle.locator,
                polls=self.polls,
                next_poll_in=delay,
            )
            await self._sleep(delay)

    async def _query(self) -> OperationStatus:
        async for attempt in transient_retry(
            self._policy,
            operation="query_status",
            sleep=self._sleep,
            locator=self._handle.locator,
        ):
            with attempt:
                status = await self._client.query_status(self._handle)
        self.polls += 1
        return status

    async def _settle(self, status: OperationStatus) -> dict[str, Any] | None:
        if isinstance(status, Failed):
            self._error = OperationFailed(status.error_detail)
            raise self._error
        if isinstance(status, Canceled):
            msg = f"Operation {self._handle.locator} was canceled remotely"
            if status.detail:
                msg += f": {status.detail}"
            self._error = OperationCanceled(msg)
            raise self._error

        assert isinstance(status, Succeeded)
        result = status.result
        if result is None and self._handle.address is not None:
            async for attempt in transient_retry(
                self._policy,
                operation="fetch",
                sleep=self._sleep,
                locator=self._handle.locator,
            ):
                with attempt:
                    result = await self._client.fetch(
                        self._handle.address, api_version=self._handle.api_version
                    )
        self._result = result
        self._resolved = True
        return result


class OperationPoller:
    """Starts pollers for operation handles returned by a Resource API client."""

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

    @property
    def sleep(self) -> Sleep:
        return self._sleep

    def start(self, handle: OperationHandle) -> Poller:
        """Begin tracking *handle*; never blocks."""
        return Poller(self._client, handle, self._policy, self._sleep)

    async def poll_until_done(self, poller: Poller) -> dict[str, Any] | None:
        return await poller.poll_until_done()
