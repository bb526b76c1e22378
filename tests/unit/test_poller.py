"""Unit tests for long-running operation polling."""

from __future__ import annotations

import asyncio
import time
from unittest.mock import AsyncMock

import pytest

from cloud_provisioner.clients.base import (
    Canceled,
    Failed,
    OperationHandle,
    ResourceAddress,
    Running,
    Succeeded,
)
from cloud_provisioner.config.models import RunPolicy
from cloud_provisioner.engine.poller import OperationPoller
from cloud_provisioner.errors import (
    OperationCanceled,
    OperationFailed,
    RemoteRejected,
    Timeout,
    TransportError,
)

HANDLE = OperationHandle(locator="https://example.test/operations/1")


def _client(*statuses) -> AsyncMock:
    client = AsyncMock()
    client.query_status.side_effect = list(statuses)
    return client


@pytest.mark.asyncio
class TestPollUntilDone:
    async def test_three_polls_with_default_interval(self, policy, sleep):
        client = _client(Running(), Running(), Succeeded({"id": "/r/1"}))
        poller = OperationPoller(client, policy, sleep=sleep).start(HANDLE)

        result = await poller.poll_until_done()

        assert result == {"id": "/r/1"}
        assert client.query_status.await_count == 3
        assert poller.polls == 3
        assert sleep.calls == [10.0, 10.0]
        assert poller.done
        assert isinstance(poller.status, Succeeded)

    async def test_terminal_result_is_cached(self, policy, sleep):
        client = _client(Running(), Running(), Succeeded({"id": "/r/1"}))
        poller = OperationPoller(client, policy, sleep=sleep).start(HANDLE)

        first = await poller.poll_until_done()
        second = await poller.poll_until_done()

        assert first == second
        assert client.query_status.await_count == 3

    async def test_poll_until_done_via_operation_poller(self, policy, sleep):
        client = _client(Succeeded({"id": "/r/1"}))
        ops = OperationPoller(client, policy, sleep=sleep)
        poller = ops.start(HANDLE)

        assert await ops.poll_until_done(poller) == {"id": "/r/1"}
        assert ops.sleep is sleep

    async def test_immediate_success_never_sleeps(self, policy, sleep):
        client = _client(Succeeded({"id": "/r/1"}))
        poller = OperationPoller(client, policy, sleep=sleep).start(HANDLE)

        await poller.poll_until_done()

        assert sleep.calls == []
        assert poller.polls == 1

    async def test_retry_after_overrides_interval(self, policy, sleep):
        client = _client(Running(retry_after=3), Running(), Succeeded({}))
        poller = OperationPoller(client, policy, sleep=sleep).start(HANDLE)

        await poller.poll_until_done()

        assert sleep.calls == [3.0, 10.0]

    async def test_handle_min_poll_interval(self, policy, sleep):
        handle = OperationHandle(locator="op", min_poll_interval=2.5)
        client = _client(Running(), Succeeded({}))
        poller = OperationPoller(client, policy, sleep=sleep).start(handle)

        await poller.poll_until_done()

        assert sleep.calls == [2.5]

    async def test_submit_retry_after_delays_first_poll(self, policy, sleep):
        handle = OperationHandle(locator="op", retry_after=5)
        client = _client(Succeeded({}))
        poller = OperationPoller(client, policy, sleep=sleep).start(handle)

        await poller.poll_until_done()

        assert sleep.calls == [5]

    async def test_policy_interval_used_without_hints(self, sleep):
        policy = RunPolicy(poll_interval_seconds=1.5, jitter=False)
        client = _client(Running(), Running(), Succeeded({}))
        poller = OperationPoller(client, policy, sleep=sleep).start(HANDLE)

        await poller.poll_until_done()

        assert sleep.calls == [1.5, 1.5]

    async def test_empty_success_fetches_resource(self, policy, sleep):
        address = ResourceAddress("Microsoft.Test/things", "a", resource_id="/r/a")
        handle = OperationHandle(locator="op", address=address, api_version="2024-01-01")
        client = _client(Succeeded(None))
        client.fetch.return_value = {"id": "/r/a", "name": "a"}
        poller = OperationPoller(client, policy, sleep=sleep).start(handle)

        result = await poller.poll_until_done()

        assert result == {"id": "/r/a", "name": "a"}
        client.fetch.assert_awaited_once_with(address, api_version="2024-01-01")

    async def test_empty_success_without_address(self, policy, sleep):
        client = _client(Succeeded(None))
        poller = OperationPoller(client, policy, sleep=sleep).start(HANDLE)

        assert await poller.poll_until_done() is None
        client.fetch.assert_not_awaited()


@pytest.mark.asyncio
class TestTransientErrors:
    async def test_transient_query_error_is_retried(self, policy, sleep):
        client = _client(TransportError("connection reset"), Succeeded({"id": "x"}))
        poller = OperationPoller(client, policy, sleep=sleep).start(HANDLE)

        assert await poller.poll_until_done() == {"id": "x"}
        assert client.query_status.await_count == 2
        assert sleep.calls == [1.0]
        assert poller.polls == 1

    async def test_transport_retry_after_hint(self, policy, sleep):
        client = _client(
            TransportError("throttled", status_code=429, retry_after=7),
            Succeeded({}),
        )
        poller = OperationPoller(client, policy, sleep=sleep).start(HANDLE)

        await poller.poll_until_done()

        assert sleep.calls == [7.0]

    async def test_retries_are_bounded(self, sleep):
        policy = RunPolicy(max_retries=3, jitter=False)
        client = AsyncMock()
        client.query_status.side_effect = TransportError("down")
        poller = OperationPoller(client, policy, sleep=sleep).start(HANDLE)

        with pytest.raises(TransportError, match="down"):
            await poller.poll_until_done()
        assert client.query_status.await_count == 3
        assert sleep.calls == [1.0, 2.0]

    async def test_rejection_is_not_retried(self, policy, sleep):
        client = AsyncMock()
        client.query_status.side_effect = RemoteRejected(403, "forbidden")
        poller = OperationPoller(client, policy, sleep=sleep).start(HANDLE)

        with pytest.raises(RemoteRejected):
            await poller.poll_until_done()
        assert client.query_status.await_count == 1
        assert sleep.calls == []


@pytest.mark.asyncio
class TestTerminalFailures:
    async def test_failed_raises_operation_failed(self, policy, sleep):
        detail = {"code": "Conflict", "message": "name already taken"}
        client = _client(Running(), Failed(detail))
        poller = OperationPoller(client, policy, sleep=sleep).start(HANDLE)

        with pytest.raises(OperationFailed, match="name already taken") as exc_info:
            await poller.poll_until_done()
        assert exc_info.value.code == "Conflict"
        assert exc_info.value.detail == detail

    async def test_failure_is_cached(self, policy, sleep):
        client = _client(Failed({"code": "Conflict"}))
        poller = OperationPoller(client, policy, sleep=sleep).start(HANDLE)

        with pytest.raises(OperationFailed):
            await poller.poll_until_done()
        with pytest.raises(OperationFailed):
            await poller.poll_until_done()
        assert client.query_status.await_count == 1

    async def test_canceled_raises_operation_canceled(self, policy, sleep):
        client = _client(Canceled("Canceled"))
        poller = OperationPoller(client, policy, sleep=sleep).start(HANDLE)

        with pytest.raises(OperationCanceled, match="canceled remotely"):
            await poller.poll_until_done()


@pytest.mark.asyncio
class TestDeadlines:
    async def test_poll_timeout_raises_timeout(self):
        policy = RunPolicy(poll_timeout_seconds=0.05)
        handle = OperationHandle(locator="op", min_poll_interval=0.01)
        client = AsyncMock()
        client.query_status.return_value = Running()
        poller = OperationPoller(client, policy).start(handle)

        with pytest.raises(Timeout, match="still be running"):
            await poller.poll_until_done()
        assert not poller.done

    async def test_expired_handle_deadline(self, policy, sleep):
        handle = OperationHandle(locator="op", deadline=time.monotonic() - 1)
        client = _client(Succeeded({}))
        poller = OperationPoller(client, policy, sleep=sleep).start(handle)

        with pytest.raises(Timeout):
            await poller.poll_until_done()
        client.query_status.assert_not_awaited()

    async def test_cancellation_propagates(self):
        handle = OperationHandle(locator="op", min_poll_interval=0.01)
        client = AsyncMock()
        client.query_status.return_value = Running()
        poller = OperationPoller(client, RunPolicy(poll_timeout_seconds=None)).start(handle)

        task = asyncio.create_task(poller.poll_until_done())
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert not poller.done
