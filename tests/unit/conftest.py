"""Shared fixtures for unit tests."""

from __future__ import annotations

import pytest
import structlog

from cloud_provisioner.config.models import RunPolicy


class RecordingSleep:
    """Stands in for ``asyncio.sleep``; records delays and returns at once."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def policy() -> RunPolicy:
    # Deterministic backoff: 1s, 2s, 4s ...
    return RunPolicy(jitter=False)


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()
