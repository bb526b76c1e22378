"""Bounded retries for transient control-plane errors."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from cloud_provisioner.config.models import RunPolicy
from cloud_provisioner.errors import TransportError

logger = structlog.get_logger()

Sleep = Callable[[float], Awaitable[Any]]


def _wait_strategy(policy: RunPolicy) -> Callable[[RetryCallState], float]:
    """Server Retry-After hint when given, exponential backoff otherwise."""
    backoff = wait_exponential_jitter(
        initial=policy.retry_initial_wait_seconds,
        max=policy.retry_max_wait_seconds,
        jitter=policy.retry_initial_wait_seconds if policy.jitter else 0,
    )

    def wait(retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        hint = getattr(exc, "retry_after", None)
        if hint is not None:
            return float(hint)
        return backoff(retry_state)

    return wait


def _log_retry(operation: str, context: dict[str, Any]) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else None
        logger.warning(
            "retry.transient_error",
            operation=operation,
            attempt=retry_state.attempt_number,
            delay=delay,
            error=str(exc),
            **context,
        )

    return before_sleep


def transient_retry(
    policy: RunPolicy,
    *,
    operation: str,
    sleep: Sleep = asyncio.sleep,
    **context: Any,
) -> AsyncRetrying:
    """Build a tenacity retrier that only retries :class:`TransportError`.

    Any other exception propagates on the first attempt. After
    ``policy.max_retries`` attempts the last ``TransportError`` is re-raised.
    """
    return AsyncRetrying(
        retry=retry_if_exception_type(TransportError),
        stop=stop_after_attempt(policy.max_retries),
        wait=_wait_strategy(policy),
        sleep=sleep,
        before_sleep=_log_retry(operation, context),
        reraise=True,
    )
