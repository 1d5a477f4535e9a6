"""Per-call timeout and bounded retry for outbound network calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from core.config import RetryConfig
from core.errors import NetworkError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryConfig,
    description: str,
) -> T:
    """Run ``operation`` with a timeout, retrying transient failures.

    Only timeouts and NetworkError(transient=True) are retried. Everything
    else, including permanent NetworkErrors, propagates on the first attempt.
    Timeouts surface as a transient NetworkError once attempts run out.
    """

    attempts = max(1, policy.attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(operation(), timeout=policy.timeout_seconds)
        except asyncio.TimeoutError as exc:
            error: NetworkError = NetworkError(f"{description} timed out", transient=True)
            error.__cause__ = exc
        except NetworkError as exc:
            if not exc.transient:
                raise
            error = exc

        if attempt == attempts:
            raise error
        LOGGER.warning("%s failed (attempt %s/%s): %s", description, attempt, attempts, error)
        await asyncio.sleep(policy.backoff_seconds * attempt)

    raise AssertionError("unreachable")
