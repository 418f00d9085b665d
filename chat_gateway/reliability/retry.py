# =============================================================================
# Chat Gateway -- Resilience Wrapper
# =============================================================================

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from ..core.errors import GatewayError
from .config import RetryConfig

logger = logging.getLogger("chat_gateway.retry")

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


async def retry_operation(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    *,
    name: str = "operation",
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Await *operation*, retrying transient failures with linear backoff.

    Non-retryable gateway errors (validation, authorization) are re-raised
    immediately.  After ``config.max_retries`` retries the last error is
    re-raised to the caller.
    """
    config = config or RetryConfig()
    attempt = 0

    while True:
        try:
            return await operation()
        except GatewayError as e:
            if not e.can_retry or attempt >= config.max_retries:
                raise
            error: Exception = e
        except Exception as e:
            if attempt >= config.max_retries:
                logger.error(
                    "%s failed after %d attempts: %s", name, attempt + 1, e
                )
                raise
            error = e

        attempt += 1
        delay = config.base_delay * attempt
        logger.warning(
            "%s failed (%s: %s), retry %d/%d in %.1fs",
            name,
            type(error).__name__,
            error,
            attempt,
            config.max_retries,
            delay,
        )
        await sleep(delay)
