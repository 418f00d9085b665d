# =============================================================================
# Chat Gateway -- Reliability Configuration
# =============================================================================

from dataclasses import dataclass


@dataclass
class RetryConfig:
    """Retry configuration for durable-store writes.

    Attributes:
        max_retries: Retries allowed after the initial call fails.  The
            operation is invoked at most ``max_retries + 1`` times.
        base_delay: Seconds to wait before the first retry.  The wait before
            retry *n* is ``base_delay * n`` (linear backoff), so the default
            waits at most ``base_delay * (1 + 2 + 3)`` before the last error
            is re-raised.
    """

    max_retries: int = 3
    base_delay: float = 1.0
