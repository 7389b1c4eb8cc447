"""Infrastructure components for Harvester.

This package contains infrastructure-level components like:
- Cooperative cancellation
- Retry with exponential backoff
"""

from harvester_core.infrastructure.cancellation import CancellationToken
from harvester_core.infrastructure.retry import (
    NETWORK_RETRY,
    RetryConfig,
    TransientStatusError,
    exponential_backoff,
    with_retry,
)

__all__ = [
    "CancellationToken",
    "NETWORK_RETRY",
    "RetryConfig",
    "TransientStatusError",
    "exponential_backoff",
    "with_retry",
]
