"""Cooperative cancellation for long-running acquisition work.

A CancellationToken is shared by everything working on one run. Waits go
through `token.sleep()` so that a cancel request wakes the waiter right away
instead of after the remaining interval.

The token can also consult an external check (for example the run's
`cancel_requested` column) so that a cancel issued from another process is
observed at the next checkpoint.

Usage:
    token = CancellationToken(check=lambda: service.is_cancel_requested(run_id))

    while not done:
        if await token.sleep(5.0):
            raise AcquisitionCancelled()
"""

import asyncio
import time
from typing import Callable, Optional


class CancellationToken:
    """Cancellation flag with a token-aware timer."""

    def __init__(
        self,
        check: Optional[Callable[[], bool]] = None,
        check_interval: float = 1.0,
    ):
        """Initialize the token.

        Args:
            check: Optional callable returning True once cancellation was
                requested elsewhere. Errors raised by the check propagate.
            check_interval: How often the check is consulted during a wait.
        """
        self._event = asyncio.Event()
        self._check = check
        self._check_interval = max(check_interval, 0.01)
        self.reason: Optional[str] = None

    def cancel(self, reason: Optional[str] = None) -> None:
        """Request cancellation and wake any waiter."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        """Check the flag, then the external check if one is configured."""
        if self._event.is_set():
            return True
        if self._check is not None and self._check():
            self.cancel(reason="requested")
            return True
        return False

    async def sleep(self, seconds: float) -> bool:
        """Wait up to `seconds`, returning early if cancelled.

        Returns:
            True if cancellation was observed before or during the wait.
        """
        if self.cancelled:
            return True
        if seconds <= 0:
            return False

        deadline = time.monotonic() + seconds
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return self.cancelled
            # Without a check only the in-process event can wake us
            slice_ = remaining if self._check is None else min(remaining, self._check_interval)
            try:
                await asyncio.wait_for(self._event.wait(), timeout=slice_)
                return True
            except asyncio.TimeoutError:
                if self.cancelled:
                    return True
