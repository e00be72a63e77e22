import threading
import time
from typing import Optional

from .errors import ComparisonCancelledError, ComparisonTimeoutError


class CancellationToken:
    """Thread-safe flag a caller sets to stop a running comparison"""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "Comparison cancelled by caller"):
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class Deadline:
    """
    Time budget for one comparison run.

    Checked before every object comparison. A budget of None or 0 never
    expires, but the cancellation token is still honoured.
    """

    def __init__(self, seconds: Optional[float] = None,
                 token: Optional[CancellationToken] = None,
                 clock=time.monotonic):
        self.seconds = seconds if seconds else None
        self.token = token
        self._clock = clock
        self._started = clock()

    @property
    def elapsed(self) -> float:
        return self._clock() - self._started

    @property
    def remaining(self) -> Optional[float]:
        if self.seconds is None:
            return None
        return max(0.0, self.seconds - self.elapsed)

    def expired(self) -> bool:
        return self.seconds is not None and self.elapsed >= self.seconds

    def check(self, current: Optional[str] = None):
        """Raise if the run has been cancelled or has run out of time"""
        if self.token is not None and self.token.cancelled:
            raise ComparisonCancelledError(
                self.token.reason or "Comparison cancelled",
                {"current_object": current},
            )
        if self.expired():
            raise ComparisonTimeoutError(
                f"Comparison exceeded its {self.seconds:g}s deadline",
                {"timeout_seconds": self.seconds, "current_object": current},
            )
