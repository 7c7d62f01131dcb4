import time

from ..exceptions import Timeout


class Deadline:
    """Caller supplied time budget for one scheduler operation."""

    def __init__(self, operation, seconds):
        self.operation = operation
        self.seconds = seconds
        self._expires_at = time.monotonic() + seconds

    @classmethod
    def start(cls, operation, timeout=None):
        """Return a deadline, or None when the caller set no timeout."""
        if timeout is None:
            return None
        return cls(operation, timeout)

    def remaining(self):
        return max(0.0, self._expires_at - time.monotonic())

    def expired(self):
        return time.monotonic() >= self._expires_at

    def check(self):
        """
        Raises:
            Timeout: If the deadline has passed.
        """
        if self.expired():
            raise Timeout(self.operation, self.seconds)
