from __future__ import annotations

import datetime
import threading

from palace.index_manager.core.exceptions import BasePalaceException
from palace.index_manager.util.datetime_helpers import utc_now


class OperationCancelledException(BasePalaceException):
    """Raised when work is abandoned because its cancellation token was
    cancelled or its deadline passed."""


class CancellationToken:
    """A caller supplied signal used to abandon long-running work.

    The token is cancelled either explicitly, by calling `cancel`, or
    implicitly, once its optional deadline has passed. Waiting on the token
    returns as soon as either happens, so a caller never has to wait out a
    full poll interval during shutdown.
    """

    def __init__(
        self,
        timeout: datetime.timedelta | None = None,
    ) -> None:
        self._event = threading.Event()
        self._deadline = utc_now() + timeout if timeout is not None else None

    @classmethod
    def never(cls) -> CancellationToken:
        """A token with no deadline, which is only cancelled explicitly."""
        return cls()

    @property
    def deadline(self) -> datetime.datetime | None:
        return self._deadline

    def cancel(self) -> None:
        self._event.set()

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None if there is no deadline."""
        if self._deadline is None:
            return None
        return max((self._deadline - utc_now()).total_seconds(), 0.0)

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def raise_if_cancelled(self, operation: str | None = None) -> None:
        if not self.cancelled:
            return
        if self._event.is_set():
            reason = "cancelled"
        else:
            reason = "deadline exceeded"
        if operation:
            raise OperationCancelledException(f"{operation}: {reason}")
        raise OperationCancelledException(reason)

    def wait(self, seconds: float) -> bool:
        """Block for up to `seconds`, returning early if the token is cancelled
        or its deadline passes.

        :return: True if the token was cancelled before or during the wait.
        """
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        if seconds > 0:
            self._event.wait(seconds)
        return self.cancelled


def cancellable_wait(interval: datetime.timedelta, token: CancellationToken) -> None:
    """Wait for `interval`, raising OperationCancelledException as soon as
    `token` is cancelled."""
    if token.wait(interval.total_seconds()):
        token.raise_if_cancelled("wait interrupted")
