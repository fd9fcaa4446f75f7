import logging
import threading
import time
from concurrent.futures import CancelledError, Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Optional

from .exceptions import OperationCancelled, TimedOut

logger = logging.getLogger(__name__)

# Granularity at which a blocked wait re-checks its cancellation token.
POLL_INTERVAL = 0.1


class Deadline:
    """Absolute point in time after which a wait gives up. ``None`` timeout waits forever."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._expires_at = None if timeout is None else time.monotonic() + timeout

    @classmethod
    def never(cls) -> "Deadline":
        return cls(None)

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0


class CancelToken:
    """Caller-owned cancellation signal shared with long-running waits."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


def wait_for(task: Future, deadline: Optional[Deadline] = None, cancel: Optional[CancelToken] = None,
             what: str = "operation") -> Any:
    """
    Block until an asynchronous store task completes.

    Args:
        task: Future returned by the store for the long-running call.
        deadline: When it elapses, the task is cancelled and TimedOut is raised.
        cancel: When it is set, the task is cancelled and OperationCancelled is raised.
        what: Description used in error messages.

    Returns:
        The task's result. Errors raised by the task propagate unchanged.
    """
    deadline = deadline or Deadline.never()
    while True:
        if cancel is not None and cancel.cancelled:
            task.cancel()
            raise OperationCancelled(f"{what} cancelled")
        if task.done():
            try:
                return task.result()
            except CancelledError as e:
                raise OperationCancelled(f"{what} was cancelled by the store") from e
        remaining = deadline.remaining()
        if remaining is not None and remaining <= 0.0:
            task.cancel()
            raise TimedOut(f"{what} did not complete within {deadline.timeout}s")

        step = POLL_INTERVAL if remaining is None else min(POLL_INTERVAL, remaining)
        try:
            return task.result(timeout=step)
        except FutureTimeoutError:
            continue
        except CancelledError as e:
            raise OperationCancelled(f"{what} was cancelled by the store") from e
