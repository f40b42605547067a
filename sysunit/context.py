"""
Cancellation tokens passed down to anything that may block on the service manager.
"""

from concurrent import futures
import logging
import threading
import time
from typing import Any, Optional

from .errors import Cancelled, DeadlineExceeded


LOG = logging.getLogger(__name__)


class Context:
    """
    A cancellable wait scope, optionally bounded by a deadline:

        ctx = Context(timeout=30)
        threading.Timer(5, ctx.cancel).start()
        status = ctx.wait(job.future)

    Cancellation only interrupts waiting.  Work already handed to the manager is not undone.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._lock = threading.Lock()
        self._done: "futures.Future[None]" = futures.Future()
        self._error: Optional[Cancelled] = None
        self.deadline = None if timeout is None else time.monotonic() + timeout

    def __repr__(self):
        if self._error:
            state = repr(self._error)
        elif self.deadline is not None:
            state = "{:.1f}s left".format(self.remaining())
        else:
            state = "open"
        return "<{}: {}>".format(self.__class__.__name__, state)

    @property
    def cancelled(self) -> bool:
        return self._done.done()

    @property
    def error(self) -> Optional[Cancelled]:
        """
        Reason for cancellation, or `None` if still open.
        """
        return self._error

    def cancel(self, error: Optional[Cancelled] = None) -> bool:
        """
        Cancel this context, waking anything waiting on it.  Returns `False` if already cancelled.
        """
        with self._lock:
            if self._done.done():
                return False
            self._error = error or Cancelled()
            self._done.set_result(None)
        LOG.debug("Context cancelled: %r", self._error)
        return True

    def remaining(self) -> Optional[float]:
        """
        Seconds until the deadline (never negative), or `None` without a deadline.
        """
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self) -> None:
        """
        Raise the cancellation error if cancelled or past the deadline.
        """
        if self.deadline is not None and not self.cancelled and self.remaining() == 0:
            self.cancel(DeadlineExceeded())
        if self._error:
            raise self._error

    def wait(self, future: "futures.Future[Any]") -> Any:
        """
        Block until the given future completes and return its result, or raise `Cancelled` as soon
        as this context is cancelled or its deadline passes, whichever happens first.
        """
        self.check()
        done, _ = futures.wait([future, self._done], timeout=self.remaining(),
                               return_when=futures.FIRST_COMPLETED)
        if future in done:
            return future.result()
        # Woken by cancellation, or timed out against the deadline.
        self.cancel(DeadlineExceeded())
        raise self._error
