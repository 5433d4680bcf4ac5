"""
Run Context

Carries the cancellation signal, the optional deadline and the bound logger
of one command invocation into every task and backend call.
"""

import threading
import time
from typing import Any, Optional

from loguru import logger

from ..errors import OperationCancelled


class RunContext:
    """
    Cancellation/deadline token shared by all tasks of a command.

    Child contexts created with `bind()` share the same cancellation event and
    deadline but log with extra context (e.g. the hostname being processed).
    """

    def __init__(
        self,
        deadline: Optional[float] = None,
        log: Any = None,
        _event: Optional[threading.Event] = None,
    ):
        self.deadline = deadline
        self.log = log if log is not None else logger
        self._event = _event if _event is not None else threading.Event()

    @classmethod
    def background(cls) -> "RunContext":
        """Context that is never cancelled unless asked to"""
        return cls()

    @classmethod
    def with_timeout(cls, seconds: Optional[float]) -> "RunContext":
        if seconds is None:
            return cls()
        return cls(deadline=time.monotonic() + seconds)

    def bind(self, **extra: Any) -> "RunContext":
        return RunContext(deadline=self.deadline, log=self.log.bind(**extra), _event=self._event)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, None when there is none"""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("operation cancelled")
        if self.cancelled:
            raise OperationCancelled("deadline exceeded")

    def wait(self, seconds: float) -> bool:
        """
        Sleep for `seconds`, waking up early on cancellation.

        Returns:
            True if the context was cancelled (or the deadline reached)
        """
        timeout = seconds
        remaining = self.remaining()
        if remaining is not None:
            timeout = min(timeout, remaining)
        if timeout > 0:
            self._event.wait(timeout)
        return self.cancelled
