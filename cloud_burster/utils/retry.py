from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

from loguru import logger

from ..errors import OperationCancelled, PollExhausted
from .context import RunContext

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Number of attempts and fixed delay between them for one call site"""
    tries: int
    delay: float


class NotReady(Exception):
    """Raised by a polled function when the resource exists but is not in the wanted state yet"""

    def __init__(self, message: str, value: Any = None):
        super().__init__(message)
        self.value = value


def try_do(
    fn: Callable[[], T],
    tries: int,
    delay: float,
    ctx: Optional[RunContext] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
) -> T:
    """
    Call `fn` until it succeeds, at most `tries` times, waiting `delay`
    seconds between attempts.

    Raises:
        PollExhausted: every attempt failed (chained from the last error).
            `last_result` holds the value of the last NotReady, if any.
        OperationCancelled: the context was cancelled while polling
    """
    log = ctx.log if ctx is not None else logger
    last_error: Optional[BaseException] = None
    last_result: Any = None
    attempts = 0

    for attempt in range(tries):
        if ctx is not None:
            ctx.check()
        attempts = attempt + 1
        try:
            return fn()
        except OperationCancelled:
            raise
        except retry_on as e:
            last_error = e
            if isinstance(e, NotReady):
                last_result = e.value
            log.debug(f"attempt {attempts}/{tries} failed: {e}")

        if attempts < tries:
            if ctx is None:
                ctx = RunContext.background()
            if ctx.wait(delay):
                ctx.check()

    raise PollExhausted(attempts, last_error, last_result) from last_error
