"""
Retry policy for the sync loop.

The loop never skips a height. On failure it asks the policy whether to
retry the same height (and after how long) or to halt.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from .errors import CursorError, DataShapeError, SigningError, SubmissionRejectedError


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    DATA_SHAPE = "data_shape"
    FATAL = "fatal"


def classify_error(error: BaseException) -> ErrorKind:
    """
    Map an exception raised while relaying a block to an ErrorKind.

    Key problems, cursor corruption and permanent rejections by the handler
    service cannot be fixed by retrying. Data-shape violations are retried
    since a lagging or inconsistent node may serve a bad view temporarily.
    Anything unrecognised (including httpx errors) is treated as transient.
    """
    if isinstance(error, (SigningError, CursorError)):
        return ErrorKind.FATAL
    if isinstance(error, SubmissionRejectedError) and not error.retryable:
        return ErrorKind.FATAL
    if isinstance(error, DataShapeError):
        return ErrorKind.DATA_SHAPE
    return ErrorKind.TRANSIENT


@dataclass(frozen=True)
class RetryDecision:
    halt: bool
    delay: float
    kind: ErrorKind


class RetryPolicy(Protocol):
    def decide(self, error: BaseException, attempt: int) -> RetryDecision:
        """`attempt` counts consecutive failures at the current height, from 1."""
        ...


@dataclass
class BackoffRetryPolicy:
    """
    Exponential backoff, halting on fatal errors.

    multiplier=1 with max_attempts=None gives a fixed-interval loop that
    never gives up.
    """

    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    max_attempts: Optional[int] = None

    def delay_for(self, attempt: int) -> float:
        # Grow step by step and stop at the cap; multiplier ** attempt
        # overflows a float after ~1000 attempts.
        delay = self.base_delay
        for _ in range(min(attempt - 1, 64)):
            if delay >= self.max_delay:
                break
            delay *= self.multiplier
        return min(delay, self.max_delay)

    def decide(self, error: BaseException, attempt: int) -> RetryDecision:
        kind = classify_error(error)
        if kind is ErrorKind.FATAL:
            return RetryDecision(halt=True, delay=0.0, kind=kind)
        if self.max_attempts is not None and attempt >= self.max_attempts:
            return RetryDecision(halt=True, delay=0.0, kind=kind)
        return RetryDecision(halt=False, delay=self.delay_for(attempt), kind=kind)
