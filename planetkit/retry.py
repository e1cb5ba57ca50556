"""Retry helpers with fixed and exponential back-off."""

from __future__ import annotations

import logging
import random as _random
import threading
import time
from typing import Any, Callable, Optional, Protocol, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")


class PermanentError(Exception):
    """Wraps an error that must not be retried."""

    def __init__(self, err: BaseException):
        super().__init__(str(err))
        self.err = err


class ContinueRetry(Exception):
    """Signals that a retry loop should run again with the given message."""


class BackOff(Protocol):
    def next_backoff(self) -> Optional[float]: ...

    def reset(self) -> None: ...


class ExponentialBackOff:
    """Exponentially growing, randomized retry intervals, in seconds.

    ``next_backoff`` returns ``None`` once the time since the last reset exceeds
    ``max_elapsed_time``; a ``max_elapsed_time`` of zero never stops.
    """

    def __init__(
        self,
        initial_interval: float = 0.5,
        randomization_factor: float = 0.5,
        multiplier: float = 1.5,
        max_interval: float = 60.0,
        max_elapsed_time: float = 15 * 60.0,
        clock: Callable[[], float] = time.monotonic,
        random: Callable[[], float] = _random.random,
    ):
        self.initial_interval = initial_interval
        self.randomization_factor = randomization_factor
        self.multiplier = multiplier
        self.max_interval = max_interval
        self.max_elapsed_time = max_elapsed_time
        self._clock = clock
        self._random = random
        self.reset()

    def reset(self) -> None:
        self.current_interval = self.initial_interval
        self._start = self._clock()

    @property
    def elapsed_time(self) -> float:
        return self._clock() - self._start

    def next_backoff(self) -> Optional[float]:
        if self.max_elapsed_time != 0 and self.elapsed_time > self.max_elapsed_time:
            return None
        interval = self.current_interval
        delta = self.randomization_factor * interval
        low, high = interval - delta, interval + delta
        value = low + self._random() * (high - low)
        if self.current_interval >= self.max_interval / self.multiplier:
            self.current_interval = self.max_interval
        else:
            self.current_interval *= self.multiplier
        return value


def _wait(delay: float, cancel: Optional[threading.Event]) -> bool:
    """Wait for ``delay`` seconds; return True if cancelled meanwhile."""
    if cancel is None:
        time.sleep(delay)
        return False
    return cancel.wait(delay)


def retry(
    fn: Callable[[], T],
    times: int,
    period: float,
    cancel: Optional[threading.Event] = None,
) -> Optional[T]:
    """Call ``fn`` up to ``times`` times, ``period`` seconds apart.

    Returns the first successful result. Raises the last error once the
    attempts are exhausted or ``cancel`` is set.
    """
    last_error: Optional[Exception] = None
    for attempt in range(1, times + 1):
        try:
            return fn()
        except Exception as err:  # noqa: BLE001 - retrying any failure
            last_error = err
        log.debug("Attempt %s, result: %s, retry in %ss", attempt, last_error, period)
        if _wait(period, cancel):
            log.debug("Cancelled, returning.")
            raise last_error
    if last_error is not None:
        raise last_error
    return None


def retry_with_interval(
    fn: Callable[[], T],
    interval: BackOff,
    cancel: Optional[threading.Event] = None,
) -> T:
    """Call ``fn`` until it succeeds, waiting as ``interval`` prescribes.

    A ``PermanentError`` stops retrying and its wrapped error is raised.
    When the interval is exhausted or ``cancel`` is set, the last error is raised.
    """
    interval.reset()
    while True:
        try:
            return fn()
        except PermanentError as err:
            log.warning("All attempts failed: %s", err.err)
            raise err.err from None
        except Exception as err:  # noqa: BLE001 - retrying any failure
            last_error: Exception = err
        delay = None if cancel is not None and cancel.is_set() else interval.next_backoff()
        if delay is None:
            log.warning("All attempts failed: %s", last_error)
            raise last_error
        log.debug("Retrying: %s (time %ss).", last_error, delay)
        if _wait(delay, cancel):
            log.warning("All attempts failed: %s", last_error)
            raise last_error


def new_unlimited_exponential_backoff(max_interval: Optional[float] = None) -> ExponentialBackOff:
    """Return an exponential back-off without a time limit."""
    backoff = ExponentialBackOff(max_elapsed_time=0)
    if max_interval is not None:
        backoff.max_interval = max_interval
    return backoff


__all__: list[Any] = [
    "PermanentError",
    "ContinueRetry",
    "ExponentialBackOff",
    "retry",
    "retry_with_interval",
    "new_unlimited_exponential_backoff",
]