import threading

import pytest

from planetkit.retry import (
    ContinueRetry,
    ExponentialBackOff,
    PermanentError,
    new_unlimited_exponential_backoff,
    retry,
    retry_with_interval,
)


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class _Intervals:
    def __init__(self, delays):
        self.delays = list(delays)
        self.resets = 0

    def reset(self):
        self.resets += 1

    def next_backoff(self):
        return self.delays.pop(0) if self.delays else None


def _failing(failures, result="done", exc=ValueError):
    calls = []

    def fn():
        calls.append(1)
        if len(calls) <= failures:
            raise exc(f"failure {len(calls)}")
        return result

    return fn, calls


def test_retry_succeeds_after_failures():
    fn, calls = _failing(2)
    assert retry(fn, 5, 0) == "done"
    assert len(calls) == 3


def test_retry_raises_last_error_when_exhausted():
    fn, calls = _failing(10)
    with pytest.raises(ValueError, match="failure 4"):
        retry(fn, 4, 0)
    assert len(calls) == 4


def test_retry_stops_when_cancelled():
    cancel = threading.Event()
    cancel.set()
    fn, calls = _failing(10)
    with pytest.raises(ValueError, match="failure 1"):
        retry(fn, 5, 10, cancel)
    assert len(calls) == 1


def test_retry_zero_times_never_calls():
    fn, calls = _failing(0)
    assert retry(fn, 0, 0) is None
    assert calls == []


def test_retry_with_interval_succeeds_and_resets():
    intervals = _Intervals([0, 0, 0])
    fn, calls = _failing(2, result=42)
    assert retry_with_interval(fn, intervals) == 42
    assert len(calls) == 3
    assert intervals.resets == 1


def test_retry_with_interval_permanent_error_is_unwrapped():
    inner = KeyError("gone")
    calls = []

    def fn():
        calls.append(1)
        raise PermanentError(inner)

    with pytest.raises(KeyError) as info:
        retry_with_interval(fn, _Intervals([0, 0]))
    assert info.value is inner
    assert len(calls) == 1


def test_retry_with_interval_raises_when_interval_stops():
    fn, calls = _failing(10)
    with pytest.raises(ValueError, match="failure 3"):
        retry_with_interval(fn, _Intervals([0, 0]))
    assert len(calls) == 3


def test_continue_retry_is_retried():
    fn, calls = _failing(1, exc=ContinueRetry)
    assert retry_with_interval(fn, _Intervals([0])) == "done"
    assert len(calls) == 2


def test_retry_with_interval_stops_when_cancelled():
    cancel = threading.Event()
    cancel.set()
    fn, calls = _failing(10)
    with pytest.raises(ValueError, match="failure 1"):
        retry_with_interval(fn, _Intervals([5, 5]), cancel)
    assert len(calls) == 1


def test_exponential_backoff_without_randomization_grows_to_cap():
    backoff = ExponentialBackOff(
        initial_interval=1.0, randomization_factor=0, multiplier=2.0, max_interval=5.0,
        max_elapsed_time=0,
    )
    values = [backoff.next_backoff() for _ in range(8)]
    assert values[0] == 1.0
    assert values == sorted(values)
    assert max(values) == 5.0


def test_exponential_backoff_randomized_within_bounds():
    backoff = ExponentialBackOff(initial_interval=2.0, randomization_factor=0.5, multiplier=1.0)
    for _ in range(50):
        assert 1.0 <= backoff.next_backoff() <= 3.0


def test_exponential_backoff_stops_after_max_elapsed_and_reset_restarts():
    clock = _Clock()
    backoff = ExponentialBackOff(
        initial_interval=1.0, randomization_factor=0, max_elapsed_time=10.0, clock=clock
    )
    backoff.next_backoff()
    backoff.next_backoff()
    clock.now = 11.0
    assert backoff.next_backoff() is None
    backoff.reset()
    assert backoff.next_backoff() == 1.0


def test_unlimited_backoff_never_stops():
    clock = _Clock()
    backoff = new_unlimited_exponential_backoff(7.0)
    assert backoff.max_elapsed_time == 0
    assert backoff.max_interval == 7.0
    backoff._clock = clock
    backoff.reset()
    clock.now = 10**9
    value = backoff.next_backoff()
    assert value is not None and value > 0