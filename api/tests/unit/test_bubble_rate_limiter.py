from __future__ import annotations

import threading

import pytest

from opsapp.infrastructure.external.bubble_migration.rate_limiter import RequestRateLimiter


class _FakeClock:
    """Reloj manual: sleep() avanza el tiempo en lugar de dormir."""

    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> _FakeClock:
    return _FakeClock()


def test_first_request_does_not_wait(clock) -> None:
    limiter = RequestRateLimiter(0.5, clock=clock, sleep=clock.sleep)
    assert limiter.wait() == 0.0
    assert clock.sleeps == []


def test_back_to_back_requests_wait_out_the_remainder(clock) -> None:
    limiter = RequestRateLimiter(0.5, clock=clock, sleep=clock.sleep)
    limiter.wait()
    clock.now += 0.2

    waited = limiter.wait()

    assert waited == pytest.approx(0.3)
    assert clock.sleeps == [pytest.approx(0.3)]


def test_no_wait_after_interval_elapsed(clock) -> None:
    limiter = RequestRateLimiter(0.5, clock=clock, sleep=clock.sleep)
    limiter.wait()
    clock.now += 2.0
    assert limiter.wait() == 0.0


def test_consecutive_requests_are_spaced_by_min_interval(clock) -> None:
    limiter = RequestRateLimiter(0.5, clock=clock, sleep=clock.sleep)
    stamps = []
    for _ in range(4):
        limiter.wait()
        stamps.append(clock.now)
    gaps = [b - a for a, b in zip(stamps, stamps[1:])]
    assert all(g == pytest.approx(0.5) for g in gaps)


def test_negative_interval_rejected() -> None:
    with pytest.raises(ValueError):
        RequestRateLimiter(-1)


def test_concurrent_callers_are_serialized(clock) -> None:
    """Con el lock, N threads generan N-1 esperas de un intervalo completo."""
    limiter = RequestRateLimiter(0.5, clock=clock, sleep=clock.sleep)
    threads = [threading.Thread(target=limiter.wait) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(clock.sleeps) == 4
    assert sum(clock.sleeps) == pytest.approx(2.0)
