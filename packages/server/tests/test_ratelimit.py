"""Tests for the per-client token bucket limiter."""

import pytest

from prcli_server.ratelimit import RateLimiter


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def test_rpm_must_be_positive():
    with pytest.raises(ValueError):
        RateLimiter(0)


def test_burst_up_to_capacity(clock):
    limiter = RateLimiter(3, clock=clock)
    assert [limiter.allow("1.2.3.4") for _ in range(4)] == [True, True, True, False]


def test_keys_are_independent(clock):
    limiter = RateLimiter(1, clock=clock)
    assert limiter.allow("a")
    assert not limiter.allow("a")
    assert limiter.allow("b")


def test_tokens_refill_over_time(clock):
    limiter = RateLimiter(60, clock=clock)
    for _ in range(60):
        limiter.allow("a")
    assert not limiter.allow("a")
    clock.advance(1)
    assert limiter.allow("a")
    assert not limiter.allow("a")


def test_refill_is_capped(clock):
    limiter = RateLimiter(2, clock=clock)
    limiter.allow("a")
    clock.advance(3600)
    assert [limiter.allow("a") for _ in range(3)] == [True, True, False]


def test_retry_after(clock):
    limiter = RateLimiter(6, clock=clock)  # one token every 10s
    for _ in range(6):
        limiter.allow("a")
    assert limiter.retry_after("a") == 10
    clock.advance(4)
    assert limiter.retry_after("a") == 6


def test_retry_after_unknown_key(clock):
    assert RateLimiter(10, clock=clock).retry_after("new") == 1


def test_cleanup_drops_idle_buckets(clock):
    limiter = RateLimiter(10, idle_ttl=60, clock=clock)
    limiter.allow("old")
    clock.advance(61)
    limiter.allow("fresh")
    assert limiter.cleanup() == 1
    assert len(limiter) == 1
