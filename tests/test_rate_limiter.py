# tests/test_rate_limiter.py
import threading

import pytest

from core.rate_limiter import InMemoryRateLimitStore, RateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_admits_up_to_max_then_denies():
    limiter = RateLimiter(clock=FakeClock())
    decisions = [limiter.check("1.2.3.4") for _ in range(21)]

    assert all(d.allowed for d in decisions[:20])
    assert decisions[19].remaining == 0
    assert decisions[20].allowed is False
    assert decisions[20].retry_after_s == 60


def test_window_resets_after_expiry():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock, window_s=60, max_requests=2)
    assert limiter.check("a").allowed
    assert limiter.check("a").allowed
    assert not limiter.check("a").allowed

    clock.now += 59.9
    assert not limiter.check("a").allowed

    clock.now += 0.1
    decision = limiter.check("a")
    assert decision.allowed
    assert decision.remaining == 1


def test_keys_are_independent():
    limiter = RateLimiter(clock=FakeClock(), max_requests=1)
    assert limiter.check("a").allowed
    assert not limiter.check("a").allowed
    assert limiter.check("b").allowed


def test_concurrent_checks_admit_exactly_max():
    limiter = RateLimiter(max_requests=20)
    results = []
    lock = threading.Lock()

    def worker():
        for _ in range(10):
            allowed = limiter.check("shared").allowed
            with lock:
                results.append(allowed)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 80
    assert sum(results) == 20


def test_purge_expired_drops_only_stale_windows():
    clock = FakeClock()
    store = InMemoryRateLimitStore()
    limiter = RateLimiter(store=store, clock=clock, window_s=10)
    limiter.check("old")
    clock.now += 5
    limiter.check("new")
    clock.now += 5

    assert limiter.purge_expired() == 1
    assert store.get("old") is None
    assert store.get("new") is not None


def test_full_store_purges_before_admitting_new_key():
    clock = FakeClock()
    store = InMemoryRateLimitStore()
    limiter = RateLimiter(store=store, clock=clock, window_s=10, max_keys=2)
    limiter.check("a")
    limiter.check("b")
    clock.now += 10

    assert limiter.check("c").allowed
    assert len(store) == 1


def test_full_store_evicts_oldest_live_window():
    clock = FakeClock()
    store = InMemoryRateLimitStore()
    limiter = RateLimiter(store=store, clock=clock, window_s=10, max_keys=2)
    limiter.check("a")
    clock.now += 1
    limiter.check("b")
    clock.now += 1

    assert limiter.check("c").allowed
    assert len(store) == 2
    assert store.get("a") is None
    assert store.get("b") is not None

    for key in ("d", "e", "f"):
        limiter.check(key)
    assert len(store) == 2


def test_empty_key_is_treated_as_unknown():
    limiter = RateLimiter(clock=FakeClock(), max_requests=1)
    assert limiter.check("").allowed
    assert not limiter.check("unknown").allowed


@pytest.mark.parametrize("kwargs", [{"window_s": 0}, {"max_requests": 0}])
def test_rejects_non_positive_limits(kwargs):
    with pytest.raises(ValueError):
        RateLimiter(**kwargs)
