"""
CarePath Triage – Rate Limiter
===============================
Fixed-window admission control for calls to the generation provider.

Each client key owns a ``{count, reset_at}`` window in an injected store. A
call is admitted while ``count < max_requests``; the window restarts once
``now >= reset_at``. State is mutated under a ``threading.Lock`` so the
limiter is safe from the event loop and from threadpool endpoints alike.
The store holds at most ``max_keys`` windows: expired ones are purged first,
then the window nearest its reset is evicted.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_S = 60
DEFAULT_MAX_REQUESTS = 20
DEFAULT_MAX_KEYS = 10_000


@dataclass
class RateWindow:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    remaining: int
    retry_after_s: int = 0


class InMemoryRateLimitStore:
    """Per-process store. Swap for a shared store when running several workers."""

    def __init__(self):
        self._windows: Dict[str, RateWindow] = {}

    def get(self, key: str) -> Optional[RateWindow]:
        return self._windows.get(key)

    def set(self, key: str, window: RateWindow):
        self._windows[key] = window

    def purge(self, now: float) -> int:
        """Drop expired windows; returns how many were removed."""
        expired = [k for k, w in self._windows.items() if now >= w.reset_at]
        for k in expired:
            del self._windows[k]
        return len(expired)

    def evict_oldest(self) -> Optional[str]:
        """Drop the window closest to expiry; returns its key."""
        if not self._windows:
            return None
        key = min(self._windows, key=lambda k: self._windows[k].reset_at)
        del self._windows[key]
        return key

    def __len__(self) -> int:
        return len(self._windows)


class RateLimiter:
    """Fixed-window rate limiter keyed by client."""

    def __init__(
        self,
        store: Optional[InMemoryRateLimitStore] = None,
        window_s: int = DEFAULT_WINDOW_S,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        clock: Callable[[], float] = time.monotonic,
        max_keys: int = DEFAULT_MAX_KEYS,
    ):
        if window_s <= 0 or max_requests <= 0:
            raise ValueError("window_s and max_requests must be positive")
        self.store = store if store is not None else InMemoryRateLimitStore()
        self.window_s = window_s
        self.max_requests = max_requests
        self.max_keys = max_keys
        self._clock = clock
        self._lock = threading.Lock()

    def check(self, client_key: str) -> RateDecision:
        """Admit or deny one call for ``client_key``, consuming quota when admitted."""
        key = client_key or "unknown"
        with self._lock:
            now = self._clock()
            window = self.store.get(key)

            if window is None and len(self.store) >= self.max_keys:
                self.store.purge(now)
                if len(self.store) >= self.max_keys:
                    evicted = self.store.evict_oldest()
                    logger.warning("Rate limit store full; evicted client key %s", evicted)

            if window is None or now >= window.reset_at:
                self.store.set(key, RateWindow(count=1, reset_at=now + self.window_s))
                return RateDecision(allowed=True, remaining=self.max_requests - 1)

            if window.count >= self.max_requests:
                logger.info("Rate limit exceeded for client key %s", key)
                return RateDecision(allowed=False, remaining=0, retry_after_s=self.window_s)

            window.count += 1
            return RateDecision(allowed=True, remaining=self.max_requests - window.count)

    def purge_expired(self) -> int:
        with self._lock:
            return self.store.purge(self._clock())
