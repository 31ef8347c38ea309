"""Per-client token buckets."""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable


@dataclass
class _Bucket:
    tokens: float
    updated: float


class RateLimiter:
    """Token bucket per key: ``rpm`` requests per minute, burst ``rpm``.

    Tokens refill continuously. Buckets idle for longer than ``idle_ttl``
    seconds are evicted by :meth:`cleanup`.
    """

    def __init__(self, rpm: int, idle_ttl: float = 300.0, clock: Callable[[], float] = time.monotonic):
        if rpm < 1:
            raise ValueError("rpm must be at least 1")
        self.capacity = float(rpm)
        self.rate = rpm / 60.0
        self.idle_ttl = idle_ttl
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._lock = threading.Lock()

    def _refill(self, bucket: _Bucket, now: float) -> None:
        bucket.tokens = min(self.capacity, bucket.tokens + (now - bucket.updated) * self.rate)
        bucket.updated = now

    def allow(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = self._buckets[key] = _Bucket(tokens=self.capacity, updated=now)
            else:
                self._refill(bucket, now)
            if bucket.tokens >= 1:
                bucket.tokens -= 1
                return True
            return False

    def retry_after(self, key: str) -> int:
        """Whole seconds until ``key`` has a token again (at least 1)."""
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                return 1
            self._refill(bucket, now)
            missing = max(0.0, 1 - bucket.tokens)
        return max(1, math.ceil(missing / self.rate))

    def cleanup(self) -> int:
        """Drop idle buckets; return how many were removed."""
        now = self._clock()
        with self._lock:
            stale = [key for key, bucket in self._buckets.items() if now - bucket.updated > self.idle_ttl]
            for key in stale:
                del self._buckets[key]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)
