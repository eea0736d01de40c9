"""Connection count limits and a token-bucket rate limiter."""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from typing import Callable


class ClientLimiter:
    """Counts live connections overall and per user."""

    def __init__(self, max_client: int, max_user_client: int) -> None:
        self.max_client = max_client
        self.max_user_client = max_user_client
        self._counts: defaultdict[str, int] = defaultdict(int)
        self._total = 0
        self._lock = threading.Lock()

    def acquire(self, user: str) -> bool:
        """Take a connection slot for ``user``; False when a limit is reached."""
        with self._lock:
            current = self._counts[user]
            if self._total >= self.max_client:
                return False
            if current >= self.max_user_client:
                return False
            self._counts[user] = current + 1
            self._total += 1
            return True

    def release(self, user: str) -> None:
        """Give back a connection slot held by ``user``."""
        with self._lock:
            self._counts[user] -= 1
            self._total -= 1

    def count(self, user: str) -> int:
        with self._lock:
            return self._counts.get(user, 0)

    @property
    def total(self) -> int:
        with self._lock:
            return self._total


class RateLimiter:
    """A token bucket: ``rate`` tokens per second, at most ``burst`` saved up."""

    def __init__(
        self,
        rate: float,
        burst: int,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.rate = rate
        self.burst = burst
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(burst)
        self._last = clock()
        self._lock = threading.Lock()

    def _reserve(self, amount: int) -> float:
        with self._lock:
            if self.rate <= 0:
                if self.burst < amount:
                    raise ValueError(f"rate: wait(n={amount}) can never be satisfied")
                self.burst -= amount
                return 0.0
            now = self._clock()
            elapsed = max(0.0, now - self._last)
            self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
            self._last = now
            self._tokens -= amount
            return -self._tokens / self.rate if self._tokens < 0 else 0.0

    def wait(self, amount: int) -> None:
        """Block until ``amount`` tokens are available; ``amount`` may not exceed the burst."""
        if amount > self.burst:
            raise ValueError(f"rate: wait(n={amount}) exceeds limiter's burst {self.burst}")
        delay = self._reserve(amount)
        if delay > 0:
            self._sleep(delay)