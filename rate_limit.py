"""
Rate limiting primitives.

Nothing here is a module-level singleton: the service builds these and
passes them to whatever needs them.
"""

import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Hashable, Iterator, NamedTuple


class RateDecision(NamedTuple):
    allowed: bool
    remaining: int
    reset_in: float  # seconds until the window resets


class RequestRateLimiter:
    """
    Fixed-window request counter per key (usually a user id).

    The counter map sits behind a lock so one instance can be shared by
    every request handler in the process.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[Hashable, tuple[int, float]] = {}
        self._next_purge = clock() + window_seconds

    def hit(self, key: Hashable) -> RateDecision:
        """
        Count one request for ``key`` and say whether it may proceed.

        Expired windows are dropped at most once per window length, so the
        map only holds keys seen recently.
        """
        now = self._clock()
        if now >= self._next_purge:
            self.purge()
        with self._lock:
            count, reset_at = self._windows.get(key, (0, 0.0))
            if now >= reset_at:
                count, reset_at = 0, now + self.window_seconds

            if count >= self.max_requests:
                return RateDecision(False, 0, reset_at - now)

            count += 1
            self._windows[key] = (count, reset_at)
            return RateDecision(True, self.max_requests - count, reset_at - now)

    def purge(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            self._next_purge = now + self.window_seconds
            expired = [key for key, (_, reset_at) in self._windows.items() if now >= reset_at]
            for key in expired:
                del self._windows[key]
        return len(expired)


class _Entry:
    """A lock or semaphore plus the number of threads holding or waiting on it."""

    def __init__(self, primitive):
        self.primitive = primitive
        self.users = 0


@contextmanager
def _hold(
    registry_lock: threading.Lock,
    entries: dict,
    key: Hashable,
    factory: Callable[[], Any],
) -> Iterator[None]:
    # Entries are dropped once nobody holds or waits on them, so the
    # registry only grows with concurrent keys.
    with registry_lock:
        entry = entries.get(key)
        if entry is None:
            entry = entries[key] = _Entry(factory())
        entry.users += 1
    try:
        with entry.primitive:
            yield
    finally:
        with registry_lock:
            entry.users -= 1
            if entry.users == 0 and entries.get(key) is entry:
                del entries[key]


class TokenBudget:
    """
    Caps in-flight GitHub requests per access token.

    GitHub's quota is per token, so every client built for the same token
    shares one semaphore while any request on it is in flight.
    """

    def __init__(self, max_concurrent: int = 4):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self._lock = threading.Lock()
        self._slots: dict[str, _Entry] = {}

    def acquire(self, token: str):
        """Context manager holding one of the token's request slots."""
        return _hold(
            self._lock,
            self._slots,
            token,
            lambda: threading.BoundedSemaphore(self.max_concurrent),
        )

    def release_token(self, token: str) -> None:
        """Forget a token (e.g. after the user disconnects)."""
        with self._lock:
            self._slots.pop(token, None)


class KeyedLock:
    """One lock per key, created on demand and dropped when idle."""

    def __init__(self):
        self._lock = threading.Lock()
        self._locks: dict[Hashable, _Entry] = {}

    def hold(self, key: Hashable):
        return _hold(self._lock, self._locks, key, threading.Lock)
