"""
Access Control State

Process-local, injectable state used while resolving the caller's identity:
a bounded TTL cache of parsed principals and a sliding-window attempt
limiter. Both take a clock so they can be tested deterministically, and
both are plain objects held by the application rather than module globals.
"""

import logging
import threading
import time
from collections import OrderedDict, deque
from typing import Callable, Deque, Generic, Hashable, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")

Clock = Callable[[], float]


class TTLCache(Generic[V]):
    """
    Bounded map whose entries expire `ttl_seconds` after they were written.

    When full, the least recently written entry is evicted.
    """

    def __init__(self, ttl_seconds: float, max_entries: int = 1024, clock: Clock = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[Hashable, Tuple[float, V]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: Hashable, value: V) -> None:
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = (self._clock() + self.ttl_seconds, value)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted cached principal for {evicted!r}")

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class AttemptLimiter:
    """
    Allows at most `limit` attempts per key inside a sliding window.

    Only keys with attempts still inside the window are tracked. When more
    than `max_keys` keys are tracked, the one whose first attempt is oldest
    is dropped.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        max_keys: int = 4096,
        clock: Clock = time.monotonic,
    ):
        if max_keys <= 0:
            raise ValueError("max_keys must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self.max_keys = max_keys
        self._clock = clock
        self._attempts: "OrderedDict[Hashable, Deque[float]]" = OrderedDict()
        self._lock = threading.Lock()

    def _prune(self, key: Hashable, now: float) -> Deque[float]:
        attempts = self._attempts.get(key)
        if attempts is None:
            return deque()
        cutoff = now - self.window_seconds
        while attempts and attempts[0] <= cutoff:
            attempts.popleft()
        if not attempts:
            del self._attempts[key]
        return attempts

    def is_blocked(self, key: Hashable) -> bool:
        with self._lock:
            return len(self._prune(key, self._clock())) >= self.limit

    def hit(self, key: Hashable) -> bool:
        """
        Record an attempt.

        Returns:
            False when the key already used up its window
        """
        with self._lock:
            now = self._clock()
            attempts = self._prune(key, now)
            if len(attempts) >= self.limit:
                logger.warning(f"Attempt limit reached for {key!r}")
                return False
            attempts.append(now)
            if key not in self._attempts:
                self._attempts[key] = attempts
                while len(self._attempts) > self.max_keys:
                    evicted, _ = self._attempts.popitem(last=False)
                    logger.debug(f"Stopped tracking attempts for {evicted!r}")
            return True

    def reset(self, key: Hashable) -> None:
        with self._lock:
            self._attempts.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._attempts)
