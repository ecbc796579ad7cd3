# @TEST tests/test_rate_limit.py

"""Per-user search rate limiting.

Uses the ``limits`` moving-window strategy over in-process memory, so
counters are per worker and reset on restart.
"""

from __future__ import annotations

import math
import time

from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter


class SearchRateLimiter:
    """Moving-window limiter keyed by an arbitrary string (``user:<id>``).

    Args:
        rate: Rate expression such as ``"30/minute"``.
    """

    def __init__(self, rate: str) -> None:
        self.rate = rate
        self._item = parse(rate)
        self._storage = MemoryStorage()
        self._limiter = MovingWindowRateLimiter(self._storage)

    def hit(self, key: str) -> bool:
        """Record one request for *key*; return False when the limit is already used up."""
        return self._limiter.hit(self._item, key)

    def remaining(self, key: str) -> int:
        return self._limiter.get_window_stats(self._item, key).remaining

    def retry_after(self, key: str) -> int:
        """Seconds until *key* regains a request slot (at least 1)."""
        reset_time = self._limiter.get_window_stats(self._item, key).reset_time
        return max(1, math.ceil(reset_time - time.time()))

    def reset(self) -> None:
        self._storage.reset()
