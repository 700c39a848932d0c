import threading
import time
from dataclasses import dataclass


@dataclass
class RateDecision:
    allowed: bool
    count: int
    limit: int
    retry_after: int


class UploadRateLimiter:
    """Fixed-window counter per caller.

    Counts are eventually accurate; stale windows are evicted at most once per
    window length.
    """

    def __init__(self, limit: int, window_seconds: int, clock=time.monotonic):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, tuple[float, int]] = {}  # key -> (window_start, count)
        self._last_sweep = clock()

    def _evict_stale(self, now: float):
        if now - self._last_sweep < self.window_seconds:
            return
        self._windows = {
            k: (start, count) for k, (start, count) in self._windows.items()
            if now - start < self.window_seconds
        }
        self._last_sweep = now

    def hit(self, key: str) -> RateDecision:
        with self._lock:
            now = self._clock()
            self._evict_stale(now)
            start, count = self._windows.get(key, (now, 0))
            if now - start >= self.window_seconds:
                start, count = now, 0
            count += 1
            self._windows[key] = (start, count)
        retry_after = max(0, int(start + self.window_seconds - now) + 1)
        return RateDecision(allowed=count <= self.limit, count=count, limit=self.limit, retry_after=retry_after)

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._windows)

    def reset(self):
        with self._lock:
            self._windows.clear()
