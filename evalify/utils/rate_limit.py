"""In-memory rate limiting for the login and quiz-start endpoints."""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque

from fastapi import HTTPException


class InMemoryRateLimiter:
    """Sliding-window limiter per key (usually `action:client_ip`)."""

    def __init__(self, window_seconds: int = 60):
        self.window_seconds = window_seconds
        self._hits = defaultdict(deque)
        self._lock = threading.Lock()

    def allow(self, key: str, max_requests: int) -> tuple[bool, int]:
        """Record a hit for `key`; return `(allowed, retry_after_seconds)`."""
        now = time.monotonic()
        with self._lock:
            q = self._hits[key]
            cutoff = now - self.window_seconds
            while q and q[0] < cutoff:
                q.popleft()
            if len(q) >= max_requests:
                return False, max(1, int(self.window_seconds - (now - q[0])))
            q.append(now)
        return True, 0

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()

    def enforce(self, key: str, max_requests: int) -> None:
        """Raise a 429 `HTTPException` with `Retry-After` once `key` is over its limit."""
        if max_requests <= 0:
            return
        allowed, retry_after = self.allow(key, max_requests)
        if not allowed:
            raise HTTPException(
                status_code=429,
                detail='Too many requests, please retry later',
                headers={'Retry-After': str(retry_after)},
            )


limiter = InMemoryRateLimiter()
