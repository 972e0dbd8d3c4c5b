"""Fixed-window rate limiting for the auth endpoints."""

import asyncio
import math
import time
from typing import Dict, Tuple

from fastapi import Request

from gateway.errors import RateLimitError


class RateLimiter:
    """Allows ``limit`` hits per client key within each ``window`` seconds."""

    def __init__(self, limit: int, window: float = 60.0):
        self.limit = limit
        self.window = window
        self._hits: Dict[str, Tuple[float, int]] = {}
        self._last_sweep = time.monotonic()
        self._lock = asyncio.Lock()

    def tracked_keys(self) -> int:
        return len(self._hits)

    async def hit(self, key: str) -> None:
        """Record a hit, raising ``RateLimitError`` once the window is full."""
        now = time.monotonic()
        async with self._lock:
            if now - self._last_sweep >= self.window:
                self._sweep(now)
            started, count = self._hits.get(key, (now, 0))
            if now - started >= self.window:
                started, count = now, 0
            if count >= self.limit:
                retry_after = max(1, math.ceil(self.window - (now - started)))
                raise RateLimitError(retry_after)
            self._hits[key] = (started, count + 1)

    def _sweep(self, now: float) -> None:
        # Runs at most once per window
        self._hits = {k: v for k, v in self._hits.items() if now - v[0] < self.window}
        self._last_sweep = now

    def reset(self) -> None:
        self._hits.clear()


def client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
