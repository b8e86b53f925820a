import time
from collections import defaultdict
from typing import Dict, List

from fastapi import HTTPException
from starlette.requests import Request


class SimpleRateLimiter:
    """Sliding-window rate limiter; in-memory (per process). Caps requests per client IP.
    Why available: Reel extraction is expensive (download + three model calls), so one client cannot flood the admission queue."""

    def __init__(self, max_requests: int, window_seconds: int):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.storage: Dict[str, List[float]] = defaultdict(list)  # ip -> [timestamps]

    def check(self, request: Request) -> None:
        """Raise 429 if the client has exceeded the rate limit; otherwise record the request."""
        now = time.time()
        ip = request.client.host if request.client else "unknown"

        # Remove expired timestamps
        recent = [t for t in self.storage[ip] if now - t < self.window_seconds]

        if len(recent) >= self.max_requests:
            self.storage[ip] = recent
            retry_after = max(1, int(self.window_seconds - (now - recent[0])))
            raise HTTPException(
                status_code=429,
                detail="Rate limit exceeded. Please retry later.",
                headers={"Retry-After": str(retry_after)},
            )

        recent.append(now)
        self.storage[ip] = recent

    def reset(self) -> None:
        self.storage.clear()
