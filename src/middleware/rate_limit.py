"""
Per-client burst limiter for the platform API
"""

import time
from typing import Dict
from collections import deque
from fastapi import Request

from ..config.settings import get_settings
from ..models.errors import BurstLimitExceededError


class RateLimiter:
    """In-memory sliding-window rate limiter keyed by client"""

    def __init__(self, max_attempts: int = 60, window_seconds: int = 60):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.attempts: Dict[str, deque] = {}

    def _cleanup_old_attempts(self, key: str, current_time: float) -> deque:
        """Drop attempts outside the window; a client with none left is forgotten"""
        window = self.attempts.get(key)
        if window is None:
            return deque()

        cutoff_time = current_time - self.window_seconds
        while window and window[0] < cutoff_time:
            window.popleft()
        if not window:
            del self.attempts[key]
        return window

    def is_rate_limited(self, key: str) -> bool:
        """
        Check if key is rate limited

        Args:
            key: Unique identifier (client IP)

        Returns:
            True if rate limited, False otherwise
        """
        return len(self._cleanup_old_attempts(key, time.time())) >= self.max_attempts

    def record_attempt(self, key: str) -> None:
        current_time = time.time()
        self._cleanup_old_attempts(key, current_time)
        self.attempts.setdefault(key, deque()).append(current_time)

    def get_reset_time(self, key: str) -> float:
        """Timestamp when the window frees a slot for the key (0 if nothing is recorded)"""
        window = self._cleanup_old_attempts(key, time.time())
        if not window:
            return 0
        return window[0] + self.window_seconds

    def reset(self) -> None:
        self.attempts.clear()


# Global limiter guarding /api/v1
burst_rate_limiter = RateLimiter(max_attempts=get_settings().burst_limit_per_minute, window_seconds=60)


def get_client_ip(request: Request) -> str:
    """
    Get client IP address from request

    Args:
        request: FastAPI request object

    Returns:
        Client IP address
    """
    # Check for forwarded IP headers (common in production behind proxies)
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"


async def check_burst_rate_limit(request: Request) -> None:
    """
    Router dependency: reject a client that exceeds the per-minute burst limit

    Raises:
        BurstLimitExceededError: If the client used up its window (429)
    """
    key = f"ip:{get_client_ip(request)}"

    if burst_rate_limiter.is_rate_limited(key):
        reset_in = max(1, int(burst_rate_limiter.get_reset_time(key) - time.time()))
        raise BurstLimitExceededError(reset_in, burst_rate_limiter.max_attempts)

    burst_rate_limiter.record_attempt(key)
