"""
Rate Limiting Middleware
Limits mutating API requests per caller (session id, or client IP when anonymous)
"""

import time
import threading
import logging
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class RateLimiter:
    """Simple in-memory sliding-window rate limiter"""

    def __init__(self, max_requests: int = 60, window_seconds: int = 60, max_tracked_keys: int = 10000):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.max_tracked_keys = max_tracked_keys
        self._requests: Dict[Tuple[str, str], List[float]] = {}  # (caller, action) -> [timestamp, ...]
        self._lock = threading.Lock()

    def is_rate_limited(
        self,
        caller: str,
        action: str = "general",
        now: Optional[float] = None,
    ) -> Tuple[bool, Optional[int]]:
        """
        Check and record one request.

        Returns:
            Tuple of (is_limited, seconds_until_reset)
        """
        now = time.time() if now is None else now
        cutoff = now - self.window_seconds
        key = (caller, action)

        with self._lock:
            if key not in self._requests and len(self._requests) >= self.max_tracked_keys:
                self._evict_expired(cutoff)

            recent = [stamp for stamp in self._requests.get(key, []) if stamp > cutoff]

            if len(recent) >= self.max_requests:
                self._requests[key] = recent
                reset_time = int(min(recent) + self.window_seconds - now)
                logger.warning(f"🚦 RATE_LIMITED: {caller} on {action} ({len(recent)}/{self.max_requests})")
                return True, max(1, reset_time)

            recent.append(now)
            self._requests[key] = recent
            return False, None

    def _evict_expired(self, cutoff: float) -> None:
        """Drop keys whose whole window has passed"""
        stale = [key for key, stamps in self._requests.items() if max(stamps) <= cutoff]
        for key in stale:
            del self._requests[key]
        if stale:
            logger.debug(f"🧹 RATE_LIMIT_EVICTED: {len(stale)} idle callers")
