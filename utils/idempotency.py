"""
Idempotency Cache
Replays the first response for a repeated Idempotency-Key instead of running a
money-moving request twice. Keys are scoped by caller and route so two sessions
can never collide.
"""

import time
import threading
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class CachedResponse:
    status_code: int
    body: Any
    stored_at: float


class IdempotencyCache:
    def __init__(self, ttl_seconds: int = 24 * 3600, max_entries: int = 10_000):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._entries: Dict[Tuple[str, str, str], CachedResponse] = {}
        self._lock = threading.Lock()

    def _cleanup(self, now: float) -> None:
        cutoff = now - self.ttl_seconds
        self._entries = {k: v for k, v in self._entries.items() if v.stored_at > cutoff}
        while len(self._entries) > self.max_entries:
            oldest = min(self._entries, key=lambda k: self._entries[k].stored_at)
            del self._entries[oldest]

    def get(self, caller: str, route: str, key: str, now: Optional[float] = None) -> Optional[CachedResponse]:
        now = time.time() if now is None else now
        with self._lock:
            cached = self._entries.get((caller, route, key))
            if cached is None or cached.stored_at <= now - self.ttl_seconds:
                return None
            logger.info(f"♻️ IDEMPOTENT_REPLAY: {route} key={key}")
            return cached

    def store(self, caller: str, route: str, key: str, status_code: int, body: Any,
              now: Optional[float] = None) -> None:
        now = time.time() if now is None else now
        with self._lock:
            self._entries[(caller, route, key)] = CachedResponse(status_code, body, now)
            self._cleanup(now)
