"""
Authentication Security Middleware
Bearer-token role checks for the API routes and lockout after repeated failed logins
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from fastapi import Request

from config import Config
from models import ActorRole
from utils.exception_handler import Forbidden
from utils.session_tokens import InvalidSessionToken, SessionClaims, SessionTokenSecurity

logger = logging.getLogger(__name__)


@dataclass
class SecurityConfig:
    """Login lockout configuration"""

    login_max_attempts: int = 5
    login_lockout_seconds: int = 900
    max_tracked_identifiers: int = 10000


class AuthSecurityService:
    """Tracks failed role logins per caller and locks the caller out when they pile up"""

    def __init__(self, config: SecurityConfig = None):
        self.config = config or SecurityConfig()
        self._failed_attempts: Dict[str, List[float]] = {}
        self._lock = threading.Lock()

    def check_lockout(self, identifier: str, now: Optional[float] = None) -> Tuple[bool, int]:
        """
        Check whether the identifier is locked out.

        Returns:
            Tuple of (is_locked, seconds_remaining)
        """
        now = time.time() if now is None else now
        cutoff = now - self.config.login_lockout_seconds
        with self._lock:
            attempts = [stamp for stamp in self._failed_attempts.get(identifier, []) if stamp > cutoff]
            if attempts:
                self._failed_attempts[identifier] = attempts
            else:
                self._failed_attempts.pop(identifier, None)
            if len(attempts) >= self.config.login_max_attempts:
                remaining = int(min(attempts) + self.config.login_lockout_seconds - now)
                return True, max(1, remaining)
        return False, 0

    def record_failed_attempt(self, identifier: str, now: Optional[float] = None) -> None:
        now = time.time() if now is None else now
        with self._lock:
            if len(self._failed_attempts) >= self.config.max_tracked_identifiers:
                self._evict_expired(now - self.config.login_lockout_seconds)
            self._failed_attempts.setdefault(identifier, []).append(now)
            count = len(self._failed_attempts[identifier])
        logger.warning(f"🚨 LOGIN_FAILED: {identifier} ({count}/{self.config.login_max_attempts})")

    def record_successful_attempt(self, identifier: str) -> None:
        with self._lock:
            self._failed_attempts.pop(identifier, None)

    def _evict_expired(self, cutoff: float) -> None:
        for identifier in [key for key, stamps in self._failed_attempts.items() if max(stamps) <= cutoff]:
            del self._failed_attempts[identifier]


def get_client_ip(request: Request) -> str:
    """
    The socket peer, unless that peer is a configured trusted proxy.

    Behind trusted proxies X-Forwarded-For is read right to left and the first
    hop that is not itself a trusted proxy is the caller.
    """
    peer = getattr(request.client, "host", None) or "unknown"
    if peer not in Config.TRUSTED_PROXIES:
        return peer

    forwarded = request.headers.get("x-forwarded-for") or ""
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in Config.TRUSTED_PROXIES:
            return hop
    return peer


def bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def authenticate(request: Request, *roles: ActorRole) -> SessionClaims:
    """
    Verify the bearer token and require one of the given roles.

    Raises:
        InvalidSessionToken: token missing, malformed, forged or expired (401)
        Forbidden: valid session but the wrong role (403)
    """
    token = bearer_token(request)
    if token is None:
        raise InvalidSessionToken("Missing bearer token")

    claims = SessionTokenSecurity.verify(token)
    if roles and claims.role not in roles:
        logger.warning(
            f"🔒 ROLE_DENIED: {claims.role.value} on {request.method} {request.url.path}"
        )
        raise Forbidden("Insufficient permissions")
    return claims
