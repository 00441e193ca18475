"""
Session Token Security
HMAC-signed bearer tokens for the admin and client roles.

Token layout: <base64url(canonical payload)>.<hex HMAC-SHA256>
The payload carries the role, an opaque session id and the expiry. The session
id doubles as the client token that scopes hold ownership.
"""

import base64
import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import orjson

from config import Config
from models import ActorRole
from utils.exception_handler import EscrowError
from utils.helpers import generate_id

logger = logging.getLogger(__name__)


class InvalidSessionToken(EscrowError):
    code = "invalid_token"
    http_status = 401


@dataclass(frozen=True)
class SessionClaims:
    role: ActorRole
    session_id: str
    expires_at: datetime


class SessionTokenSecurity:
    """Token generation and validation for role sessions"""

    @classmethod
    def _get_secret_key(cls) -> bytes:
        return Config.SESSION_SECRET.encode("utf-8")

    @classmethod
    def _sign(cls, message: bytes) -> str:
        return hmac.new(cls._get_secret_key(), message, hashlib.sha256).hexdigest()

    @classmethod
    def check_password(cls, role: ActorRole, password: str) -> bool:
        """Constant-time comparison against the configured role password"""
        expected = Config.ADMIN_PASSWORD if role == ActorRole.ADMIN else Config.CLIENT_PASSWORD
        return hmac.compare_digest((password or "").encode("utf-8"), expected.encode("utf-8"))

    @classmethod
    def issue(cls, role: ActorRole, ttl_hours: Optional[int] = None) -> str:
        expires_at = datetime.now(timezone.utc) + timedelta(hours=ttl_hours or Config.SESSION_TTL_HOURS)
        payload = orjson.dumps(
            {
                "role": role.value,
                "sid": generate_id("session") + secrets.token_hex(8),
                "exp": int(expires_at.timestamp()),
            },
            option=orjson.OPT_SORT_KEYS,
        )
        body = base64.urlsafe_b64encode(payload).rstrip(b"=")
        logger.info(f"🔑 SESSION_ISSUED: role={role.value} expires={expires_at.isoformat()}")
        return f"{body.decode()}.{cls._sign(body)}"

    @classmethod
    def verify(cls, token: str) -> SessionClaims:
        if not token or not token.isascii() or token.count(".") != 1:
            raise InvalidSessionToken("Invalid or expired token")

        body, signature = token.split(".")
        if not hmac.compare_digest(cls._sign(body.encode()), signature):
            logger.warning("🚨 SESSION_SIGNATURE_MISMATCH")
            raise InvalidSessionToken("Invalid or expired token")

        try:
            padded = body + "=" * (-len(body) % 4)
            payload = orjson.loads(base64.urlsafe_b64decode(padded))
            claims = SessionClaims(
                role=ActorRole(payload["role"]),
                session_id=str(payload["sid"]),
                expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
            )
        except (ValueError, KeyError, TypeError, orjson.JSONDecodeError):
            raise InvalidSessionToken("Invalid or expired token")

        if claims.expires_at <= datetime.now(timezone.utc):
            raise InvalidSessionToken("Invalid or expired token")
        return claims
