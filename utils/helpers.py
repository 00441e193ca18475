"""Helper utilities for the Escrow Hold Coordinator"""

import secrets
import time
import logging
from datetime import datetime, timezone
from typing import Optional

from utils.exception_handler import ValidationError

logger = logging.getLogger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"

# Short prefixes keep ids self-describing in logs
ID_PREFIXES = {
    "escrow": "ES",
    "activity": "AC",
    "history": "HS",
    "notification": "NT",
    "session": "SS",
}


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_id(entity_type: str) -> str:
    """Time-ordered opaque id: prefix + base36 milliseconds + random suffix"""
    prefix = ID_PREFIXES.get(entity_type, "XX")
    millis = int(time.time() * 1000)
    return f"{prefix}-{_to_base36(millis)}-{secrets.token_hex(4)}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes (e.g. read back from SQLite) are treated as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value, field_name: str = "timestamp") -> Optional[datetime]:
    """Accept None, a datetime, or an ISO-8601 string (a trailing 'Z' is allowed)"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            return ensure_utc(datetime.fromisoformat(raw))
        except ValueError:
            pass
    raise ValidationError(f"Invalid {field_name}: {value!r}")


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return ensure_utc(value).isoformat().replace("+00:00", "Z")
