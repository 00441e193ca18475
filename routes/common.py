"""
Shared helpers for the API routers: body parsing, service lookup and
Idempotency-Key replay for money-moving requests
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse

from services.escrow_service import EscrowService
from utils.exception_handler import ValidationError
from utils.idempotency import IdempotencyCache
from utils.session_tokens import SessionClaims

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "idempotency-key"


def get_service(request: Request) -> EscrowService:
    return request.app.state.escrow_service


async def read_json(request: Request) -> Dict[str, Any]:
    """Parse the request body as a JSON object; an empty body reads as {}"""
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def optional_int(body: Dict[str, Any], field_name: str) -> Optional[int]:
    value = body.get(field_name)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be an integer")


async def run_idempotent(
    request: Request,
    claims: SessionClaims,
    route: str,
    operation: Callable[[], Awaitable[Tuple[int, Any]]],
) -> JSONResponse:
    """
    Execute operation once per (session, route, Idempotency-Key).

    A repeated key within the TTL replays the stored status and body instead of
    running the operation again. Failed operations are not cached so the
    caller can retry them.
    """
    cache: IdempotencyCache = request.app.state.idempotency_cache
    key = (request.headers.get(IDEMPOTENCY_HEADER) or "").strip()

    if key:
        cached = cache.get(claims.session_id, route, key)
        if cached is not None:
            return JSONResponse(status_code=cached.status_code, content=cached.body,
                                headers={"Idempotent-Replayed": "true"})

    status_code, body = await operation()

    if key:
        cache.store(claims.session_id, route, key, status_code, body)
    return JSONResponse(status_code=status_code, content=body)
