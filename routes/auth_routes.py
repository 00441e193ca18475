"""
Auth Routes
Role login for the operator's admin and client consoles
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from middleware.auth_security import AuthSecurityService, get_client_ip
from models import ActorRole
from routes.common import read_json
from utils.exception_handler import ValidationError
from utils.session_tokens import InvalidSessionToken, SessionTokenSecurity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login")
async def login(request: Request):
    """Exchange a role password for a signed session token"""
    body = await read_json(request)
    raw_role = str(body.get("role") or "").strip().lower()
    password = body.get("password")

    try:
        role = ActorRole(raw_role)
    except ValueError:
        raise ValidationError("role must be 'admin' or 'client'")
    if not isinstance(password, str) or not password:
        raise ValidationError("password is required")

    auth_security: AuthSecurityService = request.app.state.auth_security
    identifier = f"{get_client_ip(request)}:{role.value}"
    locked, retry_after = auth_security.check_lockout(identifier)
    if locked:
        return JSONResponse(
            status_code=429,
            content={"message": "Too many failed login attempts", "code": "rate_limited"},
            headers={"Retry-After": str(retry_after)},
        )

    if not SessionTokenSecurity.check_password(role, password):
        auth_security.record_failed_attempt(identifier)
        raise InvalidSessionToken("Invalid credentials")

    auth_security.record_successful_attempt(identifier)
    logger.info(f"✅ LOGIN_OK: role={role.value}")
    return {"token": SessionTokenSecurity.issue(role), "role": role.value}
