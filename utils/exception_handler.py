"""
Exception Handler Module
Escrow and wallet error taxonomy plus the FastAPI handler that maps it to HTTP
"""

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class EscrowError(Exception):
    """Base class for every error the ledger and escrow core can raise"""

    code = "escrow_error"
    http_status = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        payload = {"message": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidAmount(EscrowError):
    """Non-numeric, zero or negative amount"""

    code = "invalid_amount"


class InsufficientBalance(EscrowError):
    """Debit exceeds the available balance"""

    code = "insufficient_balance"


class InvalidTransition(EscrowError):
    """Status change not permitted from the current state"""

    code = "invalid_transition"


class NotFound(EscrowError):
    code = "not_found"
    http_status = 404


class Forbidden(EscrowError):
    code = "forbidden"
    http_status = 403


class ValidationError(EscrowError):
    """Missing or malformed required fields"""

    code = "validation_error"


class ConcurrentModification(EscrowError):
    """Raised when a hold was changed by another writer since it was read"""

    code = "concurrent_modification"
    http_status = 409


async def escrow_error_handler(request, exc: EscrowError):
    """FastAPI exception handler: surface core errors unchanged as JSON"""
    from fastapi.responses import JSONResponse

    logger.info(
        f"ESCROW_ERROR: {request.method} {request.url.path} -> "
        f"{exc.http_status} {exc.code}: {exc.message}"
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())
