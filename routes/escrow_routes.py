"""
Escrow Routes
Hold creation, admin and client status changes, and the public share view
"""

import logging

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from middleware.auth_security import authenticate
from models import ActorRole
from routes.common import get_service, optional_int, read_json, run_idempotent
from utils.decimal_precision import MonetaryDecimal

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/escrows", tags=["escrows"])
public_router = APIRouter(prefix="/public/escrows", tags=["public"])


@router.get("")
async def list_escrows(request: Request):
    authenticate(request, ActorRole.ADMIN)
    holds = await run_in_threadpool(get_service(request).list_escrows)
    return [hold.to_dict() for hold in holds]


@router.get("/client")
async def list_client_escrows(request: Request):
    claims = authenticate(request, ActorRole.CLIENT)
    holds = await run_in_threadpool(get_service(request).list_client_escrows, claims.session_id)
    return [hold.to_dict() for hold in holds]


@router.post("")
async def create_escrow(request: Request):
    claims = authenticate(request, ActorRole.CLIENT)
    body = await read_json(request)

    async def operation():
        hold = await run_in_threadpool(
            get_service(request).create_hold,
            claims.session_id,
            body.get("platform"),
            body.get("paymentMethods"),
            body.get("amount"),
            currency=body.get("currency") or "USD",
            notes=body.get("notes"),
            expires_at=body.get("expiresAt"),
        )
        logger.info(
            f"🔒 ESCROW_CREATED: {hold.id} {MonetaryDecimal.format_amount(hold.amount, hold.currency)} "
            f"on {hold.platform}"
        )
        return 201, hold.to_dict()

    return await run_idempotent(request, claims, "escrows.create", operation)


@router.get("/{hold_id}")
async def get_escrow(hold_id: str, request: Request):
    authenticate(request, ActorRole.ADMIN)
    hold = await run_in_threadpool(get_service(request).get_escrow, hold_id)
    return hold.to_dict()


@router.patch("/{hold_id}")
async def admin_update_escrow(hold_id: str, request: Request):
    authenticate(request, ActorRole.ADMIN)
    body = await read_json(request)
    hold = await run_in_threadpool(
        get_service(request).admin_transition,
        hold_id,
        body.get("status"),
        note=body.get("note"),
        expected_version=optional_int(body, "version"),
    )
    return hold.to_dict()


@router.patch("/{hold_id}/client")
async def client_update_escrow(hold_id: str, request: Request):
    claims = authenticate(request, ActorRole.CLIENT)
    body = await read_json(request)
    hold = await run_in_threadpool(
        get_service(request).client_transition,
        hold_id,
        body.get("status"),
        claims.session_id,
        note=body.get("note"),
        expected_version=optional_int(body, "version"),
    )
    return hold.to_dict()


@public_router.get("/{hold_id}")
async def get_public_escrow(hold_id: str, request: Request):
    """Read-only share link view; no session required"""
    return await run_in_threadpool(get_service(request).public_escrow, hold_id)
