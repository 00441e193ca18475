"""
Wallet Routes
Balance view, deposits and admin payouts against the wallet ledger
"""

import logging

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from middleware.auth_security import authenticate
from models import ActorRole
from routes.common import get_service, read_json, run_idempotent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/wallet", tags=["wallet"])


@router.get("")
async def get_wallet(request: Request):
    authenticate(request, ActorRole.ADMIN, ActorRole.CLIENT)
    return await run_in_threadpool(get_service(request).wallet)


@router.post("/deposit")
async def deposit(request: Request):
    claims = authenticate(request, ActorRole.ADMIN, ActorRole.CLIENT)
    body = await read_json(request)

    async def operation():
        wallet, entry = await run_in_threadpool(
            get_service(request).deposit,
            body.get("amount"),
            currency=body.get("currency") or "USD",
            source=str(body.get("source") or "manual"),
            actor=claims.role,
        )
        return 200, {"wallet": wallet, "activity": entry.to_dict()}

    return await run_idempotent(request, claims, "wallet.deposit", operation)


@router.post("/transfer")
async def transfer(request: Request):
    claims = authenticate(request, ActorRole.ADMIN)
    body = await read_json(request)

    async def operation():
        wallet, entry = await run_in_threadpool(
            get_service(request).transfer,
            body.get("amount"),
            currency=body.get("currency") or "USD",
            destination=str(body.get("destination") or "external"),
            memo=str(body.get("memo") or ""),
            actor=claims.role,
        )
        return 200, {"wallet": wallet, "activity": entry.to_dict()}

    return await run_idempotent(request, claims, "wallet.transfer", operation)
