"""
Notification & History Routes
"""

import logging

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from middleware.auth_security import authenticate
from models import ActorRole
from routes.common import get_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["notifications"])


@router.get("/history")
async def get_history(request: Request):
    authenticate(request, ActorRole.ADMIN, ActorRole.CLIENT)
    entries = await run_in_threadpool(get_service(request).history)
    return [entry.to_dict() for entry in entries]


@router.get("/notifications")
async def get_notifications(request: Request):
    claims = authenticate(request, ActorRole.ADMIN, ActorRole.CLIENT)
    items = await run_in_threadpool(get_service(request).notifications_for, claims.role.value)
    return [item.to_dict() for item in items]


@router.post("/notifications/{notification_id}/read")
async def mark_notification_read(notification_id: str, request: Request):
    """Only notifications addressed to the caller's role (or to everyone) can be marked"""
    claims = authenticate(request, ActorRole.ADMIN, ActorRole.CLIENT)
    item = await run_in_threadpool(
        get_service(request).mark_notification_read, notification_id, claims.role.value
    )
    return item.to_dict()
