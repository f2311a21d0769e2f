# routers/outbox.py — Operator view of queued email
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser, require_permission
from database import async_session_maker, get_db_session, transaction
from errors import IllegalTransition
from models import OutboxMessage, OutboxStatus, utcnow
from outbox import OutboxDispatcher, pending_count
from pagination import PageParams, page_envelope, page_params, paginate
from routers.common import get_or_404
from schemas import ApiModel, serialize

router = APIRouter(prefix="/api/outbox", tags=["Outbox"])


class OutboxMessageOut(ApiModel):
    id: str
    recipient: str
    subject: str
    status: OutboxStatus
    attempts: int = 0
    last_error: Optional[str] = None
    next_attempt_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


def _message_to_out(m: OutboxMessage) -> dict:
    return serialize(OutboxMessageOut, m)


def _dispatcher(request: Request) -> OutboxDispatcher:
    dispatcher = getattr(request.app.state, "outbox_dispatcher", None)
    return dispatcher or OutboxDispatcher(async_session_maker)


@router.get("")
async def list_messages(
    status: Optional[OutboxStatus] = None,
    user: CurrentUser = Depends(require_permission("outbox:manage")),
    db: AsyncSession = Depends(get_db_session),
    paging: PageParams = Depends(page_params()),
):
    stmt = select(OutboxMessage).order_by(OutboxMessage.created_at.desc())
    if status:
        stmt = stmt.where(OutboxMessage.status == status)
    rows, meta = await paginate(db, stmt, paging)
    return {**page_envelope(rows, meta, _message_to_out), "pending": await pending_count(db)}


@router.post("/dispatch")
async def dispatch_now(
    request: Request,
    user: CurrentUser = Depends(require_permission("outbox:manage")),
):
    """Run one delivery pass immediately"""
    attempted = await _dispatcher(request).run_once()
    return {"message": "Dispatch pass complete", "attempted": attempted}


@router.post("/{message_id}/retry")
async def retry_message(
    message_id: str,
    user: CurrentUser = Depends(require_permission("outbox:manage")),
    db: AsyncSession = Depends(get_db_session),
):
    message = await get_or_404(db, OutboxMessage, message_id, "Outbox message")
    if message.status != OutboxStatus.FAILED:
        raise IllegalTransition(
            f"Only failed messages can be retried, this one is '{message.status.value}'",
            details={"status": message.status.value},
        )
    async with transaction(db):
        message.status = OutboxStatus.PENDING
        message.attempts = 0
        message.next_attempt_at = utcnow()
    return _message_to_out(message)
