# routers/leave.py — Leave requests and their approval
import logging
from datetime import date, datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import Field, model_validator
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

import emails
from auditing import record_audit, snapshot
from auth import CurrentUser, require_permission
from database import get_db_session, transaction
from errors import IllegalTransition, ValidationFailed
from models import AuditAction, Leave, LeaveStatus, User, utcnow
from outbox import enqueue_mail
from pagination import PageParams, page_envelope, page_params, paginate
from policy import authorize, authorize_or_hide, can, require
from routers.common import emails_for_roles, get_or_404
from schemas import ApiModel, UserBrief, provided_fields, serialize
from workflow import LEAVE, attempt_transition, ensure_editable

logger = logging.getLogger("workhub.leave")

router = APIRouter(prefix="/api/leave", tags=["Leave"])


# --- Schemas ---

class LeaveCreate(ApiModel):
    start_date: date
    end_date: date
    reason: str = Field(..., min_length=1)
    leave_type: Optional[str] = Field(default=None, max_length=50)

    @model_validator(mode="after")
    def check_range(self):
        if self.end_date < self.start_date:
            raise ValueError("endDate must not be before startDate")
        return self


class LeaveUpdate(ApiModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    reason: Optional[str] = Field(default=None, min_length=1)
    leave_type: Optional[str] = Field(default=None, max_length=50)


class LeaveDecision(ApiModel):
    status: Literal["approved", "rejected"]


class LeaveOut(ApiModel):
    id: str
    user_id: str
    leave_type: Optional[str] = None
    start_date: date
    end_date: date
    reason: str
    status: LeaveStatus
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    user: Optional[UserBrief] = None


def _leave_to_out(leave: Leave) -> dict:
    return serialize(LeaveOut, leave)


def _is_owner(leave: Leave, user: CurrentUser) -> bool:
    return leave.user_id == user.id


def _json_changes(changes: dict) -> dict:
    return {k: v.isoformat() if isinstance(v, date) else v for k, v in changes.items()}


# --- Endpoints ---

@router.post("", status_code=201)
async def request_leave(
    body: LeaveCreate,
    request: Request,
    user: CurrentUser = Depends(require_permission("leaves:create")),
    db: AsyncSession = Depends(get_db_session),
):
    approvers = await emails_for_roles(db)
    async with transaction(db):
        leave = Leave(
            user_id=user.id,
            leave_type=body.leave_type,
            start_date=body.start_date,
            end_date=body.end_date,
            reason=body.reason.strip(),
            status=LeaveStatus.PENDING,
        )
        db.add(leave)
        await db.flush()
        enqueue_mail(db, approvers, emails.leave_requested(user.name, body.start_date, body.end_date, leave.reason))
        record_audit(db, request, user, AuditAction.CREATE, "Leave", leave.id, new_values=snapshot(leave))

    logger.info(f"Leave {leave.id} requested by {user.id}")
    return _leave_to_out(await get_or_404(db, Leave, leave.id, "Leave"))


@router.get("")
async def list_leave(
    user: CurrentUser = Depends(require_permission("leaves:read")),
    db: AsyncSession = Depends(get_db_session),
    paging: PageParams = Depends(page_params()),
    status: Optional[LeaveStatus] = None,
    user_id: Optional[str] = Query(default=None, alias="userId"),
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
):
    stmt = select(Leave).order_by(Leave.created_at.desc())
    if not can(user, "leave.view"):
        stmt = stmt.where(Leave.user_id == user.id)
    elif user_id:
        stmt = stmt.where(Leave.user_id == user_id)
    if status:
        stmt = stmt.where(Leave.status == status)
    if start_date:
        stmt = stmt.where(Leave.start_date >= start_date)
    if end_date:
        stmt = stmt.where(Leave.end_date <= end_date)

    rows, meta = await paginate(db, stmt, paging)
    return page_envelope(rows, meta, _leave_to_out)


@router.get("/user/{user_id}")
async def leave_for_user(
    user_id: str,
    user: CurrentUser = Depends(require("leave.view")),
    db: AsyncSession = Depends(get_db_session),
):
    authorize(user, "leave.view", owns=user_id == user.id)
    await get_or_404(db, User, user_id, "User")
    result = await db.execute(
        select(Leave).where(Leave.user_id == user_id).order_by(Leave.start_date.desc())
    )
    return {"items": [_leave_to_out(leave) for leave in result.scalars().all()]}


@router.get("/{leave_id}")
async def get_leave(
    leave_id: str,
    user: CurrentUser = Depends(require("leave.view")),
    db: AsyncSession = Depends(get_db_session),
):
    leave = await get_or_404(db, Leave, leave_id, "Leave")
    authorize_or_hide(user, "leave.view", _is_owner(leave, user), "Leave")
    return _leave_to_out(leave)


@router.put("/{leave_id}")
async def update_leave(
    leave_id: str,
    body: LeaveUpdate,
    request: Request,
    user: CurrentUser = Depends(require("leave.update")),
    db: AsyncSession = Depends(get_db_session),
):
    """Edit a leave request; only pending requests can change."""
    leave = await get_or_404(db, Leave, leave_id, "Leave", for_update=True)
    owns = _is_owner(leave, user)
    authorize_or_hide(user, "leave.update", owns, "Leave")
    ensure_editable(LEAVE, leave, user, owns=owns)

    changes = {k: v for k, v in provided_fields(body).items() if v is not None}
    if not changes:
        raise ValidationFailed("At least one field is required to update")
    start = changes.get("start_date", leave.start_date)
    end = changes.get("end_date", leave.end_date)
    if end < start:
        raise ValidationFailed("endDate must not be before startDate")
    if "reason" in changes:
        changes["reason"] = changes["reason"].strip()

    before = snapshot(leave)
    approvers = await emails_for_roles(db)
    async with transaction(db):
        await db.execute(
            update(Leave)
            .where(Leave.id == leave.id, Leave.status == LeaveStatus.PENDING)
            .values(**changes, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        requester = leave.user.full_name if leave.user else user.name
        enqueue_mail(db, approvers, emails.leave_updated(requester, start, end, changes.get("reason", leave.reason)))
        record_audit(db, request, user, AuditAction.UPDATE, "Leave", leave.id,
                     old_values=before, new_values={**before, **_json_changes(changes)})

    return _leave_to_out(await get_or_404(db, Leave, leave_id, "Leave"))


@router.put("/{leave_id}/status")
async def decide_leave(
    leave_id: str,
    body: LeaveDecision,
    request: Request,
    user: CurrentUser = Depends(require("leave.decide")),
    db: AsyncSession = Depends(get_db_session),
):
    """Approve or reject a pending request and tell its owner"""
    leave = await get_or_404(db, Leave, leave_id, "Leave", for_update=True)

    async with transaction(db):
        previous = attempt_transition(LEAVE, leave, body.status, user)
        leave.decided_by = user.id
        leave.decided_at = utcnow()
        if leave.user:
            enqueue_mail(db, leave.user.email, emails.leave_decided(
                leave.user.full_name, leave.status.value, leave.start_date, leave.end_date,
            ))
        record_audit(db, request, user, AuditAction.UPDATE, "Leave", leave.id,
                     old_values={"status": previous.value}, new_values={"status": leave.status.value})

    logger.info(f"Leave {leave_id} {leave.status.value} by {user.id}")
    return {"message": f"Leave {leave.status.value} successfully",
            "leave": _leave_to_out(await get_or_404(db, Leave, leave_id, "Leave"))}


@router.delete("/{leave_id}")
async def delete_leave(
    leave_id: str,
    request: Request,
    user: CurrentUser = Depends(require("leave.delete")),
    db: AsyncSession = Depends(get_db_session),
):
    leave = await get_or_404(db, Leave, leave_id, "Leave")
    owns = _is_owner(leave, user)
    authorize_or_hide(user, "leave.delete", owns, "Leave")
    if not can(user, "leave.delete") and leave.status != LeaveStatus.PENDING:
        raise IllegalTransition(
            f"Leave cannot be deleted once it is '{leave.status.value}'",
            details={"status": leave.status.value},
        )

    before = snapshot(leave)
    owner = leave.user
    async with transaction(db):
        await db.delete(leave)
        if owner and not owns:
            enqueue_mail(db, owner.email, emails.leave_deleted(owner.full_name, leave.start_date, leave.end_date))
        record_audit(db, request, user, AuditAction.DELETE, "Leave", leave_id, old_values=before)

    return {"message": "Leave deleted successfully"}
