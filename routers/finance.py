# routers/finance.py — Expense requests, approvals and finance KPIs
import logging
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

import emails
from auditing import record_audit, snapshot
from auth import CurrentUser, require_permission
from database import get_db_session, transaction
from errors import Conflict
from models import AuditAction, ExpenseCategory, ExpenseStatus, FinanceExpense, as_utc, utcnow
from outbox import enqueue_mail
from pagination import PageParams, page_envelope, page_params, paginate
from policy import authorize_or_hide, can, require
from routers.common import emails_with_permission, get_or_404, next_sequence_code
from schemas import ApiModel, UserBrief, serialize
from workflow import EXPENSE, attempt_transition

logger = logging.getLogger("workhub.finance")

router = APIRouter(prefix="/api/finance", tags=["Finance"])

CODE_ATTEMPTS = 3


# --- Schemas ---

class ExpenseCreate(ApiModel):
    vendor: str = Field(..., min_length=1, max_length=300)
    amount: float = Field(..., gt=0)
    category: ExpenseCategory
    expense_date: date
    description: Optional[str] = None


class RejectRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=2000)


class ExpenseOut(ApiModel):
    id: str
    request_id: str
    vendor: str
    amount: float
    category: ExpenseCategory
    expense_date: date
    description: Optional[str] = None
    status: ExpenseStatus
    submitted_by: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    submitter: Optional[UserBrief] = None


def _expense_to_out(e: FinanceExpense) -> dict:
    return serialize(ExpenseOut, e)


async def _decide(db: AsyncSession, request: Request, user: CurrentUser, expense_id: str,
                  target: ExpenseStatus, reason: Optional[str] = None) -> FinanceExpense:
    expense = await get_or_404(db, FinanceExpense, expense_id, "Expense", for_update=True)
    async with transaction(db):
        previous = attempt_transition(EXPENSE, expense, target, user)
        expense.approved_by = user.id
        expense.approved_at = utcnow()
        if target == ExpenseStatus.REJECTED:
            expense.rejection_reason = reason
        if expense.submitter:
            enqueue_mail(db, expense.submitter.email, emails.expense_decided(
                expense.submitter.full_name, expense.request_id, expense.status.value, reason,
            ))
        record_audit(db, request, user, AuditAction.UPDATE, "FinanceExpense", expense.id,
                     old_values={"status": previous.value},
                     new_values={"status": expense.status.value, "rejection_reason": reason})
    logger.info(f"Expense {expense.request_id} {expense.status.value} by {user.id}")
    return await get_or_404(db, FinanceExpense, expense_id, "Expense")


# --- Endpoints ---

@router.post("/expenses", status_code=201)
async def submit_expense(
    body: ExpenseCreate,
    request: Request,
    user: CurrentUser = Depends(require_permission("finance:submit")),
    db: AsyncSession = Depends(get_db_session),
):
    approvers = await emails_with_permission(db, "finance:approve")
    for attempt in range(CODE_ATTEMPTS):
        code = await next_sequence_code(db, FinanceExpense.request_id, "PAY", 6)
        try:
            async with transaction(db):
                expense = FinanceExpense(
                    request_id=code,
                    vendor=body.vendor.strip(),
                    amount=body.amount,
                    category=body.category,
                    expense_date=body.expense_date,
                    description=body.description,
                    status=ExpenseStatus.PENDING,
                    submitted_by=user.id,
                )
                db.add(expense)
                await db.flush()
                enqueue_mail(db, approvers, emails.expense_submitted(code, expense.vendor, body.amount, user.name))
                record_audit(db, request, user, AuditAction.CREATE, "FinanceExpense", expense.id,
                             new_values=snapshot(expense))
            break
        except IntegrityError:
            logger.warning(f"Expense code {code} taken, retrying ({attempt + 1}/{CODE_ATTEMPTS})")
    else:
        raise Conflict("Could not allocate a request number, please retry")

    return _expense_to_out(await get_or_404(db, FinanceExpense, expense.id, "Expense"))


@router.get("/expenses")
async def list_expenses(
    user: CurrentUser = Depends(require("expense.view")),
    db: AsyncSession = Depends(get_db_session),
    paging: PageParams = Depends(page_params()),
    status: Optional[ExpenseStatus] = None,
    category: Optional[ExpenseCategory] = None,
):
    stmt = select(FinanceExpense).order_by(FinanceExpense.created_at.desc())
    if not can(user, "expense.view"):
        stmt = stmt.where(FinanceExpense.submitted_by == user.id)
    if status:
        stmt = stmt.where(FinanceExpense.status == status)
    if category:
        stmt = stmt.where(FinanceExpense.category == category)
    rows, meta = await paginate(db, stmt, paging)
    return page_envelope(rows, meta, _expense_to_out)


@router.get("/expenses/pending")
async def pending_expenses(
    user: CurrentUser = Depends(require("expense.decide")),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(
        select(FinanceExpense)
        .where(FinanceExpense.status == ExpenseStatus.PENDING)
        .order_by(FinanceExpense.created_at.desc())
    )
    return {"items": [_expense_to_out(e) for e in result.scalars().all()]}


@router.get("/expenses/{expense_id}")
async def get_expense(
    expense_id: str,
    user: CurrentUser = Depends(require("expense.view")),
    db: AsyncSession = Depends(get_db_session),
):
    expense = await get_or_404(db, FinanceExpense, expense_id, "Expense")
    authorize_or_hide(user, "expense.view", expense.submitted_by == user.id, "Expense")
    return _expense_to_out(expense)


@router.post("/expenses/{expense_id}/approve")
async def approve_expense(
    expense_id: str,
    request: Request,
    user: CurrentUser = Depends(require("expense.decide")),
    db: AsyncSession = Depends(get_db_session),
):
    expense = await _decide(db, request, user, expense_id, ExpenseStatus.APPROVED)
    return {"message": "Expense approved", "expense": _expense_to_out(expense)}


@router.post("/expenses/{expense_id}/reject")
async def reject_expense(
    expense_id: str,
    request: Request,
    body: Optional[RejectRequest] = None,
    user: CurrentUser = Depends(require("expense.decide")),
    db: AsyncSession = Depends(get_db_session),
):
    reason = body.reason if body else None
    expense = await _decide(db, request, user, expense_id, ExpenseStatus.REJECTED, reason)
    return {"message": "Expense rejected", "expense": _expense_to_out(expense)}


@router.get("/dashboard")
async def finance_dashboard(
    user: CurrentUser = Depends(require_permission("finance:dashboard")),
    db: AsyncSession = Depends(get_db_session),
):
    """Spend KPIs across all expense requests"""
    by_status = {
        status: {"count": count, "amount": float(amount or 0)}
        for status, count, amount in (await db.execute(
            select(FinanceExpense.status, func.count(), func.sum(FinanceExpense.amount))
            .group_by(FinanceExpense.status)
        )).all()
    }
    by_category = {
        category.value: float(amount or 0)
        for category, amount in (await db.execute(
            select(FinanceExpense.category, func.sum(FinanceExpense.amount))
            .where(FinanceExpense.status == ExpenseStatus.APPROVED)
            .group_by(FinanceExpense.category)
        )).all()
    }

    now = utcnow()
    approved_this_month = (await db.execute(
        select(FinanceExpense.amount, FinanceExpense.approved_at)
        .where(FinanceExpense.status == ExpenseStatus.APPROVED)
    )).all()
    month_spend = sum(
        float(amount) for amount, approved_at in approved_this_month
        if approved_at and as_utc(approved_at).year == now.year and as_utc(approved_at).month == now.month
    )

    empty = {"count": 0, "amount": 0.0}
    return {
        "kpis": {
            "totalApprovedSpend": by_status.get(ExpenseStatus.APPROVED, empty)["amount"],
            "pendingApprovalAmount": by_status.get(ExpenseStatus.PENDING, empty)["amount"],
            "pendingApprovalCount": by_status.get(ExpenseStatus.PENDING, empty)["count"],
            "rejectedCount": by_status.get(ExpenseStatus.REJECTED, empty)["count"],
            "thisMonthSpend": round(month_spend, 2),
        },
        "byStatus": {s.value: v for s, v in by_status.items()},
        "approvedByCategory": by_category,
        "generatedAt": now.isoformat(),
    }
