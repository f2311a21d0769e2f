# routers/audits.py — Read access to the audit trail and CSV export
import io
import csv
from datetime import date, datetime, time, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser, require_permission
from database import get_db_session
from models import Audit, AuditAction, utcnow
from pagination import PageParams, page_envelope, page_params, paginate
from routers.common import get_or_404
from schemas import ApiModel, UserBrief, serialize

router = APIRouter(prefix="/api/audits", tags=["Audit"])

CSV_COLUMNS = ["id", "action", "model", "recordId", "user.email", "ipAddress", "createdAt"]


class AuditOut(ApiModel):
    id: str
    user_id: Optional[str] = None
    actor_type: Optional[str] = None
    actor_id: Optional[str] = None
    action: AuditAction
    model: str
    record_id: Optional[str] = None
    old_values: Optional[Any] = None
    new_values: Optional[Any] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    created_at: Optional[datetime] = None
    user: Optional[UserBrief] = None


class AuditFilters:
    """Query filters shared by the list and the export"""

    def __init__(
        self,
        model: Optional[str] = None,
        action: Optional[AuditAction] = None,
        user_id: Optional[str] = Query(default=None, alias="userId"),
        start_date: Optional[date] = Query(default=None, alias="startDate"),
        end_date: Optional[date] = Query(default=None, alias="endDate"),
    ):
        self.model = model
        self.action = action
        self.user_id = user_id
        self.start_date = start_date
        self.end_date = end_date

    def apply(self, stmt):
        if self.model:
            stmt = stmt.where(Audit.model == self.model)
        if self.action:
            stmt = stmt.where(Audit.action == self.action)
        if self.user_id:
            stmt = stmt.where(Audit.user_id == self.user_id)
        if self.start_date:
            stmt = stmt.where(Audit.created_at >= datetime.combine(self.start_date, time.min, tzinfo=timezone.utc))
        if self.end_date:
            stmt = stmt.where(Audit.created_at <= datetime.combine(self.end_date, time.max, tzinfo=timezone.utc))
        return stmt


def _audit_to_out(a: Audit) -> dict:
    return serialize(AuditOut, a)


def _csv_row(a: Audit) -> list:
    return [
        a.id,
        a.action.value,
        a.model,
        a.record_id or "",
        a.user.email if a.user else "",
        a.ip_address or "",
        a.created_at.isoformat() if a.created_at else "",
    ]


@router.get("")
async def list_audits(
    filters: AuditFilters = Depends(),
    user: CurrentUser = Depends(require_permission("audit:read")),
    db: AsyncSession = Depends(get_db_session),
    paging: PageParams = Depends(page_params(default_limit=50)),
):
    stmt = filters.apply(select(Audit)).order_by(Audit.created_at.desc())
    rows, meta = await paginate(db, stmt, paging)
    return page_envelope(rows, meta, _audit_to_out)


@router.get("/export")
async def export_audits(
    filters: AuditFilters = Depends(),
    user: CurrentUser = Depends(require_permission("audit:read")),
    db: AsyncSession = Depends(get_db_session),
):
    """Download the filtered audit log as CSV"""
    result = await db.execute(filters.apply(select(Audit)).order_by(Audit.created_at.desc()))

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_COLUMNS)
    for entry in result.scalars().all():
        writer.writerow(_csv_row(entry))

    filename = f"audit-log-{utcnow().date().isoformat()}.csv"
    return StreamingResponse(
        iter([buffer.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get("/{audit_id}")
async def get_audit(
    audit_id: str,
    user: CurrentUser = Depends(require_permission("audit:read")),
    db: AsyncSession = Depends(get_db_session),
):
    return _audit_to_out(await get_or_404(db, Audit, audit_id, "Audit entry"))
