# routers/hse.py — Health, safety & environment incident reports and their documents
import re
import logging
from collections import Counter
from datetime import date, datetime, time, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from pydantic import Field, field_validator
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

import emails
from auditing import record_audit, snapshot
from auth import CurrentUser, require_permission
from database import get_db_session, transaction
from errors import NotFound, ValidationFailed
from models import AuditAction, HseDocument, HseReport, HseReportStatus, as_utc, utcnow
from outbox import enqueue_mail
from pagination import PageParams, page_envelope, page_params, paginate
from policy import require
from routers.common import emails_for_roles, get_or_404
from schemas import ApiModel, UserBrief, provided_fields, serialize
from storage import check_file_count, delete_stored, store_uploads
from workflow import HSE_REPORT, attempt_transition

logger = logging.getLogger("workhub.hse")

router = APIRouter(prefix="/api/hse", tags=["HSE"])

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$")
TREND_MONTHS = 12


# --- Schemas ---

def _check_time(value: Optional[str]) -> Optional[str]:
    if value is not None and not TIME_PATTERN.match(value):
        raise ValidationFailed("timeOfReport must be HH:MM or HH:MM:SS", details={"timeOfReport": value})
    return value


class DocumentOut(ApiModel):
    id: str
    name: str
    urls: List[str] = []
    doc_type: Optional[str] = Field(default=None, serialization_alias="type")
    content_type: Optional[str] = None
    size: int = 0
    uploaded_by: Optional[str] = None
    report_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ReportOut(ApiModel):
    id: str
    title: str
    date_of_report: date
    time_of_report: str
    reporter_id: Optional[str] = None
    report: str
    status: HseReportStatus
    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    reporter: Optional[UserBrief] = None


class ReportDetailOut(ReportOut):
    documents: List[DocumentOut] = []


class ReportUpdate(ApiModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=300)
    date_of_report: Optional[date] = None
    time_of_report: Optional[str] = None
    report: Optional[str] = Field(default=None, min_length=1)
    attach_document_ids: List[str] = []
    detach_document_ids: List[str] = []

    @field_validator("time_of_report")
    @classmethod
    def check_time(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not TIME_PATTERN.match(v):
            raise ValueError("timeOfReport must be HH:MM or HH:MM:SS")
        return v


class ReportStatusChange(ApiModel):
    status: str


class DocumentUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=300)
    doc_type: Optional[str] = Field(default=None, alias="type", max_length=100)
    report_id: Optional[str] = None


def _report_to_out(r: HseReport) -> dict:
    return serialize(ReportOut, r)


def _document_to_out(d: HseDocument) -> dict:
    return serialize(DocumentOut, d)


async def _load_report(db: AsyncSession, report_id: str) -> HseReport:
    return await get_or_404(db, HseReport, report_id, "HSE report", selectinload(HseReport.documents))


async def _report_detail(db: AsyncSession, report_id: str) -> dict:
    return serialize(ReportDetailOut, await _load_report(db, report_id))


async def _documents_by_id(db: AsyncSession, document_ids: List[str]) -> List[HseDocument]:
    if not document_ids:
        return []
    wanted = list(dict.fromkeys(document_ids))
    result = await db.execute(select(HseDocument).where(HseDocument.id.in_(wanted)))
    found = list(result.scalars().all())
    missing = sorted(set(wanted) - {d.id for d in found})
    if missing:
        raise ValidationFailed("Unknown documents", details={"documentIds": missing})
    return found


def _date_range(stmt, column, start: Optional[date], end: Optional[date]):
    if start:
        stmt = stmt.where(column >= datetime.combine(start, time.min, tzinfo=timezone.utc))
    if end:
        stmt = stmt.where(column <= datetime.combine(end, time.max, tzinfo=timezone.utc))
    return stmt


# --- Reports ---

@router.post("/reports", status_code=201)
async def create_report(
    request: Request,
    title: str = Form(..., min_length=1, max_length=300),
    date_of_report: date = Form(..., alias="dateOfReport"),
    time_of_report: str = Form(..., alias="timeOfReport"),
    report: str = Form(..., min_length=1),
    document_ids: Optional[List[str]] = Form(default=None, alias="documentIds"),
    files: Optional[List[UploadFile]] = File(default=None),
    user: CurrentUser = Depends(require_permission("hse:reports:create")),
    db: AsyncSession = Depends(get_db_session),
):
    """File a report; uploaded files become documents of the report"""
    _check_time(time_of_report)
    existing = await _documents_by_id(db, document_ids or [])
    stored = await store_uploads(files or [], "hse")
    recipients = await emails_for_roles(db)

    try:
        async with transaction(db):
            entry = HseReport(
                title=title.strip(),
                date_of_report=date_of_report,
                time_of_report=time_of_report,
                reporter_id=user.id,
                report=report,
                status=HseReportStatus.OPEN,
            )
            db.add(entry)
            await db.flush()
            for f in stored:
                db.add(HseDocument(
                    name=f.name, urls=[f.url], content_type=f.content_type, size=f.size,
                    uploaded_by=user.id, report_id=entry.id,
                ))
            for document in existing:
                document.report_id = entry.id
            enqueue_mail(db, recipients, emails.hse_report_filed(entry.title, user.name, date_of_report))
            record_audit(db, request, user, AuditAction.CREATE, "HSEReport", entry.id,
                         new_values={**snapshot(entry), "documents": len(stored) + len(existing)})
    except Exception:
        for f in stored:
            delete_stored(f.url)
        raise

    logger.info(f"HSE report {entry.id} filed by {user.id} with {len(stored)} uploads")
    return await _report_detail(db, entry.id)


@router.get("/reports")
async def list_reports(
    user: CurrentUser = Depends(require_permission("hse:reports:view")),
    db: AsyncSession = Depends(get_db_session),
    paging: PageParams = Depends(page_params()),
    status: Optional[HseReportStatus] = None,
    reporter_id: Optional[str] = Query(default=None, alias="reporterId"),
    search: Optional[str] = None,
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
):
    stmt = select(HseReport).order_by(HseReport.date_of_report.desc(), HseReport.created_at.desc())
    if status:
        stmt = stmt.where(HseReport.status == status)
    if reporter_id:
        stmt = stmt.where(HseReport.reporter_id == reporter_id)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(HseReport.title.ilike(pattern), HseReport.report.ilike(pattern)))
    if start_date:
        stmt = stmt.where(HseReport.date_of_report >= start_date)
    if end_date:
        stmt = stmt.where(HseReport.date_of_report <= end_date)

    rows, meta = await paginate(db, stmt, paging)
    return page_envelope(rows, meta, _report_to_out)


@router.get("/reports/by-document/{document_id}")
async def report_for_document(
    document_id: str,
    user: CurrentUser = Depends(require_permission("hse:reports:view")),
    db: AsyncSession = Depends(get_db_session),
):
    document = await get_or_404(db, HseDocument, document_id, "Document")
    if not document.report_id:
        raise NotFound("Document is not attached to a report")
    return await _report_detail(db, document.report_id)


@router.get("/reports/{report_id}")
async def get_report(
    report_id: str,
    user: CurrentUser = Depends(require_permission("hse:reports:view")),
    db: AsyncSession = Depends(get_db_session),
):
    return await _report_detail(db, report_id)


@router.get("/reports/{report_id}/documents")
async def report_documents(
    report_id: str,
    user: CurrentUser = Depends(require_permission("hse:reports:view")),
    db: AsyncSession = Depends(get_db_session),
):
    entry = await _load_report(db, report_id)
    return {"items": [_document_to_out(d) for d in entry.documents]}


@router.put("/reports/{report_id}")
async def update_report(
    report_id: str,
    body: ReportUpdate,
    request: Request,
    user: CurrentUser = Depends(require_permission("hse:reports:update")),
    db: AsyncSession = Depends(get_db_session),
):
    entry = await _load_report(db, report_id)
    fields = {
        k: v for k, v in provided_fields(body).items()
        if v is not None and k not in ("attach_document_ids", "detach_document_ids")
    }
    if not fields and not body.attach_document_ids and not body.detach_document_ids:
        raise ValidationFailed("No fields to update")
    attach = await _documents_by_id(db, body.attach_document_ids)

    before = snapshot(entry)
    async with transaction(db):
        for key, value in fields.items():
            setattr(entry, key, value.strip() if key == "title" else value)
        for document in attach:
            document.report_id = entry.id
        if body.detach_document_ids:
            await db.execute(
                update(HseDocument)
                .where(HseDocument.report_id == entry.id, HseDocument.id.in_(body.detach_document_ids))
                .values(report_id=None)
                .execution_options(synchronize_session=False)
            )
        record_audit(db, request, user, AuditAction.UPDATE, "HSEReport", entry.id, old_values=before,
                     new_values={**snapshot(entry), "attached": [d.id for d in attach],
                                 "detached": body.detach_document_ids})

    return await _report_detail(db, report_id)


@router.patch("/reports/{report_id}/status")
async def update_report_status(
    report_id: str,
    body: ReportStatusChange,
    request: Request,
    user: CurrentUser = Depends(require("hse.status")),
    db: AsyncSession = Depends(get_db_session),
):
    """Move a report between open, pending and closed"""
    entry = await get_or_404(db, HseReport, report_id, "HSE report", for_update=True)

    async with transaction(db):
        previous = attempt_transition(HSE_REPORT, entry, body.status, user)
        if entry.status == HseReportStatus.CLOSED and previous != HseReportStatus.CLOSED:
            entry.closed_at = utcnow()
            entry.closed_by = user.id
        elif entry.status != HseReportStatus.CLOSED:
            entry.closed_at = None
            entry.closed_by = None
        if previous != entry.status:
            if entry.reporter:
                enqueue_mail(db, entry.reporter.email,
                             emails.hse_status_changed(entry.reporter.full_name, entry.title, entry.status.value))
            record_audit(db, request, user, AuditAction.UPDATE, "HSEReport", entry.id,
                         old_values={"status": previous.value}, new_values={"status": entry.status.value})

    return await _report_detail(db, report_id)


@router.delete("/reports/{report_id}")
async def delete_report(
    report_id: str,
    request: Request,
    user: CurrentUser = Depends(require_permission("hse:reports:delete")),
    db: AsyncSession = Depends(get_db_session),
):
    entry = await _load_report(db, report_id)
    before = snapshot(entry)
    async with transaction(db):
        for document in entry.documents:
            document.report_id = None
        await db.delete(entry)
        record_audit(db, request, user, AuditAction.DELETE, "HSEReport", report_id, old_values=before)
    return {"message": "HSE report deleted successfully"}


@router.get("/analytics")
async def hse_analytics(
    user: CurrentUser = Depends(require_permission("hse:analytics")),
    db: AsyncSession = Depends(get_db_session),
):
    """Status counts, a twelve month trend and the mean time to close"""
    counts = dict((await db.execute(
        select(HseReport.status, func.count()).group_by(HseReport.status)
    )).all())

    today = utcnow().date()
    months = []
    year, month = today.year, today.month
    for _ in range(TREND_MONTHS):
        months.append(f"{year:04d}-{month:02d}")
        year, month = (year - 1, 12) if month == 1 else (year, month - 1)
    months.reverse()
    since = datetime(int(months[0][:4]), int(months[0][5:]), 1, tzinfo=timezone.utc)

    created = (await db.execute(
        select(HseReport.created_at).where(HseReport.created_at >= since)
    )).scalars().all()
    per_month = Counter(as_utc(c).strftime("%Y-%m") for c in created if c)

    closed = (await db.execute(
        select(HseReport.created_at, HseReport.closed_at)
        .where(HseReport.status == HseReportStatus.CLOSED, HseReport.closed_at.is_not(None))
    )).all()
    hours = [
        (as_utc(closed_at) - as_utc(created_at)).total_seconds() / 3600
        for created_at, closed_at in closed
        if created_at
    ]

    return {
        "incidents": {
            "total": sum(counts.values()),
            "open": counts.get(HseReportStatus.OPEN, 0),
            "pending": counts.get(HseReportStatus.PENDING, 0),
            "closed": counts.get(HseReportStatus.CLOSED, 0),
        },
        "trends": {
            "monthlyIncidents": [{"month": m, "incidents": per_month.get(m, 0)} for m in months],
        },
        "resolution": {
            "closedCount": len(hours),
            "averageHoursToClose": round(sum(hours) / len(hours), 2) if hours else None,
        },
        "generatedAt": utcnow().isoformat(),
    }


# --- Documents ---

@router.post("/documents", status_code=201)
async def upload_document(
    request: Request,
    name: str = Form(..., min_length=1, max_length=300),
    doc_type: Optional[str] = Form(default=None, alias="type", max_length=100),
    report_id: Optional[str] = Form(default=None, alias="reportId"),
    files: List[UploadFile] = File(...),
    user: CurrentUser = Depends(require_permission("hse:documents:manage")),
    db: AsyncSession = Depends(get_db_session),
):
    check_file_count(files, minimum=1)
    if report_id:
        await get_or_404(db, HseReport, report_id, "HSE report")
    stored = await store_uploads(files, "hse")

    try:
        async with transaction(db):
            document = HseDocument(
                name=name.strip(),
                urls=[f.url for f in stored],
                doc_type=doc_type,
                content_type=stored[0].content_type,
                size=sum(f.size for f in stored),
                uploaded_by=user.id,
                report_id=report_id,
            )
            db.add(document)
            await db.flush()
            record_audit(db, request, user, AuditAction.CREATE, "HseDocument", document.id,
                         new_values=snapshot(document))
    except Exception:
        for f in stored:
            delete_stored(f.url)
        raise

    return _document_to_out(await get_or_404(db, HseDocument, document.id, "Document"))


@router.get("/documents")
async def list_documents(
    user: CurrentUser = Depends(require_permission("hse:documents:view")),
    db: AsyncSession = Depends(get_db_session),
    paging: PageParams = Depends(page_params()),
    search: Optional[str] = None,
    doc_type: Optional[str] = Query(default=None, alias="type"),
    report_id: Optional[str] = Query(default=None, alias="reportId"),
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
):
    stmt = select(HseDocument).order_by(HseDocument.created_at.desc())
    if search:
        stmt = stmt.where(HseDocument.name.ilike(f"%{search}%"))
    if doc_type:
        stmt = stmt.where(HseDocument.doc_type == doc_type)
    if report_id:
        stmt = stmt.where(HseDocument.report_id == report_id)
    stmt = _date_range(stmt, HseDocument.created_at, start_date, end_date)

    rows, meta = await paginate(db, stmt, paging)
    return page_envelope(rows, meta, _document_to_out)


@router.get("/documents/{document_id}")
async def get_document(
    document_id: str,
    user: CurrentUser = Depends(require_permission("hse:documents:view")),
    db: AsyncSession = Depends(get_db_session),
):
    return _document_to_out(await get_or_404(db, HseDocument, document_id, "Document"))


@router.put("/documents/{document_id}")
async def update_document(
    document_id: str,
    body: DocumentUpdate,
    request: Request,
    user: CurrentUser = Depends(require_permission("hse:documents:manage")),
    db: AsyncSession = Depends(get_db_session),
):
    document = await get_or_404(db, HseDocument, document_id, "Document")
    changes = provided_fields(body)
    if not changes:
        raise ValidationFailed("No fields to update")
    if changes.get("report_id"):
        await get_or_404(db, HseReport, changes["report_id"], "HSE report")
    if "name" in changes and changes["name"] is None:
        del changes["name"]

    before = snapshot(document)
    async with transaction(db):
        for key, value in changes.items():
            setattr(document, key, value.strip() if key == "name" else value)
        record_audit(db, request, user, AuditAction.UPDATE, "HseDocument", document.id,
                     old_values=before, new_values=snapshot(document))

    return _document_to_out(await get_or_404(db, HseDocument, document_id, "Document"))


@router.delete("/documents/{document_id}")
async def delete_document(
    document_id: str,
    request: Request,
    user: CurrentUser = Depends(require_permission("hse:documents:manage")),
    db: AsyncSession = Depends(get_db_session),
):
    document = await get_or_404(db, HseDocument, document_id, "Document")
    before = snapshot(document)
    urls = list(document.urls or [])
    async with transaction(db):
        await db.delete(document)
        record_audit(db, request, user, AuditAction.DELETE, "HseDocument", document_id, old_values=before)

    for url in urls:
        delete_stored(url)
    return {"message": "Document deleted successfully"}
