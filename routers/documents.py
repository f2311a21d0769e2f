# routers/documents.py — Files attached to projects by their team or their clients
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import emails
from auditing import record_audit, snapshot
from auth import CurrentUser, require_permission
from database import get_db_session, transaction
from errors import NotFound, ValidationFailed
from models import AuditAction, DocumentStatus, ProjectDocument, ProjectReport
from outbox import enqueue_mail
from pagination import PageParams, page_envelope, page_params, paginate
from policy import authorize, can, require
from routers.common import emails_for_roles, get_or_404
from routers.projects import _is_linked_client, _is_team_member, _load_visible
from schemas import ApiModel, UserBrief, serialize
from storage import check_file_count, delete_stored, store_upload, store_uploads

logger = logging.getLogger("workhub.documents")

router = APIRouter(prefix="/api/documents", tags=["Project Documents"])


# --- Schemas ---

class DocumentStatusChange(ApiModel):
    status: DocumentStatus


class ProjectDocumentOut(ApiModel):
    id: str
    name: str
    url: str
    content_type: Optional[str] = None
    size: int = 0
    status: DocumentStatus
    project_id: str
    report_id: Optional[str] = None
    uploaded_by: Optional[str] = None
    client_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    uploader: Optional[UserBrief] = None


def _document_to_out(d: ProjectDocument) -> dict:
    return serialize(ProjectDocumentOut, d)


def _is_uploader(document: ProjectDocument, user: CurrentUser) -> bool:
    if user.is_client:
        return document.client_id == user.id
    return document.uploaded_by == user.id


async def _load_document(db: AsyncSession, document_id: str, user: CurrentUser, for_update: bool = False) -> ProjectDocument:
    """Load a document on a project the caller may see; others get the same 404 as a missing id."""
    document = await get_or_404(db, ProjectDocument, document_id, "Document", for_update=for_update)
    if can(user, "project.view"):
        return document
    owns = (await _is_linked_client(db, document.project_id, user)
            or await _is_team_member(db, document.project_id, user))
    if not can(user, "project.view", owns=owns):
        raise NotFound("Document not found")
    return document


async def _check_report(db: AsyncSession, report_id: Optional[str], project_id: str) -> None:
    if not report_id:
        return
    report = await get_or_404(db, ProjectReport, report_id, "Report")
    if report.project_id != project_id:
        raise ValidationFailed("Report belongs to another project", details={"reportId": report_id})


# --- Endpoints ---

@router.post("/project/{project_id}", status_code=201)
async def upload_documents(
    project_id: str,
    request: Request,
    files: List[UploadFile] = File(...),
    report_id: Optional[str] = Form(default=None, alias="reportId"),
    user: CurrentUser = Depends(require_permission("projects:read")),
    db: AsyncSession = Depends(get_db_session),
):
    """Attach files to a project; team members, linked clients and managers may upload."""
    project = await _load_visible(db, project_id, user)
    check_file_count(files, minimum=1)
    await _check_report(db, report_id, project_id)
    recipients = await emails_for_roles(db)

    stored = await store_uploads(files, "projects")
    try:
        async with transaction(db):
            documents = []
            for f in stored:
                document = ProjectDocument(
                    name=f.name,
                    url=f.url,
                    content_type=f.content_type,
                    size=f.size,
                    status=DocumentStatus.PENDING,
                    project_id=project_id,
                    report_id=report_id,
                    uploaded_by=None if user.is_client else user.id,
                    client_id=user.id if user.is_client else None,
                )
                db.add(document)
                documents.append(document)
            await db.flush()
            for document in documents:
                record_audit(db, request, user, AuditAction.CREATE, "ProjectDocument", document.id,
                             new_values=snapshot(document))
            enqueue_mail(db, recipients, emails.documents_uploaded(
                project.project_name, [f.name for f in stored], user.name,
            ))
    except Exception:
        for f in stored:
            delete_stored(f.url)
        raise

    logger.info(f"{len(stored)} document(s) uploaded to project {project_id} by {user.id}")
    ids = [d.id for d in documents]
    result = await db.execute(
        select(ProjectDocument).where(ProjectDocument.id.in_(ids)).order_by(ProjectDocument.name)
    )
    return {"items": [_document_to_out(d) for d in result.scalars().all()]}


@router.get("/project/{project_id}")
async def list_project_documents(
    project_id: str,
    user: CurrentUser = Depends(require_permission("projects:read")),
    db: AsyncSession = Depends(get_db_session),
    paging: PageParams = Depends(page_params()),
    name: Optional[str] = None,
    status: Optional[DocumentStatus] = None,
    report_id: Optional[str] = Query(default=None, alias="reportId"),
):
    await _load_visible(db, project_id, user)
    stmt = select(ProjectDocument).where(ProjectDocument.project_id == project_id)
    if name:
        stmt = stmt.where(ProjectDocument.name.ilike(f"%{name}%"))
    if status:
        stmt = stmt.where(ProjectDocument.status == status)
    if report_id:
        stmt = stmt.where(ProjectDocument.report_id == report_id)

    rows, meta = await paginate(db, stmt.order_by(ProjectDocument.created_at.desc()), paging)
    return page_envelope(rows, meta, _document_to_out)


@router.get("/{document_id}")
async def get_document(
    document_id: str,
    user: CurrentUser = Depends(require_permission("projects:read")),
    db: AsyncSession = Depends(get_db_session),
):
    return _document_to_out(await _load_document(db, document_id, user))


@router.put("/{document_id}")
async def update_document(
    document_id: str,
    request: Request,
    name: Optional[str] = Form(default=None, min_length=1, max_length=300),
    report_id: Optional[str] = Form(default=None, alias="reportId"),
    file: Optional[UploadFile] = File(default=None),
    user: CurrentUser = Depends(require("document.edit")),
    db: AsyncSession = Depends(get_db_session),
):
    """Rename a document, move it under a report or replace its file.

    A replaced file goes back to pending review.
    """
    document = await _load_document(db, document_id, user, for_update=True)
    authorize(user, "document.edit", owns=_is_uploader(document, user))
    if name is None and report_id is None and file is None:
        raise ValidationFailed("At least one of name, reportId or file is required")
    await _check_report(db, report_id, document.project_id)

    before = snapshot(document)
    old_url = document.url
    stored = await store_upload(file, "projects") if file is not None else None
    try:
        async with transaction(db):
            if name is not None:
                document.name = name.strip()
            if report_id is not None:
                document.report_id = report_id
            if stored:
                document.url = stored.url
                document.content_type = stored.content_type
                document.size = stored.size
                document.status = DocumentStatus.PENDING
            record_audit(db, request, user, AuditAction.UPDATE, "ProjectDocument", document.id,
                         old_values=before, new_values=snapshot(document))
    except Exception:
        if stored:
            delete_stored(stored.url)
        raise

    if stored:
        delete_stored(old_url)
    return _document_to_out(await get_or_404(db, ProjectDocument, document_id, "Document"))


@router.patch("/{document_id}/status")
async def update_document_status(
    document_id: str,
    body: DocumentStatusChange,
    request: Request,
    user: CurrentUser = Depends(require("document.status")),
    db: AsyncSession = Depends(get_db_session),
):
    """Record a review outcome and tell whoever uploaded the file"""
    document = await get_or_404(db, ProjectDocument, document_id, "Document", for_update=True)
    previous = document.status
    if previous == body.status:
        return {"message": f"Document is already {previous.value}", "document": _document_to_out(document)}

    async with transaction(db):
        document.status = body.status
        uploader = document.client or document.uploader
        if uploader:
            enqueue_mail(db, uploader.email, emails.document_status_changed(
                uploader.full_name, document.name, body.status.value,
            ))
        record_audit(db, request, user, AuditAction.UPDATE, "ProjectDocument", document.id,
                     old_values={"status": previous.value}, new_values={"status": body.status.value})

    logger.info(f"Document {document_id} marked {body.status.value} by {user.id}")
    return {"message": "Document status updated successfully",
            "document": _document_to_out(await get_or_404(db, ProjectDocument, document_id, "Document"))}


@router.delete("/{document_id}")
async def delete_document(
    document_id: str,
    request: Request,
    user: CurrentUser = Depends(require("document.delete")),
    db: AsyncSession = Depends(get_db_session),
):
    document = await _load_document(db, document_id, user)
    authorize(user, "document.delete", owns=_is_uploader(document, user))
    before = snapshot(document)
    url = document.url
    async with transaction(db):
        await db.delete(document)
        record_audit(db, request, user, AuditAction.DELETE, "ProjectDocument", document_id, old_values=before)

    delete_stored(url)
    return {"message": "Document deleted successfully"}
