# routers/reports.py — Written project reports, their review and assignment
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import Field
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

import emails
from auditing import record_audit, snapshot
from auth import CurrentUser, require_permission
from database import get_db_session, transaction
from errors import NotFound, ValidationFailed
from models import AuditAction, Project, ProjectDocument, ProjectReport, Team, User
from outbox import enqueue_mail
from pagination import PageParams, page_envelope, page_params, paginate
from policy import authorize, can, require
from routers.common import emails_for_roles, get_or_404
from routers.projects import _is_team_member, _load_visible, _member_project_ids
from schemas import ApiModel, UserBrief, provided_fields, serialize

logger = logging.getLogger("workhub.reports")

router = APIRouter(prefix="/api/reports", tags=["Project Reports"])


# --- Schemas ---

class ReportCreate(ApiModel):
    title: str = Field(..., min_length=1, max_length=300)
    content: str = Field(..., min_length=1)
    project_id: str
    team_id: Optional[str] = None


class ReportUpdate(ApiModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=300)
    content: Optional[str] = Field(default=None, min_length=1)


class ReportAssign(ApiModel):
    user_id: str


class ProjectRef(ApiModel):
    id: str
    project_name: str


class TeamRef(ApiModel):
    id: str
    name: str


class ReportOut(ApiModel):
    id: str
    title: str
    content: str
    project_id: str
    team_id: Optional[str] = None
    created_by: Optional[str] = None
    assigned_to: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    project: Optional[ProjectRef] = None
    team: Optional[TeamRef] = None
    author: Optional[UserBrief] = None
    assignee: Optional[UserBrief] = None


def _report_to_out(r: ProjectReport) -> dict:
    return serialize(ReportOut, r)


def _owns(report: ProjectReport, user: CurrentUser) -> bool:
    return user.id in (report.created_by, report.assigned_to)


async def _load_report(db: AsyncSession, report_id: str, user: CurrentUser, for_update: bool = False) -> ProjectReport:
    """Managers see every report; staff see their own, their assigned ones and their projects'."""
    report = await get_or_404(db, ProjectReport, report_id, "Report", for_update=for_update)
    if can(user, "report.view", owns=_owns(report, user)):
        return report
    if await _is_team_member(db, report.project_id, user):
        return report
    raise NotFound("Report not found")


# --- Endpoints ---

@router.post("", status_code=201)
async def create_report(
    body: ReportCreate,
    request: Request,
    user: CurrentUser = Depends(require_permission("reports:create")),
    db: AsyncSession = Depends(get_db_session),
):
    project = await _load_visible(db, body.project_id, user)
    if body.team_id:
        await get_or_404(db, Team, body.team_id, "Team")
    recipients = await emails_for_roles(db)

    async with transaction(db):
        report = ProjectReport(
            title=body.title.strip(),
            content=body.content,
            project_id=project.id,
            team_id=body.team_id,
            created_by=user.id,
        )
        db.add(report)
        await db.flush()
        enqueue_mail(db, recipients, emails.report_created(report.title, project.project_name, user.name))
        record_audit(db, request, user, AuditAction.CREATE, "ProjectReport", report.id, new_values=snapshot(report))

    logger.info(f"Report {report.id} created on project {project.id} by {user.id}")
    return _report_to_out(await get_or_404(db, ProjectReport, report.id, "Report"))


@router.get("")
async def list_reports(
    user: CurrentUser = Depends(require_permission("reports:create")),
    db: AsyncSession = Depends(get_db_session),
    paging: PageParams = Depends(page_params()),
    project_id: Optional[str] = Query(default=None, alias="projectId"),
    user_name: Optional[str] = Query(default=None, alias="userName"),
    project_name: Optional[str] = Query(default=None, alias="projectName"),
    search: Optional[str] = None,
):
    stmt = select(ProjectReport)
    if not can(user, "report.view"):
        stmt = stmt.where(or_(
            ProjectReport.created_by == user.id,
            ProjectReport.assigned_to == user.id,
            ProjectReport.project_id.in_(_member_project_ids(user.id)),
        ))
    if project_id:
        stmt = stmt.where(ProjectReport.project_id == project_id)
    if user_name:
        pattern = f"%{user_name}%"
        stmt = stmt.join(User, User.id == ProjectReport.created_by).where(
            or_(User.first_name.ilike(pattern), User.last_name.ilike(pattern))
        )
    if project_name:
        stmt = stmt.join(Project, Project.id == ProjectReport.project_id).where(
            Project.project_name.ilike(f"%{project_name}%")
        )
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(ProjectReport.title.ilike(pattern), ProjectReport.content.ilike(pattern)))

    rows, meta = await paginate(db, stmt.order_by(ProjectReport.created_at.desc()), paging)
    return page_envelope(rows, meta, _report_to_out)


@router.get("/{report_id}")
async def get_report(
    report_id: str,
    user: CurrentUser = Depends(require_permission("reports:create")),
    db: AsyncSession = Depends(get_db_session),
):
    return _report_to_out(await _load_report(db, report_id, user))


@router.put("/{report_id}")
async def update_report(
    report_id: str,
    body: ReportUpdate,
    request: Request,
    user: CurrentUser = Depends(require("report.update")),
    db: AsyncSession = Depends(get_db_session),
):
    report = await _load_report(db, report_id, user, for_update=True)
    authorize(user, "report.update", owns=_owns(report, user))
    changes = provided_fields(body)
    if not changes:
        raise ValidationFailed("At least one of title or content is required")
    recipients = await emails_for_roles(db)

    before = snapshot(report)
    async with transaction(db):
        for key, value in changes.items():
            setattr(report, key, value.strip() if key == "title" else value)
        enqueue_mail(db, recipients, emails.report_updated(report.title, user.name))
        record_audit(db, request, user, AuditAction.UPDATE, "ProjectReport", report.id,
                     old_values=before, new_values=snapshot(report))

    return _report_to_out(await get_or_404(db, ProjectReport, report_id, "Report"))


@router.delete("/{report_id}")
async def delete_report(
    report_id: str,
    request: Request,
    user: CurrentUser = Depends(require("report.delete")),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a report; its documents stay on the project, detached from it."""
    report = await _load_report(db, report_id, user)
    authorize(user, "report.delete", owns=report.created_by == user.id)
    recipients = await emails_for_roles(db)
    if report.author and report.author.id != user.id:
        recipients.append(report.author.email)

    before = snapshot(report)
    title = report.title
    async with transaction(db):
        await db.execute(
            update(ProjectDocument).where(ProjectDocument.report_id == report_id).values(report_id=None)
        )
        await db.delete(report)
        enqueue_mail(db, recipients, emails.report_deleted(title, user.name))
        record_audit(db, request, user, AuditAction.DELETE, "ProjectReport", report_id, old_values=before)

    logger.info(f"Report {report_id} deleted by {user.id}")
    return {"message": "Report deleted successfully"}


@router.post("/{report_id}/assign")
async def assign_report(
    report_id: str,
    body: ReportAssign,
    request: Request,
    user: CurrentUser = Depends(require("report.assign")),
    db: AsyncSession = Depends(get_db_session),
):
    """Hand a report to a staff member for follow-up"""
    report = await get_or_404(db, ProjectReport, report_id, "Report", for_update=True)
    assignee = await get_or_404(db, User, body.user_id, "User")
    if not assignee.is_active:
        raise ValidationFailed("Cannot assign a report to an inactive user", details={"userId": assignee.id})
    recipients = await emails_for_roles(db)

    previous = report.assigned_to
    async with transaction(db):
        report.assigned_to = assignee.id
        enqueue_mail(db, assignee.email, emails.report_assigned(
            assignee.full_name, report.title, report.project.project_name,
        ))
        enqueue_mail(db, recipients, emails.report_updated(report.title, user.name))
        record_audit(db, request, user, AuditAction.UPDATE, "ProjectReport", report.id,
                     old_values={"assignedTo": previous}, new_values={"assignedTo": assignee.id})

    logger.info(f"Report {report_id} assigned to {assignee.id} by {user.id}")
    return _report_to_out(await get_or_404(db, ProjectReport, report_id, "Report"))
