# routers/worklogs.py — Hours logged against tasks, and the weekly summary trigger
import logging
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from auditing import record_audit, snapshot
from auth import CurrentUser, require_permission
from database import get_db_session, transaction
from errors import ValidationFailed
from models import AuditAction, Project, Task, WorkLog, utcnow
from pagination import PageParams, page_envelope, page_params, paginate
from policy import authorize_or_hide, require
from routers.common import get_or_404
from schemas import ApiModel, UserBrief, serialize
from summaries import period_key, queue_weekly_summary, week_bounds

logger = logging.getLogger("workhub.worklogs")

router = APIRouter(prefix="/api/worklogs", tags=["Work Logs"])

MAX_HOURS_PER_DAY = 24


# --- Schemas ---

class WorkLogCreate(ApiModel):
    project_id: str
    task_id: str
    hours_worked: float = Field(..., gt=0, le=MAX_HOURS_PER_DAY)
    work_date: Optional[date] = Field(default=None, alias="date")
    description: str = Field(..., min_length=1)


class WeeklySummaryRequest(ApiModel):
    week_of: Optional[date] = None


class TaskRef(ApiModel):
    id: str
    title: str


class ProjectRef(ApiModel):
    id: str
    project_name: str


class WorkLogOut(ApiModel):
    id: str
    user_id: str
    project_id: str
    task_id: str
    hours_worked: float
    work_date: date = Field(serialization_alias="date")
    description: str
    created_at: Optional[datetime] = None
    user: Optional[UserBrief] = None
    task: Optional[TaskRef] = None
    project: Optional[ProjectRef] = None


def _log_to_out(log: WorkLog) -> dict:
    return serialize(WorkLogOut, log)


def _filtered(stmt, project_id=None, task_id=None, on=None, date_from=None, date_to=None, search=None):
    if project_id:
        stmt = stmt.where(WorkLog.project_id == project_id)
    if task_id:
        stmt = stmt.where(WorkLog.task_id == task_id)
    if on:
        stmt = stmt.where(WorkLog.work_date == on)
    if date_from:
        stmt = stmt.where(WorkLog.work_date >= date_from)
    if date_to:
        stmt = stmt.where(WorkLog.work_date <= date_to)
    if search:
        stmt = stmt.where(WorkLog.description.ilike(f"%{search}%"))
    return stmt


async def _total_hours(db: AsyncSession, stmt) -> float:
    sub = stmt.order_by(None).subquery()
    total = (await db.execute(select(func.sum(sub.c.hours_worked)))).scalar()
    return round(float(total or 0), 2)


# --- Endpoints ---

@router.post("", status_code=201)
async def log_work(
    body: WorkLogCreate,
    request: Request,
    user: CurrentUser = Depends(require("worklog.log")),
    db: AsyncSession = Depends(get_db_session),
):
    """Book hours against a task; staff may only log their own assigned tasks."""
    task = await get_or_404(db, Task, body.task_id, "Task")
    authorize_or_hide(user, "worklog.log", task.assigned_to == user.id, "Task")
    if task.project_id != body.project_id:
        raise ValidationFailed("Task does not belong to this project",
                               details={"taskId": task.id, "projectId": body.project_id})

    work_date = body.work_date or utcnow().date()
    booked = (await db.execute(
        select(func.sum(WorkLog.hours_worked)).where(WorkLog.user_id == user.id, WorkLog.work_date == work_date)
    )).scalar()
    if float(booked or 0) + body.hours_worked > MAX_HOURS_PER_DAY:
        raise ValidationFailed(f"More than {MAX_HOURS_PER_DAY} hours logged for {work_date.isoformat()}",
                               details={"alreadyLogged": float(booked or 0)})

    async with transaction(db):
        log = WorkLog(
            user_id=user.id,
            project_id=task.project_id,
            task_id=task.id,
            hours_worked=body.hours_worked,
            work_date=work_date,
            description=body.description.strip(),
        )
        db.add(log)
        await db.flush()
        record_audit(db, request, user, AuditAction.CREATE, "WorkLog", log.id, new_values=snapshot(log))

    logger.info(f"{user.id} logged {body.hours_worked}h on task {task.id}")
    return _log_to_out(await get_or_404(db, WorkLog, log.id, "Work log"))


@router.get("/me")
async def my_work_logs(
    user: CurrentUser = Depends(require_permission("worklogs:create")),
    db: AsyncSession = Depends(get_db_session),
    paging: PageParams = Depends(page_params()),
    project_id: Optional[str] = Query(default=None, alias="projectId"),
    task_id: Optional[str] = Query(default=None, alias="taskId"),
    on: Optional[date] = Query(default=None, alias="date"),
    date_from: Optional[date] = Query(default=None, alias="from"),
    date_to: Optional[date] = Query(default=None, alias="to"),
    search: Optional[str] = None,
):
    stmt = _filtered(
        select(WorkLog).where(WorkLog.user_id == user.id),
        project_id, task_id, on, date_from, date_to, search,
    ).order_by(WorkLog.work_date.desc(), WorkLog.created_at.desc())
    rows, meta = await paginate(db, stmt, paging)
    return {**page_envelope(rows, meta, _log_to_out), "totalHours": await _total_hours(db, stmt)}


@router.get("/project/{project_id}")
async def project_work_logs(
    project_id: str,
    user: CurrentUser = Depends(require_permission("worklogs:manage")),
    db: AsyncSession = Depends(get_db_session),
    paging: PageParams = Depends(page_params()),
    user_id: Optional[str] = Query(default=None, alias="userId"),
    task_id: Optional[str] = Query(default=None, alias="taskId"),
    date_from: Optional[date] = Query(default=None, alias="from"),
    date_to: Optional[date] = Query(default=None, alias="to"),
):
    await get_or_404(db, Project, project_id, "Project")
    stmt = _filtered(select(WorkLog).where(WorkLog.project_id == project_id), task_id=task_id,
                     date_from=date_from, date_to=date_to)
    if user_id:
        stmt = stmt.where(WorkLog.user_id == user_id)
    stmt = stmt.order_by(WorkLog.work_date.desc(), WorkLog.created_at.desc())
    rows, meta = await paginate(db, stmt, paging)
    return {**page_envelope(rows, meta, _log_to_out), "totalHours": await _total_hours(db, stmt)}


@router.delete("/{log_id}")
async def delete_work_log(
    log_id: str,
    request: Request,
    user: CurrentUser = Depends(require("worklog.delete")),
    db: AsyncSession = Depends(get_db_session),
):
    log = await get_or_404(db, WorkLog, log_id, "Work log")
    authorize_or_hide(user, "worklog.delete", log.user_id == user.id, "Work log")
    before = snapshot(log)
    async with transaction(db):
        await db.delete(log)
        record_audit(db, request, user, AuditAction.DELETE, "WorkLog", log_id, old_values=before)
    return {"message": "Work log deleted successfully"}


@router.post("/weekly-summary", status_code=202)
async def send_weekly_summary(
    body: WeeklySummaryRequest,
    user: CurrentUser = Depends(require_permission("worklogs:manage")),
    db: AsyncSession = Depends(get_db_session),
):
    """Queue the weekly summary emails now instead of waiting for the scheduler."""
    week_start, week_end = week_bounds(body.week_of or utcnow().date())
    covered = await queue_weekly_summary(db, week_start, triggered_by=user.id)
    return {
        "message": "Weekly summary queued",
        "period": period_key(week_start),
        "weekStart": week_start.isoformat(),
        "weekEnd": week_end.isoformat(),
        "staffCovered": covered,
    }
