# routers/tasks.py — Project tasks
import logging
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import Field
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

import emails
from auditing import record_audit, snapshot
from auth import CurrentUser, require_permission
from database import get_db_session, transaction
from errors import ValidationFailed
from models import AuditAction, Project, Task, TaskPriority, TaskStatus, User, WorkLog
from outbox import enqueue_mail
from pagination import PageParams, page_envelope, page_params, paginate
from policy import authorize_or_hide, can, require
from routers.common import emails_for_roles, get_or_404
from schemas import ApiModel, UserBrief, provided_fields, serialize
from workflow import TASK, attempt_transition

logger = logging.getLogger("workhub.tasks")

router = APIRouter(prefix="/api/tasks", tags=["Tasks"])


# --- Schemas ---

class TaskCreate(ApiModel):
    title: str = Field(..., min_length=1, max_length=300)
    project_id: str
    assigned_to: str
    description: Optional[str] = None
    due_date: Optional[date] = None
    priority: TaskPriority = TaskPriority.MEDIUM


class TaskUpdate(ApiModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=300)
    project_id: Optional[str] = None
    assigned_to: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[date] = None
    priority: Optional[TaskPriority] = None


class TaskStatusChange(ApiModel):
    status: str


class ProjectBrief(ApiModel):
    id: str
    project_name: str


class TaskOut(ApiModel):
    id: str
    title: str
    description: Optional[str] = None
    project_id: str
    assigned_to: Optional[str] = None
    created_by: Optional[str] = None
    status: TaskStatus
    priority: Optional[TaskPriority] = None
    due_date: Optional[date] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    assignee: Optional[UserBrief] = None
    project: Optional[ProjectBrief] = None


def _task_to_out(t: Task) -> dict:
    return serialize(TaskOut, t)


def _scope_to_caller(stmt, user: CurrentUser):
    if can(user, "task.view"):
        return stmt
    return stmt.where(Task.assigned_to == user.id)


async def _load_task(db: AsyncSession, task_id: str, for_update: bool = False) -> Task:
    return await get_or_404(db, Task, task_id, "Task", selectinload(Task.project), for_update=for_update)


async def _active_user(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if not user or not user.is_active:
        raise ValidationFailed("Assigned user not found", details={"assignedTo": user_id})
    return user


# --- Endpoints ---

@router.post("", status_code=201)
async def create_task(
    body: TaskCreate,
    request: Request,
    user: CurrentUser = Depends(require_permission("tasks:write")),
    db: AsyncSession = Depends(get_db_session),
):
    project = await get_or_404(db, Project, body.project_id, "Project")
    assignee = await _active_user(db, body.assigned_to)
    managers = await emails_for_roles(db)

    async with transaction(db):
        task = Task(
            title=body.title.strip(),
            description=body.description,
            project_id=project.id,
            assigned_to=assignee.id,
            created_by=user.id,
            due_date=body.due_date,
            priority=body.priority,
            status=TaskStatus.TODO,
        )
        db.add(task)
        await db.flush()
        enqueue_mail(db, [assignee.email] + managers,
                     emails.task_assigned(task.title, project.project_name, body.due_date))
        record_audit(db, request, user, AuditAction.CREATE, "Task", task.id, new_values=snapshot(task))

    logger.info(f"Task {task.id} created in project {project.id}")
    return _task_to_out(await _load_task(db, task.id))


@router.get("")
async def list_tasks(
    user: CurrentUser = Depends(require_permission("tasks:read")),
    db: AsyncSession = Depends(get_db_session),
    paging: PageParams = Depends(page_params()),
    title: Optional[str] = None,
    status: Optional[TaskStatus] = None,
    due_date: Optional[date] = Query(default=None, alias="dueDate"),
    project_id: Optional[str] = Query(default=None, alias="projectId"),
    assigned_to: Optional[str] = Query(default=None, alias="assignedTo"),
):
    stmt = _scope_to_caller(select(Task).options(selectinload(Task.project)), user).order_by(Task.created_at.desc())
    if title:
        stmt = stmt.where(Task.title.ilike(f"%{title}%"))
    if status:
        stmt = stmt.where(Task.status == status)
    if due_date:
        stmt = stmt.where(Task.due_date == due_date)
    if project_id:
        stmt = stmt.where(Task.project_id == project_id)
    if assigned_to:
        stmt = stmt.where(Task.assigned_to == assigned_to)

    rows, meta = await paginate(db, stmt, paging)
    return page_envelope(rows, meta, _task_to_out)


@router.get("/project/{project_id}")
async def tasks_for_project(
    project_id: str,
    user: CurrentUser = Depends(require_permission("tasks:read")),
    db: AsyncSession = Depends(get_db_session),
):
    await get_or_404(db, Project, project_id, "Project")
    stmt = _scope_to_caller(
        select(Task).options(selectinload(Task.project)).where(Task.project_id == project_id), user
    )
    result = await db.execute(stmt.order_by(Task.due_date.asc(), Task.created_at.asc()))
    return {"items": [_task_to_out(t) for t in result.scalars().all()]}


@router.get("/{task_id}")
async def get_task(
    task_id: str,
    user: CurrentUser = Depends(require("task.view")),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _load_task(db, task_id)
    authorize_or_hide(user, "task.view", task.assigned_to == user.id, "Task")
    return _task_to_out(task)


@router.put("/{task_id}")
async def update_task(
    task_id: str,
    body: TaskUpdate,
    request: Request,
    user: CurrentUser = Depends(require_permission("tasks:write")),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _load_task(db, task_id)
    changes = {k: v for k, v in provided_fields(body).items() if v is not None}
    if not changes:
        raise ValidationFailed("No fields to update")
    if "project_id" in changes:
        await get_or_404(db, Project, changes["project_id"], "Project")
    new_assignee = None
    if "assigned_to" in changes and changes["assigned_to"] != task.assigned_to:
        new_assignee = await _active_user(db, changes["assigned_to"])

    before = snapshot(task)
    async with transaction(db):
        for key, value in changes.items():
            setattr(task, key, value.strip() if key == "title" else value)
        if new_assignee:
            project = await get_or_404(db, Project, task.project_id, "Project")
            enqueue_mail(db, new_assignee.email,
                         emails.task_assigned(task.title, project.project_name, task.due_date))
        record_audit(db, request, user, AuditAction.UPDATE, "Task", task.id,
                     old_values=before, new_values=snapshot(task))

    return _task_to_out(await _load_task(db, task_id))


@router.patch("/{task_id}/status")
async def update_task_status(
    task_id: str,
    body: TaskStatusChange,
    request: Request,
    user: CurrentUser = Depends(require("task.status")),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _load_task(db, task_id, for_update=True)
    async with transaction(db):
        previous = attempt_transition(TASK, task, body.status, user)
        if previous != task.status:
            if task.assignee:
                enqueue_mail(db, task.assignee.email,
                             emails.task_status_changed(task.title, previous.value, task.status.value))
            record_audit(db, request, user, AuditAction.UPDATE, "Task", task.id,
                         old_values={"status": previous.value}, new_values={"status": task.status.value})

    return _task_to_out(await _load_task(db, task_id))


@router.delete("/{task_id}")
async def delete_task(
    task_id: str,
    request: Request,
    user: CurrentUser = Depends(require_permission("tasks:write")),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _load_task(db, task_id)
    before = snapshot(task)
    async with transaction(db):
        await db.execute(delete(WorkLog).where(WorkLog.task_id == task_id))
        await db.delete(task)
        record_audit(db, request, user, AuditAction.DELETE, "Task", task_id, old_values=before)
    return {"message": "Task deleted successfully"}
