# routers/projects.py — Projects, their teams and clients, and the project status workflow
import logging
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import Field, model_validator
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

import emails
from auditing import record_audit, snapshot
from auth import CurrentUser, get_current_user, require_permission
from database import get_db_session, transaction
from errors import Conflict, NotFound, ValidationFailed
from models import (
    AuditAction, Client, ClientProject, Project, ProjectDocument, ProjectReport, ProjectStatus,
    TaskPriority, TaskStatus, Team, TeamProject, User, UserTeam, WorkLog,
)
from outbox import enqueue_mail
from pagination import PageParams, page_envelope, page_params, paginate
from policy import authorize_or_hide, can, require
from routers.common import emails_for_roles, get_or_404
from schemas import ApiModel, UserBrief, provided_fields, serialize
from storage import delete_stored
from workflow import PROJECT, attempt_transition

logger = logging.getLogger("workhub.projects")

router = APIRouter(prefix="/api/projects", tags=["Projects"])


# --- Schemas ---

class ProjectCreate(ApiModel):
    project_name: str = Field(..., min_length=1, max_length=300)
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    budget: Optional[float] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("endDate must not be before startDate")
        return self


class ProjectUpdate(ProjectCreate):
    project_name: Optional[str] = Field(default=None, min_length=1, max_length=300)


class StatusChange(ApiModel):
    status: str


class TeamLink(ApiModel):
    team_id: str
    note: Optional[str] = None


class ClientLink(ApiModel):
    client_id: str


class TeamBrief(ApiModel):
    id: str
    name: str


class ClientBrief(ApiModel):
    id: str
    first_name: str
    last_name: str
    email: str
    company: Optional[str] = None


class TaskBrief(ApiModel):
    id: str
    title: str
    status: TaskStatus
    priority: Optional[TaskPriority] = None
    due_date: Optional[date] = None
    assigned_to: Optional[str] = None
    assignee: Optional[UserBrief] = None


class ProjectOut(ApiModel):
    id: str
    project_name: str
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    budget: Optional[float] = None
    status: ProjectStatus
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProjectDetailOut(ProjectOut):
    teams: List[TeamBrief] = []
    clients: List[ClientBrief] = []
    tasks: List[TaskBrief] = []


def _project_to_out(p: Project) -> dict:
    return serialize(ProjectOut, p)


# --- Helpers ---

def _member_project_ids(user_id: str):
    return (
        select(TeamProject.project_id)
        .join(UserTeam, UserTeam.team_id == TeamProject.team_id)
        .where(UserTeam.user_id == user_id)
    )


def _client_project_ids(client_id: str):
    return select(ClientProject.project_id).where(ClientProject.client_id == client_id)


def _scope_to_caller(stmt, user: CurrentUser):
    """Restrict a Project query to what the caller may see."""
    if user.is_client:
        return stmt.where(Project.id.in_(_client_project_ids(user.id)))
    if can(user, "project.view"):
        return stmt
    return stmt.where(Project.id.in_(_member_project_ids(user.id)))


async def _is_team_member(db: AsyncSession, project_id: str, user: CurrentUser) -> bool:
    if user.is_client:
        return False
    result = await db.execute(
        _member_project_ids(user.id).where(TeamProject.project_id == project_id).limit(1)
    )
    return result.first() is not None


async def _is_linked_client(db: AsyncSession, project_id: str, user: CurrentUser) -> bool:
    if not user.is_client:
        return False
    result = await db.execute(
        _client_project_ids(user.id).where(ClientProject.project_id == project_id).limit(1)
    )
    return result.first() is not None


async def _load_visible(db: AsyncSession, project_id: str, user: CurrentUser, *options, for_update: bool = False) -> Project:
    """Load a project the caller may see; others get the same 404 as a missing id."""
    project = await get_or_404(db, Project, project_id, "Project", *options, for_update=for_update)
    if can(user, "project.view"):
        return project
    owns = await _is_linked_client(db, project_id, user) or await _is_team_member(db, project_id, user)
    if not can(user, "project.view", owns=owns):
        raise NotFound("Project not found")
    return project


async def _member_users(db: AsyncSession, project_id: str) -> List[User]:
    result = await db.execute(
        select(User)
        .join(UserTeam, UserTeam.user_id == User.id)
        .join(TeamProject, TeamProject.team_id == UserTeam.team_id)
        .where(TeamProject.project_id == project_id)
        .distinct()
    )
    return list(result.scalars().all())


async def _linked_clients(db: AsyncSession, project_id: str) -> List[Client]:
    result = await db.execute(
        select(Client)
        .join(ClientProject, ClientProject.client_id == Client.id)
        .where(ClientProject.project_id == project_id)
    )
    return list(result.scalars().all())


async def _load_detail(db: AsyncSession, project_id: str) -> dict:
    project = await get_or_404(
        db, Project, project_id, "Project",
        selectinload(Project.teams), selectinload(Project.clients), selectinload(Project.tasks),
    )
    return serialize(ProjectDetailOut, project)


# --- Endpoints ---

@router.post("", status_code=201)
async def create_project(
    body: ProjectCreate,
    request: Request,
    user: CurrentUser = Depends(require_permission("projects:create")),
    db: AsyncSession = Depends(get_db_session),
):
    async with transaction(db):
        project = Project(
            project_name=body.project_name.strip(),
            description=body.description,
            start_date=body.start_date,
            end_date=body.end_date,
            budget=body.budget,
            status=ProjectStatus.TODO,
            created_by=user.id,
        )
        db.add(project)
        await db.flush()
        record_audit(db, request, user, AuditAction.CREATE, "Project", project.id, new_values=snapshot(project))

    logger.info(f"Project {project.id} created by {user.id}")
    return _project_to_out(await get_or_404(db, Project, project.id, "Project"))


@router.get("")
async def list_projects(
    user: CurrentUser = Depends(require_permission("projects:read")),
    db: AsyncSession = Depends(get_db_session),
    paging: PageParams = Depends(page_params()),
    project_name: Optional[str] = Query(default=None, alias="projectName"),
    status: Optional[ProjectStatus] = None,
    start_date: Optional[date] = Query(default=None, alias="startDate"),
):
    stmt = _scope_to_caller(select(Project), user).order_by(Project.created_at.desc())
    if project_name:
        stmt = stmt.where(Project.project_name.ilike(f"%{project_name}%"))
    if status:
        stmt = stmt.where(Project.status == status)
    if start_date:
        stmt = stmt.where(Project.start_date >= start_date)

    rows, meta = await paginate(db, stmt, paging)
    return page_envelope(rows, meta, _project_to_out)


@router.get("/mine")
async def my_projects(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Projects the caller belongs to, through a team or as a client"""
    ids = _client_project_ids(user.id) if user.is_client else _member_project_ids(user.id)
    result = await db.execute(select(Project).where(Project.id.in_(ids)).order_by(Project.created_at.desc()))
    return {"items": [_project_to_out(p) for p in result.scalars().all()]}


@router.get("/{project_id}")
async def get_project(
    project_id: str,
    user: CurrentUser = Depends(require_permission("projects:read")),
    db: AsyncSession = Depends(get_db_session),
):
    await _load_visible(db, project_id, user)
    return await _load_detail(db, project_id)


@router.put("/{project_id}")
async def update_project(
    project_id: str,
    body: ProjectUpdate,
    request: Request,
    user: CurrentUser = Depends(require_permission("projects:update")),
    db: AsyncSession = Depends(get_db_session),
):
    project = await get_or_404(db, Project, project_id, "Project")
    changes = {k: v for k, v in provided_fields(body).items() if v is not None}
    if not changes:
        raise ValidationFailed("No fields to update")
    start = changes.get("start_date", project.start_date)
    end = changes.get("end_date", project.end_date)
    if start and end and end < start:
        raise ValidationFailed("endDate must not be before startDate")

    before = snapshot(project)
    async with transaction(db):
        for key, value in changes.items():
            setattr(project, key, value.strip() if key == "project_name" else value)
        record_audit(db, request, user, AuditAction.UPDATE, "Project", project.id,
                     old_values=before, new_values=snapshot(project))

    return _project_to_out(await get_or_404(db, Project, project_id, "Project"))


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    request: Request,
    user: CurrentUser = Depends(require_permission("projects:delete")),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a project with its tasks, work logs, documents, reports and links, and tell its members and clients"""
    project = await get_or_404(db, Project, project_id, "Project", selectinload(Project.tasks))
    members = await _member_users(db, project_id)
    clients = await _linked_clients(db, project_id)
    before = snapshot(project)
    name = project.project_name
    document_urls = list((await db.execute(
        select(ProjectDocument.url).where(ProjectDocument.project_id == project_id)
    )).scalars().all())

    async with transaction(db):
        await db.execute(
            update(UserTeam).where(UserTeam.project_id == project_id).values(project_id=None)
        )
        await db.execute(delete(TeamProject).where(TeamProject.project_id == project_id))
        await db.execute(delete(ClientProject).where(ClientProject.project_id == project_id))
        await db.execute(delete(WorkLog).where(WorkLog.project_id == project_id))
        await db.execute(delete(ProjectDocument).where(ProjectDocument.project_id == project_id))
        await db.execute(delete(ProjectReport).where(ProjectReport.project_id == project_id))
        await db.delete(project)
        record_audit(db, request, user, AuditAction.DELETE, "Project", project_id, old_values=before)
        mail = emails.project_deleted(name)
        enqueue_mail(db, [m.email for m in members], mail)
        for client in clients:
            enqueue_mail(db, client.email, mail)

    for url in document_urls:
        delete_stored(url)
    logger.info(f"Project {project_id} deleted by {user.id}")
    return {"message": "Project deleted successfully"}


@router.post("/{project_id}/status")
async def update_project_status(
    project_id: str,
    body: StatusChange,
    request: Request,
    user: CurrentUser = Depends(require("project.status")),
    db: AsyncSession = Depends(get_db_session),
):
    """Move a project to another status.

    Assigned team members and holders of projects:status may do this.
    Entering Done sends one completion email to each linked client.
    """
    project = await get_or_404(db, Project, project_id, "Project", for_update=True)
    owns = await _is_team_member(db, project_id, user)
    authorize_or_hide(user, "project.status", owns, "Project")

    async with transaction(db):
        previous = attempt_transition(PROJECT, project, body.status, user, owns=owns)
        current = project.status
        if previous != current:
            members = await _member_users(db, project_id)
            staff = await emails_for_roles(db)
            enqueue_mail(
                db,
                [m.email for m in members] + staff,
                emails.project_status_changed(project.project_name, previous.value, current.value, user.name),
            )
            if current == ProjectStatus.DONE:
                for client in await _linked_clients(db, project_id):
                    enqueue_mail(db, client.email, emails.project_completed(client.full_name, project.project_name))
            record_audit(db, request, user, AuditAction.UPDATE, "Project", project.id,
                         old_values={"status": previous.value}, new_values={"status": current.value})

    if previous == current:
        message = f"Project is already {current.value}"
    else:
        logger.info(f"Project {project_id} moved {previous.value} -> {current.value} by {user.id}")
        message = "Project status updated successfully"
    return {"message": message, "project": _project_to_out(await get_or_404(db, Project, project_id, "Project"))}


# --- Teams on a project ---

@router.post("/{project_id}/teams", status_code=201)
async def assign_team(
    project_id: str,
    body: TeamLink,
    request: Request,
    user: CurrentUser = Depends(require_permission("projects:update")),
    db: AsyncSession = Depends(get_db_session),
):
    """Link a team to the project and scope its memberships to it"""
    project = await get_or_404(db, Project, project_id, "Project")
    team = await get_or_404(db, Team, body.team_id, "Team", selectinload(Team.members))
    existing = await db.execute(
        select(TeamProject).where(TeamProject.project_id == project_id, TeamProject.team_id == team.id)
    )
    if existing.scalar_one_or_none():
        raise Conflict("Team is already assigned to this project")

    async with transaction(db):
        db.add(TeamProject(team_id=team.id, project_id=project_id, note=body.note))
        await db.execute(
            update(UserTeam).where(UserTeam.team_id == team.id).values(project_id=project_id)
        )
        for membership in team.members:
            enqueue_mail(db, membership.user.email,
                         emails.project_team_assigned(membership.user.full_name, project.project_name, team.name))
        record_audit(db, request, user, AuditAction.UPDATE, "Project", project_id,
                     new_values={"assignedTeam": team.id, "note": body.note})

    return await _load_detail(db, project_id)


@router.delete("/{project_id}/teams/{team_id}")
async def remove_team(
    project_id: str,
    team_id: str,
    request: Request,
    user: CurrentUser = Depends(require_permission("projects:update")),
    db: AsyncSession = Depends(get_db_session),
):
    await get_or_404(db, Project, project_id, "Project")
    result = await db.execute(
        select(TeamProject).where(TeamProject.project_id == project_id, TeamProject.team_id == team_id)
    )
    link = result.scalar_one_or_none()
    if not link:
        raise NotFound("Team is not assigned to this project")

    async with transaction(db):
        await db.delete(link)
        await db.execute(
            update(UserTeam)
            .where(UserTeam.team_id == team_id, UserTeam.project_id == project_id)
            .values(project_id=None)
        )
        record_audit(db, request, user, AuditAction.UPDATE, "Project", project_id,
                     new_values={"removedTeam": team_id})

    return {"message": "Team removed from project"}


@router.get("/{project_id}/members")
async def project_members(
    project_id: str,
    user: CurrentUser = Depends(require_permission("projects:read")),
    db: AsyncSession = Depends(get_db_session),
):
    await _load_visible(db, project_id, user)
    return {"items": [serialize(UserBrief, u) for u in await _member_users(db, project_id)]}


# --- Clients on a project ---

@router.post("/{project_id}/clients", status_code=201)
async def add_client(
    project_id: str,
    body: ClientLink,
    request: Request,
    user: CurrentUser = Depends(require_permission("projects:update")),
    db: AsyncSession = Depends(get_db_session),
):
    project = await get_or_404(db, Project, project_id, "Project")
    client = await get_or_404(db, Client, body.client_id, "Client")
    existing = await db.execute(
        select(ClientProject).where(ClientProject.project_id == project_id, ClientProject.client_id == client.id)
    )
    if existing.scalar_one_or_none():
        raise Conflict("Client is already linked to this project")

    async with transaction(db):
        db.add(ClientProject(client_id=client.id, project_id=project_id))
        enqueue_mail(db, client.email, emails.project_client_added(client.full_name, project.project_name))
        record_audit(db, request, user, AuditAction.UPDATE, "Project", project_id,
                     new_values={"addedClient": client.id})

    return await _load_detail(db, project_id)


@router.delete("/{project_id}/clients/{client_id}")
async def remove_client(
    project_id: str,
    client_id: str,
    request: Request,
    user: CurrentUser = Depends(require_permission("projects:update")),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(
        select(ClientProject).where(ClientProject.project_id == project_id, ClientProject.client_id == client_id)
    )
    link = result.scalar_one_or_none()
    if not link:
        raise NotFound("Client is not linked to this project")

    async with transaction(db):
        await db.delete(link)
        record_audit(db, request, user, AuditAction.UPDATE, "Project", project_id,
                     new_values={"removedClient": client_id})

    return {"message": "Client removed from project"}
