# routers/teams.py — Teams and team membership
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import Field
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

import emails
from auditing import record_audit, snapshot
from auth import CurrentUser, require_permission
from database import get_db_session, transaction
from errors import Conflict, NotFound, ValidationFailed
from models import AuditAction, Team, TeamProject, User, UserTeam
from outbox import enqueue_mail
from pagination import PageParams, page_envelope, page_params, paginate
from routers.common import get_or_404
from schemas import ApiModel, UserBrief, provided_fields, serialize

logger = logging.getLogger("workhub.teams")

router = APIRouter(prefix="/api/teams", tags=["Teams"])


# --- Schemas ---

class MemberIn(ApiModel):
    user_id: str
    role: str = Field(default="Member", max_length=100)
    note: Optional[str] = None


class TeamCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    members: List[MemberIn] = []


class TeamUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    members: Optional[List[MemberIn]] = None


class AssignMembers(ApiModel):
    user_ids: List[str] = Field(..., min_length=1)
    role: str = Field(default="Member", max_length=100)
    note: Optional[str] = None


class MemberOut(ApiModel):
    user_id: str
    role: Optional[str] = None
    note: Optional[str] = None
    project_id: Optional[str] = None
    user: Optional[UserBrief] = None


class TeamOut(ApiModel):
    id: str
    name: str
    description: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    members: List[MemberOut] = []


def _team_to_out(t: Team) -> dict:
    return serialize(TeamOut, t)


async def _load_team(db: AsyncSession, team_id: str) -> Team:
    return await get_or_404(db, Team, team_id, "Team", selectinload(Team.members))


async def _ensure_name_free(db: AsyncSession, name: str, exclude_id: Optional[str] = None) -> None:
    stmt = select(Team).where(Team.name == name)
    if exclude_id:
        stmt = stmt.where(Team.id != exclude_id)
    if (await db.execute(stmt)).scalar_one_or_none():
        raise Conflict(f"Team '{name}' already exists")


async def _users_by_id(db: AsyncSession, user_ids: List[str]) -> dict:
    if not user_ids:
        return {}
    result = await db.execute(select(User).where(User.id.in_(user_ids)))
    return {u.id: u for u in result.scalars().all()}


async def _require_users(db: AsyncSession, user_ids: List[str]) -> dict:
    users = await _users_by_id(db, user_ids)
    missing = [uid for uid in user_ids if uid not in users]
    if missing:
        raise ValidationFailed("Unknown users", details={"userIds": missing})
    return users


# --- Endpoints ---

@router.post("", status_code=201)
async def create_team(
    body: TeamCreate,
    request: Request,
    user: CurrentUser = Depends(require_permission("teams:write")),
    db: AsyncSession = Depends(get_db_session),
):
    name = body.name.strip()
    await _ensure_name_free(db, name)
    members = {m.user_id: m for m in body.members}
    users = await _require_users(db, list(members))

    try:
        async with transaction(db):
            team = Team(name=name, description=body.description, created_by=user.id)
            db.add(team)
            await db.flush()
            for member in members.values():
                db.add(UserTeam(user_id=member.user_id, team_id=team.id, role=member.role, note=member.note))
                enqueue_mail(db, users[member.user_id].email,
                             emails.team_assignment(users[member.user_id].full_name, name))
            record_audit(db, request, user, AuditAction.CREATE, "Team", team.id,
                         new_values={**snapshot(team), "members": list(members)})
    except IntegrityError:
        raise Conflict(f"Team '{name}' already exists")

    logger.info(f"Team {team.id} created by {user.id} with {len(members)} members")
    return _team_to_out(await _load_team(db, team.id))


@router.get("")
async def list_teams(
    user: CurrentUser = Depends(require_permission("teams:read")),
    db: AsyncSession = Depends(get_db_session),
    paging: PageParams = Depends(page_params()),
    search: Optional[str] = Query(default=None, max_length=200),
):
    stmt = select(Team).options(selectinload(Team.members)).order_by(Team.name)
    if search:
        stmt = stmt.where(Team.name.ilike(f"%{search}%"))
    rows, meta = await paginate(db, stmt, paging)
    return page_envelope(rows, meta, _team_to_out)


@router.get("/{team_id}")
async def get_team(
    team_id: str,
    user: CurrentUser = Depends(require_permission("teams:read")),
    db: AsyncSession = Depends(get_db_session),
):
    return _team_to_out(await _load_team(db, team_id))


@router.put("/{team_id}")
async def update_team(
    team_id: str,
    body: TeamUpdate,
    request: Request,
    user: CurrentUser = Depends(require_permission("teams:write")),
    db: AsyncSession = Depends(get_db_session),
):
    """Update team fields; a members list replaces the whole membership"""
    team = await _load_team(db, team_id)
    fields = provided_fields(body)
    if not fields:
        raise ValidationFailed("No fields to update")
    if fields.get("name"):
        fields["name"] = fields["name"].strip()
        await _ensure_name_free(db, fields["name"], exclude_id=team.id)

    wanted = {m.user_id: m for m in body.members} if body.members is not None else None
    users = await _require_users(db, list(wanted)) if wanted else {}

    before = {**snapshot(team), "members": [m.user_id for m in team.members]}
    async with transaction(db):
        if fields.get("name"):
            team.name = fields["name"]
        if "description" in fields:
            team.description = fields["description"]

        if wanted is not None:
            current = {m.user_id: m for m in team.members}
            for user_id, membership in current.items():
                if user_id not in wanted:
                    await db.delete(membership)
            for user_id, member in wanted.items():
                if user_id in current:
                    current[user_id].role = member.role
                    current[user_id].note = member.note
                else:
                    db.add(UserTeam(user_id=user_id, team_id=team.id, role=member.role, note=member.note))
                    enqueue_mail(db, users[user_id].email, emails.team_assignment(users[user_id].full_name, team.name))

        record_audit(db, request, user, AuditAction.UPDATE, "Team", team.id, old_values=before,
                     new_values={**snapshot(team), "members": list(wanted) if wanted is not None else before["members"]})

    return _team_to_out(await _load_team(db, team_id))


@router.delete("/{team_id}")
async def delete_team(
    team_id: str,
    request: Request,
    user: CurrentUser = Depends(require_permission("teams:write")),
    db: AsyncSession = Depends(get_db_session),
):
    team = await _load_team(db, team_id)
    before = {**snapshot(team), "members": [m.user_id for m in team.members]}
    async with transaction(db):
        await db.execute(delete(TeamProject).where(TeamProject.team_id == team.id))
        await db.delete(team)
        record_audit(db, request, user, AuditAction.DELETE, "Team", team_id, old_values=before)
    return {"message": "Team deleted successfully"}


@router.post("/{team_id}/members")
async def assign_members(
    team_id: str,
    body: AssignMembers,
    request: Request,
    user: CurrentUser = Depends(require_permission("teams:write")),
    db: AsyncSession = Depends(get_db_session),
):
    """Add users to a team; unknown users and existing members are skipped"""
    team = await _load_team(db, team_id)
    users = await _users_by_id(db, body.user_ids)
    existing = {m.user_id for m in team.members}

    added, skipped = [], []
    async with transaction(db):
        for user_id in dict.fromkeys(body.user_ids):
            if user_id not in users or user_id in existing:
                skipped.append(user_id)
                continue
            db.add(UserTeam(user_id=user_id, team_id=team.id, role=body.role, note=body.note))
            enqueue_mail(db, users[user_id].email, emails.team_assignment(users[user_id].full_name, team.name))
            added.append(user_id)
        if added:
            record_audit(db, request, user, AuditAction.UPDATE, "Team", team.id,
                         new_values={"addedMembers": added})

    return {"added": added, "skipped": skipped, "team": _team_to_out(await _load_team(db, team_id))}


@router.delete("/{team_id}/members/{user_id}")
async def unassign_member(
    team_id: str,
    user_id: str,
    request: Request,
    user: CurrentUser = Depends(require_permission("teams:write")),
    db: AsyncSession = Depends(get_db_session),
):
    team = await _load_team(db, team_id)
    membership = next((m for m in team.members if m.user_id == user_id), None)
    if membership is None:
        raise NotFound("User is not a member of this team")

    async with transaction(db):
        await db.delete(membership)
        record_audit(db, request, user, AuditAction.UPDATE, "Team", team.id,
                     new_values={"removedMember": user_id})

    return {"message": "User removed from team"}
