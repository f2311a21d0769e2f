# routers/roles.py — Custom roles carrying named permissions
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import Field, field_validator
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auditing import record_audit, snapshot
from auth import PERMISSIONS, CurrentUser, get_current_user, require_permission
from database import get_db_session, transaction
from errors import Conflict, ValidationFailed
from models import AuditAction, Role, User
from routers.common import get_or_404
from schemas import ApiModel, provided_fields, serialize

router = APIRouter(prefix="/api/roles", tags=["Roles"])


# --- Schemas ---

def _check_permission_names(names: List[str]) -> List[str]:
    unknown = sorted({n for n in names if n not in PERMISSIONS})
    if unknown:
        raise ValueError(f"Unknown permissions: {', '.join(unknown)}")
    # Keep order, drop duplicates
    return list(dict.fromkeys(names))


class RoleCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    permissions: List[str] = []

    @field_validator("permissions")
    @classmethod
    def validate_permissions(cls, v: List[str]) -> List[str]:
        return _check_permission_names(v)


class RoleUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    permissions: Optional[List[str]] = None

    @field_validator("permissions")
    @classmethod
    def validate_permissions(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _check_permission_names(v) if v is not None else v


class RoleOut(ApiModel):
    id: str
    name: str
    description: Optional[str] = None
    permissions: List[str] = []


async def _ensure_name_free(db: AsyncSession, name: str, exclude_id: Optional[str] = None) -> None:
    stmt = select(Role).where(Role.name == name)
    if exclude_id:
        stmt = stmt.where(Role.id != exclude_id)
    if (await db.execute(stmt)).scalar_one_or_none():
        raise Conflict(f"Role '{name}' already exists")


# --- Endpoints ---

@router.get("/permissions")
async def list_permissions(user: CurrentUser = Depends(get_current_user)):
    """Catalogue of permission names that roles may grant"""
    return {"items": [{"name": k, "description": v} for k, v in PERMISSIONS.items()]}


@router.post("", status_code=201)
async def create_role(
    body: RoleCreate,
    request: Request,
    user: CurrentUser = Depends(require_permission("roles:write")),
    db: AsyncSession = Depends(get_db_session),
):
    name = body.name.strip()
    await _ensure_name_free(db, name)
    try:
        async with transaction(db):
            role = Role(name=name, description=body.description, permissions=body.permissions)
            db.add(role)
            await db.flush()
            record_audit(db, request, user, AuditAction.CREATE, "Role", role.id, new_values=snapshot(role))
    except IntegrityError:
        raise Conflict(f"Role '{name}' already exists")
    return serialize(RoleOut, role)


@router.get("")
async def list_roles(
    user: CurrentUser = Depends(require_permission("roles:read")),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(select(Role).order_by(Role.name))
    return {"items": [serialize(RoleOut, r) for r in result.scalars().all()]}


@router.get("/{role_id}")
async def get_role(
    role_id: str,
    user: CurrentUser = Depends(require_permission("roles:read")),
    db: AsyncSession = Depends(get_db_session),
):
    return serialize(RoleOut, await get_or_404(db, Role, role_id, "Role"))


@router.put("/{role_id}")
async def update_role(
    role_id: str,
    body: RoleUpdate,
    request: Request,
    user: CurrentUser = Depends(require_permission("roles:write")),
    db: AsyncSession = Depends(get_db_session),
):
    role = await get_or_404(db, Role, role_id, "Role")
    changes = {k: v for k, v in provided_fields(body).items() if v is not None}
    if not changes:
        raise ValidationFailed("No fields to update")
    if "name" in changes:
        changes["name"] = changes["name"].strip()
        await _ensure_name_free(db, changes["name"], exclude_id=role.id)

    before = snapshot(role)
    async with transaction(db):
        for key, value in changes.items():
            setattr(role, key, value)
        record_audit(db, request, user, AuditAction.UPDATE, "Role", role.id,
                     old_values=before, new_values=snapshot(role))
    return serialize(RoleOut, role)


@router.delete("/{role_id}")
async def delete_role(
    role_id: str,
    request: Request,
    user: CurrentUser = Depends(require_permission("roles:write")),
    db: AsyncSession = Depends(get_db_session),
):
    role = await get_or_404(db, Role, role_id, "Role")
    before = snapshot(role)
    async with transaction(db):
        await db.execute(update(User).where(User.role_id == role.id).values(role_id=None))
        await db.delete(role)
        record_audit(db, request, user, AuditAction.DELETE, "Role", role_id, old_values=before)
    return {"message": "Role deleted successfully"}
