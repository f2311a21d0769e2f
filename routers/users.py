# routers/users.py — Staff account management
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from pydantic import EmailStr
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

import emails
from auditing import record_audit, snapshot
from auth import CurrentUser, require_permission
from database import get_db_session, transaction
from errors import Conflict, ValidationFailed
from models import AuditAction, Role, User, UserRole
from outbox import enqueue_mail
from pagination import PageParams, page_envelope, page_params, paginate
from policy import authorize, require
from routers.common import ensure_identity_unique, get_or_404
from schemas import ApiModel, UserOut, serialize
from storage import delete_stored, store_upload

logger = logging.getLogger("workhub.users")

router = APIRouter(prefix="/api/users", tags=["Users"])


# --- Schemas ---

class RoleUpdate(ApiModel):
    role: UserRole
    role_id: Optional[str] = None


def _user_to_out(u: User) -> dict:
    return serialize(UserOut, u)


# --- Endpoints ---

@router.get("")
async def list_users(
    user: CurrentUser = Depends(require_permission("users:read")),
    db: AsyncSession = Depends(get_db_session),
    paging: PageParams = Depends(page_params()),
    role: Optional[UserRole] = None,
    first_name: Optional[str] = Query(default=None, alias="firstName"),
    last_name: Optional[str] = Query(default=None, alias="lastName"),
):
    """List staff accounts"""
    stmt = select(User).order_by(User.created_at.desc())
    if role:
        stmt = stmt.where(User.role == role)
    if first_name:
        stmt = stmt.where(User.first_name.ilike(f"%{first_name}%"))
    if last_name:
        stmt = stmt.where(User.last_name.ilike(f"%{last_name}%"))

    rows, meta = await paginate(db, stmt, paging)
    return page_envelope(rows, meta, _user_to_out)


@router.get("/{user_id}")
async def get_user(
    user_id: str,
    user: CurrentUser = Depends(require_permission("users:read")),
    db: AsyncSession = Depends(get_db_session),
):
    target = await get_or_404(db, User, user_id, "User")
    return _user_to_out(target)


@router.put("/{user_id}")
async def update_user(
    user_id: str,
    request: Request,
    first_name: Optional[str] = Form(default=None, alias="firstName"),
    last_name: Optional[str] = Form(default=None, alias="lastName"),
    email: Optional[EmailStr] = Form(default=None),
    phone_number: Optional[str] = Form(default=None, alias="phoneNumber"),
    image: Optional[UploadFile] = File(default=None),
    user: CurrentUser = Depends(require("user.update")),
    db: AsyncSession = Depends(get_db_session),
):
    """Update profile fields; staff may edit themselves, users:update may edit anyone"""
    authorize(user, "user.update", owns=(user_id == user.id))
    target = await get_or_404(db, User, user_id, "User")

    changes = {
        k: v.strip() for k, v in {
            "first_name": first_name,
            "last_name": last_name,
            "email": email.lower() if email else None,
            "phone_number": phone_number,
        }.items() if v is not None and v.strip()
    }
    if not changes and image is None:
        raise ValidationFailed("No fields to update")

    if "email" in changes or "phone_number" in changes:
        await ensure_identity_unique(
            db, User,
            changes.get("email", target.email),
            changes.get("phone_number"),
            exclude_id=target.id,
        )

    old_image = target.image_url
    stored = await store_upload(image, "users") if image is not None else None
    before = snapshot(target)
    try:
        async with transaction(db):
            for key, value in changes.items():
                setattr(target, key, value)
            if stored:
                target.image_url = stored.url
            record_audit(db, request, user, AuditAction.UPDATE, "User", target.id,
                         old_values=before, new_values=snapshot(target))
    except IntegrityError:
        if stored:
            delete_stored(stored.url)
        raise Conflict("User with this email or phone number already exists")

    if stored and old_image:
        delete_stored(old_image)

    updated = await get_or_404(db, User, user_id, "User")
    return {"message": "User updated successfully", "user": _user_to_out(updated)}


@router.put("/{user_id}/role")
async def update_user_role(
    user_id: str,
    body: RoleUpdate,
    request: Request,
    user: CurrentUser = Depends(require("user.change_role")),
    db: AsyncSession = Depends(get_db_session),
):
    """Change a user's built-in role and optional custom role"""
    target = await get_or_404(db, User, user_id, "User")
    if body.role_id:
        await get_or_404(db, Role, body.role_id, "Role")

    before = snapshot(target, only=["role", "role_id"])
    async with transaction(db):
        target.role = body.role
        target.role_id = body.role_id
        record_audit(db, request, user, AuditAction.UPDATE, "User", target.id,
                     old_values=before, new_values=snapshot(target, only=["role", "role_id"]))
        enqueue_mail(db, target.email, emails.role_changed(target.full_name, body.role.value))

    logger.info(f"User {target.id} role set to {body.role.value} by {user.id}")
    updated = await get_or_404(db, User, user_id, "User")
    return {"message": "User role updated successfully", "user": _user_to_out(updated)}


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    request: Request,
    user: CurrentUser = Depends(require("user.delete")),
    db: AsyncSession = Depends(get_db_session),
):
    if user_id == user.id:
        raise ValidationFailed("You cannot delete your own account")
    target = await get_or_404(db, User, user_id, "User")

    before = snapshot(target)
    image_url = target.image_url
    async with transaction(db):
        await db.delete(target)
        record_audit(db, request, user, AuditAction.DELETE, "User", user_id, old_values=before)

    delete_stored(image_url)
    logger.info(f"User {user_id} deleted by {user.id}")
    return {"message": "User deleted successfully"}
