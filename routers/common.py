# routers/common.py — Lookups shared by the resource routers
from typing import List, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import AuthService
from errors import Conflict, NotFound
from models import User, UserRole


async def get_or_404(db: AsyncSession, model, object_id: str, label: str, *options, for_update: bool = False):
    """Load one row by primary key with fresh attributes, or raise NotFound."""
    stmt = (
        select(model)
        .where(model.id == object_id)
        .options(*options)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    row = result.scalar_one_or_none()
    if not row:
        raise NotFound(f"{label} not found")
    return row


async def emails_for_roles(db: AsyncSession, roles: Sequence[UserRole] = (UserRole.ADMIN, UserRole.MANAGER)) -> List[str]:
    """Email addresses of active users holding any of the given roles."""
    result = await db.execute(
        select(User.email)
        .where(User.role.in_(list(roles)))
        .where(User.is_active == True)
        .order_by(User.created_at)
    )
    return list(result.scalars().all())


async def emails_with_permission(db: AsyncSession, permission: str) -> List[str]:
    """Email addresses of active users whose effective permissions include one scope."""
    result = await db.execute(select(User).where(User.is_active == True).order_by(User.created_at))
    return [u.email for u in result.scalars().all() if permission in AuthService.get_user_permissions(u)]


async def ensure_identity_unique(db: AsyncSession, model, email: str, phone_number=None, exclude_id=None) -> None:
    """Raise Conflict when another row of model already uses the email or phone number."""
    stmt = select(model).where(model.email == email)
    if exclude_id:
        stmt = stmt.where(model.id != exclude_id)
    if (await db.execute(stmt)).scalars().first():
        raise Conflict(f"{model.__name__} with this email already exists")
    if phone_number:
        stmt = select(model).where(model.phone_number == phone_number)
        if exclude_id:
            stmt = stmt.where(model.id != exclude_id)
        if (await db.execute(stmt)).scalars().first():
            raise Conflict(f"{model.__name__} with this phone number already exists")


async def next_sequence_code(db: AsyncSession, column, prefix: str, width: int) -> str:
    """Next human-readable code such as PROP-0001, one past the highest issued."""
    result = await db.execute(
        select(column)
        .where(column.like(f"{prefix}-%"))
        .order_by(func.length(column).desc(), column.desc())
        .limit(1)
    )
    last = result.scalar_one_or_none()
    number = int(last.split("-", 1)[1]) + 1 if last else 1
    return f"{prefix}-{number:0{width}d}"
