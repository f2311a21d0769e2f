# auditing.py — Change tracking rows written alongside the change
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from fastapi import Request
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser
from models import Audit, AuditAction

# Never copied into audit snapshots
REDACTED_COLUMNS = {"password_hash", "otp_hash"}


def _json_safe(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def snapshot(row, only: Optional[Iterable[str]] = None) -> Dict[str, Any]:
    """Column values of an ORM row as a JSON-safe dict."""
    if row is None:
        return {}
    columns = [c.key for c in inspect(row).mapper.column_attrs]
    if only is not None:
        wanted = set(only)
        columns = [c for c in columns if c in wanted]
    return {
        c: _json_safe(getattr(row, c))
        for c in columns
        if c not in REDACTED_COLUMNS
    }


def record_audit(
    db: AsyncSession,
    request: Optional[Request],
    actor: Optional[CurrentUser],
    action: AuditAction,
    model: str,
    record_id: Optional[str],
    old_values: Optional[dict] = None,
    new_values: Optional[dict] = None,
) -> Audit:
    """Add an audit row to the caller's transaction."""
    entry = Audit(
        user_id=actor.id if actor is not None and not actor.is_client else None,
        actor_type=actor.kind if actor is not None else None,
        actor_id=actor.id if actor is not None else None,
        action=action,
        model=model,
        record_id=record_id,
        old_values=old_values,
        new_values=new_values,
        ip_address=request.client.host if request is not None and request.client else None,
        user_agent=request.headers.get("user-agent") if request is not None else None,
        request_id=getattr(request.state, "request_id", None) if request is not None else None,
    )
    db.add(entry)
    return entry
