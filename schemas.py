# schemas.py — Shared pydantic base for the camelCase JSON wire format
from datetime import datetime
from typing import Any, List, Optional, Type

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from models import ApprovalStatus, UserRole


class ApiModel(BaseModel):
    """Python attributes stay snake_case, JSON in and out is camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class UserBrief(ApiModel):
    id: str
    first_name: str
    last_name: str
    email: str


class UserOut(ApiModel):
    id: str
    first_name: str
    last_name: str
    email: str
    phone_number: Optional[str] = None
    role: UserRole
    role_id: Optional[str] = None
    image_url: Optional[str] = None
    email_verified: bool = False
    is_active: bool = True
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ClientOut(ApiModel):
    id: str
    first_name: str
    last_name: str
    email: str
    phone_number: Optional[str] = None
    company: Optional[str] = None
    image_url: Optional[str] = None
    documents: Optional[List[str]] = None
    approval_status: ApprovalStatus
    approval_note: Optional[str] = None
    email_verified: bool = False
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def serialize(model: Type[BaseModel], obj: Any) -> dict:
    """Render an ORM row through an output schema as a JSON-ready dict."""
    return model.model_validate(obj).model_dump(by_alias=True, mode="json")


def provided_fields(body: BaseModel) -> dict:
    """Fields the caller actually sent, keyed by attribute name."""
    return body.model_dump(exclude_unset=True)
