# auth.py — Authentication & permissions for WorkHub
# Features:
# - JWT access tokens with JTI, for staff users and external clients
# - Built-in roles (admin, manager, staff) with default permission scopes
# - Custom roles adding named permissions on top of the built-in role
# - One-time codes (OTP) for email verification and password reset
# - Per-account lockout after repeated failed logins; wrong OTPs burn the code

import os
import uuid
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session, transaction
from errors import AuthenticationFailed, PermissionDenied, TooManyAttempts, ValidationFailed
from models import User, Client, UserRole, ApprovalStatus, as_utc, utcnow

logger = logging.getLogger("workhub.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY:
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "JWT_SECRET_KEY not set. Generated ephemeral key. "
        "Set JWT_SECRET_KEY in production!"
    )

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
OTP_EXPIRE_MINUTES = int(os.getenv("OTP_EXPIRE_MINUTES", "10"))
MIN_PASSWORD_LENGTH = 8
MAX_LOGIN_ATTEMPTS = 5
LOGIN_LOCKOUT_MINUTES = 15
MAX_OTP_ATTEMPTS = 5

security = HTTPBearer(auto_error=False)


# ============================================================
# PERMISSIONS
# ============================================================

PERMISSIONS = {
    "users:read": "View staff accounts",
    "users:create": "Register staff accounts",
    "users:update": "Edit staff accounts and change roles",
    "users:delete": "Delete staff accounts",
    "roles:read": "View custom roles",
    "roles:write": "Create, edit and delete custom roles",
    "clients:read": "View clients",
    "clients:create": "Create clients",
    "clients:update": "Edit clients",
    "clients:delete": "Delete clients",
    "clients:approve": "Approve or reject client registrations",
    "teams:read": "View teams",
    "teams:write": "Manage teams and memberships",
    "projects:read": "View projects",
    "projects:create": "Create projects",
    "projects:update": "Edit projects and their team/client links",
    "projects:delete": "Delete projects",
    "projects:status": "Change the status of any project",
    "tasks:read": "View tasks",
    "tasks:write": "Create, edit and delete tasks",
    "tasks:status": "Change task status",
    "worklogs:create": "Log hours against own tasks",
    "worklogs:manage": "View and delete anyone's work logs and send weekly summaries",
    "documents:manage": "Edit, review and delete any project document",
    "reports:create": "Write project reports",
    "reports:manage": "Edit, assign and delete any project report",
    "leaves:create": "Request leave",
    "leaves:read": "View leave requests",
    "leaves:manage": "Edit and delete anyone's leave requests",
    "leaves:decide": "Approve or reject leave requests",
    "proposals:view": "View proposals",
    "proposals:create": "Draft proposals",
    "proposals:submit": "Submit own proposals for approval",
    "proposals:approve": "Decide submitted proposals",
    "hse:reports:view": "View HSE reports",
    "hse:reports:create": "File HSE reports",
    "hse:reports:update": "Edit HSE reports and change their status",
    "hse:reports:delete": "Delete HSE reports",
    "hse:documents:view": "View HSE documents",
    "hse:documents:manage": "Upload and manage HSE documents",
    "hse:analytics": "View HSE analytics",
    "finance:submit": "Submit expense requests",
    "finance:approve": "Approve or reject expense requests",
    "finance:dashboard": "View finance KPIs",
    "audit:read": "View and export the audit log",
    "outbox:manage": "Inspect and retry outgoing email",
    "client:self": "Client self-service",
}

_STAFF_PERMISSIONS = [
    "teams:read",
    "projects:read",
    "tasks:read",
    "worklogs:create",
    "reports:create",
    "leaves:create", "leaves:read",
    "proposals:view", "proposals:create", "proposals:submit",
    "hse:reports:view", "hse:reports:create",
    "hse:documents:view", "hse:documents:manage",
    "finance:submit",
]

_MANAGER_PERMISSIONS = _STAFF_PERMISSIONS + [
    "users:read",
    "clients:read", "clients:create", "clients:update",
    "teams:write",
    "projects:create", "projects:update", "projects:delete", "projects:status",
    "tasks:write", "tasks:status",
    "worklogs:manage", "documents:manage", "reports:manage",
    "leaves:manage", "leaves:decide",
    "proposals:approve",
    "hse:reports:update", "hse:analytics",
    "finance:approve", "finance:dashboard",
]

ROLE_PERMISSIONS = {
    UserRole.ADMIN: [p for p in PERMISSIONS if p != "client:self"],
    UserRole.MANAGER: _MANAGER_PERMISSIONS,
    UserRole.STAFF: _STAFF_PERMISSIONS,
}

CLIENT_PERMISSIONS = ["client:self", "projects:read"]


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class CurrentUser(BaseModel):
    id: str
    email: str
    name: str
    kind: str = "user"
    role: str
    permissions: List[str] = []

    @property
    def is_client(self) -> bool:
        return self.kind == "client"


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Password, token and one-time code handling"""

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

    @staticmethod
    def generate_password() -> str:
        return secrets.token_hex(8)

    @staticmethod
    def _create_token(data: Dict[str, Any], token_type: str, expires_delta: timedelta) -> str:
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        to_encode.update({
            "exp": now + expires_delta,
            "iat": now,
            "type": token_type,
            "jti": str(uuid.uuid4()),
        })
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        delta = expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
        return AuthService._create_token(data, "access", delta)

    @staticmethod
    def token_for_user(user: User) -> str:
        return AuthService.create_access_token({
            "sub": user.id,
            "kind": "user",
            "role": user.role.value if isinstance(user.role, UserRole) else user.role,
            "permissions": AuthService.get_user_permissions(user),
        })

    @staticmethod
    def token_for_client(client: Client) -> str:
        return AuthService.create_access_token({
            "sub": client.id,
            "kind": "client",
            "role": "client",
            "permissions": CLIENT_PERMISSIONS,
        })

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
            return payload
        except ExpiredSignatureError:
            raise AuthenticationFailed("Token expired")
        except JWTError:
            raise AuthenticationFailed("Invalid token")

    # --- Lockout ---

    @staticmethod
    def _check_locked(entity) -> None:
        if entity.locked_until and as_utc(entity.locked_until) > utcnow():
            raise TooManyAttempts(
                f"Too many failed attempts. Try again in {LOGIN_LOCKOUT_MINUTES} minutes."
            )

    @staticmethod
    async def _record_failed_login(db: AsyncSession, entity) -> None:
        """Count a wrong password on the account row; reaching the limit locks the account."""
        async with transaction(db):
            entity.failed_login_attempts = (entity.failed_login_attempts or 0) + 1
            if entity.failed_login_attempts >= MAX_LOGIN_ATTEMPTS:
                entity.failed_login_attempts = 0
                entity.locked_until = utcnow() + timedelta(minutes=LOGIN_LOCKOUT_MINUTES)
                logger.warning(f"{type(entity).__name__} {entity.id} locked after {MAX_LOGIN_ATTEMPTS} failed logins")

    # --- One-time codes ---

    @staticmethod
    def issue_otp(entity) -> str:
        """Store a hashed 6-digit code with an absolute expiry; return the plaintext."""
        code = f"{secrets.randbelow(1_000_000):06d}"
        entity.otp_hash = AuthService.hash_password(code)
        entity.otp_expires_at = utcnow() + timedelta(minutes=OTP_EXPIRE_MINUTES)
        entity.otp_attempts = 0
        return code

    @staticmethod
    def clear_otp(entity) -> None:
        entity.otp_hash = None
        entity.otp_expires_at = None
        entity.otp_attempts = 0

    @staticmethod
    async def consume_otp(db: AsyncSession, entity, code: str) -> None:
        """Check a submitted code and invalidate it on success.

        Raises ValidationFailed when no code is outstanding, when it has
        expired, or when it does not match. Each mismatch is committed on
        the account row straight away; after MAX_OTP_ATTEMPTS of them the
        code is discarded and TooManyAttempts is raised. On success the code
        is cleared in memory and the caller's transaction commits it.
        """
        if not entity.otp_hash or not entity.otp_expires_at:
            raise ValidationFailed("No valid OTP found. Please request a new one.")
        if utcnow() > as_utc(entity.otp_expires_at):
            raise ValidationFailed("OTP has expired. Please request a new one.")
        if not AuthService.verify_password(code, entity.otp_hash):
            async with transaction(db):
                entity.otp_attempts = (entity.otp_attempts or 0) + 1
                burned = entity.otp_attempts >= MAX_OTP_ATTEMPTS
                if burned:
                    AuthService.clear_otp(entity)
            if burned:
                raise TooManyAttempts("Too many wrong codes. Please request a new one.")
            raise ValidationFailed("Invalid OTP")

        AuthService.clear_otp(entity)

    # --- Login ---

    @staticmethod
    async def authenticate(model, email: str, password: str, db: AsyncSession):
        """Return the User or Client row matching the credentials, or None.

        Failed attempts are counted on the account row, so unknown emails
        leave nothing behind and a lockout holds across workers and restarts.
        """
        result = await db.execute(select(model).where(model.email == email))
        entity = result.scalar_one_or_none()
        if not entity:
            return None

        AuthService._check_locked(entity)
        if not AuthService.verify_password(password, entity.password_hash):
            await AuthService._record_failed_login(db, entity)
            return None

        if isinstance(entity, User) and not entity.is_active:
            return None

        if entity.failed_login_attempts or entity.locked_until:
            async with transaction(db):
                entity.failed_login_attempts = 0
                entity.locked_until = None
        return entity

    @staticmethod
    def get_user_permissions(user: User) -> List[str]:
        try:
            permissions = list(ROLE_PERMISSIONS[UserRole(user.role)])
        except (ValueError, KeyError):
            permissions = list(ROLE_PERMISSIONS[UserRole.STAFF])
        if user.custom_role is not None:
            for name in user.custom_role.permissions or []:
                if name not in permissions:
                    permissions.append(name)
        return permissions


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentUser:
    if credentials is None:
        raise AuthenticationFailed("Not authenticated")

    payload = AuthService.verify_token(credentials.credentials)

    if payload.get("type") != "access":
        raise AuthenticationFailed("Invalid token type")

    subject_id = payload.get("sub")
    if not subject_id:
        raise AuthenticationFailed("Invalid token")

    if payload.get("kind") == "client":
        result = await db.execute(select(Client).where(Client.id == subject_id))
        client = result.scalar_one_or_none()
        if not client:
            raise AuthenticationFailed("Client not found")
        if client.approval_status != ApprovalStatus.APPROVED:
            raise PermissionDenied("Client account is not approved")
        return CurrentUser(
            id=client.id,
            email=client.email,
            name=client.full_name,
            kind="client",
            role="client",
            permissions=CLIENT_PERMISSIONS,
        )

    result = await db.execute(select(User).where(User.id == subject_id))
    user = result.scalar_one_or_none()

    if not user or not user.is_active:
        raise AuthenticationFailed("User not found or inactive")

    return CurrentUser(
        id=user.id,
        email=user.email,
        name=user.full_name,
        kind="user",
        role=user.role.value if isinstance(user.role, UserRole) else user.role,
        permissions=AuthService.get_user_permissions(user),
    )


async def get_current_client(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_client:
        raise PermissionDenied("Client account required")
    return user


def require_permission(*scopes: str):
    """Dependency factory: require user to have specific permission scopes"""
    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        for scope in scopes:
            if scope not in user.permissions:
                raise PermissionDenied(f"Missing required permission: {scope}")
        return user
    return _check
