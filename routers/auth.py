# routers/auth.py — Staff registration, login and one-time code flows
import logging

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from pydantic import EmailStr, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

import emails
from auditing import record_audit, snapshot
from auth import AuthService, CurrentUser, MIN_PASSWORD_LENGTH, get_current_user
from database import get_db_session, transaction
from errors import AuthenticationFailed, Conflict, NotFound, PermissionDenied, ValidationFailed
from models import AuditAction, User, UserRole, utcnow
from outbox import enqueue_mail
from policy import require
from routers.common import ensure_identity_unique, get_or_404
from schemas import ApiModel, UserOut, serialize
from storage import delete_stored, store_upload

logger = logging.getLogger("workhub.auth")

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


# --- Schemas ---

class LoginRequest(ApiModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class EmailRequest(ApiModel):
    email: EmailStr


class VerifyEmailRequest(ApiModel):
    email: EmailStr
    otp: str = Field(..., min_length=6, max_length=6)


class ResetPasswordRequest(ApiModel):
    email: EmailStr
    otp: str = Field(..., min_length=6, max_length=6)
    new_password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)


class ChangePasswordRequest(ApiModel):
    current_password: str
    new_password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)


# --- One-time code flows shared with client accounts ---

async def _find_by_email(db: AsyncSession, model, email: str):
    result = await db.execute(select(model).where(model.email == email.lower()))
    entity = result.scalar_one_or_none()
    if not entity:
        raise NotFound(f"{model.__name__} not found")
    return entity


async def verify_email_flow(db: AsyncSession, model, body: VerifyEmailRequest) -> dict:
    entity = await _find_by_email(db, model, body.email)
    if entity.email_verified:
        raise ValidationFailed("Email is already verified")
    await AuthService.consume_otp(db, entity, body.otp)
    async with transaction(db):
        entity.email_verified = True
    logger.info(f"{model.__name__} {entity.id} verified their email")
    return {"message": "Email verified successfully"}


async def resend_verification_flow(db: AsyncSession, model, body: EmailRequest) -> dict:
    entity = await _find_by_email(db, model, body.email)
    if entity.email_verified:
        raise ValidationFailed("Email is already verified")
    async with transaction(db):
        otp = AuthService.issue_otp(entity)
        enqueue_mail(db, entity.email, emails.verification_code(entity.full_name, otp))
    return {"message": "Verification code sent"}


async def forgot_password_flow(db: AsyncSession, model, body: EmailRequest) -> dict:
    entity = await _find_by_email(db, model, body.email)
    async with transaction(db):
        otp = AuthService.issue_otp(entity)
        enqueue_mail(db, entity.email, emails.password_reset_code(entity.full_name, otp))
    return {"message": "Password reset code sent"}


async def reset_password_flow(db: AsyncSession, model, body: ResetPasswordRequest) -> dict:
    entity = await _find_by_email(db, model, body.email)
    await AuthService.consume_otp(db, entity, body.otp)
    async with transaction(db):
        entity.password_hash = AuthService.hash_password(body.new_password)
        entity.failed_login_attempts = 0
        entity.locked_until = None
    logger.info(f"{model.__name__} {entity.id} reset their password")
    return {"message": "Password reset successfully"}


# --- Endpoints ---

@router.post("/register", status_code=201)
async def register(
    request: Request,
    first_name: str = Form(..., alias="firstName", min_length=1),
    last_name: str = Form(..., alias="lastName", min_length=1),
    email: EmailStr = Form(...),
    phone_number: str = Form(..., alias="phoneNumber", min_length=1),
    role: UserRole = Form(default=UserRole.STAFF),
    image: UploadFile = File(...),
    user: CurrentUser = Depends(require("user.register")),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a staff account with a generated password and email the credentials"""
    email = email.lower()
    phone_number = phone_number.strip()
    await ensure_identity_unique(db, User, email, phone_number)

    stored = await store_upload(image, "users")
    password = AuthService.generate_password()
    try:
        async with transaction(db):
            new_user = User(
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                email=email,
                phone_number=phone_number,
                password_hash=AuthService.hash_password(password),
                role=role,
                image_url=stored.url,
                email_verified=False,
            )
            otp = AuthService.issue_otp(new_user)
            db.add(new_user)
            await db.flush()
            record_audit(db, request, user, AuditAction.CREATE, "User", new_user.id,
                         new_values=snapshot(new_user))
            enqueue_mail(db, email, emails.welcome_user(new_user.full_name, email, password, otp))
    except IntegrityError:
        delete_stored(stored.url)
        raise Conflict("User with this email or phone number already exists")
    except Exception:
        delete_stored(stored.url)
        raise

    logger.info(f"User {new_user.id} registered by {user.id}")
    created = await get_or_404(db, User, new_user.id, "User")
    return {"message": "User registered successfully", "user": serialize(UserOut, created)}


@router.post("/login")
async def login(
    body: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
):
    """Authenticate and receive an access token"""
    user = await AuthService.authenticate(User, body.email.lower(), body.password, db)
    if not user:
        raise AuthenticationFailed("Invalid credentials")
    if not user.email_verified:
        raise PermissionDenied("Please verify your email before logging in")

    async with transaction(db):
        user.last_login_at = utcnow()
        actor = CurrentUser(id=user.id, email=user.email, name=user.full_name, role=user.role.value)
        record_audit(db, request, actor, AuditAction.LOGIN, "User", user.id)

    return {
        "message": "Login successful",
        "token": AuthService.token_for_user(user),
        "user": serialize(UserOut, user),
    }


@router.post("/logout")
async def logout(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Record the end of a session"""
    async with transaction(db):
        record_audit(db, request, user, AuditAction.LOGOUT, "Client" if user.is_client else "User", user.id)
    return {"message": "Logged out"}


@router.post("/verify-email")
async def verify_email(body: VerifyEmailRequest, db: AsyncSession = Depends(get_db_session)):
    return await verify_email_flow(db, User, body)


@router.post("/resend-verification")
async def resend_verification(body: EmailRequest, db: AsyncSession = Depends(get_db_session)):
    return await resend_verification_flow(db, User, body)


@router.post("/forgot-password")
async def forgot_password(body: EmailRequest, db: AsyncSession = Depends(get_db_session)):
    return await forgot_password_flow(db, User, body)


@router.post("/reset-password")
async def reset_password(body: ResetPasswordRequest, db: AsyncSession = Depends(get_db_session)):
    return await reset_password_flow(db, User, body)


@router.get("/me")
async def get_current_user_info(user: CurrentUser = Depends(get_current_user)):
    """Get current authenticated identity and its permissions"""
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "kind": user.kind,
        "role": user.role,
        "permissions": user.permissions,
    }


@router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Change current user's password"""
    if user.is_client:
        raise PermissionDenied("Clients change their password with a reset code")
    user_obj = await get_or_404(db, User, user.id, "User")

    if not AuthService.verify_password(body.current_password, user_obj.password_hash):
        raise AuthenticationFailed("Current password is incorrect")

    async with transaction(db):
        user_obj.password_hash = AuthService.hash_password(body.new_password)
        record_audit(db, request, user, AuditAction.UPDATE, "User", user.id,
                     new_values={"password": "changed"})

    return {"message": "Password updated successfully"}
