# routers/clients.py — External client accounts and their approval workflow
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from pydantic import EmailStr, Field
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

import emails
from auditing import record_audit, snapshot
from auth import (
    CLIENT_PERMISSIONS, MIN_PASSWORD_LENGTH, AuthService, CurrentUser,
    get_current_client, require_permission,
)
from database import get_db_session, transaction
from errors import AuthenticationFailed, Conflict, PermissionDenied, ValidationFailed
from models import ApprovalStatus, AuditAction, Client, ClientProject, utcnow
from outbox import enqueue_mail
from pagination import PageParams, page_envelope, page_params, paginate
from policy import require
from routers.auth import (
    EmailRequest, LoginRequest, ResetPasswordRequest, VerifyEmailRequest,
    forgot_password_flow, reset_password_flow, resend_verification_flow, verify_email_flow,
)
from routers.common import emails_with_permission, ensure_identity_unique, get_or_404
from schemas import ApiModel, ClientOut, serialize
from storage import check_file_count, delete_stored, store_upload, store_uploads
from workflow import CLIENT_APPROVAL, attempt_transition

logger = logging.getLogger("workhub.clients")

router = APIRouter(prefix="/api/clients", tags=["Clients"])


# --- Schemas ---

class ApprovalDecision(ApiModel):
    status: ApprovalStatus
    reason: Optional[str] = Field(default=None, max_length=2000)


def _client_to_out(c: Client) -> dict:
    return serialize(ClientOut, c)


def _as_actor(client: Client) -> CurrentUser:
    return CurrentUser(
        id=client.id, email=client.email, name=client.full_name,
        kind="client", role="client", permissions=CLIENT_PERMISSIONS,
    )


async def _store_all(uploads: List[UploadFile], folder: str) -> List[str]:
    return [s.url for s in await store_uploads(uploads, folder)]


# --- Self-service ---

@router.post("/register", status_code=201)
async def register_client(
    request: Request,
    first_name: str = Form(..., alias="firstName", min_length=1),
    last_name: str = Form(..., alias="lastName", min_length=1),
    email: EmailStr = Form(...),
    password: str = Form(..., min_length=MIN_PASSWORD_LENGTH),
    phone_number: Optional[str] = Form(default=None, alias="phoneNumber"),
    company: Optional[str] = Form(default=None),
    documents: List[UploadFile] = File(...),
    db: AsyncSession = Depends(get_db_session),
):
    """Public registration; the account stays pending until an admin approves it"""
    email = email.lower()
    phone_number = phone_number.strip() if phone_number else None
    check_file_count(documents, minimum=1)
    await ensure_identity_unique(db, Client, email, phone_number)

    urls = await _store_all(documents, "clients")
    try:
        async with transaction(db):
            client = Client(
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                email=email,
                phone_number=phone_number,
                company=company,
                password_hash=AuthService.hash_password(password),
                documents=urls,
                approval_status=ApprovalStatus.PENDING,
            )
            otp = AuthService.issue_otp(client)
            db.add(client)
            await db.flush()
            record_audit(db, request, _as_actor(client), AuditAction.CREATE, "Client", client.id,
                         new_values=snapshot(client))
            enqueue_mail(db, email, emails.verification_code(client.full_name, otp))
            enqueue_mail(db, await emails_with_permission(db, "clients:approve"),
                         emails.client_registration_received(client.full_name, email))
    except IntegrityError:
        for url in urls:
            delete_stored(url)
        raise Conflict("Client with this email or phone number already exists")
    except Exception:
        for url in urls:
            delete_stored(url)
        raise

    logger.info(f"Client {client.id} self-registered, awaiting approval")
    return {"message": "Registration received and awaiting approval", "client": _client_to_out(client)}


@router.post("/login")
async def login_client(
    body: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
):
    client = await AuthService.authenticate(Client, body.email.lower(), body.password, db)
    if not client:
        raise AuthenticationFailed("Invalid credentials")
    if not client.email_verified:
        raise PermissionDenied("Please verify your email before logging in")
    if client.approval_status != ApprovalStatus.APPROVED:
        raise PermissionDenied(
            f"Your account is {client.approval_status.value}",
            details={"approvalStatus": client.approval_status.value},
        )

    async with transaction(db):
        client.last_login_at = utcnow()
        record_audit(db, request, _as_actor(client), AuditAction.LOGIN, "Client", client.id)

    return {
        "message": "Login successful",
        "token": AuthService.token_for_client(client),
        "client": _client_to_out(client),
    }


@router.post("/verify-email")
async def verify_client_email(body: VerifyEmailRequest, db: AsyncSession = Depends(get_db_session)):
    return await verify_email_flow(db, Client, body)


@router.post("/resend-verification")
async def resend_client_verification(body: EmailRequest, db: AsyncSession = Depends(get_db_session)):
    return await resend_verification_flow(db, Client, body)


@router.post("/forgot-password")
async def forgot_client_password(body: EmailRequest, db: AsyncSession = Depends(get_db_session)):
    return await forgot_password_flow(db, Client, body)


@router.post("/reset-password")
async def reset_client_password(body: ResetPasswordRequest, db: AsyncSession = Depends(get_db_session)):
    return await reset_password_flow(db, Client, body)


@router.post("/resubmit")
async def resubmit_documents(
    request: Request,
    email: EmailStr = Form(...),
    password: str = Form(...),
    documents: List[UploadFile] = File(...),
    db: AsyncSession = Depends(get_db_session),
):
    """Upload new registration documents and send the account back for review.

    Authenticates with the account password because clients that are not
    approved cannot hold a session.
    """
    client = await AuthService.authenticate(Client, email.lower(), password, db)
    if not client:
        raise AuthenticationFailed("Invalid credentials")
    check_file_count(documents, minimum=1)

    actor = _as_actor(client)
    urls = await _store_all(documents, "clients")
    before = snapshot(client, only=["approval_status", "documents"])
    try:
        async with transaction(db):
            attempt_transition(CLIENT_APPROVAL, client, ApprovalStatus.PENDING, actor, owns=True)
            client.documents = list(client.documents or []) + urls
            client.approval_note = None
            record_audit(db, request, actor, AuditAction.UPDATE, "Client", client.id,
                         old_values=before, new_values=snapshot(client, only=["approval_status", "documents"]))
            enqueue_mail(db, await emails_with_permission(db, "clients:approve"),
                         emails.client_registration_received(client.full_name, client.email))
    except Exception:
        for url in urls:
            delete_stored(url)
        raise

    return {"message": "Documents submitted for review", "client": _client_to_out(client)}


@router.get("/me")
async def get_my_account(
    user: CurrentUser = Depends(get_current_client),
    db: AsyncSession = Depends(get_db_session),
):
    return _client_to_out(await get_or_404(db, Client, user.id, "Client"))


# --- Administration ---

@router.post("", status_code=201)
async def create_client(
    request: Request,
    first_name: str = Form(..., alias="firstName", min_length=1),
    last_name: str = Form(..., alias="lastName", min_length=1),
    email: EmailStr = Form(...),
    phone_number: Optional[str] = Form(default=None, alias="phoneNumber"),
    company: Optional[str] = Form(default=None),
    image: Optional[UploadFile] = File(default=None),
    documents: Optional[List[UploadFile]] = File(default=None),
    user: CurrentUser = Depends(require_permission("clients:create")),
    db: AsyncSession = Depends(get_db_session),
):
    """Create an approved client account and email generated credentials"""
    email = email.lower()
    phone_number = phone_number.strip() if phone_number else None
    await ensure_identity_unique(db, Client, email, phone_number)

    image_url = (await store_upload(image, "clients")).url if image is not None else None
    urls: List[str] = []
    password = AuthService.generate_password()
    try:
        urls = await _store_all(documents or [], "clients")
        async with transaction(db):
            client = Client(
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                email=email,
                phone_number=phone_number,
                company=company,
                password_hash=AuthService.hash_password(password),
                image_url=image_url,
                documents=urls,
                approval_status=ApprovalStatus.APPROVED,
            )
            otp = AuthService.issue_otp(client)
            db.add(client)
            await db.flush()
            record_audit(db, request, user, AuditAction.CREATE, "Client", client.id,
                         new_values=snapshot(client))
            enqueue_mail(db, email, emails.welcome_user(client.full_name, email, password, otp))
    except IntegrityError:
        for url in urls + [image_url]:
            delete_stored(url)
        raise Conflict("Client with this email or phone number already exists")
    except Exception:
        for url in urls + [image_url]:
            delete_stored(url)
        raise

    logger.info(f"Client {client.id} created by {user.id}")
    return {"message": "Client created successfully", "client": _client_to_out(client)}


@router.get("")
async def list_clients(
    user: CurrentUser = Depends(require_permission("clients:read")),
    db: AsyncSession = Depends(get_db_session),
    paging: PageParams = Depends(page_params()),
    first_name: Optional[str] = Query(default=None, alias="firstName"),
    last_name: Optional[str] = Query(default=None, alias="lastName"),
    email: Optional[str] = None,
    company: Optional[str] = None,
    approval_status: Optional[ApprovalStatus] = Query(default=None, alias="approvalStatus"),
):
    stmt = select(Client).order_by(Client.created_at.desc())
    if first_name:
        stmt = stmt.where(Client.first_name.ilike(f"%{first_name}%"))
    if last_name:
        stmt = stmt.where(Client.last_name.ilike(f"%{last_name}%"))
    if email:
        stmt = stmt.where(Client.email.ilike(f"%{email}%"))
    if company:
        stmt = stmt.where(Client.company.ilike(f"%{company}%"))
    if approval_status:
        stmt = stmt.where(Client.approval_status == approval_status)

    rows, meta = await paginate(db, stmt, paging)
    return page_envelope(rows, meta, _client_to_out)


@router.get("/{client_id}")
async def get_client(
    client_id: str,
    user: CurrentUser = Depends(require_permission("clients:read")),
    db: AsyncSession = Depends(get_db_session),
):
    return _client_to_out(await get_or_404(db, Client, client_id, "Client"))


@router.put("/{client_id}")
async def update_client(
    client_id: str,
    request: Request,
    first_name: Optional[str] = Form(default=None, alias="firstName"),
    last_name: Optional[str] = Form(default=None, alias="lastName"),
    email: Optional[EmailStr] = Form(default=None),
    phone_number: Optional[str] = Form(default=None, alias="phoneNumber"),
    company: Optional[str] = Form(default=None),
    image: Optional[UploadFile] = File(default=None),
    user: CurrentUser = Depends(require_permission("clients:update")),
    db: AsyncSession = Depends(get_db_session),
):
    client = await get_or_404(db, Client, client_id, "Client")
    changes = {
        k: v.strip() for k, v in {
            "first_name": first_name,
            "last_name": last_name,
            "email": email.lower() if email else None,
            "phone_number": phone_number,
            "company": company,
        }.items() if v is not None and v.strip()
    }
    if not changes and image is None:
        raise ValidationFailed("No fields to update")
    if "email" in changes or "phone_number" in changes:
        await ensure_identity_unique(
            db, Client, changes.get("email", client.email), changes.get("phone_number"),
            exclude_id=client.id,
        )

    old_image = client.image_url
    stored = await store_upload(image, "clients") if image is not None else None
    before = snapshot(client)
    try:
        async with transaction(db):
            for key, value in changes.items():
                setattr(client, key, value)
            if stored:
                client.image_url = stored.url
            record_audit(db, request, user, AuditAction.UPDATE, "Client", client.id,
                         old_values=before, new_values=snapshot(client))
    except IntegrityError:
        if stored:
            delete_stored(stored.url)
        raise Conflict("Client with this email or phone number already exists")
    except Exception:
        if stored:
            delete_stored(stored.url)
        raise

    if stored and old_image:
        delete_stored(old_image)
    return {"message": "Client updated successfully", "client": _client_to_out(client)}


@router.patch("/{client_id}/approval")
async def decide_client_approval(
    client_id: str,
    body: ApprovalDecision,
    request: Request,
    user: CurrentUser = Depends(require("client.approve")),
    db: AsyncSession = Depends(get_db_session),
):
    """Approve or reject a pending client registration"""
    if body.status == ApprovalStatus.PENDING:
        raise ValidationFailed("Decision must be 'approved' or 'rejected'")
    client = await get_or_404(db, Client, client_id, "Client", for_update=True)

    async with transaction(db):
        previous = attempt_transition(CLIENT_APPROVAL, client, body.status, user)
        client.approval_note = body.reason
        record_audit(db, request, user, AuditAction.UPDATE, "Client", client.id,
                     old_values={"approval_status": previous.value},
                     new_values={"approval_status": body.status.value, "approval_note": body.reason})
        enqueue_mail(db, client.email,
                     emails.client_approval_decision(client.full_name, body.status.value, body.reason))

    logger.info(f"Client {client.id} {body.status.value} by {user.id}")
    return {"message": f"Client {body.status.value}", "client": _client_to_out(client)}


@router.delete("/{client_id}")
async def delete_client(
    client_id: str,
    request: Request,
    user: CurrentUser = Depends(require_permission("clients:delete")),
    db: AsyncSession = Depends(get_db_session),
):
    client = await get_or_404(db, Client, client_id, "Client")
    before = snapshot(client)
    files = list(client.documents or []) + [client.image_url]
    async with transaction(db):
        await db.execute(delete(ClientProject).where(ClientProject.client_id == client.id))
        await db.delete(client)
        record_audit(db, request, user, AuditAction.DELETE, "Client", client_id, old_values=before)

    for url in files:
        delete_stored(url)
    return {"message": "Client deleted successfully"}
