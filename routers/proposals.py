# routers/proposals.py — Sales proposals: drafting, submission and decisions
import logging
from datetime import date, datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import Field, field_validator
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

import emails
from auditing import record_audit, snapshot
from auth import CurrentUser, require_permission
from database import get_db_session, transaction
from errors import Conflict, ValidationFailed
from models import AuditAction, Proposal, ProposalStatus, utcnow
from outbox import enqueue_mail
from pagination import PageParams, page_envelope, page_params, paginate
from policy import require
from routers.common import emails_with_permission, get_or_404, next_sequence_code
from schemas import ApiModel, UserBrief, provided_fields, serialize
from workflow import PROPOSAL, attempt_transition, ensure_deletable, ensure_editable

logger = logging.getLogger("workhub.proposals")

router = APIRouter(prefix="/api/proposals", tags=["Proposals"])

# Attempts at allocating a fresh PROP-NNNN code when two drafts race
CODE_ATTEMPTS = 3


# --- Schemas ---

def _currency(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip().upper()
    if len(v) != 3 or not v.isalpha():
        raise ValueError("currency must be a 3-letter code")
    return v


class ProposalCreate(ApiModel):
    title: str = Field(..., min_length=1, max_length=300)
    client_name: str = Field(..., min_length=1, max_length=300)
    value: float = Field(default=0, ge=0)
    currency: str = "USD"
    description: Optional[str] = None
    valid_until: Optional[date] = None

    @field_validator("currency")
    @classmethod
    def check_currency(cls, v: str) -> str:
        return _currency(v)


class ProposalUpdate(ApiModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=300)
    client_name: Optional[str] = Field(default=None, min_length=1, max_length=300)
    value: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = None
    description: Optional[str] = None
    valid_until: Optional[date] = None

    @field_validator("currency")
    @classmethod
    def check_currency(cls, v: Optional[str]) -> Optional[str]:
        return _currency(v)


class ProposalDecision(ApiModel):
    status: Literal["Approved", "Rejected", "Won", "Lost"]


class ProposalOut(ApiModel):
    id: str
    proposal_id: str
    title: str
    client_name: str
    value: float
    currency: str
    description: Optional[str] = None
    status: ProposalStatus
    submitted_by: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    valid_until: Optional[date] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    author: Optional[UserBrief] = None
    approver: Optional[UserBrief] = None


def _proposal_to_out(p: Proposal) -> dict:
    return serialize(ProposalOut, p)


def _owns(p: Proposal, user: CurrentUser) -> bool:
    return p.submitted_by == user.id


# --- Endpoints ---

@router.post("", status_code=201)
async def create_proposal(
    body: ProposalCreate,
    request: Request,
    user: CurrentUser = Depends(require_permission("proposals:create")),
    db: AsyncSession = Depends(get_db_session),
):
    for attempt in range(CODE_ATTEMPTS):
        code = await next_sequence_code(db, Proposal.proposal_id, "PROP", 4)
        try:
            async with transaction(db):
                proposal = Proposal(
                    proposal_id=code,
                    title=body.title.strip(),
                    client_name=body.client_name.strip(),
                    value=body.value,
                    currency=body.currency,
                    description=body.description,
                    valid_until=body.valid_until,
                    status=ProposalStatus.DRAFT,
                    submitted_by=user.id,
                )
                db.add(proposal)
                await db.flush()
                record_audit(db, request, user, AuditAction.CREATE, "Proposal", proposal.id,
                             new_values=snapshot(proposal))
            break
        except IntegrityError:
            logger.warning(f"Proposal code {code} taken, retrying ({attempt + 1}/{CODE_ATTEMPTS})")
    else:
        raise Conflict("Could not allocate a proposal number, please retry")

    logger.info(f"Proposal {code} drafted by {user.id}")
    return _proposal_to_out(await get_or_404(db, Proposal, proposal.id, "Proposal"))


@router.get("")
async def list_proposals(
    user: CurrentUser = Depends(require_permission("proposals:view")),
    db: AsyncSession = Depends(get_db_session),
    paging: PageParams = Depends(page_params()),
    search: Optional[str] = None,
    status: Optional[ProposalStatus] = None,
):
    stmt = select(Proposal).order_by(Proposal.created_at.desc())
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(
            Proposal.title.ilike(pattern),
            Proposal.client_name.ilike(pattern),
            Proposal.proposal_id.ilike(pattern),
        ))
    if status:
        stmt = stmt.where(Proposal.status == status)
    rows, meta = await paginate(db, stmt, paging)
    return page_envelope(rows, meta, _proposal_to_out)


@router.get("/{proposal_id}")
async def get_proposal(
    proposal_id: str,
    user: CurrentUser = Depends(require_permission("proposals:view")),
    db: AsyncSession = Depends(get_db_session),
):
    return _proposal_to_out(await get_or_404(db, Proposal, proposal_id, "Proposal"))


@router.put("/{proposal_id}")
async def update_proposal(
    proposal_id: str,
    body: ProposalUpdate,
    request: Request,
    user: CurrentUser = Depends(require("proposal.edit")),
    db: AsyncSession = Depends(get_db_session),
):
    proposal = await get_or_404(db, Proposal, proposal_id, "Proposal", for_update=True)
    ensure_editable(PROPOSAL, proposal, user, owns=_owns(proposal, user))
    changes = {k: v for k, v in provided_fields(body).items() if v is not None}
    if not changes:
        raise ValidationFailed("No fields to update")

    before = snapshot(proposal)
    async with transaction(db):
        for key, value in changes.items():
            setattr(proposal, key, value.strip() if key in ("title", "client_name") else value)
        record_audit(db, request, user, AuditAction.UPDATE, "Proposal", proposal.id,
                     old_values=before, new_values=snapshot(proposal))

    return _proposal_to_out(await get_or_404(db, Proposal, proposal_id, "Proposal"))


@router.post("/{proposal_id}/submit")
async def submit_proposal(
    proposal_id: str,
    request: Request,
    user: CurrentUser = Depends(require("proposal.submit")),
    db: AsyncSession = Depends(get_db_session),
):
    """Send a draft for approval; nothing but the status changes."""
    proposal = await get_or_404(db, Proposal, proposal_id, "Proposal", for_update=True)
    approvers = await emails_with_permission(db, "proposals:approve")

    async with transaction(db):
        previous = attempt_transition(PROPOSAL, proposal, ProposalStatus.SUBMITTED, user, owns=_owns(proposal, user))
        enqueue_mail(db, approvers, emails.proposal_submitted(proposal.proposal_id, proposal.title, user.name))
        record_audit(db, request, user, AuditAction.UPDATE, "Proposal", proposal.id,
                     old_values={"status": previous.value}, new_values={"status": proposal.status.value})

    logger.info(f"Proposal {proposal.proposal_id} submitted by {user.id}")
    return _proposal_to_out(await get_or_404(db, Proposal, proposal_id, "Proposal"))


@router.put("/{proposal_id}/status")
async def decide_proposal(
    proposal_id: str,
    body: ProposalDecision,
    request: Request,
    user: CurrentUser = Depends(require("proposal.decide")),
    db: AsyncSession = Depends(get_db_session),
):
    proposal = await get_or_404(db, Proposal, proposal_id, "Proposal", for_update=True)

    async with transaction(db):
        previous = attempt_transition(PROPOSAL, proposal, body.status, user)
        proposal.approved_by = user.id
        proposal.approved_at = utcnow()
        if proposal.author:
            enqueue_mail(db, proposal.author.email, emails.proposal_decided(
                proposal.author.full_name, proposal.proposal_id, proposal.title, proposal.status.value,
            ))
        record_audit(db, request, user, AuditAction.UPDATE, "Proposal", proposal.id,
                     old_values={"status": previous.value},
                     new_values={"status": proposal.status.value, "approved_by": user.id})

    logger.info(f"Proposal {proposal.proposal_id} {previous.value} -> {proposal.status.value} by {user.id}")
    return _proposal_to_out(await get_or_404(db, Proposal, proposal_id, "Proposal"))


@router.delete("/{proposal_id}")
async def delete_proposal(
    proposal_id: str,
    request: Request,
    user: CurrentUser = Depends(require("proposal.delete")),
    db: AsyncSession = Depends(get_db_session),
):
    proposal = await get_or_404(db, Proposal, proposal_id, "Proposal")
    ensure_deletable(PROPOSAL, proposal, user, owns=_owns(proposal, user))
    before = snapshot(proposal)
    async with transaction(db):
        await db.delete(proposal)
        record_audit(db, request, user, AuditAction.DELETE, "Proposal", proposal_id, old_values=before)
    return {"message": "Proposal deleted successfully"}
