# models.py — Database models for WorkHub
# - UUID string primary keys everywhere
# - Built-in roles (admin, manager, staff) plus custom permission roles
# - Status columns are enums driven by the transition tables in workflow.py
# - Audit snapshots and the email outbox live next to the business tables

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, Date, JSON, Boolean, BigInteger, Integer, Numeric,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def as_utc(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"


class ApprovalStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ProjectStatus(str, PyEnum):
    TODO = "To Do"
    IN_PROGRESS = "In Progress"
    REVIEW = "Review"
    DONE = "Done"


class TaskStatus(str, PyEnum):
    TODO = "To Do"
    IN_PROGRESS = "In Progress"
    REVIEW = "Review"
    DONE = "Done"


class TaskPriority(str, PyEnum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class LeaveStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ProposalStatus(str, PyEnum):
    DRAFT = "Draft"
    SUBMITTED = "Submitted"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    WON = "Won"
    LOST = "Lost"


class HseReportStatus(str, PyEnum):
    OPEN = "open"
    PENDING = "pending"
    CLOSED = "closed"


class ExpenseStatus(str, PyEnum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class ExpenseCategory(str, PyEnum):
    OPERATIONS = "Operations"
    IT_INFRASTRUCTURE = "IT Infrastructure"
    MARKETING = "Marketing"
    HUMAN_RESOURCES = "Human Resources"
    TRAVEL = "Travel"
    OFFICE_SUPPLIES = "Office Supplies"
    PROFESSIONAL_SERVICES = "Professional Services"
    UTILITIES = "Utilities"


class DocumentStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    NOT_COMPLETE = "not complete"


class AuditAction(str, PyEnum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"


class OutboxStatus(str, PyEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


# ============================================================
# IDENTITY
# ============================================================

class Role(Base):
    __tablename__ = "roles"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text)
    permissions = Column(JSON, default=list)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone_number = Column(String(50), unique=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(SQLEnum(UserRole), default=UserRole.STAFF, nullable=False)
    role_id = Column(String, ForeignKey("roles.id", ondelete="SET NULL"))
    image_url = Column(String(1000))
    email_verified = Column(Boolean, default=False)
    otp_hash = Column(String(255))
    otp_expires_at = Column(DateTime(timezone=True))
    otp_attempts = Column(Integer, default=0)
    failed_login_attempts = Column(Integer, default=0)
    locked_until = Column(DateTime(timezone=True))
    is_active = Column(Boolean, default=True)
    last_login_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    custom_role = relationship("Role", lazy="selectin")
    memberships = relationship("UserTeam", back_populates="user", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_users_role", "role"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Client(Base):
    __tablename__ = "clients"

    id = Column(String, primary_key=True, default=new_uuid)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone_number = Column(String(50), unique=True)
    company = Column(String(255))
    password_hash = Column(String(255), nullable=False)
    image_url = Column(String(1000))
    documents = Column(JSON, default=list)
    approval_status = Column(SQLEnum(ApprovalStatus), default=ApprovalStatus.PENDING, nullable=False)
    approval_note = Column(Text)
    email_verified = Column(Boolean, default=False)
    otp_hash = Column(String(255))
    otp_expires_at = Column(DateTime(timezone=True))
    otp_attempts = Column(Integer, default=0)
    failed_login_attempts = Column(Integer, default=0)
    locked_until = Column(DateTime(timezone=True))
    last_login_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_clients_approval", "approval_status"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


# ============================================================
# TEAMS & PROJECTS
# ============================================================

class Team(Base):
    __tablename__ = "teams"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String(200), unique=True, nullable=False)
    description = Column(Text)
    created_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    members = relationship("UserTeam", back_populates="team", cascade="all, delete-orphan")


class UserTeam(Base):
    """Team membership. project_id scopes the membership to one project."""
    __tablename__ = "user_teams"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    team_id = Column(String, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    project_id = Column(String, ForeignKey("projects.id", ondelete="SET NULL"))
    role = Column(String(100), default="Member")
    note = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    user = relationship("User", back_populates="memberships", lazy="selectin")
    team = relationship("Team", back_populates="members")

    __table_args__ = (
        UniqueConstraint("user_id", "team_id", name="uq_user_team"),
        Index("idx_user_teams_project", "project_id"),
    )


class TeamProject(Base):
    __tablename__ = "team_projects"

    id = Column(String, primary_key=True, default=new_uuid)
    team_id = Column(String, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    note = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("team_id", "project_id", name="uq_team_project"),
    )


class ClientProject(Base):
    __tablename__ = "client_projects"

    id = Column(String, primary_key=True, default=new_uuid)
    client_id = Column(String, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("client_id", "project_id", name="uq_client_project"),
    )


class Project(Base):
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=new_uuid)
    project_name = Column(String(300), nullable=False)
    description = Column(Text)
    start_date = Column(Date)
    end_date = Column(Date)
    budget = Column(Numeric(15, 2))
    status = Column(SQLEnum(ProjectStatus), default=ProjectStatus.TODO, nullable=False)
    created_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    teams = relationship("Team", secondary="team_projects", viewonly=True)
    clients = relationship("Client", secondary="client_projects", viewonly=True)
    tasks = relationship("Task", back_populates="project", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_projects_status", "status"),
    )


class Task(Base):
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    title = Column(String(300), nullable=False)
    description = Column(Text)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    assigned_to = Column(String, ForeignKey("users.id", ondelete="SET NULL"))
    created_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"))
    status = Column(SQLEnum(TaskStatus), default=TaskStatus.TODO, nullable=False)
    priority = Column(SQLEnum(TaskPriority), default=TaskPriority.MEDIUM)
    due_date = Column(Date)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    project = relationship("Project", back_populates="tasks")
    assignee = relationship("User", foreign_keys=[assigned_to], lazy="selectin")

    __table_args__ = (
        Index("idx_tasks_project", "project_id"),
        Index("idx_tasks_assignee", "assigned_to"),
    )


# ============================================================
# HR & COMMERCIAL
# ============================================================

class Leave(Base):
    __tablename__ = "leaves"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    leave_type = Column(String(50))
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    reason = Column(Text, nullable=False)
    status = Column(SQLEnum(LeaveStatus), default=LeaveStatus.PENDING, nullable=False)
    decided_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"))
    decided_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user = relationship("User", foreign_keys=[user_id], lazy="selectin")

    __table_args__ = (
        Index("idx_leaves_user_status", "user_id", "status"),
    )


class Proposal(Base):
    __tablename__ = "proposals"

    id = Column(String, primary_key=True, default=new_uuid)
    proposal_id = Column(String(20), unique=True, nullable=False)
    title = Column(String(300), nullable=False)
    client_name = Column(String(300), nullable=False)
    value = Column(Numeric(15, 2), default=0)
    currency = Column(String(3), default="USD")
    description = Column(Text)
    status = Column(SQLEnum(ProposalStatus), default=ProposalStatus.DRAFT, nullable=False)
    submitted_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"))
    approved_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"))
    approved_at = Column(DateTime(timezone=True))
    valid_until = Column(Date)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    author = relationship("User", foreign_keys=[submitted_by], lazy="selectin")
    approver = relationship("User", foreign_keys=[approved_by], lazy="selectin")

    __table_args__ = (
        Index("idx_proposals_status", "status"),
    )


class FinanceExpense(Base):
    __tablename__ = "finance_expenses"

    id = Column(String, primary_key=True, default=new_uuid)
    request_id = Column(String(20), unique=True, nullable=False)
    vendor = Column(String(300), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    category = Column(SQLEnum(ExpenseCategory), nullable=False)
    expense_date = Column(Date, nullable=False)
    description = Column(Text)
    status = Column(SQLEnum(ExpenseStatus), default=ExpenseStatus.PENDING, nullable=False)
    submitted_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"))
    approved_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"))
    approved_at = Column(DateTime(timezone=True))
    rejection_reason = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    submitter = relationship("User", foreign_keys=[submitted_by], lazy="selectin")

    __table_args__ = (
        Index("idx_expenses_status", "status"),
    )


# ============================================================
# HSE
# ============================================================

class HseReport(Base):
    __tablename__ = "hse_reports"

    id = Column(String, primary_key=True, default=new_uuid)
    title = Column(String(300), nullable=False)
    date_of_report = Column(Date, nullable=False)
    time_of_report = Column(String(8), nullable=False)
    reporter_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"))
    report = Column(Text, nullable=False)
    status = Column(SQLEnum(HseReportStatus), default=HseReportStatus.OPEN, nullable=False)
    closed_at = Column(DateTime(timezone=True))
    closed_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    reporter = relationship("User", foreign_keys=[reporter_id], lazy="selectin")
    documents = relationship("HseDocument", back_populates="report")

    __table_args__ = (
        Index("idx_hse_reports_status", "status"),
    )


class HseDocument(Base):
    __tablename__ = "hse_documents"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String(300), nullable=False)
    urls = Column(JSON, default=list)
    doc_type = Column(String(100))
    content_type = Column(String(100))
    size = Column(BigInteger, default=0)
    uploaded_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"))
    report_id = Column(String, ForeignKey("hse_reports.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    report = relationship("HseReport", back_populates="documents")

    __table_args__ = (
        Index("idx_hse_documents_report", "report_id"),
    )


# ============================================================
# PROJECT WORK: LOGS, DOCUMENTS & REPORTS
# ============================================================

class WorkLog(Base):
    """Hours a staff member booked against a task on one day."""
    __tablename__ = "work_logs"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    hours_worked = Column(Numeric(5, 2), nullable=False)
    work_date = Column(Date, nullable=False)
    description = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    user = relationship("User", lazy="selectin")
    task = relationship("Task", lazy="selectin")
    project = relationship("Project", lazy="selectin")

    __table_args__ = (
        Index("idx_work_logs_user_date", "user_id", "work_date"),
        Index("idx_work_logs_project", "project_id"),
    )


class ProjectReport(Base):
    __tablename__ = "project_reports"

    id = Column(String, primary_key=True, default=new_uuid)
    title = Column(String(300), nullable=False)
    content = Column(Text, nullable=False)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    team_id = Column(String, ForeignKey("teams.id", ondelete="SET NULL"))
    created_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"))
    assigned_to = Column(String, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    project = relationship("Project", lazy="selectin")
    team = relationship("Team", lazy="selectin")
    author = relationship("User", foreign_keys=[created_by], lazy="selectin")
    assignee = relationship("User", foreign_keys=[assigned_to], lazy="selectin")

    __table_args__ = (
        Index("idx_project_reports_project", "project_id"),
    )


class ProjectDocument(Base):
    """A file attached to a project, uploaded by staff or by a linked client."""
    __tablename__ = "project_documents"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String(300), nullable=False)
    url = Column(String(1000), nullable=False)
    content_type = Column(String(100))
    size = Column(BigInteger, default=0)
    status = Column(SQLEnum(DocumentStatus), default=DocumentStatus.PENDING, nullable=False)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    report_id = Column(String, ForeignKey("project_reports.id", ondelete="SET NULL"))
    uploaded_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"))
    client_id = Column(String, ForeignKey("clients.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    uploader = relationship("User", lazy="selectin")
    client = relationship("Client", lazy="selectin")

    __table_args__ = (
        Index("idx_project_documents_project", "project_id"),
        Index("idx_project_documents_report", "report_id"),
    )


# ============================================================
# AUDIT & OUTBOX
# ============================================================

class Audit(Base):
    __tablename__ = "audits"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"))
    actor_type = Column(String(20))
    actor_id = Column(String)
    action = Column(SQLEnum(AuditAction), nullable=False)
    model = Column(String(100), nullable=False)
    record_id = Column(String)
    old_values = Column(JSON)
    new_values = Column(JSON)
    ip_address = Column(String(45))
    user_agent = Column(Text)
    request_id = Column(String(100))
    created_at = Column(DateTime(timezone=True), default=utcnow)

    user = relationship("User", lazy="selectin")

    __table_args__ = (
        Index("idx_audits_model_created", "model", "created_at"),
        Index("idx_audits_user", "user_id"),
    )


class OutboxMessage(Base):
    """An email waiting for delivery, written in the same transaction as its cause."""
    __tablename__ = "outbox_messages"

    id = Column(String, primary_key=True, default=new_uuid)
    recipient = Column(String(255), nullable=False)
    subject = Column(String(500), nullable=False)
    html = Column(Text, nullable=False)
    status = Column(SQLEnum(OutboxStatus), default=OutboxStatus.PENDING, nullable=False)
    attempts = Column(Integer, default=0)
    last_error = Column(Text)
    next_attempt_at = Column(DateTime(timezone=True), default=utcnow)
    sent_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_outbox_due", "status", "next_attempt_at"),
    )


class JobRun(Base):
    """One row per scheduled job and period; the unique key stops a period running twice."""
    __tablename__ = "job_runs"

    id = Column(String, primary_key=True, default=new_uuid)
    job = Column(String(100), nullable=False)
    period = Column(String(50), nullable=False)
    triggered_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("job", "period", name="uq_job_run_period"),
    )
