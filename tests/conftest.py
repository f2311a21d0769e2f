# tests/conftest.py — Shared test fixtures
import os
import uuid
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["OUTBOX_DISPATCHER_ENABLED"] = "false"
os.environ["WEEKLY_SUMMARY_ENABLED"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="workhub-uploads-")

from models import (
    Base, User, Client, UserRole, ApprovalStatus, OutboxMessage, Project, ProjectStatus,
)
from auth import AuthService
from database import get_db_session
from main import app

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine):
    """HTTP test client with overridden DB dependency"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def lenient_client(client):
    """Like client, but unhandled errors come back as 500 responses instead of raising"""
    async with AsyncClient(transport=ASGITransport(app=app, raise_app_exceptions=False), base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def outbox(db_engine):
    """Reads queued email straight from the outbox table, optionally for one recipient"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def _messages(recipient=None):
        async with session_factory() as session:
            stmt = select(OutboxMessage).order_by(OutboxMessage.created_at)
            if recipient:
                stmt = stmt.where(OutboxMessage.recipient == recipient)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    return _messages


async def create_user(db_session, role=UserRole.STAFF, email=None, password="Password123!", **kwargs) -> User:
    tag = uuid.uuid4().hex[:8]
    user = User(
        id=str(uuid.uuid4()),
        first_name=kwargs.pop("first_name", role.value.capitalize()),
        last_name=kwargs.pop("last_name", f"User {tag}"),
        email=email or f"{role.value}-{tag}@example.com",
        phone_number=kwargs.pop("phone_number", f"+1555{uuid.uuid4().int % 10**7:07d}"),
        password_hash=AuthService.hash_password(password),
        role=role,
        email_verified=kwargs.pop("email_verified", True),
        is_active=kwargs.pop("is_active", True),
        **kwargs,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


async def create_client_account(db_session, approval_status=ApprovalStatus.APPROVED, email=None,
                                password="ClientPass123!") -> Client:
    tag = uuid.uuid4().hex[:8]
    account = Client(
        id=str(uuid.uuid4()),
        first_name="Client",
        last_name=tag,
        email=email or f"client-{tag}@example.com",
        company="Acme Ltd",
        password_hash=AuthService.hash_password(password),
        documents=[],
        approval_status=approval_status,
        email_verified=True,
    )
    db_session.add(account)
    await db_session.commit()
    await db_session.refresh(account)
    return account


async def create_project(db_session, owner: User, name="Bridge Refit", status=ProjectStatus.TODO) -> Project:
    project = Project(id=str(uuid.uuid4()), project_name=name, status=status, created_by=owner.id)
    db_session.add(project)
    await db_session.commit()
    await db_session.refresh(project)
    return project


@pytest_asyncio.fixture
async def admin_user(db_session):
    """Create an admin user"""
    return await create_user(db_session, UserRole.ADMIN, email="admin@example.com",
                             password="AdminPassword123!", phone_number="+15550000001")


@pytest_asyncio.fixture
async def manager_user(db_session):
    """Create a manager user"""
    return await create_user(db_session, UserRole.MANAGER, email="manager@example.com",
                             password="ManagerPassword123!", phone_number="+15550000002")


@pytest_asyncio.fixture
async def staff_user(db_session):
    """Create a staff user"""
    return await create_user(db_session, UserRole.STAFF, email="staff@example.com",
                             password="StaffPassword123!", phone_number="+15550000003")


@pytest_asyncio.fixture
async def other_staff(db_session):
    """A second staff user"""
    return await create_user(db_session, UserRole.STAFF, email="colleague@example.com",
                             password="StaffPassword123!", phone_number="+15550000004")


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token_data = {
        "sub": user.id,
        "kind": "user",
        "role": user.role.value if isinstance(user.role, UserRole) else user.role,
    }
    token = AuthService.create_access_token(token_data)
    return {"Authorization": f"Bearer {token}"}


def get_client_headers(account: Client) -> dict:
    return {"Authorization": f"Bearer {AuthService.token_for_client(account)}"}


def png_upload(name="photo.png"):
    return (name, PNG_BYTES, "image/png")


def stored_files(folder: str) -> set:
    root = Path(os.environ["STORAGE_ROOT"]) / folder
    return {p for p in root.rglob("*") if p.is_file()}
