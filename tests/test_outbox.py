# tests/test_outbox.py — Transactional email outbox and its dispatcher
import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from emails import MailContent
from mailer import OutgoingMail
from models import OutboxMessage, OutboxStatus
from outbox import OutboxDispatcher, enqueue_mail, retry_delay
from tests.conftest import get_auth_headers


class RecordingTransport:
    """Collects mail instead of sending it; fails while `failing` is set"""

    def __init__(self, failing: bool = False):
        self.sent = []
        self.failing = failing

    async def send(self, mail: OutgoingMail) -> None:
        if self.failing:
            raise ConnectionError("SMTP unavailable")
        self.sent.append(mail)


@pytest_asyncio.fixture
async def session_maker(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


async def _queue(session_maker, to, subject="Hello") -> None:
    async with session_maker() as db:
        enqueue_mail(db, to, MailContent(subject=subject, html="<p>Hi</p>"))
        await db.commit()


async def _messages(session_maker):
    async with session_maker() as db:
        return list((await db.execute(select(OutboxMessage).order_by(OutboxMessage.created_at))).scalars().all())


@pytest.mark.asyncio
class TestEnqueue:
    async def test_one_row_per_distinct_recipient(self, session_maker):
        await _queue(session_maker, ["a@example.com", "A@example.com", None, "", "b@example.com"])
        messages = await _messages(session_maker)
        assert sorted(m.recipient for m in messages) == ["a@example.com", "b@example.com"]
        assert all(m.status == OutboxStatus.PENDING for m in messages)

    async def test_nothing_queued_when_transaction_rolls_back(self, session_maker):
        async with session_maker() as db:
            enqueue_mail(db, "a@example.com", MailContent(subject="Lost", html=""))
            await db.rollback()
        assert await _messages(session_maker) == []


@pytest.mark.asyncio
class TestDispatcher:
    async def test_delivers_and_marks_sent(self, session_maker):
        await _queue(session_maker, ["a@example.com", "b@example.com"])
        transport = RecordingTransport()
        dispatcher = OutboxDispatcher(session_maker, transport=transport)

        assert await dispatcher.run_once() == 2
        assert sorted(m.to for m in transport.sent) == ["a@example.com", "b@example.com"]
        messages = await _messages(session_maker)
        assert all(m.status == OutboxStatus.SENT and m.sent_at is not None for m in messages)

        assert await dispatcher.run_once() == 0

    async def test_failure_backs_off_then_gives_up(self, session_maker):
        await _queue(session_maker, "a@example.com")
        transport = RecordingTransport(failing=True)
        dispatcher = OutboxDispatcher(session_maker, transport=transport, max_attempts=2, backoff_seconds=0)

        await dispatcher.run_once()
        message = (await _messages(session_maker))[0]
        assert message.status == OutboxStatus.PENDING
        assert message.attempts == 1
        assert "SMTP unavailable" in message.last_error

        await dispatcher.run_once()
        message = (await _messages(session_maker))[0]
        assert message.status == OutboxStatus.FAILED
        assert message.attempts == 2

    async def test_start_and_stop(self, session_maker):
        dispatcher = OutboxDispatcher(session_maker, transport=RecordingTransport(), poll_interval=0.01)
        dispatcher.start()
        await dispatcher.stop()
        assert dispatcher._task is None

    def test_retry_delay_doubles(self):
        assert retry_delay(1, base=30).total_seconds() == 30
        assert retry_delay(2, base=30).total_seconds() == 60
        assert retry_delay(3, base=30).total_seconds() == 120


@pytest.mark.asyncio
class TestOutboxApi:
    async def test_list_and_retry_failed(self, client: AsyncClient, admin_user, session_maker):
        await _queue(session_maker, "a@example.com")
        async with session_maker() as db:
            message = (await db.execute(select(OutboxMessage))).scalar_one()
            message.status = OutboxStatus.FAILED
            message.attempts = 5
            await db.commit()
        headers = get_auth_headers(admin_user)

        res = await client.get("/api/outbox?status=failed", headers=headers)
        assert res.status_code == 200
        assert res.json()["pagination"]["totalItems"] == 1
        assert res.json()["pending"] == 0

        res = await client.post(f"/api/outbox/{message.id}/retry", headers=headers)
        assert res.status_code == 200
        assert res.json()["status"] == "pending"
        assert res.json()["attempts"] == 0

        again = await client.post(f"/api/outbox/{message.id}/retry", headers=headers)
        assert again.status_code == 400

    async def test_staff_cannot_manage_outbox(self, client: AsyncClient, staff_user):
        res = await client.get("/api/outbox", headers=get_auth_headers(staff_user))
        assert res.status_code == 403
