# outbox.py — Transactional email outbox and its delivery loop
"""
Handlers call ``enqueue_mail`` inside their own transaction, so a
notification row exists if and only if the business change committed.
``OutboxDispatcher`` runs in the background, claims due rows, hands them to
the mail transport and records the outcome. Delivery is at-least-once: a
crash between sending and marking the row sent causes a resend.
"""
import os
import asyncio
import logging
from datetime import timedelta
from typing import Iterable, List, Optional, Union

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from emails import MailContent
from mailer import MailTransport, OutgoingMail, get_transport
from models import OutboxMessage, OutboxStatus, utcnow
from telemetry import get_tracer

logger = logging.getLogger("workhub.outbox")

OUTBOX_DISPATCHER_ENABLED = os.getenv("OUTBOX_DISPATCHER_ENABLED", "true").lower() == "true"
OUTBOX_POLL_SECONDS = float(os.getenv("OUTBOX_POLL_SECONDS", "5"))
OUTBOX_BATCH_SIZE = int(os.getenv("OUTBOX_BATCH_SIZE", "20"))
OUTBOX_MAX_ATTEMPTS = int(os.getenv("OUTBOX_MAX_ATTEMPTS", "5"))
OUTBOX_BACKOFF_SECONDS = float(os.getenv("OUTBOX_BACKOFF_SECONDS", "30"))


def _recipients(to: Union[str, Iterable[Optional[str]], None]) -> List[str]:
    if to is None:
        return []
    if isinstance(to, str):
        to = [to]
    seen = []
    for address in to:
        address = (address or "").strip()
        if address and address.lower() not in {s.lower() for s in seen}:
            seen.append(address)
    return seen


def enqueue_mail(db: AsyncSession, to: Union[str, Iterable[Optional[str]], None], mail: MailContent) -> List[OutboxMessage]:
    """Queue one message per distinct recipient in the caller's transaction."""
    messages = []
    for address in _recipients(to):
        message = OutboxMessage(recipient=address, subject=mail.subject, html=mail.html)
        db.add(message)
        messages.append(message)
    return messages


def retry_delay(attempts: int, base: float = OUTBOX_BACKOFF_SECONDS) -> timedelta:
    return timedelta(seconds=base * (2 ** max(attempts - 1, 0)))


async def pending_count(db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count(OutboxMessage.id)).where(OutboxMessage.status == OutboxStatus.PENDING)
    )
    return result.scalar() or 0


class OutboxDispatcher:
    """Background delivery of queued emails"""

    def __init__(
        self,
        session_maker: async_sessionmaker,
        transport: Optional[MailTransport] = None,
        poll_interval: float = OUTBOX_POLL_SECONDS,
        batch_size: int = OUTBOX_BATCH_SIZE,
        max_attempts: int = OUTBOX_MAX_ATTEMPTS,
        backoff_seconds: float = OUTBOX_BACKOFF_SECONDS,
    ):
        self.session_maker = session_maker
        self.transport = transport or get_transport()
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    async def _claim(self, db: AsyncSession) -> List[OutboxMessage]:
        stmt = (
            select(OutboxMessage)
            .where(OutboxMessage.status == OutboxStatus.PENDING)
            .where(OutboxMessage.next_attempt_at <= utcnow())
            .order_by(OutboxMessage.created_at)
            .limit(self.batch_size)
        )
        if db.bind.dialect.name == "postgresql":
            # Lets several API workers run dispatchers side by side
            stmt = stmt.with_for_update(skip_locked=True)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def _deliver(self, message: OutboxMessage) -> None:
        message.attempts = (message.attempts or 0) + 1
        try:
            await self.transport.send(OutgoingMail(
                to=message.recipient, subject=message.subject, html=message.html,
            ))
        except Exception as e:
            message.last_error = str(e)[:1000]
            if message.attempts >= self.max_attempts:
                message.status = OutboxStatus.FAILED
                logger.error(f"Outbox message {message.id} failed permanently after {message.attempts} attempts: {e}")
            else:
                message.next_attempt_at = utcnow() + retry_delay(message.attempts, self.backoff_seconds)
                logger.warning(f"Outbox message {message.id} attempt {message.attempts} failed: {e}")
            return
        message.status = OutboxStatus.SENT
        message.sent_at = utcnow()
        message.last_error = None
        logger.info(f"Outbox message {message.id} sent to {message.recipient}")

    async def run_once(self) -> int:
        """Deliver one batch of due messages; returns how many were attempted."""
        tracer = get_tracer("workhub.outbox")
        async with self.session_maker() as db:
            try:
                messages = await self._claim(db)
                if tracer is not None:
                    with tracer.start_as_current_span("outbox.dispatch") as span:
                        span.set_attribute("outbox.batch_size", len(messages))
                        for message in messages:
                            await self._deliver(message)
                else:
                    for message in messages:
                        await self._deliver(message)
                await db.commit()
            except Exception:
                await db.rollback()
                raise
        return len(messages)

    async def _loop(self) -> None:
        logger.info(f"Outbox dispatcher started (every {self.poll_interval}s)")
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Outbox dispatch pass failed: {e}", exc_info=True)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Outbox dispatcher stopped")

    def start(self) -> None:
        if self._task is None:
            self._stopping.clear()
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is not None:
            self._stopping.set()
            await self._task
            self._task = None
