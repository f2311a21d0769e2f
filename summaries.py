# summaries.py — Weekly work summaries queued through the outbox
"""
Once a week every active staff member gets their own numbers (hours logged,
tasks completed, tasks overdue) and admins and managers get one table for
the whole workforce. The mail goes through the outbox like every other
notification. A ``JobRun`` row keyed by job name and ISO week is written in
the same transaction, so a week is queued at most once even with several
API workers polling.
"""
import os
import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import emails
from database import transaction
from errors import Conflict
from models import JobRun, Task, TaskStatus, User, WorkLog, utcnow
from outbox import enqueue_mail
from routers.common import emails_for_roles

logger = logging.getLogger("workhub.summaries")

WEEKLY_SUMMARY_ENABLED = os.getenv("WEEKLY_SUMMARY_ENABLED", "true").lower() == "true"
# Monday is 0; the default sends on Friday at 17:00 UTC
WEEKLY_SUMMARY_WEEKDAY = int(os.getenv("WEEKLY_SUMMARY_WEEKDAY", "4"))
WEEKLY_SUMMARY_HOUR = int(os.getenv("WEEKLY_SUMMARY_HOUR", "17"))
WEEKLY_SUMMARY_POLL_SECONDS = float(os.getenv("WEEKLY_SUMMARY_POLL_SECONDS", "900"))

JOB_NAME = "weekly-summary"


def week_bounds(day: date) -> Tuple[date, date]:
    """Monday and Sunday of the ISO week containing day"""
    start = day - timedelta(days=day.weekday())
    return start, start + timedelta(days=6)


def period_key(week_start: date) -> str:
    year, week, _ = week_start.isocalendar()
    return f"{year}-W{week:02d}"


@dataclass
class StaffWeek:
    user: User
    hours: float
    completed: int
    overdue: int


async def collect_week(db: AsyncSession, week_start: date, week_end: date, as_of: Optional[date] = None) -> List[StaffWeek]:
    """Per-user hours and completed tasks for the week, and tasks overdue as of as_of."""
    as_of = as_of or utcnow().date()
    in_week = (WorkLog.work_date >= week_start, WorkLog.work_date <= week_end)

    hours = dict((await db.execute(
        select(WorkLog.user_id, func.sum(WorkLog.hours_worked)).where(*in_week).group_by(WorkLog.user_id)
    )).all())
    completed = dict((await db.execute(
        select(WorkLog.user_id, func.count(func.distinct(WorkLog.task_id)))
        .join(Task, Task.id == WorkLog.task_id)
        .where(*in_week, Task.status == TaskStatus.DONE)
        .group_by(WorkLog.user_id)
    )).all())
    overdue = dict((await db.execute(
        select(Task.assigned_to, func.count(Task.id))
        .where(Task.status != TaskStatus.DONE, Task.due_date < as_of, Task.assigned_to.is_not(None))
        .group_by(Task.assigned_to)
    )).all())

    users = (await db.execute(
        select(User).where(User.is_active.is_(True)).order_by(User.first_name, User.last_name)
    )).scalars().all()
    return [
        StaffWeek(
            user=u,
            hours=round(float(hours.get(u.id) or 0), 2),
            completed=completed.get(u.id, 0),
            overdue=overdue.get(u.id, 0),
        )
        for u in users
    ]


async def already_queued(db: AsyncSession, week_start: date) -> bool:
    result = await db.execute(
        select(JobRun.id).where(JobRun.job == JOB_NAME, JobRun.period == period_key(week_start))
    )
    return result.first() is not None


async def queue_weekly_summary(db: AsyncSession, week_start: date, triggered_by: Optional[str] = None) -> int:
    """Queue the summaries for the week starting week_start; returns how many staff were covered.

    Raises Conflict when that week has already been queued.
    """
    week_start, week_end = week_bounds(week_start)
    period = period_key(week_start)
    rows = await collect_week(db, week_start, week_end)
    managers = await emails_for_roles(db)
    try:
        async with transaction(db):
            db.add(JobRun(job=JOB_NAME, period=period, triggered_by=triggered_by))
            await db.flush()
            for row in rows:
                enqueue_mail(db, row.user.email, emails.weekly_summary(
                    row.user.full_name, week_start, week_end, row.hours, row.completed, row.overdue,
                ))
            enqueue_mail(db, managers, emails.weekly_team_summary(
                week_start, week_end,
                [(r.user.full_name, r.user.email, r.completed, r.hours) for r in rows],
            ))
    except IntegrityError:
        raise Conflict(f"Weekly summary for {period} was already queued", details={"period": period})

    logger.info(f"Weekly summary {period} queued for {len(rows)} staff")
    return len(rows)


class WeeklySummaryScheduler:
    """Background loop that queues the weekly summary once the configured send time has passed"""

    def __init__(
        self,
        session_maker: async_sessionmaker,
        weekday: int = WEEKLY_SUMMARY_WEEKDAY,
        hour: int = WEEKLY_SUMMARY_HOUR,
        poll_interval: float = WEEKLY_SUMMARY_POLL_SECONDS,
    ):
        self.session_maker = session_maker
        self.weekday = weekday
        self.hour = hour
        self.poll_interval = poll_interval
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    def send_time(self, week_start: date) -> datetime:
        return datetime.combine(week_start + timedelta(days=self.weekday), time(self.hour), tzinfo=timezone.utc)

    async def run_once(self, now: Optional[datetime] = None) -> bool:
        """Queue this week's summary if it is due and not yet queued; True if it was queued now."""
        now = now or utcnow()
        week_start, _ = week_bounds(now.date())
        if now < self.send_time(week_start):
            return False
        async with self.session_maker() as db:
            if await already_queued(db, week_start):
                return False
            try:
                await queue_weekly_summary(db, week_start)
            except Conflict:
                # Another worker got there first
                return False
        return True

    async def _loop(self) -> None:
        logger.info(f"Weekly summary scheduler started (weekday {self.weekday}, {self.hour:02d}:00 UTC)")
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Weekly summary pass failed: {e}", exc_info=True)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Weekly summary scheduler stopped")

    def start(self) -> None:
        if self._task is None:
            self._stopping.clear()
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is not None:
            self._stopping.set()
            await self._task
            self._task = None
