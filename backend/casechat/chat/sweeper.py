"""Abandonment sweeper.

Chats whose last heartbeat is older than the timeout are moved to
``abandoned`` by one conditional bulk UPDATE. The same ``run_once`` entry
point serves the periodic task, the admin endpoint and the CLI script.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.clock import utcnow
from ..db.chat.models import ChatSession
from .status import LIVE_VALUES, ChatStatus

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MINUTES = 60


def _cutoff(timeout_minutes: int, now: Optional[datetime]) -> tuple[datetime, datetime]:
    now = now or utcnow()
    return now, now - timedelta(minutes=timeout_minutes)


async def find_stale_sessions(
    db: AsyncSession,
    timeout_minutes: int = DEFAULT_TIMEOUT_MINUTES,
    now: Optional[datetime] = None,
) -> list[ChatSession]:
    """Sessions the next sweep would abandon (read only)."""
    _, cutoff = _cutoff(timeout_minutes, now)
    result = await db.execute(
        select(ChatSession)
        .where(ChatSession.status.in_(LIVE_VALUES), ChatSession.last_activity < cutoff)
        .order_by(ChatSession.last_activity)
    )
    return list(result.scalars().all())


async def mark_abandoned(
    db: AsyncSession,
    timeout_minutes: int = DEFAULT_TIMEOUT_MINUTES,
    now: Optional[datetime] = None,
) -> int:
    """Abandon every live session idle for longer than ``timeout_minutes``.

    Returns the number of sessions changed. Running it twice changes
    nothing the second time.
    """
    if timeout_minutes <= 0:
        timeout_minutes = DEFAULT_TIMEOUT_MINUTES
    now, cutoff = _cutoff(timeout_minutes, now)
    result = await db.execute(
        update(ChatSession)
        .where(ChatSession.status.in_(LIVE_VALUES), ChatSession.last_activity < cutoff)
        .values(status=ChatStatus.ABANDONED.value, end_time=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    affected = result.rowcount or 0
    if affected:
        logger.info("Marked %d chat(s) as abandoned (timeout=%d min)", affected, timeout_minutes)
    return affected


class AbandonmentSweeper:
    """Process-owned periodic task around ``mark_abandoned``."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        timeout_minutes: int = DEFAULT_TIMEOUT_MINUTES,
        interval_minutes: float = 15,
    ):
        self.session_factory = session_factory
        self.timeout_minutes = timeout_minutes
        self.interval_seconds = interval_minutes * 60
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, dry_run: bool = False) -> int:
        async with self.session_factory() as db:
            if dry_run:
                stale = await find_stale_sessions(db, self.timeout_minutes)
                for session in stale:
                    logger.info(
                        "Would abandon chat %s (student=%s, last_activity=%s)",
                        session.id, session.student_id, session.last_activity,
                    )
                return len(stale)
            return await mark_abandoned(db, self.timeout_minutes)

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Abandonment sweep failed; retrying next interval")
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="abandonment-sweeper")
        logger.info(
            "Abandonment sweeper started (every %.0fs, timeout=%d min)",
            self.interval_seconds, self.timeout_minutes,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Abandonment sweeper stopped")
