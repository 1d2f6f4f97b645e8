"""Per-session countdown timer.

The countdown starts on the student's first message, never on creation.
The limit itself is a snapshot taken from the scenario when the chat was
created, so later scenario edits do not move an in-flight deadline.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import utcnow
from ..core.errors import InvalidStateError, NotFoundError
from ..db.chat.models import ChatSession
from .status import LIVE_VALUES, ChatStatus

logger = logging.getLogger(__name__)


@dataclass
class TimerState:
    has_time_limit: bool
    time_limit_minutes: Optional[int]
    time_started: Optional[datetime]
    timer_started: bool
    elapsed_minutes: Optional[float]
    remaining_minutes: Optional[float]
    remaining_seconds: Optional[int]
    expired: bool
    already_started: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def compute_timer(session: ChatSession, now: Optional[datetime] = None) -> TimerState:
    """Derive elapsed/remaining time for a session at ``now``."""
    now = now or utcnow()
    limit = session.time_limit_minutes or None

    if session.time_started is None:
        return TimerState(
            has_time_limit=limit is not None,
            time_limit_minutes=limit,
            time_started=None,
            timer_started=False,
            elapsed_minutes=0.0 if limit else None,
            remaining_minutes=float(limit) if limit else None,
            remaining_seconds=limit * 60 if limit else None,
            expired=False,
        )

    elapsed = max(0.0, (now - session.time_started).total_seconds() / 60)
    if limit is None:
        return TimerState(
            has_time_limit=False,
            time_limit_minutes=None,
            time_started=session.time_started,
            timer_started=True,
            elapsed_minutes=round(elapsed, 1),
            remaining_minutes=None,
            remaining_seconds=None,
            expired=False,
        )

    remaining = max(0.0, limit - elapsed)
    return TimerState(
        has_time_limit=True,
        time_limit_minutes=limit,
        time_started=session.time_started,
        timer_started=True,
        elapsed_minutes=round(elapsed, 1),
        remaining_minutes=round(remaining, 1),
        remaining_seconds=round(remaining * 60),
        expired=remaining <= 0,
    )


async def start_timer(db: AsyncSession, session_id: str) -> TimerState:
    """Start the countdown. A second call reports ``already_started``."""
    now = utcnow()
    result = await db.execute(
        update(ChatSession)
        .where(
            ChatSession.id == session_id,
            ChatSession.status.in_(LIVE_VALUES),
            ChatSession.time_started.is_(None),
        )
        .values(
            time_started=now,
            last_activity=now,
            status=ChatStatus.IN_PROGRESS.value,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    session = await db.get(ChatSession, session_id, populate_existing=True)
    if session is None:
        raise NotFoundError("Chat", session_id)

    if result.rowcount:
        logger.info("Timer started for chat %s (limit=%s)", session_id, session.time_limit_minutes)
        return compute_timer(session, now)

    if session.status not in LIVE_VALUES:
        raise InvalidStateError(session_id, session.status, "start timer for")

    state = compute_timer(session, now)
    state.already_started = True
    return state


async def get_time_remaining(db: AsyncSession, session_id: str) -> TimerState:
    session = await db.get(ChatSession, session_id, populate_existing=True)
    if session is None:
        raise NotFoundError("Chat", session_id)
    return compute_timer(session)
