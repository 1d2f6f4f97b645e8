"""
Test the countdown timer.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import update

from casechat.chat import lifecycle
from casechat.chat.timer import compute_timer, get_time_remaining, start_timer
from casechat.core.clock import utcnow
from casechat.core.errors import InvalidStateError, NotFoundError
from casechat.db.chat.models import ChatSession

STUDENT_ID = "student-1"


class TestComputeTimer:

    def test_not_started(self):
        session = ChatSession(time_limit_minutes=20, time_started=None)
        state = compute_timer(session)
        assert state.has_time_limit
        assert not state.timer_started
        assert state.remaining_seconds == 1200
        assert not state.expired

    def test_counts_down_from_time_started(self):
        now = datetime(2026, 3, 1, 12, 0, 0)
        session = ChatSession(time_limit_minutes=20, time_started=now - timedelta(minutes=5))
        state = compute_timer(session, now)
        assert state.elapsed_minutes == 5.0
        assert state.remaining_minutes == 15.0
        assert state.remaining_seconds == 900
        assert not state.expired

    def test_expired_clamps_to_zero(self):
        now = datetime(2026, 3, 1, 12, 0, 0)
        session = ChatSession(time_limit_minutes=20, time_started=now - timedelta(minutes=25))
        state = compute_timer(session, now)
        assert state.expired
        assert state.remaining_seconds == 0

    def test_no_limit(self):
        now = datetime(2026, 3, 1, 12, 0, 0)
        session = ChatSession(time_limit_minutes=None, time_started=now - timedelta(minutes=90))
        state = compute_timer(session, now)
        assert not state.has_time_limit
        assert state.remaining_minutes is None
        assert not state.expired


@pytest.mark.asyncio
class TestStartTimer:

    async def test_start_then_already_started(self, db, seeded):
        session = await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"], scenario_id=seeded["timed_id"])

        first = await start_timer(db, session.id)
        assert first.timer_started
        assert not first.already_started
        assert first.time_limit_minutes == 20

        second = await start_timer(db, session.id)
        assert second.already_started
        assert second.time_started == first.time_started

        reloaded = await lifecycle.get_session(db, session.id, refresh=True)
        assert reloaded.status == "in_progress"

    async def test_start_on_ended_chat(self, db, seeded):
        session = await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"])
        await lifecycle.set_status(db, session.id, "canceled")
        with pytest.raises(InvalidStateError):
            await start_timer(db, session.id)

    async def test_unknown_chat(self, db, seeded):
        with pytest.raises(NotFoundError):
            await start_timer(db, "missing")

    async def test_time_remaining_reads_stored_start(self, db, seeded):
        session = await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"], scenario_id=seeded["timed_id"])
        started = utcnow() - timedelta(minutes=30)
        await db.execute(
            update(ChatSession).where(ChatSession.id == session.id).values(time_started=started)
        )
        await db.commit()

        state = await get_time_remaining(db, session.id)
        assert state.expired
        assert state.remaining_seconds == 0
