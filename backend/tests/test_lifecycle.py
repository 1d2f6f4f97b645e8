"""
Test the chat session lifecycle against the database.
"""

import asyncio

import pytest
from sqlalchemy import select

from casechat.chat import lifecycle
from casechat.core.errors import CaseChatError, ConflictError, InvalidStateError, NotFoundError, ValidationError
from casechat.db.catalog.models import CaseScenario, Evaluation
from casechat.db.chat.models import ChatSession, PositionLogEntry

STUDENT_ID = "student-1"


@pytest.mark.asyncio
class TestCreate:

    async def test_create_snapshots_scenario_time_limit(self, db, seeded):
        session = await lifecycle.create_session(
            db, STUDENT_ID, seeded["case_id"], scenario_id=seeded["timed_id"], section_id="sec-1",
            persona="moderate", chat_model="gpt-4o",
        )
        assert session.status == "started"
        assert session.time_limit_minutes == 20
        assert session.time_started is None
        assert session.end_time is None

        # Later scenario edits do not move the in-flight limit.
        scenario = await db.get(CaseScenario, seeded["timed_id"])
        scenario.chat_time_limit = 5
        await db.commit()
        reloaded = await lifecycle.get_session(db, session.id, refresh=True)
        assert reloaded.time_limit_minutes == 20

    async def test_zero_limit_means_no_limit(self, db, seeded):
        session = await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"], scenario_id=seeded["untimed_id"])
        assert session.time_limit_minutes is None

    async def test_unknown_scenario_is_not_found(self, db, seeded):
        with pytest.raises(NotFoundError):
            await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"], scenario_id=9999)

    async def test_unknown_case_is_not_found(self, db, seeded):
        with pytest.raises(NotFoundError):
            await lifecycle.create_session(db, STUDENT_ID, "no-such-case")

    async def test_second_live_session_conflicts(self, db, seeded):
        await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"])
        with pytest.raises(ConflictError):
            await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"])

    async def test_initial_position_is_logged(self, db, seeded):
        session = await lifecycle.create_session(
            db, STUDENT_ID, seeded["case_id"], initial_position="for", position_method="explicit",
        )
        assert session.initial_position == "for"
        assert session.position_method == "explicit"

        logs = (await db.execute(
            select(PositionLogEntry).where(PositionLogEntry.case_chat_id == session.id)
        )).scalars().all()
        assert [(log.position_type, log.position_value, log.recorded_by) for log in logs] == [
            ("initial", "for", "student")
        ]

    async def test_unknown_position_method_creates_nothing(self, db, seeded):
        with pytest.raises(ValidationError):
            await lifecycle.create_session(
                db, STUDENT_ID, seeded["case_id"], initial_position="for", position_method="bogus",
            )
        assert (await db.execute(select(ChatSession))).scalars().all() == []


@pytest.mark.asyncio
class TestHeartbeatAndStatus:

    async def test_heartbeat_promotes_started(self, db, seeded):
        session = await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"], scenario_id=seeded["timed_id"])
        before = session.last_activity

        updated = await lifecycle.heartbeat(db, session.id)
        assert updated.status == "in_progress"
        assert updated.last_activity >= before
        assert updated.time_started is not None

    async def test_heartbeat_on_terminal_session_fails_without_touching_activity(self, db, seeded):
        session = await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"])
        canceled = await lifecycle.set_status(db, session.id, "canceled")
        last_activity = canceled.last_activity

        with pytest.raises(InvalidStateError):
            await lifecycle.heartbeat(db, session.id)

        reloaded = await lifecycle.get_session(db, session.id, refresh=True)
        assert reloaded.last_activity == last_activity
        assert reloaded.status == "canceled"

    async def test_heartbeat_unknown_id(self, db, seeded):
        with pytest.raises(NotFoundError):
            await lifecycle.heartbeat(db, "missing")

    async def test_terminal_status_sets_end_time_and_transcript(self, db, seeded):
        session = await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"])
        updated = await lifecycle.set_status(db, session.id, "canceled", hints_used=2, transcript="bye")
        assert updated.status == "canceled"
        assert updated.end_time is not None
        assert updated.hints_used == 2
        assert updated.transcript == "bye"

    async def test_completed_only_via_complete(self, db, seeded):
        session = await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"])
        with pytest.raises(ValidationError):
            await lifecycle.set_status(db, session.id, "completed")

    async def test_unknown_status_rejected(self, db, seeded):
        session = await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"])
        with pytest.raises(ValidationError):
            await lifecycle.set_status(db, session.id, "paused")

    async def test_terminal_cannot_be_reopened(self, db, seeded):
        session = await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"])
        await lifecycle.kill(db, session.id)
        with pytest.raises(InvalidStateError):
            await lifecycle.set_status(db, session.id, "in_progress")


@pytest.mark.asyncio
class TestComplete:

    async def test_complete_links_evaluation(self, db, seeded, make_evaluation):
        session = await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"])
        await make_evaluation("eval-1", case_chat_id=session.id)

        completed = await lifecycle.complete(db, session.id, "eval-1", hints_used=1, transcript="...")
        assert completed.status == "completed"
        assert completed.evaluation_id == "eval-1"
        assert completed.end_time is not None

    async def test_second_completion_conflicts_and_keeps_first_evaluation(self, db, seeded, make_evaluation):
        session = await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"])
        await make_evaluation("eval-1")
        await make_evaluation("eval-2")
        await lifecycle.complete(db, session.id, "eval-1")

        with pytest.raises(ConflictError):
            await lifecycle.complete(db, session.id, "eval-2")

        reloaded = await lifecycle.get_session(db, session.id, refresh=True)
        assert reloaded.evaluation_id == "eval-1"

    async def test_complete_after_abandon_is_invalid_state(self, db, seeded, make_evaluation):
        session = await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"])
        await make_evaluation("eval-1")
        await lifecycle.set_status(db, session.id, "abandoned")
        with pytest.raises(InvalidStateError):
            await lifecycle.complete(db, session.id, "eval-1")

    async def test_complete_requires_existing_evaluation(self, db, seeded):
        session = await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"])
        with pytest.raises(NotFoundError):
            await lifecycle.complete(db, session.id, "no-such-eval")

    async def test_complete_rejects_someone_elses_evaluation(self, db, seeded, make_evaluation):
        session = await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"])
        other = await lifecycle.create_session(db, "student-9", seeded["case_id"])
        await make_evaluation("eval-other-student", student_id="student-9")
        await make_evaluation("eval-other-chat", case_chat_id=other.id)

        for evaluation_id in ("eval-other-student", "eval-other-chat"):
            with pytest.raises(ValidationError):
                await lifecycle.complete(db, session.id, evaluation_id)

        reloaded = await lifecycle.get_session(db, session.id, refresh=True)
        assert reloaded.status == "started"
        assert reloaded.evaluation_id is None


@pytest.mark.asyncio
class TestRestartKillDelete:

    async def test_restart_cancels_and_recreates(self, db, seeded):
        session = await lifecycle.create_session(
            db, STUDENT_ID, seeded["case_id"], scenario_id=seeded["timed_id"], persona="strict", chat_model="gpt-4o",
        )
        canceled, new = await lifecycle.restart(db, session.id)

        assert canceled.status == "canceled"
        assert canceled.end_time is not None
        assert new.id != session.id
        assert new.status == "started"
        assert (new.persona, new.chat_model, new.scenario_id) == ("strict", "gpt-4o", seeded["timed_id"])
        assert new.time_limit_minutes == 20

    async def test_restart_of_ended_chat_fails(self, db, seeded):
        session = await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"])
        await lifecycle.set_status(db, session.id, "canceled")
        with pytest.raises(InvalidStateError):
            await lifecycle.restart(db, session.id)

    async def test_kill_only_live(self, db, seeded, make_evaluation):
        session = await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"])
        await make_evaluation("eval-1")
        await lifecycle.complete(db, session.id, "eval-1")
        with pytest.raises(InvalidStateError):
            await lifecycle.kill(db, session.id)

    async def test_delete_keeps_evaluation_and_clears_link(self, db, seeded, make_evaluation):
        session = await lifecycle.create_session(
            db, STUDENT_ID, seeded["case_id"], initial_position="for", position_method="explicit",
        )
        await make_evaluation("eval-1", case_chat_id=session.id)
        await lifecycle.complete(db, session.id, "eval-1")

        await lifecycle.delete_session(db, session.id)

        assert await db.get(ChatSession, session.id) is None
        evaluation = await db.get(Evaluation, "eval-1")
        assert evaluation is not None
        assert evaluation.case_chat_id is None
        logs = (await db.execute(select(PositionLogEntry))).scalars().all()
        assert logs == []


@pytest.mark.asyncio
class TestListing:

    async def test_list_with_filters_and_total(self, db, seeded):
        first = await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"])
        await lifecycle.set_status(db, first.id, "canceled")
        await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"])
        await lifecycle.create_session(db, "student-9", seeded["case_id"])

        items, total = await lifecycle.list_sessions(db, student_id=STUDENT_ID)
        assert total == 2
        assert len(items) == 2

        items, total = await lifecycle.list_sessions(db, status="canceled")
        assert total == 1
        assert items[0].id == first.id

        items, total = await lifecycle.list_sessions(db, limit=1, offset=0)
        assert total == 3
        assert len(items) == 1

    async def test_student_listing(self, db, seeded):
        await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"])
        sessions = await lifecycle.list_student_sessions(db, STUDENT_ID, case_id=seeded["case_id"])
        assert len(sessions) == 1
        assert await lifecycle.list_student_sessions(db, STUDENT_ID, case_id="other") == []


async def _outcome(coro) -> str:
    try:
        await coro
    except CaseChatError as exc:
        return type(exc).__name__
    return "ok"


@pytest.mark.asyncio
class TestConcurrentWriters:
    """Each writer uses its own database session, as separate requests do."""

    async def test_racing_completions_have_one_winner(self, db, seeded, make_evaluation, session_factory):
        session = await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"])
        await make_evaluation("eval-1")
        await make_evaluation("eval-2")

        async def finish(evaluation_id):
            async with session_factory() as request_db:
                await lifecycle.complete(request_db, session.id, evaluation_id)

        results = await asyncio.gather(_outcome(finish("eval-1")), _outcome(finish("eval-2")))
        assert sorted(results) == ["ConflictError", "ok"]

        winner = "eval-1" if results[0] == "ok" else "eval-2"
        reloaded = await lifecycle.get_session(db, session.id, refresh=True)
        assert reloaded.status == "completed"
        assert reloaded.evaluation_id == winner

    async def test_completion_after_stale_read_conflicts(self, db, seeded, make_evaluation, session_factory):
        session = await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"])
        await make_evaluation("eval-1")
        await make_evaluation("eval-2")

        async with session_factory() as request_db:
            loaded = await lifecycle.get_session(request_db, session.id)
            assert loaded.status == "started"

            async with session_factory() as other_db:
                await lifecycle.complete(other_db, session.id, "eval-1")

            with pytest.raises(ConflictError):
                await lifecycle.complete(request_db, session.id, "eval-2")

        reloaded = await lifecycle.get_session(db, session.id, refresh=True)
        assert reloaded.evaluation_id == "eval-1"
