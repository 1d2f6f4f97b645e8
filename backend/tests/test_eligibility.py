"""
Test repeat eligibility, option layering and scenario completion.
"""

import pytest

from casechat.chat import lifecycle
from casechat.chat.eligibility import can_start_new, check_scenario_completion
from casechat.chat.options import ChatOptions, resolve_chat_options
from casechat.core.errors import ConflictError
from casechat.db.catalog.models import ChatOptionsDefault

STUDENT_ID = "student-1"


async def _complete_chat(db, make_evaluation, scenario_id, evaluation_id, allow_rechat=False):
    session = await lifecycle.create_session(
        db, STUDENT_ID, "malawis-pizza", scenario_id=scenario_id, section_id="sec-1",
    )
    await make_evaluation(evaluation_id, case_chat_id=session.id, allow_rechat=allow_rechat)
    return await lifecycle.complete(db, session.id, evaluation_id)


@pytest.mark.asyncio
class TestChatOptions:

    async def test_builtin_defaults(self, db, seeded):
        options = await resolve_chat_options(db, seeded["case_id"])
        assert options.chat_repeats == 0
        assert options.hints_allowed == 3
        assert options.show_case is True
        assert not options.tracks_positions

    async def test_layers_apply_in_order(self, db, seeded):
        db.add(ChatOptionsDefault(section_id=None, chat_options={"hints_allowed": 5, "chat_repeats": 2}))
        db.add(ChatOptionsDefault(section_id="sec-1", chat_options={"hints_allowed": 4}))
        await db.commit()

        assert (await resolve_chat_options(db, seeded["case_id"])).hints_allowed == 5

        options = await resolve_chat_options(
            db, seeded["case_id"], section_id="sec-1", scenario_id=seeded["timed_id"],
        )
        assert options.hints_allowed == 4
        # section_cases row overrides the global default
        assert options.chat_repeats == 0
        # scenario override is the last layer
        assert options.infers_positions

    def test_disable_flag_turns_tracking_off(self):
        options = ChatOptions(
            position_tracking_enabled=True,
            position_capture_method="ai_inferred",
            disable_position_tracking=True,
        )
        assert not options.tracks_positions
        assert not options.infers_positions


@pytest.mark.asyncio
class TestCanStartNew:

    async def test_fresh_student_may_start(self, db, seeded):
        decision = await can_start_new(db, STUDENT_ID, seeded["case_id"], "sec-1", seeded["timed_id"])
        assert decision.allowed
        assert decision.max_allowed == 1
        assert decision.to_dict()["can_start_new"] is True

    async def test_active_session_blocks(self, db, seeded):
        session = await lifecycle.create_session(db, STUDENT_ID, seeded["case_id"])
        decision = await can_start_new(db, STUDENT_ID, seeded["case_id"])
        assert not decision.allowed
        assert decision.has_active_session
        assert decision.active_session_id == session.id

    async def test_no_repeats_after_one_completion(self, db, seeded, make_evaluation):
        await _complete_chat(db, make_evaluation, seeded["timed_id"], "eval-1")

        decision = await can_start_new(db, STUDENT_ID, seeded["case_id"], "sec-1", seeded["timed_id"])
        assert not decision.allowed
        assert decision.completed_count == 1
        assert decision.chat_repeats == 0

    async def test_completion_counts_per_scenario(self, db, seeded, make_evaluation):
        await _complete_chat(db, make_evaluation, seeded["timed_id"], "eval-1")

        decision = await can_start_new(db, STUDENT_ID, seeded["case_id"], "sec-1", seeded["untimed_id"])
        assert decision.allowed
        assert decision.completed_count == 0

    async def test_rechat_override_lifts_ceiling(self, db, seeded, make_evaluation):
        await _complete_chat(db, make_evaluation, seeded["timed_id"], "eval-1", allow_rechat=True)

        decision = await can_start_new(db, STUDENT_ID, seeded["case_id"], "sec-1", seeded["timed_id"])
        assert decision.allowed
        assert decision.rechat_override

    async def test_exhausted_student_cannot_create(self, db, seeded, make_evaluation):
        await _complete_chat(db, make_evaluation, seeded["timed_id"], "eval-1")
        with pytest.raises(ConflictError):
            await lifecycle.create_session(
                db, STUDENT_ID, seeded["case_id"], scenario_id=seeded["timed_id"], section_id="sec-1",
            )


@pytest.mark.asyncio
class TestScenarioCompletion:

    async def test_one_of_two_completed(self, db, seeded, make_evaluation):
        await _complete_chat(db, make_evaluation, seeded["timed_id"], "eval-1")

        completion = await check_scenario_completion(db, STUDENT_ID, seeded["case_id"], "sec-1")
        assert completion.total_scenarios == 2
        assert completion.completed_count == 1
        assert not completion.all_completed
        assert [s.completed for s in completion.scenarios] == [True, False]

    async def test_all_completed(self, db, seeded, make_evaluation):
        await _complete_chat(db, make_evaluation, seeded["timed_id"], "eval-1")
        await _complete_chat(db, make_evaluation, seeded["untimed_id"], "eval-2")

        completion = await check_scenario_completion(db, STUDENT_ID, seeded["case_id"], "sec-1")
        assert completion.all_completed

    async def test_active_chat_is_reported(self, db, seeded):
        await lifecycle.create_session(
            db, STUDENT_ID, seeded["case_id"], scenario_id=seeded["untimed_id"], section_id="sec-1",
        )
        completion = await check_scenario_completion(db, STUDENT_ID, seeded["case_id"], "sec-1")
        assert [s.has_active_chat for s in completion.scenarios] == [False, True]

    async def test_case_without_scenarios_is_vacuously_complete(self, db, seeded):
        completion = await check_scenario_completion(db, STUDENT_ID, "no-scenarios-case")
        assert completion.total_scenarios == 0
        assert completion.all_completed
