"""Repeat/eligibility policy and scenario completion tracking."""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.catalog.models import CaseScenario, Evaluation, SectionCase, SectionCaseScenario
from ..db.chat.models import ChatSession
from .options import resolve_chat_options
from .status import LIVE_VALUES, ChatStatus

logger = logging.getLogger(__name__)


@dataclass
class EligibilityDecision:
    allowed: bool
    completed_count: int
    max_allowed: int
    has_active_session: bool
    chat_repeats: int
    active_session_id: Optional[str] = None
    rechat_override: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "can_start_new": self.allowed,
            "completed_count": self.completed_count,
            "max_chats": self.max_allowed,
            "has_active_chat": self.has_active_session,
            "active_chat_id": self.active_session_id,
            "chat_repeats": self.chat_repeats,
            "rechat_override": self.rechat_override,
        }


@dataclass
class ScenarioCompletion:
    scenario_id: int
    scenario_name: str
    sort_order: int
    completed: bool
    completed_count: int
    has_active_chat: bool


@dataclass
class CaseCompletion:
    scenarios: list[ScenarioCompletion] = field(default_factory=list)

    @property
    def total_scenarios(self) -> int:
        return len(self.scenarios)

    @property
    def completed_count(self) -> int:
        return sum(1 for s in self.scenarios if s.completed)

    @property
    def all_completed(self) -> bool:
        return self.completed_count >= self.total_scenarios


async def find_active_session(db: AsyncSession, student_id: str, case_id: str) -> Optional[ChatSession]:
    """Return the live session for (student, case), if any."""
    result = await db.execute(
        select(ChatSession)
        .where(
            ChatSession.student_id == student_id,
            ChatSession.case_id == case_id,
            ChatSession.status.in_(LIVE_VALUES),
        )
        .order_by(ChatSession.start_time.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def count_completed(
    db: AsyncSession,
    student_id: str,
    case_id: str,
    scenario_id: Optional[int] = None,
) -> int:
    query = select(func.count()).select_from(ChatSession).where(
        ChatSession.student_id == student_id,
        ChatSession.case_id == case_id,
        ChatSession.status == ChatStatus.COMPLETED.value,
    )
    if scenario_id is not None:
        query = query.where(ChatSession.scenario_id == scenario_id)
    return (await db.execute(query)).scalar_one()


async def has_rechat_override(db: AsyncSession, student_id: str, case_id: str) -> bool:
    """True when the student's latest evaluation for the case allows a re-chat."""
    result = await db.execute(
        select(Evaluation.allow_rechat)
        .where(Evaluation.student_id == student_id, Evaluation.case_id == case_id)
        .order_by(Evaluation.created_at.desc(), Evaluation.id.desc())
        .limit(1)
    )
    return bool(result.scalar_one_or_none())


async def can_start_new(
    db: AsyncSession,
    student_id: str,
    case_id: str,
    section_id: Optional[str] = None,
    scenario_id: Optional[int] = None,
) -> EligibilityDecision:
    """Decide whether a student may open a new chat for a case or scenario.

    A live session for the case always blocks. Otherwise the student may
    start while ``completed < chat_repeats + 1``, counted per scenario when a
    scenario is given. An ``allow_rechat`` flag on the latest evaluation
    lifts the ceiling for the case.
    """
    options = await resolve_chat_options(db, case_id, section_id, scenario_id)
    chat_repeats = max(0, int(options.chat_repeats or 0))
    max_allowed = chat_repeats + 1

    active = await find_active_session(db, student_id, case_id)
    completed = await count_completed(db, student_id, case_id, scenario_id)
    rechat = await has_rechat_override(db, student_id, case_id)

    allowed = active is None and (rechat or completed < max_allowed)

    return EligibilityDecision(
        allowed=allowed,
        completed_count=completed,
        max_allowed=max_allowed,
        has_active_session=active is not None,
        active_session_id=active.id if active is not None else None,
        chat_repeats=chat_repeats,
        rechat_override=rechat,
    )


async def _assigned_scenarios(
    db: AsyncSession,
    case_id: str,
    section_id: Optional[str],
) -> list[CaseScenario]:
    if section_id:
        result = await db.execute(
            select(CaseScenario)
            .join(SectionCaseScenario, SectionCaseScenario.scenario_id == CaseScenario.id)
            .join(SectionCase, SectionCase.id == SectionCaseScenario.section_case_id)
            .where(
                SectionCase.section_id == section_id,
                SectionCase.case_id == case_id,
                SectionCaseScenario.enabled.is_(True),
                CaseScenario.enabled.is_(True),
            )
            .order_by(SectionCaseScenario.sort_order, CaseScenario.id)
        )
        scenarios = list(result.scalars().all())
        if scenarios:
            return scenarios

    result = await db.execute(
        select(CaseScenario)
        .where(CaseScenario.case_id == case_id, CaseScenario.enabled.is_(True))
        .order_by(CaseScenario.sort_order, CaseScenario.id)
    )
    return list(result.scalars().all())


async def check_scenario_completion(
    db: AsyncSession,
    student_id: str,
    case_id: str,
    section_id: Optional[str] = None,
) -> CaseCompletion:
    """Report which assigned, enabled scenarios the student has completed."""
    scenarios = await _assigned_scenarios(db, case_id, section_id)

    completed_rows = await db.execute(
        select(ChatSession.scenario_id, func.count())
        .where(
            ChatSession.student_id == student_id,
            ChatSession.case_id == case_id,
            ChatSession.status == ChatStatus.COMPLETED.value,
        )
        .group_by(ChatSession.scenario_id)
    )
    completed_by_scenario = {scenario_id: count for scenario_id, count in completed_rows.all()}

    active_rows = await db.execute(
        select(ChatSession.scenario_id).where(
            ChatSession.student_id == student_id,
            ChatSession.case_id == case_id,
            ChatSession.status.in_(LIVE_VALUES),
        )
    )
    active_scenarios = set(active_rows.scalars().all())

    completion = CaseCompletion()
    for scenario in scenarios:
        done = completed_by_scenario.get(scenario.id, 0)
        completion.scenarios.append(ScenarioCompletion(
            scenario_id=scenario.id,
            scenario_name=scenario.scenario_name,
            sort_order=scenario.sort_order,
            completed=done > 0,
            completed_count=done,
            has_active_chat=scenario.id in active_scenarios,
        ))

    logger.debug(
        "Scenario completion for student=%s case=%s: %d/%d",
        student_id, case_id, completion.completed_count, completion.total_scenarios,
    )
    return completion
