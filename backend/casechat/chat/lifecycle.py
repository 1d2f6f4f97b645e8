"""Chat session lifecycle: create, heartbeat, status changes, completion.

Every status change is a compare-and-set UPDATE conditioned on the
session still being live, so two racing writers cannot both win and a
terminal session is never reopened. When the UPDATE matches no row the
session is re-read to report *why*: missing, already completed, or in
some other terminal state.
"""

import logging
from typing import Any, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import utcnow
from ..core.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from ..db.catalog.models import Case, CaseScenario, Evaluation
from ..db.chat.models import ChatSession, PositionLogEntry
from .eligibility import can_start_new
from .positions import record_position
from .status import LIVE_VALUES, ChatStatus, PositionMethod, PositionType, RecordedBy, require_transition

logger = logging.getLogger(__name__)


async def get_session(db: AsyncSession, session_id: str, refresh: bool = False) -> ChatSession:
    """Load one session or raise NotFoundError."""
    session = await db.get(ChatSession, session_id, populate_existing=refresh)
    if session is None:
        raise NotFoundError("Chat", session_id)
    return session


async def list_sessions(
    db: AsyncSession,
    status: Optional[str] = None,
    section_id: Optional[str] = None,
    student_id: Optional[str] = None,
    case_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[ChatSession], int]:
    """Admin listing with filters; returns ``(page, total)``."""
    filters = []
    if status:
        filters.append(ChatSession.status == ChatStatus(status).value)
    if section_id:
        filters.append(ChatSession.section_id == section_id)
    if student_id:
        filters.append(ChatSession.student_id == student_id)
    if case_id:
        filters.append(ChatSession.case_id == case_id)

    total = (await db.execute(
        select(func.count()).select_from(ChatSession).where(*filters)
    )).scalar_one()
    result = await db.execute(
        select(ChatSession)
        .where(*filters)
        .order_by(ChatSession.start_time.desc(), ChatSession.id)
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


async def list_student_sessions(
    db: AsyncSession,
    student_id: str,
    case_id: Optional[str] = None,
) -> list[ChatSession]:
    query = select(ChatSession).where(ChatSession.student_id == student_id)
    if case_id:
        query = query.where(ChatSession.case_id == case_id)
    result = await db.execute(query.order_by(ChatSession.start_time.desc()))
    return list(result.scalars().all())


async def _compare_and_set(
    db: AsyncSession,
    session_id: str,
    action: str,
    values: dict[str, Any],
) -> None:
    """UPDATE a live session or raise the error explaining why it is not live."""
    result = await db.execute(
        update(ChatSession)
        .where(ChatSession.id == session_id, ChatSession.status.in_(LIVE_VALUES))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        return

    # Locking read: a plain read can return this transaction's stale snapshot.
    current = await db.get(ChatSession, session_id, populate_existing=True, with_for_update=True)
    if current is None:
        raise NotFoundError("Chat", session_id)
    if current.status == ChatStatus.COMPLETED.value and values.get("status") == ChatStatus.COMPLETED.value:
        raise ConflictError(f"Chat {session_id} is already completed")
    raise InvalidStateError(session_id, current.status, action)


async def _insert_session(
    db: AsyncSession,
    student_id: str,
    case_id: str,
    scenario_id: Optional[int],
    section_id: Optional[str],
    persona: Optional[str],
    chat_model: Optional[str],
) -> ChatSession:
    if await db.get(Case, case_id) is None:
        raise NotFoundError("Case", case_id)

    time_limit = None
    if scenario_id is not None:
        scenario = await db.get(CaseScenario, scenario_id)
        if scenario is None or scenario.case_id != case_id:
            raise NotFoundError("Scenario", scenario_id)
        if scenario.chat_time_limit and scenario.chat_time_limit > 0:
            time_limit = scenario.chat_time_limit

    now = utcnow()
    session = ChatSession(
        student_id=student_id,
        case_id=case_id,
        section_id=section_id,
        scenario_id=scenario_id,
        persona=persona,
        chat_model=chat_model,
        status=ChatStatus.STARTED.value,
        time_limit_minutes=time_limit,
        start_time=now,
        last_activity=now,
    )
    db.add(session)
    await db.flush()
    return session


async def create_session(
    db: AsyncSession,
    student_id: str,
    case_id: str,
    scenario_id: Optional[int] = None,
    section_id: Optional[str] = None,
    persona: Optional[str] = None,
    chat_model: Optional[str] = None,
    initial_position: Optional[str] = None,
    position_method: Optional[str] = None,
) -> ChatSession:
    """Open a new chat, enforcing one live session and the repeat ceiling."""
    method = None
    if initial_position:
        try:
            method = PositionMethod(position_method or PositionMethod.EXPLICIT.value)
        except ValueError:
            allowed = ", ".join(m.value for m in PositionMethod)
            raise ValidationError(f"position_method must be one of: {allowed}")

    decision = await can_start_new(db, student_id, case_id, section_id, scenario_id)
    if decision.has_active_session:
        raise ConflictError(
            f"Student {student_id} already has an active chat for case {case_id}"
        )
    if not decision.allowed:
        raise ConflictError(
            f"Student {student_id} has used all {decision.max_allowed} chat(s) for case {case_id}"
        )

    session = await _insert_session(
        db, student_id, case_id, scenario_id, section_id, persona, chat_model,
    )

    if method is not None:
        recorder = RecordedBy.STUDENT if method == PositionMethod.EXPLICIT else RecordedBy.INSTRUCTOR
        record_position(db, session, PositionType.INITIAL, initial_position, recorder)
        session.position_method = method.value

    await db.commit()
    logger.info(
        "Created chat %s for student=%s case=%s scenario=%s",
        session.id, student_id, case_id, scenario_id,
    )
    return session


async def heartbeat(db: AsyncSession, session_id: str) -> ChatSession:
    """Record student activity; promotes started -> in_progress."""
    now = utcnow()
    await _compare_and_set(
        db, session_id, "update activity for",
        {"last_activity": now, "status": ChatStatus.IN_PROGRESS.value},
    )
    await db.execute(
        update(ChatSession)
        .where(ChatSession.id == session_id, ChatSession.time_started.is_(None))
        .values(time_started=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return await get_session(db, session_id, refresh=True)


async def set_status(
    db: AsyncSession,
    session_id: str,
    status: str,
    hints_used: Optional[int] = None,
    transcript: Optional[str] = None,
) -> ChatSession:
    """Move a live session to ``in_progress`` or a non-completed terminal state."""
    try:
        target = ChatStatus(status)
    except ValueError:
        raise ValidationError(f"Unknown chat status '{status}'")
    if target == ChatStatus.COMPLETED:
        raise ValidationError("Use the complete operation to mark a chat completed")
    if target == ChatStatus.STARTED:
        raise ValidationError("A chat cannot be moved back to 'started'")

    current = await get_session(db, session_id, refresh=True)
    require_transition(session_id, current.status, target, f"set status '{target.value}' on")

    values: dict[str, Any] = {"status": target.value}
    if target.is_terminal:
        values["end_time"] = utcnow()
    else:
        values["last_activity"] = utcnow()
    if hints_used is not None:
        values["hints_used"] = hints_used
    if transcript is not None:
        values["transcript"] = transcript

    await _compare_and_set(db, session_id, f"set status '{target.value}' on", values)
    await db.commit()
    logger.info("Chat %s status -> %s", session_id, target.value)
    return await get_session(db, session_id, refresh=True)


async def restart(db: AsyncSession, session_id: str) -> tuple[ChatSession, ChatSession]:
    """Cancel a live session and open a fresh one with the same settings.

    Both steps share one transaction. The repeat ceiling is not re-checked.
    Returns ``(canceled, new)``.
    """
    old = await get_session(db, session_id, refresh=True)
    await _compare_and_set(
        db, session_id, "restart",
        {"status": ChatStatus.CANCELED.value, "end_time": utcnow()},
    )
    new = await _insert_session(
        db,
        old.student_id,
        old.case_id,
        old.scenario_id,
        old.section_id,
        old.persona,
        old.chat_model,
    )
    await db.commit()
    logger.info("Restarted chat %s as %s", session_id, new.id)
    return await get_session(db, session_id, refresh=True), new


async def complete(
    db: AsyncSession,
    session_id: str,
    evaluation_id: str,
    hints_used: Optional[int] = None,
    transcript: Optional[str] = None,
) -> ChatSession:
    """The only way into ``completed``; links the evaluation exactly once."""
    if not evaluation_id:
        raise ValidationError("evaluation_id is required to complete a chat")
    session = await get_session(db, session_id)
    evaluation = await db.get(Evaluation, evaluation_id)
    if evaluation is None:
        raise NotFoundError("Evaluation", evaluation_id)
    if (
        evaluation.student_id != session.student_id
        or (evaluation.case_id is not None and evaluation.case_id != session.case_id)
        or (evaluation.case_chat_id is not None and evaluation.case_chat_id != session.id)
    ):
        raise ValidationError(f"Evaluation {evaluation_id} does not belong to chat {session_id}")

    values: dict[str, Any] = {
        "status": ChatStatus.COMPLETED.value,
        "end_time": utcnow(),
        "evaluation_id": evaluation_id,
    }
    if hints_used is not None:
        values["hints_used"] = hints_used
    if transcript is not None:
        values["transcript"] = transcript

    await _compare_and_set(db, session_id, "complete", values)
    await db.commit()
    logger.info("Chat %s completed with evaluation %s", session_id, evaluation_id)
    return await get_session(db, session_id, refresh=True)


async def kill(db: AsyncSession, session_id: str) -> ChatSession:
    await _compare_and_set(
        db, session_id, "kill",
        {"status": ChatStatus.KILLED.value, "end_time": utcnow()},
    )
    await db.commit()
    logger.warning("Chat %s killed by administrator", session_id)
    return await get_session(db, session_id, refresh=True)


async def delete_session(db: AsyncSession, session_id: str) -> None:
    """Hard delete; evaluations keep existing with their link cleared."""
    await get_session(db, session_id)
    await db.execute(
        update(Evaluation)
        .where(Evaluation.case_chat_id == session_id)
        .values(case_chat_id=None)
        .execution_options(synchronize_session=False)
    )
    await db.execute(delete(PositionLogEntry).where(PositionLogEntry.case_chat_id == session_id))
    await db.execute(delete(ChatSession).where(ChatSession.id == session_id))
    await db.commit()
    db.expunge_all()
    logger.warning("Chat %s deleted", session_id)
