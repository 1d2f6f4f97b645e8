"""Position tracking.

A student's stance on the case question is captured twice (``initial``
and ``final``) by the student, an instructor, or AI inference over the
finished transcript. ``chat_position_logs`` is the append-only source of
truth; the columns on ``case_chats`` cache the latest value.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import get_settings
from ..core.errors import CaseChatError, NotFoundError, ProviderCallError, ValidationError
from ..db.catalog.models import Case, CaseScenario
from ..db.chat.models import ChatSession, PositionLogEntry
from .options import resolve_chat_options
from .status import ChatStatus, PositionMethod, PositionType, RecordedBy

if TYPE_CHECKING:
    from ..llm.router import ModelRouter

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


@dataclass
class PositionHistory:
    initial_position: Optional[str]
    final_position: Optional[str]
    position_method: Optional[str]
    logs: list[PositionLogEntry] = field(default_factory=list)

    @property
    def position_changed(self) -> bool:
        return self.final_position is not None and self.initial_position != self.final_position


@dataclass
class PositionInference:
    position: str
    confidence: float
    reasoning: str


@dataclass
class CaseContext:
    case_title: str = "Unknown Case"
    chat_question: str = "What should be done?"
    arguments_for: Optional[str] = None
    arguments_against: Optional[str] = None


def _cache_column(position_type: PositionType) -> str:
    return "initial_position" if position_type == PositionType.INITIAL else "final_position"


def record_position(
    db: AsyncSession,
    session: ChatSession,
    position_type: PositionType,
    position_value: str,
    recorded_by: RecordedBy,
    notes: Optional[str] = None,
    confidence: Optional[float] = None,
) -> PositionLogEntry:
    """Update the cached column and append a log entry (no flush)."""
    setattr(session, _cache_column(position_type), position_value)
    if not session.position_method:
        session.position_method = PositionMethod.for_recorder(recorded_by).value

    entry = PositionLogEntry(
        case_chat_id=session.id,
        position_type=position_type.value,
        position_value=position_value,
        recorded_by=RecordedBy(recorded_by).value,
        notes=notes,
        confidence=confidence,
    )
    db.add(entry)
    return entry


async def set_position(
    db: AsyncSession,
    session_id: str,
    position_type: str,
    position_value: str,
    recorded_by: str,
    notes: Optional[str] = None,
) -> ChatSession:
    """Record a position for any session, live or ended."""
    try:
        kind = PositionType(position_type)
    except ValueError:
        raise ValidationError("position_type must be 'initial' or 'final'")
    try:
        recorder = RecordedBy(recorded_by)
    except ValueError:
        allowed = ", ".join(r.value for r in RecordedBy)
        raise ValidationError(f"recorded_by must be one of: {allowed}")
    if not position_value or not position_value.strip():
        raise ValidationError("position_value is required")

    session = await db.get(ChatSession, session_id, populate_existing=True)
    if session is None:
        raise NotFoundError("Chat", session_id)

    record_position(db, session, kind, position_value.strip(), recorder, notes)
    await db.commit()
    logger.info("Chat %s %s position -> %s (%s)", session_id, kind.value, position_value, recorder.value)
    return session


async def get_position_history(db: AsyncSession, session_id: str) -> PositionHistory:
    session = await db.get(ChatSession, session_id, populate_existing=True)
    if session is None:
        raise NotFoundError("Chat", session_id)

    result = await db.execute(
        select(PositionLogEntry)
        .where(PositionLogEntry.case_chat_id == session_id)
        .order_by(PositionLogEntry.recorded_at, PositionLogEntry.id)
    )
    return PositionHistory(
        initial_position=session.initial_position,
        final_position=session.final_position,
        position_method=session.position_method,
        logs=list(result.scalars().all()),
    )


def build_inference_prompt(transcript: str, context: CaseContext, options: list[str]) -> str:
    labels = ", ".join(options)
    sections = [
        "You are analyzing a student's conversation with a case protagonist "
        "to determine their stance on the central question.",
        "",
        f"CASE: {context.case_title}",
        f"CENTRAL QUESTION: {context.chat_question}",
        "",
    ]
    if context.arguments_for:
        sections += ["ARGUMENTS FOR:", context.arguments_for, ""]
    if context.arguments_against:
        sections += ["ARGUMENTS AGAINST:", context.arguments_against, ""]
    sections += [
        "TRANSCRIPT:",
        transcript,
        "",
        "Based on the student's statements, arguments, and conclusions in this "
        "transcript, determine:",
        "1. Their position on the central question",
        "2. Your confidence level (0.0 to 1.0)",
        "3. Brief reasoning for your determination",
        "",
        f"Available positions: {labels}",
        "",
        "Respond ONLY with valid JSON in this exact format:",
        "{",
        f'  "position": "<one of: {labels}>",',
        '  "confidence": <number between 0.0 and 1.0>,',
        '  "reasoning": "<1-2 sentence explanation of how you determined the position>"',
        "}",
    ]
    return "\n".join(sections)


def parse_inference_reply(text: str, options: list[str]) -> PositionInference:
    """Parse the model's JSON reply. Raises ValueError when unusable."""
    content = (text or "").strip()
    if not content:
        raise ValueError("empty inference reply")

    match = _FENCE_RE.search(content)
    if match:
        content = match.group(1).strip()

    data = json.loads(content)
    if not isinstance(data, dict):
        raise ValueError("inference reply is not a JSON object")

    position = str(data.get("position") or "").strip().lower()
    if position not in options:
        raise ValueError(f"position {position!r} is not one of {options}")

    confidence = data.get("confidence")
    if isinstance(confidence, (int, float)) and not isinstance(confidence, bool):
        confidence = max(0.0, min(1.0, float(confidence)))
    else:
        confidence = 0.5

    return PositionInference(
        position=position,
        confidence=confidence,
        reasoning=str(data.get("reasoning") or "No reasoning provided"),
    )


async def infer_position(
    router: "ModelRouter",
    model_id: str,
    transcript: str,
    context: CaseContext,
    options: list[str],
    case_id: Optional[str] = None,
    temperature: Optional[float] = None,
) -> PositionInference:
    """One inference call through the router; raises on any failure."""
    if temperature is None:
        temperature = get_settings().POSITION_INFERENCE_TEMPERATURE
    prompt = build_inference_prompt(transcript, context, options)
    response = await router.evaluate(model_id, prompt, case_id=case_id, temperature=temperature)
    return parse_inference_reply(response.text, options)


async def _load_context(db: AsyncSession, session: ChatSession) -> CaseContext:
    context = CaseContext()
    case = await db.get(Case, session.case_id)
    if case is not None:
        context.case_title = case.case_title or context.case_title
        context.chat_question = case.chat_question or context.chat_question
        context.arguments_for = case.arguments_for
        context.arguments_against = case.arguments_against

    if session.scenario_id is not None:
        scenario = await db.get(CaseScenario, session.scenario_id)
        if scenario is not None:
            context.chat_question = scenario.chat_question or context.chat_question
            context.arguments_for = scenario.arguments_for or context.arguments_for
            context.arguments_against = scenario.arguments_against or context.arguments_against
    return context


async def _fill_empty_slot(
    db: AsyncSession,
    session_id: str,
    position_type: PositionType,
    inference: PositionInference,
) -> bool:
    column = getattr(ChatSession, _cache_column(position_type))
    result = await db.execute(
        update(ChatSession)
        .where(ChatSession.id == session_id, column.is_(None))
        .values({column.key: inference.position})
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        return False

    db.add(PositionLogEntry(
        case_chat_id=session_id,
        position_type=position_type.value,
        position_value=inference.position,
        recorded_by=RecordedBy.AI.value,
        notes=f"AI inference (confidence: {inference.confidence:.2f}): {inference.reasoning}",
        confidence=inference.confidence,
    ))
    return True


async def run_post_completion_inference(
    session_factory: async_sessionmaker,
    router: "ModelRouter",
    session_id: str,
    default_model: Optional[str] = None,
) -> Optional[PositionInference]:
    """Infer missing positions for a completed chat when its options ask for it.

    Runs outside the request that completed the chat, with its own DB
    session. Failures are written to the position log and never raised.
    """
    async with session_factory() as db:
        session = await db.get(ChatSession, session_id)
        if session is None or session.status != ChatStatus.COMPLETED.value:
            return None

        empty_slots = [
            kind for kind in PositionType
            if getattr(session, _cache_column(kind)) is None
        ]
        if not empty_slots or not (session.transcript or "").strip():
            return None

        options = await resolve_chat_options(db, session.case_id, session.section_id, session.scenario_id)
        if not options.infers_positions:
            return None

        labels = [str(o).strip().lower() for o in options.position_options if str(o).strip()]
        if len(labels) < 2:
            labels = ["for", "against"]

        context = await _load_context(db, session)
        model_id = session.chat_model or default_model or get_settings().POSITION_INFERENCE_MODEL

        try:
            inference = await infer_position(
                router, model_id, session.transcript, context, labels, case_id=session.case_id,
            )
        except (ProviderCallError, CaseChatError, ValueError) as exc:
            reason = f"{type(exc).__name__}: {exc}"
            logger.warning("Position inference failed for chat %s: %s", session_id, reason)
            for kind in empty_slots:
                db.add(PositionLogEntry(
                    case_chat_id=session_id,
                    position_type=kind.value,
                    position_value=None,
                    recorded_by=RecordedBy.AI.value,
                    failure_reason=reason[:1000],
                ))
            await db.commit()
            return None

        filled = [kind for kind in empty_slots if await _fill_empty_slot(db, session_id, kind, inference)]
        if filled:
            await db.execute(
                update(ChatSession)
                .where(ChatSession.id == session_id, ChatSession.position_method.is_(None))
                .values(position_method=PositionMethod.AI_INFERRED.value)
                .execution_options(synchronize_session=False)
            )
        await db.commit()

        logger.info(
            "Inferred position for chat %s: %s (confidence %.2f, slots %s)",
            session_id, inference.position, inference.confidence, [k.value for k in filled],
        )
        return inference
