"""Case chat API endpoints: session lifecycle, timer, eligibility, positions."""

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..chat import lifecycle, positions, sweeper, timer
from ..chat.eligibility import can_start_new, check_scenario_completion
from ..chat.options import resolve_chat_options
from ..chat.status import ChatStatus, RecordedBy
from ..core.config import Settings, get_settings
from ..db.base import get_db
from ..db.chat.models import ChatSession
from ..llm.router import ModelRouter
from .deps import (
    Principal,
    ensure_self_or_admin,
    get_current_principal,
    get_model_router,
    get_session_factory,
    require_admin,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/case-chats", tags=["Case Chats"])


# ==============================================================================
# Pydantic Models
# ==============================================================================

class CreateChatRequest(BaseModel):
    student_id: str
    case_id: str
    section_id: Optional[str] = None
    scenario_id: Optional[int] = None
    persona: Optional[str] = None
    chat_model: Optional[str] = None
    initial_position: Optional[str] = None
    position_method: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: str
    hints_used: Optional[int] = Field(default=None, ge=0)
    transcript: Optional[str] = None


class CompleteRequest(BaseModel):
    evaluation_id: str
    hints_used: Optional[int] = Field(default=None, ge=0)
    transcript: Optional[str] = None


class MarkAbandonedRequest(BaseModel):
    timeout_minutes: Optional[int] = Field(default=None, ge=1)
    dry_run: bool = False


class PositionUpdateRequest(BaseModel):
    position_type: str
    position_value: str
    recorded_by: str
    notes: Optional[str] = None


class ChatSessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    student_id: str
    case_id: str
    section_id: Optional[str] = None
    scenario_id: Optional[int] = None
    status: str
    persona: Optional[str] = None
    chat_model: Optional[str] = None
    hints_used: int
    time_limit_minutes: Optional[int] = None
    time_started: Optional[datetime] = None
    start_time: datetime
    last_activity: datetime
    end_time: Optional[datetime] = None
    transcript: Optional[str] = None
    evaluation_id: Optional[str] = None
    initial_position: Optional[str] = None
    final_position: Optional[str] = None
    position_method: Optional[str] = None


class ChatListResponse(BaseModel):
    items: list[ChatSessionResponse]
    total: int
    limit: int
    offset: int


class RestartResponse(BaseModel):
    canceled: ChatSessionResponse
    chat: ChatSessionResponse


class PositionLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    position_type: str
    position_value: Optional[str] = None
    recorded_by: str
    notes: Optional[str] = None
    confidence: Optional[float] = None
    failure_reason: Optional[str] = None
    recorded_at: datetime


class PositionHistoryResponse(BaseModel):
    initial_position: Optional[str] = None
    final_position: Optional[str] = None
    position_method: Optional[str] = None
    position_changed: bool
    logs: list[PositionLogResponse]


# ==============================================================================
# Helpers
# ==============================================================================

async def _owned_session(db: AsyncSession, chat_id: str, principal: Principal) -> ChatSession:
    session = await lifecycle.get_session(db, chat_id)
    ensure_self_or_admin(principal, session.student_id)
    return session


# ==============================================================================
# Collection Endpoints
# ==============================================================================

@router.post("", response_model=ChatSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_chat(
    request: CreateChatRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Start a new chat for a student and case (optionally a scenario)."""
    ensure_self_or_admin(principal, request.student_id)
    return await lifecycle.create_session(
        db,
        student_id=request.student_id,
        case_id=request.case_id,
        scenario_id=request.scenario_id,
        section_id=request.section_id,
        persona=request.persona,
        chat_model=request.chat_model,
        initial_position=request.initial_position,
        position_method=request.position_method,
    )


@router.get("", response_model=ChatListResponse)
async def list_chats(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    section_id: Optional[str] = None,
    student_id: Optional[str] = None,
    case_id: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    _: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """List chats with filters (admin only)."""
    if status_filter and status_filter not in {s.value for s in ChatStatus}:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"Unknown status '{status_filter}'")
    items, total = await lifecycle.list_sessions(
        db,
        status=status_filter,
        section_id=section_id,
        student_id=student_id,
        case_id=case_id,
        limit=limit,
        offset=offset,
    )
    return ChatListResponse(
        items=[ChatSessionResponse.model_validate(item) for item in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/student/{student_id}", response_model=list[ChatSessionResponse])
async def list_student_chats(
    student_id: str,
    case_id: Optional[str] = None,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    ensure_self_or_admin(principal, student_id)
    return await lifecycle.list_student_sessions(db, student_id, case_id)


@router.post("/mark-abandoned")
async def mark_abandoned_chats(
    request: Optional[MarkAbandonedRequest] = None,
    _: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Run one abandonment sweep now (admin only)."""
    request = request or MarkAbandonedRequest()
    timeout = request.timeout_minutes or settings.ABANDON_TIMEOUT_MINUTES

    if request.dry_run:
        stale = await sweeper.find_stale_sessions(db, timeout)
        return {
            "affected_rows": 0,
            "would_abandon": [s.id for s in stale],
            "message": f"{len(stale)} chat(s) would be marked as abandoned",
        }

    affected = await sweeper.mark_abandoned(db, timeout)
    return {
        "affected_rows": affected,
        "message": f"Marked {affected} chat(s) as abandoned",
    }


@router.get("/check-repeats/{student_id}/{case_id}")
async def check_repeats(
    student_id: str,
    case_id: str,
    section_id: Optional[str] = None,
    scenario_id: Optional[int] = None,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Can this student start another chat for the case?"""
    ensure_self_or_admin(principal, student_id)
    decision = await can_start_new(db, student_id, case_id, section_id, scenario_id)
    return decision.to_dict()


@router.get("/check-scenario-completion/{student_id}/{case_id}")
async def check_scenarios(
    student_id: str,
    case_id: str,
    section_id: Optional[str] = None,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    ensure_self_or_admin(principal, student_id)
    completion = await check_scenario_completion(db, student_id, case_id, section_id)
    return {
        "scenarios": [
            {
                "id": s.scenario_id,
                "scenario_name": s.scenario_name,
                "sort_order": s.sort_order,
                "completed": s.completed,
                "completed_count": s.completed_count,
                "has_active_chat": s.has_active_chat,
            }
            for s in completion.scenarios
        ],
        "total_scenarios": completion.total_scenarios,
        "completed_count": completion.completed_count,
        "all_completed": completion.all_completed,
    }


# ==============================================================================
# Single Chat Endpoints
# ==============================================================================

@router.get("/{chat_id}", response_model=ChatSessionResponse)
async def get_chat(
    chat_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await _owned_session(db, chat_id, principal)


@router.patch("/{chat_id}/activity", response_model=ChatSessionResponse)
async def record_activity(
    chat_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Heartbeat from the chat window."""
    await _owned_session(db, chat_id, principal)
    return await lifecycle.heartbeat(db, chat_id)


@router.patch("/{chat_id}/status", response_model=ChatSessionResponse)
async def update_status(
    chat_id: str,
    request: StatusUpdateRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    if request.status == ChatStatus.KILLED.value and not principal.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator role required")
    await _owned_session(db, chat_id, principal)
    return await lifecycle.set_status(
        db, chat_id, request.status,
        hints_used=request.hints_used,
        transcript=request.transcript,
    )


@router.post("/{chat_id}/restart", response_model=RestartResponse)
async def restart_chat(
    chat_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Cancel the chat and open a fresh one with the same settings."""
    await _owned_session(db, chat_id, principal)
    canceled, new = await lifecycle.restart(db, chat_id)
    return RestartResponse(
        canceled=ChatSessionResponse.model_validate(canceled),
        chat=ChatSessionResponse.model_validate(new),
    )


@router.patch("/{chat_id}/complete", response_model=ChatSessionResponse)
async def complete_chat(
    chat_id: str,
    request: CompleteRequest,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    model_router: ModelRouter = Depends(get_model_router),
):
    """Mark the chat completed and link its evaluation.

    Position inference, when configured, runs after the response is sent.
    """
    await _owned_session(db, chat_id, principal)
    session = await lifecycle.complete(
        db, chat_id, request.evaluation_id,
        hints_used=request.hints_used,
        transcript=request.transcript,
    )
    background_tasks.add_task(
        positions.run_post_completion_inference, session_factory, model_router, chat_id,
    )
    return session


@router.patch("/{chat_id}/kill", response_model=ChatSessionResponse)
async def kill_chat(
    chat_id: str,
    _: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await lifecycle.kill(db, chat_id)


@router.delete("/{chat_id}")
async def delete_chat(
    chat_id: str,
    _: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    await lifecycle.delete_session(db, chat_id)
    return {"deleted": True, "id": chat_id}


# ==============================================================================
# Timer Endpoints
# ==============================================================================

@router.post("/{chat_id}/start-timer")
async def start_timer(
    chat_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Start the countdown (call on the first student message)."""
    await _owned_session(db, chat_id, principal)
    state = await timer.start_timer(db, chat_id)
    return state.to_dict()


@router.get("/{chat_id}/time-remaining")
async def time_remaining(
    chat_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    session = await _owned_session(db, chat_id, principal)
    state = await timer.get_time_remaining(db, chat_id)
    options = await resolve_chat_options(db, session.case_id, session.section_id, session.scenario_id)
    return {**state.to_dict(), "auto_submit_on_expiry": options.timeout_chat}


# ==============================================================================
# Position Endpoints
# ==============================================================================

@router.patch("/{chat_id}/position", response_model=ChatSessionResponse)
async def update_position(
    chat_id: str,
    request: PositionUpdateRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    if request.recorded_by in (RecordedBy.INSTRUCTOR.value, RecordedBy.AI.value) and not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only instructors can record instructor or AI positions",
        )
    await _owned_session(db, chat_id, principal)
    return await positions.set_position(
        db, chat_id,
        position_type=request.position_type,
        position_value=request.position_value,
        recorded_by=request.recorded_by,
        notes=request.notes,
    )


@router.get("/{chat_id}/positions", response_model=PositionHistoryResponse)
async def get_positions(
    chat_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    await _owned_session(db, chat_id, principal)
    history = await positions.get_position_history(db, chat_id)
    return PositionHistoryResponse(
        initial_position=history.initial_position,
        final_position=history.final_position,
        position_method=history.position_method,
        position_changed=history.position_changed,
        logs=[PositionLogResponse.model_validate(entry) for entry in history.logs],
    )
