"""LLM API endpoints: one chat turn and one evaluation through the model router."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..llm.resilience import ResilientChat
from .deps import Principal, get_current_principal, get_resilient_chat

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/llm", tags=["LLM"])


class HistoryEntry(BaseModel):
    role: str = "user"
    content: str = ""


class ChatRequest(BaseModel):
    model_id: str = Field(..., alias="modelId", min_length=1)
    system_prompt: str = Field(..., alias="systemPrompt", min_length=1)
    history: list[HistoryEntry] = Field(default_factory=list)
    message: str = Field(..., min_length=1)
    case_id: Optional[str] = Field(default=None, alias="caseId")

    model_config = {"populate_by_name": True}


class EvalRequest(BaseModel):
    model_id: str = Field(..., alias="modelId", min_length=1)
    prompt: str = Field(..., min_length=1)
    case_id: Optional[str] = Field(default=None, alias="caseId")

    model_config = {"populate_by_name": True}


class ChatResponse(BaseModel):
    text: Optional[str] = None
    messages: list[str]
    retried: bool = False
    alert: bool = False
    meta: dict[str, Any] = Field(default_factory=dict)


class EvalResponse(BaseModel):
    text: str
    meta: dict[str, Any] = Field(default_factory=dict)


@router.post("/chat", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    _: Principal = Depends(get_current_principal),
    resilient: ResilientChat = Depends(get_resilient_chat),
):
    """Send one student message to the protagonist.

    Transient provider failures are retried once after a delay; the
    returned ``messages`` are what the chat window should display.
    """
    turn = await resilient.chat(
        request.model_id,
        request.system_prompt,
        [entry.model_dump() for entry in request.history],
        request.message,
        case_id=request.case_id,
    )
    return ChatResponse(
        text=turn.reply,
        messages=turn.messages,
        retried=turn.retried,
        alert=turn.alert,
        meta=turn.response.meta if turn.response is not None else {},
    )


@router.post("/eval", response_model=EvalResponse)
async def evaluate(
    request: EvalRequest,
    _: Principal = Depends(get_current_principal),
    resilient: ResilientChat = Depends(get_resilient_chat),
):
    """Run an evaluation prompt; the reply text is JSON."""
    response = await resilient.evaluate(request.model_id, request.prompt, case_id=request.case_id)
    return EvalResponse(text=response.text, meta=response.meta)
