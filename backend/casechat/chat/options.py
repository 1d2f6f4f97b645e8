"""Chat option resolution.

Options are layered, later layers winning key by key:

1. built-in defaults
2. global row in ``chat_options_defaults`` (``section_id IS NULL``)
3. the section's row in ``chat_options_defaults``
4. ``section_cases.chat_options`` for the section/case pair
5. the scenario's ``chat_options_override``
"""

import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.catalog.models import CaseScenario, ChatOptionsDefault, SectionCase

logger = logging.getLogger(__name__)


class ChatOptions(BaseModel):
    """Resolved per-chat options."""

    model_config = ConfigDict(extra="allow")

    hints_allowed: int = 3
    free_hints: int = 1
    chat_repeats: int = 0
    timeout_chat: bool = False
    restart_chat: bool = False
    allow_exit: bool = False
    ask_for_feedback: bool = False
    ask_save_transcript: bool = False
    allowed_personas: str = "moderate,strict,liberal,leading,sycophantic"
    default_persona: str = "moderate"
    show_case: bool = True
    do_evaluation: bool = True
    chatbot_personality: str = ""
    allow_repeat: bool = False
    disable_position_tracking: bool = False
    position_tracking_enabled: bool = False
    position_capture_method: str = "explicit"
    position_options: list[str] = Field(default_factory=lambda: ["for", "against"])

    @property
    def tracks_positions(self) -> bool:
        return self.position_tracking_enabled and not self.disable_position_tracking

    @property
    def infers_positions(self) -> bool:
        return self.tracks_positions and self.position_capture_method == "ai_inferred"


def _layer(target: dict[str, Any], layer: Optional[dict[str, Any]]) -> None:
    if not layer:
        return
    if not isinstance(layer, dict):
        logger.warning("Ignoring non-object chat options layer: %r", layer)
        return
    target.update({k: v for k, v in layer.items() if v is not None})


async def resolve_chat_options(
    db: AsyncSession,
    case_id: str,
    section_id: Optional[str] = None,
    scenario_id: Optional[int] = None,
) -> ChatOptions:
    """Merge every option layer that applies to a case/section/scenario."""
    merged: dict[str, Any] = {}

    defaults = (await db.execute(
        select(ChatOptionsDefault).where(ChatOptionsDefault.section_id.is_(None))
    )).scalar_one_or_none()
    if defaults is not None:
        _layer(merged, defaults.chat_options)

    if section_id:
        section_defaults = (await db.execute(
            select(ChatOptionsDefault).where(ChatOptionsDefault.section_id == section_id)
        )).scalar_one_or_none()
        if section_defaults is not None:
            _layer(merged, section_defaults.chat_options)

        section_case = (await db.execute(
            select(SectionCase).where(
                SectionCase.section_id == section_id,
                SectionCase.case_id == case_id,
            )
        )).scalar_one_or_none()
        if section_case is not None:
            _layer(merged, section_case.chat_options)

    if scenario_id is not None:
        scenario = await db.get(CaseScenario, scenario_id)
        if scenario is not None:
            _layer(merged, scenario.chat_options_override)

    return ChatOptions(**merged)
