"""Single-retry wrapper around the model router.

When a chat call fails transiently the protagonist stays in character:
the student sees a "please wait" message, the wrapper sleeps without
blocking other requests, then retries exactly once. Provider error text
never reaches the student-facing messages; operators get an ERROR log.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from ..core.config import get_settings
from ..core.errors import ProviderCallError, UpstreamUnavailableError
from .providers.base import ProviderResponse
from .router import ModelRouter

logger = logging.getLogger(__name__)

PLEASE_WAIT_MESSAGE = (
    "Sorry, I have been interrupted for a moment taking care of another matter. "
    "Can you please hold on for about 30 seconds and I will get back with you."
)
THANK_YOU_MESSAGE = "Thank you for your patience."
APOLOGY_MESSAGE = (
    "I'm so sorry, something urgent has come up and I can't continue right now. "
    "Please try sending your message again in a minute or two."
)
EVALUATION_UNAVAILABLE_MESSAGE = (
    "The evaluation service is busy right now. Please try again in a few minutes."
)

NotifyCallback = Callable[[str], Awaitable[None]]


@dataclass
class ChatTurn:
    """Protagonist messages produced by one student message."""
    messages: list[str] = field(default_factory=list)
    retried: bool = False
    alert: bool = False
    response: Optional[ProviderResponse] = None

    @property
    def reply(self) -> Optional[str]:
        return self.response.text if self.response is not None else None


class ResilientChat:
    """Wraps ``ModelRouter`` with one delayed retry on transient failures."""

    def __init__(self, router: ModelRouter, retry_delay: Optional[float] = None):
        self.router = router
        self.retry_delay = get_settings().LLM_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay

    def _operator_alert(self, model_id: str, exc: ProviderCallError, stage: str) -> None:
        logger.error(
            "OPERATOR ALERT: %s call for model %s failed %s (transient=%s): %s",
            exc.provider, model_id, stage, exc.transient, exc.cause,
        )

    async def chat(
        self,
        model_id: str,
        system_prompt: str,
        history: Optional[list[dict[str, Any]]],
        message: str,
        case_id: Optional[str] = None,
        notify: Optional[NotifyCallback] = None,
    ) -> ChatTurn:
        """Send one chat turn. ``notify`` receives the please-wait message early."""
        try:
            response = await self.router.chat(model_id, system_prompt, history, message, case_id=case_id)
            return ChatTurn(messages=[response.text], response=response)
        except ProviderCallError as exc:
            if not exc.transient:
                self._operator_alert(model_id, exc, "without retry")
                return ChatTurn(messages=[APOLOGY_MESSAGE], alert=True)
            first_error = exc

        logger.warning(
            "Transient %s failure for %s; retrying in %.1fs: %s",
            first_error.provider, model_id, self.retry_delay, first_error.cause,
        )
        if notify is not None:
            await notify(PLEASE_WAIT_MESSAGE)
        await asyncio.sleep(self.retry_delay)

        try:
            response = await self.router.chat(model_id, system_prompt, history, message, case_id=case_id)
        except ProviderCallError as exc:
            self._operator_alert(model_id, exc, "after retry")
            return ChatTurn(messages=[PLEASE_WAIT_MESSAGE, APOLOGY_MESSAGE], retried=True, alert=True)

        logger.info("Retry for %s succeeded", model_id)
        return ChatTurn(
            messages=[PLEASE_WAIT_MESSAGE, THANK_YOU_MESSAGE, response.text],
            retried=True,
            response=response,
        )

    async def evaluate(
        self,
        model_id: str,
        prompt: str,
        case_id: Optional[str] = None,
    ) -> ProviderResponse:
        """Evaluate with one delayed retry; raises UpstreamUnavailableError."""
        try:
            return await self.router.evaluate(model_id, prompt, case_id=case_id)
        except ProviderCallError as exc:
            if not exc.transient:
                self._operator_alert(model_id, exc, "during evaluation")
                raise UpstreamUnavailableError(EVALUATION_UNAVAILABLE_MESSAGE, detail=str(exc.cause)) from exc
            logger.warning("Transient evaluation failure for %s; retrying in %.1fs", model_id, self.retry_delay)

        await asyncio.sleep(self.retry_delay)
        try:
            return await self.router.evaluate(model_id, prompt, case_id=case_id)
        except ProviderCallError as exc:
            self._operator_alert(model_id, exc, "during evaluation after retry")
            raise UpstreamUnavailableError(EVALUATION_UNAVAILABLE_MESSAGE, detail=str(exc.cause)) from exc
