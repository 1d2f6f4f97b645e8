"""Anthropic adapter using the async Messages API with prompt caching."""

import logging
from typing import Any, Optional

from anthropic import AsyncAnthropic

from ...core.config import get_settings
from ..messages import to_anthropic_messages
from .base import (
    ANTHROPIC,
    EVAL_SYSTEM_PROMPT,
    ChatProvider,
    ModelConfig,
    ProviderResponse,
    UsageMetrics,
)

logger = logging.getLogger(__name__)


def usage_from_anthropic(usage: Any) -> UsageMetrics:
    """Normalize an Anthropic ``usage`` block.

    Cached tokens count both cache writes and reads; only a read is a hit.
    """
    if usage is None:
        return UsageMetrics()
    created = getattr(usage, "cache_creation_input_tokens", None) or 0
    read = getattr(usage, "cache_read_input_tokens", None) or 0
    return UsageMetrics(
        cache_hit=read > 0,
        input_tokens=getattr(usage, "input_tokens", None) or 0,
        cached_tokens=created + read,
        output_tokens=getattr(usage, "output_tokens", None) or 0,
    )


def _reply_text(response: Any) -> str:
    return "".join(
        getattr(block, "text", "")
        for block in (response.content or [])
        if getattr(block, "type", None) == "text"
    )


class AnthropicProvider(ChatProvider):
    """Chat and evaluation through the Anthropic Messages API."""

    def __init__(self, api_key: Optional[str] = None, max_tokens: Optional[int] = None):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.ANTHROPIC_API_KEY
        self.max_tokens = max_tokens or settings.ANTHROPIC_MAX_TOKENS
        self._client: Optional[AsyncAnthropic] = None

    @property
    def name(self) -> str:
        return ANTHROPIC

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> AsyncAnthropic:
        """Lazily initialize the SDK client."""
        if self._client is None:
            self._client = AsyncAnthropic(api_key=self.require_key(self.api_key))
        return self._client

    def _sampling(self, config: ModelConfig) -> dict[str, Any]:
        if config.temperature is None:
            return {}
        return {"temperature": float(config.temperature)}

    async def chat(self, system_prompt, history, message, config) -> ProviderResponse:
        sampling = self._sampling(config)
        response = await self._get_client().messages.create(
            model=config.model_id,
            max_tokens=self.max_tokens,
            system=[
                {
                    "type": "text",
                    "text": system_prompt,
                    "cache_control": {"type": "ephemeral"},
                }
            ],
            messages=to_anthropic_messages(history, message),
            **sampling,
        )
        return ProviderResponse(
            text=_reply_text(response).strip(),
            usage=usage_from_anthropic(response.usage),
            applied={"provider": ANTHROPIC, "temperature": sampling.get("temperature"), "reasoning_effort": None},
        )

    async def evaluate(self, prompt, config) -> ProviderResponse:
        sampling = self._sampling(config)
        response = await self._get_client().messages.create(
            model=config.model_id,
            max_tokens=self.max_tokens,
            system=EVAL_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": [{"type": "text", "text": prompt}]}],
            **sampling,
        )
        return ProviderResponse(
            text=_reply_text(response) or "{}",
            usage=usage_from_anthropic(response.usage),
            applied={"provider": ANTHROPIC, "temperature": sampling.get("temperature"), "reasoning_effort": None},
        )
