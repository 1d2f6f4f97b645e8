"""Google Gemini adapter built on ``ChatGoogleGenerativeAI``."""

import logging
from typing import Any, Optional

from langchain_core.messages import HumanMessage
from langchain_google_genai import ChatGoogleGenerativeAI

from ...core.config import get_settings
from ...observability.langsmith import build_trace_config
from ..messages import message_content, to_langchain_messages
from .base import GOOGLE, ChatProvider, ModelConfig, ProviderResponse, usage_from_langchain

logger = logging.getLogger(__name__)


class GeminiProvider(ChatProvider):
    """Chat and evaluation through the Gemini API."""

    def __init__(self, api_key: Optional[str] = None, top_p: Optional[float] = None):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.top_p = top_p if top_p is not None else settings.GEMINI_TOP_P

    @property
    def name(self) -> str:
        return GOOGLE

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _llm(self, config: ModelConfig, **extra: Any) -> ChatGoogleGenerativeAI:
        kwargs: dict[str, Any] = {
            "model": config.model_id,
            "google_api_key": self.require_key(self.api_key),
            **extra,
        }
        if config.temperature is not None:
            kwargs["temperature"] = float(config.temperature)
        return ChatGoogleGenerativeAI(**kwargs)

    def _applied(self, config: ModelConfig) -> dict[str, Any]:
        return {"provider": GOOGLE, "temperature": config.temperature, "reasoning_effort": None}

    async def chat(self, system_prompt, history, message, config) -> ProviderResponse:
        llm = self._llm(config, top_p=self.top_p)
        reply = await llm.ainvoke(
            to_langchain_messages(system_prompt, history, message),
            config=build_trace_config("casechat.chat", tags=[GOOGLE], metadata={"model_id": config.model_id}),
        )
        return ProviderResponse(
            text=message_content(reply).strip(),
            usage=usage_from_langchain(reply.usage_metadata),
            applied=self._applied(config),
        )

    async def evaluate(self, prompt, config) -> ProviderResponse:
        llm = self._llm(config, response_mime_type="application/json")
        reply = await llm.ainvoke(
            [HumanMessage(content=prompt)],
            config=build_trace_config("casechat.evaluate", tags=[GOOGLE], metadata={"model_id": config.model_id}),
        )
        text = message_content(reply)
        if not text:
            raise ValueError("Gemini returned an empty evaluation response")
        return ProviderResponse(
            text=text,
            usage=usage_from_langchain(reply.usage_metadata),
            applied=self._applied(config),
        )
