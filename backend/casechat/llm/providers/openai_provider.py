"""OpenAI adapter built on LangChain's ``ChatOpenAI``."""

import logging
from typing import Any, Optional

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from ...core.config import get_settings
from ...observability.langsmith import build_trace_config
from ..messages import message_content, to_langchain_messages
from .base import (
    EVAL_SYSTEM_PROMPT,
    OPENAI,
    ChatProvider,
    ModelConfig,
    ProviderResponse,
    usage_from_langchain,
)

logger = logging.getLogger(__name__)


def is_reasoning_model(model_id: str) -> bool:
    """Reasoning models take ``reasoning_effort`` and reject ``temperature``."""
    model = (model_id or "").lower()
    return model.startswith("o1") or model.startswith("gpt-5")


def openai_request_params(config: ModelConfig) -> dict[str, Any]:
    """Sampling parameters actually sent for a model."""
    params: dict[str, Any] = {}
    if is_reasoning_model(config.model_id):
        if config.reasoning_effort:
            params["reasoning_effort"] = config.reasoning_effort
    elif config.temperature is not None:
        params["temperature"] = float(config.temperature)
    return params


class OpenAIProvider(ChatProvider):
    """Chat and evaluation through the OpenAI Chat Completions API."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.base_url = base_url if base_url is not None else settings.OPENAI_BASE_URL

    @property
    def name(self) -> str:
        return OPENAI

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _llm(self, config: ModelConfig, params: dict[str, Any]) -> ChatOpenAI:
        kwargs: dict[str, Any] = {
            "model": config.model_id,
            "api_key": self.require_key(self.api_key),
            **params,
        }
        if self.base_url:
            kwargs["base_url"] = self.base_url
        return ChatOpenAI(**kwargs)

    def _applied(self, params: dict[str, Any]) -> dict[str, Any]:
        return {
            "provider": OPENAI,
            "temperature": params.get("temperature"),
            "reasoning_effort": params.get("reasoning_effort"),
        }

    async def chat(self, system_prompt, history, message, config) -> ProviderResponse:
        params = openai_request_params(config)
        llm = self._llm(config, params)
        reply = await llm.ainvoke(
            to_langchain_messages(system_prompt, history, message),
            config=build_trace_config("casechat.chat", tags=[OPENAI], metadata={"model_id": config.model_id}),
        )
        return ProviderResponse(
            text=message_content(reply).strip(),
            usage=usage_from_langchain(reply.usage_metadata),
            applied=self._applied(params),
        )

    async def evaluate(self, prompt, config) -> ProviderResponse:
        params = openai_request_params(config)
        llm = self._llm(config, params).bind(response_format={"type": "json_object"})
        reply = await llm.ainvoke(
            [SystemMessage(content=EVAL_SYSTEM_PROMPT), HumanMessage(content=prompt)],
            config=build_trace_config("casechat.evaluate", tags=[OPENAI], metadata={"model_id": config.model_id}),
        )
        return ProviderResponse(
            text=message_content(reply) or "{}",
            usage=usage_from_langchain(reply.usage_metadata),
            applied=self._applied(params),
        )
