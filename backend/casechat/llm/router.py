"""Model router.

Resolves a model id against the ``models`` registry, picks the provider
adapter, makes the call and records usage. Unknown or disabled models
fail with ``NotFoundError`` before any network traffic. Provider failures
are re-raised as ``ProviderCallError`` flagged transient or not.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Optional

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..core.errors import NotFoundError, ProviderCallError
from ..db.catalog.models import LLMModel
from .providers import default_providers
from .providers.base import ANTHROPIC, GOOGLE, OPENAI, ChatProvider, ModelConfig, ProviderResponse
from .usage import UsageRecorder

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = frozenset({408, 429, 502, 503, 504, 529})

_TRANSIENT_MARKERS = (
    # rate limit / quota
    "error code: 429",
    "rate limit",
    "rate_limit",
    "resource_exhausted",
    "too many requests",
    # overload
    "overloaded",
    "error code: 529",
    "error code: 503",
    "service unavailable",
    "temporarily unavailable",
    # connectivity
    "connection error",
    "connecterror",
    "connection refused",
    "connection reset",
    "failed to establish a new connection",
    "timed out",
)


def detect_provider(model_id: str) -> str:
    """Infer the provider from a model id naming convention."""
    model = (model_id or "").lower()
    if model.startswith("gpt") or model.startswith("o1") or "openai" in model:
        return OPENAI
    if model.startswith("claude") or "anthropic" in model:
        return ANTHROPIC
    return GOOGLE


def is_transient_error(exc: BaseException) -> bool:
    """Rate-limit, overload and connectivity failures are worth one retry."""
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError, httpx.TransportError)):
        return True

    for attr in ("status_code", "code"):
        status = getattr(exc, attr, None)
        if isinstance(status, int) and status in TRANSIENT_STATUS_CODES:
            return True

    text = f"{type(exc).__name__}: {exc}".lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


class ModelRouter:
    """Routes chat and evaluation calls to the right provider adapter."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        providers: Optional[dict[str, ChatProvider]] = None,
    ):
        self.session_factory = session_factory
        self.providers = providers if providers is not None else default_providers()
        self.usage = UsageRecorder(session_factory)

    async def resolve(self, model_id: str) -> ModelConfig:
        """Look up per-model config in the registry."""
        if not model_id:
            raise NotFoundError("Model", model_id)
        async with self.session_factory() as db:
            model = await db.get(LLMModel, model_id)
        if model is None or not model.enabled:
            raise NotFoundError("Model", model_id)

        return ModelConfig(
            model_id=model.model_id,
            provider=(model.provider or detect_provider(model.model_id)).lower(),
            temperature=model.temperature,
            reasoning_effort=model.reasoning_effort,
        )

    def provider_for(self, config: ModelConfig) -> ChatProvider:
        provider = self.providers.get(config.provider)
        if provider is None:
            raise NotFoundError("Provider", config.provider)
        return provider

    async def chat(
        self,
        model_id: str,
        system_prompt: str,
        history: Optional[list[dict[str, Any]]],
        message: str,
        case_id: Optional[str] = None,
    ) -> ProviderResponse:
        config = await self.resolve(model_id)
        provider = self.provider_for(config)
        return await self._call(
            "chat", config, case_id,
            lambda: provider.chat(system_prompt, list(history or []), message, config),
        )

    async def evaluate(
        self,
        model_id: str,
        prompt: str,
        case_id: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> ProviderResponse:
        config = await self.resolve(model_id)
        if temperature is not None:
            config = replace(config, temperature=temperature)
        provider = self.provider_for(config)
        return await self._call("eval", config, case_id, lambda: provider.evaluate(prompt, config))

    async def _call(
        self,
        request_type: str,
        config: ModelConfig,
        case_id: Optional[str],
        call: Callable[[], Awaitable[ProviderResponse]],
    ) -> ProviderResponse:
        try:
            response = await call()
        except Exception as exc:
            transient = is_transient_error(exc)
            logger.warning(
                "%s %s call for %s failed (%s, transient=%s): %s",
                config.provider, request_type, config.model_id, type(exc).__name__, transient, exc,
            )
            await self.usage.record(
                config.provider, config.model_id, None,
                request_type=request_type, case_id=case_id,
                success=False, error_type=type(exc).__name__,
            )
            raise ProviderCallError(config.provider, config.model_id, transient, exc) from exc

        await self.usage.record(
            config.provider, config.model_id, response.usage,
            request_type=request_type, case_id=case_id,
        )
        logger.debug(
            "%s %s call for %s ok (in=%d cached=%d out=%d)",
            config.provider, request_type, config.model_id,
            response.usage.input_tokens, response.usage.cached_tokens, response.usage.output_tokens,
        )
        return response
