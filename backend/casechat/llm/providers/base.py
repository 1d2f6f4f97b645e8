"""Abstract base for model provider adapters.

Each adapter wraps one vendor SDK. The model router resolves a model id
to a ``ModelConfig`` and calls ``chat()`` for conversation turns and
``evaluate()`` for JSON evaluations. Adapters ignore config fields their
vendor does not support.
"""
from __future__ import annotations

import abc
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

OPENAI = "openai"
ANTHROPIC = "anthropic"
GOOGLE = "google"

EVAL_SYSTEM_PROMPT = "Return only JSON matching the expected evaluation schema."


class ProviderNotConfiguredError(RuntimeError):
    """The adapter has no API key for its vendor."""


@dataclass
class ModelConfig:
    """Per-model settings from the model registry."""
    model_id: str
    provider: str
    temperature: Optional[float] = None
    reasoning_effort: Optional[str] = None


@dataclass
class UsageMetrics:
    """Token usage normalized across vendors."""
    cache_hit: bool = False
    input_tokens: int = 0
    cached_tokens: int = 0
    output_tokens: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ProviderResponse:
    """Result of a provider call."""
    text: str
    usage: UsageMetrics = field(default_factory=UsageMetrics)
    applied: dict[str, Any] = field(default_factory=dict)

    @property
    def meta(self) -> dict[str, Any]:
        return {**self.applied, "cacheMetrics": self.usage.to_dict()}


class ChatProvider(abc.ABC):
    """Provider adapter interface."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short provider name (``openai``, ``anthropic``, ``google``)."""

    @abc.abstractmethod
    def is_available(self) -> bool:
        """True when an API key is configured."""

    @abc.abstractmethod
    async def chat(
        self,
        system_prompt: str,
        history: list[dict[str, Any]],
        message: str,
        config: ModelConfig,
    ) -> ProviderResponse:
        """Send one conversation turn and return the reply."""

    @abc.abstractmethod
    async def evaluate(self, prompt: str, config: ModelConfig) -> ProviderResponse:
        """Run a single-shot prompt whose reply must be JSON."""

    def require_key(self, api_key: str) -> str:
        if not api_key:
            raise ProviderNotConfiguredError(f"No API key configured for provider '{self.name}'")
        return api_key


def usage_from_langchain(usage_metadata: Optional[dict[str, Any]]) -> UsageMetrics:
    """Normalize a langchain ``AIMessage.usage_metadata`` dict."""
    if not usage_metadata:
        return UsageMetrics()
    details = usage_metadata.get("input_token_details") or {}
    cached = int(details.get("cache_read") or 0)
    return UsageMetrics(
        cache_hit=cached > 0,
        input_tokens=int(usage_metadata.get("input_tokens") or 0),
        cached_tokens=cached,
        output_tokens=int(usage_metadata.get("output_tokens") or 0),
    )
