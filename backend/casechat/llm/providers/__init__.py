"""Provider adapters and the default provider set."""

from .anthropic_provider import AnthropicProvider
from .base import (
    ANTHROPIC,
    GOOGLE,
    OPENAI,
    ChatProvider,
    ModelConfig,
    ProviderNotConfiguredError,
    ProviderResponse,
    UsageMetrics,
)
from .gemini_provider import GeminiProvider
from .openai_provider import OpenAIProvider


def default_providers() -> dict[str, ChatProvider]:
    """One adapter per vendor, keyed by provider name."""
    return {
        OPENAI: OpenAIProvider(),
        ANTHROPIC: AnthropicProvider(),
        GOOGLE: GeminiProvider(),
    }


__all__ = [
    "ANTHROPIC",
    "GOOGLE",
    "OPENAI",
    "AnthropicProvider",
    "ChatProvider",
    "GeminiProvider",
    "ModelConfig",
    "OpenAIProvider",
    "ProviderNotConfiguredError",
    "ProviderResponse",
    "UsageMetrics",
    "default_providers",
]
