"""Model routing, provider adapters and the retry wrapper."""

from .providers.base import ModelConfig, ProviderResponse, UsageMetrics
from .resilience import ChatTurn, ResilientChat
from .router import ModelRouter, detect_provider, is_transient_error

__all__ = [
    "ChatTurn",
    "ModelConfig",
    "ModelRouter",
    "ProviderResponse",
    "ResilientChat",
    "UsageMetrics",
    "detect_provider",
    "is_transient_error",
]
