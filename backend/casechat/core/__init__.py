"""Core configuration, errors and security for the Case Chat backend."""

from .config import Settings, get_settings
from .errors import (
    CaseChatError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ProviderCallError,
    UpstreamUnavailableError,
    ValidationError,
)
from .security import create_access_token, verify_access_token

__all__ = [
    "Settings",
    "get_settings",
    "CaseChatError",
    "ConflictError",
    "InvalidStateError",
    "NotFoundError",
    "ProviderCallError",
    "UpstreamUnavailableError",
    "ValidationError",
    "create_access_token",
    "verify_access_token",
]
