"""Models owned by the chat-session core."""

from .models import ChatSession, ModelUsageRecord, PositionLogEntry

__all__ = ["ChatSession", "ModelUsageRecord", "PositionLogEntry"]
