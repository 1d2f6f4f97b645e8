"""Database models for the chat-session core.

This module defines SQLAlchemy ORM models for:
- Case Chats (one attempt by one student at one case/scenario)
- Chat Position Logs (append-only stance history)
- LLM Usage Records (append-only per-call telemetry)
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    Index,
)
from sqlalchemy.orm import relationship

from ...core.clock import utcnow
from ..base import Base


class ChatSession(Base):
    """Case chat session records."""
    __tablename__ = "case_chats"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    student_id = Column(String(36), nullable=False, index=True)
    case_id = Column(String(30), nullable=False, index=True)
    section_id = Column(String(20), nullable=True, index=True)
    scenario_id = Column(Integer, nullable=True, index=True)
    status = Column(String(20), nullable=False, default="started", index=True)
    persona = Column(String(30), nullable=True)
    chat_model = Column(String(255), nullable=True)
    hints_used = Column(Integer, nullable=False, default=0)
    time_limit_minutes = Column(Integer, nullable=True)  # snapshot of the scenario limit
    time_started = Column(DateTime, nullable=True)
    start_time = Column(DateTime, nullable=False, default=utcnow)
    last_activity = Column(DateTime, nullable=False, default=utcnow, index=True)
    end_time = Column(DateTime, nullable=True)
    transcript = Column(Text, nullable=True)
    evaluation_id = Column(String(36), ForeignKey("evaluations.id", ondelete="SET NULL"), nullable=True, index=True)
    initial_position = Column(String(50), nullable=True)
    final_position = Column(String(50), nullable=True)
    position_method = Column(String(20), nullable=True)

    # Relationships
    position_logs = relationship(
        "PositionLogEntry",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PositionLogEntry.id",
    )

    __table_args__ = (
        Index("idx_student_case", "student_id", "case_id"),
        Index("idx_case_chats_positions", "initial_position", "final_position"),
    )


class PositionLogEntry(Base):
    """Append-only record of a captured or inferred position."""
    __tablename__ = "chat_position_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    case_chat_id = Column(String(36), ForeignKey("case_chats.id", ondelete="CASCADE"), nullable=False, index=True)
    position_type = Column(String(10), nullable=False)  # initial | final
    position_value = Column(String(50), nullable=True)  # NULL when an inference failed
    recorded_by = Column(String(20), nullable=False)  # student | ai | instructor
    notes = Column(Text, nullable=True)
    confidence = Column(Float, nullable=True)
    failure_reason = Column(Text, nullable=True)
    recorded_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    session = relationship("ChatSession", back_populates="position_logs")


class ModelUsageRecord(Base):
    """One row per provider call, successful or not."""
    __tablename__ = "llm_usage_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider = Column(String(20), nullable=False, index=True)
    model_id = Column(String(255), nullable=False)
    cache_hit = Column(Boolean, nullable=False, default=False)
    input_tokens = Column(Integer, nullable=False, default=0)
    cached_tokens = Column(Integer, nullable=False, default=0)
    output_tokens = Column(Integer, nullable=False, default=0)
    request_type = Column(String(10), nullable=False, default="chat")  # chat | eval
    case_id = Column(String(30), nullable=True, index=True)
    success = Column(Boolean, nullable=False, default=True)
    error_type = Column(String(100), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
