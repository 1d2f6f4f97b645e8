"""Database models owned by the course-management side of the system.

The chat core only reads these tables; cases, scenarios, section
assignments, chat options, evaluations and the model registry are
created and edited elsewhere.

This module defines SQLAlchemy ORM models for:
- Cases
- Case Scenarios
- Section Case assignments and their scenarios
- Chat option defaults
- Evaluations
- LLM Models (model registry)
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    JSON,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ...core.clock import utcnow
from ..base import Base


class Case(Base):
    """A business case students discuss with the protagonist."""
    __tablename__ = "cases"

    case_id = Column(String(30), primary_key=True)
    case_title = Column(String(255), nullable=False)
    protagonist = Column(String(255), nullable=True)
    chat_question = Column(Text, nullable=True)
    arguments_for = Column(Text, nullable=True)
    arguments_against = Column(Text, nullable=True)

    scenarios = relationship("CaseScenario", back_populates="case", cascade="all, delete-orphan")


class CaseScenario(Base):
    """Sub-variant of a case with its own protagonist, question and time limit."""
    __tablename__ = "case_scenarios"

    id = Column(Integer, primary_key=True, autoincrement=True)
    case_id = Column(String(30), ForeignKey("cases.case_id", ondelete="CASCADE"), nullable=False, index=True)
    scenario_name = Column(String(255), nullable=False)
    protagonist = Column(String(255), nullable=True)
    chat_question = Column(Text, nullable=True)
    arguments_for = Column(Text, nullable=True)
    arguments_against = Column(Text, nullable=True)
    chat_time_limit = Column(Integer, default=0, nullable=False)  # minutes, 0 = unlimited
    chat_options_override = Column(JSON, nullable=True)
    enabled = Column(Boolean, default=True, nullable=False, index=True)
    sort_order = Column(Integer, default=0, nullable=False)

    case = relationship("Case", back_populates="scenarios")


class SectionCase(Base):
    """Assignment of a case to a course section, with its chat options."""
    __tablename__ = "section_cases"

    id = Column(Integer, primary_key=True, autoincrement=True)
    section_id = Column(String(20), nullable=False, index=True)
    case_id = Column(String(30), ForeignKey("cases.case_id", ondelete="CASCADE"), nullable=False, index=True)
    chat_options = Column(JSON, nullable=True)

    scenarios = relationship("SectionCaseScenario", back_populates="section_case", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("section_id", "case_id", name="unique_section_case"),
    )


class SectionCaseScenario(Base):
    """Scenario assigned to a section's case."""
    __tablename__ = "section_case_scenarios"

    id = Column(Integer, primary_key=True, autoincrement=True)
    section_case_id = Column(Integer, ForeignKey("section_cases.id", ondelete="CASCADE"), nullable=False, index=True)
    scenario_id = Column(Integer, ForeignKey("case_scenarios.id", ondelete="CASCADE"), nullable=False, index=True)
    enabled = Column(Boolean, default=True, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)

    section_case = relationship("SectionCase", back_populates="scenarios")
    scenario = relationship("CaseScenario")


class ChatOptionsDefault(Base):
    """Default chat options for a section, or globally when section_id is NULL."""
    __tablename__ = "chat_options_defaults"

    id = Column(Integer, primary_key=True, autoincrement=True)
    section_id = Column(String(20), nullable=True, unique=True)
    chat_options = Column(JSON, nullable=False)


class Evaluation(Base):
    """AI-generated evaluation of a finished chat."""
    __tablename__ = "evaluations"

    id = Column(String(36), primary_key=True)
    student_id = Column(String(36), nullable=False, index=True)
    case_id = Column(String(30), nullable=True, index=True)
    case_chat_id = Column(String(36), nullable=True, index=True)  # cleared when the chat is deleted
    score = Column(Float, nullable=True)
    summary = Column(Text, nullable=True)
    allow_rechat = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)


class LLMModel(Base):
    """Model registry entry: which provider serves a model id and how."""
    __tablename__ = "models"

    model_id = Column(String(255), primary_key=True)
    model_name = Column(String(255), nullable=True)
    provider = Column(String(20), nullable=True)  # openai | anthropic | google; NULL = infer from id
    temperature = Column(Float, nullable=True)
    reasoning_effort = Column(String(20), nullable=True)
    enabled = Column(Boolean, default=True, nullable=False)
