"""Read-side models for cases, scenarios, options, evaluations and models."""

from .models import (
    Case,
    CaseScenario,
    ChatOptionsDefault,
    Evaluation,
    LLMModel,
    SectionCase,
    SectionCaseScenario,
)

__all__ = [
    "Case",
    "CaseScenario",
    "ChatOptionsDefault",
    "Evaluation",
    "LLMModel",
    "SectionCase",
    "SectionCaseScenario",
]
