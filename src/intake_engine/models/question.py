"""Structured question and response models.

Questions are immutable and come from the YAML question bank; responses are
keyed uniquely by ``question_id`` (re-answering overwrites).
"""

from datetime import datetime
from typing import Literal

from pydantic import ConfigDict, Field, model_validator

from intake_engine.models.base import CamelModel, utcnow


class StructuredQuestion(CamelModel):
    """A single fixed-choice question with an optional free-text escape hatch.

    ``values`` (when present) holds one numeric score per option, in the
    same order as ``options``.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    type: Literal["single-choice", "text"] = "single-choice"
    question: str
    options: list[str] = Field(default_factory=list)
    allow_other: bool = False
    category: str = "general"
    values: list[int] | None = None
    # Any non-zero score on this question marks the assessment as priority
    priority: bool = False

    @model_validator(mode="after")
    def _check_values(self):
        if self.values is not None and len(self.values) != len(self.options):
            raise ValueError(
                f"Question {self.id}: {len(self.values)} values for "
                f"{len(self.options)} options"
            )
        if self.type == "single-choice" and not self.options:
            raise ValueError(f"Question {self.id}: single-choice needs options")
        return self

    def value_for(self, option: str) -> int | None:
        """Return the score for *option*, or None for free text / unscored."""
        if self.values is None or option not in self.options:
            return None
        return self.values[self.options.index(option)]


class QuestionSection(CamelModel):
    """An ordered group of questions sharing a category (e.g. PHQ-A)."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    category: str
    intro: str = ""
    questions: list[StructuredQuestion]


class AssessmentResponse(CamelModel):
    """The latest answer to one structured question."""

    question_id: str
    response_text: str
    response_value: int | None = None
    timestamp: datetime = Field(default_factory=utcnow)
