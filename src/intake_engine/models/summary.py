"""AssessmentSummary — the normalized output of either assessment modality."""

from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from intake_engine.models.base import CamelModel, utcnow


class DailyLifeImpact(CamelModel):
    """Display labels for the page-2 answers (None when not answered)."""

    sleep: str | None = None
    appetite: str | None = None
    school: str | None = None
    social: str | None = None


class SummaryMetadata(CamelModel):
    concern_duration: str | None = None
    concern_severity: int | None = None
    daily_life_impact: DailyLifeImpact = Field(default_factory=DailyLifeImpact)
    recent_events: str | None = None
    therapy_goals: str | None = None


class AssessmentSummary(CamelModel):
    """Normalized summary consumed by the rest of the onboarding flow."""

    key_concerns: list[str] = Field(default_factory=list, max_length=3)
    child_name: str | None = None
    recommended_focus: list[str] = Field(min_length=1, max_length=5)
    generated_at: datetime = Field(default_factory=utcnow)
    source: Literal["chat", "form"]
    metadata: SummaryMetadata = Field(default_factory=SummaryMetadata)

    @property
    def is_priority(self) -> bool:
        return self.metadata.concern_severity == 5


class StoredSummary(CamelModel):
    """Document stored under ``assessment_summary_{id}``."""

    summary: AssessmentSummary
    form_data: dict[str, Any] = Field(default_factory=dict)
    generated_at: datetime = Field(default_factory=utcnow)
