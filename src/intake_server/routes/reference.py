"""Reference data endpoints — crisis resources, question sections, form options.

Read-only, static data.
"""

from fastapi import APIRouter, Depends

from intake_engine.constants import CRISIS_RESOURCES
from intake_engine.models.form import (
    APPETITE_LABELS,
    DURATION_LABELS,
    SCHOOL_LABELS,
    SEVERITY_LABELS,
    SLEEP_LABELS,
    SOCIAL_LABELS,
)
from intake_engine.models.question import QuestionSection
from intake_engine.question_bank import QuestionBank

from intake_server.dependencies import get_bank

router = APIRouter(prefix="/reference", tags=["reference"])


def _options(labels: dict) -> list[dict]:
    return [{"value": value, "label": label} for value, label in labels.items()]


@router.get("/crisis-resources")
def list_crisis_resources() -> list[dict]:
    return list(CRISIS_RESOURCES)


@router.get("/question-sections")
def list_question_sections(
    bank: QuestionBank = Depends(get_bank),
) -> list[QuestionSection]:
    """Return the structured question sections in presentation order."""
    return list(bank.sections.values())


@router.get("/form-options")
def list_form_options() -> dict[str, list[dict]]:
    """Option values and display labels for every form select field."""
    return {
        "concernDuration": _options(DURATION_LABELS),
        "concernSeverity": _options(SEVERITY_LABELS),
        "sleepPatterns": _options(SLEEP_LABELS),
        "appetiteChanges": _options(APPETITE_LABELS),
        "schoolPerformance": _options(SCHOOL_LABELS),
        "socialRelationships": _options(SOCIAL_LABELS),
    }
