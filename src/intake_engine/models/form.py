"""Form assessment schemas — three pages, each validated on its own.

Validation errors are translated into parent-friendly, per-field messages so
the form engine can show them next to the offending field.  The engine works
with snake_case field names; the persisted ``formAssessment`` section keeps
camelCase keys (see :func:`form_to_wire` / :func:`form_from_wire`).
"""

from __future__ import annotations

from typing import Any, Literal, get_args

from pydantic import Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel, to_snake

from intake_engine.models.base import CamelModel

# ---------------------------------------------------------------------------
# Option sets
# ---------------------------------------------------------------------------

ConcernDuration = Literal[
    "less-than-1-month", "1-3-months", "3-6-months", "6-plus-months"
]
SleepPattern = Literal[
    "no-change",
    "difficulty-falling-asleep",
    "waking-frequently",
    "sleeping-too-much",
    "irregular-schedule",
]
AppetiteChange = Literal["no-change", "decreased", "increased", "irregular"]
SchoolPerformance = Literal[
    "no-change", "improved", "declining", "significantly-impacted", "not-attending"
]
SocialRelationship = Literal[
    "no-change", "improved", "withdrawing", "conflicts", "isolated"
]

CONCERN_DURATION_OPTIONS: tuple[str, ...] = get_args(ConcernDuration)
SLEEP_OPTIONS: tuple[str, ...] = get_args(SleepPattern)
APPETITE_OPTIONS: tuple[str, ...] = get_args(AppetiteChange)
SCHOOL_OPTIONS: tuple[str, ...] = get_args(SchoolPerformance)
SOCIAL_OPTIONS: tuple[str, ...] = get_args(SocialRelationship)

# --- Display labels (used by the summary metadata and the UI) ---
DURATION_LABELS: dict[str, str] = {
    "less-than-1-month": "Less than 1 month",
    "1-3-months": "1-3 months",
    "3-6-months": "3-6 months",
    "6-plus-months": "6+ months",
}
SEVERITY_LABELS: dict[int, str] = {
    1: "Mild",
    2: "Somewhat concerning",
    3: "Moderate",
    4: "Significant",
    5: "Severe",
}
SLEEP_LABELS: dict[str, str] = {
    "no-change": "No change",
    "difficulty-falling-asleep": "Difficulty falling asleep",
    "waking-frequently": "Waking frequently",
    "sleeping-too-much": "Sleeping too much",
    "irregular-schedule": "Irregular schedule",
}
APPETITE_LABELS: dict[str, str] = {
    "no-change": "No change",
    "decreased": "Decreased appetite",
    "increased": "Increased appetite",
    "irregular": "Irregular eating patterns",
}
SCHOOL_LABELS: dict[str, str] = {
    "no-change": "No change",
    "improved": "Improved",
    "declining": "Declining",
    "significantly-impacted": "Significantly impacted",
    "not-attending": "Not attending school",
}
SOCIAL_LABELS: dict[str, str] = {
    "no-change": "No change",
    "improved": "Improved",
    "withdrawing": "Withdrawing from friends/activities",
    "conflicts": "More conflicts with peers",
    "isolated": "Isolated / no social interaction",
}


# ---------------------------------------------------------------------------
# Page schemas
# ---------------------------------------------------------------------------

class Page1(CamelModel):
    """About your child: what, how long, how severe."""

    primary_concerns: str = Field(min_length=10, max_length=2000)
    concern_duration: ConcernDuration
    concern_severity: int = Field(ge=1, le=5)


class Page2(CamelModel):
    """Daily life impact.  Every field is optional, so ``{}`` is valid."""

    sleep_patterns: SleepPattern | None = None
    appetite_changes: AppetiteChange | None = None
    school_performance: SchoolPerformance | None = None
    social_relationships: SocialRelationship | None = None

    @field_validator(
        "sleep_patterns",
        "appetite_changes",
        "school_performance",
        "social_relationships",
        mode="before",
    )
    @classmethod
    def _blank_is_unset(cls, v: Any) -> Any:
        # An untouched radio group arrives as ""
        return None if v == "" else v


class Page3(CamelModel):
    """Additional context and what the family hopes therapy will achieve."""

    recent_events: str | None = Field(default=None, max_length=1000)
    therapy_goals: str = Field(min_length=10, max_length=1000)


class FormAssessmentInput(Page1, Page2, Page3):
    """All three pages combined — the input of the summary synthesizer."""


PAGE_SCHEMAS: dict[int, type[CamelModel]] = {1: Page1, 2: Page2, 3: Page3}
PAGE_FIELDS: dict[int, tuple[str, ...]] = {
    page: tuple(schema.model_fields) for page, schema in PAGE_SCHEMAS.items()
}
ALL_FIELDS: tuple[str, ...] = tuple(FormAssessmentInput.model_fields)


# ---------------------------------------------------------------------------
# Friendly error messages
# ---------------------------------------------------------------------------

_DEFAULT_MESSAGE = "Please select a valid option"

# field -> {pydantic error type (or "*" for any) -> message}
_FIELD_MESSAGES: dict[str, dict[str, str]] = {
    "primary_concerns": {
        "missing": "Please describe your concerns",
        "string_too_long": "Please keep your response under 2000 characters",
        "*": "Please provide more detail about your concerns (at least 10 characters)",
    },
    "concern_duration": {
        "*": "Please select how long you've noticed these concerns",
    },
    "concern_severity": {
        "missing": "Please rate the severity of your concerns",
        "*": "Severity must be between 1 and 5",
    },
    "recent_events": {
        "*": "Please keep your response under 1000 characters",
    },
    "therapy_goals": {
        "missing": "Please describe what you hope to achieve through therapy",
        "string_too_long": "Please keep your response under 1000 characters",
        "*": "Please provide more detail about your therapy goals (at least 10 characters)",
    },
}


def _friendly(error: dict) -> tuple[str, str]:
    loc = error.get("loc") or ("",)
    field = to_snake(str(loc[0]))
    messages = _FIELD_MESSAGES.get(field, {})
    return field, messages.get(error["type"]) or messages.get("*") or _DEFAULT_MESSAGE


def validate_page(page: int, values: dict[str, Any]) -> dict[str, str]:
    """Validate one page and return ``{field: message}`` (empty when valid).

    Only the fields that belong to *page* are considered, so callers can
    pass the full value dict of the form.
    """
    if page not in PAGE_SCHEMAS:
        raise ValueError(f"Unknown form page: {page}")
    schema = PAGE_SCHEMAS[page]
    data = {k: v for k, v in values.items() if k in PAGE_FIELDS[page]}
    try:
        schema.model_validate(data)
    except ValidationError as exc:
        errors: dict[str, str] = {}
        for err in exc.errors():
            field, message = _friendly(err)
            # First error per field wins
            errors.setdefault(field, message)
        return errors
    return {}


def validate_field(page: int, field: str, values: dict[str, Any]) -> str | None:
    """Return the error message for a single field, or None if it is valid."""
    return validate_page(page, values).get(field)


def page_of(field: str) -> int:
    """Return the page number that owns *field*."""
    for page, fields in PAGE_FIELDS.items():
        if field in fields:
            return page
    raise ValueError(f"Unknown form field: {field}")


def form_to_wire(values: dict[str, Any]) -> dict[str, Any]:
    """snake_case form values -> camelCase persisted section."""
    return {to_camel(k): v for k, v in values.items()}


def form_from_wire(data: dict[str, Any]) -> dict[str, Any]:
    """camelCase persisted section -> snake_case values (unknown keys dropped)."""
    out: dict[str, Any] = {}
    for key, value in data.items():
        name = to_snake(key)
        if name in ALL_FIELDS:
            out[name] = value
    return out


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------

FIELD_LABELS: dict[str, str] = {
    "primary_concerns": "Primary Concerns",
    "concern_duration": "Duration of Concerns",
    "concern_severity": "Severity Rating",
    "sleep_patterns": "Sleep Patterns",
    "appetite_changes": "Appetite Changes",
    "school_performance": "School Performance",
    "social_relationships": "Social Relationships",
    "recent_events": "Recent Events",
    "therapy_goals": "Therapy Goals",
}
PAGE_LABELS: dict[int, str] = {
    1: "About Your Child",
    2: "Daily Life Impact",
    3: "Additional Context",
}
REQUIRED_FIELDS: frozenset[str] = frozenset(
    name
    for schema in PAGE_SCHEMAS.values()
    for name, info in schema.model_fields.items()
    if info.is_required()
)


class FieldStatus(CamelModel):
    name: str
    label: str
    page: int
    required: bool
    complete: bool


class SectionStatus(CamelModel):
    page: int
    label: str
    required_count: int
    completed_count: int
    complete: bool


class FormCompletion(CamelModel):
    """Per-field and per-page completion of the form values.

    Percentages count required fields only; a page without required fields
    is complete.
    """

    fields: list[FieldStatus] = Field(default_factory=list)
    required_complete: int = 0
    required_total: int = 0
    optional_complete: int = 0
    optional_total: int = 0
    overall_percentage: int = 0
    all_required_complete: bool = False
    sections: list[SectionStatus] = Field(default_factory=list)
    sections_complete: int = 0
    sections_total: int = 0
    section_percentage: int = 0


def _has_text(value: Any, min_length: int = 1) -> bool:
    return isinstance(value, str) and len(value.strip()) >= min_length


def _is_set(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def _field_complete(name: str, value: Any) -> bool:
    if name in ("primary_concerns", "therapy_goals"):
        return _has_text(value, 10)
    if name == "concern_severity":
        return isinstance(value, int) and not isinstance(value, bool) and 1 <= value <= 5
    if name == "recent_events":
        return _has_text(value)
    return _is_set(value)


def _percent(part: int, whole: int) -> int:
    # Halves round up
    return int(part * 100 / whole + 0.5)


def form_completion(values: dict[str, Any]) -> FormCompletion:
    """Completion of snake_case form *values* for progress indicators."""
    fields = [
        FieldStatus(
            name=name,
            label=FIELD_LABELS[name],
            page=page,
            required=name in REQUIRED_FIELDS,
            complete=_field_complete(name, values.get(name)),
        )
        for page, names in PAGE_FIELDS.items()
        for name in names
    ]
    required = [f for f in fields if f.required]
    optional = [f for f in fields if not f.required]
    required_complete = sum(f.complete for f in required)

    sections = []
    for page in PAGE_FIELDS:
        on_page = [f for f in required if f.page == page]
        done = sum(f.complete for f in on_page)
        sections.append(
            SectionStatus(
                page=page,
                label=PAGE_LABELS[page],
                required_count=len(on_page),
                completed_count=done,
                complete=done == len(on_page),
            )
        )
    sections_complete = sum(s.complete for s in sections)

    return FormCompletion(
        fields=fields,
        required_complete=required_complete,
        required_total=len(required),
        optional_complete=sum(f.complete for f in optional),
        optional_total=len(optional),
        overall_percentage=_percent(required_complete, len(required)) if required else 100,
        all_required_complete=required_complete == len(required),
        sections=sections,
        sections_complete=sections_complete,
        sections_total=len(sections),
        section_percentage=_percent(sections_complete, len(sections)),
    )
