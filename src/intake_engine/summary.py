"""Summary synthesizer — turns either modality's data into an AssessmentSummary.

``form_to_summary`` is a pure function of its input: the same
``FormAssessmentInput`` (and child name) always produces the same key
concerns, focus list and metadata; only ``generated_at`` differs.

Recommended focus rules, applied in this order, de-duplicated, capped at 5:

    1  severity 5                                  -> priority entry
    2  duration 6-plus-months                      -> long-standing entry
    3  sleep other than no-change                  -> sleep entry
    4  school declining / impacted / not attending -> academic entry
    5  social withdrawing / conflicts / isolated   -> social entry
    6  therapy-goal keywords                       -> one entry per topic
    7  nothing fired                               -> generic default entry

Key concerns come from a sentence-split heuristic over the primary concerns
text, so results are reproducible offline.
"""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

import jinja2

from intake_engine.bridge import chat_to_form
from intake_engine.constants import MAX_KEY_CONCERNS, MAX_RECOMMENDED_FOCUS
from intake_engine.models.base import utcnow
from intake_engine.models.form import (
    APPETITE_LABELS,
    DURATION_LABELS,
    SCHOOL_LABELS,
    SEVERITY_LABELS,
    SLEEP_LABELS,
    SOCIAL_LABELS,
    FormAssessmentInput,
)
from intake_engine.models.question import AssessmentResponse, StructuredQuestion
from intake_engine.models.summary import (
    AssessmentSummary,
    DailyLifeImpact,
    SummaryMetadata,
)

# --- Focus entries ---
PRIORITY_FOCUS = "Priority support needed - concerns rated as severe"
LONG_STANDING_FOCUS = "Long-standing concerns requiring comprehensive approach"
SLEEP_FOCUS = "Sleep regulation and healthy sleep habits"
ACADEMIC_FOCUS = "Academic support and school engagement"
SOCIAL_FOCUS = "Social skills and peer relationship building"
DEFAULT_FOCUS = "General mental health support and coping skills"

_SCHOOL_DECLINE = {"declining", "significantly-impacted", "not-attending"}
_SOCIAL_WITHDRAWAL = {"withdrawing", "conflicts", "isolated"}

# Therapy-goal keyword -> focus entry, in reporting order
GOAL_FOCUS: list[tuple[str, str]] = [
    ("anxiety", "Anxiety management and coping strategies"),
    ("depress", "Mood improvement and emotional wellbeing"),
    ("stress", "Stress management techniques"),
    ("anger", "Anger management and emotional regulation"),
    ("confidence", "Building self-esteem and confidence"),
    ("friend", "Developing healthy friendships"),
    ("school", "School-related support"),
    ("family", "Family communication and relationships"),
    ("bully", "Addressing bullying experiences"),
    ("trauma", "Processing difficult experiences"),
]

# Screening score bands per question category: (minimum total, severity)
_SCORE_BANDS: dict[str, list[tuple[int, int]]] = {
    "depression": [(20, 5), (15, 4), (10, 3), (5, 2), (0, 1)],
    "anxiety": [(15, 4), (10, 3), (5, 2), (0, 1)],
}
_CATEGORY_FOCUS: dict[str, str] = {
    "depression": "Mood improvement and emotional wellbeing",
    "anxiety": "Anxiety management and coping strategies",
}

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_FALLBACK_CONCERN_CHARS = 120


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------

def extract_key_concerns(text: str | None) -> list[str]:
    """Up to three sentence fragments longer than 10 characters.

    Falls back to the (truncated) whole text when no fragment qualifies.
    """
    if not text or not text.strip():
        return []
    fragments = [f.strip() for f in _SENTENCE_SPLIT.split(text)]
    concerns = [f for f in fragments if len(f) > 10][:MAX_KEY_CONCERNS]
    if concerns:
        return concerns
    stripped = " ".join(text.split())
    if len(stripped) > _FALLBACK_CONCERN_CHARS:
        stripped = stripped[: _FALLBACK_CONCERN_CHARS - 3].rstrip() + "..."
    return [stripped]


def recommended_focus(
    *,
    severity: int | None = None,
    duration: str | None = None,
    sleep: str | None = None,
    school: str | None = None,
    social: str | None = None,
    therapy_goals: str | None = None,
    extra: Iterable[str] = (),
) -> list[str]:
    """Apply the focus rules in precedence order (never returns an empty list)."""
    focus: list[str] = []
    if severity == 5:
        focus.append(PRIORITY_FOCUS)
    if duration == "6-plus-months":
        focus.append(LONG_STANDING_FOCUS)
    if sleep and sleep != "no-change":
        focus.append(SLEEP_FOCUS)
    if school in _SCHOOL_DECLINE:
        focus.append(ACADEMIC_FOCUS)
    if social in _SOCIAL_WITHDRAWAL:
        focus.append(SOCIAL_FOCUS)
    goals = (therapy_goals or "").lower()
    focus.extend(entry for keyword, entry in GOAL_FOCUS if keyword in goals)
    focus.extend(extra)

    unique = list(dict.fromkeys(focus))
    return unique[:MAX_RECOMMENDED_FOCUS] or [DEFAULT_FOCUS]


def _metadata(values: dict[str, Any]) -> SummaryMetadata:
    return SummaryMetadata(
        concern_duration=DURATION_LABELS.get(values.get("concern_duration")),
        concern_severity=values.get("concern_severity"),
        daily_life_impact=DailyLifeImpact(
            sleep=SLEEP_LABELS.get(values.get("sleep_patterns")),
            appetite=APPETITE_LABELS.get(values.get("appetite_changes")),
            school=SCHOOL_LABELS.get(values.get("school_performance")),
            social=SOCIAL_LABELS.get(values.get("social_relationships")),
        ),
        recent_events=values.get("recent_events") or None,
        therapy_goals=values.get("therapy_goals") or None,
    )


# ---------------------------------------------------------------------------
# Form
# ---------------------------------------------------------------------------

def form_to_summary(
    form: FormAssessmentInput | dict[str, Any],
    child_name: str | None = None,
    *,
    now: datetime | None = None,
) -> AssessmentSummary:
    """Synthesize the summary of a completed form assessment."""
    if not isinstance(form, FormAssessmentInput):
        form = FormAssessmentInput.model_validate(form)
    values = form.model_dump()
    return AssessmentSummary(
        key_concerns=extract_key_concerns(form.primary_concerns),
        child_name=child_name,
        recommended_focus=recommended_focus(
            severity=form.concern_severity,
            duration=form.concern_duration,
            sleep=form.sleep_patterns,
            school=form.school_performance,
            social=form.social_relationships,
            therapy_goals=form.therapy_goals,
        ),
        generated_at=now or utcnow(),
        source="form",
        metadata=_metadata(values),
    )


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------

def score_bands(
    responses: Iterable[AssessmentResponse],
    questions: dict[str, StructuredQuestion],
) -> dict[str, int]:
    """Severity (1-5) per scored category from summed response values."""
    totals: dict[str, int] = {}
    for response in responses:
        question = questions.get(response.question_id)
        if question is None or response.response_value is None:
            continue
        if question.category in _SCORE_BANDS:
            totals[question.category] = totals.get(question.category, 0) + response.response_value

    bands: dict[str, int] = {}
    for category, total in totals.items():
        for minimum, severity in _SCORE_BANDS[category]:
            if total >= minimum:
                bands[category] = severity
                break
    return bands


def chat_to_summary(
    chat: dict[str, Any] | None,
    responses: Iterable[AssessmentResponse],
    *,
    questions: dict[str, StructuredQuestion],
    child_name: str | None = None,
    now: datetime | None = None,
) -> AssessmentSummary:
    """Synthesize the summary of a completed chat assessment.

    Form-shaped values are mapped from the conversation through the mode
    bridge.  When the parent never stated a severity, it is derived from the
    screening scores; a non-zero answer on a priority question always
    yields severity 5.
    """
    responses = list(responses)
    values = chat_to_form(chat)
    bands = score_bands(responses, questions)

    severity = values.get("concern_severity")
    if severity is None and bands:
        severity = max(bands.values())
    if any(
        questions[r.question_id].priority and (r.response_value or 0) > 0
        for r in responses
        if r.question_id in questions
    ):
        severity = 5
    values["concern_severity"] = severity

    concerns_text = values.get("primary_concerns")
    if not concerns_text and chat:
        concerns_text = " ".join(
            m.get("content", "")
            for m in chat.get("messages") or []
            if m.get("sender") == "user" and not (m.get("metadata") or {}).get("questionId")
        )

    return AssessmentSummary(
        key_concerns=extract_key_concerns(concerns_text),
        child_name=child_name,
        recommended_focus=recommended_focus(
            severity=severity,
            duration=values.get("concern_duration"),
            sleep=values.get("sleep_patterns"),
            school=values.get("school_performance"),
            social=values.get("social_relationships"),
            therapy_goals=values.get("therapy_goals"),
            extra=[_CATEGORY_FOCUS[c] for c, band in bands.items() if band >= 3],
        ),
        generated_at=now or utcnow(),
        source="chat",
        metadata=_metadata(values),
    )


# ---------------------------------------------------------------------------
# Display
# ---------------------------------------------------------------------------

class SummaryFormatter:
    """Jinja2-based Markdown renderer for an :class:`AssessmentSummary`.

    Args:
        template_dir: optional override for the template directory.
            Defaults to ``templates/`` sibling of this module.
    """

    def __init__(self, template_dir: Path | None = None) -> None:
        if template_dir is None:
            template_dir = Path(__file__).parent / "templates"
        self._env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(template_dir)),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render(self, summary: AssessmentSummary) -> str:
        meta = summary.metadata
        impact = [
            (name, label)
            for name, label in (
                ("Sleep", meta.daily_life_impact.sleep),
                ("Appetite", meta.daily_life_impact.appetite),
                ("School", meta.daily_life_impact.school),
                ("Social", meta.daily_life_impact.social),
            )
            if label
        ]
        template = self._env.get_template("summary.md.jinja2")
        return template.render(
            summary=summary,
            meta=meta,
            impact=impact,
            severity_label=SEVERITY_LABELS.get(meta.concern_severity, ""),
        ).strip() + "\n"


_formatter: SummaryFormatter | None = None


def format_summary_for_display(summary: AssessmentSummary) -> str:
    """Render *summary* as Markdown using the packaged template."""
    global _formatter
    if _formatter is None:
        _formatter = SummaryFormatter()
    return _formatter.render(summary)
