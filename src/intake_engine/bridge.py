"""Mode bridge — best-effort mapping between chat data and form fields.

``chat_to_form`` pre-fills the form from a chat section when the parent
switches from chat to form; ``form_to_chat`` seeds the chat's extracted data
when switching the other way.  Both are pure: they read the other modality's
data and never modify or delete it, so switching back loses nothing, and
calling them twice on the same input yields the same output.

Extraction order for ``chat_to_form``:
  1. fields already extracted during the chat (``extractedData``) win
  2. keyword phrases over the parent's own messages fill the rest
  3. fields with no matching source are omitted, never invented
"""

from __future__ import annotations

import re
from typing import Any, Iterable

from intake_engine.models.form import (
    ALL_FIELDS,
    APPETITE_LABELS,
    DURATION_LABELS,
    SCHOOL_LABELS,
    SEVERITY_LABELS,
    SLEEP_LABELS,
    SOCIAL_LABELS,
    form_from_wire,
)

# ---------------------------------------------------------------------------
# Phrase tables: checked in order, first matching row wins.
# Each row is (value, phrases); a phrase tuple means "all of these".
# ---------------------------------------------------------------------------

Phrase = str | tuple[str, ...]

_DURATION_PHRASES: list[tuple[str, list[Phrase]]] = [
    ("less-than-1-month", ["few weeks", "couple weeks", "this month", "recently", "just started"]),
    ("1-3-months", ["few months", "couple months", "month or two", "1-3 months", ("since", "started school")]),
    ("3-6-months", ["several months", "half year", "3-6 months", "past few months"]),
    ("6-plus-months", ["long time", "years", "year", "always", "6 months", "6+ months"]),
]

_SEVERITY_PHRASES: list[tuple[int, list[Phrase]]] = [
    (5, ["severe", "extreme", "crisis", "emergency"]),
    (4, ["significant", "serious", "very worried"]),
    (3, ["moderate", "concerning", "worried"]),
    (2, ["mild", "slight", "little"]),
    (1, ["minimal", "not too bad", "just checking"]),
]

_SLEEP_PHRASES: list[tuple[str, list[Phrase]]] = [
    ("difficulty-falling-asleep", ["trouble falling asleep", "can't fall asleep", "takes forever to sleep"]),
    ("waking-frequently", ["wakes up", "waking up", "nightmares", "restless"]),
    ("sleeping-too-much", ["sleeps too much", "always tired", "oversleeping"]),
    ("irregular-schedule", ["irregular", "inconsistent", "all over the place"]),
    ("no-change", ["sleep is fine", "sleeps well", "no sleep issues"]),
]

_APPETITE_PHRASES: list[tuple[str, list[Phrase]]] = [
    ("decreased", ["not eating", "lost appetite", "doesn't eat", "skipping meals"]),
    ("increased", ["eating more", "always hungry", "overeating"]),
    ("irregular", ["eating habits", "irregular eating", "picky"]),
    ("no-change", ["eating fine", "appetite is normal", "no food issues"]),
]

_SCHOOL_PHRASES: list[tuple[str, list[Phrase]]] = [
    ("not-attending", ["not going to school", ("refusing", "school"), "school avoidance", "won't go to school"]),
    ("significantly-impacted", ["failing", "can't focus", "falling behind", "dropped significantly"]),
    ("declining", [("grades", "dropping"), "declining", "worse at school"]),
    ("improved", ["doing better", "improved", "grades up"]),
    ("no-change", ["school is fine", "no school issues", "grades are ok"]),
]

_SOCIAL_PHRASES: list[tuple[str, list[Phrase]]] = [
    ("isolated", ["no friends", "alone", "isolated", "won't leave room"]),
    ("conflicts", ["fighting", "conflicts", "arguing", "bullying"]),
    ("withdrawing", ["withdrawing", "pulling away", "less social", "stopped seeing friends"]),
    ("improved", ["more social", "making friends", "better relationships"]),
    ("no-change", ["friends are fine", "social is ok", "no issues with friends"]),
]

_CONCERN_KEYWORDS = (
    "worried", "concern", "notice", "problem", "issue", "struggling", "difficult",
    "behavior", "mood", "anxiety", "depress", "sad", "angry", "stress",
)
_EVENT_KEYWORDS = (
    "divorce", "moved", "death", "lost", "passed away", "new school", "new baby",
    "sick", "hospital", "accident", "separation", "covid", "pandemic",
)
_GOAL_KEYWORDS = (
    "hope", "want", "wish", "goal", "help with", "looking for", "need support",
    "would like",
)
_GOAL_TOPICS = ("therapy", "help", "support", "better", "improve")

_SEVERITY_SCALE = re.compile(r"\b([1-5])\s*(?:out of|/)\s*5")


def _matches(text: str, phrase: Phrase) -> bool:
    if isinstance(phrase, tuple):
        return all(p in text for p in phrase)
    return phrase in text


def _first_match(text: str, table: list[tuple[Any, list[Phrase]]]) -> Any | None:
    for value, phrases in table:
        if any(_matches(text, p) for p in phrases):
            return value
    return None


def _user_texts(chat: dict[str, Any]) -> list[str]:
    """Contents of the parent's free-form messages, oldest first."""
    texts = []
    for message in chat.get("messages") or []:
        if message.get("sender") != "user":
            continue
        metadata = message.get("metadata") or {}
        if metadata.get("questionId"):
            continue
        content = str(message.get("content", "")).strip()
        if content:
            texts.append(content)
    return texts


def _primary_concerns(texts: list[str]) -> str | None:
    for text in texts:
        if len(text) < 20:
            continue
        lowered = text.lower()
        if any(k in lowered for k in _CONCERN_KEYWORDS):
            return text
    substantial = [t for t in texts if len(t) > 30][:2]
    return "\n\n".join(substantial) or None


def _first_containing(texts: Iterable[str], keywords: Iterable[str]) -> str | None:
    keywords = tuple(keywords)
    for text in texts:
        lowered = text.lower()
        if any(k in lowered for k in keywords):
            return text
    return None


def _therapy_goals(texts: list[str], chat: dict[str, Any]) -> str | None:
    for text in texts:
        lowered = text.lower()
        if any(k in lowered for k in _GOAL_KEYWORDS) and any(
            t in lowered for t in _GOAL_TOPICS
        ):
            return text
    focus = (chat.get("summary") or {}).get("recommendedFocus") or []
    if focus:
        return f"Focus areas identified: {', '.join(focus)}"
    return None


def _severity(text: str) -> int | None:
    match = _SEVERITY_SCALE.search(text)
    if match:
        return int(match.group(1))
    return _first_match(text, _SEVERITY_PHRASES)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def chat_to_form(chat: dict[str, Any] | None) -> dict[str, Any]:
    """Map a persisted chat section to partial (snake_case) form values."""
    if not chat:
        return {}
    values = form_from_wire(chat.get("extractedData") or {})
    texts = _user_texts(chat)

    if not texts:
        if "therapy_goals" not in values:
            goals = _therapy_goals([], chat)
            if goals:
                values["therapy_goals"] = goals
        return values

    combined = " ".join(t.lower() for t in texts)
    extractors = {
        "primary_concerns": lambda: _primary_concerns(texts),
        "concern_duration": lambda: _first_match(combined, _DURATION_PHRASES),
        "concern_severity": lambda: _severity(combined),
        "sleep_patterns": lambda: _first_match(combined, _SLEEP_PHRASES),
        "appetite_changes": lambda: _first_match(combined, _APPETITE_PHRASES),
        "school_performance": lambda: _first_match(combined, _SCHOOL_PHRASES),
        "social_relationships": lambda: _first_match(combined, _SOCIAL_PHRASES),
        "recent_events": lambda: _first_containing(texts, _EVENT_KEYWORDS),
        "therapy_goals": lambda: _therapy_goals(texts, chat),
    }
    for field in ALL_FIELDS:
        if values.get(field):
            continue
        extracted = extractors[field]()
        if extracted is not None:
            values[field] = extracted
    return values


def form_to_chat(values: dict[str, Any] | None) -> dict[str, Any]:
    """Map form values to chat extracted data plus a short context note.

    The note lets the conversation acknowledge what the parent already
    entered instead of asking for it again.
    """
    if not values:
        return {"extractedData": {}, "contextNote": None}

    extracted = {
        key: value
        for key, value in (
            ("primaryConcerns", values.get("primary_concerns")),
            ("concernDuration", values.get("concern_duration")),
            ("concernSeverity", values.get("concern_severity")),
            ("sleepPatterns", values.get("sleep_patterns")),
            ("appetiteChanges", values.get("appetite_changes")),
            ("schoolPerformance", values.get("school_performance")),
            ("socialRelationships", values.get("social_relationships")),
            ("recentEvents", values.get("recent_events")),
            ("therapyGoals", values.get("therapy_goals")),
        )
        if value not in (None, "")
    }

    notes = []
    if extracted.get("primaryConcerns"):
        notes.append(f"concerns: {extracted['primaryConcerns']}")
    if extracted.get("concernDuration") in DURATION_LABELS:
        notes.append(f"noticed for {DURATION_LABELS[extracted['concernDuration']].lower()}")
    if extracted.get("concernSeverity") in SEVERITY_LABELS:
        notes.append(f"severity {SEVERITY_LABELS[extracted['concernSeverity']].lower()}")
    for key, labels, name in (
        ("sleepPatterns", SLEEP_LABELS, "sleep"),
        ("appetiteChanges", APPETITE_LABELS, "appetite"),
        ("schoolPerformance", SCHOOL_LABELS, "school"),
        ("socialRelationships", SOCIAL_LABELS, "social"),
    ):
        if extracted.get(key) in labels:
            notes.append(f"{name}: {labels[extracted[key]].lower()}")

    note = "Already shared in the form: " + "; ".join(notes) + "." if notes else None
    return {"extractedData": extracted, "contextNote": note}
