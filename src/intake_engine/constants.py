"""Intake constants shared across the SDK.

These values are referenced by the engines, the session store, and the sync
reconciler.  They mirror the persisted layout that older clients already
write (``onboarding_session_{id}`` / ``assessment_summary_{id}``).

Timing constants can be overridden via environment variables so that
deployments (and tests) can tune debounce windows without code changes.
"""

import os

# --- Persisted key layout ---
SESSION_KEY_PREFIX = "onboarding_session_"
SUMMARY_KEY_PREFIX = "assessment_summary_"

# Sections inside the ``data`` object of an onboarding session document.
SESSION_SECTION = "session"
CHAT_SECTION = "chat"
FORM_SECTION = "formAssessment"
PARENT_SECTION = "parent"
CHILD_SECTION = "child"
INSURANCE_SECTION = "insurance"

# A session expires this many days after creation.
SESSION_TTL_DAYS = int(os.getenv("SESSION_TTL_DAYS", "30"))

# --- Timing (seconds) ---
# Debounce window for field-blur auto-save in the form engine.
AUTOSAVE_DEBOUNCE = int(os.getenv("AUTOSAVE_DEBOUNCE_MS", "500")) / 1000
# Selection-feedback delay before a structured answer is committed.
RECORDING_DELAY = int(os.getenv("RECORDING_DELAY_MS", "200")) / 1000
# Pause between sequential remote mutations during sync.
SYNC_STEP_DELAY = int(os.getenv("SYNC_STEP_DELAY_MS", "100")) / 1000
# A repeat of the answer just committed, arriving within this window after
# the commit, is a double submit and is ignored.
RESUBMIT_WINDOW = int(os.getenv("RESUBMIT_WINDOW_MS", "1000")) / 1000
# Live engines idle for this long are dropped by the server's registry.
ENGINE_IDLE_TTL = int(os.getenv("ENGINE_IDLE_TTL_S", "900"))

# --- Structured questions ---
# Selecting this option opens the free-text editor instead of answering.
OTHER_OPTION = "Other"

# Question categories that must be fully answered before a chat
# assessment may produce a summary.
REQUIRED_CATEGORIES: tuple[str, ...] = ("depression", "anxiety")

# --- Form ---
FORM_PAGES: tuple[int, ...] = (1, 2, 3)

# --- Summary caps ---
MAX_KEY_CONCERNS = 3
MAX_RECOMMENDED_FOCUS = 5

# Static crisis resources surfaced whenever crisis language is detected.
CRISIS_RESOURCES: list[dict[str, str]] = [
    {
        "name": "988 Suicide & Crisis Lifeline",
        "contact": "Call or text 988",
        "available": "24/7",
    },
    {
        "name": "Crisis Text Line",
        "contact": "Text HOME to 741741",
        "available": "24/7",
    },
    {
        "name": "Emergency Services",
        "contact": "Call 911 if your child is in immediate danger",
        "available": "24/7",
    },
]
