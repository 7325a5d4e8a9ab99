"""Keyword-based crisis classifier.

Matching is case-insensitive on word boundaries, and any run of whitespace in
a phrase matches any run of whitespace in the text ("kill   myself").
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Iterable

from intake_engine.interfaces import CrisisClassifier
from intake_engine.question_bank import DATA_DIR, load_yaml

logger = logging.getLogger(__name__)


class KeywordCrisisClassifier(CrisisClassifier):
    """Flags text containing any of a fixed list of crisis phrases."""

    def __init__(self, keywords: Iterable[str]) -> None:
        phrases = sorted({k.strip().lower() for k in keywords if k.strip()}, key=len, reverse=True)
        if not phrases:
            raise ValueError("KeywordCrisisClassifier needs at least one keyword")
        alternation = "|".join(
            r"\s+".join(re.escape(word) for word in phrase.split()) for phrase in phrases
        )
        self._pattern = re.compile(rf"\b(?:{alternation})\b", re.IGNORECASE)
        self.keywords: tuple[str, ...] = tuple(phrases)

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> KeywordCrisisClassifier:
        raw = load_yaml(path or DATA_DIR / "crisis_keywords.yaml") or {}
        classifier = cls(raw.get("keywords", []))
        logger.info("Crisis classifier loaded with %d phrases", len(classifier.keywords))
        return classifier

    def detect(self, text: str) -> bool:
        return bool(text) and self._pattern.search(text) is not None


@lru_cache(maxsize=1)
def default_classifier() -> KeywordCrisisClassifier:
    """The packaged keyword classifier, loaded once per process."""
    return KeywordCrisisClassifier.from_yaml()
