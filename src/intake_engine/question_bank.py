"""QuestionBank — loads the structured question sections from YAML.

The bank is loaded once at startup and provides lookup by section, question
id and category.

Usage::

    bank = QuestionBank()           # defaults to the packaged data/questions.yaml
    bank.load()

    section = bank.get_section("phq_a")
    q = bank.get_question("gad_7_3")
    nxt = bank.next_section(answered_ids)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable

import yaml

from intake_engine.models.question import QuestionSection, StructuredQuestion

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent / "data"


def load_yaml(path: Path | str) -> Any:
    """Load a single YAML file and return the parsed contents."""
    if isinstance(path, str):
        path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Missing YAML file: {path}")
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f)


class QuestionBank:
    """Typed, ordered access to the structured question sections.

    Args:
        path: optional override for the YAML file.  Defaults to
            ``data/questions.yaml`` next to this module.
    """

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path) if path is not None else DATA_DIR / "questions.yaml"
        self.sections: dict[str, QuestionSection] = {}
        self._questions: dict[str, StructuredQuestion] = {}
        self._section_of: dict[str, str] = {}

    def load(self) -> None:
        """Parse the YAML file into :class:`QuestionSection` models.

        Section-level ``options``/``values`` are inherited by questions that
        do not define their own, and every question inherits the section's
        category.
        """
        raw = load_yaml(self._path) or {}
        self.sections.clear()
        self._questions.clear()
        self._section_of.clear()

        for entry in raw.get("sections", []):
            questions = []
            for q in entry.get("questions", []):
                item = {
                    "options": entry.get("options", []),
                    "values": entry.get("values"),
                    **q,
                    "category": entry["category"],
                }
                if not item["options"]:
                    item.setdefault("type", "text")
                question = StructuredQuestion.model_validate(item)
                if question.id in self._questions:
                    raise ValueError(f"Duplicate question id: {question.id}")
                questions.append(question)
                self._questions[question.id] = question
                self._section_of[question.id] = entry["id"]

            section = QuestionSection(
                id=entry["id"],
                title=entry.get("title", entry["id"]),
                category=entry["category"],
                intro=entry.get("intro", ""),
                questions=questions,
            )
            self.sections[section.id] = section

        logger.info(
            "QuestionBank loaded: %d sections, %d questions",
            len(self.sections), len(self._questions),
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_section(self, section_id: str) -> QuestionSection:
        section = self.sections.get(section_id)
        if section is None:
            raise ValueError(f"Question section not found: {section_id}")
        return section

    def get_question(self, question_id: str) -> StructuredQuestion:
        question = self._questions.get(question_id)
        if question is None:
            raise ValueError(f"Question not found: {question_id}")
        return question

    def section_of(self, question_id: str) -> str:
        self.get_question(question_id)
        return self._section_of[question_id]

    @property
    def questions(self) -> dict[str, StructuredQuestion]:
        return dict(self._questions)

    def questions_in(self, category: str) -> list[StructuredQuestion]:
        return [q for q in self._questions.values() if q.category == category]

    def unanswered_sections(self, answered: Iterable[str]) -> list[str]:
        """Ids of sections that still have at least one unanswered question."""
        done = set(answered)
        return [
            sid
            for sid, section in self.sections.items()
            if any(q.id not in done for q in section.questions)
        ]

    def next_section(self, answered: Iterable[str]) -> QuestionSection | None:
        """First section (in bank order) with an unanswered question."""
        remaining = self.unanswered_sections(answered)
        return self.sections[remaining[0]] if remaining else None
