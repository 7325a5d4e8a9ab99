"""Completeness policies — decide when a chat assessment may be summarized.

A policy is any callable ``(responses, messages) -> bool``.  The engine asks
it after every user turn and only moves on to summary generation once it
returns True.
"""

from __future__ import annotations

from typing import Callable, Iterable, Sequence

from intake_engine.constants import REQUIRED_CATEGORIES
from intake_engine.models.message import Message
from intake_engine.models.question import AssessmentResponse
from intake_engine.question_bank import QuestionBank

CompletenessPolicy = Callable[[Sequence[AssessmentResponse], Sequence[Message]], bool]


class CategoryCompletenessPolicy:
    """Complete once every question of the required categories is answered.

    Also requires at least ``min_freeform_messages`` free-form user messages,
    so that the summary has the parent's own description to work from.
    """

    def __init__(
        self,
        bank: QuestionBank,
        required_categories: Iterable[str] = REQUIRED_CATEGORIES,
        *,
        min_freeform_messages: int = 1,
    ) -> None:
        self._bank = bank
        self.required_categories = tuple(required_categories)
        self.min_freeform_messages = min_freeform_messages

    def missing_categories(self, responses: Sequence[AssessmentResponse]) -> list[str]:
        answered = {r.question_id for r in responses}
        return [
            category
            for category in self.required_categories
            if any(q.id not in answered for q in self._bank.questions_in(category))
        ]

    def __call__(
        self,
        responses: Sequence[AssessmentResponse],
        messages: Sequence[Message],
    ) -> bool:
        freeform = sum(1 for m in messages if m.is_freeform_user)
        if freeform < self.min_freeform_messages:
            return False
        return not self.missing_categories(responses)
