import re
from typing import Optional

from .models import AnswerRecord, QuizItem

_WHITESPACE = re.compile(r"\s+")


def normalize_answer(text: Optional[str]) -> str:
    """Lower-cases, collapses whitespace runs to one space and trims."""
    return _WHITESPACE.sub(" ", (text or "").lower()).strip()


def grade(user_answer: Optional[str], correct_answer: Optional[str]) -> bool:
    """Exact match after normalization. No partial or fuzzy credit."""
    return normalize_answer(user_answer) == normalize_answer(correct_answer)


def record_answer(item: QuizItem, user_answer: Optional[str]) -> AnswerRecord:
    user_answer = user_answer or ""
    return AnswerRecord(
        quiz_id=item.id,
        term_id=item.term_id,
        prompt_type=item.prompt_type,
        prompt_text=item.prompt_text,
        user_answer=user_answer,
        correct_answer=item.answer,
        is_correct=grade(user_answer, item.answer),
        source_id=item.source_id,
        source_name=item.source_name,
    )
