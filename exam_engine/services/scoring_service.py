# exam_engine/services/scoring_service.py
"""
Objective scoring: exact answer-set comparison, order and case insensitive.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, List, Optional

from exam_engine.models.attempt import QuestionResponse
from exam_engine.models.exam import Question

logger = logging.getLogger(__name__)


class ScoringError(Exception):
    pass


@dataclass(frozen=True)
class ObjectiveOutcome:
    is_correct: bool
    marks_awarded: Decimal


def is_empty_answer(answer: Any) -> bool:
    """None, blank strings and empty collections count as unanswered."""
    if answer is None:
        return True
    if isinstance(answer, str):
        return answer.strip() == ""
    if isinstance(answer, (list, tuple, dict, set)):
        return len(answer) == 0
    return False


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def normalize_answer(value: Any) -> List[str]:
    """
    Coerce to a list, stringify, lower-case, trim and sort.

    >>> normalize_answer(["B", " a "])
    ['a', 'b']
    """
    items = value if isinstance(value, (list, tuple)) else [value]
    return sorted(_to_text(v).lower().strip() for v in items)


def _as_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def score_objective(
    *,
    correct_answer: Any,
    student_answer: Any,
    marks: Any,
    negative_marks: Any = None,
) -> Optional[ObjectiveOutcome]:
    """
    Returns None when the question was not attempted: no credit, no penalty.

    Raises ScoringError when the question has no answer key.
    """
    if is_empty_answer(student_answer):
        return None
    if is_empty_answer(correct_answer):
        raise ScoringError("question has no correct answer set")

    is_correct = normalize_answer(student_answer) == normalize_answer(correct_answer)

    if is_correct:
        awarded = _as_decimal(marks)
    elif negative_marks:
        awarded = -_as_decimal(negative_marks)
    else:
        awarded = Decimal("0")

    return ObjectiveOutcome(is_correct=is_correct, marks_awarded=awarded)


def score_objective_responses(
    questions: Iterable[Question],
    responses: dict[int, QuestionResponse],
) -> int:
    """
    Score every objective question in place on its response row.
    A malformed question is logged and skipped, never raised.
    Returns the number of rows scored.
    """
    scored = 0
    for question in questions:
        if not question.is_gradable or question.is_subjective:
            continue

        response = responses.get(question.id)
        if response is None:
            continue

        try:
            outcome = score_objective(
                correct_answer=question.correct_answer,
                student_answer=response.answer,
                marks=question.marks,
                negative_marks=question.negative_marks,
            )
        except ScoringError as e:
            logger.warning(f"Skipping question {question.id} for attempt {response.attempt_id}: {e}")
            continue

        if outcome is None:
            continue

        response.is_correct = outcome.is_correct
        response.marks_awarded = outcome.marks_awarded
        scored += 1

        logger.debug(
            f"Scored question {question.id}: correct={outcome.is_correct}, "
            f"marks={outcome.marks_awarded}"
        )

    return scored
