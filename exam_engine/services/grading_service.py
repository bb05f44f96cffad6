# exam_engine/services/grading_service.py
"""
AI grading of subjective responses.

One task per ungraded, non-empty subjective response. Tasks run concurrently
and are awaited together; a failing task is logged and its response stays
unscored so it contributes nothing to the total.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, List, Optional

from exam_engine.models.attempt import QuestionResponse
from exam_engine.models.exam import Exam, Question
from exam_engine.schemas.grading import GradingResult
from exam_engine.services.ai_client import GradingProvider, parse_grading_response
from exam_engine.services.scoring_service import is_empty_answer

logger = logging.getLogger(__name__)

DEFAULT_MODEL_ANSWER = (
    "No model answer provided. Grade on general subject knowledge and accuracy."
)

BASE_PROMPT = """Act as a strict academic examiner. Evaluate the student's answer based on the provided Model Answer/Key Points.

QUESTION: {question}
MAX MARKS: {max_marks}

MODEL ANSWER / KEY POINTS:
{model_answer}

STUDENT ANSWER:
{student_answer}

INSTRUCTIONS:
1. Assign a score out of {max_marks}. Partial marking is allowed (e.g., 2.5).
2. Be strict but fair. If the core concept is missing, give 0.
3. Provide specific feedback on what was correct and what was missing.
4. Suggest improvements.

OUTPUT FORMAT:
Respond ONLY with a valid JSON object. Do not wrap in markdown code blocks.
{{"score": 4.5, "feedback": "Good explanation of...", "improvements": "You missed the point about..."}}
"""


@dataclass(frozen=True)
class GradingTask:
    response_id: int
    question_id: int
    question_text: str
    student_answer: str
    model_answer: str
    max_marks: Decimal
    instructions: Optional[str] = None


def localized_text(value: Any, lang: str = "en") -> str:
    """Resolve a language-keyed text map: requested language, then en, then any."""
    if value is None:
        return ""
    if isinstance(value, dict):
        for key in (lang, "en"):
            if value.get(key):
                return str(value[key])
        for text in value.values():
            if text:
                return str(text)
        return ""
    return str(value)


def _answer_as_text(answer: Any) -> str:
    if isinstance(answer, (list, tuple)):
        return ", ".join(str(a) for a in answer)
    if isinstance(answer, dict):
        return localized_text(answer)
    return str(answer)


def build_grading_prompt(task: GradingTask) -> str:
    prompt = BASE_PROMPT.format(
        question=task.question_text,
        max_marks=task.max_marks,
        model_answer=task.model_answer,
        student_answer=task.student_answer,
    )
    if task.instructions and task.instructions.strip():
        prompt = f"{prompt}\nADDITIONAL INSTRUCTIONS:\n{task.instructions.strip()}\n"
    return prompt


def build_grading_tasks(
    exam: Exam,
    questions: Iterable[Question],
    responses: dict[int, QuestionResponse],
) -> List[GradingTask]:
    tasks: List[GradingTask] = []
    for question in questions:
        if not question.is_gradable or not question.is_subjective:
            continue

        response = responses.get(question.id)
        if response is None or is_empty_answer(response.answer):
            continue
        if response.marks_awarded is not None:
            # already graded
            continue

        model_answer = localized_text(question.model_answer) or localized_text(question.explanation)
        tasks.append(
            GradingTask(
                response_id=response.id,
                question_id=question.id,
                question_text=localized_text(question.text),
                student_answer=_answer_as_text(response.answer),
                model_answer=model_answer or DEFAULT_MODEL_ANSWER,
                max_marks=Decimal(str(question.marks)),
                instructions=exam.grading_instructions,
            )
        )
    return tasks


async def run_grading_task(task: GradingTask, provider: GradingProvider) -> GradingResult:
    text = await provider.grade(build_grading_prompt(task))
    return parse_grading_response(text)


async def grade_all(
    tasks: List[GradingTask],
    provider: GradingProvider,
) -> List[tuple[GradingTask, Optional[GradingResult]]]:
    """Fan out every task and wait for all of them; failures come back as None."""

    async def _settle(task: GradingTask):
        try:
            return task, await run_grading_task(task, provider)
        except Exception as e:
            logger.error(
                f"AI grading failed for response {task.response_id} "
                f"(question {task.question_id}): {e}",
                exc_info=True,
            )
            return task, None

    return list(await asyncio.gather(*(_settle(t) for t in tasks)))


def apply_grading_result(response: QuestionResponse, result: GradingResult) -> None:
    response.ai_feedback = result.model_dump()
    response.marks_awarded = Decimal(str(result.score))
    response.is_correct = result.score > 0
