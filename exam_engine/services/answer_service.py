# exam_engine/services/answer_service.py
"""
Answer Store: one row per (attempt, question).

Each save is a single INSERT ... ON CONFLICT DO UPDATE: answer and review
flag take the latest value, time_spent is accumulated with the new delta.
A row's existence marks the question as visited, even with a null answer.
"""

import logging
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from exam_engine.core.errors import AttemptClosed, NotFound
from exam_engine.models.attempt import AttemptStatus, ExamAttempt, QuestionResponse
from exam_engine.models.exam import Question, Section
from exam_engine.models.user import User
from exam_engine.schemas.response import ResponseSave, SaveItemResult

logger = logging.getLogger(__name__)


async def get_attempt_for_student(
    db: AsyncSession,
    *,
    student: User,
    attempt_id: int,
) -> ExamAttempt:
    result = await db.execute(
        select(ExamAttempt).where(
            ExamAttempt.id == attempt_id,
            ExamAttempt.student_id == student.id,
        )
        .execution_options(populate_existing=True)
    )
    attempt = result.scalar_one_or_none()
    if attempt is None:
        raise NotFound(f"attempt {attempt_id} not found")
    return attempt


def _require_in_progress(attempt: ExamAttempt) -> None:
    if attempt.status != AttemptStatus.IN_PROGRESS:
        raise AttemptClosed("Exam already submitted")


async def _exam_question_ids(db: AsyncSession, exam_id: int) -> set[int]:
    result = await db.execute(
        select(Question.id)
        .join(Section, Question.section_id == Section.id)
        .where(Section.exam_id == exam_id)
    )
    return set(result.scalars().all())


def _insert_for(db: AsyncSession):
    if db.get_bind().dialect.name == "postgresql":
        return pg_insert
    return sqlite_insert


async def _upsert_response(db: AsyncSession, attempt_id: int, item: ResponseSave) -> None:
    insert = _insert_for(db)
    stmt = insert(QuestionResponse).values(
        attempt_id=attempt_id,
        question_id=item.question_id,
        answer=item.answer,
        marked_for_review=item.marked_for_review,
        time_spent=item.time_spent_delta,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[QuestionResponse.attempt_id, QuestionResponse.question_id],
        set_={
            "answer": stmt.excluded.answer,
            "marked_for_review": stmt.excluded.marked_for_review,
            "time_spent": func.coalesce(QuestionResponse.time_spent, 0) + stmt.excluded.time_spent,
            "updated_at": func.now(),
        },
    )
    await db.execute(stmt)


async def _move_cursor(db: AsyncSession, attempt: ExamAttempt, question_id: Optional[int]) -> None:
    if question_id is None:
        return
    await db.execute(
        update(ExamAttempt)
        .where(ExamAttempt.id == attempt.id)
        .values(current_question_id=question_id)
    )


async def upsert_one(
    db: AsyncSession,
    *,
    student: User,
    attempt_id: int,
    item: ResponseSave,
    current_question_id: Optional[int] = None,
) -> None:
    attempt = await get_attempt_for_student(db, student=student, attempt_id=attempt_id)
    _require_in_progress(attempt)

    if item.question_id not in await _exam_question_ids(db, attempt.exam_id):
        raise NotFound(f"question {item.question_id} is not part of this exam")

    await _upsert_response(db, attempt.id, item)
    await _move_cursor(db, attempt, current_question_id)
    await db.commit()


async def upsert_batch(
    db: AsyncSession,
    *,
    student: User,
    attempt_id: int,
    items: List[ResponseSave],
    current_question_id: Optional[int] = None,
) -> List[SaveItemResult]:
    """
    Best-effort: an item that cannot be saved is reported in its result
    and the rest of the batch still goes through.
    """
    attempt = await get_attempt_for_student(db, student=student, attempt_id=attempt_id)
    _require_in_progress(attempt)

    question_ids = await _exam_question_ids(db, attempt.exam_id)
    results: List[SaveItemResult] = []

    for item in items:
        if item.question_id not in question_ids:
            logger.warning(
                f"Batch save for attempt {attempt.id}: question {item.question_id} not in exam"
            )
            results.append(
                SaveItemResult(question_id=item.question_id, ok=False, error=NotFound.code)
            )
            continue

        await _upsert_response(db, attempt.id, item)
        results.append(SaveItemResult(question_id=item.question_id, ok=True))

    await _move_cursor(db, attempt, current_question_id)
    await db.commit()
    return results


async def list_responses(db: AsyncSession, attempt_id: int) -> List[QuestionResponse]:
    result = await db.execute(
        select(QuestionResponse).where(QuestionResponse.attempt_id == attempt_id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())
