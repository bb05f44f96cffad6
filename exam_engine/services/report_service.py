# exam_engine/services/report_service.py
"""
Result aggregation for reporting. Reads persisted responses only; never
rescores anything.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from exam_engine.core.errors import NoAttempt, NotFound
from exam_engine.models.attempt import AttemptStatus, ExamAttempt
from exam_engine.models.user import User
from exam_engine.schemas.report import AttemptReport, QuestionResult, ResultStats, SectionReport
from exam_engine.services.answer_service import list_responses
from exam_engine.services.attempt_service import get_exam, list_exam_questions, list_exam_sections
from exam_engine.services.schedule_validator import as_utc
from exam_engine.services.scoring_service import is_empty_answer


def _round(value: Decimal, places: str = "0.01") -> Decimal:
    return value.quantize(Decimal(places), rounding=ROUND_HALF_UP)


def performance_factor(score: Any, max_score: Any, difficulty: Any) -> float:
    """
    (score / max) x (1 + (difficulty - 1) x 0.2), two decimals.

    >>> performance_factor(8, 10, 4)
    1.28
    """
    max_score = Decimal(str(max_score or 0))
    if max_score == 0:
        return 0.0
    base = Decimal(str(score or 0)) / max_score
    multiplier = 1 + (Decimal(str(difficulty or 1)) - 1) * Decimal("0.2")
    return float(_round(base * multiplier))


def difficulty_label(difficulty: float) -> str:
    if difficulty <= 1.5:
        return "Easy"
    if difficulty <= 2.5:
        return "Medium"
    if difficulty <= 3.5:
        return "Moderate"
    return "Hard"


def _num(value: Any) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


async def build_attempt_report(
    db: AsyncSession,
    attempt: ExamAttempt,
    *,
    now: Optional[datetime] = None,
) -> AttemptReport:
    exam = await get_exam(db, attempt.exam_id)
    student = await db.get(User, attempt.student_id)
    sections = await list_exam_sections(db, exam.id)
    questions = [q for q in await list_exam_questions(db, exam.id) if q.is_gradable]
    responses = {r.question_id: r for r in await list_responses(db, attempt.id)}

    section_reports: List[SectionReport] = []
    for section in sections:
        rows: List[QuestionResult] = []
        for q in (q for q in questions if q.section_id == section.id):
            r = responses.get(q.id)
            awarded = _num(r.marks_awarded if r else None)
            rows.append(
                QuestionResult(
                    id=q.id,
                    section_id=q.section_id,
                    parent_id=q.parent_id,
                    type=q.type,
                    text=q.text,
                    options=q.options,
                    correct_answer=q.correct_answer,
                    explanation=q.explanation,
                    marks=float(q.marks),
                    negative_marks=float(q.negative_marks) if q.negative_marks is not None else None,
                    difficulty=q.difficulty or 1,
                    order=q.order,
                    student_answer=r.answer if r else None,
                    is_attempted=r is not None and not is_empty_answer(r.answer),
                    is_correct=r.is_correct if r else None,
                    marks_awarded=float(awarded),
                    ai_feedback=r.ai_feedback if r else None,
                    time_spent=r.time_spent if r else 0,
                    performance_factor=performance_factor(awarded, q.marks, q.difficulty),
                )
            )

        total_marks = sum((_num(q.marks) for q in rows), Decimal("0"))
        obtained = sum((_num(q.marks_awarded) for q in rows), Decimal("0"))
        avg_difficulty = (
            sum(q.difficulty for q in rows) / len(rows) if rows else 1.0
        )
        section_reports.append(
            SectionReport(
                id=section.id,
                name=section.name,
                order=section.order,
                total_marks=float(total_marks),
                marks_obtained=float(obtained),
                avg_difficulty=round(avg_difficulty, 2),
                difficulty_label=difficulty_label(avg_difficulty),
                questions_count=len(rows),
                attempted_count=sum(1 for q in rows if q.is_attempted),
                correct_count=sum(1 for q in rows if q.is_correct),
                performance_factor=performance_factor(obtained, total_marks, avg_difficulty),
                questions=rows,
            )
        )

    all_rows = [q for s in section_reports for q in s.questions]
    attempted = sum(1 for q in all_rows if q.is_attempted)
    stats = ResultStats(
        total_questions=len(all_rows),
        attempted=attempted,
        correct=sum(1 for q in all_rows if q.is_correct),
        incorrect=sum(1 for q in all_rows if q.is_correct is False and q.is_attempted),
        unattempted=len(all_rows) - attempted,
    )

    total_score = _num(attempt.total_score)
    total_marks = _num(exam.total_marks)
    overall_difficulty = (
        sum(s.avg_difficulty for s in section_reports) / len(section_reports)
        if section_reports
        else 1.0
    )
    percentage = int(_round(total_score / total_marks * 100, "1")) if total_marks > 0 else 0
    passed = total_score >= exam.passing_marks if exam.passing_marks is not None else None

    end = attempt.submitted_at or now or datetime.now(timezone.utc)
    time_spent = int((as_utc(end) - as_utc(attempt.started_at)).total_seconds())

    return AttemptReport(
        attempt_id=attempt.id,
        exam_id=exam.id,
        exam_title=exam.title,
        student_id=attempt.student_id,
        student_name=student.name if student else None,
        status=attempt.status,
        started_at=attempt.started_at,
        submitted_at=attempt.submitted_at,
        auto_submit=attempt.auto_submit,
        total_score=float(total_score),
        total_marks=float(total_marks),
        passing_marks=float(exam.passing_marks) if exam.passing_marks is not None else None,
        percentage=percentage,
        passed=passed,
        performance_factor=performance_factor(total_score, total_marks, overall_difficulty),
        time_spent_seconds=max(0, time_spent),
        stats=stats,
        sections=section_reports,
    )


async def get_attempt_report(db: AsyncSession, attempt_id: int) -> AttemptReport:
    result = await db.execute(
        select(ExamAttempt)
        .where(ExamAttempt.id == attempt_id)
        .execution_options(populate_existing=True)
    )
    attempt = result.scalar_one_or_none()
    if attempt is None:
        raise NotFound(f"attempt {attempt_id} not found")
    return await build_attempt_report(db, attempt)


async def get_student_result(
    db: AsyncSession,
    *,
    student: User,
    exam_id: int,
) -> AttemptReport:
    """Latest submitted attempt of the student for this exam."""
    result = await db.execute(
        select(ExamAttempt)
        .where(
            ExamAttempt.exam_id == exam_id,
            ExamAttempt.student_id == student.id,
            ExamAttempt.status == AttemptStatus.SUBMITTED,
        )
        .order_by(ExamAttempt.submitted_at.desc(), ExamAttempt.id.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    attempt = result.scalar_one_or_none()
    if attempt is None:
        raise NoAttempt("Exam not yet submitted")
    return await build_attempt_report(db, attempt)
