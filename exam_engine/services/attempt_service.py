# exam_engine/services/attempt_service.py
"""
Attempt state machine: NotStarted -> in_progress -> submitted.

- start() is idempotent: an in-progress attempt is returned as a resume.
- submit() flips in_progress -> submitted exactly once. The final UPDATE is
  guarded by status, so a racing second submit matches no row and fails
  with AlreadySubmitted instead of scoring twice.
- total_score is always SUM(marks_awarded) read back from the store.
"""

from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from exam_engine.core.errors import (
    AlreadySubmitted,
    ExamNotActive,
    MaxAttemptsReached,
    NoAttempt,
    NotAssigned,
    NotFound,
)
from exam_engine.models.assignment import ExamAssignment, ExamSchedule
from exam_engine.models.attempt import AttemptStatus, ExamAttempt, QuestionResponse
from exam_engine.models.exam import Exam, Question, Section
from exam_engine.models.user import User
from exam_engine.schemas.attempt import (
    AttemptData,
    ExamInfo,
    QuestionForAttempt,
    SavedResponse,
    SessionClaimResult,
    SectionInfo,
)
from exam_engine.services import grading_service, scoring_service
from exam_engine.services.ai_client import GradingProvider
from exam_engine.services.answer_service import list_responses
from exam_engine.services.schedule_validator import Window, as_utc, is_open_at

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def remaining_seconds(duration_minutes: int, started_at: datetime, now: datetime) -> int:
    elapsed = math.floor((as_utc(now) - as_utc(started_at)).total_seconds())
    return max(0, duration_minutes * 60 - elapsed)


async def get_exam(db: AsyncSession, exam_id: int) -> Exam:
    exam = await db.get(Exam, exam_id)
    if exam is None:
        raise NotFound(f"exam {exam_id} not found")
    return exam


async def list_exam_sections(db: AsyncSession, exam_id: int) -> List[Section]:
    result = await db.execute(
        select(Section).where(Section.exam_id == exam_id).order_by(Section.order, Section.id)
    )
    return list(result.scalars().all())


async def list_exam_questions(db: AsyncSession, exam_id: int) -> List[Question]:
    result = await db.execute(
        select(Question)
        .join(Section, Question.section_id == Section.id)
        .where(Section.exam_id == exam_id)
        .order_by(Section.order, Question.order, Question.id)
    )
    return list(result.scalars().all())


async def _get_in_progress(db: AsyncSession, *, student_id: int, exam_id: int) -> Optional[ExamAttempt]:
    result = await db.execute(
        select(ExamAttempt)
        .where(
            ExamAttempt.student_id == student_id,
            ExamAttempt.exam_id == exam_id,
            ExamAttempt.status == AttemptStatus.IN_PROGRESS,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _open_assignment(
    db: AsyncSession,
    *,
    student: User,
    exam_id: int,
    now: datetime,
) -> ExamAssignment:
    """The student's assignment whose window contains `now`."""
    result = await db.execute(
        select(ExamAssignment, ExamSchedule)
        .outerjoin(ExamSchedule, ExamAssignment.schedule_id == ExamSchedule.id)
        .where(
            ExamAssignment.exam_id == exam_id,
            ExamAssignment.student_id == student.id,
        )
    )
    rows = result.all()
    if not rows:
        raise NotAssigned("Not assigned to this exam")

    upcoming: Optional[datetime] = None
    for assignment, schedule in rows:
        window = Window(schedule.start_time, schedule.end_time) if schedule else None
        if is_open_at(window, now):
            return assignment
        if as_utc(schedule.start_time) > as_utc(now):
            start = as_utc(schedule.start_time)
            upcoming = start if upcoming is None else min(upcoming, start)

    if upcoming is not None:
        raise ExamNotActive("Exam has not started yet", startsAt=upcoming.isoformat())
    raise ExamNotActive("Exam has ended")


async def start_attempt(
    db: AsyncSession,
    *,
    student: User,
    exam_id: int,
    now: Optional[datetime] = None,
) -> tuple[ExamAttempt, bool]:
    """
    Start or resume. Returns (attempt, resumed).
    """
    now = now or _utcnow()
    await get_exam(db, exam_id)
    assignment = await _open_assignment(db, student=student, exam_id=exam_id, now=now)

    active = await _get_in_progress(db, student_id=student.id, exam_id=exam_id)
    if active is not None:
        logger.info(f"Resuming attempt {active.id} for student {student.id}, exam {exam_id}")
        return active, True

    finished = await db.scalar(
        select(func.count(ExamAttempt.id)).where(
            ExamAttempt.student_id == student.id,
            ExamAttempt.exam_id == exam_id,
            ExamAttempt.status == AttemptStatus.SUBMITTED,
        )
    )
    max_attempts = assignment.max_attempts or 1
    if finished and finished >= max_attempts:
        if max_attempts <= 1:
            raise AlreadySubmitted("Exam already submitted")
        raise MaxAttemptsReached(f"Used {finished} of {max_attempts} attempts")

    attempt = ExamAttempt(
        exam_id=exam_id,
        student_id=student.id,
        status=AttemptStatus.IN_PROGRESS,
        started_at=now,
        auto_submit=False,
    )
    db.add(attempt)
    try:
        await db.commit()
    except IntegrityError:
        # lost a race with a concurrent start; the winner's row is the attempt
        await db.rollback()
        active = await _get_in_progress(db, student_id=student.id, exam_id=exam_id)
        if active is None:
            raise
        return active, True

    await db.refresh(attempt)
    logger.info(f"Started attempt {attempt.id} for student {student.id}, exam {exam_id}")
    return attempt, False


async def resume_data(
    db: AsyncSession,
    attempt: ExamAttempt,
    *,
    now: Optional[datetime] = None,
) -> AttemptData:
    if attempt.status == AttemptStatus.SUBMITTED:
        raise ExamNotActive("Exam already submitted")

    now = now or _utcnow()
    exam = await get_exam(db, attempt.exam_id)
    sections = await list_exam_sections(db, exam.id)
    questions = await list_exam_questions(db, exam.id)
    responses = await list_responses(db, attempt.id)

    return AttemptData(
        attempt_id=attempt.id,
        exam=ExamInfo.model_validate(exam),
        sections=[SectionInfo.model_validate(s) for s in sections],
        questions=[QuestionForAttempt.model_validate(q) for q in questions],
        responses={
            r.question_id: SavedResponse(answer=r.answer, marked_for_review=r.marked_for_review)
            for r in responses
        },
        remaining_seconds=remaining_seconds(exam.duration, attempt.started_at, now),
        current_question_id=attempt.current_question_id,
    )


def _new_session_token() -> str:
    return str(uuid.uuid4())


async def _set_session_token(
    db: AsyncSession,
    attempt: ExamAttempt,
    token: str,
    *,
    expected: Optional[str],
) -> bool:
    """Compare-and-set on the stored token; False when another device got there first."""
    guard = (
        ExamAttempt.session_token.is_(None)
        if expected is None
        else ExamAttempt.session_token == expected
    )
    result = await db.execute(
        update(ExamAttempt)
        .where(
            ExamAttempt.id == attempt.id,
            ExamAttempt.status == AttemptStatus.IN_PROGRESS,
            guard,
        )
        .values(session_token=token)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


async def claim_session(
    db: AsyncSession,
    *,
    student: User,
    exam_id: int,
    client_token: Optional[str] = None,
    force: bool = False,
) -> SessionClaimResult:
    """
    Single-device claim on the running attempt.

    The first device to claim gets a token. A device presenting that token
    keeps the session; any other device is told the exam is active elsewhere
    unless it forces a takeover, which issues a new token and locks the
    previous device out.
    """
    attempt = await _get_in_progress(db, student_id=student.id, exam_id=exam_id)
    if attempt is None:
        # nothing to claim yet; start() creates the attempt
        return SessionClaimResult(
            session_token=_new_session_token(),
            is_new_session=True,
            no_active_attempt=True,
        )

    for _ in range(2):
        current = attempt.session_token

        if current is None:
            token = _new_session_token()
            if await _set_session_token(db, attempt, token, expected=None):
                logger.info(f"Session claimed for attempt {attempt.id}")
                return SessionClaimResult(session_token=token, is_new_session=True)
        elif client_token == current:
            return SessionClaimResult(session_token=current)
        elif not force:
            logger.info(f"Attempt {attempt.id} is active on another device")
            return SessionClaimResult(ok=False, active_on_other_device=True)
        else:
            token = _new_session_token()
            if await _set_session_token(db, attempt, token, expected=current):
                logger.info(f"Session for attempt {attempt.id} taken over by another device")
                return SessionClaimResult(
                    session_token=token,
                    is_new_session=True,
                    took_over_session=True,
                )

        # lost a race with another claim; look again
        attempt = await _get_in_progress(db, student_id=student.id, exam_id=exam_id)
        if attempt is None:
            raise AlreadySubmitted("Exam already submitted")

    return SessionClaimResult(ok=False, active_on_other_device=True)


async def get_attempt_data(
    db: AsyncSession,
    *,
    student: User,
    exam_id: int,
    now: Optional[datetime] = None,
) -> AttemptData:
    """Attempt data by exam: the in-progress attempt wins over newer submitted ones."""
    result = await db.execute(
        select(ExamAttempt)
        .where(ExamAttempt.exam_id == exam_id, ExamAttempt.student_id == student.id)
        .order_by(
            case((ExamAttempt.status == AttemptStatus.IN_PROGRESS, 0), else_=1),
            ExamAttempt.started_at.desc(),
        )
        .limit(1)
        .execution_options(populate_existing=True)
    )
    attempt = result.scalar_one_or_none()
    if attempt is None:
        raise NoAttempt("No attempt found, start the exam first")
    if attempt.status == AttemptStatus.SUBMITTED:
        raise AlreadySubmitted("Exam already submitted")
    return await resume_data(db, attempt, now=now)


async def _total_score(db: AsyncSession, attempt_id: int) -> Decimal:
    total = await db.scalar(
        select(func.coalesce(func.sum(QuestionResponse.marks_awarded), 0)).where(
            QuestionResponse.attempt_id == attempt_id
        )
    )
    return Decimal(str(total))


async def submit_attempt(
    db: AsyncSession,
    *,
    student: User,
    attempt_id: int,
    provider: GradingProvider,
    auto_submit: bool = False,
    now: Optional[datetime] = None,
) -> Decimal:
    """
    Score objective questions, AI-grade subjective ones, then finalize.
    Returns the authoritative total score.
    """
    result = await db.execute(
        select(ExamAttempt)
        .where(
            ExamAttempt.id == attempt_id,
            ExamAttempt.student_id == student.id,
            ExamAttempt.status == AttemptStatus.IN_PROGRESS,
        )
        .execution_options(populate_existing=True)
    )
    attempt = result.scalar_one_or_none()
    if attempt is None:
        existing = await db.scalar(
            select(ExamAttempt.status).where(
                ExamAttempt.id == attempt_id,
                ExamAttempt.student_id == student.id,
            )
        )
        if existing == AttemptStatus.SUBMITTED:
            raise AlreadySubmitted("Exam already submitted")
        raise NoAttempt("No attempt found")

    exam = await get_exam(db, attempt.exam_id)
    questions = await list_exam_questions(db, exam.id)
    responses = {r.question_id: r for r in await list_responses(db, attempt.id)}

    # objective marks must be persisted before anything sums them
    objective_count = scoring_service.score_objective_responses(questions, responses)
    await db.flush()

    tasks = grading_service.build_grading_tasks(exam, questions, responses)
    graded = 0
    if tasks:
        by_id = {r.id: r for r in responses.values()}
        for task, grading in await grading_service.grade_all(tasks, provider):
            if grading is None:
                continue
            grading_service.apply_grading_result(by_id[task.response_id], grading)
            graded += 1
        await db.flush()

    total = await _total_score(db, attempt.id)

    flipped = await db.execute(
        update(ExamAttempt)
        .where(
            ExamAttempt.id == attempt.id,
            ExamAttempt.status == AttemptStatus.IN_PROGRESS,
        )
        .values(
            status=AttemptStatus.SUBMITTED,
            submitted_at=now or _utcnow(),
            auto_submit=auto_submit,
            total_score=total,
        )
    )
    if flipped.rowcount == 0:
        await db.rollback()
        raise AlreadySubmitted("Exam already submitted")

    await db.commit()
    logger.info(
        f"Submitted attempt {attempt.id}: objective={objective_count}, "
        f"subjective={graded}/{len(tasks)}, total={total}, auto_submit={auto_submit}"
    )
    return total
