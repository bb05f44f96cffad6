# exam_engine/services/assignment_service.py
"""
Exam assignment batches.

The whole batch is validated before anything is written: one schedule
conflict rejects every student in it.
"""

import logging
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from exam_engine.core.errors import NotFound, ScheduleConflict, ValidationError
from exam_engine.models.assignment import ExamAssignment, ExamAssignmentLog, ExamSchedule
from exam_engine.models.user import User, UserRole
from exam_engine.schemas.assignment import AssignmentLogPublic, AssignmentPublic, AssignRequest
from exam_engine.services.attempt_service import get_exam
from exam_engine.services.schedule_validator import Window, find_conflict

logger = logging.getLogger(__name__)


def _unique(ids: List[int]) -> List[int]:
    return list(dict.fromkeys(ids))


async def _load_students(db: AsyncSession, student_ids: List[int]) -> dict[int, User]:
    result = await db.execute(
        select(User).where(User.id.in_(student_ids), User.role == UserRole.STUDENT)
    )
    students = {u.id: u for u in result.scalars().all()}
    missing = [i for i in student_ids if i not in students]
    if missing:
        raise ValidationError(f"Unknown student ids: {missing}")
    return students


async def _candidate_window(
    db: AsyncSession,
    exam_id: int,
    obj_in: AssignRequest,
) -> tuple[Optional[Window], Optional[int]]:
    """(window, existing schedule id); (None, None) means always open."""
    if obj_in.schedule == "none":
        return None, None

    if obj_in.schedule == "existing":
        if obj_in.schedule_id is None:
            raise ValidationError("scheduleId is required for an existing schedule")
        schedule = await db.get(ExamSchedule, obj_in.schedule_id)
        if schedule is None or schedule.exam_id != exam_id:
            raise NotFound(f"schedule {obj_in.schedule_id} not found for this exam")
        return Window(schedule.start_time, schedule.end_time), schedule.id

    if obj_in.start_time is None or obj_in.end_time is None:
        raise ValidationError("startTime and endTime are required for a new schedule")
    if obj_in.start_time >= obj_in.end_time:
        raise ValidationError("startTime must be before endTime")
    return Window(obj_in.start_time, obj_in.end_time), None


async def _existing_assignments(
    db: AsyncSession,
    exam_id: int,
    student_ids: List[int],
) -> List[tuple[ExamAssignment, Optional[ExamSchedule]]]:
    result = await db.execute(
        select(ExamAssignment, ExamSchedule)
        .outerjoin(ExamSchedule, ExamAssignment.schedule_id == ExamSchedule.id)
        .where(
            ExamAssignment.exam_id == exam_id,
            ExamAssignment.student_id.in_(student_ids),
        )
    )
    return [(a, s) for a, s in result.all()]


def _conflict_error(student: User, window: Optional[Window]) -> ScheduleConflict:
    extra = {"studentId": student.id, "studentName": student.name}
    if window is None:
        extra["alwaysOpen"] = True
    else:
        extra["startTime"] = window.start.isoformat()
        extra["endTime"] = window.end.isoformat()
    return ScheduleConflict(
        f"Student {student.name} already has an overlapping assignment for this exam",
        **extra,
    )


async def assign_students(
    db: AsyncSession,
    *,
    admin: User,
    exam_id: int,
    obj_in: AssignRequest,
) -> tuple[int, Optional[int]]:
    """Returns (assigned count, schedule id)."""
    await get_exam(db, exam_id)
    student_ids = _unique(obj_in.student_ids)
    students = await _load_students(db, student_ids)
    window, schedule_id = await _candidate_window(db, exam_id, obj_in)

    existing = await _existing_assignments(db, exam_id, student_ids)

    # replace wipes every assignment of the exam, so nothing is left to collide with
    if obj_in.mode == "append":
        if not obj_in.check_conflicts and obj_in.schedule == "new":
            raise ValidationError("checkConflicts can only be disabled when updating existing assignments")

        # the opt-out covers students who already hold this exact slot
        holds_slot = {a.student_id for a, _ in existing if a.schedule_id == schedule_id}

        for student_id in student_ids:
            if not obj_in.check_conflicts and student_id in holds_slot:
                continue
            windows = [
                Window(s.start_time, s.end_time) if s is not None else None
                for a, s in existing
                if a.student_id == student_id
                and not (schedule_id is not None and a.schedule_id == schedule_id)
                and not (window is None and a.schedule_id is None)
            ]
            conflict, other = find_conflict(window, windows)
            if conflict:
                logger.info(
                    f"Schedule conflict assigning exam {exam_id} to student {student_id}"
                )
                raise _conflict_error(students[student_id], other)

    if obj_in.schedule == "new":
        schedule = ExamSchedule(exam_id=exam_id, start_time=window.start, end_time=window.end)
        db.add(schedule)
        await db.flush()
        schedule_id = schedule.id

    if obj_in.mode == "replace":
        await db.execute(delete(ExamAssignment).where(ExamAssignment.exam_id == exam_id))
        existing = []

    same_slot = {a.student_id: a for a, _ in existing if a.schedule_id == schedule_id}
    action = "ASSIGNED_REPLACE" if obj_in.mode == "replace" else "ASSIGNED_APPEND"

    for student_id in student_ids:
        assignment = same_slot.get(student_id)
        if assignment is not None:
            assignment.max_attempts = obj_in.max_attempts
        else:
            db.add(
                ExamAssignment(
                    exam_id=exam_id,
                    student_id=student_id,
                    schedule_id=schedule_id,
                    max_attempts=obj_in.max_attempts,
                )
            )
        db.add(
            ExamAssignmentLog(
                exam_id=exam_id,
                student_id=student_id,
                schedule_id=schedule_id,
                max_attempts=obj_in.max_attempts,
                action=action,
                assigned_by=admin.id,
            )
        )

    await db.commit()
    logger.info(
        f"Assigned exam {exam_id} to {len(student_ids)} students "
        f"(mode={obj_in.mode}, schedule={schedule_id})"
    )
    return len(student_ids), schedule_id


async def remove_student(
    db: AsyncSession,
    *,
    admin: User,
    exam_id: int,
    student_id: int,
) -> int:
    result = await db.execute(
        delete(ExamAssignment).where(
            ExamAssignment.exam_id == exam_id,
            ExamAssignment.student_id == student_id,
        )
    )
    if result.rowcount == 0:
        raise NotFound(f"student {student_id} is not assigned to exam {exam_id}")

    db.add(
        ExamAssignmentLog(
            exam_id=exam_id,
            student_id=student_id,
            action="REMOVED",
            assigned_by=admin.id,
        )
    )
    await db.commit()
    return result.rowcount


async def list_assignments(db: AsyncSession, exam_id: int) -> List[AssignmentPublic]:
    result = await db.execute(
        select(ExamAssignment, User, ExamSchedule)
        .join(User, ExamAssignment.student_id == User.id)
        .outerjoin(ExamSchedule, ExamAssignment.schedule_id == ExamSchedule.id)
        .where(ExamAssignment.exam_id == exam_id)
        .order_by(User.roll_number, User.id)
    )
    return [
        AssignmentPublic(
            id=a.id,
            student_id=a.student_id,
            student_name=u.name,
            roll_number=u.roll_number,
            schedule_id=a.schedule_id,
            max_attempts=a.max_attempts,
            assigned_at=a.assigned_at,
            start_time=s.start_time if s else None,
            end_time=s.end_time if s else None,
        )
        for a, u, s in result.all()
    ]


async def list_assignment_history(db: AsyncSession, exam_id: int) -> List[AssignmentLogPublic]:
    result = await db.execute(
        select(ExamAssignmentLog)
        .where(ExamAssignmentLog.exam_id == exam_id)
        .order_by(ExamAssignmentLog.created_at.desc(), ExamAssignmentLog.id.desc())
    )
    return [AssignmentLogPublic.model_validate(log) for log in result.scalars().all()]
