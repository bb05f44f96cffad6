import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from exam_engine.core.errors import NotFound, ScheduleConflict, ValidationError
from exam_engine.models.assignment import ExamAssignment, ExamSchedule
from exam_engine.schemas.assignment import AssignRequest
from exam_engine.services import assignment_service
from tests.conftest import utc


async def _count(db, model, **filters):
    stmt = select(func.count(model.id))
    for name, value in filters.items():
        stmt = stmt.where(getattr(model, name) == value)
    return await db.scalar(stmt)


def _window_request(student_ids, start, end, **kwargs):
    return AssignRequest(
        student_ids=student_ids,
        schedule="new",
        start_time=start,
        end_time=end,
        **kwargs,
    )


class TestAssignStudents:

    async def test_always_open(self, db_session, seeded_exam, admin, student, other_student):
        count, schedule_id = await assignment_service.assign_students(
            db_session,
            admin=admin,
            exam_id=seeded_exam.exam.id,
            obj_in=AssignRequest(student_ids=[student.id, other_student.id, student.id]),
        )

        assert count == 2
        assert schedule_id is None
        rows = await assignment_service.list_assignments(db_session, seeded_exam.exam.id)
        assert [r.roll_number for r in rows] == ["R-001", "R-002"]
        assert all(r.start_time is None for r in rows)

    async def test_new_window(self, db_session, seeded_exam, admin, student):
        count, schedule_id = await assignment_service.assign_students(
            db_session,
            admin=admin,
            exam_id=seeded_exam.exam.id,
            obj_in=_window_request([student.id], utc(2026, 6, 1, 9), utc(2026, 6, 1, 12), max_attempts=3),
        )

        assert count == 1
        assert schedule_id is not None
        rows = await assignment_service.list_assignments(db_session, seeded_exam.exam.id)
        assert rows[0].schedule_id == schedule_id
        assert rows[0].max_attempts == 3

    async def test_conflict_rejects_whole_batch(self, db_session, seeded_exam, admin, student, other_student):
        exam_id = seeded_exam.exam.id
        await assignment_service.assign_students(
            db_session,
            admin=admin,
            exam_id=exam_id,
            obj_in=_window_request([student.id], utc(2026, 6, 1, 9), utc(2026, 6, 1, 12)),
        )
        before = await _count(db_session, ExamAssignment, exam_id=exam_id)
        schedules_before = await _count(db_session, ExamSchedule, exam_id=exam_id)

        with pytest.raises(ScheduleConflict) as exc_info:
            await assignment_service.assign_students(
                db_session,
                admin=admin,
                exam_id=exam_id,
                obj_in=_window_request(
                    [other_student.id, student.id], utc(2026, 6, 1, 11), utc(2026, 6, 1, 13)
                ),
            )

        error = exc_info.value
        assert error.status_code == 409
        assert error.extra["studentId"] == student.id
        assert error.extra["studentName"] == "Test Student"
        assert error.extra["startTime"].startswith("2026-06-01T09:00:00")
        assert await _count(db_session, ExamAssignment, exam_id=exam_id) == before
        assert await _count(db_session, ExamSchedule, exam_id=exam_id) == schedules_before

    async def test_touching_windows_allowed(self, db_session, seeded_exam, admin, student):
        exam_id = seeded_exam.exam.id
        await assignment_service.assign_students(
            db_session,
            admin=admin,
            exam_id=exam_id,
            obj_in=_window_request([student.id], utc(2026, 6, 1, 9), utc(2026, 6, 1, 12)),
        )
        await assignment_service.assign_students(
            db_session,
            admin=admin,
            exam_id=exam_id,
            obj_in=_window_request([student.id], utc(2026, 6, 1, 12), utc(2026, 6, 1, 14)),
        )

        assert await _count(db_session, ExamAssignment, student_id=student.id) == 2

    async def test_always_open_blocks_windows(self, db_session, seeded_exam, admin, student):
        exam_id = seeded_exam.exam.id
        await assignment_service.assign_students(
            db_session, admin=admin, exam_id=exam_id, obj_in=AssignRequest(student_ids=[student.id])
        )

        with pytest.raises(ScheduleConflict) as exc_info:
            await assignment_service.assign_students(
                db_session,
                admin=admin,
                exam_id=exam_id,
                obj_in=_window_request([student.id], utc(2026, 6, 1, 9), utc(2026, 6, 1, 12)),
            )
        assert exc_info.value.extra["alwaysOpen"] is True

    async def test_skipping_check_cannot_add_new_window(self, db_session, seeded_exam, admin, student):
        exam_id = seeded_exam.exam.id
        await assignment_service.assign_students(
            db_session,
            admin=admin,
            exam_id=exam_id,
            obj_in=_window_request([student.id], utc(2026, 6, 1, 10), utc(2026, 6, 1, 11)),
        )

        with pytest.raises(ValidationError):
            await assignment_service.assign_students(
                db_session,
                admin=admin,
                exam_id=exam_id,
                obj_in=_window_request(
                    [student.id], utc(2026, 6, 1, 10, 30), utc(2026, 6, 1, 10, 45), check_conflicts=False
                ),
            )

        rows = await assignment_service.list_assignments(db_session, exam_id)
        assert len(rows) == 1
        assert await _count(db_session, ExamSchedule, exam_id=exam_id) == 1

    async def test_skipping_check_still_guards_other_schedule(
        self, db_session, seeded_exam, admin, student, other_student
    ):
        exam_id = seeded_exam.exam.id
        await assignment_service.assign_students(
            db_session,
            admin=admin,
            exam_id=exam_id,
            obj_in=_window_request([student.id], utc(2026, 6, 1, 9), utc(2026, 6, 1, 12)),
        )
        _, other_schedule = await assignment_service.assign_students(
            db_session,
            admin=admin,
            exam_id=exam_id,
            obj_in=_window_request([other_student.id], utc(2026, 6, 1, 10), utc(2026, 6, 1, 11)),
        )

        # student does not hold other_schedule yet, so this would add an overlapping window
        with pytest.raises(ScheduleConflict):
            await assignment_service.assign_students(
                db_session,
                admin=admin,
                exam_id=exam_id,
                obj_in=AssignRequest(
                    student_ids=[student.id],
                    schedule="existing",
                    schedule_id=other_schedule,
                    check_conflicts=False,
                ),
            )
        assert await _count(db_session, ExamAssignment, student_id=student.id) == 1

    async def test_skipping_check_updates_max_attempts(self, db_session, seeded_exam, admin, student):
        exam_id = seeded_exam.exam.id
        _, schedule_id = await assignment_service.assign_students(
            db_session,
            admin=admin,
            exam_id=exam_id,
            obj_in=_window_request([student.id], utc(2026, 6, 1, 9), utc(2026, 6, 1, 12)),
        )
        await assignment_service.assign_students(
            db_session,
            admin=admin,
            exam_id=exam_id,
            obj_in=AssignRequest(
                student_ids=[student.id],
                schedule="existing",
                schedule_id=schedule_id,
                max_attempts=3,
                check_conflicts=False,
            ),
        )

        rows = await assignment_service.list_assignments(db_session, exam_id)
        assert len(rows) == 1
        assert rows[0].max_attempts == 3

    async def test_same_schedule_updates_max_attempts(self, db_session, seeded_exam, admin, student):
        exam_id = seeded_exam.exam.id
        _, schedule_id = await assignment_service.assign_students(
            db_session,
            admin=admin,
            exam_id=exam_id,
            obj_in=_window_request([student.id], utc(2026, 6, 1, 9), utc(2026, 6, 1, 12)),
        )
        await assignment_service.assign_students(
            db_session,
            admin=admin,
            exam_id=exam_id,
            obj_in=AssignRequest(
                student_ids=[student.id], schedule="existing", schedule_id=schedule_id, max_attempts=2
            ),
        )

        rows = await assignment_service.list_assignments(db_session, exam_id)
        assert len(rows) == 1
        assert rows[0].max_attempts == 2

    async def test_one_always_open_row_per_student(self, db_session, seeded_exam, admin, student):
        exam_id = seeded_exam.exam.id
        await assignment_service.assign_students(
            db_session, admin=admin, exam_id=exam_id, obj_in=AssignRequest(student_ids=[student.id])
        )

        db_session.add(ExamAssignment(exam_id=exam_id, student_id=student.id, schedule_id=None))
        with pytest.raises(IntegrityError):
            await db_session.commit()
        await db_session.rollback()

        assert await _count(db_session, ExamAssignment, student_id=student.id) == 1

    async def test_replace_mode(self, db_session, seeded_exam, admin, student, other_student):
        exam_id = seeded_exam.exam.id
        await assignment_service.assign_students(
            db_session,
            admin=admin,
            exam_id=exam_id,
            obj_in=_window_request([student.id], utc(2026, 6, 1, 9), utc(2026, 6, 1, 12)),
        )
        await assignment_service.assign_students(
            db_session,
            admin=admin,
            exam_id=exam_id,
            obj_in=_window_request(
                [other_student.id, student.id], utc(2026, 6, 1, 10), utc(2026, 6, 1, 11), mode="replace"
            ),
        )

        rows = await assignment_service.list_assignments(db_session, exam_id)
        assert sorted(r.student_id for r in rows) == sorted([student.id, other_student.id])
        assert len({r.schedule_id for r in rows}) == 1

    async def test_unknown_student(self, db_session, seeded_exam, admin, student):
        with pytest.raises(ValidationError):
            await assignment_service.assign_students(
                db_session,
                admin=admin,
                exam_id=seeded_exam.exam.id,
                obj_in=AssignRequest(student_ids=[student.id, 9999]),
            )
        assert await _count(db_session, ExamAssignment) == 0

    async def test_admin_is_not_a_student(self, db_session, seeded_exam, admin):
        with pytest.raises(ValidationError):
            await assignment_service.assign_students(
                db_session,
                admin=admin,
                exam_id=seeded_exam.exam.id,
                obj_in=AssignRequest(student_ids=[admin.id]),
            )

    async def test_bad_window(self, db_session, seeded_exam, admin, student):
        with pytest.raises(ValidationError):
            await assignment_service.assign_students(
                db_session,
                admin=admin,
                exam_id=seeded_exam.exam.id,
                obj_in=_window_request([student.id], utc(2026, 6, 1, 12), utc(2026, 6, 1, 9)),
            )

    async def test_missing_schedule(self, db_session, seeded_exam, admin, student):
        with pytest.raises(NotFound):
            await assignment_service.assign_students(
                db_session,
                admin=admin,
                exam_id=seeded_exam.exam.id,
                obj_in=AssignRequest(student_ids=[student.id], schedule="existing", schedule_id=777),
            )


class TestRemoveAndHistory:

    async def test_history_records_every_change(self, db_session, seeded_exam, admin, student):
        exam_id = seeded_exam.exam.id
        await assignment_service.assign_students(
            db_session, admin=admin, exam_id=exam_id, obj_in=AssignRequest(student_ids=[student.id])
        )
        await assignment_service.assign_students(
            db_session,
            admin=admin,
            exam_id=exam_id,
            obj_in=AssignRequest(student_ids=[student.id], mode="replace"),
        )
        await assignment_service.remove_student(
            db_session, admin=admin, exam_id=exam_id, student_id=student.id
        )

        history = await assignment_service.list_assignment_history(db_session, exam_id)
        assert sorted(h.action for h in history) == ["ASSIGNED_APPEND", "ASSIGNED_REPLACE", "REMOVED"]
        assert all(h.assigned_by == admin.id for h in history)
        assert await _count(db_session, ExamAssignment, exam_id=exam_id) == 0

    async def test_remove_unassigned(self, db_session, seeded_exam, admin, student):
        with pytest.raises(NotFound):
            await assignment_service.remove_student(
                db_session, admin=admin, exam_id=seeded_exam.exam.id, student_id=student.id
            )
