# exam_engine/api/v1/endpoints/admin.py
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from exam_engine.core.security import get_current_admin
from exam_engine.db.session import get_db
from exam_engine.models.user import User
from exam_engine.schemas.assignment import (
    AssignmentLogPublic,
    AssignmentPublic,
    AssignRequest,
    AssignResult,
)
from exam_engine.schemas.report import AttemptReport
from exam_engine.services import assignment_service, report_service

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/exams/{exam_id}/assign", response_model=AssignResult)
async def assign_exam(
    exam_id: int,
    obj_in: AssignRequest,
    db: AsyncSession = Depends(get_db),
    current_admin: User = Depends(get_current_admin),
):
    """
    Assign an exam to a batch of students. Any schedule conflict rejects
    the whole batch with 409.
    """
    count, schedule_id = await assignment_service.assign_students(
        db, admin=current_admin, exam_id=exam_id, obj_in=obj_in
    )
    return AssignResult(count=count, schedule_id=schedule_id)


@router.get("/exams/{exam_id}/assignments", response_model=List[AssignmentPublic])
async def list_assignments(
    exam_id: int,
    db: AsyncSession = Depends(get_db),
    current_admin: User = Depends(get_current_admin),
):
    return await assignment_service.list_assignments(db, exam_id)


@router.get("/exams/{exam_id}/assignments/history", response_model=List[AssignmentLogPublic])
async def assignment_history(
    exam_id: int,
    db: AsyncSession = Depends(get_db),
    current_admin: User = Depends(get_current_admin),
):
    return await assignment_service.list_assignment_history(db, exam_id)


@router.delete("/exams/{exam_id}/assignments/{student_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_assignment(
    exam_id: int,
    student_id: int,
    db: AsyncSession = Depends(get_db),
    current_admin: User = Depends(get_current_admin),
):
    await assignment_service.remove_student(
        db, admin=current_admin, exam_id=exam_id, student_id=student_id
    )
    return None


@router.get("/reports/attempts/{attempt_id}", response_model=AttemptReport)
async def attempt_report(
    attempt_id: int,
    db: AsyncSession = Depends(get_db),
    current_admin: User = Depends(get_current_admin),
):
    return await report_service.get_attempt_report(db, attempt_id)
