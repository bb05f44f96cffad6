# exam_engine/api/v1/endpoints/student.py
from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from exam_engine.core.security import get_current_student
from exam_engine.db.session import get_db
from exam_engine.models.user import User
from exam_engine.schemas.attempt import (
    AttemptData,
    AttemptStart,
    SessionClaim,
    SessionClaimResult,
    SubmitRequest,
    SubmitResult,
)
from exam_engine.schemas.report import AttemptReport
from exam_engine.schemas.response import (
    ResponseSaveBatch,
    ResponseSaveOne,
    SaveBatchResult,
    SaveOk,
)
from exam_engine.services import answer_service, attempt_service, report_service
from exam_engine.services.ai_client import GradingProvider, get_default_provider

router = APIRouter(prefix="/student", tags=["student"])


@router.post("/exams/{exam_id}/start", response_model=AttemptStart)
async def start_or_resume(
    exam_id: int,
    db: AsyncSession = Depends(get_db),
    current_student: User = Depends(get_current_student),
):
    attempt, resumed = await attempt_service.start_attempt(
        db, student=current_student, exam_id=exam_id
    )
    return AttemptStart(attempt_id=attempt.id, started_at=attempt.started_at, resumed=resumed)


@router.post("/exams/{exam_id}/session", response_model=SessionClaimResult)
async def claim_session(
    exam_id: int,
    obj_in: SessionClaim | None = Body(default=None),
    db: AsyncSession = Depends(get_db),
    current_student: User = Depends(get_current_student),
):
    """
    Bind the running attempt to one device. Send forceLogin to take it over.
    """
    obj_in = obj_in or SessionClaim()
    return await attempt_service.claim_session(
        db,
        student=current_student,
        exam_id=exam_id,
        client_token=obj_in.client_token,
        force=obj_in.force_login,
    )


@router.get("/exams/{exam_id}/attempt", response_model=AttemptData)
async def get_attempt_data(
    exam_id: int,
    db: AsyncSession = Depends(get_db),
    current_student: User = Depends(get_current_student),
):
    """
    Exam content, saved responses and remaining time for the running attempt.
    """
    return await attempt_service.get_attempt_data(db, student=current_student, exam_id=exam_id)


@router.post("/attempts/{attempt_id}/responses", response_model=SaveOk)
async def save_one(
    attempt_id: int,
    obj_in: ResponseSaveOne,
    db: AsyncSession = Depends(get_db),
    current_student: User = Depends(get_current_student),
):
    await answer_service.upsert_one(
        db,
        student=current_student,
        attempt_id=attempt_id,
        item=obj_in,
        current_question_id=obj_in.current_question_id,
    )
    return SaveOk()


@router.put("/attempts/{attempt_id}/responses", response_model=SaveBatchResult)
async def save_batch(
    attempt_id: int,
    obj_in: ResponseSaveBatch,
    db: AsyncSession = Depends(get_db),
    current_student: User = Depends(get_current_student),
):
    results = await answer_service.upsert_batch(
        db,
        student=current_student,
        attempt_id=attempt_id,
        items=obj_in.responses,
        current_question_id=obj_in.current_question_id,
    )
    return SaveBatchResult(saved=sum(1 for r in results if r.ok), results=results)


@router.post("/attempts/{attempt_id}/submit", response_model=SubmitResult)
async def submit(
    attempt_id: int,
    obj_in: SubmitRequest | None = Body(default=None),
    db: AsyncSession = Depends(get_db),
    current_student: User = Depends(get_current_student),
    provider: GradingProvider = Depends(get_default_provider),
):
    """
    Score and close the attempt. Does not return until AI grading settles.
    """
    total = await attempt_service.submit_attempt(
        db,
        student=current_student,
        attempt_id=attempt_id,
        provider=provider,
        auto_submit=bool(obj_in and obj_in.auto_submit),
    )
    return SubmitResult(total_score=float(total))


@router.get("/exams/{exam_id}/result", response_model=AttemptReport)
async def get_result(
    exam_id: int,
    db: AsyncSession = Depends(get_db),
    current_student: User = Depends(get_current_student),
):
    return await report_service.get_student_result(db, student=current_student, exam_id=exam_id)
