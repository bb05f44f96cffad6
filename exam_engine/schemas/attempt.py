# exam_engine/schemas/attempt.py
from datetime import datetime
from typing import Any, Dict, List

from exam_engine.schemas.common import CamelModel


class AttemptStart(CamelModel):
    attempt_id: int
    started_at: datetime
    resumed: bool


class ExamInfo(CamelModel):
    id: int
    title: Any
    instructions: Any = None
    duration: int
    total_marks: float
    negative_marking: bool


class SectionInfo(CamelModel):
    id: int
    name: Any
    order: int


class QuestionForAttempt(CamelModel):
    """Question as shown to a student: no answer key, no model answer."""
    id: int
    section_id: int
    parent_id: int | None = None
    type: str
    text: Any
    options: Any = None
    marks: float
    negative_marks: float | None = None
    order: int


class SavedResponse(CamelModel):
    answer: Any = None
    marked_for_review: bool = False


class AttemptData(CamelModel):
    attempt_id: int
    exam: ExamInfo
    sections: List[SectionInfo]
    questions: List[QuestionForAttempt]
    responses: Dict[int, SavedResponse]
    remaining_seconds: int
    current_question_id: int | None = None


class SubmitRequest(CamelModel):
    auto_submit: bool = False


class SubmitResult(CamelModel):
    total_score: float


class SessionClaim(CamelModel):
    client_token: str | None = None
    force_login: bool = False


class SessionClaimResult(CamelModel):
    ok: bool = True
    session_token: str | None = None
    is_new_session: bool = False
    active_on_other_device: bool = False
    took_over_session: bool = False
    no_active_attempt: bool = False
