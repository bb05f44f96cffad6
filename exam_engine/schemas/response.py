# exam_engine/schemas/response.py
from typing import Any, List

from pydantic import Field

from exam_engine.schemas.common import CamelModel


class ResponseSave(CamelModel):
    """One save event from the exam client."""
    question_id: int
    answer: Any = None
    marked_for_review: bool = False
    # seconds spent since the previous save, never a running total
    time_spent_delta: int = Field(default=0, ge=0)


class ResponseSaveOne(ResponseSave):
    current_question_id: int | None = None


class ResponseSaveBatch(CamelModel):
    responses: List[ResponseSave]
    current_question_id: int | None = None


class SaveOk(CamelModel):
    ok: bool = True


class SaveItemResult(CamelModel):
    question_id: int
    ok: bool
    error: str | None = None


class SaveBatchResult(CamelModel):
    ok: bool = True
    saved: int
    results: List[SaveItemResult]
