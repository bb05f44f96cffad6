# exam_engine/schemas/grading.py
from pydantic import BaseModel


class GradingResult(BaseModel):
    """AI verdict for one subjective response; stored as ai_feedback."""
    score: float
    feedback: str
    improvements: str | None = None
