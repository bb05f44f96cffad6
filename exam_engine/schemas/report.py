# exam_engine/schemas/report.py
from datetime import datetime
from typing import Any, List

from exam_engine.schemas.common import CamelModel


class QuestionResult(CamelModel):
    id: int
    section_id: int
    parent_id: int | None = None
    type: str
    text: Any
    options: Any = None
    correct_answer: Any = None
    explanation: Any = None
    marks: float
    negative_marks: float | None = None
    difficulty: int
    order: int

    student_answer: Any = None
    is_attempted: bool
    is_correct: bool | None = None
    marks_awarded: float
    ai_feedback: Any = None
    time_spent: int = 0
    performance_factor: float


class SectionReport(CamelModel):
    id: int
    name: Any
    order: int
    total_marks: float
    marks_obtained: float
    avg_difficulty: float
    difficulty_label: str
    questions_count: int
    attempted_count: int
    correct_count: int
    performance_factor: float
    questions: List[QuestionResult]


class ResultStats(CamelModel):
    total_questions: int
    attempted: int
    correct: int
    incorrect: int
    unattempted: int


class AttemptReport(CamelModel):
    attempt_id: int
    exam_id: int
    exam_title: Any
    student_id: int
    student_name: str | None = None
    status: str
    started_at: datetime
    submitted_at: datetime | None = None
    auto_submit: bool
    total_score: float
    total_marks: float
    passing_marks: float | None = None
    percentage: int
    passed: bool | None = None
    performance_factor: float
    time_spent_seconds: int
    stats: ResultStats
    sections: List[SectionReport]
