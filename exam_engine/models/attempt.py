# exam_engine/models/attempt.py
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.sql import func

from exam_engine.db.base import Base


class AttemptStatus:
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"


class ExamAttempt(Base):
    __tablename__ = "exam_attempts"
    __table_args__ = (
        # at most one in-progress attempt per (student, exam)
        Index(
            "uq_attempt_one_in_progress",
            "student_id",
            "exam_id",
            unique=True,
            postgresql_where=text("status = 'in_progress'"),
            sqlite_where=text("status = 'in_progress'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    exam_id = Column(Integer, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # 状态：in_progress / submitted
    status = Column(String(20), nullable=False, default=AttemptStatus.IN_PROGRESS, index=True)
    started_at = Column(DateTime(timezone=True), nullable=False)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    auto_submit = Column(Boolean, nullable=False, default=False)

    # authoritative only once status = submitted
    total_score = Column(Numeric(8, 2), nullable=True)

    # resume cursor, best-effort
    current_question_id = Column(Integer, nullable=True)

    # claim of the device currently taking the attempt
    session_token = Column(String(64), nullable=True)


class QuestionResponse(Base):
    __tablename__ = "question_responses"
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_response_attempt_question"),
    )

    id = Column(Integer, primary_key=True, index=True)
    attempt_id = Column(Integer, ForeignKey("exam_attempts.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False, index=True)

    # option id(s), free text or a number; NULL when visited but unanswered
    answer = Column(JSON(none_as_null=True), nullable=True)
    marked_for_review = Column(Boolean, nullable=False, default=False)
    time_spent = Column(Integer, nullable=False, default=0)  # seconds, accumulated

    # set at submit time
    is_correct = Column(Boolean, nullable=True)
    marks_awarded = Column(Numeric(8, 2), nullable=True)
    ai_feedback = Column(JSON(none_as_null=True), nullable=True)

    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
