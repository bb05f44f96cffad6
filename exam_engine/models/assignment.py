# exam_engine/models/assignment.py
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, text
from sqlalchemy.sql import func

from exam_engine.db.base import Base


class ExamSchedule(Base):
    """Half-open window [start_time, end_time) during which an exam may be attempted."""

    __tablename__ = "exam_schedules"

    id = Column(Integer, primary_key=True, index=True)
    exam_id = Column(Integer, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ExamAssignment(Base):
    __tablename__ = "exam_assignments"
    __table_args__ = (
        UniqueConstraint("exam_id", "student_id", "schedule_id", name="uq_assignment_exam_student_schedule"),
        # NULLs are distinct in the constraint above
        Index(
            "uq_assignment_one_always_open",
            "exam_id",
            "student_id",
            unique=True,
            postgresql_where=text("schedule_id IS NULL"),
            sqlite_where=text("schedule_id IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    exam_id = Column(Integer, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # NULL = always open
    schedule_id = Column(Integer, ForeignKey("exam_schedules.id"), nullable=True)
    max_attempts = Column(Integer, nullable=False, default=1)

    assigned_at = Column(DateTime(timezone=True), server_default=func.now())


class ExamAssignmentLog(Base):
    __tablename__ = "exam_assignment_logs"

    id = Column(Integer, primary_key=True, index=True)
    exam_id = Column(Integer, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    schedule_id = Column(Integer, nullable=True)
    max_attempts = Column(Integer, nullable=True)

    # ASSIGNED_REPLACE / ASSIGNED_APPEND / REMOVED
    action = Column(String(30), nullable=False)
    assigned_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
