# exam_engine/models/exam.py
"""
Exam content as the engine sees it: read-only during an attempt.

Text fields (title, instructions, section names, question text, model answers)
are language-keyed JSON maps such as {"en": "...", "pa": "..."}.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from exam_engine.db.base import Base


class QuestionType:
    SINGLE_CHOICE = "single_choice"
    MULTI_CHOICE = "multi_choice"
    FILL_BLANK = "fill_blank"
    NUMERICAL = "numerical"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"
    LONG_ANSWER = "long_answer"
    PARAGRAPH = "paragraph"

    ALL = (
        SINGLE_CHOICE,
        MULTI_CHOICE,
        FILL_BLANK,
        NUMERICAL,
        TRUE_FALSE,
        SHORT_ANSWER,
        LONG_ANSWER,
        PARAGRAPH,
    )
    SUBJECTIVE = (SHORT_ANSWER, LONG_ANSWER)


class Exam(Base):
    __tablename__ = "exams"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(JSON, nullable=False)
    instructions = Column(JSON, nullable=True)

    duration = Column(Integer, nullable=False)  # minutes
    total_marks = Column(Numeric(8, 2), nullable=False)
    passing_marks = Column(Numeric(8, 2), nullable=True)
    negative_marking = Column(Boolean, nullable=False, default=False)

    # appended to the AI grading prompt as additional constraints
    grading_instructions = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    sections = relationship(
        "Section",
        back_populates="exam",
        order_by="Section.order",
        cascade="all, delete-orphan",
    )


class Section(Base):
    __tablename__ = "sections"

    id = Column(Integer, primary_key=True, index=True)
    exam_id = Column(Integer, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(JSON, nullable=False)
    order = Column(Integer, nullable=False, default=0)

    exam = relationship("Exam", back_populates="sections")
    questions = relationship(
        "Question",
        back_populates="section",
        order_by="Question.order",
        cascade="all, delete-orphan",
    )


class Question(Base):
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    section_id = Column(Integer, ForeignKey("sections.id", ondelete="CASCADE"), nullable=False, index=True)
    # sub-questions of a paragraph point at it; the paragraph itself is never graded
    parent_id = Column(Integer, ForeignKey("questions.id"), nullable=True, index=True)

    type = Column(String(20), nullable=False, default=QuestionType.SINGLE_CHOICE)
    text = Column(JSON, nullable=False)
    options = Column(JSON, nullable=True)  # [{"id": "a", "text": {...}}, ...]

    # objective types: list of accepted keys; subjective types: unused
    correct_answer = Column(JSON, nullable=True)
    model_answer = Column(JSON, nullable=True)
    explanation = Column(JSON, nullable=True)

    marks = Column(Numeric(8, 2), nullable=False, default=1)
    negative_marks = Column(Numeric(8, 2), nullable=True)
    difficulty = Column(Integer, nullable=False, default=1)  # 1-5
    order = Column(Integer, nullable=False, default=0)

    section = relationship("Section", back_populates="questions")

    @property
    def is_gradable(self) -> bool:
        return self.type != QuestionType.PARAGRAPH

    @property
    def is_subjective(self) -> bool:
        if self.type in QuestionType.SUBJECTIVE:
            return True
        # a fill-blank without an answer key is free text
        return self.type == QuestionType.FILL_BLANK and not self.correct_answer
