"""
Shared fixtures: an in-memory SQLite database per test, users, a seeded
exam and a scripted grading provider.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from exam_engine.core.errors import ProviderExhausted
from exam_engine.db.base import Base
import exam_engine.models  # noqa
from exam_engine.models.assignment import ExamAssignment, ExamSchedule
from exam_engine.models.exam import Exam, Question, QuestionType, Section
from exam_engine.models.user import User

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

GRADED_REPLY = '{"score": 7.5, "feedback": "Covers the main idea.", "improvements": "Give an example."}'


@pytest.fixture
async def engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory):
    """Create a test database session."""
    async with session_factory() as db:
        yield db


async def _make_user(db: AsyncSession, email: str, name: str, role: str, roll_number=None) -> User:
    user = User(
        email=email,
        # Pre-hashed password to avoid running bcrypt in tests
        password_hash="$2b$12$hashed_password_001",
        name=name,
        role=role,
        roll_number=roll_number,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest.fixture
async def admin(db_session):
    return await _make_user(db_session, "admin@test.com", "Test Admin", "admin")


@pytest.fixture
async def student(db_session):
    return await _make_user(db_session, "student@test.com", "Test Student", "student", "R-001")


@pytest.fixture
async def other_student(db_session):
    return await _make_user(db_session, "other@test.com", "Other Student", "student", "R-002")


@dataclass
class SeededExam:
    exam: Exam
    objective: List[Question]
    subjective: List[Question]
    paragraph: Question


@pytest.fixture
async def seeded_exam(db_session) -> SeededExam:
    """
    Section A: five single-choice questions worth 10 marks; the third one
    carries a 1 mark penalty.
    Section B: a paragraph stem with a short and a long answer question,
    10 marks each.
    """
    exam = Exam(
        title={"en": "Physics Midterm", "pa": "ਭੌਤਿਕ ਵਿਗਿਆਨ"},
        instructions={"en": "Answer all questions."},
        duration=60,
        total_marks=Decimal("70"),
        passing_marks=Decimal("28"),
        negative_marking=True,
        grading_instructions="Ignore spelling mistakes.",
    )
    db_session.add(exam)
    await db_session.flush()

    section_a = Section(exam_id=exam.id, name={"en": "Objective"}, order=1)
    section_b = Section(exam_id=exam.id, name={"en": "Subjective"}, order=2)
    db_session.add_all([section_a, section_b])
    await db_session.flush()

    keys = [["a"], ["b"], ["c"], ["d"], ["a"]]
    objective = []
    for i, key in enumerate(keys, start=1):
        q = Question(
            section_id=section_a.id,
            type=QuestionType.SINGLE_CHOICE,
            text={"en": f"Objective question {i}"},
            options=[{"id": o, "text": {"en": o.upper()}} for o in "abcd"],
            correct_answer=key,
            marks=Decimal("10"),
            negative_marks=Decimal("1") if i == 3 else None,
            difficulty=2,
            order=i,
        )
        objective.append(q)
    db_session.add_all(objective)

    paragraph = Question(
        section_id=section_b.id,
        type=QuestionType.PARAGRAPH,
        text={"en": "Read the passage about energy conservation."},
        marks=Decimal("0"),
        order=1,
    )
    db_session.add(paragraph)
    await db_session.flush()

    short = Question(
        section_id=section_b.id,
        parent_id=paragraph.id,
        type=QuestionType.SHORT_ANSWER,
        text={"en": "State the law of conservation of energy."},
        model_answer={"en": "Energy can neither be created nor destroyed."},
        marks=Decimal("10"),
        difficulty=3,
        order=2,
    )
    long = Question(
        section_id=section_b.id,
        parent_id=paragraph.id,
        type=QuestionType.LONG_ANSWER,
        text={"en": "Explain how a pendulum exchanges energy."},
        explanation={"en": "Potential energy turns into kinetic energy and back."},
        marks=Decimal("10"),
        difficulty=4,
        order=3,
    )
    db_session.add_all([short, long])
    await db_session.commit()

    return SeededExam(exam=exam, objective=objective, subjective=[short, long], paragraph=paragraph)


@pytest.fixture
async def assignment(db_session, seeded_exam, student) -> ExamAssignment:
    """Always-open assignment, one attempt."""
    row = ExamAssignment(exam_id=seeded_exam.exam.id, student_id=student.id, max_attempts=1)
    db_session.add(row)
    await db_session.commit()
    return row


async def add_schedule(db: AsyncSession, exam_id: int, start: datetime, end: datetime) -> ExamSchedule:
    schedule = ExamSchedule(exam_id=exam_id, start_time=start, end_time=end)
    db.add(schedule)
    await db.commit()
    return schedule


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@dataclass
class FakeProvider:
    """Stands in for an AI provider: replies with `reply`, or raises when
    the prompt contains `fail_on`."""

    reply: str = GRADED_REPLY
    fail_on: Optional[str] = None
    prompts: List[str] = field(default_factory=list)

    async def grade(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.fail_on and self.fail_on in prompt:
            raise ProviderExhausted("all keys exhausted")
        return self.reply


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()
