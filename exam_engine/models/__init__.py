# Import every model so Base.metadata knows all tables
from exam_engine.models.user import User, UserRole  # noqa
from exam_engine.models.exam import Exam, Section, Question, QuestionType  # noqa
from exam_engine.models.assignment import ExamSchedule, ExamAssignment, ExamAssignmentLog  # noqa
from exam_engine.models.attempt import ExamAttempt, QuestionResponse, AttemptStatus  # noqa
