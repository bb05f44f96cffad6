# exam_engine/core/errors.py
"""
Domain errors raised by the services and turned into JSON responses by the
exception handler registered in main.py.
"""

from fastapi import status


class ExamEngineError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "error"

    def __init__(self, message: str | None = None, **extra):
        self.message = message or self.__class__.__name__
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message, **self.extra}


class Unauthorized(ExamEngineError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "unauthorized"


class Forbidden(Unauthorized):
    status_code = status.HTTP_403_FORBIDDEN


class NotAssigned(ExamEngineError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "not_assigned"


class NoAttempt(ExamEngineError):
    code = "no_attempt"


class NotFound(ExamEngineError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class ExamNotActive(ExamEngineError):
    code = "exam_not_active"


class AlreadySubmitted(ExamEngineError):
    code = "already_submitted"


class AttemptClosed(ExamEngineError):
    code = "attempt_closed"


class MaxAttemptsReached(ExamEngineError):
    code = "max_attempts_reached"


class ValidationError(ExamEngineError):
    status_code = 422
    code = "validation_error"


class ScheduleConflict(ExamEngineError):
    status_code = status.HTTP_409_CONFLICT
    code = "schedule_conflict"


# Grading errors stay inside a single grading task.
class GradingError(ExamEngineError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "grading_error"


class ProviderExhausted(GradingError):
    code = "provider_exhausted"


class GradingParseError(GradingError):
    code = "grading_parse_error"
