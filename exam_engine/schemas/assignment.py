# exam_engine/schemas/assignment.py
from datetime import datetime
from typing import List, Literal

from pydantic import Field

from exam_engine.schemas.common import CamelModel


class AssignRequest(CamelModel):
    student_ids: List[int] = Field(min_length=1)
    mode: Literal["replace", "append"] = "append"
    schedule: Literal["none", "existing", "new"] = "none"
    schedule_id: int | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    max_attempts: int = Field(default=1, ge=1)
    # off when only max_attempts changes on existing assignments
    check_conflicts: bool = True


class AssignResult(CamelModel):
    count: int
    schedule_id: int | None = None


class AssignmentPublic(CamelModel):
    id: int
    student_id: int
    student_name: str | None = None
    roll_number: str | None = None
    schedule_id: int | None = None
    max_attempts: int
    assigned_at: datetime | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None


class AssignmentLogPublic(CamelModel):
    id: int
    student_id: int
    schedule_id: int | None = None
    max_attempts: int | None = None
    action: str
    assigned_by: int | None = None
    created_at: datetime | None = None
