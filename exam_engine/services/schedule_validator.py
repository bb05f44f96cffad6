# exam_engine/services/schedule_validator.py
"""
Overlap rules for a student's assignment windows on one exam.

A window is a half-open [start, end) interval; `None` stands for an
always-open assignment, which conflicts with every other assignment.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional


@dataclass(frozen=True)
class Window:
    start: datetime
    end: datetime


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def windows_overlap(a: Optional[Window], b: Optional[Window]) -> bool:
    if a is None or b is None:
        return True
    return as_utc(a.start) < as_utc(b.end) and as_utc(a.end) > as_utc(b.start)


def find_conflict(
    candidate: Optional[Window],
    existing: Iterable[Optional[Window]],
) -> tuple[bool, Optional[Window]]:
    """
    Returns (True, window) for the first existing window the candidate
    collides with, (False, None) otherwise. The window is None when the
    collision is with an always-open assignment.
    """
    for window in existing:
        if windows_overlap(candidate, window):
            return True, window
    return False, None


def is_open_at(window: Optional[Window], moment: datetime) -> bool:
    if window is None:
        return True
    moment = as_utc(moment)
    return as_utc(window.start) <= moment < as_utc(window.end)
