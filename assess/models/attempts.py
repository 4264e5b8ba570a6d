"""Attempt-related Pydantic models."""
from datetime import datetime

from pydantic import BaseModel, Field


class AssessmentSummary(BaseModel):
    """Derived score totals for one attempt."""

    total_score: int = 0
    max_score: int = 0
    coding_score: int = 0
    mcq_score: int = 0
    problems_attempted: int = 0
    problems_completed: int = 0
    duration_minutes: int = 0

    @property
    def percent(self) -> float:
        if self.max_score == 0:
            return 0.0
        return (self.total_score / self.max_score) * 100


class AttemptRecord(BaseModel):
    """One student's timed instance of one assessment."""

    id: str
    student_id: str
    assessment_id: str
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    is_completed: bool = False
    is_time_expired: bool = False
    submitted_at: datetime | None = None
    creation_strategy: str | None = None
    tab_switch_count: int = 0
    # Synthesized on the client when no store path could create it
    is_local: bool = False
    summary: AssessmentSummary | None = None


class AttemptCreate(BaseModel):
    """Request to create an attempt."""

    student_id: str = Field(..., min_length=1)
    assessment_id: str = Field(..., min_length=1)
    duration_minutes: int | None = Field(None, gt=0)
    start_time: datetime | None = None
    creation_strategy: str | None = None


class AttemptUpdate(BaseModel):
    """Partial attempt update; ``None`` fields are left alone."""

    is_completed: bool | None = None
    is_time_expired: bool | None = None
    end_time: datetime | None = None
    submitted_at: datetime | None = None
    tab_switch_count: int | None = Field(None, ge=0)
    summary: AssessmentSummary | None = None
