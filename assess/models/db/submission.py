"""
Submission database model.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any

import sqlalchemy as sa
from sqlalchemy import String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from assess.database import Base


class SubmissionRow(Base):
    """
    Latest answer of a student to a problem.
    Re-submission overwrites the row, so there is one per (student_id, problem_id).
    """

    __tablename__ = "submissions"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, index=True, default=lambda: uuid.uuid4().hex
    )
    student_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    problem_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    assessment_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)

    # Answer
    code: Mapped[str | None] = mapped_column(Text, nullable=True)
    language: Mapped[str | None] = mapped_column(String(20), nullable=True)
    selected_choice_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Result
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    score: Mapped[int] = mapped_column(default=0, nullable=False)
    is_correct: Mapped[bool] = mapped_column(default=False, nullable=False)
    execution_time_ms: Mapped[float | None] = mapped_column(nullable=True)
    memory_kb: Mapped[int | None] = mapped_column(nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    test_results_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("student_id", "problem_id", name="uq_submission_student_problem"),
    )

    @property
    def test_results(self) -> dict[str, Any] | None:
        """Parse test results from JSON."""
        if not self.test_results_json:
            return None
        try:
            return json.loads(self.test_results_json)
        except (json.JSONDecodeError, TypeError):
            return None

    @test_results.setter
    def test_results(self, value: dict[str, Any] | None) -> None:
        """Serialize test results to JSON."""
        self.test_results_json = json.dumps(value) if value else None
