"""
Attempt database model: one student's timed run through one assessment.
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


class AttemptRow(Base):
    """
    Attempt record.
    At most one row per (student_id, assessment_id); never deleted.
    """

    __tablename__ = "attempts"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, index=True, default=lambda: uuid.uuid4().hex
    )
    student_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    assessment_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)

    # Timing
    start_time: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    end_time: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(nullable=False)
    submitted_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )

    # Status
    is_completed: Mapped[bool] = mapped_column(default=False, nullable=False)
    is_time_expired: Mapped[bool] = mapped_column(default=False, nullable=False)
    creation_strategy: Mapped[str | None] = mapped_column(String(32), nullable=True)
    tab_switch_count: Mapped[int] = mapped_column(default=0, nullable=False)

    # Summary cached at finalize (stored as JSON string)
    summary_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("student_id", "assessment_id", name="uq_attempt_student_assessment"),
    )

    @property
    def summary(self) -> dict[str, Any] | None:
        """Parse summary from JSON."""
        if not self.summary_json:
            return None
        try:
            return json.loads(self.summary_json)
        except (json.JSONDecodeError, TypeError):
            return None

    @summary.setter
    def summary(self, value: dict[str, Any] | None) -> None:
        """Serialize summary to JSON."""
        self.summary_json = json.dumps(value) if value else None
