"""
Assessment and problem database models.

These rows are authored elsewhere; the session engine only reads them.
"""

from __future__ import annotations

from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from assess.database import Base


class AssessmentRow(Base):
    """Timed assessment made of coding and multiple-choice problems."""

    __tablename__ = "assessments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(default=120, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    problems: Mapped[list["ProblemRow"]] = relationship(
        "ProblemRow",
        back_populates="assessment",
        cascade="all, delete-orphan",
        order_by="ProblemRow.position",
    )


class ProblemRow(Base):
    """Single problem inside an assessment."""

    __tablename__ = "problems"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, index=True)
    assessment_id: Mapped[str] = mapped_column(
        ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(default=0, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    question_type: Mapped[str] = mapped_column(String(20), nullable=False)
    difficulty: Mapped[str | None] = mapped_column(String(10), nullable=True)
    score: Mapped[int] = mapped_column(default=0, nullable=False)

    assessment: Mapped["AssessmentRow"] = relationship(
        "AssessmentRow", back_populates="problems"
    )
    test_cases: Mapped[list["ProblemTestCaseRow"]] = relationship(
        "ProblemTestCaseRow", cascade="all, delete-orphan", order_by="ProblemTestCaseRow.id"
    )
    languages: Mapped[list["ProblemLanguageRow"]] = relationship(
        "ProblemLanguageRow", cascade="all, delete-orphan", order_by="ProblemLanguageRow.id"
    )
    choices: Mapped[list["ChoiceRow"]] = relationship(
        "ChoiceRow", cascade="all, delete-orphan", order_by="ChoiceRow.position"
    )


class ProblemTestCaseRow(Base):
    """Input/expected output pair for a coding problem."""

    __tablename__ = "test_cases"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    problem_id: Mapped[str] = mapped_column(
        ForeignKey("problems.id", ondelete="CASCADE"), nullable=False, index=True
    )
    input: Mapped[str] = mapped_column(Text, default="", nullable=False)
    output: Mapped[str] = mapped_column(Text, default="", nullable=False)
    is_hidden: Mapped[bool] = mapped_column(default=False, nullable=False)


class ProblemLanguageRow(Base):
    """Per-language code template for a coding problem."""

    __tablename__ = "problem_languages"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    problem_id: Mapped[str] = mapped_column(
        ForeignKey("problems.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(20), nullable=False)
    function_signature: Mapped[str] = mapped_column(Text, default="", nullable=False)
    code_prefix: Mapped[str] = mapped_column(Text, default="", nullable=False)
    starter_code: Mapped[str] = mapped_column(Text, default="", nullable=False)
    code_suffix: Mapped[str] = mapped_column(Text, default="", nullable=False)


class ChoiceRow(Base):
    """Option of a multiple-choice problem."""

    __tablename__ = "choices"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, index=True)
    problem_id: Mapped[str] = mapped_column(
        ForeignKey("problems.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(default=0, nullable=False)
    text: Mapped[str] = mapped_column(Text, default="", nullable=False)
    is_correct: Mapped[bool] = mapped_column(default=False, nullable=False)
