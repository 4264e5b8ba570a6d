"""Database models."""
from assess.models.db.assessment import (
    AssessmentRow,
    ChoiceRow,
    ProblemLanguageRow,
    ProblemRow,
    ProblemTestCaseRow,
)
from assess.models.db.attempt import AttemptRow
from assess.models.db.submission import SubmissionRow

__all__ = [
    "AssessmentRow",
    "ChoiceRow",
    "ProblemLanguageRow",
    "ProblemRow",
    "ProblemTestCaseRow",
    "AttemptRow",
    "SubmissionRow",
]
