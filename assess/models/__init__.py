"""Pydantic models."""
from assess.models.attempts import (
    AssessmentSummary,
    AttemptCreate,
    AttemptRecord,
    AttemptUpdate,
)
from assess.models.problems import (
    Assessment,
    Choice,
    Difficulty,
    LanguageTemplate,
    Problem,
    ProblemTestCase,
    QuestionType,
)
from assess.models.results import (
    CaseResult,
    ExecutionResult,
    RunResult,
    SubmissionStatus,
)
from assess.models.submissions import (
    AnswerPayload,
    ProblemDraft,
    SubmissionFilter,
    SubmissionRecord,
    SubmissionUpsert,
)

__all__ = [
    "AssessmentSummary",
    "AttemptCreate",
    "AttemptRecord",
    "AttemptUpdate",
    "Assessment",
    "Choice",
    "Difficulty",
    "LanguageTemplate",
    "Problem",
    "ProblemTestCase",
    "QuestionType",
    "CaseResult",
    "ExecutionResult",
    "RunResult",
    "SubmissionStatus",
    "AnswerPayload",
    "ProblemDraft",
    "SubmissionFilter",
    "SubmissionRecord",
    "SubmissionUpsert",
]
