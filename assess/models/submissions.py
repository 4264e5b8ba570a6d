"""Answer, draft and submission models."""
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from assess.models.problems import QuestionType
from assess.models.results import RunResult, SubmissionStatus


class AnswerPayload(BaseModel):
    """Student answer: code plus language, or a selected choice id."""

    code: str | None = None
    language: str | None = None
    selected_choice_id: str | None = None

    def is_empty_for(self, question_type: QuestionType) -> bool:
        if question_type == QuestionType.MULTIPLE_CHOICE:
            return not self.selected_choice_id
        return not (self.code and self.code.strip()) or not self.language


class ProblemDraft(BaseModel):
    """In-progress answer for one problem, as kept in the client cache."""

    problem_id: str
    answer: AnswerPayload = Field(default_factory=AnswerPayload)
    last_saved_at: datetime
    last_run_result: RunResult | None = None
    source: str = "cache"


class SubmissionUpsert(BaseModel):
    """Body of the idempotent submission upsert keyed on (student, problem)."""

    student_id: str = Field(..., min_length=1)
    problem_id: str = Field(..., min_length=1)
    assessment_id: str | None = None
    answer: AnswerPayload
    status: SubmissionStatus
    score: int = Field(0, ge=0)
    is_correct: bool = False
    test_results: RunResult | None = None
    execution_time_ms: float | None = None
    memory_kb: int | None = None
    error_message: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _narrow_status(cls, value: object) -> SubmissionStatus:
        return SubmissionStatus.parse(value)


class SubmissionRecord(BaseModel):
    """Latest submission for (student, problem)."""

    id: str
    student_id: str
    problem_id: str
    assessment_id: str | None = None
    answer: AnswerPayload = Field(default_factory=AnswerPayload)
    status: SubmissionStatus
    score: int = 0
    is_correct: bool = False
    test_results: RunResult | None = None
    execution_time_ms: float | None = None
    memory_kb: int | None = None
    error_message: str | None = None
    created_at: datetime
    # False for the local stand-in kept while the server has not confirmed
    synced: bool = True

    @field_validator("status", mode="before")
    @classmethod
    def _narrow_status(cls, value: object) -> SubmissionStatus:
        return SubmissionStatus.parse(value)


class SubmissionFilter(BaseModel):
    """Filter for listing submissions."""

    student_id: str | None = None
    assessment_id: str | None = None
    problem_ids: list[str] | None = None
