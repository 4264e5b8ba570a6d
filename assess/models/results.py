"""Judge result models and the closed submission status type."""
from enum import Enum

from pydantic import BaseModel, Field


class SubmissionStatus(str, Enum):
    """Lifecycle status of a submission or run."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    ERROR = "ERROR"

    @classmethod
    def parse(cls, value: object) -> "SubmissionStatus":
        """
        Narrow a status arriving from a boundary (HTTP body, cache file, judge).

        Raises:
            ValidationError: for anything outside the closed set.
        """
        from assess.engine.errors import ValidationError

        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValidationError(f"Invalid status: {value!r}")
        key = value.strip().upper().replace(" ", "_")
        key = _STATUS_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValidationError(f"Invalid status: {value!r}") from None

    @property
    def is_terminal(self) -> bool:
        return self in (
            SubmissionStatus.COMPLETED,
            SubmissionStatus.FAILED,
            SubmissionStatus.ERROR,
        )


# Judge vocabulary seen in cached results
_STATUS_ALIASES = {
    "PASSED": "COMPLETED",
    "ACCEPTED": "COMPLETED",
    "SUCCESS": "COMPLETED",
    "WRONG_ANSWER": "FAILED",
    "QUEUED": "PENDING",
    "PROCESSING": "RUNNING",
}


class CaseResult(BaseModel):
    """Outcome of one test case."""

    input: str | None = None
    expected_output: str | None = None
    actual_output: str | None = None
    error: str | None = None
    passed: bool = False
    is_hidden: bool = False
    status_description: str = ""
    execution_time_ms: float | None = None
    memory_kb: int | None = None
    judge_error: bool = False

    def redacted(self) -> "CaseResult":
        """Hidden cases keep only pass/fail and metrics."""
        if not self.is_hidden:
            return self.model_copy()
        return self.model_copy(
            update={
                "input": None,
                "expected_output": None,
                "actual_output": None,
                "error": None,
            }
        )


class RunResult(BaseModel):
    """Aggregate outcome of running a program against a test suite."""

    status: SubmissionStatus = SubmissionStatus.PENDING
    passed_count: int = 0
    total_count: int = 0
    cases: list[CaseResult] = Field(default_factory=list)
    execution_time_ms: float | None = None
    memory_kb: int | None = None
    error_message: str | None = None

    @property
    def all_passed(self) -> bool:
        return self.total_count > 0 and self.passed_count == self.total_count

    @property
    def is_redacted(self) -> bool:
        return all(
            case.expected_output is None and case.actual_output is None
            for case in self.cases
            if case.is_hidden
        )

    def redacted(self) -> "RunResult":
        """Copy safe to cache, persist and render."""
        return self.model_copy(update={"cases": [c.redacted() for c in self.cases]})


class ExecutionResult(BaseModel):
    """Single non-scoring execution against custom stdin."""

    status: SubmissionStatus
    description: str = ""
    stdout: str | None = None
    stderr: str | None = None
    time_ms: float | None = None
    memory_kb: int | None = None
