"""
Submission reconciler: pushes a problem's answer to the persistent store and
merges the authoritative response back.

The server record is an upsert keyed on (student, problem), so retried or
duplicate submissions never accumulate. When the store stays unreachable the
reconciler keeps a local, unsynced stand-in and a ``resync`` marker in the
cache until a later ``resync()`` gets through.
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Callable

from pydantic import BaseModel, ValidationError as ModelValidationError

from assess.config import RETRY_ATTEMPTS, RETRY_BASE_DELAY_SECONDS, RETRY_MAX_DELAY_SECONDS
from assess.engine.cache import KIND_RESYNC
from assess.engine.context import SessionContext
from assess.engine.errors import FatalStateError, TransientNetworkError, ValidationError
from assess.engine.retry import call_with_retry
from assess.engine.scoring import ScoringAggregator
from assess.models import (
    AnswerPayload,
    Problem,
    QuestionType,
    RunResult,
    SubmissionFilter,
    SubmissionRecord,
    SubmissionUpsert,
)
from assess.utils import ensure_utc

log = logging.getLogger(__name__)


class ValidationResult(BaseModel):
    """Outcome of the local pre-submit check; never raised."""

    ok: bool
    message: str | None = None

    @classmethod
    def success(cls) -> "ValidationResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, message: str) -> "ValidationResult":
        return cls(ok=False, message=message)


class SubmitOutcome(BaseModel):
    ok: bool
    message: str | None = None
    submission: SubmissionRecord | None = None
    synced: bool = False


def validate(problem: Problem, answer: AnswerPayload) -> ValidationResult:
    """Check that ``answer`` has something to submit for ``problem``."""
    if problem.question_type == QuestionType.MULTIPLE_CHOICE:
        if not answer.selected_choice_id:
            return ValidationResult.failure("Please select an answer")
        if problem.choice(answer.selected_choice_id) is None:
            return ValidationResult.failure("Invalid choice selected")
        return ValidationResult.success()
    if answer.is_empty_for(QuestionType.CODING):
        return ValidationResult.failure("Please write some code before submitting")
    if problem.language(answer.language or "") is None:
        return ValidationResult.failure(f"Language {answer.language} is not available")
    return ValidationResult.success()


class SubmissionReconciler:
    def __init__(
        self,
        ctx: SessionContext,
        scoring: ScoringAggregator | None = None,
        retry_attempts: int = RETRY_ATTEMPTS,
        base_delay: float = RETRY_BASE_DELAY_SECONDS,
        max_delay: float = RETRY_MAX_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ctx = ctx
        self.scoring = scoring or ScoringAggregator()
        self.retry_attempts = retry_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.sleep = sleep

        self._lock = threading.Lock()
        self._records: dict[str, SubmissionRecord] = {}
        self.pending_resync: dict[str, SubmissionUpsert] = {}
        self._load_markers()

    def _load_markers(self) -> None:
        for key in self.ctx.cache.keys():
            if key.assessment_id != self.ctx.assessment_id or key.kind != KIND_RESYNC:
                continue
            raw = self.ctx.cache.get(key)
            try:
                self.pending_resync[key.problem_id] = SubmissionUpsert(**raw)
            except (ModelValidationError, ValidationError, TypeError) as exc:
                log.warning("Dropping unreadable resync marker %s: %s", key.encode(), exc)
                self.ctx.cache.remove(key)
        if self.pending_resync:
            log.info("Pending resync for problems %s", sorted(self.pending_resync))

    def _retry(self, fn, label: str):
        return call_with_retry(
            fn,
            attempts=self.retry_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            sleep=self.sleep,
            label=label,
        )

    def build_payload(
        self,
        problem: Problem,
        answer: AnswerPayload,
        run_result: RunResult | None,
    ) -> SubmissionUpsert:
        """Score ``answer`` locally and shape the upsert body."""
        if problem.question_type == QuestionType.MULTIPLE_CHOICE:
            answer = AnswerPayload(selected_choice_id=answer.selected_choice_id)
            run_result = None
        result = run_result.redacted() if run_result is not None else None
        return SubmissionUpsert(
            student_id=self.ctx.student_id,
            problem_id=problem.id,
            assessment_id=self.ctx.assessment_id,
            answer=answer,
            status=self.scoring.status_for(problem, answer, result),
            score=self.scoring.score_answer(problem, answer, result),
            is_correct=self.scoring.is_correct(problem, answer, result),
            test_results=result,
            execution_time_ms=result.execution_time_ms if result else None,
            memory_kb=result.memory_kb if result else None,
            error_message=result.error_message if result else None,
        )

    def submit(
        self,
        problem_id: str,
        answer: AnswerPayload,
        run_result: RunResult | None = None,
        is_time_expired: bool = False,
    ) -> SubmitOutcome:
        """
        Validate, score and upsert one answer.

        A failed validation returns ``ok=False`` without touching the network.
        Transient store failures are retried, then degrade to a local record
        flagged ``synced=False`` and queued for ``resync()``.
        """
        problem = self.ctx.assessment.problem(problem_id)
        if problem is None:
            raise FatalStateError(f"Problem {problem_id} not found")

        check = validate(problem, answer)
        if not check.ok:
            log.info(
                "Submit of %s refused locally%s: %s",
                problem_id,
                " at timeout" if is_time_expired else "",
                check.message,
            )
            return SubmitOutcome(ok=False, message=check.message)

        payload = self.build_payload(problem, answer, run_result)
        try:
            record = self._retry(
                lambda: self.ctx.store.upsert_submission(payload),
                label=f"submit {problem_id}",
            )
        except TransientNetworkError as exc:
            record = self._keep_local(payload)
            return SubmitOutcome(
                ok=True,
                message=f"Saved locally; the server could not be reached ({exc})",
                submission=record,
                synced=False,
            )

        record = self._adopt_confirmed(record)
        log.info(
            "Submitted %s: %s, score %d%s",
            problem_id,
            record.status.value,
            record.score,
            " (time expired)" if is_time_expired else "",
        )
        return SubmitOutcome(ok=True, submission=record, synced=True)

    def _keep_local(self, payload: SubmissionUpsert) -> SubmissionRecord:
        record = SubmissionRecord(
            id=f"local-{uuid.uuid4().hex}",
            student_id=payload.student_id,
            problem_id=payload.problem_id,
            assessment_id=payload.assessment_id,
            answer=payload.answer,
            status=payload.status,
            score=payload.score,
            is_correct=payload.is_correct,
            test_results=payload.test_results,
            execution_time_ms=payload.execution_time_ms,
            memory_kb=payload.memory_kb,
            error_message=payload.error_message,
            created_at=self.ctx.now(),
            synced=False,
        )
        with self._lock:
            self._records[payload.problem_id] = record
            self.pending_resync[payload.problem_id] = payload
        self.ctx.cache.set(
            self.ctx.key(payload.problem_id, KIND_RESYNC),
            payload.model_dump(mode="json"),
        )
        log.warning("Problem %s kept locally and marked for resync", payload.problem_id)
        return record

    def _clear_marker(self, problem_id: str) -> None:
        with self._lock:
            self.pending_resync.pop(problem_id, None)
        self.ctx.cache.remove(self.ctx.key(problem_id, KIND_RESYNC))

    def _adopt_confirmed(self, record: SubmissionRecord) -> SubmissionRecord:
        """
        Take the server's answer to our own upsert. It supersedes an unsynced
        stand-in unconditionally; device and server clocks are not comparable.
        """
        with self._lock:
            current = self._records.get(record.problem_id)
            if current is not None and not current.synced:
                del self._records[record.problem_id]
        record = self.merge(record)
        self._clear_marker(record.problem_id)
        return record

    def merge(self, record: SubmissionRecord) -> SubmissionRecord:
        """
        Adopt a server record unless the confirmed one already held is newer.
        Returns the record now held for that problem.
        """
        with self._lock:
            current = self._records.get(record.problem_id)
            if current is not None and ensure_utc(current.created_at) > ensure_utc(
                record.created_at
            ):
                log.info("Ignoring stale response for %s", record.problem_id)
                return current
            self._records[record.problem_id] = record
            return record

    def resync(self) -> list[str]:
        """Retry every pending problem once; returns those that got through."""
        synced: list[str] = []
        for problem_id, payload in list(self.pending_resync.items()):
            try:
                record = self.ctx.store.upsert_submission(payload)
            except TransientNetworkError as exc:
                log.info("Resync of %s still failing: %s", problem_id, exc)
                continue
            self._adopt_confirmed(record)
            synced.append(problem_id)
            log.info("Resynced %s", problem_id)
        return synced

    def latest(self, problem_id: str) -> SubmissionRecord | None:
        with self._lock:
            return self._records.get(problem_id)

    def records(self) -> list[SubmissionRecord]:
        with self._lock:
            return list(self._records.values())

    def fetch_confirmed(self) -> list[SubmissionRecord]:
        """Server submissions for this attempt, retried like any store call."""
        filters = SubmissionFilter(
            student_id=self.ctx.student_id,
            assessment_id=self.ctx.assessment_id,
        )
        return self._retry(
            lambda: self.ctx.store.list_submissions(filters),
            label="list submissions",
        )

    def effective_submissions(self, confirmed: list[SubmissionRecord]) -> list[SubmissionRecord]:
        """Server records overlaid with local stand-ins still waiting for resync."""
        by_problem = {record.problem_id: record for record in confirmed}
        with self._lock:
            for record in self._records.values():
                if not record.synced:
                    by_problem[record.problem_id] = record
        return list(by_problem.values())
