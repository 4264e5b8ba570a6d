"""Service layer for submissions."""
import logging

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from assess.models import (
    AnswerPayload,
    RunResult,
    SubmissionFilter,
    SubmissionRecord,
    SubmissionUpsert,
)
from assess.models.db.assessment import ProblemRow
from assess.models.db.submission import SubmissionRow
from assess.utils import ensure_utc, utc_now

log = logging.getLogger(__name__)


def submission_to_record(submission: SubmissionRow) -> SubmissionRecord:
    """Convert a submission row into its API model."""
    results = submission.test_results
    return SubmissionRecord(
        id=submission.id,
        student_id=submission.student_id,
        problem_id=submission.problem_id,
        assessment_id=submission.assessment_id,
        answer=AnswerPayload(
            code=submission.code,
            language=submission.language,
            selected_choice_id=submission.selected_choice_id,
        ),
        status=submission.status,
        score=submission.score,
        is_correct=submission.is_correct,
        test_results=RunResult(**results) if results else None,
        execution_time_ms=submission.execution_time_ms,
        memory_kb=submission.memory_kb,
        error_message=submission.error_message,
        created_at=ensure_utc(submission.created_at),
    )


def get_latest_submission(
    db: DBSession, student_id: str, problem_id: str
) -> SubmissionRow | None:
    """Get the submission counting toward the score for (student, problem)."""
    return db.execute(
        select(SubmissionRow).where(
            SubmissionRow.student_id == student_id,
            SubmissionRow.problem_id == problem_id,
        )
    ).scalar_one_or_none()


def _apply(submission: SubmissionRow, payload: SubmissionUpsert) -> None:
    submission.assessment_id = payload.assessment_id or submission.assessment_id
    submission.code = payload.answer.code
    submission.language = payload.answer.language
    submission.selected_choice_id = payload.answer.selected_choice_id
    submission.status = payload.status.value
    submission.score = payload.score
    submission.is_correct = payload.is_correct
    submission.execution_time_ms = payload.execution_time_ms
    submission.memory_kb = payload.memory_kb
    submission.error_message = payload.error_message
    # Hidden case data must not reach storage either
    submission.test_results = (
        payload.test_results.redacted().model_dump(mode="json")
        if payload.test_results
        else None
    )
    submission.created_at = utc_now()


def upsert_submission(db: DBSession, payload: SubmissionUpsert) -> SubmissionRow:
    """
    Create or overwrite the submission for (student, problem).
    Repeated calls never add rows.
    """
    problem = db.get(ProblemRow, payload.problem_id)
    if problem is None:
        raise HTTPException(status_code=404, detail="Problem not found")
    if payload.assessment_id is None:
        payload = payload.model_copy(update={"assessment_id": problem.assessment_id})
    elif payload.assessment_id != problem.assessment_id:
        raise HTTPException(status_code=400, detail="Mismatched assessment_id")

    submission = get_latest_submission(db, payload.student_id, payload.problem_id)
    if submission is None:
        submission = SubmissionRow(
            student_id=payload.student_id,
            problem_id=payload.problem_id,
        )
        db.add(submission)
    _apply(submission, payload)

    try:
        db.commit()
    except IntegrityError:
        # Concurrent insert for the same pair; overwrite the winner instead
        db.rollback()
        submission = get_latest_submission(db, payload.student_id, payload.problem_id)
        _apply(submission, payload)
        db.commit()

    db.refresh(submission)
    log.info(
        "Stored submission for student %s problem %s: %s (%s pts)",
        submission.student_id,
        submission.problem_id,
        submission.status,
        submission.score,
    )
    return submission


def list_submissions(db: DBSession, filters: SubmissionFilter) -> list[SubmissionRow]:
    """List submissions matching the filter."""
    query = select(SubmissionRow)

    if filters.student_id:
        query = query.where(SubmissionRow.student_id == filters.student_id)
    if filters.assessment_id:
        query = query.where(SubmissionRow.assessment_id == filters.assessment_id)
    if filters.problem_ids:
        query = query.where(SubmissionRow.problem_id.in_(filters.problem_ids))

    query = query.order_by(SubmissionRow.created_at.desc())
    return list(db.execute(query).scalars().all())
