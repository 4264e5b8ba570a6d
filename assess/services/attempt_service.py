"""Service layer for attempts."""
import logging
from datetime import datetime, timedelta

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from assess.config import DEFAULT_DURATION_MINUTES
from assess.engine.scoring import ScoringAggregator
from assess.models import (
    Assessment,
    AssessmentSummary,
    AttemptCreate,
    AttemptRecord,
    AttemptUpdate,
    SubmissionFilter,
)
from assess.models.db.assessment import AssessmentRow
from assess.models.db.attempt import AttemptRow
from assess.services import submission_service
from assess.utils import ensure_utc, utc_now

log = logging.getLogger(__name__)


def attempt_to_record(attempt: AttemptRow) -> AttemptRecord:
    """Convert an attempt row into its API model."""
    summary = attempt.summary
    return AttemptRecord(
        id=attempt.id,
        student_id=attempt.student_id,
        assessment_id=attempt.assessment_id,
        start_time=ensure_utc(attempt.start_time),
        end_time=ensure_utc(attempt.end_time),
        duration_minutes=attempt.duration_minutes,
        is_completed=attempt.is_completed,
        is_time_expired=attempt.is_time_expired,
        submitted_at=ensure_utc(attempt.submitted_at),
        creation_strategy=attempt.creation_strategy,
        tab_switch_count=attempt.tab_switch_count,
        summary=AssessmentSummary(**summary) if summary else None,
    )


def get_attempt(
    db: DBSession, student_id: str, assessment_id: str
) -> AttemptRow | None:
    """Get the attempt of a student for an assessment."""
    return db.execute(
        select(AttemptRow).where(
            AttemptRow.student_id == student_id,
            AttemptRow.assessment_id == assessment_id,
        )
    ).scalar_one_or_none()


def _resolve_duration(db: DBSession, payload: AttemptCreate) -> int:
    if payload.duration_minutes:
        return payload.duration_minutes
    assessment = db.get(AssessmentRow, payload.assessment_id)
    if assessment is None:
        raise HTTPException(status_code=404, detail="Assessment not found")
    return assessment.duration_minutes or DEFAULT_DURATION_MINUTES


def create_attempt(db: DBSession, payload: AttemptCreate) -> AttemptRow:
    """
    Create a new attempt.

    Raises:
        HTTPException: 409 if the student already has an attempt for the
            assessment, 404 if the assessment is unknown.
    """
    if get_attempt(db, payload.student_id, payload.assessment_id) is not None:
        raise HTTPException(status_code=409, detail="Attempt already exists")

    duration = _resolve_duration(db, payload)
    start_time = ensure_utc(payload.start_time) or utc_now()
    attempt = AttemptRow(
        student_id=payload.student_id,
        assessment_id=payload.assessment_id,
        start_time=start_time,
        end_time=start_time + timedelta(minutes=duration),
        duration_minutes=duration,
        creation_strategy=payload.creation_strategy,
    )
    db.add(attempt)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race against a concurrent create for the same pair
        db.rollback()
        raise HTTPException(status_code=409, detail="Attempt already exists")
    db.refresh(attempt)
    log.info(
        "Created attempt %s for student %s on assessment %s",
        attempt.id,
        attempt.student_id,
        attempt.assessment_id,
    )
    return attempt


def ensure_attempt(db: DBSession, payload: AttemptCreate) -> AttemptRow:
    """Get existing attempt or create a new one."""
    attempt = get_attempt(db, payload.student_id, payload.assessment_id)
    if attempt:
        return attempt
    try:
        return create_attempt(db, payload)
    except HTTPException as exc:
        if exc.status_code != 409:
            raise
    attempt = get_attempt(db, payload.student_id, payload.assessment_id)
    if attempt is None:
        raise HTTPException(status_code=500, detail="Attempt vanished after conflict")
    return attempt


def update_attempt(db: DBSession, attempt_id: str, payload: AttemptUpdate) -> AttemptRow:
    """Apply a partial update to an attempt."""
    attempt = db.get(AttemptRow, attempt_id)
    if not attempt:
        raise HTTPException(status_code=404, detail="Attempt not found")

    if payload.is_completed is not None:
        attempt.is_completed = payload.is_completed
    if payload.is_time_expired is not None:
        attempt.is_time_expired = payload.is_time_expired
    if payload.end_time is not None:
        end_time = ensure_utc(payload.end_time)
        # Only finalize-on-timeout may move the end; never shorten it
        if end_time > ensure_utc(attempt.end_time):
            attempt.end_time = end_time
    if payload.submitted_at is not None:
        attempt.submitted_at = ensure_utc(payload.submitted_at)
    if payload.tab_switch_count is not None:
        attempt.tab_switch_count = max(attempt.tab_switch_count, payload.tab_switch_count)
    if payload.summary is not None:
        attempt.summary = payload.summary.model_dump()

    db.commit()
    db.refresh(attempt)
    return attempt


def elapsed_minutes(attempt: AttemptRow, now: datetime | None = None) -> int:
    """Minutes between attempt start and submission (or ``now``)."""
    start = ensure_utc(attempt.start_time)
    end = ensure_utc(attempt.submitted_at) or now or utc_now()
    return max(0, int((end - start).total_seconds() // 60))


def summarize_attempt(db: DBSession, assessment: Assessment, student_id: str) -> AssessmentSummary:
    """Recompute a student's totals from their stored submissions."""
    submissions = submission_service.list_submissions(
        db, SubmissionFilter(student_id=student_id, assessment_id=assessment.id)
    )
    attempt = get_attempt(db, student_id, assessment.id)
    duration = 0
    if attempt is not None:
        duration = min(attempt.duration_minutes, elapsed_minutes(attempt))
    return ScoringAggregator().summarize(
        assessment,
        [submission_service.submission_to_record(row) for row in submissions],
        duration_minutes=duration,
    )
