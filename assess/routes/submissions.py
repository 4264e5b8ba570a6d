"""Submission endpoints."""
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session as DbSession

from assess.database import get_db
from assess.models import SubmissionFilter, SubmissionRecord, SubmissionUpsert
from assess.services import submission_service
from assess.utils import validate_id

router = APIRouter(prefix="/api/submissions", tags=["submissions"])


@router.get("/latest", response_model=SubmissionRecord)
def get_latest_submission(
    student_id: str,
    problem_id: str,
    db: Annotated[DbSession, Depends(get_db)],
) -> SubmissionRecord:
    """Get the submission that counts for (student, problem)."""
    student_id = validate_id("student_id", student_id)
    problem_id = validate_id("problem_id", problem_id)
    submission = submission_service.get_latest_submission(db, student_id, problem_id)
    if submission is None:
        raise HTTPException(status_code=404, detail="No submission found")
    return submission_service.submission_to_record(submission)


@router.put("", response_model=SubmissionRecord)
def upsert_submission(
    payload: SubmissionUpsert,
    db: Annotated[DbSession, Depends(get_db)],
) -> SubmissionRecord:
    """Create or overwrite the submission for (student, problem)."""
    validate_id("student_id", payload.student_id)
    validate_id("problem_id", payload.problem_id)
    return submission_service.submission_to_record(
        submission_service.upsert_submission(db, payload)
    )


@router.get("", response_model=list[SubmissionRecord])
def list_submissions(
    db: Annotated[DbSession, Depends(get_db)],
    student_id: str | None = None,
    assessment_id: str | None = None,
    problem_id: Annotated[list[str] | None, Query()] = None,
) -> list[SubmissionRecord]:
    """List submissions, newest first."""
    filters = SubmissionFilter(
        student_id=student_id,
        assessment_id=assessment_id,
        problem_ids=problem_id,
    )
    return [
        submission_service.submission_to_record(row)
        for row in submission_service.list_submissions(db, filters)
    ]
