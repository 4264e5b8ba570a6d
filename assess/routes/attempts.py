"""Attempt endpoints."""
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session as DbSession

from assess.database import get_db
from assess.models import AttemptCreate, AttemptRecord, AttemptUpdate
from assess.services import attempt_service
from assess.utils import validate_id

router = APIRouter(prefix="/api/attempts", tags=["attempts"])


@router.get("", response_model=AttemptRecord)
def get_attempt(
    student_id: str,
    assessment_id: str,
    db: Annotated[DbSession, Depends(get_db)],
) -> AttemptRecord:
    """Get the attempt of a student for an assessment."""
    student_id = validate_id("student_id", student_id)
    assessment_id = validate_id("assessment_id", assessment_id)
    attempt = attempt_service.get_attempt(db, student_id, assessment_id)
    if attempt is None:
        raise HTTPException(status_code=404, detail="Attempt not found")
    return attempt_service.attempt_to_record(attempt)


@router.post("", response_model=AttemptRecord, status_code=201)
def create_attempt(
    payload: AttemptCreate,
    db: Annotated[DbSession, Depends(get_db)],
) -> AttemptRecord:
    """Create an attempt; 409 when one already exists."""
    validate_id("student_id", payload.student_id)
    validate_id("assessment_id", payload.assessment_id)
    return attempt_service.attempt_to_record(attempt_service.create_attempt(db, payload))


@router.put("/ensure", response_model=AttemptRecord)
def ensure_attempt(
    payload: AttemptCreate,
    db: Annotated[DbSession, Depends(get_db)],
) -> AttemptRecord:
    """Get the existing attempt or create it."""
    validate_id("student_id", payload.student_id)
    validate_id("assessment_id", payload.assessment_id)
    return attempt_service.attempt_to_record(attempt_service.ensure_attempt(db, payload))


@router.patch("/{attempt_id}", response_model=AttemptRecord)
def update_attempt(
    attempt_id: str,
    payload: AttemptUpdate,
    db: Annotated[DbSession, Depends(get_db)],
) -> AttemptRecord:
    """Apply a partial update (completion, timeout, summary, telemetry)."""
    attempt_id = validate_id("attempt_id", attempt_id)
    return attempt_service.attempt_to_record(
        attempt_service.update_attempt(db, attempt_id, payload)
    )
