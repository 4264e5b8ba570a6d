"""Assessment endpoints."""
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session as DbSession

from assess.database import get_db
from assess.models import Assessment, AssessmentSummary
from assess.services import assessment_service, attempt_service
from assess.utils import validate_id

router = APIRouter(prefix="/api/assessments", tags=["assessments"])


@router.get("/{assessment_id}", response_model=Assessment)
def get_assessment(
    assessment_id: str,
    db: Annotated[DbSession, Depends(get_db)],
) -> Assessment:
    """Get an assessment with its problems."""
    assessment_id = validate_id("assessment_id", assessment_id)
    return assessment_service.load_assessment(db, assessment_id)


@router.get("/{assessment_id}/summary", response_model=AssessmentSummary)
def get_summary(
    assessment_id: str,
    student_id: str,
    db: Annotated[DbSession, Depends(get_db)],
) -> AssessmentSummary:
    """Score totals for one student, recomputed from their latest submissions."""
    assessment_id = validate_id("assessment_id", assessment_id)
    student_id = validate_id("student_id", student_id)
    assessment = assessment_service.load_assessment(db, assessment_id)
    return attempt_service.summarize_attempt(db, assessment, student_id)
