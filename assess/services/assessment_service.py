"""Service layer for assessment metadata."""
from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session as DBSession, selectinload

from assess.models import (
    Assessment,
    Choice,
    LanguageTemplate,
    Problem,
    ProblemTestCase,
)
from assess.models.db.assessment import (
    AssessmentRow,
    ChoiceRow,
    ProblemLanguageRow,
    ProblemRow,
    ProblemTestCaseRow,
)


def get_assessment_row(db: DBSession, assessment_id: str) -> AssessmentRow | None:
    """Get assessment by ID with problems and their children loaded."""
    return db.execute(
        select(AssessmentRow)
        .options(
            selectinload(AssessmentRow.problems).selectinload(ProblemRow.test_cases),
            selectinload(AssessmentRow.problems).selectinload(ProblemRow.languages),
            selectinload(AssessmentRow.problems).selectinload(ProblemRow.choices),
        )
        .where(AssessmentRow.id == assessment_id)
    ).scalar_one_or_none()


def problem_from_row(row: ProblemRow) -> Problem:
    """Convert a problem row into the engine's metadata model."""
    return Problem(
        id=row.id,
        title=row.title,
        description=row.description,
        question_type=row.question_type,
        difficulty=row.difficulty,
        score=row.score,
        test_cases=[
            ProblemTestCase(input=tc.input, output=tc.output, is_hidden=tc.is_hidden)
            for tc in row.test_cases
        ],
        languages=[
            LanguageTemplate(
                name=lang.name,
                function_signature=lang.function_signature,
                code_prefix=lang.code_prefix,
                starter_code=lang.starter_code,
                code_suffix=lang.code_suffix,
            )
            for lang in row.languages
        ],
        choices=[
            Choice(id=choice.id, text=choice.text, is_correct=choice.is_correct)
            for choice in row.choices
        ],
    )


def load_assessment(db: DBSession, assessment_id: str) -> Assessment:
    """
    Load assessment metadata.

    Raises:
        HTTPException: 404 if the assessment does not exist.
    """
    row = get_assessment_row(db, assessment_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Assessment not found")
    return Assessment(
        id=row.id,
        title=row.title,
        duration_minutes=row.duration_minutes,
        problems=[problem_from_row(problem) for problem in row.problems],
    )


def get_problem(db: DBSession, problem_id: str) -> Problem | None:
    """Get a single problem by ID."""
    row = db.get(ProblemRow, problem_id)
    if row is None:
        return None
    return problem_from_row(row)


def save_assessment(db: DBSession, assessment: Assessment) -> AssessmentRow:
    """
    Insert or replace an assessment definition (used for seeding).
    Existing problems of the assessment are replaced wholesale.
    """
    row = db.get(AssessmentRow, assessment.id)
    if row is None:
        row = AssessmentRow(id=assessment.id)
        db.add(row)
    row.title = assessment.title
    row.duration_minutes = assessment.duration_minutes
    row.problems.clear()
    db.flush()

    for position, problem in enumerate(assessment.problems):
        problem_row = ProblemRow(
            id=problem.id,
            position=position,
            title=problem.title,
            description=problem.description,
            question_type=problem.question_type.value,
            difficulty=problem.difficulty.value if problem.difficulty else None,
            score=problem.score,
        )
        problem_row.test_cases = [
            ProblemTestCaseRow(input=tc.input, output=tc.output, is_hidden=tc.is_hidden)
            for tc in problem.test_cases
        ]
        problem_row.languages = [
            ProblemLanguageRow(
                name=lang.name,
                function_signature=lang.function_signature,
                code_prefix=lang.code_prefix,
                starter_code=lang.starter_code,
                code_suffix=lang.code_suffix,
            )
            for lang in problem.languages
        ]
        problem_row.choices = [
            ChoiceRow(
                id=choice.id,
                position=index,
                text=choice.text,
                is_correct=choice.is_correct,
            )
            for index, choice in enumerate(problem.choices)
        ]
        row.problems.append(problem_row)

    db.commit()
    db.refresh(row)
    return row
