"""Problem and assessment metadata models (read-only to the session engine)."""
from enum import Enum

from pydantic import BaseModel, Field


class QuestionType(str, Enum):
    """Structural kind of a problem."""

    CODING = "CODING"
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"


class Difficulty(str, Enum):
    """Difficulty label shown on coding problems."""

    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"


class ProblemTestCase(BaseModel):
    """Judge input with its expected output."""

    input: str = ""
    output: str = ""
    is_hidden: bool = False


class LanguageTemplate(BaseModel):
    """
    Per-language wrapper for a coding problem.
    The student edits only the body between ``code_prefix`` and ``code_suffix``.
    """

    name: str = Field(..., min_length=1)
    function_signature: str = ""
    code_prefix: str = ""
    starter_code: str = ""
    code_suffix: str = ""

    def default_body(self) -> str:
        """Starter code with the fixed prefix/suffix cut out."""
        body = self.starter_code
        if self.code_prefix:
            body = body.replace(self.code_prefix, "", 1)
        if self.code_suffix:
            body = body.replace(self.code_suffix, "", 1)
        return body.strip()

    def compose(self, body: str) -> str:
        """Full program sent to the judge."""
        return f"{self.code_prefix}\n{body}\n{self.code_suffix}"


class Choice(BaseModel):
    """Option of a multiple-choice problem."""

    id: str = Field(..., min_length=1)
    text: str = ""
    is_correct: bool = False


class Problem(BaseModel):
    """Problem metadata."""

    id: str = Field(..., min_length=1)
    title: str = ""
    description: str = ""
    question_type: QuestionType
    difficulty: Difficulty | None = None
    score: int = Field(0, ge=0)
    test_cases: list[ProblemTestCase] = Field(default_factory=list)
    languages: list[LanguageTemplate] = Field(default_factory=list)
    choices: list[Choice] = Field(default_factory=list)

    class Config:
        from_attributes = True

    @property
    def is_coding(self) -> bool:
        return self.question_type == QuestionType.CODING

    def language(self, name: str) -> LanguageTemplate | None:
        """Find the template for ``name`` (case-insensitive)."""
        wanted = name.strip().lower()
        return next(
            (lang for lang in self.languages if lang.name.lower() == wanted),
            None,
        )

    def choice(self, choice_id: str | None) -> Choice | None:
        if not choice_id:
            return None
        return next((c for c in self.choices if c.id == choice_id), None)


class Assessment(BaseModel):
    """Assessment with its ordered problems."""

    id: str = Field(..., min_length=1)
    title: str = ""
    duration_minutes: int = Field(..., gt=0)
    problems: list[Problem] = Field(default_factory=list)

    class Config:
        from_attributes = True

    def problem(self, problem_id: str) -> Problem | None:
        return next((p for p in self.problems if p.id == problem_id), None)
