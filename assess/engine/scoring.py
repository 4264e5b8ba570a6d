"""Per-problem scores and assessment totals."""
import logging
import math
from enum import Enum
from typing import Iterable

from assess.config import CODING_SCORE_POLICY
from assess.models import (
    AnswerPayload,
    Assessment,
    AssessmentSummary,
    Problem,
    QuestionType,
    RunResult,
    SubmissionRecord,
    SubmissionStatus,
)

log = logging.getLogger(__name__)


class ScoringPolicy(str, Enum):
    """How a coding problem converts test results into points."""

    STRICT = "strict"
    PROPORTIONAL = "proportional"

    @classmethod
    def from_config(cls, value: str | None) -> "ScoringPolicy":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            log.warning("Unknown scoring policy %r, using strict", value)
            return cls.STRICT


def coding_score(problem: Problem, result: RunResult | None, policy: ScoringPolicy) -> int:
    """Points for a coding problem given its latest run."""
    if result is None or result.total_count == 0:
        return 0
    if policy == ScoringPolicy.PROPORTIONAL:
        # Half rounds up, matching the scores already stored by the web client
        return int(math.floor(result.passed_count / result.total_count * problem.score + 0.5))
    return problem.score if result.all_passed else 0


def mcq_score(problem: Problem, choice_id: str | None) -> int:
    """Points for a multiple-choice problem given the selected choice."""
    choice = problem.choice(choice_id)
    return problem.score if choice is not None and choice.is_correct else 0


class ScoringAggregator:
    """Scores answers and rolls latest submissions up into an ``AssessmentSummary``."""

    def __init__(self, policy: ScoringPolicy | str | None = None):
        if not isinstance(policy, ScoringPolicy):
            policy = ScoringPolicy.from_config(policy or CODING_SCORE_POLICY)
        self.policy = policy

    def score_answer(
        self,
        problem: Problem,
        answer: AnswerPayload,
        result: RunResult | None = None,
    ) -> int:
        if problem.question_type == QuestionType.MULTIPLE_CHOICE:
            return mcq_score(problem, answer.selected_choice_id)
        return coding_score(problem, result, self.policy)

    def is_correct(self, problem: Problem, answer: AnswerPayload, result: RunResult | None) -> bool:
        if problem.question_type == QuestionType.MULTIPLE_CHOICE:
            choice = problem.choice(answer.selected_choice_id)
            return bool(choice and choice.is_correct)
        return bool(result and result.all_passed)

    def status_for(
        self,
        problem: Problem,
        answer: AnswerPayload,
        result: RunResult | None,
    ) -> SubmissionStatus:
        """Status recorded with a submission of ``answer``."""
        if problem.question_type == QuestionType.MULTIPLE_CHOICE:
            if self.is_correct(problem, answer, result):
                return SubmissionStatus.COMPLETED
            return SubmissionStatus.FAILED
        if result is None:
            return SubmissionStatus.PENDING
        return result.status

    @staticmethod
    def latest_by_problem(submissions: Iterable[SubmissionRecord]) -> dict[str, SubmissionRecord]:
        """Keep only the newest submission per problem."""
        latest: dict[str, SubmissionRecord] = {}
        for submission in submissions:
            current = latest.get(submission.problem_id)
            if current is None or submission.created_at >= current.created_at:
                latest[submission.problem_id] = submission
        return latest

    def summarize(
        self,
        assessment: Assessment,
        submissions: Iterable[SubmissionRecord],
        duration_minutes: int = 0,
    ) -> AssessmentSummary:
        """
        Build totals for one attempt.

        ``max_score`` counts every problem whether attempted or not; the other
        totals use only the latest submission of each problem.
        """
        latest = self.latest_by_problem(submissions)
        summary = AssessmentSummary(
            max_score=sum(problem.score for problem in assessment.problems),
            duration_minutes=duration_minutes,
        )
        for problem in assessment.problems:
            submission = latest.get(problem.id)
            if submission is None:
                continue
            score = min(max(submission.score, 0), problem.score)
            summary.problems_attempted += 1
            if submission.status == SubmissionStatus.COMPLETED:
                summary.problems_completed += 1
            summary.total_score += score
            if problem.question_type == QuestionType.CODING:
                summary.coding_score += score
            else:
                summary.mcq_score += score
        return summary
