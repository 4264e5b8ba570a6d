"""Session engine: the surface the assessment UI talks to."""
from __future__ import annotations

import logging
import re
from concurrent.futures import Future
from datetime import datetime
from pathlib import Path
from typing import Callable

from pydantic import BaseModel, Field

from assess.config import CACHE_DIR
from assess.engine.cache import DurableCache
from assess.engine.context import SessionContext
from assess.engine.controller import AttemptController, AttemptState, TimerSnapshot
from assess.engine.errors import TransientNetworkError, ValidationError
from assess.engine.integrity import IntegrityMonitor, IntegrityReport
from assess.engine.judge import JudgeClient
from assess.engine.reconciler import SubmitOutcome
from assess.engine.scoring import ScoringAggregator
from assess.engine.workspace import WorkspaceView
from assess.models import AnswerPayload, AssessmentSummary, AttemptRecord, ProblemDraft
from assess.store import HttpStore, PersistentStore
from assess.utils import utc_now

log = logging.getLogger(__name__)

FINALIZE_MODES = ("manual", "timeout")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class SessionState(BaseModel):
    assessment_id: str
    student_id: str
    state: AttemptState
    attempt: AttemptRecord | None = None
    timer: TimerSnapshot
    problems: list[WorkspaceView] = Field(default_factory=list)
    summary: AssessmentSummary | None = None
    tab_switch_count: int = 0
    pending_resync: list[str] = Field(default_factory=list)


def cache_path(cache_dir: Path, student_id: str, assessment_id: str) -> Path:
    """One cache file per (student, assessment) on this device."""
    name = _UNSAFE_CHARS.sub("_", f"{student_id}__{assessment_id}")
    return Path(cache_dir) / f"{name}.json"


class SessionEngine:
    def __init__(self, controller: AttemptController, integrity: IntegrityMonitor):
        self.controller = controller
        self.integrity = integrity

    @classmethod
    def build(
        cls,
        student_id: str,
        assessment_id: str,
        store: PersistentStore | None = None,
        cache: DurableCache | None = None,
        judge: JudgeClient | None = None,
        clock: Callable[[], datetime] = utc_now,
        cache_dir: Path | str = CACHE_DIR,
        **controller_options,
    ) -> "SessionEngine":
        """
        Wire up a session for one student and one assessment.

        Raises:
            FatalStateError: the assessment does not exist.
        """
        store = store or HttpStore()
        assessment = store.get_assessment(assessment_id)
        cache = cache or DurableCache(cache_path(Path(cache_dir), student_id, assessment_id))
        ctx = SessionContext(
            student_id=student_id,
            assessment=assessment,
            store=store,
            cache=cache,
            clock=clock,
        )
        integrity = IntegrityMonitor(clock=clock)
        controller = AttemptController(
            ctx,
            judge or JudgeClient(),
            integrity=integrity,
            **controller_options,
        )
        return cls(controller, integrity)

    @property
    def ctx(self) -> SessionContext:
        return self.controller.ctx

    @property
    def scoring(self) -> ScoringAggregator:
        return self.controller.scoring

    def start(self, run_timer: bool = True) -> SessionState:
        self.controller.start()
        if run_timer and self.controller.state.is_open:
            self.controller.start_timer()
        return self.get_state()

    def get_state(self, now: datetime | None = None) -> SessionState:
        controller = self.controller
        return SessionState(
            assessment_id=self.ctx.assessment_id,
            student_id=self.ctx.student_id,
            state=controller.state,
            attempt=self.ctx.attempt,
            timer=controller.snapshot(now),
            problems=[workspace.view() for workspace in controller.workspaces.values()],
            summary=controller.summary,
            tab_switch_count=self.integrity.tab_switch_count,
            pending_resync=sorted(controller.reconciler.pending_resync),
        )

    # Drafts

    def edit_code(self, problem_id: str, body: str) -> None:
        self.controller.workspace(problem_id).edit_code(body)

    def save_draft(self, problem_id: str, answer: AnswerPayload | None = None) -> ProblemDraft:
        return self.controller.workspace(problem_id).save(answer)

    def select_choice(self, problem_id: str, choice_id: str) -> ProblemDraft:
        return self.controller.workspace(problem_id).select_choice(choice_id)

    def switch_language(self, problem_id: str, language: str) -> ProblemDraft:
        return self.controller.workspace(problem_id).switch_language(language)

    # Judge

    def run_tests(self, problem_id: str) -> Future:
        return self.controller.workspace(problem_id).run_tests()

    def run_code(self, problem_id: str, stdin: str | None = None) -> Future:
        return self.controller.workspace(problem_id).run_code(stdin)

    # Submission

    def submit_problem(self, problem_id: str, answer: AnswerPayload | None = None) -> SubmitOutcome:
        return self.controller.submit_problem(problem_id, answer)

    def finalize(self, mode: str = "manual") -> Future:
        if mode not in FINALIZE_MODES:
            raise ValidationError(f"Unknown finalize mode: {mode}")
        return self.controller.finalize(is_time_expired=mode == "timeout")

    def resync(self) -> list[str]:
        return self.controller.reconciler.resync()

    def get_summary(self) -> AssessmentSummary:
        """Final summary once finalized, otherwise a live one from current submissions."""
        if self.controller.summary is not None:
            return self.controller.summary
        reconciler = self.controller.reconciler
        try:
            submissions = reconciler.effective_submissions(reconciler.fetch_confirmed())
        except TransientNetworkError as exc:
            log.warning("Summary computed from local submissions only: %s", exc)
            submissions = reconciler.records()
        return self.scoring.summarize(self.ctx.assessment, submissions)

    def integrity_report(self) -> IntegrityReport:
        return self.integrity.report()

    def close(self) -> None:
        self.controller.close()
