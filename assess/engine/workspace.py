"""
Problem workspace: owns one problem's draft answer.

Drafts are written to the client cache on explicit save and on a fixed
autosave interval, never per keystroke. Loading merges the cached draft with
the latest server submission: the cache wins for editable content when it is
newer, the server always wins for completion and score.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future, wait
from datetime import datetime
from typing import Callable

from pydantic import BaseModel, ValidationError as ModelValidationError

from assess.config import AUTOSAVE_INTERVAL_SECONDS
from assess.engine.cache import KIND_DRAFT
from assess.engine.context import SessionContext
from assess.engine.errors import (
    FatalStateError,
    RunInProgressError,
    TransientNetworkError,
    ValidationError,
)
from assess.engine.judge import JudgeClient
from assess.models import (
    AnswerPayload,
    ExecutionResult,
    LanguageTemplate,
    Problem,
    ProblemDraft,
    QuestionType,
    RunResult,
    SubmissionRecord,
    SubmissionStatus,
)
from assess.utils import ensure_utc

log = logging.getLogger(__name__)

ResultListener = Callable[[str, RunResult], None]


class WorkspaceView(BaseModel):
    """What the UI renders for one problem."""

    problem_id: str
    question_type: QuestionType
    draft: ProblemDraft
    status: SubmissionStatus
    score: int = 0
    is_completed: bool = False
    submission_synced: bool = True
    server_unavailable: bool = False


class ProblemWorkspace:
    def __init__(
        self,
        ctx: SessionContext,
        problem: Problem,
        judge: JudgeClient,
        executor: Executor,
        autosave_interval: float = AUTOSAVE_INTERVAL_SECONDS,
    ):
        self.ctx = ctx
        self.problem = problem
        self.judge = judge
        self.executor = executor
        self.autosave_interval = autosave_interval

        self._lock = threading.RLock()
        self._draft: ProblemDraft | None = None
        self._dirty = False
        self._submission: SubmissionRecord | None = None
        self._server_unavailable = False
        self._pending_run: Future | None = None
        self._listeners: list[ResultListener] = []
        self._autosave_stop: threading.Event | None = None
        self._closed = False

    @property
    def problem_id(self) -> str:
        return self.problem.id

    @property
    def draft(self) -> ProblemDraft:
        with self._lock:
            if self._draft is None:
                self._draft = self._default_draft()
            return self._draft

    @property
    def submission(self) -> SubmissionRecord | None:
        return self._submission

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    @property
    def is_closed(self) -> bool:
        return self._closed

    # Loading

    def _default_template(self) -> LanguageTemplate | None:
        return self.problem.languages[0] if self.problem.languages else None

    def _default_draft(self) -> ProblemDraft:
        answer = AnswerPayload()
        if self.problem.question_type == QuestionType.CODING:
            template = self._default_template()
            if template is not None:
                answer = AnswerPayload(code=template.default_body(), language=template.name)
        return ProblemDraft(
            problem_id=self.problem.id,
            answer=answer,
            last_saved_at=datetime.min.replace(tzinfo=self.ctx.now().tzinfo),
            source="default",
        )

    def _read_cached_draft(self) -> ProblemDraft | None:
        raw = self.ctx.cache.get(self.ctx.key(self.problem.id, KIND_DRAFT))
        if not isinstance(raw, dict):
            return None
        try:
            draft = ProblemDraft(**raw)
        except (ModelValidationError, ValidationError) as exc:
            log.warning("Discarding unreadable cached draft for %s: %s", self.problem.id, exc)
            return None
        draft.last_saved_at = ensure_utc(draft.last_saved_at)
        return draft

    def _fetch_server_submission(self) -> SubmissionRecord | None:
        try:
            submission = self.ctx.store.get_latest_submission(self.ctx.student_id, self.problem.id)
        except TransientNetworkError as exc:
            log.warning("Latest submission for %s unavailable: %s", self.problem.id, exc)
            self._server_unavailable = True
            return None
        self._server_unavailable = False
        return submission

    def load(self) -> WorkspaceView:
        """Merge cached draft and server submission into the working state."""
        cached = self._read_cached_draft()
        server = self._fetch_server_submission()

        with self._lock:
            if server is not None:
                self._submission = server

            if cached is not None and (
                server is None or cached.last_saved_at > ensure_utc(server.created_at)
            ):
                self._draft = cached
            elif server is not None:
                self._draft = ProblemDraft(
                    problem_id=self.problem.id,
                    answer=server.answer,
                    last_saved_at=ensure_utc(server.created_at),
                    last_run_result=server.test_results,
                    source="server",
                )
            else:
                self._draft = self._default_draft()
            self._dirty = False
            log.debug("Loaded %s from %s", self.problem.id, self._draft.source)
        return self.view()

    # Editing

    def _replace_answer(self, answer: AnswerPayload) -> None:
        current = self.draft
        update: dict[str, object] = {"answer": answer}
        if (answer.code, answer.language) != (current.answer.code, current.answer.language):
            # A run result only describes the program that produced it
            update["last_run_result"] = None
        self._draft = current.model_copy(update=update)

    def update_draft(self, answer: AnswerPayload) -> None:
        """In-memory edit; persisted by ``save`` or the autosave loop."""
        with self._lock:
            self._replace_answer(answer)
            self._dirty = True

    def edit_code(self, body: str) -> None:
        answer = self.draft.answer.model_copy(update={"code": body})
        self.update_draft(answer)

    def save(self, answer: AnswerPayload | None = None) -> ProblemDraft:
        """
        Write the draft to the cache immediately.
        An entry already stamped later than this write is left in place.
        Once the workspace is closed the cache is no longer written.
        """
        with self._lock:
            if answer is not None:
                self._replace_answer(answer)
            if self._closed:
                log.debug("Workspace %s is closed; draft not cached", self.problem.id)
                return self._draft
            draft = self.draft.model_copy(
                update={"last_saved_at": self.ctx.now(), "source": "cache"}
            )
            self._draft = draft
            self._dirty = False

        encoded = draft.model_dump(mode="json")

        def _newest(current: object) -> object:
            if isinstance(current, dict):
                try:
                    existing = ProblemDraft(**current)
                except (ModelValidationError, ValidationError):
                    return encoded
                if ensure_utc(existing.last_saved_at) > draft.last_saved_at:
                    return current
            return encoded

        stored = self.ctx.cache.update(self.ctx.key(self.problem.id, KIND_DRAFT), _newest)
        if stored is not encoded:
            log.info("Kept newer cached draft for %s", self.problem.id)
            with self._lock:
                self._draft = ProblemDraft(**stored)
        return self.draft

    def flush(self) -> ProblemDraft:
        """Persist pending edits, if any, and return the freshest draft."""
        if self._dirty:
            return self.save()
        return self.draft

    def select_choice(self, choice_id: str) -> ProblemDraft:
        """Pick an option of a multiple-choice problem and persist it."""
        if self.problem.question_type != QuestionType.MULTIPLE_CHOICE:
            raise ValidationError("Only multiple-choice problems have choices")
        if self.problem.choice(choice_id) is None:
            raise ValidationError("Invalid choice selected")
        return self.save(AnswerPayload(selected_choice_id=choice_id))

    def switch_language(self, language: str) -> ProblemDraft:
        """
        Replace the draft with ``language``'s default template and persist it.
        In-progress code for the previous language is discarded.
        """
        template = self.problem.language(language)
        if template is None:
            raise ValidationError(f"Language {language} is not available for this problem")
        previous = self.draft.answer.language
        log.info(
            "Switching %s from %s to %s; previous draft discarded",
            self.problem.id,
            previous,
            template.name,
        )
        with self._lock:
            self._draft = self.draft.model_copy(update={"last_run_result": None})
        return self.save(AnswerPayload(code=template.default_body(), language=template.name))

    # Running

    def template(self) -> LanguageTemplate:
        language = self.draft.answer.language
        template = self.problem.language(language) if language else None
        if template is None:
            raise FatalStateError(f"No {language} template for problem {self.problem.id}")
        return template

    def compose(self) -> str:
        """Program sent to the judge: prefix, student body, suffix."""
        return self.template().compose(self.draft.answer.code or "")

    def _check_runnable(self) -> None:
        if self.problem.question_type != QuestionType.CODING:
            raise ValidationError("Only coding problems can be run")
        if self.draft.answer.is_empty_for(QuestionType.CODING):
            raise ValidationError("Please write some code before running")

    def run_code(self, stdin: str | None = None) -> Future:
        """Single non-scoring run against custom input; resolves to ``ExecutionResult``."""
        self._check_runnable()
        program = self.compose()
        language = self.template().name
        return self.executor.submit(self.judge.run, program, language, stdin)

    def run_tests(self) -> Future:
        """
        Run against every test case; resolves to a redacted ``RunResult``.

        Raises:
            RunInProgressError: a previous run for this problem is outstanding.
            ValidationError: no code to run.
        """
        self._check_runnable()
        with self._lock:
            if self._pending_run is not None and not self._pending_run.done():
                raise RunInProgressError("Tests are already running for this problem")
            answer = self.draft.answer
            program = self.compose()
            language = self.template().name
            self._pending_run = self.executor.submit(self._run_suite, program, language, answer)
            return self._pending_run

    def _run_suite(self, program: str, language: str, answer: AnswerPayload) -> RunResult:
        result = self.judge.run_suite(
            program, language, self.problem.test_cases, key=self.problem.id
        ).redacted()
        log.info(
            "Problem %s run: %s (%d/%d)",
            self.problem.id,
            result.status.value,
            result.passed_count,
            result.total_count,
        )
        with self._lock:
            current = self.draft.answer
            if (current.code, current.language) != (answer.code, answer.language):
                log.info("Code for %s changed during the run; result not kept", self.problem.id)
                return result
            self._draft = self.draft.model_copy(update={"last_run_result": result})
        self.save()
        if not self._closed:
            self._notify(result)
        return result

    def wait_for_run(self, timeout: float | None = None) -> bool:
        """Block until an outstanding test run finishes; False if it is still going."""
        with self._lock:
            pending = self._pending_run
        if pending is None:
            return True
        done, _ = wait([pending], timeout=timeout)
        if not done:
            log.warning("Test run for %s still outstanding after %ss", self.problem.id, timeout)
        return bool(done)

    def judge_current(self, timeout: float | None = None) -> RunResult:
        """
        Run the suite on the code as it stands now and wait for the result,
        after letting any run already in flight finish.

        Raises:
            ValidationError: nothing to run.
            concurrent.futures.TimeoutError: the judge did not answer in time.
        """
        self.wait_for_run(timeout)
        return self.run_tests().result(timeout)

    def on_result(self, listener: ResultListener) -> None:
        """Subscribe to new run results."""
        self._listeners.append(listener)

    def _notify(self, result: RunResult) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.problem.id, result)
            except Exception:
                log.exception("Result listener failed for %s", self.problem.id)

    # Server state

    def apply_submission(self, submission: SubmissionRecord) -> None:
        """Adopt a submission unless the one already held is newer."""
        with self._lock:
            current = self._submission
            if current is not None and ensure_utc(current.created_at) > ensure_utc(
                submission.created_at
            ):
                log.info("Ignoring stale submission response for %s", self.problem.id)
                return
            self._submission = submission

    def status(self) -> SubmissionStatus:
        if self._submission is not None:
            return self._submission.status
        result = self.draft.last_run_result
        if result is not None:
            return result.status
        return SubmissionStatus.PENDING

    def view(self) -> WorkspaceView:
        submission = self._submission
        return WorkspaceView(
            problem_id=self.problem.id,
            question_type=self.problem.question_type,
            draft=self.draft,
            status=self.status(),
            score=submission.score if submission else 0,
            is_completed=bool(submission and submission.status == SubmissionStatus.COMPLETED),
            submission_synced=submission.synced if submission else True,
            server_unavailable=self._server_unavailable,
        )

    # Autosave

    def start_autosave(self) -> None:
        """Persist dirty drafts every ``autosave_interval`` seconds on a daemon thread."""
        if self._autosave_stop is not None:
            return
        stop = threading.Event()
        self._autosave_stop = stop

        def _worker() -> None:
            while not stop.wait(self.autosave_interval):
                if self._dirty:
                    try:
                        self.save()
                    except OSError as exc:
                        log.warning("Autosave failed for %s: %s", self.problem.id, exc)

        thread = threading.Thread(
            target=_worker,
            name=f"autosave_{self.problem.id}",
            daemon=True,
        )
        thread.start()

    def stop_autosave(self) -> None:
        if self._autosave_stop is not None:
            self._autosave_stop.set()
            self._autosave_stop = None

    def close(self) -> None:
        """Stop autosave and any further cache writes, late run results included."""
        self.stop_autosave()
        with self._lock:
            self._closed = True
