"""
Attempt controller: the timer-driven state machine for one attempt.

    NOT_STARTED -> ACTIVE -> EXPIRING -> FINALIZING -> COMPLETED
    FINALIZING -> FINALIZE_FAILED_LOCAL (retries exhausted)

The controller owns the session context, the problem workspaces and the only
persistent tick loop. ``finalize`` is latched: however many ticks or clicks
arrive after expiry, the terminal transition runs once.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime
from enum import Enum
from typing import Callable

from pydantic import BaseModel

from assess.config import (
    ATTEMPT_STRATEGY_TIMEOUT_SECONDS,
    AUTOSAVE_INTERVAL_SECONDS,
    EXPIRING_THRESHOLD_SECONDS,
    FINALIZE_MAX_ATTEMPTS,
    RETRY_BASE_DELAY_SECONDS,
    RETRY_MAX_DELAY_SECONDS,
    RUN_WAIT_TIMEOUT_SECONDS,
    TICK_INTERVAL_SECONDS,
)
from assess.engine.cache import KIND_ATTEMPT
from assess.engine.context import SessionContext
from assess.engine.errors import FatalStateError, ValidationError
from assess.engine.integrity import IntegrityMonitor
from assess.engine.judge import JudgeClient
from assess.engine.reconciler import SubmissionReconciler, SubmitOutcome, validate
from assess.engine.retry import backoff_delay
from assess.engine.scoring import ScoringAggregator
from assess.engine.strategies import AttemptStrategy, acquire_attempt
from assess.engine.workspace import ProblemWorkspace
from assess.models import (
    AnswerPayload,
    AssessmentSummary,
    AttemptCreate,
    AttemptRecord,
    AttemptUpdate,
    RunResult,
    SubmissionStatus,
)
from assess.utils import ensure_utc, format_remaining

log = logging.getLogger(__name__)


class AttemptState(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    ACTIVE = "ACTIVE"
    EXPIRING = "EXPIRING"
    FINALIZING = "FINALIZING"
    COMPLETED = "COMPLETED"
    FINALIZE_FAILED_LOCAL = "FINALIZE_FAILED_LOCAL"

    @property
    def is_open(self) -> bool:
        return self in (AttemptState.ACTIVE, AttemptState.EXPIRING)

    @property
    def is_terminal(self) -> bool:
        return self in (AttemptState.COMPLETED, AttemptState.FINALIZE_FAILED_LOCAL)


class TimerSnapshot(BaseModel):
    remaining_seconds: int
    elapsed_percent: float
    state: AttemptState
    formatted: str


StateListener = Callable[[AttemptState, AttemptState], None]


class AttemptController:
    def __init__(
        self,
        ctx: SessionContext,
        judge: JudgeClient,
        reconciler: SubmissionReconciler | None = None,
        scoring: ScoringAggregator | None = None,
        integrity: IntegrityMonitor | None = None,
        strategies: list[AttemptStrategy] | None = None,
        executor: Executor | None = None,
        autosave_interval: float = AUTOSAVE_INTERVAL_SECONDS,
        tick_interval: float = TICK_INTERVAL_SECONDS,
        expiring_threshold: int = EXPIRING_THRESHOLD_SECONDS,
        strategy_timeout: float = ATTEMPT_STRATEGY_TIMEOUT_SECONDS,
        finalize_max_attempts: int = FINALIZE_MAX_ATTEMPTS,
        retry_base_delay: float = RETRY_BASE_DELAY_SECONDS,
        retry_max_delay: float = RETRY_MAX_DELAY_SECONDS,
        run_wait_timeout: float = RUN_WAIT_TIMEOUT_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ctx = ctx
        self.judge = judge
        self.scoring = scoring or ScoringAggregator()
        self.reconciler = reconciler or SubmissionReconciler(ctx, self.scoring, sleep=sleep)
        self.integrity = integrity
        self.strategies = strategies
        self._own_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(thread_name_prefix="attempt")
        self.autosave_interval = autosave_interval
        self.tick_interval = tick_interval
        self.expiring_threshold = expiring_threshold
        self.strategy_timeout = strategy_timeout
        self.finalize_max_attempts = max(1, finalize_max_attempts)
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.run_wait_timeout = run_wait_timeout
        self.sleep = sleep

        self.workspaces: dict[str, ProblemWorkspace] = {}
        self.problem_status: dict[str, SubmissionStatus] = {}
        self.summary: AssessmentSummary | None = None
        self.is_time_expired = False

        self._state = AttemptState.NOT_STARTED
        self._state_lock = threading.RLock()
        self._start_lock = threading.Lock()
        self._finalize_lock = threading.Lock()
        self._finalize_future: Future | None = None
        self._finalized_at: datetime | None = None
        self._submitted: set[str] = set()
        self._state_listeners: list[StateListener] = []
        self._timer_stop: threading.Event | None = None

    @property
    def state(self) -> AttemptState:
        return self._state

    @property
    def attempt(self) -> AttemptRecord | None:
        return self.ctx.attempt

    # State

    def on_state_change(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def _set_state(self, new: AttemptState) -> None:
        with self._state_lock:
            old = self._state
            if old == new:
                return
            self._state = new
        log.info("Attempt state %s -> %s", old.value, new.value)
        for listener in list(self._state_listeners):
            try:
                listener(old, new)
            except Exception:
                log.exception("State listener failed")

    # Start

    def start(self) -> AttemptRecord:
        """
        Obtain the attempt and open a workspace per problem.
        Calling it again returns the attempt already held.
        """
        with self._start_lock:
            if self.ctx.attempt is not None:
                return self.ctx.attempt

            attempt = acquire_attempt(
                self.ctx,
                self.strategies,
                timeout=self.strategy_timeout,
            )
            self.ctx.attempt = attempt
            self._mirror_attempt()
            self._open_workspaces()

            if attempt.is_completed:
                self.summary = attempt.summary
                self._set_state(AttemptState.COMPLETED)
            else:
                self._set_state(AttemptState.ACTIVE)
            return attempt

    def _mirror_attempt(self) -> None:
        """Keep a copy on the device so a reload resumes the same attempt."""
        self.ctx.cache.set(self.ctx.attempt_key(), self.ctx.attempt.model_dump(mode="json"))

    def _open_workspaces(self) -> None:
        for problem in self.ctx.assessment.problems:
            workspace = ProblemWorkspace(
                self.ctx,
                problem,
                self.judge,
                self.executor,
                autosave_interval=self.autosave_interval,
            )
            view = workspace.load()
            workspace.on_result(self._on_run_result)
            self.workspaces[problem.id] = workspace
            self.problem_status[problem.id] = view.status
            if self.autosave_interval > 0 and not self.ctx.attempt.is_completed:
                workspace.start_autosave()

    def _on_run_result(self, problem_id: str, result: RunResult) -> None:
        self.problem_status[problem_id] = result.status

    def workspace(self, problem_id: str) -> ProblemWorkspace:
        workspace = self.workspaces.get(problem_id)
        if workspace is None:
            raise FatalStateError(f"Problem {problem_id} not found")
        return workspace

    # Timer

    def remaining_seconds(self, now: datetime | None = None) -> float:
        attempt = self.ctx.attempt
        if attempt is None:
            return 0.0
        now = now or self.ctx.now()
        return (ensure_utc(attempt.end_time) - ensure_utc(now)).total_seconds()

    def snapshot(self, now: datetime | None = None) -> TimerSnapshot:
        attempt = self.ctx.attempt
        if attempt is None:
            return TimerSnapshot(
                remaining_seconds=0,
                elapsed_percent=0.0,
                state=self._state,
                formatted=format_remaining(0),
            )
        now = now or self.ctx.now()
        remaining = max(0, int(self.remaining_seconds(now)))
        if self._state.is_terminal:
            remaining = 0
        total = (ensure_utc(attempt.end_time) - ensure_utc(attempt.start_time)).total_seconds()
        elapsed = total - remaining
        percent = 100.0 if total <= 0 else min(100.0, max(0.0, elapsed / total * 100))
        return TimerSnapshot(
            remaining_seconds=remaining,
            elapsed_percent=round(percent, 2),
            state=self._state,
            formatted=format_remaining(remaining),
        )

    def tick(self, now: datetime | None = None) -> TimerSnapshot:
        """Recompute the countdown and fire the timeout finalize when it runs out."""
        now = now or self.ctx.now()
        if self._state.is_open:
            remaining = self.remaining_seconds(now)
            if remaining <= 0:
                self.finalize(is_time_expired=True)
            elif remaining <= self.expiring_threshold:
                self._set_state(AttemptState.EXPIRING)
        return self.snapshot(now)

    def start_timer(self) -> None:
        """Tick every ``tick_interval`` seconds on a daemon thread until terminal."""
        if self._timer_stop is not None:
            return
        stop = threading.Event()
        self._timer_stop = stop

        def _worker() -> None:
            while not stop.wait(self.tick_interval):
                try:
                    self.tick()
                except Exception:
                    log.exception("Attempt tick failed")
                if self._state.is_terminal:
                    break

        thread = threading.Thread(target=_worker, name="attempt_timer", daemon=True)
        thread.start()

    def stop_timer(self) -> None:
        if self._timer_stop is not None:
            self._timer_stop.set()
            self._timer_stop = None

    # Per-problem submit

    def submit_problem(self, problem_id: str, answer: AnswerPayload | None = None) -> SubmitOutcome:
        """
        Explicit submit of one problem while the attempt is open.
        Coding answers are judged again so the score always belongs to the
        code being submitted.
        """
        workspace = self.workspace(problem_id)
        if not self._state.is_open:
            return SubmitOutcome(ok=False, message="This assessment is no longer accepting answers")
        draft = workspace.save(answer) if answer is not None else workspace.flush()
        result = draft.last_run_result
        if workspace.problem.is_coding and validate(workspace.problem, draft.answer).ok:
            try:
                result = workspace.judge_current(self.run_wait_timeout)
            except FutureTimeout:
                return SubmitOutcome(ok=False, message="Tests are still running; submit again shortly")
            except ValidationError as exc:
                return SubmitOutcome(ok=False, message=str(exc))
        outcome = self.reconciler.submit(problem_id, draft.answer, result)
        if outcome.submission is not None:
            workspace.apply_submission(outcome.submission)
            self.problem_status[problem_id] = outcome.submission.status
        return outcome

    # Finalize

    def finalize(self, is_time_expired: bool = False) -> Future:
        """
        Lock in every answer, score the attempt and mark it completed.

        Runs in the background; the returned future resolves to the
        ``AssessmentSummary``. Later calls return the same future.
        """
        with self._finalize_lock:
            if self._finalize_future is not None:
                return self._finalize_future
            if self._state == AttemptState.NOT_STARTED:
                raise FatalStateError("Attempt has not been started")
            if self._state.is_terminal:
                done: Future = Future()
                done.set_result(self.summary)
                self._finalize_future = done
                return done

            self.is_time_expired = is_time_expired
            self._finalized_at = self.ctx.now()
            self._set_state(AttemptState.FINALIZING)
            log.info(
                "Finalizing attempt %s (%s)",
                self.ctx.attempt.id,
                "time expired" if is_time_expired else "manual",
            )
            self._finalize_future = self.executor.submit(self._finalize_with_retry)
            return self._finalize_future

    def _finalize_with_retry(self) -> AssessmentSummary:
        for attempt in range(1, self.finalize_max_attempts + 1):
            try:
                return self._finalize_once()
            except FatalStateError as exc:
                log.error("Finalize cannot complete: %s", exc)
                break
            except Exception as exc:
                if attempt >= self.finalize_max_attempts:
                    log.warning("Finalize failed after %d attempts: %s", attempt, exc)
                    break
                delay = backoff_delay(attempt, self.retry_base_delay, self.retry_max_delay)
                log.info(
                    "Finalize attempt %d/%d failed (%s); retrying in %.2fs",
                    attempt,
                    self.finalize_max_attempts,
                    exc,
                    delay,
                )
                if delay:
                    self.sleep(delay)
        return self._finalize_locally()

    def _finalize_once(self) -> AssessmentSummary:
        finished_at = self._finalized_at
        for workspace in self.workspaces.values():
            workspace.stop_autosave()
            workspace.wait_for_run(self.run_wait_timeout)
            workspace.flush()
            workspace.close()

        for problem_id, workspace in self.workspaces.items():
            if problem_id in self._submitted:
                continue
            draft = workspace.draft
            outcome = self.reconciler.submit(
                problem_id,
                draft.answer,
                draft.last_run_result,
                is_time_expired=self.is_time_expired,
            )
            self._submitted.add(problem_id)
            if outcome.submission is not None:
                workspace.apply_submission(outcome.submission)
                self.problem_status[problem_id] = outcome.submission.status

        confirmed = self.reconciler.fetch_confirmed()
        summary = self.scoring.summarize(
            self.ctx.assessment,
            self.reconciler.effective_submissions(confirmed),
            duration_minutes=self._elapsed_minutes(finished_at),
        )

        attempt = self.ctx.attempt
        if attempt.is_local:
            attempt = self._persist_local_attempt(attempt)
        update = AttemptUpdate(
            is_completed=True,
            is_time_expired=self.is_time_expired,
            submitted_at=finished_at,
            end_time=finished_at if self.is_time_expired else None,
            tab_switch_count=self.integrity.tab_switch_count if self.integrity else None,
            summary=summary,
        )
        self.ctx.attempt = self.ctx.store.update_attempt(attempt.id, update)
        self._mirror_attempt()
        self._clear_transient_cache()

        self.summary = summary
        self._set_state(AttemptState.COMPLETED)
        log.info(
            "Attempt %s completed: %d/%d",
            self.ctx.attempt.id,
            summary.total_score,
            summary.max_score,
        )
        return summary

    def _persist_local_attempt(self, attempt: AttemptRecord) -> AttemptRecord:
        persisted = self.ctx.store.ensure_attempt(
            AttemptCreate(
                student_id=attempt.student_id,
                assessment_id=attempt.assessment_id,
                duration_minutes=attempt.duration_minutes,
                start_time=attempt.start_time,
                creation_strategy=attempt.creation_strategy,
            )
        )
        log.info("Local attempt %s persisted as %s", attempt.id, persisted.id)
        self.ctx.attempt = persisted
        return persisted

    def _elapsed_minutes(self, finished_at: datetime) -> int:
        attempt = self.ctx.attempt
        elapsed = (ensure_utc(finished_at) - ensure_utc(attempt.start_time)).total_seconds()
        return max(0, min(attempt.duration_minutes, int(elapsed // 60)))

    def _clear_transient_cache(self) -> None:
        """Drop drafts and markers, keeping the attempt and anything unconfirmed."""
        pending = set(self.reconciler.pending_resync)
        for key in self.ctx.cache.keys():
            if key.assessment_id != self.ctx.assessment_id or key.kind == KIND_ATTEMPT:
                continue
            if key.problem_id in pending:
                continue
            self.ctx.cache.remove(key)

    def _finalize_locally(self) -> AssessmentSummary:
        """Terminal fallback: score what is known locally and keep the cache."""
        records = self.reconciler.records()
        self.summary = self.scoring.summarize(
            self.ctx.assessment,
            records,
            duration_minutes=self._elapsed_minutes(self._finalized_at),
        )
        self.ctx.attempt = self.ctx.attempt.model_copy(update={"summary": self.summary})
        self._mirror_attempt()
        self._set_state(AttemptState.FINALIZE_FAILED_LOCAL)
        log.warning(
            "Attempt %s finalized locally only; answers are kept on this device",
            self.ctx.attempt.id,
        )
        return self.summary

    def close(self) -> None:
        self.stop_timer()
        for workspace in self.workspaces.values():
            workspace.stop_autosave()
        if self._own_executor:
            self.executor.shutdown(wait=False)
