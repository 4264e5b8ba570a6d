"""
Ordered strategies for obtaining the attempt when a session starts.

Each strategy either returns an ``AttemptRecord`` or ``None`` (nothing found),
or raises. ``acquire_attempt`` walks the list, giving every strategy its own
timeout, and records which one won.
"""
from __future__ import annotations

import logging
import uuid
from concurrent.futures import Executor, ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import timedelta

from pydantic import ValidationError as ModelValidationError

from assess.config import ATTEMPT_STRATEGY_TIMEOUT_SECONDS
from assess.engine.context import SessionContext
from assess.engine.errors import (
    AssessError,
    AttemptAlreadyExistsError,
    FatalStateError,
)
from assess.models import AttemptCreate, AttemptRecord

log = logging.getLogger(__name__)


class AttemptStrategy:
    name = "base"

    def acquire(self, ctx: SessionContext) -> AttemptRecord | None:
        raise NotImplementedError

    def _create_payload(self, ctx: SessionContext) -> AttemptCreate:
        return AttemptCreate(
            student_id=ctx.student_id,
            assessment_id=ctx.assessment_id,
            duration_minutes=ctx.assessment.duration_minutes,
            start_time=ctx.now(),
            creation_strategy=self.name,
        )


class CachedAttemptStrategy(AttemptStrategy):
    """Attempt mirrored into the device cache by an earlier session."""

    name = "cache"

    def acquire(self, ctx: SessionContext) -> AttemptRecord | None:
        raw = ctx.cache.get(ctx.attempt_key())
        if not isinstance(raw, dict):
            return None
        try:
            attempt = AttemptRecord(**raw)
        except ModelValidationError as exc:
            log.warning("Ignoring unreadable cached attempt: %s", exc)
            return None
        if attempt.student_id != ctx.student_id or attempt.assessment_id != ctx.assessment_id:
            return None
        return attempt


class StoreLookupStrategy(AttemptStrategy):
    """Existing attempt on the server."""

    name = "lookup"

    def acquire(self, ctx: SessionContext) -> AttemptRecord | None:
        return ctx.store.get_attempt(ctx.student_id, ctx.assessment_id)


class StoreCreateStrategy(AttemptStrategy):
    """Primary path: plain create; a concurrent create counts as success."""

    name = "create"

    def acquire(self, ctx: SessionContext) -> AttemptRecord | None:
        try:
            return ctx.store.create_attempt(self._create_payload(ctx))
        except AttemptAlreadyExistsError:
            log.info("Attempt already exists, reading it back")
            return ctx.store.get_attempt(ctx.student_id, ctx.assessment_id)


class StoreEnsureStrategy(AttemptStrategy):
    """Secondary path: idempotent get-or-create."""

    name = "ensure"

    def acquire(self, ctx: SessionContext) -> AttemptRecord | None:
        return ctx.store.ensure_attempt(self._create_payload(ctx))


class LocalAttemptStrategy(AttemptStrategy):
    """Last resort: an unpersisted attempt so the student can keep working."""

    name = "local"

    def acquire(self, ctx: SessionContext) -> AttemptRecord | None:
        start = ctx.now()
        duration = ctx.assessment.duration_minutes
        return AttemptRecord(
            id=f"local-{uuid.uuid4().hex}",
            student_id=ctx.student_id,
            assessment_id=ctx.assessment_id,
            start_time=start,
            end_time=start + timedelta(minutes=duration),
            duration_minutes=duration,
            creation_strategy=self.name,
            is_local=True,
        )


def default_strategies() -> list[AttemptStrategy]:
    return [
        StoreLookupStrategy(),
        CachedAttemptStrategy(),
        StoreCreateStrategy(),
        StoreEnsureStrategy(),
        LocalAttemptStrategy(),
    ]


def acquire_attempt(
    ctx: SessionContext,
    strategies: list[AttemptStrategy] | None = None,
    timeout: float = ATTEMPT_STRATEGY_TIMEOUT_SECONDS,
    executor: Executor | None = None,
) -> AttemptRecord:
    """
    Return the first attempt any strategy yields.

    Raises:
        FatalStateError: the assessment does not exist; no later strategy is tried.
    """
    strategies = strategies if strategies is not None else default_strategies()
    own_executor = executor is None
    if own_executor:
        executor = ThreadPoolExecutor(
            max_workers=max(1, len(strategies)),
            thread_name_prefix="attempt_strategy",
        )
    try:
        for strategy in strategies:
            future = executor.submit(strategy.acquire, ctx)
            try:
                attempt = future.result(timeout=timeout)
            except FatalStateError:
                raise
            except FutureTimeout:
                log.warning("Attempt strategy %s timed out after %.1fs", strategy.name, timeout)
                continue
            except AssessError as exc:
                log.warning("Attempt strategy %s failed: %s", strategy.name, exc)
                continue
            if attempt is None:
                log.debug("Attempt strategy %s found nothing", strategy.name)
                continue
            if attempt.creation_strategy is None:
                attempt = attempt.model_copy(update={"creation_strategy": strategy.name})
            log.info("Attempt %s acquired via %s", attempt.id, strategy.name)
            return attempt
    finally:
        if own_executor:
            # A timed out strategy may still be blocked on the network
            executor.shutdown(wait=False)
    raise FatalStateError("No attempt strategy produced an attempt")
