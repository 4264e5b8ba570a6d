import time

import pytest

from assess.engine.errors import FatalStateError
from assess.engine.strategies import (
    AttemptStrategy,
    CachedAttemptStrategy,
    LocalAttemptStrategy,
    StoreCreateStrategy,
    StoreEnsureStrategy,
    StoreLookupStrategy,
    acquire_attempt,
)
from assess.models import AttemptCreate


class SlowStrategy(AttemptStrategy):
    name = "slow"

    def acquire(self, ctx):
        time.sleep(1)
        return None


def test_primary_create_wins_and_is_recorded(ctx, store) -> None:
    attempt = acquire_attempt(ctx)
    assert attempt.creation_strategy == "create"
    assert not attempt.is_local
    assert store.attempts[("student-1", "asmt-1")].id == attempt.id
    assert attempt.end_time - attempt.start_time == (
        store.attempts[("student-1", "asmt-1")].end_time - attempt.start_time
    )


def test_existing_attempt_is_looked_up(ctx, store) -> None:
    existing = store.create_attempt(
        AttemptCreate(student_id="student-1", assessment_id="asmt-1", duration_minutes=60)
    )
    attempt = acquire_attempt(ctx)
    assert attempt.id == existing.id
    assert store.count("create_attempt") == 1


def test_create_conflict_reads_back_existing(ctx, store) -> None:
    existing = store.create_attempt(
        AttemptCreate(student_id="student-1", assessment_id="asmt-1")
    )
    attempt = acquire_attempt(ctx, [StoreCreateStrategy()])
    assert attempt.id == existing.id


def test_secondary_path_when_create_fails(ctx, store) -> None:
    store.offline.add("create_attempt")
    attempt = acquire_attempt(ctx)
    assert attempt.creation_strategy == "ensure"
    assert store.count("ensure_attempt") == 1


def test_local_attempt_when_store_unreachable(ctx, store, clock) -> None:
    store.offline.add("*")
    attempt = acquire_attempt(ctx)
    assert attempt.is_local
    assert attempt.id.startswith("local-")
    assert attempt.creation_strategy == "local"
    assert attempt.start_time == clock()
    assert attempt.duration_minutes == 60


def test_cached_attempt_resumes_offline(ctx, store) -> None:
    first = acquire_attempt(ctx)
    ctx.cache.set(ctx.attempt_key(), first.model_dump(mode="json"))
    store.offline.add("*")

    resumed = acquire_attempt(ctx)
    assert resumed.id == first.id
    assert resumed.start_time == first.start_time


def test_cached_attempt_for_other_student_is_ignored(ctx) -> None:
    other = LocalAttemptStrategy().acquire(ctx).model_copy(update={"student_id": "someone"})
    ctx.cache.set(ctx.attempt_key(), other.model_dump(mode="json"))
    assert CachedAttemptStrategy().acquire(ctx) is None


def test_each_strategy_has_its_own_timeout(ctx) -> None:
    started = time.monotonic()
    attempt = acquire_attempt(ctx, [SlowStrategy(), LocalAttemptStrategy()], timeout=0.05)
    assert attempt.creation_strategy == "local"
    assert time.monotonic() - started < 0.9


def test_missing_assessment_is_fatal(ctx, store) -> None:
    store.assessments.clear()
    with pytest.raises(FatalStateError):
        acquire_attempt(
            ctx,
            [StoreLookupStrategy(), StoreCreateStrategy(), StoreEnsureStrategy(), LocalAttemptStrategy()],
        )
