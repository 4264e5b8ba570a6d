"""Explicit per-attempt session context shared by the engine components."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from assess.engine.cache import ATTEMPT_SCOPE, KIND_ATTEMPT, CacheKey, DurableCache
from assess.models import Assessment, AttemptRecord
from assess.store import PersistentStore
from assess.utils import utc_now


@dataclass
class SessionContext:
    """
    Everything one student's attempt needs, owned by the attempt controller
    and handed to workspaces and the reconciler by reference.
    """

    student_id: str
    assessment: Assessment
    store: PersistentStore
    cache: DurableCache
    clock: Callable[[], datetime] = field(default=utc_now)
    attempt: AttemptRecord | None = None

    @property
    def assessment_id(self) -> str:
        return self.assessment.id

    def now(self) -> datetime:
        return self.clock()

    def key(self, problem_id: str, kind: str) -> CacheKey:
        return CacheKey(self.assessment.id, problem_id, kind)

    def attempt_key(self) -> CacheKey:
        return CacheKey(self.assessment.id, ATTEMPT_SCOPE, KIND_ATTEMPT)
