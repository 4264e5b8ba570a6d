from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from pathlib import Path
import threading
import uuid

import pytest
from fastapi.testclient import TestClient

from assess.app import app
from assess.database import build_engine, build_session_factory, get_db, init_db
from assess.engine.cache import DurableCache
from assess.engine.context import SessionContext
from assess.engine.errors import (
    AttemptAlreadyExistsError,
    FatalStateError,
    JudgeUnavailableError,
    TransientNetworkError,
)
from assess.engine.judge import JudgeClient
from assess.models import (
    Assessment,
    AttemptCreate,
    AttemptRecord,
    AttemptUpdate,
    Choice,
    Difficulty,
    ExecutionResult,
    LanguageTemplate,
    Problem,
    ProblemTestCase,
    QuestionType,
    SubmissionFilter,
    SubmissionRecord,
    SubmissionStatus,
    SubmissionUpsert,
)
from assess.services.assessment_service import save_assessment

PREFIX = "import sys"
SUFFIX = "print(solve(list(map(int, sys.stdin.read().split()))))"
STARTER_BODY = "def solve(nums):\n    return 0"


def python_template() -> LanguageTemplate:
    return LanguageTemplate(
        name="Python",
        function_signature="def solve(nums)",
        code_prefix=PREFIX,
        starter_code=f"{PREFIX}\n{STARTER_BODY}\n{SUFFIX}",
        code_suffix=SUFFIX,
    )


def javascript_template() -> LanguageTemplate:
    return LanguageTemplate(
        name="JavaScript",
        code_prefix="const lines = require('fs').readFileSync(0, 'utf8');",
        starter_code=(
            "const lines = require('fs').readFileSync(0, 'utf8');\n"
            "function solve(nums) {\n  return 0;\n}\n"
            "console.log(solve(lines.split(/\\s+/).map(Number)));"
        ),
        code_suffix="console.log(solve(lines.split(/\\s+/).map(Number)));",
    )


def make_assessment() -> Assessment:
    """Two coding problems worth 10 and 20 plus three 1-point MCQs."""
    return Assessment(
        id="asmt-1",
        title="Weekly Assessment",
        duration_minutes=60,
        problems=[
            Problem(
                id="sum-pair",
                title="Sum of a pair",
                question_type=QuestionType.CODING,
                difficulty=Difficulty.EASY,
                score=10,
                test_cases=[
                    ProblemTestCase(input="1 2", output="3"),
                    ProblemTestCase(input="5 5", output="10"),
                    ProblemTestCase(input="100 200", output="300", is_hidden=True),
                ],
                languages=[python_template(), javascript_template()],
            ),
            Problem(
                id="sum-list",
                title="Sum of a list",
                question_type=QuestionType.CODING,
                difficulty=Difficulty.MEDIUM,
                score=20,
                test_cases=[
                    ProblemTestCase(input="1 2 3", output="6"),
                    ProblemTestCase(input="4 4", output="8"),
                    ProblemTestCase(input="0", output="0"),
                    ProblemTestCase(input="10 20 30", output="60", is_hidden=True),
                    ProblemTestCase(input="7 7 7 7", output="28", is_hidden=True),
                ],
                languages=[python_template()],
            ),
            *[
                Problem(
                    id=f"mcq-{index}",
                    title=f"Question {index}",
                    question_type=QuestionType.MULTIPLE_CHOICE,
                    score=1,
                    choices=[
                        Choice(id=f"mcq-{index}-a", text="A", is_correct=True),
                        Choice(id=f"mcq-{index}-b", text="B"),
                        Choice(id=f"mcq-{index}-c", text="C"),
                    ],
                )
                for index in range(1, 4)
            ],
        ],
    )


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self.now

    def advance(self, seconds: float) -> datetime:
        with self._lock:
            self.now = self.now + timedelta(seconds=seconds)
            return self.now


def sum_solver(source: str, stdin: str | None) -> str:
    if "sum(nums)" not in source:
        return "0"
    return str(sum(int(part) for part in (stdin or "").split()))


class FakeJudgeService:
    """Judge transport that evaluates programs with a Python callable."""

    def __init__(self, solver=sum_solver):
        self.solver = solver
        self.calls: list[tuple[str, str, str | None]] = []
        self.unavailable = False
        self.gate: threading.Event | None = None
        self._lock = threading.Lock()

    def execute(self, source_code: str, language: str, stdin: str | None = None) -> ExecutionResult:
        with self._lock:
            self.calls.append((source_code, language, stdin))
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.unavailable:
            raise JudgeUnavailableError("judge offline")
        return ExecutionResult(
            status=SubmissionStatus.COMPLETED,
            description="Accepted",
            stdout=self.solver(source_code, stdin) + "\n",
            time_ms=12.0,
            memory_kb=2048,
        )


class InMemoryStore:
    """Persistent store kept in dictionaries, with per-operation outages."""

    def __init__(self, assessment: Assessment, clock: FakeClock):
        self.assessments = {assessment.id: assessment}
        self.clock = clock
        self.attempts: dict[tuple[str, str], AttemptRecord] = {}
        self.submissions: dict[tuple[str, str], SubmissionRecord] = {}
        self.calls: list[str] = []
        self.offline: set[str] = set()
        self._lock = threading.Lock()

    def _enter(self, operation: str) -> None:
        with self._lock:
            self.calls.append(operation)
        if operation in self.offline or "*" in self.offline:
            raise TransientNetworkError(f"{operation}: connection refused")

    def count(self, operation: str) -> int:
        return self.calls.count(operation)

    def get_assessment(self, assessment_id: str) -> Assessment:
        self._enter("get_assessment")
        assessment = self.assessments.get(assessment_id)
        if assessment is None:
            raise FatalStateError("Assessment not found")
        return assessment

    def get_attempt(self, student_id: str, assessment_id: str) -> AttemptRecord | None:
        self._enter("get_attempt")
        return self.attempts.get((student_id, assessment_id))

    def _new_attempt(self, payload: AttemptCreate) -> AttemptRecord:
        assessment = self.assessments.get(payload.assessment_id)
        if assessment is None:
            raise FatalStateError("Assessment not found")
        duration = payload.duration_minutes or assessment.duration_minutes
        start = payload.start_time or self.clock()
        attempt = AttemptRecord(
            id=uuid.uuid4().hex,
            student_id=payload.student_id,
            assessment_id=payload.assessment_id,
            start_time=start,
            end_time=start + timedelta(minutes=duration),
            duration_minutes=duration,
            creation_strategy=payload.creation_strategy,
        )
        self.attempts[(payload.student_id, payload.assessment_id)] = attempt
        return attempt

    def create_attempt(self, payload: AttemptCreate) -> AttemptRecord:
        self._enter("create_attempt")
        if (payload.student_id, payload.assessment_id) in self.attempts:
            raise AttemptAlreadyExistsError("Attempt already exists")
        return self._new_attempt(payload)

    def ensure_attempt(self, payload: AttemptCreate) -> AttemptRecord:
        self._enter("ensure_attempt")
        existing = self.attempts.get((payload.student_id, payload.assessment_id))
        return existing or self._new_attempt(payload)

    def update_attempt(self, attempt_id: str, payload: AttemptUpdate) -> AttemptRecord:
        self._enter("update_attempt")
        for key, attempt in self.attempts.items():
            if attempt.id == attempt_id:
                changes = payload.model_dump(exclude_none=True)
                if payload.summary is not None:
                    changes["summary"] = payload.summary
                if payload.end_time is not None and payload.end_time <= attempt.end_time:
                    changes.pop("end_time")
                updated = attempt.model_copy(update=changes)
                self.attempts[key] = updated
                return updated
        raise FatalStateError("Attempt not found")

    def get_latest_submission(self, student_id: str, problem_id: str) -> SubmissionRecord | None:
        self._enter("get_latest_submission")
        return self.submissions.get((student_id, problem_id))

    def upsert_submission(self, payload: SubmissionUpsert) -> SubmissionRecord:
        self._enter("upsert_submission")
        key = (payload.student_id, payload.problem_id)
        existing = self.submissions.get(key)
        record = SubmissionRecord(
            id=existing.id if existing else uuid.uuid4().hex,
            student_id=payload.student_id,
            problem_id=payload.problem_id,
            assessment_id=payload.assessment_id,
            answer=payload.answer,
            status=payload.status,
            score=payload.score,
            is_correct=payload.is_correct,
            test_results=payload.test_results,
            execution_time_ms=payload.execution_time_ms,
            memory_kb=payload.memory_kb,
            error_message=payload.error_message,
            created_at=self.clock(),
        )
        self.submissions[key] = record
        return record

    def list_submissions(self, filters: SubmissionFilter) -> list[SubmissionRecord]:
        self._enter("list_submissions")
        return [
            record
            for record in self.submissions.values()
            if (not filters.student_id or record.student_id == filters.student_id)
            and (not filters.assessment_id or record.assessment_id == filters.assessment_id)
            and (not filters.problem_ids or record.problem_id in filters.problem_ids)
        ]


@pytest.fixture
def assessment() -> Assessment:
    return make_assessment()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(assessment: Assessment, clock: FakeClock) -> InMemoryStore:
    return InMemoryStore(assessment, clock)


@pytest.fixture
def cache(tmp_path: Path) -> DurableCache:
    return DurableCache(tmp_path / "cache" / "session.json")


@pytest.fixture
def judge_service() -> FakeJudgeService:
    return FakeJudgeService()


@pytest.fixture
def judge(judge_service: FakeJudgeService) -> JudgeClient:
    return JudgeClient(judge_service, max_workers=4)


@pytest.fixture
def executor():
    pool = ThreadPoolExecutor(max_workers=4)
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture
def ctx(assessment, store, cache, clock) -> SessionContext:
    return SessionContext(
        student_id="student-1",
        assessment=assessment,
        store=store,
        cache=cache,
        clock=clock,
    )


@pytest.fixture
def session_factory(tmp_path: Path, assessment: Assessment):
    """SQLite database in ``tmp_path`` seeded with the sample assessment."""
    engine = build_engine(f"sqlite:///{tmp_path / 'assessments.db'}")
    init_db(engine)
    factory = build_session_factory(engine)
    db = factory()
    try:
        save_assessment(db, assessment)
    finally:
        db.close()
    yield factory
    engine.dispose()


@pytest.fixture
def client(session_factory):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
