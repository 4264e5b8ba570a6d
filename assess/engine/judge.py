"""
Judge client: runs composed programs on a Judge0-compatible execution service.

``JudgeService`` is the raw transport (one program, one stdin). ``JudgeClient``
adds suite execution, output comparison and single-flight protection per key.
The client never assembles programs; callers pass the full source.
"""
from __future__ import annotations

import base64
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable

import requests

from assess.config import (
    JUDGE_API_URL,
    JUDGE_MAX_POLLS,
    JUDGE_MAX_WORKERS,
    JUDGE_POLL_INTERVAL_SECONDS,
    JUDGE_TIMEOUT_SECONDS,
)
from assess.engine.errors import JudgeUnavailableError, RunInProgressError, ValidationError
from assess.models import (
    CaseResult,
    ExecutionResult,
    ProblemTestCase,
    RunResult,
    SubmissionStatus,
)

log = logging.getLogger(__name__)


LANGUAGE_IDS = {
    "C": 50,
    "C++": 54,
    "Java": 62,
    "Python": 71,
    "JavaScript": 63,
    "TypeScript": 74,
    "Ruby": 72,
    "Go": 60,
    "Rust": 73,
}

STATUS_DESCRIPTIONS = {
    1: "In Queue",
    2: "Processing",
    3: "Accepted",
    4: "Wrong Answer",
    5: "Time Limit Exceeded",
    6: "Compilation Error",
    7: "Runtime Error (SIGSEGV)",
    8: "Runtime Error (SIGXFSZ)",
    9: "Runtime Error (SIGFPE)",
    10: "Runtime Error (SIGABRT)",
    11: "Runtime Error (NZEC)",
    12: "Runtime Error (Other)",
    13: "Internal Error",
    14: "Exec Format Error",
}


def map_judge_status(status_id: int) -> SubmissionStatus:
    """Map a judge status id onto the closed submission status."""
    if status_id in (1, 2):
        return SubmissionStatus.RUNNING
    if status_id == 3:
        return SubmissionStatus.COMPLETED
    if 4 <= status_id <= 12:
        # Program compiled/ran and misbehaved: the student's fault
        return SubmissionStatus.FAILED
    return SubmissionStatus.ERROR


def language_id(language: str) -> int:
    """
    Resolve a language name to the judge's id.

    Raises:
        ValidationError: for languages the judge does not run.
    """
    for name, lang_id in LANGUAGE_IDS.items():
        if name.lower() == (language or "").strip().lower():
            return lang_id
    raise ValidationError(f"Unsupported language: {language}")


def normalize_stdin(stdin: str | None) -> str | None:
    """Strip outer quotes (and escaped quotes) from quoted string input."""
    if not stdin:
        return None
    trimmed = stdin.strip()
    if len(trimmed) >= 2 and trimmed.startswith('"') and trimmed.endswith('"'):
        return trimmed[1:-1].replace('\\"', "")
    return stdin


def _decode(value: str | None) -> str | None:
    if not value or not value.strip():
        return None
    try:
        return base64.b64decode(value).decode("utf-8", errors="replace")
    except (ValueError, TypeError):
        return value


def _time_ms(raw: object) -> float | None:
    try:
        return float(raw) * 1000 if raw is not None else None
    except (TypeError, ValueError):
        return None


def outputs_match(actual: str | None, expected: str | None) -> bool:
    """Compare program output with expected output ignoring surrounding whitespace."""
    return (actual or "").strip() == (expected or "").strip()


class JudgeService:
    """HTTP transport to the execution service."""

    def __init__(
        self,
        base_url: str = JUDGE_API_URL,
        session: requests.Session | None = None,
        timeout: float = JUDGE_TIMEOUT_SECONDS,
        max_polls: int = JUDGE_MAX_POLLS,
        poll_interval: float = JUDGE_POLL_INTERVAL_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        self.timeout = timeout
        self.max_polls = max_polls
        self.poll_interval = poll_interval
        self._sleep = sleep

    def _create(self, source_code: str, lang_id: int, stdin: str | None) -> str:
        response = self.session.post(
            self.base_url,
            params={"base64_encoded": "true"},
            json={
                "source_code": base64.b64encode(source_code.encode("utf-8")).decode("ascii"),
                "language_id": lang_id,
                "stdin": (
                    base64.b64encode(stdin.encode("utf-8")).decode("ascii")
                    if stdin is not None
                    else None
                ),
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        token = response.json().get("token")
        if not token:
            raise JudgeUnavailableError("Judge did not return a submission token")
        return token

    def _poll(self, token: str) -> dict:
        for _ in range(self.max_polls):
            self._sleep(self.poll_interval)
            response = self.session.get(
                f"{self.base_url}/{token}",
                params={"base64_encoded": "true"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
            status_id = (payload.get("status") or {}).get("id", 0)
            if status_id >= 3:
                return payload
        raise JudgeUnavailableError("Execution timed out")

    def execute(self, source_code: str, language: str, stdin: str | None = None) -> ExecutionResult:
        """
        Run ``source_code`` once with ``stdin``.

        Raises:
            ValidationError: unsupported language (nothing is sent).
            JudgeUnavailableError: service unreachable, failing, or never finished.
        """
        lang_id = language_id(language)
        if source_code.startswith("^"):
            source_code = source_code[1:]
        try:
            token = self._create(source_code, lang_id, normalize_stdin(stdin))
            payload = self._poll(token)
        except requests.RequestException as exc:
            log.warning("Judge request failed: %s", exc)
            raise JudgeUnavailableError(str(exc)) from exc

        status_id = (payload.get("status") or {}).get("id", 13)
        stdout = _decode(payload.get("stdout"))
        stderr = _decode(payload.get("stderr"))
        compile_output = _decode(payload.get("compile_output"))
        return ExecutionResult(
            status=map_judge_status(status_id),
            description=STATUS_DESCRIPTIONS.get(status_id, "Unknown"),
            stdout=stdout,
            stderr=stderr or compile_output or _decode(payload.get("message")),
            time_ms=_time_ms(payload.get("time")),
            memory_kb=payload.get("memory"),
        )


class JudgeClient:
    """Runs single programs and whole test suites; holds no state across calls."""

    def __init__(self, service: JudgeService | None = None, max_workers: int = JUDGE_MAX_WORKERS):
        self.service = service or JudgeService()
        self.max_workers = max(1, max_workers)
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()

    def run(self, code: str, language: str, stdin: str | None = None) -> ExecutionResult:
        """Single non-scoring execution. Judge outages come back as ERROR, not raised."""
        try:
            return self.service.execute(code, language, stdin)
        except JudgeUnavailableError as exc:
            return ExecutionResult(
                status=SubmissionStatus.ERROR,
                description="Execution Error",
                stderr=str(exc),
            )

    def _run_case(self, code: str, language: str, case: ProblemTestCase) -> CaseResult:
        try:
            result = self.service.execute(code, language, case.input)
        except JudgeUnavailableError as exc:
            return CaseResult(
                input=case.input,
                expected_output=case.output,
                error=str(exc),
                passed=False,
                is_hidden=case.is_hidden,
                status_description="Error",
                judge_error=True,
            )
        passed = result.status == SubmissionStatus.COMPLETED and outputs_match(
            result.stdout, case.output
        )
        description = result.description
        if result.status == SubmissionStatus.COMPLETED and not passed:
            description = STATUS_DESCRIPTIONS[4]
        return CaseResult(
            input=case.input,
            expected_output=case.output,
            actual_output=result.stdout,
            error=result.stderr,
            passed=passed,
            is_hidden=case.is_hidden,
            status_description=description,
            execution_time_ms=result.time_ms,
            memory_kb=result.memory_kb,
            judge_error=result.status == SubmissionStatus.ERROR,
        )

    def run_suite(
        self,
        code: str,
        language: str,
        test_cases: Iterable[ProblemTestCase],
        key: str | None = None,
    ) -> RunResult:
        """
        Run ``code`` against every case, visible and hidden.

        Raises:
            RunInProgressError: another suite run for ``key`` is outstanding.
            ValidationError: unsupported language.
        """
        cases = list(test_cases)
        language_id(language)
        if key is not None:
            with self._lock:
                if key in self._in_flight:
                    raise RunInProgressError(f"Tests are already running for {key}")
                self._in_flight.add(key)
        try:
            return self._run_suite(code, language, cases)
        finally:
            if key is not None:
                with self._lock:
                    self._in_flight.discard(key)

    def _run_suite(self, code: str, language: str, cases: list[ProblemTestCase]) -> RunResult:
        if not cases:
            return RunResult(
                status=SubmissionStatus.ERROR,
                error_message="No test cases configured",
            )

        workers = min(self.max_workers, len(cases))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="judge") as pool:
            results = list(pool.map(lambda case: self._run_case(code, language, case), cases))

        passed = sum(1 for r in results if r.passed)
        judge_errors = [r for r in results if r.judge_error]
        output_failures = [r for r in results if not r.passed and not r.judge_error]

        if passed == len(results):
            status = SubmissionStatus.COMPLETED
        elif judge_errors and not output_failures:
            status = SubmissionStatus.ERROR
        else:
            status = SubmissionStatus.FAILED

        times = [r.execution_time_ms for r in results if r.execution_time_ms is not None]
        memory = [r.memory_kb for r in results if r.memory_kb is not None]
        error_message = None
        if status == SubmissionStatus.ERROR:
            error_message = judge_errors[0].error or "Judge unavailable"
        elif output_failures:
            error_message = f"Passed {passed}/{len(results)} tests"

        if judge_errors:
            log.warning("%d of %d cases hit judge errors", len(judge_errors), len(results))

        return RunResult(
            status=status,
            passed_count=passed,
            total_count=len(results),
            cases=results,
            execution_time_ms=max(times) if times else None,
            memory_kb=max(memory) if memory else None,
            error_message=error_message,
        )
