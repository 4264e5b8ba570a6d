import base64
import threading

import pytest
import requests

from assess.engine.errors import JudgeUnavailableError, RunInProgressError, ValidationError
from assess.engine.judge import (
    JudgeClient,
    JudgeService,
    language_id,
    map_judge_status,
    normalize_stdin,
)
from assess.models import ProblemTestCase, SubmissionStatus


def _b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


class FakeResponse:
    def __init__(self, payload=None, status_code=200):
        self._payload = payload or {}
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, results):
        self.headers = {}
        self.calls = []
        self.results = list(results)

    def post(self, url, params=None, json=None, timeout=None):
        self.calls.append(("post", url, json))
        return FakeResponse({"token": "tok-1"})

    def get(self, url, params=None, timeout=None):
        self.calls.append(("get", url, params))
        return FakeResponse(self.results.pop(0))


def _service(session, **kwargs) -> JudgeService:
    return JudgeService(
        "http://judge.test/submissions",
        session=session,
        poll_interval=0,
        sleep=lambda _: None,
        **kwargs,
    )


def test_map_judge_status() -> None:
    assert map_judge_status(1) == SubmissionStatus.RUNNING
    assert map_judge_status(2) == SubmissionStatus.RUNNING
    assert map_judge_status(3) == SubmissionStatus.COMPLETED
    assert map_judge_status(4) == SubmissionStatus.FAILED
    assert map_judge_status(6) == SubmissionStatus.FAILED
    assert map_judge_status(11) == SubmissionStatus.FAILED
    assert map_judge_status(13) == SubmissionStatus.ERROR
    assert map_judge_status(14) == SubmissionStatus.ERROR


def test_language_id() -> None:
    assert language_id("python") == 71
    assert language_id("C++") == 54
    with pytest.raises(ValidationError):
        language_id("cobol")


def test_normalize_stdin() -> None:
    assert normalize_stdin('"hello world"') == "hello world"
    assert normalize_stdin('"say \\"hi\\""') == "say hi"
    assert normalize_stdin("1 2\n3") == "1 2\n3"
    assert normalize_stdin("") is None


def test_execute_polls_until_finished() -> None:
    session = FakeSession(
        [
            {"status": {"id": 1}},
            {"status": {"id": 2}},
            {
                "status": {"id": 3},
                "stdout": _b64("3\n"),
                "time": "0.015",
                "memory": 3100,
            },
        ]
    )
    result = _service(session).execute("^print(3)", "Python", "1 2")

    assert result.status == SubmissionStatus.COMPLETED
    assert result.description == "Accepted"
    assert result.stdout == "3\n"
    assert result.time_ms == pytest.approx(15.0)
    assert result.memory_kb == 3100

    method, url, body = session.calls[0]
    assert method == "post"
    assert body["language_id"] == 71
    assert base64.b64decode(body["source_code"]).decode() == "print(3)"
    assert base64.b64decode(body["stdin"]).decode() == "1 2"
    assert session.calls[1][1] == "http://judge.test/submissions/tok-1"


def test_execute_reports_compile_output_as_stderr() -> None:
    session = FakeSession([{"status": {"id": 6}, "compile_output": _b64("syntax error")}])
    result = _service(session).execute("oops", "C", None)
    assert result.status == SubmissionStatus.FAILED
    assert result.description == "Compilation Error"
    assert result.stderr == "syntax error"


def test_execute_gives_up_after_max_polls() -> None:
    session = FakeSession([{"status": {"id": 1}}] * 3)
    with pytest.raises(JudgeUnavailableError):
        _service(session, max_polls=3).execute("print(1)", "Python")


def test_execute_maps_transport_failures() -> None:
    class BrokenSession(FakeSession):
        def post(self, url, params=None, json=None, timeout=None):
            raise requests.ConnectionError("refused")

    with pytest.raises(JudgeUnavailableError):
        _service(BrokenSession([])).execute("print(1)", "Python")


def test_unsupported_language_sends_nothing() -> None:
    session = FakeSession([])
    with pytest.raises(ValidationError):
        _service(session).execute("print(1)", "Brainfuck")
    assert session.calls == []


CASES = [
    ProblemTestCase(input="1 2", output="3"),
    ProblemTestCase(input="5 5", output="10"),
    ProblemTestCase(input="100 200", output="300", is_hidden=True),
]


def test_run_suite_all_passed(judge_service) -> None:
    result = JudgeClient(judge_service).run_suite("return sum(nums)", "Python", CASES)
    assert result.status == SubmissionStatus.COMPLETED
    assert (result.passed_count, result.total_count) == (3, 3)
    assert result.execution_time_ms == 12.0
    assert result.memory_kb == 2048


def test_run_suite_wrong_answer_is_failed(judge_service) -> None:
    judge_service.solver = lambda source, stdin: "3"
    result = JudgeClient(judge_service).run_suite("x", "Python", CASES)
    assert result.status == SubmissionStatus.FAILED
    assert result.passed_count == 1
    assert result.error_message == "Passed 1/3 tests"
    assert result.cases[1].status_description == "Wrong Answer"


def test_run_suite_judge_outage_is_error(judge_service) -> None:
    judge_service.unavailable = True
    result = JudgeClient(judge_service).run_suite("sum(nums)", "Python", CASES)
    assert result.status == SubmissionStatus.ERROR
    assert result.passed_count == 0
    assert result.error_message == "judge offline"
    assert all(case.judge_error for case in result.cases)


def test_run_suite_without_cases_is_error(judge_service) -> None:
    result = JudgeClient(judge_service).run_suite("sum(nums)", "Python", [])
    assert result.status == SubmissionStatus.ERROR
    assert result.error_message == "No test cases configured"


def test_run_returns_error_on_outage(judge_service) -> None:
    judge_service.unavailable = True
    result = JudgeClient(judge_service).run("print(1)", "Python", "")
    assert result.status == SubmissionStatus.ERROR
    assert "judge offline" in result.stderr


def test_run_suite_is_single_flight_per_key(judge_service) -> None:
    judge_service.gate = threading.Event()
    client = JudgeClient(judge_service)
    first = threading.Thread(
        target=client.run_suite, args=("sum(nums)", "Python", CASES), kwargs={"key": "p1"}
    )
    first.start()
    try:
        for _ in range(100):
            if judge_service.calls:
                break
            threading.Event().wait(0.01)
        with pytest.raises(RunInProgressError):
            client.run_suite("sum(nums)", "Python", CASES, key="p1")
        # Other problems are not blocked
        assert client.run_suite("x", "Python", [], key="p2").total_count == 0
    finally:
        judge_service.gate.set()
        first.join()
    assert client.run_suite("sum(nums)", "Python", CASES, key="p1").passed_count == 3
