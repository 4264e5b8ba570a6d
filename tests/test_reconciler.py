from datetime import timedelta

import pytest

from assess.engine.cache import KIND_RESYNC
from assess.engine.errors import FatalStateError, TransientNetworkError
from assess.engine.reconciler import SubmissionReconciler, validate
from assess.models import (
    AnswerPayload,
    CaseResult,
    RunResult,
    SubmissionStatus,
)

PYTHON_ANSWER = AnswerPayload(code="def solve(nums):\n    return sum(nums)", language="Python")


def _reconciler(ctx) -> SubmissionReconciler:
    return SubmissionReconciler(ctx, retry_attempts=3, base_delay=0, sleep=lambda _: None)


def _result(passed: int, total: int, hidden_output="secret") -> RunResult:
    cases = [
        CaseResult(
            input="in",
            expected_output="out",
            actual_output="out" if index < passed else "bad",
            passed=index < passed,
        )
        for index in range(total - 1)
    ]
    cases.append(
        CaseResult(
            input="hidden in",
            expected_output=hidden_output,
            actual_output=hidden_output,
            passed=passed == total,
            is_hidden=True,
        )
    )
    return RunResult(
        status=SubmissionStatus.COMPLETED if passed == total else SubmissionStatus.FAILED,
        passed_count=passed,
        total_count=total,
        cases=cases,
    )


def test_validate_reports_missing_answers(assessment) -> None:
    coding = assessment.problem("sum-pair")
    mcq = assessment.problem("mcq-1")
    assert validate(coding, PYTHON_ANSWER).ok
    assert not validate(coding, AnswerPayload(code="  ", language="Python")).ok
    assert not validate(coding, AnswerPayload(code="x", language="Haskell")).ok
    assert not validate(mcq, AnswerPayload()).ok
    assert validate(mcq, AnswerPayload(selected_choice_id="mcq-1-b")).ok
    assert validate(mcq, AnswerPayload(selected_choice_id="nope")).message == (
        "Invalid choice selected"
    )


def test_invalid_answer_never_reaches_the_store(ctx, store) -> None:
    outcome = _reconciler(ctx).submit("mcq-1", AnswerPayload())
    assert not outcome.ok
    assert outcome.message == "Please select an answer"
    assert store.count("upsert_submission") == 0


def test_unknown_problem_is_fatal(ctx) -> None:
    with pytest.raises(FatalStateError):
        _reconciler(ctx).submit("missing", PYTHON_ANSWER)


def test_resubmission_keeps_one_record(ctx, store, clock) -> None:
    reconciler = _reconciler(ctx)
    first = reconciler.submit("sum-list", PYTHON_ANSWER, _result(5, 5))
    clock.advance(10)
    second = reconciler.submit("sum-list", PYTHON_ANSWER, _result(4, 5))

    assert first.submission.score == 20
    assert second.submission.score == 0
    assert second.submission.status == SubmissionStatus.FAILED
    records = [r for r in store.submissions.values() if r.problem_id == "sum-list"]
    assert len(records) == 1
    assert records[0].score == 0
    assert records[0].id == first.submission.id


def test_hidden_case_data_is_not_submitted(ctx, store) -> None:
    _reconciler(ctx).submit("sum-pair", PYTHON_ANSWER, _result(3, 3))
    stored = store.submissions[("student-1", "sum-pair")].test_results
    hidden = [case for case in stored.cases if case.is_hidden]
    assert hidden[0].expected_output is None
    assert hidden[0].actual_output is None


def test_mcq_submission_scores_selected_choice(ctx) -> None:
    reconciler = _reconciler(ctx)
    right = reconciler.submit("mcq-1", AnswerPayload(selected_choice_id="mcq-1-a"))
    wrong = reconciler.submit("mcq-2", AnswerPayload(selected_choice_id="mcq-2-c"))
    assert (right.submission.score, right.submission.status) == (1, SubmissionStatus.COMPLETED)
    assert (wrong.submission.score, wrong.submission.status) == (0, SubmissionStatus.FAILED)


def test_transient_failures_are_retried(ctx, store) -> None:
    failures = {"left": 2}
    original = store.upsert_submission

    def flaky(payload):
        if failures["left"]:
            failures["left"] -= 1
            store.calls.append("upsert_submission")
            raise TransientNetworkError("reset by peer")
        return original(payload)

    store.upsert_submission = flaky
    outcome = _reconciler(ctx).submit("mcq-1", AnswerPayload(selected_choice_id="mcq-1-a"))
    assert outcome.synced
    assert store.count("upsert_submission") == 3


def test_network_failure_keeps_local_record(ctx, store, cache) -> None:
    store.offline.add("upsert_submission")
    reconciler = _reconciler(ctx)

    outcome = reconciler.submit("sum-list", PYTHON_ANSWER, _result(5, 5))

    assert outcome.ok and not outcome.synced
    assert outcome.submission.synced is False
    assert outcome.submission.score == 20
    assert "sum-list" in reconciler.pending_resync
    assert cache.get(ctx.key("sum-list", KIND_RESYNC))["problem_id"] == "sum-list"
    assert reconciler.latest("sum-list") is outcome.submission
    assert store.count("upsert_submission") == 3


def test_resync_pushes_pending_and_clears_markers(ctx, store, cache) -> None:
    store.offline.add("upsert_submission")
    reconciler = _reconciler(ctx)
    reconciler.submit("mcq-3", AnswerPayload(selected_choice_id="mcq-3-a"))

    assert reconciler.resync() == []

    store.offline.clear()
    assert reconciler.resync() == ["mcq-3"]
    assert reconciler.pending_resync == {}
    assert cache.get(ctx.key("mcq-3", KIND_RESYNC)) is None
    assert reconciler.latest("mcq-3").synced
    assert store.submissions[("student-1", "mcq-3")].score == 1


def test_resync_markers_survive_restart(ctx, store) -> None:
    store.offline.add("upsert_submission")
    _reconciler(ctx).submit("mcq-2", AnswerPayload(selected_choice_id="mcq-2-a"))

    restarted = _reconciler(ctx)
    assert list(restarted.pending_resync) == ["mcq-2"]


def test_stale_server_response_does_not_replace_newer_local(ctx, store, clock) -> None:
    reconciler = _reconciler(ctx)
    older = reconciler.submit("mcq-1", AnswerPayload(selected_choice_id="mcq-1-b")).submission
    clock.advance(5)
    newer = reconciler.submit("mcq-1", AnswerPayload(selected_choice_id="mcq-1-a")).submission

    assert reconciler.merge(older) is newer
    assert reconciler.latest("mcq-1").score == 1


def test_effective_submissions_overlay_unsynced(ctx, store) -> None:
    reconciler = _reconciler(ctx)
    reconciler.submit("mcq-1", AnswerPayload(selected_choice_id="mcq-1-a"))
    store.offline.add("upsert_submission")
    reconciler.submit("mcq-2", AnswerPayload(selected_choice_id="mcq-2-a"))
    store.offline.clear()

    effective = reconciler.effective_submissions(reconciler.fetch_confirmed())
    assert sorted(r.problem_id for r in effective) == ["mcq-1", "mcq-2"]
    assert {r.problem_id: r.synced for r in effective} == {"mcq-1": True, "mcq-2": False}


def test_confirmed_submit_replaces_local_record_despite_clock_skew(ctx, store, clock) -> None:
    # Server clock five minutes behind this device
    store.clock = lambda: clock() - timedelta(minutes=5)
    reconciler = _reconciler(ctx)
    store.offline.add("upsert_submission")
    reconciler.submit("mcq-1", AnswerPayload(selected_choice_id="mcq-1-b"))
    store.offline.clear()

    outcome = reconciler.submit("mcq-1", AnswerPayload(selected_choice_id="mcq-1-a"))

    assert outcome.synced and outcome.submission.score == 1
    assert reconciler.latest("mcq-1").synced
    assert reconciler.pending_resync == {}
    effective = reconciler.effective_submissions(reconciler.fetch_confirmed())
    assert [(r.problem_id, r.score, r.synced) for r in effective] == [("mcq-1", 1, True)]
