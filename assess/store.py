"""
Persistent store as seen by the session engine.

``SqlStore`` talks to the database directly (server side, CLI, tests).
``HttpStore`` talks to the REST API with ``requests`` (the engine on a
student's device). Both raise the engine's error taxonomy instead of
transport-specific exceptions.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Protocol

import requests
from fastapi import HTTPException
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session as DBSession, sessionmaker

from assess.config import API_BASE_URL, API_TIMEOUT_SECONDS
from assess.engine.errors import (
    AttemptAlreadyExistsError,
    FatalStateError,
    TransientNetworkError,
    ValidationError,
)
from assess.models import (
    Assessment,
    AttemptCreate,
    AttemptRecord,
    AttemptUpdate,
    SubmissionFilter,
    SubmissionRecord,
    SubmissionUpsert,
)
from assess.services import assessment_service, attempt_service, submission_service

log = logging.getLogger(__name__)


class PersistentStore(Protocol):
    """Narrow interface the engine consumes."""

    def get_assessment(self, assessment_id: str) -> Assessment: ...

    def get_attempt(self, student_id: str, assessment_id: str) -> AttemptRecord | None: ...

    def create_attempt(self, payload: AttemptCreate) -> AttemptRecord: ...

    def ensure_attempt(self, payload: AttemptCreate) -> AttemptRecord: ...

    def update_attempt(self, attempt_id: str, payload: AttemptUpdate) -> AttemptRecord: ...

    def get_latest_submission(self, student_id: str, problem_id: str) -> SubmissionRecord | None: ...

    def upsert_submission(self, payload: SubmissionUpsert) -> SubmissionRecord: ...

    def list_submissions(self, filters: SubmissionFilter) -> list[SubmissionRecord]: ...


def _raise_for_status(status_code: int, detail: str) -> None:
    if status_code == 404:
        raise FatalStateError(detail)
    if status_code == 409:
        raise AttemptAlreadyExistsError(detail)
    if status_code in (400, 422):
        raise ValidationError(detail)
    raise TransientNetworkError(f"{status_code}: {detail}")


class SqlStore:
    """Store backed by a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[DBSession]:
        db = self._session_factory()
        try:
            yield db
        except HTTPException as exc:
            _raise_for_status(exc.status_code, str(exc.detail))
        except OperationalError as exc:
            log.warning("Database unavailable: %s", exc)
            raise TransientNetworkError(str(exc)) from exc
        finally:
            db.close()

    def get_assessment(self, assessment_id: str) -> Assessment:
        with self._session() as db:
            return assessment_service.load_assessment(db, assessment_id)

    def get_attempt(self, student_id: str, assessment_id: str) -> AttemptRecord | None:
        with self._session() as db:
            attempt = attempt_service.get_attempt(db, student_id, assessment_id)
            return attempt_service.attempt_to_record(attempt) if attempt else None

    def create_attempt(self, payload: AttemptCreate) -> AttemptRecord:
        with self._session() as db:
            return attempt_service.attempt_to_record(attempt_service.create_attempt(db, payload))

    def ensure_attempt(self, payload: AttemptCreate) -> AttemptRecord:
        with self._session() as db:
            return attempt_service.attempt_to_record(attempt_service.ensure_attempt(db, payload))

    def update_attempt(self, attempt_id: str, payload: AttemptUpdate) -> AttemptRecord:
        with self._session() as db:
            return attempt_service.attempt_to_record(
                attempt_service.update_attempt(db, attempt_id, payload)
            )

    def get_latest_submission(self, student_id: str, problem_id: str) -> SubmissionRecord | None:
        with self._session() as db:
            submission = submission_service.get_latest_submission(db, student_id, problem_id)
            return submission_service.submission_to_record(submission) if submission else None

    def upsert_submission(self, payload: SubmissionUpsert) -> SubmissionRecord:
        with self._session() as db:
            return submission_service.submission_to_record(
                submission_service.upsert_submission(db, payload)
            )

    def list_submissions(self, filters: SubmissionFilter) -> list[SubmissionRecord]:
        with self._session() as db:
            return [
                submission_service.submission_to_record(row)
                for row in submission_service.list_submissions(db, filters)
            ]


class HttpStore:
    """Store reached over the REST API."""

    def __init__(
        self,
        base_url: str = API_BASE_URL,
        session: requests.Session | None = None,
        timeout: float = API_TIMEOUT_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            response = self.session.request(
                method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise TransientNetworkError(str(exc)) from exc

        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.reason)
            except ValueError:
                detail = response.reason
            _raise_for_status(response.status_code, str(detail))
        return response

    def get_assessment(self, assessment_id: str) -> Assessment:
        response = self._request("GET", f"/api/assessments/{assessment_id}")
        return Assessment(**response.json())

    def get_attempt(self, student_id: str, assessment_id: str) -> AttemptRecord | None:
        try:
            response = self._request(
                "GET",
                "/api/attempts",
                params={"student_id": student_id, "assessment_id": assessment_id},
            )
        except FatalStateError:
            return None
        return AttemptRecord(**response.json())

    def create_attempt(self, payload: AttemptCreate) -> AttemptRecord:
        response = self._request("POST", "/api/attempts", json=payload.model_dump(mode="json"))
        return AttemptRecord(**response.json())

    def ensure_attempt(self, payload: AttemptCreate) -> AttemptRecord:
        response = self._request(
            "PUT", "/api/attempts/ensure", json=payload.model_dump(mode="json")
        )
        return AttemptRecord(**response.json())

    def update_attempt(self, attempt_id: str, payload: AttemptUpdate) -> AttemptRecord:
        response = self._request(
            "PATCH",
            f"/api/attempts/{attempt_id}",
            json=payload.model_dump(mode="json", exclude_none=True),
        )
        return AttemptRecord(**response.json())

    def get_latest_submission(self, student_id: str, problem_id: str) -> SubmissionRecord | None:
        try:
            response = self._request(
                "GET",
                "/api/submissions/latest",
                params={"student_id": student_id, "problem_id": problem_id},
            )
        except FatalStateError:
            return None
        return SubmissionRecord(**response.json())

    def upsert_submission(self, payload: SubmissionUpsert) -> SubmissionRecord:
        response = self._request("PUT", "/api/submissions", json=payload.model_dump(mode="json"))
        return SubmissionRecord(**response.json())

    def list_submissions(self, filters: SubmissionFilter) -> list[SubmissionRecord]:
        params: dict[str, object] = {}
        if filters.student_id:
            params["student_id"] = filters.student_id
        if filters.assessment_id:
            params["assessment_id"] = filters.assessment_id
        if filters.problem_ids:
            params["problem_id"] = filters.problem_ids
        response = self._request("GET", "/api/submissions", params=params)
        return [SubmissionRecord(**item) for item in response.json()]
