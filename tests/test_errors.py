"""Tests for the error taxonomy and azure-core translation."""

from __future__ import annotations

import pytest
from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)

from streamplane.errors import (
    AlreadyExistsError,
    ConflictError,
    InvalidRequestError,
    NotFoundError,
    PermissionDeniedError,
    ReconcileError,
    UnavailableError,
    UnreachableError,
    is_already_exists,
    is_not_found,
    is_permission_denied,
    is_removal_candidate,
    is_transient,
    is_unreachable,
    translate_http_error,
)


class StatusError(HttpResponseError):
    """HttpResponseError with a fixed status and no response object."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message=message)
        self.status_code = status


class TestTranslateHttpError:
    """Tests for translate_http_error."""

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (ResourceNotFoundError(message="missing"), NotFoundError),
            (ClientAuthenticationError(message="denied"), PermissionDeniedError),
            (ResourceExistsError(message="TOPIC_ALREADY_EXISTS"), AlreadyExistsError),
            (ResourceExistsError(message="version conflict"), ConflictError),
            (ServiceRequestError(message="connection refused"), UnreachableError),
            (ServiceResponseError(message="reset by peer"), UnavailableError),
        ],
    )
    def test_exception_types(self, error: Exception, expected: type[Exception]) -> None:
        """azure-core exception types map onto the taxonomy."""
        translated = translate_http_error(error, "CreateTopic")
        assert type(translated) is expected
        assert str(translated).startswith("CreateTopic: ")

    @pytest.mark.parametrize(
        ("status", "message", "expected"),
        [
            (404, "not here", NotFoundError),
            (403, "forbidden", PermissionDeniedError),
            (429, "slow down", UnavailableError),
            (503, "maintenance", UnavailableError),
            (409, "busy", ConflictError),
            (400, "Topic has already been created", AlreadyExistsError),
            (400, "invalid partition count", InvalidRequestError),
        ],
    )
    def test_status_codes(self, status: int, message: str, expected: type[Exception]) -> None:
        """HTTP status codes map onto the taxonomy."""
        assert type(translate_http_error(StatusError(status, message))) is expected

    def test_unknown_status(self) -> None:
        """Anything else is a generic reconcile error."""
        translated = translate_http_error(StatusError(302, "moved"))
        assert type(translated) is ReconcileError


class TestClassifiers:
    """Tests for the error predicates."""

    def test_not_found_by_message(self) -> None:
        """Errors without a precise type are classified by message."""
        assert is_not_found(ReconcileError("cluster does not exist"))
        assert not is_not_found(None)

    def test_typed_errors_ignore_message(self) -> None:
        """A precise category is never overridden by words in the message."""
        rejected = InvalidRequestError("DeleteTopic: 400 topic legacy-404 is in use")
        assert not is_not_found(rejected)
        assert not is_removal_candidate(rejected)
        assert not is_permission_denied(ConflictError("409 topic forbidden-names exists"))
        assert not is_unreachable(InvalidRequestError("bad host: connection refused"))
        assert is_not_found(ValueError("404 not found"))

    def test_permission_by_message(self) -> None:
        """Missing ACL messages count as permission denied."""
        assert is_permission_denied(ReconcileError("MISSING REQUIRED ACLS"))

    def test_unavailable_is_not_unreachable(self) -> None:
        """A busy endpoint is reachable."""
        assert not is_unreachable(UnavailableError("503"))
        assert is_unreachable(UnreachableError("no route"))
        assert is_unreachable(ReconcileError("name resolver error"))

    def test_transient(self) -> None:
        """Reachability failures are transient; bad requests are not."""
        assert is_transient(UnavailableError("503"))
        assert is_transient(UnreachableError("timeout"))
        assert not is_transient(InvalidRequestError("bad"))
        assert not is_transient(NotFoundError("gone"))

    def test_already_exists(self) -> None:
        """Already-exists is recognised by type and by marker."""
        assert is_already_exists(AlreadyExistsError("x"))
        assert is_already_exists(ReconcileError("TOPIC_ALREADY_EXISTS"))

    def test_removal_candidates(self) -> None:
        """Only existence-related failures are removal candidates."""
        assert is_removal_candidate(NotFoundError("gone"))
        assert is_removal_candidate(PermissionDeniedError("denied"))
        assert not is_removal_candidate(UnavailableError("503"))
        assert not is_removal_candidate(InvalidRequestError("bad"))
