"""Error taxonomy for reconciliation passes.

Transport failures arrive as azure-core exceptions and are translated here
into the categories the retry executor and the graceful-removal policy act on.
Anything transient is retried locally and only surfaces once a deadline runs
out; anything fatal is surfaced immediately.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)

if TYPE_CHECKING:
    from .attributes import Document
    from .operations import Operation


class ReconcileError(Exception):
    """Base class for all reconciliation failures."""

    pass


class NotFoundError(ReconcileError):
    """The target resource does not exist remotely."""

    pass


class UnreachableError(ReconcileError):
    """The remote API or the resource's own endpoint cannot be reached."""

    pass


class UnavailableError(UnreachableError):
    """The remote API answered but is temporarily unable to serve (5xx, 429)."""

    pass


class PermissionDeniedError(ReconcileError):
    """The caller lacks permission, possibly because a grant has not propagated yet."""

    pass


class InvalidRequestError(ReconcileError):
    """The request is malformed or violates remote constraints."""

    pass


class ConflictError(InvalidRequestError):
    """The request conflicts with the current remote state."""

    pass


class AlreadyExistsError(ConflictError):
    """A resource with the same identity already exists."""

    pass


class ReplacementRequiredError(InvalidRequestError):
    """The requested change cannot be applied in place."""

    def __init__(self, resource: str, paths: list[str]) -> None:
        self.resource = resource
        self.paths = paths
        super().__init__(
            f"{resource}: changing {', '.join(paths)} requires replacing the resource"
        )


class DeletionNotAllowedError(ReconcileError):
    """Deletion was requested for a resource whose allow_deletion flag is false."""

    def __init__(self, resource: str) -> None:
        self.resource = resource
        super().__init__(f"{resource} does not allow deletion (allow_deletion is false)")


class DeadlineExceededError(ReconcileError):
    """A retry or polling budget ran out while the last failure was still transient."""

    def __init__(
        self, timeout: float, last_error: BaseException | None, attempts: int = 0
    ) -> None:
        self.timeout = timeout
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(f"timed out after {timeout:g}s: {last_error}")


class OperationFailedError(ReconcileError):
    """A long-running operation finished in the FAILED state."""

    def __init__(self, operation: Operation) -> None:
        self.operation = operation
        detail = operation.error or "no error detail returned"
        super().__init__(f"operation {operation.id} failed: {detail}")


class ReconcileCancelledError(ReconcileError):
    """The caller asked the pass to stop while it was waiting."""

    pass


class InconsistentResultError(ReconcileError):
    """The state read back after apply disagrees with the plan."""

    def __init__(self, resource: str, mismatches: list[str]) -> None:
        self.resource = resource
        self.mismatches = mismatches
        super().__init__(
            f"{resource} produced an inconsistent result after apply: " + "; ".join(mismatches)
        )


class PartialCreateError(ReconcileError):
    """The resource was created but its state could not be read back.

    ``document`` holds the identifier and the desired values so the caller
    can keep tracking what now exists remotely.
    """

    def __init__(self, resource: str, identifier: Any, document: Document, cause: BaseException) -> None:
        self.resource = resource
        self.identifier = identifier
        self.document = document
        super().__init__(f"{resource} {identifier} was created but could not be read back: {cause}")


# Substrings the remote side uses for errors that lack a precise status code.
_NOT_FOUND_MARKERS = ("not found", "404", "does not exist")
_PERMISSION_MARKERS = ("forbidden", "missing required acls", "403")
_UNREACHABLE_MARKERS = ("name resolver error", "produced zero addresses", "connection refused")
_ALREADY_EXISTS_MARKERS = ("already exists", "topic_already_exists", "has already been created")


def _has_marker(error: BaseException, markers: tuple[str, ...]) -> bool:
    text = str(error).lower()
    return any(marker in text for marker in markers)


def _http_message(error: AzureError) -> str:
    return error.message if isinstance(error.message, str) else str(error)


def translate_http_error(error: AzureError, method: str = "") -> ReconcileError:
    """Map an azure-core exception onto the reconciliation taxonomy."""
    message = _http_message(error)
    if method:
        message = f"{method}: {message}"

    match error:
        case ResourceNotFoundError():
            return NotFoundError(message)
        case ClientAuthenticationError():
            return PermissionDeniedError(message)
        case ResourceExistsError():
            if _has_marker(error, _ALREADY_EXISTS_MARKERS):
                return AlreadyExistsError(message)
            return ConflictError(message)
        case ServiceRequestError():
            return UnreachableError(message)
        case ServiceResponseError():
            return UnavailableError(message)
        case HttpResponseError():
            return _translate_status(error.status_code, error, message)
        case _:
            return ReconcileError(message)


def _translate_status(status: int | None, error: AzureError, message: str) -> ReconcileError:
    if status == 404:
        return NotFoundError(message)
    if status in (401, 403):
        return PermissionDeniedError(message)
    if status == 429 or (status is not None and status >= 500):
        return UnavailableError(message)
    if status is not None and 400 <= status < 500:
        if _has_marker(error, _ALREADY_EXISTS_MARKERS):
            return AlreadyExistsError(message)
        if status == 409:
            return ConflictError(message)
        return InvalidRequestError(message)
    return ReconcileError(message)


def _is_typed(error: BaseException) -> bool:
    # The bare base class is the untranslated fallback; its subclasses carry
    # a precise category and are never reclassified by message text.
    return isinstance(error, ReconcileError) and type(error) is not ReconcileError


def is_not_found(error: BaseException | None) -> bool:
    if error is None:
        return False
    if isinstance(error, NotFoundError | ResourceNotFoundError):
        return True
    if _is_typed(error):
        return False
    return _has_marker(error, _NOT_FOUND_MARKERS)


def is_permission_denied(error: BaseException | None) -> bool:
    if error is None:
        return False
    if isinstance(error, PermissionDeniedError | ClientAuthenticationError):
        return True
    if _is_typed(error):
        return False
    return _has_marker(error, _PERMISSION_MARKERS)


def is_unreachable(error: BaseException | None) -> bool:
    """True when the endpoint itself cannot be reached, not merely busy."""
    if error is None:
        return False
    if isinstance(error, UnavailableError):
        return False
    if isinstance(error, UnreachableError | ServiceRequestError):
        return True
    if _is_typed(error):
        return False
    return _has_marker(error, _UNREACHABLE_MARKERS)


def is_already_exists(error: BaseException | None) -> bool:
    if error is None:
        return False
    return isinstance(error, AlreadyExistsError) or _has_marker(error, _ALREADY_EXISTS_MARKERS)


def is_transient(error: BaseException) -> bool:
    """Errors worth another attempt under the retry executor."""
    return isinstance(error, UnreachableError | ServiceRequestError | ServiceResponseError)


def is_removal_candidate(error: BaseException | None) -> bool:
    """Errors that may mean the resource is gone for good."""
    return is_not_found(error) or is_unreachable(error) or is_permission_denied(error)
