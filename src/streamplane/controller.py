"""Reconciliation controller.

One controller drives one resource through the create / read / update /
delete lifecycle:
1. Build the desired document from configuration and tracked state
2. Diff against tracked state and derive the update mask
3. Issue the mutations, waiting on any long-running operation
4. Read the resource back and check it against the plan

Every pass counts its remote calls and emits a provenance record. A pass
whose plan is empty makes no remote calls at all.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar

from .attributes import Document
from .config import Config
from .differ import FieldPath, compare, diff
from .errors import (
    DeadlineExceededError,
    DeletionNotAllowedError,
    InconsistentResultError,
    PartialCreateError,
    ReconcileError,
    ReplacementRequiredError,
    is_not_found,
    is_permission_denied,
    is_transient,
)
from .models import BaseSpec
from .operations import Operation, OperationPoller
from .provenance import ProvenanceLogger, get_provenance_logger
from .removal import RemovalOutcome, decide_removal, removal_allowed
from .resources.base import Mutation, ResourceKind
from .retry import RetryExecutor
from .transport import Clients, Transport
from .update_mask import apply_update, build_update

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PlanAction(str, Enum):
    """What applying a plan will do."""

    CREATE = "create"
    UPDATE = "update"
    NOOP = "noop"
    REPLACE = "replace"


@dataclass(frozen=True)
class Plan:
    """Outcome of the plan pass; computing it makes no remote calls."""

    action: PlanAction
    desired: Document
    paths: tuple[FieldPath, ...] = ()
    reason: str | None = None

    @property
    def mask(self) -> list[str]:
        return [str(path) for path in self.paths]


@dataclass(frozen=True)
class ReconcileResult:
    """What one controller pass did."""

    operation: str
    address: str
    document: Document | None
    mask_paths: tuple[str, ...]
    remote_calls: int
    removal: RemovalOutcome | None
    started_at: datetime
    finished_at: datetime
    warnings: tuple[str, ...] = ()

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


@dataclass
class _Outcome:
    document: Document | None
    mask_paths: tuple[str, ...] = ()
    removal: RemovalOutcome | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)


class _CallCounter:
    def __init__(self) -> None:
        self.count = 0


class _CountingTransport:
    """Transport wrapper that counts every remote call of a pass."""

    def __init__(self, inner: Transport, counter: _CallCounter) -> None:
        self._inner = inner
        self._counter = counter

    async def invoke(self, method: str, request: Any) -> dict[str, Any]:
        self._counter.count += 1
        return await self._inner.invoke(method, request)

    async def get_operation(self, operation_id: str) -> dict[str, Any]:
        self._counter.count += 1
        return await self._inner.get_operation(operation_id)


class _CountingClients:
    def __init__(self, clients: Clients, counter: _CallCounter) -> None:
        self._clients = clients
        self._counter = counter

    @property
    def control_plane(self) -> Transport:
        return _CountingTransport(self._clients.control_plane, self._counter)

    def dataplane(self, url: str) -> Transport:
        return _CountingTransport(self._clients.dataplane(url), self._counter)


def _root_cause(error: BaseException) -> BaseException:
    """The failure behind an exhausted retry budget, or the error itself."""
    if isinstance(error, DeadlineExceededError) and error.last_error is not None:
        return error.last_error
    return error


def _not_yet_visible(error: BaseException) -> bool:
    """Failures expected while a fresh grant propagates."""
    return is_not_found(error) or is_permission_denied(error) or is_transient(error)


class Controller:
    """Drives one resource of one kind towards its desired state."""

    def __init__(
        self,
        kind: ResourceKind,
        clients: Clients,
        config: Config,
        *,
        stop_event: asyncio.Event | None = None,
        provenance: ProvenanceLogger | None = None,
        address: str | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            kind: Mapping table of the resource kind.
            clients: Long-lived transports, shared across controllers.
            config: Timeouts and behavior switches.
            stop_event: When set, any wait in progress aborts.
            provenance: Change record sink (defaults to the process-wide one).
            address: Human-readable resource address used in logs and errors.
        """
        self.kind = kind
        self.clients = clients
        self.config = config
        self.stop_event = stop_event
        self.address = address or kind.name
        self._provenance = provenance or get_provenance_logger()

    # -------------------------------------------------------------------------
    # Building blocks
    # -------------------------------------------------------------------------

    async def retry(
        self,
        action: Callable[[], Awaitable[T]],
        *,
        timeout: float,
        is_retryable: Callable[[BaseException], bool] = is_transient,
        description: str = "action",
    ) -> T:
        """Run ``action`` under the configured retry policy."""
        executor = RetryExecutor(
            timeout,
            self.config.retry_delay_seconds,
            is_retryable=is_retryable,
            backoff=self.config.retry_backoff,
            max_delay=self.config.max_retry_delay_seconds,
            stop_event=self.stop_event,
            description=description,
        )
        return await executor.run(action)

    async def _call(self, transport: Transport, mutation: Mutation, timeout: float) -> dict[str, Any]:
        return await self.retry(
            lambda: transport.invoke(mutation.method, mutation.request),
            timeout=timeout,
            description=f"{mutation.method} {self.address}",
        )

    async def _poll(self, transport: Transport, response: dict[str, Any], timeout: float) -> Operation | None:
        operation = Operation.from_mutation(response)
        if operation is None:
            return None
        poller = OperationPoller(
            transport,
            interval=self.config.poll_interval_seconds,
            timeout=timeout,
            stop_event=self.stop_event,
        )
        return await poller.wait_for_success(operation)

    async def _fetch(
        self,
        transport: Transport,
        identifier: Any,
        reference: Document,
        *,
        timeout: float,
        is_retryable: Callable[[BaseException], bool] = is_transient,
    ) -> Document:
        response = await self.retry(
            lambda: self.kind.fetch(transport, identifier, reference),
            timeout=timeout,
            is_retryable=is_retryable,
            description=f"read {self.address}",
        )
        return self.kind.observed_document(response, reference)

    def _check_consistency(self, planned: Document, observed: Document) -> tuple[str, ...]:
        mismatches = tuple(str(mismatch) for mismatch in compare(planned, observed))
        if not mismatches:
            return ()
        if self.config.strict_consistency:
            raise InconsistentResultError(self.address, list(mismatches))
        logger.warning(
            "Resource state after apply differs from the plan",
            extra={"address": self.address, "mismatches": list(mismatches)},
        )
        return mismatches

    async def _run(
        self,
        operation: str,
        body: Callable[[Clients], Awaitable[_Outcome]],
        before: Document | None = None,
    ) -> ReconcileResult:
        counter = _CallCounter()
        record = self._provenance.create_record(operation, self.kind.name, self.address)
        if before is not None:
            record.before_fingerprint = before.fingerprint()
            record.identifier = str(before.identifier)
        started_at = datetime.now(UTC)
        started = time.monotonic()
        try:
            outcome = await body(_CountingClients(self.clients, counter))  # type: ignore[arg-type]
            if outcome.document is not None:
                record.after_fingerprint = outcome.document.fingerprint()
                record.identifier = str(outcome.document.identifier)
            record.mask_paths = list(outcome.mask_paths)
            if outcome.removal is not None:
                record.removal = outcome.removal.decision.value
            return ReconcileResult(
                operation=operation,
                address=self.address,
                document=outcome.document,
                mask_paths=outcome.mask_paths,
                remote_calls=counter.count,
                removal=outcome.removal,
                started_at=started_at,
                finished_at=datetime.now(UTC),
                warnings=outcome.warnings,
            )
        except Exception as e:
            record.fail(e)
            raise
        finally:
            record.remote_calls = counter.count
            record.duration_seconds = round(time.monotonic() - started, 3)
            self._provenance.log_change(record)

    # -------------------------------------------------------------------------
    # Plan
    # -------------------------------------------------------------------------

    def plan(self, spec: BaseSpec, tracked: Document | None) -> Plan:
        """Compare configuration with tracked state; never calls the API."""
        desired = self.kind.desired_document(spec, tracked)
        if tracked is None:
            return Plan(PlanAction.CREATE, desired)
        paths = tuple(diff(tracked, desired))
        if not paths:
            return Plan(PlanAction.NOOP, desired)
        try:
            self.kind.check_update(list(paths), desired, tracked)
        except ReplacementRequiredError as e:
            return Plan(PlanAction.REPLACE, desired, paths, reason=str(e))
        return Plan(PlanAction.UPDATE, desired, paths)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def create(self, spec: BaseSpec) -> ReconcileResult:
        """Create the resource and read it back.

        Raises:
            PartialCreateError: The resource exists but could not be read back;
                ``document`` holds what should be tracked.
        """

        async def body(clients: Clients) -> _Outcome:
            kind = self.kind
            desired = kind.desired_document(spec, None)
            transport = await kind.transport(clients, desired)
            timeout = self.config.create_timeout_seconds

            response = await self._call(transport, kind.create_request(desired), timeout)
            operation = await self._poll(transport, response, timeout)
            identifier = kind.identifier_from_create(
                response, desired, operation.resource_id if operation else None
            )
            planned = desired.with_identifier(identifier)
            logger.info(
                "Created resource",
                extra={"address": self.address, "kind": kind.name, "identifier": identifier},
            )

            if kind.verify_after_create:
                read_timeout = self.config.acl_verify_timeout_seconds
                retryable = _not_yet_visible
            else:
                read_timeout = self.config.read_timeout_seconds
                retryable = is_transient
            try:
                observed = await self._fetch(
                    transport, identifier, planned, timeout=read_timeout, is_retryable=retryable
                )
            except ReconcileError as e:
                minimal = kind.minimal_document(planned, identifier)
                raise PartialCreateError(self.address, identifier, minimal, _root_cause(e)) from e

            return _Outcome(observed, warnings=self._check_consistency(planned, observed))

        return await self._run("create", body)

    async def read(self, tracked: Document) -> ReconcileResult:
        """Refresh tracked state.

        ``document`` is None when the resource is gone and graceful removal
        allowed dropping it; ``removal`` then says why.
        """

        async def body(clients: Clients) -> _Outcome:
            try:
                transport = await self.kind.transport(clients, tracked)
                observed = await self._fetch(
                    transport,
                    tracked.identifier,
                    tracked,
                    timeout=self.config.read_timeout_seconds,
                )
            except ReconcileError as e:
                cause = _root_cause(e)
                outcome = decide_removal(cause, tracked["allow_deletion"], resource=self.address)
                if outcome.remove:
                    return _Outcome(None, removal=outcome)
                if outcome.error is cause:
                    raise
                raise outcome.error from cause  # type: ignore[misc]
            return _Outcome(observed)

        return await self._run("read", body, before=tracked)

    async def update(self, spec: BaseSpec, tracked: Document) -> ReconcileResult:
        """Apply the difference between configuration and tracked state in place.

        Raises:
            ReplacementRequiredError: A changed field cannot be updated in place.
        """

        async def body(clients: Clients) -> _Outcome:
            kind = self.kind
            desired = kind.desired_document(spec, tracked)
            paths = diff(tracked, desired)
            request = build_update(paths, desired)
            if request.is_empty:
                logger.info("Resource is up to date", extra={"address": self.address})
                return _Outcome(tracked)

            mask_paths = tuple(request.mask)
            remote = [path for path in paths if path.root not in kind.local_fields]
            if not remote:
                # Only tracked-state fields changed; nothing to send
                return _Outcome(apply_update(tracked, request), mask_paths=mask_paths)

            kind.check_update(remote, desired, tracked)
            identifier = tracked.identifier
            remote_request = build_update(remote, desired).with_identifier(identifier)
            transport = await kind.transport(clients, tracked)
            timeout = self.config.update_timeout_seconds
            for mutation in kind.update_mutations(remote_request, desired, tracked):
                response = await self._call(transport, mutation, timeout)
                await self._poll(transport, response, timeout)
            logger.info(
                "Updated resource",
                extra={"address": self.address, "kind": kind.name, "update_mask": list(mask_paths)},
            )

            planned = desired.with_identifier(identifier)
            observed = await self._fetch(
                transport, identifier, planned, timeout=self.config.read_timeout_seconds
            )
            return _Outcome(
                observed,
                mask_paths=mask_paths,
                warnings=self._check_consistency(planned, observed),
            )

        return await self._run("update", body, before=tracked)

    async def delete(self, tracked: Document) -> ReconcileResult:
        """Delete the resource; a resource that is already gone counts as deleted.

        Raises:
            DeletionNotAllowedError: allow_deletion is false. No call is made.
        """

        async def body(clients: Clients) -> _Outcome:
            if not removal_allowed(tracked["allow_deletion"]):
                raise DeletionNotAllowedError(self.address)
            kind = self.kind
            timeout = self.config.delete_timeout_seconds
            try:
                transport = await kind.transport(clients, tracked)
                await kind.before_delete(self, transport, tracked)
                response = await self._call(transport, kind.delete_request(tracked), timeout)
                await self._poll(transport, response, timeout)
            except ReconcileError as e:
                cause = _root_cause(e)
                if is_not_found(cause):
                    logger.info("Resource already gone", extra={"address": self.address})
                    return _Outcome(None)
                outcome = decide_removal(cause, tracked["allow_deletion"], resource=self.address)
                if outcome.remove:
                    return _Outcome(None, removal=outcome)
                raise
            logger.info("Deleted resource", extra={"address": self.address, "kind": kind.name})
            return _Outcome(None)

        return await self._run("delete", body, before=tracked)
