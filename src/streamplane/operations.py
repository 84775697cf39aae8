"""Long-running operation handles and the poller that drives them to completion."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from .errors import OperationFailedError, is_transient
from .retry import RetryableError, RetryExecutor

if TYPE_CHECKING:
    from .transport import Transport

logger = logging.getLogger(__name__)


class OperationState(str, Enum):
    """Lifecycle of a long-running operation."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (OperationState.DONE, OperationState.FAILED)

    @classmethod
    def parse(cls, raw: str | None) -> OperationState:
        """Map a remote state string onto the lifecycle."""
        key = (raw or "").upper()
        if key.startswith("STATE_"):
            key = key[len("STATE_") :]
        match key:
            case "" | "UNSPECIFIED" | "PENDING":
                return cls.PENDING
            case "IN_PROGRESS" | "RUNNING":
                return cls.RUNNING
            case "COMPLETED" | "DONE" | "SUCCEEDED":
                return cls.DONE
            case "FAILED":
                return cls.FAILED
            case _:
                raise ValueError(f"unrecognised operation state: {raw!r}")


@dataclass(frozen=True)
class Operation:
    """Snapshot of a long-running operation as last reported by the API."""

    id: str
    state: OperationState
    kind: str = ""
    error: str | None = None
    resource_id: str | None = None

    @classmethod
    def from_response(cls, data: Mapping[str, Any]) -> Operation:
        """Parse either ``{"operation": {...}}`` or a bare operation record."""
        record = data.get("operation", data)
        if not isinstance(record, Mapping) or not record.get("id"):
            raise ValueError("response does not carry an operation id")
        error = record.get("error")
        if isinstance(error, Mapping):
            error = error.get("message") or str(dict(error))
        return cls(
            id=str(record["id"]),
            state=OperationState.parse(record.get("state")),
            kind=str(record.get("type", "")),
            error=error or None,
            resource_id=record.get("resource_id") or None,
        )

    @classmethod
    def from_mutation(cls, data: Mapping[str, Any]) -> Operation | None:
        """The operation carried by a mutation response, if the call was asynchronous."""
        record = data.get("operation")
        if not isinstance(record, Mapping):
            return None
        return cls.from_response(record)


class OperationPoller:
    """Queries an operation until it reaches DONE or FAILED.

    The first terminal observation ends polling. Status-query failures that
    look transient are retried under the same deadline as the operation.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        interval: float,
        timeout: float,
        stop_event: asyncio.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transport = transport
        self._interval = interval
        self._timeout = timeout
        self._stop_event = stop_event
        self._clock = clock

    async def wait(self, operation: Operation) -> Operation:
        """Return the terminal record for ``operation``.

        Raises:
            DeadlineExceededError: The operation did not finish within the timeout.
            ReconcileCancelledError: The stop event was set while waiting.
        """
        if operation.state.terminal:
            return operation

        executor = RetryExecutor(
            self._timeout,
            self._interval,
            is_retryable=is_transient,
            stop_event=self._stop_event,
            clock=self._clock,
            description=f"operation {operation.id}",
        )

        async def query() -> Operation:
            record = Operation.from_response(await self._transport.get_operation(operation.id))
            if not record.state.terminal:
                raise RetryableError(f"operation {record.id} is still {record.state.value}")
            return record

        started = self._clock()
        record = await executor.run(query)
        logger.info(
            "Operation finished",
            extra={
                "operation_id": record.id,
                "operation_type": record.kind,
                "state": record.state.value,
                "duration_seconds": round(self._clock() - started, 3),
            },
        )
        return record

    async def wait_for_success(self, operation: Operation) -> Operation:
        """Like ``wait`` but raises OperationFailedError for a FAILED operation."""
        record = await self.wait(operation)
        if record.state is OperationState.FAILED:
            raise OperationFailedError(record)
        return record
