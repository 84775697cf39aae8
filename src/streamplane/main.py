"""Host lifecycle driver.

Loads desired state, drives one controller per resource and persists what
the controllers return as the new tracked state:
- plan: compare desired and tracked state without calling the API
- apply: refresh, then create / update / replace each resource and delete
  tracked resources that are no longer desired
- destroy: delete every tracked resource named in the desired-state file

Kinds are processed in dependency order (networks before clusters before
data-plane resources, reversed for deletion). Resources of the same kind are
independent and reconciled concurrently, one pass per address at a time.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from .attributes import Document
from .auth import ClientCredentialsProvider
from .config import Config, ConfigurationError
from .controller import Controller, Plan, PlanAction
from .errors import PartialCreateError
from .provenance import RunSummary, get_provenance_logger
from .resources.registry import APPLY_ORDER, get_kind
from .spec_loader import ResourceEntry, load_resources
from .state_store import StateStore, TrackedResource
from .transport import Clients, RestTransport

logger = logging.getLogger(__name__)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure structured logging with JSON output."""

    class JsonFormatter(logging.Formatter):
        """Format logs as JSON for structured logging."""

        def format(self, record: logging.LogRecord) -> str:
            log_data = {
                "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
                "level": record.levelname,
                "message": record.getMessage(),
                "logger": record.name,
            }

            # Add extra fields from the record
            for key, value in record.__dict__.items():
                if key not in (
                    "name",
                    "msg",
                    "args",
                    "created",
                    "filename",
                    "funcName",
                    "levelname",
                    "levelno",
                    "lineno",
                    "module",
                    "msecs",
                    "pathname",
                    "process",
                    "processName",
                    "relativeCreated",
                    "stack_info",
                    "exc_info",
                    "exc_text",
                    "thread",
                    "threadName",
                    "taskName",
                    "message",
                ):
                    log_data[key] = value

            # Add exception info if present
            if record.exc_info:
                log_data["exception"] = self.formatException(record.exc_info)

            return json.dumps(log_data, default=str)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from the HTTP pipeline
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_clients(config: Config) -> Clients:
    """Create the long-lived transports shared by every controller.

    Raises:
        ConfigurationError: If no API credentials are configured.
    """
    if not config.has_credentials:
        raise ConfigurationError(
            "STREAMPLANE_CLIENT_ID and STREAMPLANE_CLIENT_SECRET are required to call the API"
        )
    endpoints = config.endpoints
    credential = ClientCredentialsProvider(
        config.client_id,
        config.client_secret,
        token_url=endpoints.token_url,
        audience=endpoints.audience,
    )
    control_plane = RestTransport(endpoints.api_url, credential)
    return Clients(control_plane, lambda url: RestTransport(url, credential))


@dataclass
class PlannedChange:
    """One line of a plan."""

    address: str
    action: PlanAction | str
    paths: list[str] = field(default_factory=list)
    reason: str | None = None


@dataclass
class RunReport:
    """What a host run did, resource by resource."""

    summary: RunSummary = field(default_factory=RunSummary)
    errors: dict[str, str] = field(default_factory=dict)
    warnings: dict[str, list[str]] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.errors


def _kind_rank(kind: str) -> int:
    return APPLY_ORDER.index(kind) if kind in APPLY_ORDER else len(APPLY_ORDER)


def _grouped(items: Iterable[tuple[str, str]], *, reverse: bool = False) -> list[list[str]]:
    """Group ``(address, kind)`` pairs by kind in dependency order."""
    groups: dict[str, list[str]] = {}
    for address, kind in items:
        groups.setdefault(kind, []).append(address)
    ordered = sorted(groups, key=_kind_rank, reverse=reverse)
    return [sorted(groups[kind]) for kind in ordered]


class Host:
    """Drives controllers for every resource of a desired-state file."""

    def __init__(
        self,
        config: Config,
        clients: Clients | None,
        state: StateStore,
        *,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        self.config = config
        self.clients = clients
        self.state = state
        self.stop_event = stop_event or asyncio.Event()
        self._provenance = get_provenance_logger()

    def controller(self, kind: str, address: str) -> Controller:
        if self.clients is None:
            raise ConfigurationError("no API clients configured")
        return Controller(
            get_kind(kind),
            self.clients,
            self.config,
            stop_event=self.stop_event,
            provenance=self._provenance,
            address=address,
        )

    def shutdown(self) -> None:
        """Abort waits in progress; passes unwind with ReconcileCancelledError."""
        self.stop_event.set()

    # -------------------------------------------------------------------------
    # Plan
    # -------------------------------------------------------------------------

    def plan(self, entries: list[ResourceEntry]) -> list[PlannedChange]:
        """Plan every resource against tracked state; makes no remote calls."""
        tracked = self.state.load()
        changes: list[PlannedChange] = []
        for entry in sorted(entries, key=lambda e: (_kind_rank(e.kind), e.address)):
            previous = tracked.get(entry.address)
            kind = get_kind(entry.kind)
            controller = Controller(kind, self.clients, self.config, address=entry.address)  # type: ignore[arg-type]
            plan: Plan = controller.plan(entry.spec, previous.document if previous else None)
            changes.append(PlannedChange(entry.address, plan.action, plan.mask, plan.reason))

        desired = {entry.address for entry in entries}
        orphans = [(address, item.kind) for address, item in tracked.items() if address not in desired]
        for group in _grouped(orphans, reverse=True):
            changes.extend(PlannedChange(address, "delete") for address in group)
        return changes

    # -------------------------------------------------------------------------
    # Apply / destroy
    # -------------------------------------------------------------------------

    async def apply(self, entries: list[ResourceEntry]) -> RunReport:
        tracked = self.state.load()
        report = RunReport()
        by_address = {entry.address: entry for entry in entries}

        for group in _grouped((entry.address, entry.kind) for entry in entries):
            await self._run_group(
                group, lambda address: self._apply_one(by_address[address], tracked, report), report
            )
            self.state.save(tracked)

        orphans = [(address, item.kind) for address, item in tracked.items() if address not in by_address]
        for group in _grouped(orphans, reverse=True):
            await self._run_group(group, lambda address: self._delete_one(address, tracked, report), report)
            self.state.save(tracked)
        return report

    async def destroy(self, entries: list[ResourceEntry]) -> RunReport:
        tracked = self.state.load()
        report = RunReport()
        targets = [(entry.address, entry.kind) for entry in entries if entry.address in tracked]
        for group in _grouped(targets, reverse=True):
            await self._run_group(group, lambda address: self._delete_one(address, tracked, report), report)
            self.state.save(tracked)
        return report

    async def _run_group(
        self,
        addresses: list[str],
        run_one: Callable[[str], Awaitable[None]],
        report: RunReport,
    ) -> None:
        results = await asyncio.gather(*(run_one(address) for address in addresses), return_exceptions=True)
        for address, result in zip(addresses, results, strict=True):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                report.errors[address] = str(result)
                report.summary.failed_count += 1
                logger.error(
                    "Reconciliation failed",
                    extra={"address": address, "error": str(result), "error_type": type(result).__name__},
                )

    async def _apply_one(
        self, entry: ResourceEntry, tracked: dict[str, TrackedResource], report: RunReport
    ) -> None:
        controller = self.controller(entry.kind, entry.address)
        previous = tracked.get(entry.address)

        current: Document | None = None
        if previous is not None:
            refreshed = await controller.read(previous.document)
            current = refreshed.document
            if current is None:
                report.summary.removed_count += 1
                tracked.pop(entry.address, None)
            else:
                tracked[entry.address] = TrackedResource(entry.kind, current)

        if current is None:
            await self._create(controller, entry, tracked, report)
            return

        plan = controller.plan(entry.spec, current)
        match plan.action:
            case PlanAction.NOOP:
                report.summary.no_change_count += 1
            case PlanAction.UPDATE:
                result = await controller.update(entry.spec, current)
                tracked[entry.address] = TrackedResource(entry.kind, result.document)  # type: ignore[arg-type]
                self._warn(report, entry.address, result.warnings)
                report.summary.update_count += 1
            case PlanAction.REPLACE:
                logger.info(
                    "Replacing resource",
                    extra={"address": entry.address, "reason": plan.reason, "update_mask": plan.mask},
                )
                await controller.delete(current)
                tracked.pop(entry.address, None)
                report.summary.delete_count += 1
                await self._create(controller, entry, tracked, report)

    async def _create(
        self,
        controller: Controller,
        entry: ResourceEntry,
        tracked: dict[str, TrackedResource],
        report: RunReport,
    ) -> None:
        try:
            result = await controller.create(entry.spec)
        except PartialCreateError as e:
            # The resource exists; keep tracking it so the next run can refresh it
            tracked[entry.address] = TrackedResource(entry.kind, e.document)
            raise
        tracked[entry.address] = TrackedResource(entry.kind, result.document)  # type: ignore[arg-type]
        self._warn(report, entry.address, result.warnings)
        report.summary.create_count += 1

    async def _delete_one(self, address: str, tracked: dict[str, TrackedResource], report: RunReport) -> None:
        item = tracked[address]
        result = await self.controller(item.kind, address).delete(item.document)
        tracked.pop(address, None)
        if result.removal is not None and result.removal.warning:
            self._warn(report, address, (result.removal.warning,))
        report.summary.delete_count += 1

    @staticmethod
    def _warn(report: RunReport, address: str, warnings: Iterable[str]) -> None:
        collected = list(warnings)
        if collected:
            report.warnings.setdefault(address, []).extend(collected)


# =============================================================================
# Command runners
# =============================================================================


def _install_signal_handlers(host: Host) -> None:
    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        host.shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))


async def run_lifecycle(command: str, resources_path: Path, state_path: Path) -> RunReport:
    """Run ``apply`` or ``destroy`` end to end.

    Raises:
        ConfigurationError, SpecLoadError, StateStoreError: Before any change is made.
    """
    config = Config.from_env()
    entries = load_resources(resources_path)
    clients = build_clients(config)
    host = Host(config, clients, StateStore(state_path))
    _install_signal_handlers(host)

    started = time.monotonic()
    try:
        if command == "apply":
            report = await host.apply(entries)
        elif command == "destroy":
            report = await host.destroy(entries)
        else:
            raise ValueError(f"unknown command: {command}")
    finally:
        clients.close()
    get_provenance_logger().log_run_summary(command, report.summary, time.monotonic() - started)
    return report


def run_plan(resources_path: Path, state_path: Path) -> list[PlannedChange]:
    """Plan without credentials or network access."""
    config = Config.from_env()
    entries = load_resources(resources_path)
    return Host(config, None, StateStore(state_path)).plan(entries)

