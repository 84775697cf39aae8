"""Change provenance for audit.

Every controller pass is stamped with a structured record that answers:
- "What changed on this resource, and which fields?"
- "What did the state look like before and after?" (by fingerprint)
- "Which version and which commit of the desired state drove the change?"

Records go to the structured logger as JSON; nothing else is needed to
query them.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

# Version is set at build time or falls back to dev
STREAMPLANE_VERSION = os.environ.get("STREAMPLANE_VERSION", "dev")


@dataclass
class RunSummary:
    """Counts of what one host run did."""

    create_count: int = 0
    update_count: int = 0
    delete_count: int = 0
    no_change_count: int = 0
    removed_count: int = 0
    failed_count: int = 0

    @property
    def total_significant(self) -> int:
        """Total significant changes (create + update + delete)."""
        return self.create_count + self.update_count + self.delete_count


@dataclass
class ChangeRecord:
    """Provenance of one controller pass on one resource."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    # Identity
    operation: str = ""
    kind: str = ""
    address: str = ""
    identifier: str = ""
    version: str = STREAMPLANE_VERSION
    git_commit_sha: str = ""

    # What changed
    mask_paths: list[str] = field(default_factory=list)
    before_fingerprint: str = ""
    after_fingerprint: str = ""
    remote_calls: int = 0
    removal: str | None = None

    # Timing
    duration_seconds: float = 0.0

    # Error tracking
    error: str | None = None
    error_type: str | None = None

    @property
    def changed(self) -> bool:
        return self.before_fingerprint != self.after_fingerprint

    def fail(self, error: BaseException) -> None:
        self.error = str(error)
        self.error_type = type(error).__name__

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        result["timestamp"] = self.timestamp.isoformat()
        return result


class ProvenanceLogger:
    """Emits change records and run summaries to the structured logger."""

    def __init__(self) -> None:
        self._git_commit_sha = os.environ.get("GIT_COMMIT_SHA", "")

    def create_record(self, operation: str, kind: str, address: str) -> ChangeRecord:
        return ChangeRecord(
            operation=operation,
            kind=kind,
            address=address,
            git_commit_sha=self._git_commit_sha,
        )

    def log_change(self, record: ChangeRecord) -> None:
        """Log a completed change record.

        The flattened fields enable queries like "every update of topic X"
        or "all passes that touched configuration keys today".
        """
        log_level = logging.ERROR if record.error else logging.INFO
        logger.log(
            log_level,
            "Resource change",
            extra={
                "provenance": record.to_dict(),
                "operation": record.operation,
                "kind": record.kind,
                "address": record.address,
                "update_mask": record.mask_paths,
                "remote_calls": record.remote_calls,
                "duration_seconds": record.duration_seconds,
            },
        )

    def log_run_summary(self, command: str, summary: RunSummary, duration_seconds: float) -> None:
        log_level = logging.WARNING if summary.failed_count else logging.INFO
        logger.log(
            log_level,
            "Run summary",
            extra={
                "command": command,
                "summary": asdict(summary),
                "changes": summary.total_significant,
                "git_commit": self._git_commit_sha,
                "version": STREAMPLANE_VERSION,
                "duration_seconds": round(duration_seconds, 3),
            },
        )


# Global singleton for provenance logging
_provenance_logger: ProvenanceLogger | None = None


def get_provenance_logger() -> ProvenanceLogger:
    """Get the global provenance logger instance."""
    global _provenance_logger
    if _provenance_logger is None:
        _provenance_logger = ProvenanceLogger()
    return _provenance_logger
