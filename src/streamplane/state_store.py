"""Tracked-state persistence for the host driver.

Tracked state is a JSON file mapping each resource address to its kind and
the canonical form of its last observed document. Writes go to a temporary
file that replaces the old one, so an interrupted run never leaves a
half-written state file behind.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .attributes import Document
from .config import MAX_STATE_FILE_SIZE_BYTES
from .resources.registry import get_kind

logger = logging.getLogger(__name__)

STATE_FORMAT_VERSION = 1


class StateStoreError(Exception):
    """Raised when tracked state cannot be read or written."""

    pass


@dataclass(frozen=True)
class TrackedResource:
    """Last known state of one resource."""

    kind: str
    document: Document


class StateStore:
    """JSON file holding tracked state for every address."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> dict[str, TrackedResource]:
        """Read tracked state; a missing file is an empty state."""
        if not self.path.exists():
            return {}

        try:
            file_size = self.path.stat().st_size
        except OSError as e:
            raise StateStoreError(f"Failed to stat state file {self.path}: {e}") from e
        if file_size > MAX_STATE_FILE_SIZE_BYTES:
            raise StateStoreError(
                f"State file exceeds maximum size of {MAX_STATE_FILE_SIZE_BYTES} bytes: {self.path}"
            )

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except OSError as e:
            raise StateStoreError(f"Failed to read state file {self.path}: {e}") from e
        except json.JSONDecodeError as e:
            raise StateStoreError(f"Invalid JSON in state file {self.path}: {e}") from e

        if not isinstance(raw, dict) or raw.get("version") != STATE_FORMAT_VERSION:
            raise StateStoreError(
                f"Unsupported state file format in {self.path} (expected version {STATE_FORMAT_VERSION})"
            )

        tracked: dict[str, TrackedResource] = {}
        for address, entry in (raw.get("resources") or {}).items():
            tracked[address] = self._decode(address, entry)
        return tracked

    def _decode(self, address: str, entry: Any) -> TrackedResource:
        if not isinstance(entry, dict) or "kind" not in entry:
            raise StateStoreError(f"Malformed state entry for {address}")
        try:
            kind = get_kind(entry["kind"])
            document = kind.shape.from_mapping(entry.get("document") or {})
        except (ValueError, TypeError) as e:
            raise StateStoreError(f"Malformed state entry for {address}: {e}") from e
        return TrackedResource(entry["kind"], document)

    def save(self, tracked: dict[str, TrackedResource]) -> None:
        payload = {
            "version": STATE_FORMAT_VERSION,
            "resources": {
                address: {"kind": entry.kind, "document": entry.document.canonical()}
                for address, entry in sorted(tracked.items())
            },
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=False)
                handle.write("\n")
            # State may hold user passwords
            os.chmod(temp_name, 0o600)
            os.replace(temp_name, self.path)
        except OSError as e:
            Path(temp_name).unlink(missing_ok=True)
            raise StateStoreError(f"Failed to write state file {self.path}: {e}") from e
        logger.debug("Saved tracked state", extra={"path": str(self.path), "resources": len(tracked)})
