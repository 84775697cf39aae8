"""Desired-state file loading with validation.

SECURITY: All file operations enforce size limits to prevent DoS attacks
via large files. Input validation is performed at the boundary.

A desired-state file lists resources by kind and name:

    resources:
      - kind: topic
        name: orders
        spec:
          name: orders
          cluster_api_url: https://api-abc.cluster.example.com
          partition_count: 6
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_SPEC_FILE_SIZE_BYTES
from .models import BaseSpec, get_spec_class

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when desired-state loading or validation fails."""

    pass


@dataclass(frozen=True)
class ResourceEntry:
    """One validated resource of a desired-state file."""

    kind: str
    name: str
    spec: BaseSpec

    @property
    def address(self) -> str:
        return f"{self.kind}.{self.name}"


def format_validation_error(error: ValidationError) -> str:
    """Format pydantic validation errors as ``loc: msg`` lines."""
    lines = []
    for item in error.errors():
        loc = ".".join(str(x) for x in item["loc"]) or "<root>"
        lines.append(f"  - {loc}: {item['msg']}")
    return "\n".join(lines)


def parse_resources(raw_data: Any, source: str = "<input>") -> list[ResourceEntry]:
    """Validate already-parsed desired-state data.

    Raises:
        SpecLoadError: If the structure or any resource spec is invalid.
    """
    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Desired-state file must contain a YAML mapping: {source}")
    resources = raw_data.get("resources")
    if resources is None:
        return []
    if not isinstance(resources, list):
        raise SpecLoadError(f"'resources' must be a list: {source}")

    entries: list[ResourceEntry] = []
    seen: set[str] = set()
    for index, item in enumerate(resources):
        where = f"{source} resources[{index}]"
        if not isinstance(item, dict):
            raise SpecLoadError(f"{where} must be a mapping")
        kind, name, spec_data = item.get("kind"), item.get("name"), item.get("spec")
        if not isinstance(kind, str) or not kind:
            raise SpecLoadError(f"{where} is missing 'kind'")
        if not isinstance(name, str) or not name:
            raise SpecLoadError(f"{where} is missing 'name'")
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"{where} 'spec' must be a mapping")
        unknown = set(item) - {"kind", "name", "spec"}
        if unknown:
            raise SpecLoadError(f"{where} has unknown keys: {sorted(unknown)}")

        try:
            spec_class = get_spec_class(kind)
        except ValueError as e:
            raise SpecLoadError(f"{where}: {e}") from e

        try:
            spec = spec_class.model_validate(spec_data)
        except ValidationError as e:
            raise SpecLoadError(
                f"Validation failed for {kind}.{name} in {source}:\n{format_validation_error(e)}"
            ) from e

        entry = ResourceEntry(kind, name, spec)
        if entry.address in seen:
            raise SpecLoadError(f"Duplicate resource {entry.address} in {source}")
        seen.add(entry.address)
        entries.append(entry)
    return entries


def load_resources(path: Path) -> list[ResourceEntry]:
    """Load and validate a desired-state file.

    Raises:
        SpecLoadError: If the file cannot be loaded or fails validation.
    """
    if not path.exists():
        raise SpecLoadError(f"Desired-state file not found: {path}")

    # SECURITY: Check file size before reading to prevent DoS
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat desired-state file {path}: {e}") from e

    if file_size > MAX_SPEC_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Desired-state file exceeds maximum size of {MAX_SPEC_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read desired-state file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {path}: {e}") from e

    entries = parse_resources(raw_data, str(path))
    logger.info("Loaded desired state", extra={"path": str(path), "resources": len(entries)})
    return entries
