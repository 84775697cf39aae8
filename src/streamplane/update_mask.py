"""Partial-update requests built from a diff.

The remote API only touches fields named in the update mask, so the update
document carries exactly the changed values and nothing else.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .attributes import ABSENT, Document, is_known, to_plain
from .differ import FieldPath


@dataclass(frozen=True)
class UpdateRequest:
    """Changed values plus the mask naming them."""

    document: Document
    paths: tuple[FieldPath, ...]

    @property
    def is_empty(self) -> bool:
        return not self.paths

    @property
    def mask(self) -> list[str]:
        return [str(path) for path in self.paths]

    def touches(self, *roots: str) -> bool:
        """True if any masked path starts at one of the given top-level fields."""
        return any(path.root in roots for path in self.paths)

    def with_identifier(self, value: Any) -> UpdateRequest:
        """Attach the resource identifier without adding it to the mask."""
        return UpdateRequest(self.document.with_identifier(value), self.paths)

    def value(self, path: FieldPath) -> Any:
        return self.document.get_path(path)

    def to_wire(self) -> dict[str, Any]:
        """Encode as ``{"update": {...}, "update_mask": [...]}``.

        Masked values that are ABSENT are sent as explicit nulls, which the
        partial-update contract reads as "clear this field".
        """
        update: dict[str, Any] = {}
        identifier = self.document.shape.identifier
        if identifier is not None and is_known(self.document[identifier.name]):
            update[identifier.name] = self.document[identifier.name]
        for path in self.paths:
            _assign(update, path.segments, self.document.get_path(path))
        return {"update": update, "update_mask": self.mask}


def _assign(target: dict[str, Any], segments: tuple[str, ...], value: Any) -> None:
    for segment in segments[:-1]:
        node = target.get(segment)
        if not isinstance(node, dict):
            node = {}
            target[segment] = node
        target = node
    target[segments[-1]] = None if value is ABSENT else to_plain(value)


def build_update(paths: Iterable[FieldPath], desired: Document) -> UpdateRequest:
    """Build the update document for ``paths`` from the desired document."""
    ordered = tuple(paths)
    document = Document(desired.shape)
    for path in ordered:
        document = document.set_path(path, desired.get_path(path))
    return UpdateRequest(document, ordered)


def apply_update(base: Document, request: UpdateRequest) -> Document:
    """Write every masked value of ``request`` onto a copy of ``base``."""
    result = base
    for path in request.paths:
        result = result.set_path(path, request.document.get_path(path))
    return result
