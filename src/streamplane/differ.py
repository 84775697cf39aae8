"""Structural diff between two resource state documents.

Paths come out in field declaration order (map keys sorted), so diffing equal
inputs always yields byte-identical output. Callers hash and log diffs, and
re-apply them on retry.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .attributes import ABSENT, UNKNOWN, Document, FieldKind

_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_SEGMENT = re.compile(r'(\.?)([A-Za-z_][A-Za-z0-9_]*)|\[("(?:[^"\\]|\\.)*")\]')


@dataclass(frozen=True, order=True)
class FieldPath:
    """Locator of a field inside a document.

    Rendered with dots for identifier segments and brackets otherwise, e.g.
    ``kafka_api.mtls.enabled`` or ``configuration["cleanup.policy"]``.
    """

    segments: tuple[str, ...] = ()

    @classmethod
    def of(cls, *segments: str) -> FieldPath:
        return cls(tuple(segments))

    @classmethod
    def parse(cls, text: str) -> FieldPath:
        segments: list[str] = []
        position = 0
        while position < len(text):
            match = _SEGMENT.match(text, position)
            if match is None:
                raise ValueError(f"invalid field path: {text!r}")
            if match.group(2) is not None:
                # identifiers take a dot everywhere but the start
                if bool(match.group(1)) != (position > 0):
                    raise ValueError(f"invalid field path: {text!r}")
                segments.append(match.group(2))
            else:
                segments.append(json.loads(match.group(3)))
            position = match.end()
        if not segments:
            raise ValueError("empty field path")
        return cls(tuple(segments))

    def child(self, segment: str) -> FieldPath:
        return FieldPath(self.segments + (segment,))

    def tail(self) -> FieldPath:
        return FieldPath(self.segments[1:])

    @property
    def root(self) -> str:
        return self.segments[0]

    def __len__(self) -> int:
        return len(self.segments)

    def __str__(self) -> str:
        parts: list[str] = []
        for index, segment in enumerate(self.segments):
            if _IDENTIFIER.fullmatch(segment):
                parts.append(segment if index == 0 else f".{segment}")
            else:
                parts.append(f"[{json.dumps(segment)}]")
        return "".join(parts)


def diff(current: Document, desired: Document) -> list[FieldPath]:
    """Return the paths whose desired value differs from the current one.

    UNKNOWN desired values and identifier fields are skipped. Objects present
    on both sides are compared leaf by leaf; an object appearing or
    disappearing is reported at the object path.
    """
    if current.shape.name != desired.shape.name:
        raise ValueError(f"cannot diff {current.shape.name} against {desired.shape.name}")
    paths: list[FieldPath] = []
    _diff_document(current, desired, FieldPath(), paths)
    return paths


def _diff_document(
    current: Document, desired: Document, prefix: FieldPath, out: list[FieldPath]
) -> None:
    for declared in desired.shape.fields:
        if declared.identifier:
            continue
        want = desired[declared.name]
        if want is UNKNOWN:
            continue
        have = current[declared.name]
        path = prefix.child(declared.name)

        if (
            declared.kind is FieldKind.OBJECT
            and isinstance(want, Document)
            and isinstance(have, Document)
        ):
            _diff_document(have, want, path, out)
        elif declared.keyed and isinstance(want, dict) and isinstance(have, dict):
            for key in sorted(set(want) | set(have)):
                wanted = want.get(key, ABSENT)
                if wanted is UNKNOWN:
                    continue
                if wanted != have.get(key, ABSENT):
                    out.append(path.child(key))
        elif want != have:
            out.append(path)


class MismatchType(str, Enum):
    """How a planned value disagrees with the observed one."""

    NULL = "null_mismatch"
    UNKNOWN = "unknown_mismatch"
    VALUE = "value_mismatch"


@dataclass(frozen=True)
class FieldDiff:
    """One disagreement between a planned and an observed document."""

    path: FieldPath
    planned: Any
    observed: Any
    type: MismatchType

    def __str__(self) -> str:
        return f"{self.path}: planned {self.planned!r}, observed {self.observed!r} ({self.type.value})"


def compare(planned: Document, observed: Document) -> list[FieldDiff]:
    """List every known planned value that the observed document does not carry.

    UNKNOWN planned values are the remote system's to decide and never count.
    """
    diffs: list[FieldDiff] = []
    _compare_document(planned, observed, FieldPath(), diffs)
    return diffs


def _compare_document(
    planned: Document, observed: Document, prefix: FieldPath, out: list[FieldDiff]
) -> None:
    for declared in planned.shape.fields:
        if declared.identifier:
            continue
        want = planned[declared.name]
        have = observed[declared.name]
        path = prefix.child(declared.name)
        if want is UNKNOWN:
            continue
        if isinstance(want, Document) and isinstance(have, Document):
            _compare_document(want, have, path, out)
        elif have is UNKNOWN:
            out.append(FieldDiff(path, want, have, MismatchType.UNKNOWN))
        elif (want is ABSENT) != (have is ABSENT):
            out.append(FieldDiff(path, want, have, MismatchType.NULL))
        elif want != have:
            out.append(FieldDiff(path, want, have, MismatchType.VALUE))
