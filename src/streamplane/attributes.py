"""Tri-state attribute values and resource state documents.

Every field of a resource is one of:
- ABSENT: nothing is set (the API omitted it, or the caller never configured it)
- UNKNOWN: the remote system will decide (only valid in desired documents)
- a concrete value: str, bool, int, float, tuple, dict or a nested Document

The zero value of a field (``""``, ``False``, ``0``, an empty list) is a real
value and is never confused with ABSENT, except through ``collapse``, which is
the single place where empty substructures are folded to ABSENT. Both the plan
path (desired configuration) and the apply path (API responses) go through it,
so the two always agree on what "nothing configured" looks like.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .differ import FieldPath


class Sentinel(Enum):
    """Non-value states of an attribute."""

    ABSENT = "absent"
    UNKNOWN = "unknown"

    def __repr__(self) -> str:
        return self.name


ABSENT = Sentinel.ABSENT
UNKNOWN = Sentinel.UNKNOWN

# Marker used for UNKNOWN in canonical (JSON) form
_UNKNOWN_MARKER = {"$unknown": True}


def is_known(value: Any) -> bool:
    """True for anything that is neither ABSENT nor UNKNOWN."""
    return value is not ABSENT and value is not UNKNOWN


def is_zero(value: Any) -> bool:
    """True for ABSENT and for the zero value of any leaf type."""
    if value is ABSENT:
        return True
    if isinstance(value, str | bool | int | float | tuple | list | dict):
        return not value
    return False


class FieldKind(str, Enum):
    """Declared type of a field."""

    STRING = "string"
    BOOL = "bool"
    INT = "int"
    NUMBER = "number"
    LIST = "list"
    MAP = "map"
    OBJECT = "object"
    OBJECT_LIST = "object_list"


@dataclass(frozen=True)
class Field:
    """Declaration of one named field of a resource or nested object.

    Attributes:
        name: Field name, also the first segment of its field path.
        kind: Declared type.
        fields: Child declarations for OBJECT and OBJECT_LIST fields.
        identifier: The resource identifier. Never diffed.
        computed: Populated by the remote system; UNKNOWN in a fresh plan.
        keyed: MAP fields diffed per key instead of as a whole.
        empty_as_absent: LIST/MAP/OBJECT_LIST fields where an empty collection
            and ABSENT mean the same thing.
    """

    name: str
    kind: FieldKind
    fields: tuple[Field, ...] = ()
    identifier: bool = False
    computed: bool = False
    keyed: bool = False
    empty_as_absent: bool = False

    @property
    def shape(self) -> Shape:
        """Shape of a nested object field."""
        if self.kind not in (FieldKind.OBJECT, FieldKind.OBJECT_LIST):
            raise TypeError(f"field {self.name!r} is not an object")
        return Shape(self.name, self.fields)


@dataclass(frozen=True)
class Shape:
    """Ordered field declarations of a document."""

    name: str
    fields: tuple[Field, ...]

    def field(self, name: str) -> Field:
        for declared in self.fields:
            if declared.name == name:
                return declared
        raise KeyError(f"{self.name} has no field {name!r}")

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    @property
    def identifier(self) -> Field | None:
        for declared in self.fields:
            if declared.identifier:
                return declared
        return None

    def document(self, values: Mapping[str, Any] | None = None, **kwargs: Any) -> Document:
        """Build a document of this shape from already-typed values."""
        merged = dict(values or {})
        merged.update(kwargs)
        return Document(self, merged)

    def from_mapping(self, data: Mapping[str, Any] | None) -> Document:
        """Build a document from plain JSON-style data.

        Missing keys and None become ABSENT, lists become tuples and nested
        mappings become nested documents.
        """
        data = data or {}
        values: dict[str, Any] = {}
        for declared in self.fields:
            if declared.name not in data:
                continue
            values[declared.name] = _from_plain(declared, data[declared.name])
        return Document(self, values)


def _from_plain(declared: Field, raw: Any) -> Any:
    if raw is None or raw is ABSENT:
        return ABSENT
    if raw is UNKNOWN or raw == _UNKNOWN_MARKER:
        return UNKNOWN
    match declared.kind:
        case FieldKind.OBJECT:
            if isinstance(raw, Document):
                return raw
            return declared.shape.from_mapping(raw)
        case FieldKind.OBJECT_LIST:
            shape = declared.shape
            return tuple(
                item if isinstance(item, Document) else shape.from_mapping(item) for item in raw
            )
        case FieldKind.LIST:
            return tuple(raw)
        case FieldKind.MAP:
            return dict(raw)
        case _:
            return raw


class Document:
    """Immutable tree of named tri-state values for one resource.

    A fresh document is built on every pass; changes produce copies via
    ``with_values`` and ``set_path``.
    """

    __slots__ = ("shape", "_values")

    def __init__(self, shape: Shape, values: Mapping[str, Any] | None = None) -> None:
        values = values or {}
        unknown = set(values) - set(shape.names)
        if unknown:
            raise ValueError(f"{shape.name} has no fields {sorted(unknown)}")
        self.shape = shape
        self._values = {name: values.get(name, ABSENT) for name in shape.names}

    def __getitem__(self, name: str) -> Any:
        try:
            return self._values[name]
        except KeyError:
            raise KeyError(f"{self.shape.name} has no field {name!r}") from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def items(self) -> Iterator[tuple[str, Any]]:
        return iter(self._values.items())

    def values(self) -> Iterator[Any]:
        return iter(self._values.values())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Document):
            return NotImplemented
        return self.shape.name == other.shape.name and self._values == other._values

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        present = ", ".join(f"{k}={v!r}" for k, v in self._values.items() if v is not ABSENT)
        return f"Document({self.shape.name}: {present})"

    @property
    def identifier(self) -> Any:
        declared = self.shape.identifier
        return self[declared.name] if declared else ABSENT

    def with_values(self, **changes: Any) -> Document:
        merged = dict(self._values)
        merged.update(changes)
        return Document(self.shape, merged)

    def with_identifier(self, value: Any) -> Document:
        declared = self.shape.identifier
        if declared is None:
            raise TypeError(f"{self.shape.name} declares no identifier")
        return self.with_values(**{declared.name: value})

    def get_path(self, path: FieldPath) -> Any:
        """Value at ``path``; ABSENT when any step along the way is missing."""
        current: Any = self
        for segment in path.segments:
            if isinstance(current, Document):
                current = current[segment]
            elif isinstance(current, dict):
                current = current.get(segment, ABSENT)
            else:
                return ABSENT
        return current

    def set_path(self, path: FieldPath, value: Any) -> Document:
        """Copy of this document with ``value`` written at ``path``.

        Missing intermediate objects are created empty. Writing ABSENT to a
        map key removes the key.
        """
        if not path.segments:
            raise ValueError("cannot set the empty path")
        head, rest = path.segments[0], path.tail()
        declared = self.shape.field(head)
        if not rest.segments:
            return self.with_values(**{head: value})

        current = self[head]
        if declared.kind is FieldKind.OBJECT:
            child = current if isinstance(current, Document) else Document(declared.shape)
            return self.with_values(**{head: child.set_path(rest, value)})
        if declared.kind is FieldKind.MAP and len(rest.segments) == 1:
            mapping = dict(current) if isinstance(current, dict) else {}
            if value is ABSENT:
                mapping.pop(rest.segments[0], None)
            else:
                mapping[rest.segments[0]] = value
            return self.with_values(**{head: mapping})
        raise KeyError(f"cannot address {path} in {self.shape.name}")

    def contains_unknown(self) -> bool:
        for value in self._values.values():
            if value is UNKNOWN:
                return True
            if isinstance(value, Document) and value.contains_unknown():
                return True
            if isinstance(value, tuple) and any(
                isinstance(item, Document) and item.contains_unknown() for item in value
            ):
                return True
        return False

    def assert_observed(self) -> Document:
        """Return self, raising if an UNKNOWN leaked into observed state."""
        if self.contains_unknown():
            raise ValueError(f"observed {self.shape.name} document contains unknown values")
        return self

    def to_dict(self) -> dict[str, Any]:
        """Plain JSON-style form with ABSENT and UNKNOWN fields omitted."""
        result: dict[str, Any] = {}
        for name, value in self._values.items():
            if is_known(value):
                result[name] = to_plain(value)
        return result

    def canonical(self) -> dict[str, Any]:
        """Deterministic JSON form that keeps every field, in declaration order."""
        return {name: _canonical(value) for name, value in self._values.items()}

    def fingerprint(self) -> str:
        encoded = json.dumps(self.canonical(), separators=(",", ":"), ensure_ascii=True)
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def to_plain(value: Any) -> Any:
    if isinstance(value, Document):
        return value.to_dict()
    if isinstance(value, tuple | list):
        return [to_plain(item) for item in value]
    if isinstance(value, dict):
        return {k: (None if v is ABSENT else to_plain(v)) for k, v in sorted(value.items())}
    return value


def _canonical(value: Any) -> Any:
    if value is ABSENT:
        return None
    if value is UNKNOWN:
        return dict(_UNKNOWN_MARKER)
    if isinstance(value, Document):
        return value.canonical()
    if isinstance(value, tuple | list):
        return [_canonical(item) for item in value]
    if isinstance(value, dict):
        return {k: _canonical(v) for k, v in sorted(value.items())}
    return value


def collapse(document: Document) -> Document:
    """Fold empty substructures to ABSENT, bottom-up.

    A nested object whose leaves are all ABSENT or zero becomes ABSENT.
    Collections declared ``empty_as_absent`` become ABSENT when empty.
    UNKNOWN leaves keep their object alive.
    """
    values: dict[str, Any] = {}
    for declared in document.shape.fields:
        value = document[declared.name]
        if declared.kind is FieldKind.OBJECT and isinstance(value, Document):
            value = collapse(value)
            if all(is_zero(leaf) for leaf in value.values()):
                value = ABSENT
        elif declared.kind is FieldKind.OBJECT_LIST and isinstance(value, tuple):
            value = tuple(collapse(item) if isinstance(item, Document) else item for item in value)
        if declared.empty_as_absent and isinstance(value, tuple | dict) and not value:
            value = ABSENT
        values[declared.name] = value
    return Document(document.shape, values)


def merge_intent(desired: Document, tracked: Document | None, names: Iterable[str]) -> Document:
    """Fill contingent fields the desired document leaves unset from tracked state."""
    if tracked is None:
        return desired
    changes = {
        name: tracked[name]
        for name in names
        if not is_known(desired[name]) and is_known(tracked[name])
    }
    return desired.with_values(**changes) if changes else desired


def carry_forward(observed: Document, tracked: Document | None, names: Iterable[str]) -> Document:
    """Prefer the caller's last-known intent over what the API reports.

    Used for fields the read API does not return, or returns in a form that
    would fight the caller's configuration (version pins, deletion flags).
    """
    if tracked is None:
        return observed
    changes = {name: tracked[name] for name in names if is_known(tracked[name])}
    return observed.with_values(**changes) if changes else observed
