"""Common machinery for resource kinds.

A resource kind is the hand-written mapping table between three
representations of one kind of resource: the desired configuration (pydantic
spec), the resource state document, and the API's wire messages. Nothing
here walks fields by reflection; each kind spells out its own mapping.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from ..attributes import (
    ABSENT,
    UNKNOWN,
    Document,
    Shape,
    carry_forward,
    collapse,
    is_known,
    merge_intent,
)
from ..differ import FieldPath
from ..errors import ReplacementRequiredError
from ..models import BaseSpec
from ..update_mask import UpdateRequest

if TYPE_CHECKING:
    from ..controller import Controller
    from ..transport import Clients, Transport


class Plane(str, Enum):
    """Which API a kind is managed through."""

    CONTROL = "control"
    DATA = "data"


@dataclass(frozen=True)
class Mutation:
    """One API call: method name plus request message."""

    method: str
    request: dict[str, Any] = field(default_factory=dict)


def enum_to_api(prefix: str, value: Any) -> Any:
    """``("CLOUD_PROVIDER", "aws")`` -> ``"CLOUD_PROVIDER_AWS"``."""
    if not is_known(value):
        return None
    return f"{prefix}_{str(value).upper().replace('-', '_')}"


def enum_from_api(prefix: str, value: Any, *, lower: bool = True) -> Any:
    """Inverse of ``enum_to_api``; unset and UNSPECIFIED values become None."""
    if not value:
        return None
    text = str(value)
    if text.startswith(prefix + "_"):
        text = text[len(prefix) + 1 :]
    if text == "UNSPECIFIED":
        return None
    return text.lower().replace("_", "-") if lower else text


class ResourceKind:
    """Mapping table and lifecycle hooks of one resource kind."""

    name: ClassVar[str]
    shape: ClassVar[Shape]
    spec_model: ClassVar[type[BaseSpec]]
    plane: ClassVar[Plane] = Plane.CONTROL

    # Desired value wins when set, otherwise the last-known value is kept
    contingent: ClassVar[tuple[str, ...]] = ("allow_deletion",)
    # Fields that only exist in tracked state and are never sent to the API
    local_fields: ClassVar[tuple[str, ...]] = ("allow_deletion",)
    # Fields that cannot change without replacing the resource
    immutable: ClassVar[tuple[str, ...]] = ()
    # Computed fields that may change between passes and are never carried forward
    volatile: ClassVar[tuple[str, ...]] = ()
    # Newly created resources may take a while to become visible
    verify_after_create: ClassVar[bool] = False

    # -------------------------------------------------------------------------
    # Plan pass
    # -------------------------------------------------------------------------

    def desired_attributes(self, spec: BaseSpec) -> dict[str, Any]:
        return spec.to_attributes()

    def desired_document(self, spec: BaseSpec, tracked: Document | None = None) -> Document:
        """Resource state document for the desired configuration.

        Computed fields the caller left unset take the tracked value when it is
        stable, and UNKNOWN otherwise.
        """
        if not isinstance(spec, self.spec_model):
            raise TypeError(f"{self.name} expects {self.spec_model.__name__}")
        document = self.shape.from_mapping(self.desired_attributes(spec))

        computed: dict[str, Any] = {}
        for declared in self.shape.fields:
            if not declared.computed or is_known(document[declared.name]):
                continue
            previous = tracked[declared.name] if tracked is not None else ABSENT
            if declared.name not in self.volatile and is_known(previous):
                computed[declared.name] = previous
            else:
                computed[declared.name] = UNKNOWN
        if computed:
            document = document.with_values(**computed)

        return collapse(merge_intent(document, tracked, self.contingent))

    # -------------------------------------------------------------------------
    # Apply / read pass
    # -------------------------------------------------------------------------

    def observed_attributes(self, response: Mapping[str, Any], reference: Document) -> dict[str, Any]:
        raise NotImplementedError("Subclasses must implement observed_attributes")

    def observed_document(self, response: Mapping[str, Any], reference: Document) -> Document:
        """Resource state document for an API response.

        ``reference`` is the caller's last-known intent: tracked state on read,
        the desired document right after create or update.
        """
        document = self.shape.from_mapping(self.observed_attributes(response, reference))
        document = carry_forward(document, reference, self.contingent)
        return collapse(document).assert_observed()

    def minimal_document(self, desired: Document, identifier: Any) -> Document:
        """Tracked state for a resource that exists but could not be read back."""
        values = {name: (ABSENT if value is UNKNOWN else value) for name, value in desired.items()}
        return collapse(Document(self.shape, values)).with_identifier(identifier)

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    async def transport(self, clients: Clients, document: Document) -> Transport:
        """Transport this resource is reached through."""
        return clients.control_plane

    def create_request(self, desired: Document) -> Mutation:
        raise NotImplementedError("Subclasses must implement create_request")

    def identifier_from_create(self, response: Mapping[str, Any], desired: Document, resource_id: str | None) -> str:
        raise NotImplementedError("Subclasses must implement identifier_from_create")

    async def fetch(self, transport: Transport, identifier: str, reference: Document) -> dict[str, Any]:
        """Current remote state; raises NotFoundError when the resource is gone."""
        raise NotImplementedError("Subclasses must implement fetch")

    def check_update(self, paths: list[FieldPath], desired: Document, tracked: Document) -> None:
        """Reject changes the API cannot apply in place."""
        blocked = [str(path) for path in paths if path.root in self.immutable]
        if blocked:
            raise ReplacementRequiredError(f"{self.name} {tracked.identifier}", blocked)

    def update_mutations(self, request: UpdateRequest, desired: Document, tracked: Document) -> list[Mutation]:
        raise NotImplementedError(f"{self.name} does not support in-place updates")

    def delete_request(self, tracked: Document) -> Mutation:
        raise NotImplementedError("Subclasses must implement delete_request")

    async def before_delete(self, controller: Controller, transport: Transport, tracked: Document) -> None:
        """Hook run ahead of the delete call."""
        return None


def identity(*parts: Any) -> str:
    """Join identifier parts the way composite identifiers are written."""
    return ":".join("" if part is None or part is ABSENT else str(part) for part in parts)
