"""Resource group mapping table.

Groups are created synchronously and only carry a name, which cannot be
changed in place.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ..attributes import Document, Field, FieldKind, Shape
from ..errors import InvalidRequestError
from ..models import ResourceGroupSpec
from .base import Mutation, ResourceKind

if TYPE_CHECKING:
    from ..transport import Transport

RESOURCE_GROUP_SHAPE = Shape(
    "resource_group",
    (
        Field("id", FieldKind.STRING, identifier=True, computed=True),
        Field("name", FieldKind.STRING),
        Field("allow_deletion", FieldKind.BOOL),
    ),
)


class ResourceGroupKind(ResourceKind):
    """Organisational group that networks and clusters belong to."""

    name = "resource_group"
    shape = RESOURCE_GROUP_SHAPE
    spec_model = ResourceGroupSpec
    immutable = ("name",)

    def observed_attributes(self, response: Mapping[str, Any], reference: Document) -> dict[str, Any]:
        group = response.get("resource_group", response)
        return {"id": group.get("id"), "name": group.get("name")}

    def create_request(self, desired: Document) -> Mutation:
        return Mutation("CreateResourceGroup", {"resource_group": {"name": desired["name"]}})

    def identifier_from_create(
        self, response: Mapping[str, Any], desired: Document, resource_id: str | None
    ) -> str:
        group_id = (response.get("resource_group") or {}).get("id") or resource_id
        if not group_id:
            raise InvalidRequestError("create resource group response carried no id")
        return str(group_id)

    async def fetch(self, transport: Transport, identifier: str, reference: Document) -> dict[str, Any]:
        return await transport.invoke("GetResourceGroup", {"id": identifier})

    def delete_request(self, tracked: Document) -> Mutation:
        return Mutation("DeleteResourceGroup", {"id": tracked.identifier})
