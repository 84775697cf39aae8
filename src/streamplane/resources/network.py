"""Network mapping table.

Networks cannot be changed in place: every desired field except
``allow_deletion`` forces replacement.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ..attributes import Document, Field, FieldKind, Shape
from ..errors import InvalidRequestError, NotFoundError
from ..models import NetworkSpec
from .base import Mutation, ResourceKind, enum_from_api, enum_to_api

if TYPE_CHECKING:
    from ..transport import Transport

STATE_DELETING = "STATE_DELETING"

NETWORK_SHAPE = Shape(
    "network",
    (
        Field("id", FieldKind.STRING, identifier=True, computed=True),
        Field("name", FieldKind.STRING),
        Field("resource_group_id", FieldKind.STRING),
        Field("cloud_provider", FieldKind.STRING),
        Field("region", FieldKind.STRING),
        Field("cluster_type", FieldKind.STRING),
        Field("cidr_block", FieldKind.STRING),
        Field("allow_deletion", FieldKind.BOOL),
        Field("state", FieldKind.STRING, computed=True),
    ),
)


class NetworkKind(ResourceKind):
    """Cloud network clusters are placed into."""

    name = "network"
    shape = NETWORK_SHAPE
    spec_model = NetworkSpec
    immutable = ("name", "resource_group_id", "cloud_provider", "region", "cluster_type", "cidr_block")
    volatile = ("state",)

    def observed_attributes(self, response: Mapping[str, Any], reference: Document) -> dict[str, Any]:
        network = response.get("network", response)
        return {
            "id": network.get("id"),
            "name": network.get("name"),
            "resource_group_id": network.get("resource_group_id"),
            "cloud_provider": enum_from_api("CLOUD_PROVIDER", network.get("cloud_provider")),
            "region": network.get("region"),
            "cluster_type": enum_from_api("TYPE", network.get("cluster_type")),
            "cidr_block": network.get("cidr_block"),
            "state": network.get("state"),
        }

    def create_request(self, desired: Document) -> Mutation:
        return Mutation(
            "CreateNetwork",
            {
                "network": {
                    "name": desired["name"],
                    "resource_group_id": desired["resource_group_id"],
                    "cloud_provider": enum_to_api("CLOUD_PROVIDER", desired["cloud_provider"]),
                    "region": desired["region"],
                    "cluster_type": enum_to_api("TYPE", desired["cluster_type"]),
                    "cidr_block": desired["cidr_block"],
                }
            },
        )

    def identifier_from_create(
        self, response: Mapping[str, Any], desired: Document, resource_id: str | None
    ) -> str:
        if resource_id:
            return resource_id
        metadata = (response.get("operation") or {}).get("metadata") or {}
        network_id = metadata.get("network_id")
        if not network_id:
            raise InvalidRequestError("create network response carried no network id")
        return str(network_id)

    async def fetch(self, transport: Transport, identifier: str, reference: Document) -> dict[str, Any]:
        response = await transport.invoke("GetNetwork", {"id": identifier})
        if response.get("network", response).get("state") == STATE_DELETING:
            raise NotFoundError(f"network {identifier} is being deleted")
        return response

    def delete_request(self, tracked: Document) -> Mutation:
        return Mutation("DeleteNetwork", {"id": tracked.identifier})
