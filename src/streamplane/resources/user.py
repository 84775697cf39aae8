"""SASL/SCRAM user mapping table."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ..attributes import Document, Field, FieldKind, Shape, is_known
from ..errors import InvalidRequestError, NotFoundError
from ..models import UserSpec
from ..update_mask import UpdateRequest
from .base import Mutation, Plane, ResourceKind, enum_from_api, enum_to_api

if TYPE_CHECKING:
    from ..transport import Clients, Transport

USER_SHAPE = Shape(
    "user",
    (
        Field("id", FieldKind.STRING, identifier=True, computed=True),
        Field("name", FieldKind.STRING),
        Field("password", FieldKind.STRING),
        Field("mechanism", FieldKind.STRING),
        Field("cluster_api_url", FieldKind.STRING),
        Field("allow_deletion", FieldKind.BOOL),
    ),
)


class UserKind(ResourceKind):
    """SASL user on a cluster's data plane; the API never returns the password."""

    name = "user"
    shape = USER_SHAPE
    spec_model = UserSpec
    plane = Plane.DATA
    contingent = ("allow_deletion", "password", "cluster_api_url")
    immutable = ("name", "mechanism", "cluster_api_url")

    async def transport(self, clients: Clients, document: Document) -> Transport:
        return clients.dataplane(document["cluster_api_url"] if is_known(document["cluster_api_url"]) else "")

    def observed_attributes(self, response: Mapping[str, Any], reference: Document) -> dict[str, Any]:
        user = response.get("user", response)
        return {
            "id": user.get("name"),
            "name": user.get("name"),
            "mechanism": enum_from_api("SASL_MECHANISM", user.get("mechanism")),
        }

    def _user(self, document: Document) -> dict[str, Any]:
        if not is_known(document["password"]):
            raise InvalidRequestError(f"user {document['name']} needs a password")
        return {
            "name": document["name"],
            "password": document["password"],
            "mechanism": enum_to_api("SASL_MECHANISM", document["mechanism"]),
        }

    def create_request(self, desired: Document) -> Mutation:
        return Mutation("CreateUser", {"user": self._user(desired)})

    def identifier_from_create(
        self, response: Mapping[str, Any], desired: Document, resource_id: str | None
    ) -> str:
        return str((response.get("user") or {}).get("name") or desired["name"])

    async def fetch(self, transport: Transport, identifier: str, reference: Document) -> dict[str, Any]:
        response = await transport.invoke("ListUsers", {"filter": {"name": identifier}})
        for user in response.get("users") or ():
            if user.get("name") == identifier:
                return {"user": user}
        raise NotFoundError(f"user {identifier} not found")

    def update_mutations(self, request: UpdateRequest, desired: Document, tracked: Document) -> list[Mutation]:
        # Only the password can change in place
        if not request.touches("password"):
            return []
        return [Mutation("UpdateUser", {"user": self._user(desired)})]

    def delete_request(self, tracked: Document) -> Mutation:
        return Mutation("DeleteUser", {"name": tracked.identifier})
