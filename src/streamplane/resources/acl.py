"""Kafka ACL mapping table.

An ACL has no server-side identifier; it is addressed by its full binding,
joined into one string. Nothing about a binding can change in place.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ..attributes import Document, Field, FieldKind, Shape, is_known
from ..errors import NotFoundError
from ..models import AclSpec
from .base import Mutation, Plane, ResourceKind, enum_from_api, enum_to_api, identity

if TYPE_CHECKING:
    from ..transport import Clients, Transport

ACL_SHAPE = Shape(
    "acl",
    (
        Field("id", FieldKind.STRING, identifier=True, computed=True),
        Field("cluster_api_url", FieldKind.STRING),
        Field("resource_type", FieldKind.STRING),
        Field("resource_name", FieldKind.STRING),
        Field("resource_pattern_type", FieldKind.STRING),
        Field("principal", FieldKind.STRING),
        Field("host", FieldKind.STRING),
        Field("operation", FieldKind.STRING),
        Field("permission_type", FieldKind.STRING),
        Field("allow_deletion", FieldKind.BOOL),
    ),
)

# Binding field -> wire enum prefix (None for plain strings)
BINDING = (
    ("resource_type", "RESOURCE_TYPE"),
    ("resource_name", None),
    ("resource_pattern_type", "RESOURCE_PATTERN_TYPE"),
    ("principal", None),
    ("host", None),
    ("operation", "OPERATION"),
    ("permission_type", "PERMISSION_TYPE"),
)


def acl_identity(document: Document | Mapping[str, Any]) -> str:
    return identity(*(document[name] for name, _ in BINDING))


def acl_filter(document: Document) -> dict[str, Any]:
    """Wire filter matching exactly one binding."""
    result: dict[str, Any] = {}
    for name, prefix in BINDING:
        value = document[name]
        result[name] = enum_to_api(prefix, value) if prefix else value
    return result


class AclKind(ResourceKind):
    """ACL binding on a cluster's data plane."""

    name = "acl"
    shape = ACL_SHAPE
    spec_model = AclSpec
    plane = Plane.DATA
    contingent = ("allow_deletion", "cluster_api_url")
    immutable = tuple(name for name, _ in BINDING) + ("cluster_api_url",)
    verify_after_create = True

    async def transport(self, clients: Clients, document: Document) -> Transport:
        return clients.dataplane(document["cluster_api_url"] if is_known(document["cluster_api_url"]) else "")

    def desired_attributes(self, spec: AclSpec) -> dict[str, Any]:
        attributes = spec.to_attributes()
        attributes["id"] = acl_identity(attributes)
        return attributes

    def observed_attributes(self, response: Mapping[str, Any], reference: Document) -> dict[str, Any]:
        binding = response.get("binding") or {}
        attributes: dict[str, Any] = {}
        for name, prefix in BINDING:
            value = binding.get(name)
            attributes[name] = enum_from_api(prefix, value, lower=False) if prefix else value
        attributes["id"] = acl_identity(attributes)
        return attributes

    def create_request(self, desired: Document) -> Mutation:
        return Mutation("CreateACL", acl_filter(desired))

    def identifier_from_create(
        self, response: Mapping[str, Any], desired: Document, resource_id: str | None
    ) -> str:
        return acl_identity(desired)

    async def fetch(self, transport: Transport, identifier: str, reference: Document) -> dict[str, Any]:
        wanted = acl_filter(reference)
        response = await transport.invoke("ListACLs", {"filter": wanted})
        for resource in response.get("resources") or ():
            for acl in resource.get("acls") or ():
                binding = {
                    "resource_type": resource.get("resource_type"),
                    "resource_name": resource.get("resource_name"),
                    "resource_pattern_type": resource.get("resource_pattern_type"),
                    "principal": acl.get("principal"),
                    "host": acl.get("host"),
                    "operation": acl.get("operation"),
                    "permission_type": acl.get("permission_type"),
                }
                if binding == wanted:
                    return {"binding": binding}
        raise NotFoundError(f"acl {identifier} not found")

    def delete_request(self, tracked: Document) -> Mutation:
        return Mutation("DeleteACLs", {"filter": acl_filter(tracked)})
