"""Schema registry ACL mapping table.

The registry is reached through the cluster's schema registry URL, looked up
once per cluster on the control plane. New ACLs can take a while to show up
in listings, so creation is followed by a visibility check.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ..attributes import Document, Field, FieldKind, Shape, is_known
from ..errors import NotFoundError, UnreachableError
from ..models import SchemaRegistryAclSpec
from .base import Mutation, Plane, ResourceKind, identity

if TYPE_CHECKING:
    from ..transport import Clients, Transport

SCHEMA_REGISTRY_ACL_SHAPE = Shape(
    "schema_registry_acl",
    (
        Field("id", FieldKind.STRING, identifier=True, computed=True),
        Field("cluster_id", FieldKind.STRING),
        Field("principal", FieldKind.STRING),
        Field("resource_type", FieldKind.STRING),
        Field("resource_name", FieldKind.STRING),
        Field("pattern_type", FieldKind.STRING),
        Field("host", FieldKind.STRING),
        Field("operation", FieldKind.STRING),
        Field("permission", FieldKind.STRING),
        Field("allow_deletion", FieldKind.BOOL),
    ),
)

BINDING = (
    "cluster_id",
    "principal",
    "resource_type",
    "resource_name",
    "pattern_type",
    "host",
    "operation",
    "permission",
)


def _wire_acl(document: Document | Mapping[str, Any]) -> dict[str, Any]:
    resource_name = document["resource_name"]
    return {
        "principal": document["principal"],
        "resource": resource_name if is_known(resource_name) else "",
        "resource_type": document["resource_type"],
        "pattern_type": document["pattern_type"],
        "host": document["host"],
        "operation": document["operation"],
        "permission": document["permission"],
    }


class SchemaRegistryAclKind(ResourceKind):
    """ACL enforced by a cluster's schema registry."""

    name = "schema_registry_acl"
    shape = SCHEMA_REGISTRY_ACL_SHAPE
    spec_model = SchemaRegistryAclSpec
    plane = Plane.DATA
    immutable = BINDING
    verify_after_create = True

    def __init__(self) -> None:
        self._registry_urls: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def transport(self, clients: Clients, document: Document) -> Transport:
        cluster_id = document["cluster_id"]
        # held across the lookup so concurrent passes share one GetCluster
        async with self._lock:
            url = self._registry_urls.get(cluster_id)
            if url is None:
                response = await clients.control_plane.invoke("GetCluster", {"id": cluster_id})
                registry = response.get("cluster", response).get("schema_registry") or {}
                url = registry.get("url") or ""
                if not url:
                    raise UnreachableError(f"cluster {cluster_id} exposes no schema registry URL")
                self._registry_urls[cluster_id] = url
        return clients.dataplane(url)

    def desired_attributes(self, spec: SchemaRegistryAclSpec) -> dict[str, Any]:
        attributes = spec.to_attributes()
        attributes["id"] = identity(*(attributes.get(name) for name in BINDING))
        return attributes

    def observed_attributes(self, response: Mapping[str, Any], reference: Document) -> dict[str, Any]:
        acl = response.get("acl") or {}
        attributes = {
            "cluster_id": reference["cluster_id"],
            "principal": acl.get("principal"),
            "resource_type": acl.get("resource_type"),
            "resource_name": acl.get("resource"),
            "pattern_type": acl.get("pattern_type"),
            "host": acl.get("host"),
            "operation": acl.get("operation"),
            "permission": acl.get("permission"),
        }
        attributes["id"] = identity(*(attributes[name] for name in BINDING))
        return attributes

    def create_request(self, desired: Document) -> Mutation:
        return Mutation("CreateSchemaRegistryACL", {"acls": [_wire_acl(desired)]})

    def identifier_from_create(
        self, response: Mapping[str, Any], desired: Document, resource_id: str | None
    ) -> str:
        return desired.identifier

    async def fetch(self, transport: Transport, identifier: str, reference: Document) -> dict[str, Any]:
        wanted = _wire_acl(reference)
        response = await transport.invoke("ListSchemaRegistryACLs", wanted)
        for acl in response.get("acls") or response.get("items") or ():
            if {key: acl.get(key) for key in wanted} == wanted:
                return {"acl": acl}
        raise NotFoundError(f"schema registry acl {identifier} not found")

    def delete_request(self, tracked: Document) -> Mutation:
        return Mutation("DeleteSchemaRegistryACLs", {"acls": [_wire_acl(tracked)]})
