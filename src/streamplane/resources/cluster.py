"""Cluster mapping table."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ..attributes import Document, Field, FieldKind, Shape
from ..errors import InvalidRequestError, NotFoundError
from ..models import ClusterSpec
from ..retry import RetryableError
from ..update_mask import UpdateRequest
from .base import Mutation, ResourceKind, enum_from_api, enum_to_api

if TYPE_CHECKING:
    from ..controller import Controller
    from ..transport import Transport

logger = logging.getLogger(__name__)

STATE_READY = "STATE_READY"
STATE_DELETING = "STATE_DELETING"

MTLS_FIELDS = (
    Field("enabled", FieldKind.BOOL),
    Field("ca_certificates_pem", FieldKind.LIST),
    Field("principal_mapping_rules", FieldKind.LIST),
)
ENDPOINT_FIELDS = (Field("mtls", FieldKind.OBJECT, fields=MTLS_FIELDS),)

MAINTENANCE_WINDOW_FIELDS = (
    Field(
        "day_hour",
        FieldKind.OBJECT,
        fields=(Field("hour_of_day", FieldKind.INT), Field("day_of_week", FieldKind.STRING)),
    ),
    Field("anytime", FieldKind.BOOL),
    Field("unspecified", FieldKind.BOOL),
)

CLUSTER_SHAPE = Shape(
    "cluster",
    (
        Field("id", FieldKind.STRING, identifier=True, computed=True),
        Field("name", FieldKind.STRING),
        Field("resource_group_id", FieldKind.STRING),
        Field("network_id", FieldKind.STRING),
        Field("cloud_provider", FieldKind.STRING),
        Field("region", FieldKind.STRING),
        Field("zones", FieldKind.LIST, computed=True, empty_as_absent=True),
        Field("cluster_type", FieldKind.STRING),
        Field("connection_type", FieldKind.STRING),
        Field("throughput_tier", FieldKind.STRING),
        Field("redpanda_version", FieldKind.STRING, computed=True),
        Field("allow_deletion", FieldKind.BOOL),
        Field("tags", FieldKind.MAP, empty_as_absent=True),
        Field("read_replica_cluster_ids", FieldKind.LIST, empty_as_absent=True),
        Field("kafka_api", FieldKind.OBJECT, fields=ENDPOINT_FIELDS),
        Field("http_proxy", FieldKind.OBJECT, fields=ENDPOINT_FIELDS),
        Field("schema_registry", FieldKind.OBJECT, fields=ENDPOINT_FIELDS),
        Field(
            "maintenance_window_config",
            FieldKind.OBJECT,
            fields=MAINTENANCE_WINDOW_FIELDS,
            computed=True,
        ),
        Field("gcp_global_access_enabled", FieldKind.BOOL, computed=True),
        Field("state", FieldKind.STRING, computed=True),
        Field(
            "state_description",
            FieldKind.OBJECT,
            fields=(Field("code", FieldKind.INT), Field("message", FieldKind.STRING)),
            computed=True,
        ),
        Field("created_at", FieldKind.STRING, computed=True),
        Field("cluster_api_url", FieldKind.STRING, computed=True),
    ),
)

# Document field -> wire field, where they differ
WIRE_NAMES = {"cluster_type": "type", "tags": "cloud_provider_tags"}

READ_ONLY = ("state", "state_description", "created_at", "cluster_api_url")


def _endpoint_to_api(value: Any) -> dict[str, Any] | None:
    if not isinstance(value, Mapping):
        return None
    mtls = value.get("mtls")
    return {"mtls": dict(mtls) if isinstance(mtls, Mapping) else None}


def _endpoint_from_api(raw: Any) -> dict[str, Any] | None:
    if not isinstance(raw, Mapping):
        return None
    mtls = raw.get("mtls")
    if not isinstance(mtls, Mapping):
        return {"mtls": None}
    return {
        "mtls": {
            "enabled": bool(mtls.get("enabled", False)),
            "ca_certificates_pem": list(mtls.get("ca_certificates_pem") or []),
            "principal_mapping_rules": list(mtls.get("principal_mapping_rules") or []),
        }
    }


def maintenance_window_to_api(value: Any) -> dict[str, Any] | None:
    """Encode the window as exactly one of day_hour, anytime or unspecified."""
    if not isinstance(value, Mapping):
        return None
    day_hour = value.get("day_hour")
    if isinstance(day_hour, Mapping):
        return {
            "day_hour": {
                "hour_of_day": day_hour.get("hour_of_day"),
                "day_of_week": day_hour.get("day_of_week"),
            }
        }
    if value.get("anytime"):
        return {"anytime": {}}
    if value.get("unspecified"):
        return {"unspecified": {}}
    return None


def maintenance_window_from_api(raw: Any) -> dict[str, Any] | None:
    """Decode the window; ``anytime`` and ``unspecified`` map to themselves."""
    if not isinstance(raw, Mapping):
        return None
    day_hour = raw.get("day_hour")
    if isinstance(day_hour, Mapping):
        return {
            "day_hour": {
                "hour_of_day": int(day_hour.get("hour_of_day") or 0),
                "day_of_week": day_hour.get("day_of_week"),
            }
        }
    if "anytime" in raw:
        return {"anytime": True}
    if "unspecified" in raw:
        return {"unspecified": True}
    return None


def encode_cluster(attributes: Mapping[str, Any]) -> dict[str, Any]:
    """Document-form cluster fields -> wire message fields."""
    wire: dict[str, Any] = {}
    for name, value in attributes.items():
        if name in READ_ONLY or name == "allow_deletion":
            continue
        match name:
            case "cloud_provider":
                value = enum_to_api("CLOUD_PROVIDER", value)
            case "cluster_type":
                value = enum_to_api("TYPE", value)
            case "connection_type":
                value = enum_to_api("CONNECTION_TYPE", value)
            case "kafka_api" | "http_proxy" | "schema_registry":
                value = _endpoint_to_api(value)
            case "maintenance_window_config":
                value = maintenance_window_to_api(value)
        wire[WIRE_NAMES.get(name, name)] = value
    return wire


class ClusterKind(ResourceKind):
    """Dedicated and BYOC clusters, managed through the control plane."""

    name = "cluster"
    shape = CLUSTER_SHAPE
    spec_model = ClusterSpec
    contingent = ("allow_deletion", "redpanda_version", "tags", "gcp_global_access_enabled")
    immutable = (
        "resource_group_id",
        "network_id",
        "cloud_provider",
        "region",
        "zones",
        "cluster_type",
        "connection_type",
    )
    volatile = ("state", "state_description")

    def observed_attributes(self, response: Mapping[str, Any], reference: Document) -> dict[str, Any]:
        cluster = response.get("cluster", response)
        dataplane = cluster.get("dataplane_api") or {}
        state_description = cluster.get("state_description")
        return {
            "id": cluster.get("id"),
            "name": cluster.get("name"),
            "resource_group_id": cluster.get("resource_group_id"),
            "network_id": cluster.get("network_id"),
            "cloud_provider": enum_from_api("CLOUD_PROVIDER", cluster.get("cloud_provider")),
            "region": cluster.get("region"),
            "zones": cluster.get("zones"),
            "cluster_type": enum_from_api("TYPE", cluster.get("type")),
            "connection_type": enum_from_api("CONNECTION_TYPE", cluster.get("connection_type")),
            "throughput_tier": cluster.get("throughput_tier"),
            "redpanda_version": cluster.get("current_redpanda_version")
            or cluster.get("redpanda_version"),
            "tags": cluster.get("cloud_provider_tags"),
            "read_replica_cluster_ids": cluster.get("read_replica_cluster_ids"),
            "kafka_api": _endpoint_from_api(cluster.get("kafka_api")),
            "http_proxy": _endpoint_from_api(cluster.get("http_proxy")),
            "schema_registry": _endpoint_from_api(cluster.get("schema_registry")),
            "maintenance_window_config": maintenance_window_from_api(
                cluster.get("maintenance_window_config")
            ),
            "gcp_global_access_enabled": cluster.get("gcp_global_access_enabled"),
            "state": cluster.get("state"),
            "state_description": (
                {
                    "code": int(state_description.get("code") or 0),
                    "message": state_description.get("message") or "",
                }
                if isinstance(state_description, Mapping)
                else None
            ),
            "created_at": cluster.get("created_at"),
            "cluster_api_url": dataplane.get("url"),
        }

    def create_request(self, desired: Document) -> Mutation:
        return Mutation("CreateCluster", {"cluster": encode_cluster(desired.to_dict())})

    def identifier_from_create(
        self, response: Mapping[str, Any], desired: Document, resource_id: str | None
    ) -> str:
        if resource_id:
            return resource_id
        metadata = (response.get("operation") or {}).get("metadata") or {}
        cluster_id = metadata.get("cluster_id")
        if not cluster_id:
            raise InvalidRequestError("create cluster response carried no cluster id")
        return str(cluster_id)

    async def fetch(self, transport: Transport, identifier: str, reference: Document) -> dict[str, Any]:
        response = await transport.invoke("GetCluster", {"id": identifier})
        cluster = response.get("cluster", response)
        if cluster.get("state") == STATE_DELETING:
            raise NotFoundError(f"cluster {identifier} is being deleted")
        return response

    def update_mutations(self, request: UpdateRequest, desired: Document, tracked: Document) -> list[Mutation]:
        wire = request.to_wire()
        update = encode_cluster({k: v for k, v in wire["update"].items() if k != "id"})
        update["id"] = tracked.identifier
        mask = sorted({WIRE_NAMES.get(path.root, path.root) for path in request.paths})
        # Endpoint objects are replaced whole; send their complete desired value
        for root in ("kafka_api", "http_proxy", "schema_registry", "maintenance_window_config"):
            if request.touches(root):
                value = desired[root]
                update[root] = encode_cluster({root: value.to_dict()})[root] if isinstance(value, Document) else None
        logger.debug("Cluster update", extra={"cluster_id": tracked.identifier, "update_mask": mask})
        return [Mutation("UpdateCluster", {"cluster": update, "update_mask": mask})]

    def delete_request(self, tracked: Document) -> Mutation:
        return Mutation("DeleteCluster", {"id": tracked.identifier})

    async def before_delete(self, controller: Controller, transport: Transport, tracked: Document) -> None:
        """Wait until the cluster is ready; a cluster mid-create or mid-update cannot be deleted."""
        identifier = tracked.identifier

        async def until_ready() -> None:
            response = await transport.invoke("GetCluster", {"id": identifier})
            state = response.get("cluster", response).get("state")
            if state == STATE_DELETING:
                raise NotFoundError(f"cluster {identifier} is already being deleted")
            if state != STATE_READY:
                raise RetryableError(f"cluster {identifier} is {state}, waiting for {STATE_READY}")

        await controller.retry(
            until_ready,
            timeout=controller.config.delete_timeout_seconds,
            description=f"wait for cluster {identifier} to become ready",
        )
