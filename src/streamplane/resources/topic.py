"""Topic mapping table.

Topics live on a cluster's data plane. The topic name is the identifier. An
update is a batch of configuration operations followed, when the partition
count grows, by a partition change; partitions can never shrink.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ..attributes import ABSENT, Document, Field, FieldKind, Shape, is_known
from ..differ import FieldPath
from ..errors import NotFoundError, ReplacementRequiredError
from ..models import TopicSpec
from ..update_mask import UpdateRequest
from .base import Mutation, Plane, ResourceKind

if TYPE_CHECKING:
    from ..transport import Clients, Transport

logger = logging.getLogger(__name__)

REPLICATION_FACTOR_CONFIG = "replication.factor"
# Only explicitly set topic-level overrides are tracked; broker defaults are not ours
DYNAMIC_SOURCES = ("CONFIG_SOURCE_DYNAMIC_TOPIC_CONFIG", "DYNAMIC_TOPIC_CONFIG")
MAX_LIST_PAGES = 100

TOPIC_SHAPE = Shape(
    "topic",
    (
        Field("id", FieldKind.STRING, identifier=True, computed=True),
        Field("name", FieldKind.STRING),
        Field("cluster_api_url", FieldKind.STRING),
        Field("partition_count", FieldKind.INT, computed=True),
        Field("replication_factor", FieldKind.INT, computed=True),
        Field("configuration", FieldKind.MAP, keyed=True, empty_as_absent=True),
        Field("allow_deletion", FieldKind.BOOL),
    ),
)


def dynamic_configuration(entries: Any) -> dict[str, str]:
    """Topic-level overrides from a configuration listing."""
    result: dict[str, str] = {}
    for entry in entries or ():
        if not isinstance(entry, Mapping) or entry.get("source") not in DYNAMIC_SOURCES:
            continue
        name = entry.get("name")
        if not name or name == REPLICATION_FACTOR_CONFIG or entry.get("value") is None:
            continue
        result[name] = str(entry["value"])
    return result


class TopicKind(ResourceKind):
    """Kafka topic on a cluster's data plane."""

    name = "topic"
    shape = TOPIC_SHAPE
    spec_model = TopicSpec
    plane = Plane.DATA
    contingent = ("allow_deletion", "cluster_api_url")
    immutable = ("name", "cluster_api_url")

    async def transport(self, clients: Clients, document: Document) -> Transport:
        return clients.dataplane(document["cluster_api_url"] if is_known(document["cluster_api_url"]) else "")

    def observed_attributes(self, response: Mapping[str, Any], reference: Document) -> dict[str, Any]:
        topic = response.get("topic") or {}
        return {
            "id": topic.get("name"),
            "name": topic.get("name"),
            "partition_count": topic.get("partition_count"),
            "replication_factor": topic.get("replication_factor"),
            "configuration": dynamic_configuration(response.get("configurations")),
        }

    def create_request(self, desired: Document) -> Mutation:
        configuration = desired["configuration"]
        topic: dict[str, Any] = {
            "name": desired["name"],
            "configs": [
                {"name": key, "value": value}
                for key, value in sorted((configuration if is_known(configuration) else {}).items())
            ],
        }
        # Unset counts are left to the cluster defaults
        for name in ("partition_count", "replication_factor"):
            if is_known(desired[name]):
                topic[name] = desired[name]
        return Mutation("CreateTopic", {"topic": topic})

    def identifier_from_create(
        self, response: Mapping[str, Any], desired: Document, resource_id: str | None
    ) -> str:
        return str(response.get("topic_name") or desired["name"])

    async def fetch(self, transport: Transport, identifier: str, reference: Document) -> dict[str, Any]:
        topic = await self._find(transport, identifier)
        configurations = await transport.invoke("GetTopicConfigurations", {"topic_name": identifier})
        return {"topic": topic, "configurations": configurations.get("configurations", [])}

    async def _find(self, transport: Transport, name: str) -> dict[str, Any]:
        page_token = ""
        for _ in range(MAX_LIST_PAGES):
            request: dict[str, Any] = {"filter": {"name_contains": name}}
            if page_token:
                request["page_token"] = page_token
            response = await transport.invoke("ListTopics", request)
            for topic in response.get("topics") or ():
                if topic.get("name") == name:
                    return topic
            page_token = response.get("next_page_token") or ""
            if not page_token:
                break
        raise NotFoundError(f"topic {name} not found")

    def check_update(self, paths: list[FieldPath], desired: Document, tracked: Document) -> None:
        super().check_update(paths, desired, tracked)
        wanted, current = desired["partition_count"], tracked["partition_count"]
        if (
            any(path.root == "partition_count" for path in paths)
            and is_known(wanted)
            and is_known(current)
            and wanted < current
        ):
            raise ReplacementRequiredError(
                f"topic {tracked.identifier}",
                [f"partition_count (cannot shrink from {current} to {wanted})"],
            )

    def update_mutations(self, request: UpdateRequest, desired: Document, tracked: Document) -> list[Mutation]:
        name = tracked.identifier
        operations: list[dict[str, Any]] = []
        for path in request.paths:
            match path.segments:
                case ("configuration", key):
                    operations.append(self._config_operation(key, request.value(path)))
                case ("configuration",):
                    wanted = desired["configuration"] if is_known(desired["configuration"]) else {}
                    current = tracked["configuration"] if is_known(tracked["configuration"]) else {}
                    for key in sorted(set(wanted) | set(current)):
                        if wanted.get(key, ABSENT) != current.get(key, ABSENT):
                            operations.append(self._config_operation(key, wanted.get(key, ABSENT)))
                case ("replication_factor",):
                    operations.append(
                        self._config_operation(REPLICATION_FACTOR_CONFIG, request.value(path))
                    )

        mutations: list[Mutation] = []
        if operations:
            mutations.append(
                Mutation("UpdateTopicConfigurations", {"topic_name": name, "configurations": operations})
            )
        if request.touches("partition_count") and is_known(desired["partition_count"]):
            mutations.append(
                Mutation(
                    "SetTopicPartitions",
                    {"topic_name": name, "partition_count": desired["partition_count"]},
                )
            )
        logger.debug(
            "Topic update",
            extra={"topic": name, "config_operations": len(operations), "update_mask": request.mask},
        )
        return mutations

    @staticmethod
    def _config_operation(key: str, value: Any) -> dict[str, Any]:
        if not is_known(value):
            return {"name": key, "operation": "DELETE"}
        return {"name": key, "value": str(value), "operation": "SET"}

    def delete_request(self, tracked: Document) -> Mutation:
        return Mutation("DeleteTopic", {"topic_name": tracked.identifier})
