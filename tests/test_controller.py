"""Tests for the reconciliation controller against the in-memory cloud."""

from __future__ import annotations

import asyncio
import dataclasses
from typing import Any

import pytest
from cloud_mock import MockCloud
from pydantic import SecretStr

from streamplane.config import Config
from streamplane.controller import Controller, PlanAction
from streamplane.errors import (
    AlreadyExistsError,
    DeletionNotAllowedError,
    InconsistentResultError,
    InvalidRequestError,
    PartialCreateError,
    ReconcileCancelledError,
    ReconcileError,
    UnavailableError,
    UnreachableError,
)
from streamplane.models import (
    AclSpec,
    ClusterSpec,
    NetworkSpec,
    ResourceGroupSpec,
    SchemaRegistryAclSpec,
    TopicSpec,
    UserSpec,
)
from streamplane.provenance import ChangeRecord, ProvenanceLogger
from streamplane.removal import RemovalDecision
from streamplane.resources.acl import AclKind
from streamplane.resources.cluster import ClusterKind
from streamplane.resources.network import NetworkKind
from streamplane.resources.resource_group import ResourceGroupKind
from streamplane.resources.schema_registry_acl import SchemaRegistryAclKind
from streamplane.resources.topic import TopicKind
from streamplane.resources.user import UserKind

DATAPLANE = "https://api-cl-1.mock.cloud"

CLUSTER = {
    "name": "prod",
    "resource_group_id": "rg-1",
    "network_id": "net-1",
    "cloud_provider": "aws",
    "region": "us-east-1",
    "cluster_type": "dedicated",
    "connection_type": "private",
    "throughput_tier": "tier-1-aws-v2-arm",
}


class RecordingProvenance(ProvenanceLogger):
    """Keeps change records in memory."""

    def __init__(self) -> None:
        super().__init__()
        self.records: list[ChangeRecord] = []

    def log_change(self, record: ChangeRecord) -> None:
        self.records.append(record)
        super().log_change(record)


def topic_spec(**overrides: Any) -> TopicSpec:
    return TopicSpec.model_validate({"name": "orders", "cluster_api_url": DATAPLANE, **overrides})


class TestTopicLifecycle:
    """Create, update, read and delete of a topic."""

    @pytest.fixture
    def provenance(self) -> RecordingProvenance:
        return RecordingProvenance()

    @pytest.fixture
    def controller(self, cloud: MockCloud, config: Config, provenance: RecordingProvenance) -> Controller:
        return Controller(TopicKind(), cloud.clients(), config, provenance=provenance, address="topic.orders")

    @pytest.mark.asyncio
    async def test_create(self, cloud: MockCloud, controller: Controller) -> None:
        """Create issues one call and reads the topic back."""
        result = await controller.create(
            topic_spec(partition_count=3, replication_factor=3, configuration={"cleanup.policy": "compact"})
        )

        assert cloud.methods() == ["CreateTopic", "ListTopics", "GetTopicConfigurations"]
        assert result.remote_calls == 3
        assert result.warnings == ()
        document = result.document
        assert document.identifier == "orders"
        assert document["partition_count"] == 3
        assert document["configuration"] == {"cleanup.policy": "compact"}
        assert document["cluster_api_url"] == DATAPLANE
        assert document["allow_deletion"] is True

    @pytest.mark.asyncio
    async def test_create_fills_server_defaults(self, controller: Controller) -> None:
        """Counts left unset are read back from the cluster."""
        result = await controller.create(topic_spec())
        assert result.document["partition_count"] == 1
        assert result.document["replication_factor"] == 3
        assert not result.document.contains_unknown()

    @pytest.mark.asyncio
    async def test_create_retries_transient_failure(self, cloud: MockCloud, controller: Controller) -> None:
        """A busy API is retried within the create budget."""
        cloud.fail("CreateTopic", UnavailableError("503 Service Unavailable"))
        result = await controller.create(topic_spec())
        assert cloud.call_count("CreateTopic") == 2
        assert result.remote_calls == 4

    @pytest.mark.asyncio
    async def test_create_existing_topic(self, cloud: MockCloud, controller: Controller) -> None:
        """A name clash surfaces as AlreadyExistsError without retrying."""
        cloud.add_topic(DATAPLANE, "orders")
        with pytest.raises(AlreadyExistsError):
            await controller.create(topic_spec())
        assert cloud.call_count("CreateTopic") == 1

    @pytest.mark.asyncio
    async def test_partial_create(self, cloud: MockCloud, controller: Controller) -> None:
        """A failed read-back still hands back something to track."""
        cloud.fail("GetTopicConfigurations", InvalidRequestError("boom"))
        with pytest.raises(PartialCreateError) as exc_info:
            await controller.create(topic_spec(partition_count=3))

        document = exc_info.value.document
        assert document.identifier == "orders"
        assert document["partition_count"] == 3
        assert not document.contains_unknown()
        assert "orders" in cloud.topics[DATAPLANE]

    @pytest.mark.asyncio
    async def test_noop_update_makes_no_calls(self, cloud: MockCloud, controller: Controller) -> None:
        """An unchanged resource is not touched."""
        spec = topic_spec(partition_count=3, configuration={"cleanup.policy": "compact"})
        tracked = (await controller.create(spec)).document
        before = cloud.call_count()

        result = await controller.update(spec, tracked)

        assert result.remote_calls == 0
        assert result.mask_paths == ()
        assert result.document is tracked
        assert cloud.call_count() == before

    @pytest.mark.asyncio
    async def test_replication_factor_update(
        self, cloud: MockCloud, controller: Controller, provenance: RecordingProvenance
    ) -> None:
        """Raising replication waits on the operation and keeps the topic identity."""
        tracked = (await controller.create(topic_spec(partition_count=3, replication_factor=1))).document
        cloud.async_methods.add("UpdateTopicConfigurations")
        cloud.script_next_operation(["STATE_IN_PROGRESS", "STATE_COMPLETED"])
        first_call = cloud.call_count()

        result = await controller.update(topic_spec(partition_count=3, replication_factor=3), tracked)

        assert result.mask_paths == ("replication_factor",)
        assert result.document["replication_factor"] == 3
        assert result.document.identifier == tracked.identifier
        assert cloud.methods()[first_call:] == [
            "UpdateTopicConfigurations",
            "GetOperation",
            "GetOperation",
            "ListTopics",
            "GetTopicConfigurations",
        ]
        assert result.remote_calls == 5
        update_call = cloud.calls[first_call]
        assert update_call.request["configurations"] == [
            {"name": "replication.factor", "value": "3", "operation": "SET"}
        ]

        record = provenance.records[-1]
        assert record.operation == "update"
        assert record.mask_paths == ["replication_factor"]
        assert record.remote_calls == 5
        assert record.changed

    @pytest.mark.asyncio
    async def test_failed_operation(self, cloud: MockCloud, controller: Controller) -> None:
        """A FAILED operation fails the update."""
        tracked = (await controller.create(topic_spec(replication_factor=1))).document
        cloud.async_methods.add("UpdateTopicConfigurations")
        cloud.script_next_operation(["STATE_FAILED"])
        with pytest.raises(ReconcileError, match="failed"):
            await controller.update(topic_spec(replication_factor=3), tracked)

    @pytest.mark.asyncio
    async def test_local_only_change(self, cloud: MockCloud, controller: Controller) -> None:
        """Flipping allow_deletion only touches tracked state."""
        tracked = (await controller.create(topic_spec())).document
        before = cloud.call_count()

        result = await controller.update(topic_spec(allow_deletion=False), tracked)

        assert result.remote_calls == 0
        assert result.mask_paths == ("allow_deletion",)
        assert result.document["allow_deletion"] is False
        assert cloud.call_count() == before

    @pytest.mark.asyncio
    async def test_delete(self, cloud: MockCloud, controller: Controller) -> None:
        """Delete removes the topic."""
        tracked = (await controller.create(topic_spec())).document
        result = await controller.delete(tracked)
        assert result.document is None
        assert result.remote_calls == 1
        assert "orders" not in cloud.topics[DATAPLANE]

    @pytest.mark.asyncio
    async def test_delete_already_gone(self, cloud: MockCloud, controller: Controller) -> None:
        """Deleting a vanished topic succeeds."""
        tracked = (await controller.create(topic_spec())).document
        del cloud.topics[DATAPLANE]["orders"]
        result = await controller.delete(tracked)
        assert result.document is None

    @pytest.mark.asyncio
    async def test_delete_not_allowed(self, cloud: MockCloud, controller: Controller) -> None:
        """allow_deletion false refuses deletion before any call."""
        tracked = (await controller.create(topic_spec(allow_deletion=False))).document
        before = cloud.call_count()

        with pytest.raises(DeletionNotAllowedError):
            await controller.delete(tracked)

        assert cloud.call_count() == before
        assert "orders" in cloud.topics[DATAPLANE]

    @pytest.mark.asyncio
    async def test_delete_surfaces_invalid_request(self, cloud: MockCloud, controller: Controller) -> None:
        """A rejected delete is raised even when the message mentions 404."""
        tracked = (await controller.create(topic_spec(name="legacy-404"))).document
        cloud.fail("DeleteTopic", InvalidRequestError("DeleteTopic: 400 topic legacy-404 is in use"))

        with pytest.raises(InvalidRequestError, match="is in use"):
            await controller.delete(tracked)

        assert "legacy-404" in cloud.topics[DATAPLANE]

    @pytest.mark.asyncio
    async def test_delete_unreachable_cluster(
        self, cloud: MockCloud, config: Config, provenance: RecordingProvenance
    ) -> None:
        """A topic whose cluster cannot be reached is dropped with a warning."""
        controller = Controller(
            TopicKind(),
            cloud.clients(),
            dataclasses.replace(config, delete_timeout_seconds=1),
            provenance=provenance,
            address="topic.orders",
        )
        tracked = (await controller.create(topic_spec())).document
        cloud.unreachable.add(DATAPLANE)

        result = await controller.delete(tracked)

        assert result.document is None
        assert result.removal.remove
        assert "cannot be reached" in result.removal.warning

    @pytest.mark.asyncio
    async def test_read_gone_topic(self, cloud: MockCloud, controller: Controller) -> None:
        """A topic deleted out of band is dropped from tracked state."""
        tracked = (await controller.create(topic_spec())).document
        del cloud.topics[DATAPLANE]["orders"]

        result = await controller.read(tracked)

        assert result.document is None
        assert result.removal.decision is RemovalDecision.REMOVE
        assert result.removal.warning is None

    @pytest.mark.asyncio
    async def test_read_unreachable_cluster(self, cloud: MockCloud, controller: Controller) -> None:
        """A topic on an unreachable cluster is dropped with a warning."""
        tracked = (await controller.create(topic_spec())).document
        cloud.unreachable.add(DATAPLANE)

        result = await controller.read(tracked)

        assert result.document is None
        assert result.removal.remove
        assert "cannot be reached" in result.removal.warning

    @pytest.mark.asyncio
    async def test_read_unreachable_cluster_kept(self, cloud: MockCloud, controller: Controller) -> None:
        """With allow_deletion false the failure is surfaced instead."""
        tracked = (await controller.create(topic_spec(allow_deletion=False))).document
        cloud.unreachable.add(DATAPLANE)

        with pytest.raises(ReconcileError, match="allow_deletion is false") as exc_info:
            await controller.read(tracked)

        assert isinstance(exc_info.value.__cause__, UnreachableError)

    @pytest.mark.asyncio
    async def test_read_surfaces_invalid_request(self, cloud: MockCloud, controller: Controller) -> None:
        """A rejected read keeps the topic tracked even when the message mentions 404."""
        tracked = (await controller.create(topic_spec(name="legacy-404"))).document
        cloud.fail("ListTopics", InvalidRequestError("ListTopics: 400 filter legacy-404 rejected"))

        with pytest.raises(InvalidRequestError):
            await controller.read(tracked)

    @pytest.mark.asyncio
    async def test_stopped_controller_makes_no_calls(
        self, cloud: MockCloud, config: Config
    ) -> None:
        """A set stop event aborts the pass before any call."""
        tracked = (await Controller(TopicKind(), cloud.clients(), config).create(topic_spec())).document
        stop = asyncio.Event()
        stop.set()
        controller = Controller(TopicKind(), cloud.clients(), config, stop_event=stop)
        before = cloud.call_count()

        with pytest.raises(ReconcileCancelledError):
            await controller.update(topic_spec(partition_count=4), tracked)

        assert cloud.call_count() == before


class TestPlan:
    """Controller.plan never calls the API."""

    @pytest.mark.asyncio
    async def test_actions(self, cloud: MockCloud, config: Config) -> None:
        """Create, no-op, update and replace are told apart."""
        controller = Controller(TopicKind(), cloud.clients(), config)
        tracked = (await controller.create(topic_spec(partition_count=3))).document
        before = cloud.call_count()

        assert controller.plan(topic_spec(), None).action is PlanAction.CREATE
        assert controller.plan(topic_spec(partition_count=3), tracked).action is PlanAction.NOOP

        update = controller.plan(topic_spec(partition_count=6), tracked)
        assert update.action is PlanAction.UPDATE
        assert update.mask == ["partition_count"]

        replace = controller.plan(topic_spec(partition_count=1), tracked)
        assert replace.action is PlanAction.REPLACE
        assert "cannot shrink" in replace.reason

        assert cloud.call_count() == before


class TestConsistency:
    """Read-back checks after apply."""

    class ClampingCloud(MockCloud):
        """Cloud that silently caps new topics at one partition."""

        def _handle_CreateTopic(self, endpoint: str, request: dict[str, Any]) -> dict[str, Any]:
            request["topic"]["partition_count"] = 1
            return super()._handle_CreateTopic(endpoint, request)

    @pytest.mark.asyncio
    async def test_mismatch_warns(self, config: Config) -> None:
        """By default a mismatch is reported as a warning."""
        cloud = self.ClampingCloud()
        result = await Controller(TopicKind(), cloud.clients(), config).create(topic_spec(partition_count=6))
        assert len(result.warnings) == 1
        assert "partition_count" in result.warnings[0]
        assert result.document["partition_count"] == 1

    @pytest.mark.asyncio
    async def test_mismatch_strict(self, config: Config) -> None:
        """In strict mode a mismatch fails the pass."""
        cloud = self.ClampingCloud()
        strict = dataclasses.replace(config, strict_consistency=True)
        with pytest.raises(InconsistentResultError, match="partition_count"):
            await Controller(TopicKind(), cloud.clients(), strict).create(topic_spec(partition_count=6))


class TestAclPropagation:
    """ACLs take a while to show up after creation."""

    @pytest.mark.asyncio
    async def test_create_waits_for_visibility(self, cloud: MockCloud, config: Config) -> None:
        """Create keeps reading until the new binding is listed."""
        cloud.acl_visibility_delay = 2
        spec = AclSpec.model_validate(
            {
                "cluster_api_url": DATAPLANE,
                "resource_type": "TOPIC",
                "resource_name": "orders",
                "principal": "User:app",
                "operation": "READ",
            }
        )

        result = await Controller(AclKind(), cloud.clients(), config).create(spec)

        assert cloud.methods() == ["CreateACL", "ListACLs", "ListACLs", "ListACLs"]
        assert result.document.identifier == "TOPIC:orders:LITERAL:User:app:*:READ:ALLOW"
        assert result.document["operation"] == "READ"

    @pytest.mark.asyncio
    async def test_schema_registry_acl(self, cloud: MockCloud, config: Config) -> None:
        """Schema registry ACLs go through the cluster's registry URL."""
        cluster_id = cloud.add_cluster(id="cl-9")
        cloud.acl_visibility_delay = 1
        spec = SchemaRegistryAclSpec.model_validate(
            {
                "cluster_id": cluster_id,
                "principal": "User:app",
                "resource_type": "SUBJECT",
                "resource_name": "orders-value",
                "operation": "READ",
            }
        )
        controller = Controller(SchemaRegistryAclKind(), cloud.clients(), config)

        created = await controller.create(spec)
        assert cloud.methods() == [
            "GetCluster",
            "CreateSchemaRegistryACL",
            "ListSchemaRegistryACLs",
            "ListSchemaRegistryACLs",
        ]
        assert created.document["resource_name"] == "orders-value"

        await controller.delete(created.document)
        assert cloud.schema_acls["https://schema-cl-9.mock.cloud"] == []


class TestClusterLifecycle:
    """Long-running cluster operations."""

    @pytest.mark.asyncio
    async def test_create_polls_operation(self, cloud: MockCloud, config: Config) -> None:
        """Create waits for the operation and takes the id from it."""
        cloud.script_next_operation(["STATE_IN_PROGRESS", "STATE_COMPLETED"])

        result = await Controller(ClusterKind(), cloud.clients(), config).create(ClusterSpec.model_validate(CLUSTER))

        assert cloud.methods() == ["CreateCluster", "GetOperation", "GetOperation", "GetCluster"]
        cluster_id = result.document.identifier
        assert cluster_id in cloud.clusters
        assert result.document["state"] == "STATE_READY"
        assert result.document["cluster_api_url"] == f"https://api-{cluster_id}.mock.cloud"
        assert result.warnings == ()

    @pytest.mark.asyncio
    async def test_update_sends_mask(self, cloud: MockCloud, config: Config) -> None:
        """An in-place update names only the changed field."""
        controller = Controller(ClusterKind(), cloud.clients(), config)
        tracked = (await controller.create(ClusterSpec.model_validate(CLUSTER))).document
        first_call = cloud.call_count()

        result = await controller.update(
            ClusterSpec.model_validate({**CLUSTER, "throughput_tier": "tier-2-aws-v2-arm"}), tracked
        )

        update_call = cloud.calls[first_call]
        assert update_call.method == "UpdateCluster"
        assert update_call.request["update_mask"] == ["throughput_tier"]
        assert result.document["throughput_tier"] == "tier-2-aws-v2-arm"
        assert result.document.identifier == tracked.identifier
        assert result.remote_calls == 3

    @pytest.mark.asyncio
    async def test_delete_waits_for_ready(self, cloud: MockCloud, config: Config) -> None:
        """A cluster mid-update is deleted once it is ready again."""
        controller = Controller(ClusterKind(), cloud.clients(), config)
        tracked = (await controller.create(ClusterSpec.model_validate(CLUSTER))).document
        cluster_id = tracked.identifier
        cloud.script_cluster_states(cluster_id, ["STATE_UPDATING"])
        first_call = cloud.call_count()

        result = await controller.delete(tracked)

        assert cloud.methods()[first_call:] == ["GetCluster", "GetCluster", "DeleteCluster", "GetOperation"]
        assert result.remote_calls == 4
        assert cluster_id not in cloud.clusters

    @pytest.mark.asyncio
    async def test_read_deleting_cluster(self, cloud: MockCloud, config: Config) -> None:
        """A cluster being deleted counts as gone."""
        controller = Controller(ClusterKind(), cloud.clients(), config)
        tracked = (await controller.create(ClusterSpec.model_validate(CLUSTER))).document
        cloud.clusters[tracked.identifier]["state"] = "STATE_DELETING"

        result = await controller.read(tracked)

        assert result.document is None
        assert result.removal.remove


class TestResourceGroupLifecycle:
    """Resource groups are created synchronously and replaced on rename."""

    @pytest.mark.asyncio
    async def test_create_read_delete(self, cloud: MockCloud, config: Config) -> None:
        """A group is created without polling, read back and deleted."""
        controller = Controller(ResourceGroupKind(), cloud.clients(), config, address="resource_group.team")
        spec = ResourceGroupSpec(name="team")

        tracked = (await controller.create(spec)).document

        assert cloud.methods() == ["CreateResourceGroup", "GetResourceGroup"]
        assert tracked.identifier == "rg-1"
        assert tracked["name"] == "team"
        assert (await controller.read(tracked)).document == tracked
        assert controller.plan(ResourceGroupSpec(name="other"), tracked).action is PlanAction.REPLACE

        result = await controller.delete(tracked)

        assert result.document is None
        assert cloud.resource_groups == {}

    @pytest.mark.asyncio
    async def test_read_deleted_group(self, cloud: MockCloud, config: Config) -> None:
        """A group removed out of band is dropped from tracked state."""
        controller = Controller(ResourceGroupKind(), cloud.clients(), config)
        tracked = (await controller.create(ResourceGroupSpec(name="team"))).document
        cloud.resource_groups.clear()

        result = await controller.read(tracked)

        assert result.document is None
        assert result.removal.remove

    @pytest.mark.asyncio
    async def test_delete_not_allowed(self, cloud: MockCloud, config: Config) -> None:
        """allow_deletion false protects the group."""
        controller = Controller(ResourceGroupKind(), cloud.clients(), config)
        tracked = (await controller.create(ResourceGroupSpec(name="team", allow_deletion=False))).document

        with pytest.raises(DeletionNotAllowedError):
            await controller.delete(tracked)

        assert tracked.identifier in cloud.resource_groups


class TestNetworkLifecycle:
    """Networks are create-or-replace."""

    @pytest.mark.asyncio
    async def test_create_and_replace_plan(self, cloud: MockCloud, config: Config) -> None:
        """Any change to a network plans a replacement."""
        spec = NetworkSpec.model_validate(
            {
                "name": "net",
                "resource_group_id": "rg-1",
                "cloud_provider": "aws",
                "region": "us-east-1",
                "cluster_type": "dedicated",
                "cidr_block": "10.0.0.0/20",
            }
        )
        controller = Controller(NetworkKind(), cloud.clients(), config)
        tracked = (await controller.create(spec)).document

        assert cloud.methods() == ["CreateNetwork", "GetOperation", "GetNetwork"]
        assert tracked["cidr_block"] == "10.0.0.0/20"
        changed = spec.model_copy(update={"cidr_block": "10.1.0.0/20"})
        assert controller.plan(changed, tracked).action is PlanAction.REPLACE


class TestUserLifecycle:
    """Users carry a write-only password."""

    @pytest.mark.asyncio
    async def test_password_rotation(self, cloud: MockCloud, config: Config) -> None:
        """A new password is sent with UpdateUser and kept in tracked state."""
        controller = Controller(UserKind(), cloud.clients(), config)
        spec = UserSpec.model_validate({"name": "app", "password": "old", "cluster_api_url": DATAPLANE})
        tracked = (await controller.create(spec)).document
        assert tracked["password"] == "old"
        assert tracked["mechanism"] == "scram-sha-256"

        result = await controller.update(spec.model_copy(update={"password": SecretStr("new")}), tracked)

        assert result.mask_paths == ("password",)
        assert cloud.users[DATAPLANE]["app"]["password"] == "new"
        assert result.document["password"] == "new"
