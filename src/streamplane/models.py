"""Pydantic models for desired-state configuration with validation.

These models provide:
1. Type-safe YAML parsing
2. Validation at the boundary (fail fast, fail loudly)
3. Plain attribute mappings consumed by each resource kind's plan pass

Optional fields left unset stay out of ``to_attributes`` entirely, which is
how "not configured" reaches the state model as ABSENT.
"""

from __future__ import annotations

from typing import Annotated, Any, ClassVar

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

CLOUD_PROVIDERS = ("aws", "gcp", "azure")
CLUSTER_TYPES = ("dedicated", "byoc")
CONNECTION_TYPES = ("public", "private")
SASL_MECHANISMS = ("scram-sha-256", "scram-sha-512")
DAYS_OF_WEEK = ("MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY")


def _one_of(value: str, allowed: tuple[str, ...], label: str) -> str:
    normalized = value.lower()
    if normalized not in allowed:
        raise ValueError(f"{label} must be one of {list(allowed)}")
    return normalized


# =============================================================================
# Base Models
# =============================================================================


class BaseSpec(BaseModel):
    """Base specification with common fields."""

    model_config = {"extra": "forbid"}

    kind: ClassVar[str] = ""

    allow_deletion: bool = True

    def to_attributes(self) -> dict[str, Any]:
        """Plain values for every configured field."""
        return self.model_dump(exclude_none=True)


# =============================================================================
# Cluster
# =============================================================================


class MtlsConfig(BaseModel):
    """Mutual TLS settings of one cluster endpoint."""

    model_config = {"extra": "forbid"}

    enabled: bool = False
    ca_certificates_pem: list[str] = Field(default_factory=list)
    principal_mapping_rules: list[str] = Field(default_factory=list)


class EndpointConfig(BaseModel):
    """Kafka API, HTTP proxy or schema registry endpoint settings."""

    model_config = {"extra": "forbid"}

    mtls: MtlsConfig | None = None


class DayHourConfig(BaseModel):
    """Weekly maintenance slot."""

    model_config = {"extra": "forbid"}

    hour_of_day: Annotated[int, Field(ge=0, le=23)]
    day_of_week: str

    @field_validator("day_of_week")
    @classmethod
    def validate_day(cls, v: str) -> str:
        day = v.upper()
        if day not in DAYS_OF_WEEK:
            raise ValueError(f"day_of_week must be one of {list(DAYS_OF_WEEK)}")
        return day


class MaintenanceWindowConfig(BaseModel):
    """Exactly one of day_hour, anytime or unspecified."""

    model_config = {"extra": "forbid"}

    day_hour: DayHourConfig | None = None
    anytime: bool | None = None
    unspecified: bool | None = None

    @model_validator(mode="after")
    def validate_single_window(self) -> MaintenanceWindowConfig:
        chosen = [
            name
            for name, value in (
                ("day_hour", self.day_hour),
                ("anytime", self.anytime),
                ("unspecified", self.unspecified),
            )
            if value
        ]
        if len(chosen) > 1:
            raise ValueError(f"only one maintenance window may be set, got {chosen}")
        return self


class ClusterSpec(BaseSpec):
    """Dedicated or BYOC streaming cluster."""

    kind: ClassVar[str] = "cluster"

    name: Annotated[str, Field(min_length=1, max_length=128)]
    resource_group_id: Annotated[str, Field(min_length=1)]
    network_id: Annotated[str, Field(min_length=1)]
    cloud_provider: str
    region: Annotated[str, Field(min_length=1)]
    zones: list[str] | None = None
    cluster_type: str
    connection_type: str
    throughput_tier: Annotated[str, Field(min_length=1)]
    redpanda_version: str | None = None
    tags: dict[str, str] | None = None
    read_replica_cluster_ids: list[str] | None = None
    kafka_api: EndpointConfig | None = None
    http_proxy: EndpointConfig | None = None
    schema_registry: EndpointConfig | None = None
    maintenance_window_config: MaintenanceWindowConfig | None = None
    gcp_global_access_enabled: bool | None = None

    @field_validator("cloud_provider")
    @classmethod
    def validate_cloud_provider(cls, v: str) -> str:
        return _one_of(v, CLOUD_PROVIDERS, "cloud_provider")

    @field_validator("cluster_type")
    @classmethod
    def validate_cluster_type(cls, v: str) -> str:
        return _one_of(v, CLUSTER_TYPES, "cluster_type")

    @field_validator("connection_type")
    @classmethod
    def validate_connection_type(cls, v: str) -> str:
        return _one_of(v, CONNECTION_TYPES, "connection_type")

    @model_validator(mode="after")
    def validate_gcp_only_fields(self) -> ClusterSpec:
        if self.gcp_global_access_enabled is not None and self.cloud_provider != "gcp":
            raise ValueError("gcp_global_access_enabled is only valid for gcp clusters")
        return self


# =============================================================================
# Resource group
# =============================================================================


class ResourceGroupSpec(BaseSpec):
    """Named group networks and clusters are created in."""

    kind: ClassVar[str] = "resource_group"

    name: Annotated[str, Field(min_length=1, max_length=128)]


# =============================================================================
# Network
# =============================================================================


class NetworkSpec(BaseSpec):
    """Network that dedicated clusters are placed into."""

    kind: ClassVar[str] = "network"

    name: Annotated[str, Field(min_length=1, max_length=128)]
    resource_group_id: Annotated[str, Field(min_length=1)]
    cloud_provider: str
    region: Annotated[str, Field(min_length=1)]
    cluster_type: str
    cidr_block: Annotated[str, Field(pattern=r"^\d{1,3}(\.\d{1,3}){3}/\d{1,2}$")]

    @field_validator("cloud_provider")
    @classmethod
    def validate_cloud_provider(cls, v: str) -> str:
        return _one_of(v, CLOUD_PROVIDERS, "cloud_provider")

    @field_validator("cluster_type")
    @classmethod
    def validate_cluster_type(cls, v: str) -> str:
        return _one_of(v, CLUSTER_TYPES, "cluster_type")


# =============================================================================
# Data plane resources
# =============================================================================


class TopicSpec(BaseSpec):
    """Topic on a cluster's data plane."""

    kind: ClassVar[str] = "topic"

    name: Annotated[str, Field(min_length=1, max_length=249, pattern=r"^[A-Za-z0-9._-]+$")]
    cluster_api_url: Annotated[str, Field(min_length=1)]
    partition_count: Annotated[int, Field(ge=1)] | None = None
    replication_factor: Annotated[int, Field(ge=1)] | None = None
    configuration: dict[str, str] | None = None

    @field_validator("configuration")
    @classmethod
    def validate_configuration(cls, v: dict[str, str] | None) -> dict[str, str] | None:
        if v and "replication.factor" in v:
            raise ValueError("set replication_factor instead of the replication.factor configuration")
        return v


class UserSpec(BaseSpec):
    """SASL/SCRAM user."""

    kind: ClassVar[str] = "user"

    name: Annotated[str, Field(min_length=1, max_length=128)]
    password: SecretStr | None = None
    mechanism: str = "scram-sha-256"
    cluster_api_url: Annotated[str, Field(min_length=1)]

    @field_validator("mechanism")
    @classmethod
    def validate_mechanism(cls, v: str) -> str:
        return _one_of(v, SASL_MECHANISMS, "mechanism")

    def to_attributes(self) -> dict[str, Any]:
        attributes = self.model_dump(exclude_none=True, exclude={"password"})
        if self.password is not None:
            attributes["password"] = self.password.get_secret_value()
        return attributes


class AclSpec(BaseSpec):
    """Kafka ACL binding."""

    kind: ClassVar[str] = "acl"

    cluster_api_url: Annotated[str, Field(min_length=1)]
    resource_type: str
    resource_name: Annotated[str, Field(min_length=1)]
    resource_pattern_type: str = "LITERAL"
    principal: Annotated[str, Field(min_length=1)]
    host: str = "*"
    operation: str
    permission_type: str = "ALLOW"

    @field_validator("resource_type")
    @classmethod
    def validate_resource_type(cls, v: str) -> str:
        allowed = ("TOPIC", "GROUP", "CLUSTER", "TRANSACTIONAL_ID", "DELEGATION_TOKEN", "USER")
        if v.upper() not in allowed:
            raise ValueError(f"resource_type must be one of {list(allowed)}")
        return v.upper()

    @field_validator("resource_pattern_type")
    @classmethod
    def validate_pattern_type(cls, v: str) -> str:
        if v.upper() not in ("LITERAL", "PREFIXED"):
            raise ValueError("resource_pattern_type must be LITERAL or PREFIXED")
        return v.upper()

    @field_validator("operation")
    @classmethod
    def validate_operation(cls, v: str) -> str:
        allowed = (
            "ALL", "READ", "WRITE", "CREATE", "DELETE", "ALTER", "DESCRIBE",
            "CLUSTER_ACTION", "DESCRIBE_CONFIGS", "ALTER_CONFIGS", "IDEMPOTENT_WRITE",
        )
        if v.upper() not in allowed:
            raise ValueError(f"operation must be one of {list(allowed)}")
        return v.upper()

    @field_validator("permission_type")
    @classmethod
    def validate_permission(cls, v: str) -> str:
        if v.upper() not in ("ALLOW", "DENY"):
            raise ValueError("permission_type must be ALLOW or DENY")
        return v.upper()


class SchemaRegistryAclSpec(BaseSpec):
    """ACL enforced by a cluster's schema registry."""

    kind: ClassVar[str] = "schema_registry_acl"

    cluster_id: Annotated[str, Field(min_length=1)]
    principal: Annotated[str, Field(min_length=1)]
    resource_type: str
    resource_name: str = ""
    pattern_type: str = "LITERAL"
    host: str = "*"
    operation: str
    permission: str = "ALLOW"

    @field_validator("resource_type")
    @classmethod
    def validate_resource_type(cls, v: str) -> str:
        if v.upper() not in ("SUBJECT", "REGISTRY"):
            raise ValueError("resource_type must be SUBJECT or REGISTRY")
        return v.upper()

    @field_validator("pattern_type")
    @classmethod
    def validate_pattern_type(cls, v: str) -> str:
        if v.upper() not in ("LITERAL", "PREFIXED"):
            raise ValueError("pattern_type must be LITERAL or PREFIXED")
        return v.upper()

    @field_validator("operation")
    @classmethod
    def validate_operation(cls, v: str) -> str:
        allowed = ("ALL", "READ", "WRITE", "DELETE", "DESCRIBE", "DESCRIBE_CONFIGS", "ALTER_CONFIGS")
        if v.upper() not in allowed:
            raise ValueError(f"operation must be one of {list(allowed)}")
        return v.upper()

    @field_validator("permission")
    @classmethod
    def validate_permission(cls, v: str) -> str:
        if v.upper() not in ("ALLOW", "DENY"):
            raise ValueError("permission must be ALLOW or DENY")
        return v.upper()

    @model_validator(mode="after")
    def validate_registry_scope(self) -> SchemaRegistryAclSpec:
        if self.resource_type == "SUBJECT" and not self.resource_name:
            raise ValueError("resource_name is required for SUBJECT ACLs")
        return self


# =============================================================================
# Spec Registry
# =============================================================================

SPEC_REGISTRY: dict[str, type[BaseSpec]] = {
    spec.kind: spec
    for spec in (
        ResourceGroupSpec,
        ClusterSpec,
        NetworkSpec,
        TopicSpec,
        UserSpec,
        AclSpec,
        SchemaRegistryAclSpec,
    )
}


def get_spec_class(kind: str) -> type[BaseSpec]:
    """Get the spec class for a resource kind.

    Raises:
        ValueError: If kind is not recognized.
    """
    spec_class = SPEC_REGISTRY.get(kind)
    if spec_class is None:
        valid_kinds = list(SPEC_REGISTRY.keys())
        raise ValueError(f"Unknown resource kind '{kind}'. Valid kinds: {valid_kinds}")
    return spec_class
