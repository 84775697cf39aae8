"""Lookup of resource kinds by name."""

from __future__ import annotations

from .acl import AclKind
from .base import ResourceKind
from .cluster import ClusterKind
from .network import NetworkKind
from .resource_group import ResourceGroupKind
from .schema_registry_acl import SchemaRegistryAclKind
from .topic import TopicKind
from .user import UserKind

KIND_TYPES: dict[str, type[ResourceKind]] = {
    kind.name: kind
    for kind in (
        ResourceGroupKind,
        ClusterKind,
        NetworkKind,
        TopicKind,
        UserKind,
        AclKind,
        SchemaRegistryAclKind,
    )
}

# Order in which kinds are created; deletion runs in reverse
APPLY_ORDER = ("resource_group", "network", "cluster", "topic", "user", "acl", "schema_registry_acl")


def get_kind(name: str) -> ResourceKind:
    """Fresh instance of the kind called ``name``.

    Raises:
        ValueError: If the kind is not recognized.
    """
    kind_type = KIND_TYPES.get(name)
    if kind_type is None:
        raise ValueError(f"Unknown resource kind '{name}'. Valid kinds: {list(KIND_TYPES)}")
    return kind_type()
