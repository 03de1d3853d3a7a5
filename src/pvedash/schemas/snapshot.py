"""Pydantic schemas for cluster snapshots.

Learn: The aggregator returns everything in one response. A resource kind
the aggregator didn't include is None (absent), which is different from
an empty tuple (present, zero items) — the orchestrator relies on that
difference when a consumer requires a specific kind.
"""

from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any, Mapping, Optional

from pydantic import AfterValidator, AliasChoices, BaseModel, Field, PlainSerializer

# Resource items are read-only views: a consumer that indexes into the
# cached snapshot can read fields but never write them back.
Resource = Annotated[
    dict[str, Any],
    AfterValidator(MappingProxyType),
    PlainSerializer(lambda item: dict(item)),
]

ResourceView = Mapping[str, Any]

# Aggregator items as they arrive, before they are frozen into a Snapshot
RawResource = dict[str, Any]


class ResourceKind(str, Enum):
    NODES = "nodes"
    VMS = "vms"
    CONTAINERS = "containers"
    STORAGE_POOLS = "storage_pools"
    NETWORK_INTERFACES = "network_interfaces"


# ─── Snapshot ─────────────────────────────────────────────


class Snapshot(BaseModel):
    """Immutable point-in-time copy of cluster resources."""

    nodes: Optional[tuple[Resource, ...]] = None
    vms: Optional[tuple[Resource, ...]] = None
    containers: Optional[tuple[Resource, ...]] = None
    storage_pools: Optional[tuple[Resource, ...]] = None
    network_interfaces: Optional[tuple[Resource, ...]] = None

    model_config = {"frozen": True}

    def get(self, kind: ResourceKind) -> Optional[tuple[ResourceView, ...]]:
        return getattr(self, ResourceKind(kind).value)

    def has(self, kind: ResourceKind) -> bool:
        return self.get(kind) is not None

    def counts(self) -> dict[str, Optional[int]]:
        """Item count per kind (None for absent kinds)."""
        return {
            kind.value: (len(items) if (items := self.get(kind)) is not None else None)
            for kind in ResourceKind
        }


# ─── Aggregator ───────────────────────────────────────────


class AggregatorResponse(BaseModel):
    """Body returned by the fetch-data aggregator endpoint."""

    success: bool
    message: Optional[str] = None
    error: Optional[str] = None

    nodes: Optional[list[RawResource]] = None
    vms: Optional[list[RawResource]] = None
    containers: Optional[list[RawResource]] = Field(
        None, validation_alias=AliasChoices("containers", "lxc")
    )
    storage_pools: Optional[list[RawResource]] = Field(
        None,
        validation_alias=AliasChoices(
            "storagePools", "storage_pools", "storages", "storage"
        ),
    )
    network_interfaces: Optional[list[RawResource]] = Field(
        None,
        validation_alias=AliasChoices(
            "networkInterfaces", "network_interfaces", "networks", "network"
        ),
    )

    model_config = {"extra": "ignore"}

    @property
    def failure_message(self) -> str:
        return self.message or self.error or "Aggregator reported failure"

    def to_snapshot(self) -> Snapshot:
        return Snapshot(
            nodes=self.nodes,
            vms=self.vms,
            containers=self.containers,
            storage_pools=self.storage_pools,
            network_interfaces=self.network_interfaces,
        )
