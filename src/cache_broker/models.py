"""Domain models for cache instance provisioning."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

ROLE_PRIMARY = "primary"
ROLE_REPLICA = "replica"


@dataclass(slots=True, frozen=True)
class NodeRole:
    node_id: str
    role: str


@dataclass(slots=True, frozen=True)
class Endpoint:
    address: str
    port: int


@dataclass(slots=True)
class ExternalResourceSnapshot:
    """Point-in-time read of a replication group, never cached across calls."""

    replication_group_id: str
    status: str
    automatic_failover_enabled: bool = False
    automatic_failover: Optional[str] = None
    multi_az: Optional[str] = None
    node_roles: List[NodeRole] = field(default_factory=list)
    member_node_ids: List[str] = field(default_factory=list)
    snapshot_window: Optional[str] = None
    configuration_endpoint: Optional[Endpoint] = None
    primary_endpoint: Optional[Endpoint] = None

    def nodes_with_role(self, role: str) -> List[str]:
        return [node.node_id for node in self.node_roles if node.role == role]


@dataclass(slots=True)
class ProvisionParameters:
    """Everything needed to create a replication group and its parameter group."""

    instance_type: str
    cache_parameter_group_family: str
    security_group_ids: List[str]
    cache_subnet_group_name: str
    engine: str = "redis"
    engine_version: str = ""
    preferred_maintenance_window: str = ""
    replicas_per_node_group: int = 0
    shard_count: int = 1
    snapshot_retention_limit: int = 0
    restore_from_snapshot: Optional[str] = None
    automatic_failover_enabled: bool = False
    multi_az_enabled: bool = False
    description: str = "Cloud Foundry service"
    parameters: Dict[str, str] = field(default_factory=dict)
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class DeprovisionParameters:
    final_snapshot_identifier: str = ""


@dataclass(slots=True)
class Credentials:
    """Connection parameters handed to a bound application."""

    host: str
    port: int
    name: str
    password: str
    uri: str
    tls_enabled: bool = True

    def as_dict(self) -> Dict[str, object]:
        return {
            "host": self.host,
            "port": self.port,
            "name": self.name,
            "password": self.password,
            "uri": self.uri,
            "tls_enabled": self.tls_enabled,
        }


@dataclass(slots=True)
class CacheParameter:
    parameter_name: str
    parameter_value: str


@dataclass(slots=True)
class InstanceParameters:
    """Configuration values worth surfacing to users of an instance."""

    preferred_maintenance_window: str = ""
    daily_backup_window: str = ""
    max_memory_policy: str = ""
    cache_parameters: List[CacheParameter] = field(default_factory=list)
    active_nodes: List[str] = field(default_factory=list)
    passive_nodes: List[str] = field(default_factory=list)
    auto_failover: bool = False


@dataclass(slots=True)
class SnapshotInfo:
    name: str
    create_time: datetime
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ReplicationGroupChange:
    """A single ModifyReplicationGroup mutation; unset fields are left untouched."""

    primary_cluster_id: Optional[str] = None
    automatic_failover_enabled: Optional[bool] = None
    multi_az_enabled: Optional[bool] = None
    preferred_maintenance_window: Optional[str] = None
    apply_immediately: bool = True


@dataclass(slots=True)
class CacheClusterInfo:
    cache_cluster_id: str
    preferred_maintenance_window: Optional[str] = None
    engine_version: Optional[str] = None
    cache_parameter_group_name: Optional[str] = None
