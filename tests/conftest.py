from __future__ import annotations

from typing import Dict, List, Optional

import pytest

from cache_broker.errors import BrokerError, ResourceNotFoundError
from cache_broker.models import (
    ROLE_PRIMARY,
    ROLE_REPLICA,
    CacheClusterInfo,
    CacheParameter,
    Endpoint,
    ExternalResourceSnapshot,
    NodeRole,
    ProvisionParameters,
    ReplicationGroupChange,
    SnapshotInfo,
)
from cache_broker.provider import CacheProvider

INSTANCE_ID = "foobar"
GROUP_NAME = "cf-qwkec4pxhft6q"
PRIMARY_NODE = f"{GROUP_NAME}-001"
REPLICA_NODE = f"{GROUP_NAME}-002"


class FakeControlPlane:
    """In-memory control plane recording every call in order."""

    def __init__(self) -> None:
        self.groups: Dict[str, ExternalResourceSnapshot] = {}
        self.clusters: Dict[str, CacheClusterInfo] = {}
        self.parameters: Dict[str, List[CacheParameter]] = {}
        self.tags: Dict[str, Dict[str, str]] = {}
        self.snapshots: Dict[str, List[SnapshotInfo]] = {}
        self.failures: Dict[str, BrokerError] = {}
        self.calls: List[tuple] = []

    def _record(self, method: str, *args: object) -> None:
        self.calls.append((method, *args))
        failure = self.failures.get(method)
        if failure is not None:
            raise failure

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]

    def calls_to(self, method: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == method]

    def create_cache_parameter_group(self, name: str, family: str, description: str) -> None:
        self._record("create_cache_parameter_group", name, family, description)

    def modify_cache_parameter_group(self, name: str, parameters: Dict[str, str]) -> None:
        self._record("modify_cache_parameter_group", name, dict(parameters))

    def delete_cache_parameter_group(self, name: str) -> None:
        self._record("delete_cache_parameter_group", name)

    def create_replication_group(self, name: str, params: ProvisionParameters, auth_token: str) -> None:
        self._record("create_replication_group", name, params, auth_token)

    def delete_replication_group(self, name: str, final_snapshot_identifier: str = "") -> None:
        self._record("delete_replication_group", name, final_snapshot_identifier)

    def modify_replication_group(self, name: str, change: ReplicationGroupChange) -> None:
        self._record("modify_replication_group", name, change)

    def describe_replication_group(self, name: str) -> ExternalResourceSnapshot:
        self._record("describe_replication_group", name)
        if name not in self.groups:
            raise ResourceNotFoundError(name, f"ReplicationGroup {name} not found.")
        return self.groups[name]

    def describe_cache_cluster(self, cluster_id: str) -> CacheClusterInfo:
        self._record("describe_cache_cluster", cluster_id)
        if cluster_id not in self.clusters:
            raise ResourceNotFoundError(cluster_id)
        return self.clusters[cluster_id]

    def describe_cache_parameters(self, parameter_group_name: str) -> List[CacheParameter]:
        self._record("describe_cache_parameters", parameter_group_name)
        return list(self.parameters.get(parameter_group_name, []))

    def list_tags(self, arn: str) -> Dict[str, str]:
        self._record("list_tags", arn)
        return dict(self.tags.get(arn, {}))

    def describe_snapshots(self, replication_group_id: str) -> List[SnapshotInfo]:
        self._record("describe_snapshots", replication_group_id)
        return list(self.snapshots.get(replication_group_id, []))


class FakeSecretStore:
    def __init__(self) -> None:
        self.secrets: Dict[str, str] = {}
        self.created: List[tuple] = []
        self.deleted: List[tuple] = []
        self.failures: Dict[str, BrokerError] = {}

    def create_secret(
        self,
        name: str,
        secret_string: str,
        tags: Dict[str, str],
        kms_key_id: Optional[str] = None,
    ) -> None:
        if "create_secret" in self.failures:
            raise self.failures["create_secret"]
        self.created.append((name, secret_string, dict(tags), kms_key_id))
        self.secrets[name] = secret_string

    def get_secret(self, name: str) -> str:
        if "get_secret" in self.failures:
            raise self.failures["get_secret"]
        if name not in self.secrets:
            raise ResourceNotFoundError(name)
        return self.secrets[name]

    def delete_secret(self, name: str, recovery_window_days: int) -> None:
        if "delete_secret" in self.failures:
            raise self.failures["delete_secret"]
        self.deleted.append((name, recovery_window_days))


def make_snapshot(
    status: str = "available",
    *,
    automatic_failover: str = "enabled",
    roles: Optional[List[tuple]] = None,
    **overrides: object,
) -> ExternalResourceSnapshot:
    if roles is None:
        roles = [(PRIMARY_NODE, ROLE_PRIMARY), (REPLICA_NODE, ROLE_REPLICA)]
    node_roles = [NodeRole(node_id=node_id, role=role) for node_id, role in roles]
    values: Dict[str, object] = {
        "replication_group_id": GROUP_NAME,
        "status": status,
        "automatic_failover_enabled": automatic_failover == "enabled",
        "automatic_failover": automatic_failover,
        "multi_az": "enabled" if automatic_failover == "enabled" else "disabled",
        "node_roles": node_roles,
        "member_node_ids": [node.node_id for node in node_roles],
        "primary_endpoint": Endpoint(address="primary.example.cache.amazonaws.com", port=6379),
    }
    values.update(overrides)
    return ExternalResourceSnapshot(**values)  # type: ignore[arg-type]


@pytest.fixture()
def control_plane() -> FakeControlPlane:
    return FakeControlPlane()


@pytest.fixture()
def secret_store() -> FakeSecretStore:
    return FakeSecretStore()


@pytest.fixture()
def provider(control_plane: FakeControlPlane, secret_store: FakeSecretStore) -> CacheProvider:
    return CacheProvider(
        control_plane,
        secret_store,
        region="eu-west-1",
        account_id="123456789012",
        secrets_path="elasticache-broker/test/",
        kms_key_id="my-kms-key",
    )
