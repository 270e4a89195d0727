"""ElastiCache control plane capability and its boto3-backed implementation."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

from .errors import InvalidResponseError, aws_errors
from .models import (
    CacheClusterInfo,
    CacheParameter,
    Endpoint,
    ExternalResourceSnapshot,
    NodeRole,
    ProvisionParameters,
    ReplicationGroupChange,
    SnapshotInfo,
)

logger = logging.getLogger(__name__)

PARAMETER_GROUP_DESCRIPTION = "Created by Cloud Foundry"
SNAPSHOT_WINDOW = "02:00-05:00"


class ControlPlane(Protocol):
    """Operations the engine needs from the cache control plane."""

    def create_cache_parameter_group(self, name: str, family: str, description: str) -> None: ...

    def modify_cache_parameter_group(self, name: str, parameters: Dict[str, str]) -> None: ...

    def delete_cache_parameter_group(self, name: str) -> None: ...

    def create_replication_group(self, name: str, params: ProvisionParameters, auth_token: str) -> None: ...

    def delete_replication_group(self, name: str, final_snapshot_identifier: str = "") -> None: ...

    def modify_replication_group(self, name: str, change: ReplicationGroupChange) -> None: ...

    def describe_replication_group(self, name: str) -> ExternalResourceSnapshot: ...

    def describe_cache_cluster(self, cluster_id: str) -> CacheClusterInfo: ...

    def describe_cache_parameters(self, parameter_group_name: str) -> List[CacheParameter]: ...

    def list_tags(self, arn: str) -> Dict[str, str]: ...

    def describe_snapshots(self, replication_group_id: str) -> List[SnapshotInfo]: ...


def _endpoint(raw: Optional[Dict[str, Any]]) -> Optional[Endpoint]:
    if not raw or not raw.get("Address") or raw.get("Port") is None:
        return None
    return Endpoint(address=raw["Address"], port=int(raw["Port"]))


def snapshot_from_payload(name: str, group: Dict[str, Any]) -> ExternalResourceSnapshot:
    """Build a snapshot from a DescribeReplicationGroups entry."""
    status = group.get("Status")
    if not status:
        raise InvalidResponseError(f"Invalid response from AWS: status is missing for {name}")

    node_roles: List[NodeRole] = []
    primary_endpoint: Optional[Endpoint] = None
    for node_group in group.get("NodeGroups") or []:
        if primary_endpoint is None:
            primary_endpoint = _endpoint(node_group.get("PrimaryEndpoint"))
        for member in node_group.get("NodeGroupMembers") or []:
            node_id = member.get("CacheClusterId")
            role = member.get("CurrentRole")
            if node_id and role:
                node_roles.append(NodeRole(node_id=node_id, role=role))

    automatic_failover = group.get("AutomaticFailover")
    return ExternalResourceSnapshot(
        replication_group_id=group.get("ReplicationGroupId") or name,
        status=status,
        automatic_failover_enabled=automatic_failover == "enabled",
        automatic_failover=automatic_failover,
        multi_az=group.get("MultiAZ"),
        node_roles=node_roles,
        member_node_ids=list(group.get("MemberClusters") or []),
        snapshot_window=group.get("SnapshotWindow"),
        configuration_endpoint=_endpoint(group.get("ConfigurationEndpoint")),
        primary_endpoint=primary_endpoint,
    )


class ElastiCacheControlPlane:
    """Thin wrapper over a boto3 ``elasticache`` client.

    Every call runs inside :func:`aws_errors`, so callers only ever see the engine's
    own exception types.
    """

    def __init__(self, client: Any) -> None:
        self._client = client

    def create_cache_parameter_group(self, name: str, family: str, description: str = PARAMETER_GROUP_DESCRIPTION) -> None:
        logger.info("Creating cache parameter group '%s' (family %s)", name, family)
        with aws_errors("CreateCacheParameterGroup", name):
            self._client.create_cache_parameter_group(
                CacheParameterGroupName=name,
                CacheParameterGroupFamily=family,
                Description=description,
            )

    def modify_cache_parameter_group(self, name: str, parameters: Dict[str, str]) -> None:
        values = [
            {"ParameterName": key, "ParameterValue": value}
            for key, value in sorted(parameters.items())
        ]
        logger.info("Setting %d parameters on cache parameter group '%s'", len(values), name)
        with aws_errors("ModifyCacheParameterGroup", name):
            self._client.modify_cache_parameter_group(
                CacheParameterGroupName=name,
                ParameterNameValues=values,
            )

    def delete_cache_parameter_group(self, name: str) -> None:
        logger.info("Deleting cache parameter group '%s'", name)
        with aws_errors("DeleteCacheParameterGroup", name):
            self._client.delete_cache_parameter_group(CacheParameterGroupName=name)

    def create_replication_group(self, name: str, params: ProvisionParameters, auth_token: str) -> None:
        request: Dict[str, Any] = {
            "ReplicationGroupId": name,
            "ReplicationGroupDescription": params.description,
            "Tags": [{"Key": key, "Value": value} for key, value in sorted(params.tags.items())],
            "AtRestEncryptionEnabled": True,
            "TransitEncryptionEnabled": True,
            "AuthToken": auth_token,
            "AutomaticFailoverEnabled": params.automatic_failover_enabled,
            "MultiAZEnabled": params.multi_az_enabled,
            "CacheNodeType": params.instance_type,
            "CacheParameterGroupName": name,
            "SecurityGroupIds": list(params.security_group_ids),
            "CacheSubnetGroupName": params.cache_subnet_group_name,
            "Engine": params.engine,
            "NumNodeGroups": params.shard_count,
            "ReplicasPerNodeGroup": params.replicas_per_node_group,
        }
        if params.engine_version:
            request["EngineVersion"] = params.engine_version
        if params.preferred_maintenance_window:
            request["PreferredMaintenanceWindow"] = params.preferred_maintenance_window
        if params.snapshot_retention_limit > 0:
            request["SnapshotRetentionLimit"] = params.snapshot_retention_limit
            request["SnapshotWindow"] = SNAPSHOT_WINDOW
        if params.restore_from_snapshot:
            request["SnapshotName"] = params.restore_from_snapshot

        logger.info("Creating replication group '%s' (%s)", name, params.instance_type)
        with aws_errors("CreateReplicationGroup", name):
            self._client.create_replication_group(**request)

    def delete_replication_group(self, name: str, final_snapshot_identifier: str = "") -> None:
        request: Dict[str, Any] = {"ReplicationGroupId": name}
        if final_snapshot_identifier:
            request["FinalSnapshotIdentifier"] = final_snapshot_identifier
        logger.info("Deleting replication group '%s'", name)
        with aws_errors("DeleteReplicationGroup", name):
            self._client.delete_replication_group(**request)

    def modify_replication_group(self, name: str, change: ReplicationGroupChange) -> None:
        request: Dict[str, Any] = {
            "ReplicationGroupId": name,
            "ApplyImmediately": change.apply_immediately,
        }
        if change.primary_cluster_id is not None:
            request["PrimaryClusterId"] = change.primary_cluster_id
        if change.automatic_failover_enabled is not None:
            request["AutomaticFailoverEnabled"] = change.automatic_failover_enabled
        if change.multi_az_enabled is not None:
            request["MultiAZEnabled"] = change.multi_az_enabled
        if change.preferred_maintenance_window is not None:
            request["PreferredMaintenanceWindow"] = change.preferred_maintenance_window
        logger.info("Modifying replication group '%s': %s", name, change)
        with aws_errors("ModifyReplicationGroup", name):
            self._client.modify_replication_group(**request)

    def describe_replication_group(self, name: str) -> ExternalResourceSnapshot:
        with aws_errors("DescribeReplicationGroups", name):
            response = self._client.describe_replication_groups(ReplicationGroupId=name)
        groups = response.get("ReplicationGroups") or []
        if not groups:
            raise InvalidResponseError(f"Invalid response from AWS: no replication groups returned for {name}")
        return snapshot_from_payload(name, groups[0])

    def describe_cache_cluster(self, cluster_id: str) -> CacheClusterInfo:
        with aws_errors("DescribeCacheClusters", cluster_id):
            response = self._client.describe_cache_clusters(CacheClusterId=cluster_id)
        clusters = response.get("CacheClusters") or []
        if not clusters:
            raise InvalidResponseError(f"Invalid response from AWS: no cache clusters returned for {cluster_id}")
        cluster = clusters[0]
        parameter_group = cluster.get("CacheParameterGroup") or {}
        return CacheClusterInfo(
            cache_cluster_id=cluster.get("CacheClusterId") or cluster_id,
            preferred_maintenance_window=cluster.get("PreferredMaintenanceWindow"),
            engine_version=cluster.get("EngineVersion"),
            cache_parameter_group_name=parameter_group.get("CacheParameterGroupName"),
        )

    def describe_cache_parameters(self, parameter_group_name: str) -> List[CacheParameter]:
        parameters: List[CacheParameter] = []
        with aws_errors("DescribeCacheParameters", parameter_group_name):
            paginator = self._client.get_paginator("describe_cache_parameters")
            for page in paginator.paginate(CacheParameterGroupName=parameter_group_name):
                for item in page.get("Parameters") or []:
                    name = item.get("ParameterName")
                    if not name:
                        continue
                    parameters.append(CacheParameter(parameter_name=name, parameter_value=item.get("ParameterValue") or ""))
        return parameters

    def list_tags(self, arn: str) -> Dict[str, str]:
        with aws_errors("ListTagsForResource", arn):
            response = self._client.list_tags_for_resource(ResourceName=arn)
        return {tag["Key"]: tag.get("Value", "") for tag in response.get("TagList") or [] if "Key" in tag}

    def describe_snapshots(self, replication_group_id: str) -> List[SnapshotInfo]:
        snapshots: List[SnapshotInfo] = []
        with aws_errors("DescribeSnapshots", replication_group_id):
            paginator = self._client.get_paginator("describe_snapshots")
            for page in paginator.paginate(ReplicationGroupId=replication_group_id):
                for item in page.get("Snapshots") or []:
                    snapshots.append(self._snapshot_info(replication_group_id, item))
        return snapshots

    def _snapshot_info(self, replication_group_id: str, item: Dict[str, Any]) -> SnapshotInfo:
        name = item.get("SnapshotName")
        node_snapshots = item.get("NodeSnapshots") or []
        create_time = node_snapshots[0].get("SnapshotCreateTime") if node_snapshots else None
        if not name or create_time is None:
            raise InvalidResponseError(
                f"Invalid response from AWS: Missing values for snapshot for elasticache cluster {replication_group_id}"
            )
        return SnapshotInfo(name=name, create_time=create_time)
