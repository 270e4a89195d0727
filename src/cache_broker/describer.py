"""Read-only queries against the cache control plane."""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .control_plane import ControlPlane
from .errors import BrokerError, DeadlineExceededError, InvalidResponseError, ResourceNotFoundError
from .models import (
    ROLE_PRIMARY,
    ROLE_REPLICA,
    CacheClusterInfo,
    CacheParameter,
    ExternalResourceSnapshot,
    InstanceParameters,
    NodeRole,
    SnapshotInfo,
)
from .naming import derive_name, replication_group_arn, snapshot_arn

logger = logging.getLogger(__name__)

MAXMEMORY_POLICY = "maxmemory-policy"
CLUSTER_ENABLED = "cluster-enabled"


def not_found_message(name: str) -> str:
    return f"Replication group does not exist: {name}"


class ResourceDescriber:
    """Describes the replication group behind a service instance.

    Each call goes back to the control plane; nothing is cached between calls.
    """

    def __init__(self, control_plane: ControlPlane, partition: str, region: str, account_id: str) -> None:
        self._control_plane = control_plane
        self._partition = partition
        self._region = region
        self._account_id = account_id

    def describe(self, instance_id: str) -> ExternalResourceSnapshot:
        name = derive_name(instance_id)
        try:
            return self._control_plane.describe_replication_group(name)
        except ResourceNotFoundError as exc:
            raise ResourceNotFoundError(name, not_found_message(name)) from exc

    def node_roles(self, instance_id: str) -> List[NodeRole]:
        return list(self.describe(instance_id).node_roles)

    def cache_cluster(self, cluster_id: str) -> Optional[CacheClusterInfo]:
        """Auxiliary read: failures other than the deadline are logged and reported as ``None``."""
        try:
            return self._control_plane.describe_cache_cluster(cluster_id)
        except DeadlineExceededError:
            raise
        except BrokerError as exc:
            logger.warning("Could not describe cache cluster '%s': %s", cluster_id, exc)
            return None

    def cache_parameters(self, parameter_group_name: str) -> Optional[Dict[str, str]]:
        """Auxiliary read: failures other than the deadline are logged and reported as ``None``."""
        try:
            parameters = self._control_plane.describe_cache_parameters(parameter_group_name)
        except DeadlineExceededError:
            raise
        except BrokerError as exc:
            logger.warning("Could not describe cache parameters of '%s': %s", parameter_group_name, exc)
            return None
        return {param.parameter_name: param.parameter_value for param in parameters}

    def instance_parameters(self, instance_id: str) -> InstanceParameters:
        snapshot = self.describe(instance_id)
        name = snapshot.replication_group_id
        if not snapshot.member_node_ids:
            raise InvalidResponseError(f"Replication group does not have any member clusters: {name}")

        result = InstanceParameters(daily_backup_window=snapshot.snapshot_window or "")

        cluster = self.cache_cluster(snapshot.member_node_ids[0])
        if cluster is not None:
            result.preferred_maintenance_window = cluster.preferred_maintenance_window or ""

        parameters = self.cache_parameters(name)
        if parameters is not None:
            result.max_memory_policy = parameters.get(MAXMEMORY_POLICY, "")
            result.cache_parameters = [
                CacheParameter(parameter_name=key, parameter_value=value) for key, value in sorted(parameters.items())
            ]

        if snapshot.node_roles:
            result.active_nodes = snapshot.nodes_with_role(ROLE_PRIMARY)
            result.passive_nodes = snapshot.nodes_with_role(ROLE_REPLICA)
            result.auto_failover = snapshot.automatic_failover_enabled
        return result

    def arn(self, instance_id: str) -> str:
        return replication_group_arn(self._partition, self._region, self._account_id, derive_name(instance_id))

    def tags(self, instance_id: str) -> Dict[str, str]:
        return self._control_plane.list_tags(self.arn(instance_id))

    def snapshots_with_tags(self, instance_id: str) -> List[SnapshotInfo]:
        snapshots = self._control_plane.describe_snapshots(derive_name(instance_id))
        for snapshot in snapshots:
            arn = snapshot_arn(self._partition, self._region, self._account_id, snapshot.name)
            snapshot.tags = self._control_plane.list_tags(arn)
        return snapshots
