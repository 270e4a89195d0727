"""Reconciliation entry point for ElastiCache Redis service instances."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import boto3
from botocore.config import Config

from .config import BrokerConfig
from .control_plane import PARAMETER_GROUP_DESCRIPTION, ControlPlane, ElastiCacheControlPlane
from .credentials import CredentialLifecycle
from .deadline import Clock, Deadline, DeadlineBound
from .describer import CLUSTER_ENABLED, MAXMEMORY_POLICY, ResourceDescriber
from .errors import InvalidResponseError, ResourceNotFoundError, aws_errors
from .failover import DISABLE_HIGH_AVAILABILITY, plan_failover, primary_and_replica
from .models import (
    CacheClusterInfo,
    Credentials,
    DeprovisionParameters,
    ExternalResourceSnapshot,
    InstanceParameters,
    ProvisionParameters,
    ReplicationGroupChange,
    SnapshotInfo,
)
from .naming import derive_name
from .secret_store import SecretsManagerStore, SecretStore
from .states import ReportedState, ServiceState, normalize
from .workflow import Step, StepContext, StepRunner

logger = logging.getLogger(__name__)

FAILOVER_OPERATION = "failover"
FAILED_PROVISION_RECOVERY_DAYS = 7
DEPROVISION_RECOVERY_DAYS = 30
# bindings carry a fixed user name, the auth token is the only secret
URI_USERNAME = "x"

ProgressReport = Tuple[ReportedState, str]


@dataclass(slots=True)
class _Invocation:
    """Collaborators bound to the deadline of a single call."""

    control_plane: ControlPlane
    describer: ResourceDescriber
    credentials: CredentialLifecycle


def client_config(call_timeout_seconds: float) -> Config:
    # retries stay with the caller, who polls again anyway
    return Config(
        connect_timeout=call_timeout_seconds,
        read_timeout=call_timeout_seconds,
        retries={"max_attempts": 1, "mode": "standard"},
    )


def _caller_account_id(session: Any, config: Config) -> str:
    with aws_errors("GetCallerIdentity", "sts"):
        identity = session.client("sts", config=config).get_caller_identity()
    return identity["Account"]


class CacheProvider:
    """Provisions and observes the replication group behind a service instance.

    Every public method is a short synchronous sequence of external calls bounded by
    ``call_timeout_seconds``. No state survives between calls: each poll re-reads the
    replication group and derives what to do from what it sees.
    """

    def __init__(
        self,
        control_plane: ControlPlane,
        secret_store: SecretStore,
        *,
        region: str,
        account_id: str,
        secrets_path: str,
        partition: str = "aws",
        kms_key_id: Optional[str] = None,
        call_timeout_seconds: float = 30.0,
        clock: Clock = time.monotonic,
    ) -> None:
        self._control_plane = control_plane
        self._secret_store = secret_store
        self._region = region
        self._account_id = account_id
        self._secrets_path = secrets_path
        self._partition = partition
        self._kms_key_id = kms_key_id
        self._call_timeout_seconds = call_timeout_seconds
        self._clock = clock

    @classmethod
    def from_config(cls, config: BrokerConfig, session: Any = None) -> "CacheProvider":
        session = session or boto3.session.Session(region_name=config.region)
        sdk_config = client_config(config.call_timeout_seconds)
        account_id = config.aws_account_id or _caller_account_id(session, sdk_config)
        return cls(
            ElastiCacheControlPlane(session.client("elasticache", config=sdk_config)),
            SecretsManagerStore(session.client("secretsmanager", config=sdk_config)),
            region=config.region,
            account_id=account_id,
            secrets_path=config.secrets_manager_path,
            partition=config.aws_partition,
            kms_key_id=config.kms_key_id,
            call_timeout_seconds=config.call_timeout_seconds,
        )

    def _begin(self) -> _Invocation:
        deadline = Deadline(self._call_timeout_seconds, self._clock)
        control_plane = DeadlineBound(self._control_plane, deadline)
        store = DeadlineBound(self._secret_store, deadline)
        return _Invocation(
            control_plane=control_plane,
            describer=ResourceDescriber(control_plane, self._partition, self._region, self._account_id),
            credentials=CredentialLifecycle(store, self._secrets_path, self._kms_key_id),
        )

    def provision(self, instance_id: str, params: ProvisionParameters) -> None:
        invocation = self._begin()
        control_plane = invocation.control_plane
        name = derive_name(instance_id)
        parameters = {CLUSTER_ENABLED: "no", **params.parameters}
        logger.info("Provisioning instance '%s' as replication group '%s'", instance_id, name)

        def create_parameter_group(_: StepContext) -> None:
            control_plane.create_cache_parameter_group(
                name, params.cache_parameter_group_family, PARAMETER_GROUP_DESCRIPTION
            )

        def delete_parameter_group(_: StepContext) -> None:
            control_plane.delete_cache_parameter_group(name)

        def configure_parameter_group(_: StepContext) -> None:
            control_plane.modify_cache_parameter_group(name, parameters)

        def issue_auth_token(ctx: StepContext) -> None:
            ctx["auth_token"] = invocation.credentials.issue(instance_id)

        def revoke_auth_token(_: StepContext) -> None:
            invocation.credentials.revoke(instance_id, FAILED_PROVISION_RECOVERY_DAYS)

        def create_replication_group(ctx: StepContext) -> None:
            control_plane.create_replication_group(name, params, str(ctx["auth_token"]))

        StepRunner().run(
            [
                Step("create cache parameter group", create_parameter_group, delete_parameter_group),
                Step("configure cache parameter group", configure_parameter_group),
                Step("issue auth token", issue_auth_token, revoke_auth_token),
                Step("create replication group", create_replication_group),
            ],
            {"instance_id": instance_id},
        )

    def deprovision(self, instance_id: str, params: Optional[DeprovisionParameters] = None) -> None:
        params = params or DeprovisionParameters()
        invocation = self._begin()
        name = derive_name(instance_id)
        invocation.control_plane.delete_replication_group(name, params.final_snapshot_identifier)
        invocation.credentials.revoke(instance_id, DEPROVISION_RECOVERY_DAYS)

    def delete_cache_parameter_group(self, instance_id: str) -> None:
        name = derive_name(instance_id)
        try:
            self._begin().control_plane.delete_cache_parameter_group(name)
        except ResourceNotFoundError:
            logger.info("Cache parameter group '%s' already deleted", name)

    def progress_state(self, instance_id: str, operation: str = "", previous_primary: str = "") -> ProgressReport:
        """Report where the instance stands, advancing a failover test when one is running."""
        invocation = self._begin()
        try:
            snapshot = invocation.describer.describe(instance_id)
        except ResourceNotFoundError as exc:
            return ServiceState.NON_EXISTING, str(exc)

        state = normalize(snapshot)
        if operation == FAILOVER_OPERATION:
            decision = plan_failover(snapshot, previous_primary or None)
            if decision.change is not None:
                logger.info(
                    "Failover of '%s' in phase %s: %s",
                    snapshot.replication_group_id,
                    decision.phase.value,
                    decision.change,
                )
                invocation.control_plane.modify_replication_group(snapshot.replication_group_id, decision.change)
            if decision.reported_state is not None:
                state = decision.reported_state

        return state, self._status_message(invocation, snapshot, state)

    def _status_message(
        self,
        invocation: _Invocation,
        snapshot: ExternalResourceSnapshot,
        state: ReportedState,
    ) -> str:
        cluster: Optional[CacheClusterInfo] = None
        if snapshot.member_node_ids:
            cluster = invocation.describer.cache_cluster(snapshot.member_node_ids[0])
        group_name = (cluster.cache_parameter_group_name if cluster else None) or snapshot.replication_group_id
        parameters = invocation.describer.cache_parameters(group_name) or {}

        fields = [
            ("status", state.value),
            ("engine version", cluster.engine_version if cluster else None),
            ("maxmemory policy", parameters.get(MAXMEMORY_POLICY)),
            ("daily backup window", snapshot.snapshot_window),
            ("maintenance window", cluster.preferred_maintenance_window if cluster else None),
            ("cluster enabled", parameters.get(CLUSTER_ENABLED)),
            ("automatic failover", snapshot.automatic_failover),
        ]
        return "\n".join(f"{label:<21}: {value}" for label, value in fields if value)

    def generate_credentials(self, instance_id: str, binding_id: str) -> Credentials:
        invocation = self._begin()
        snapshot = invocation.describer.describe(instance_id)
        endpoint = snapshot.configuration_endpoint or snapshot.primary_endpoint
        if endpoint is None:
            raise InvalidResponseError(
                f"Invalid response from AWS: no node groups returned for {snapshot.replication_group_id}"
            )
        password = invocation.credentials.retrieve(instance_id)
        logger.info("Issued credentials for binding '%s' of instance '%s'", binding_id, instance_id)
        return Credentials(
            host=endpoint.address,
            port=endpoint.port,
            name=snapshot.replication_group_id,
            password=password,
            uri=f"rediss://{URI_USERNAME}:{password}@{endpoint.address}:{endpoint.port}",
        )

    def revoke_credentials(self, instance_id: str, binding_id: str) -> None:
        # bindings share the instance token; nothing to revoke per binding
        logger.debug("Nothing to revoke for binding '%s' of instance '%s'", binding_id, instance_id)

    def start_failover_test(self, instance_id: str) -> str:
        """Turn off automatic failover and multi-AZ; return the primary to promote away from."""
        invocation = self._begin()
        snapshot = invocation.describer.describe(instance_id)
        primary, _ = primary_and_replica(snapshot)
        invocation.control_plane.modify_replication_group(snapshot.replication_group_id, DISABLE_HIGH_AVAILABILITY)
        logger.info("Started failover test of '%s' away from primary '%s'", snapshot.replication_group_id, primary)
        return primary

    def update_replication_group(self, instance_id: str, maintenance_window: str) -> None:
        if not maintenance_window:
            return
        change = ReplicationGroupChange(preferred_maintenance_window=maintenance_window)
        self._begin().control_plane.modify_replication_group(derive_name(instance_id), change)

    def update_parameters(self, instance_id: str, parameters: Dict[str, str]) -> None:
        if not parameters:
            return
        self._begin().control_plane.modify_cache_parameter_group(derive_name(instance_id), parameters)

    def get_instance_parameters(self, instance_id: str) -> InstanceParameters:
        return self._begin().describer.instance_parameters(instance_id)

    def get_instance_tags(self, instance_id: str) -> Dict[str, str]:
        return self._begin().describer.tags(instance_id)

    def find_snapshots(self, instance_id: str) -> List[SnapshotInfo]:
        return self._begin().describer.snapshots_with_tags(instance_id)
