"""Service broker semantics on top of :class:`CacheProvider`, independent of any transport."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from .config import BrokerConfig
from .errors import InstanceDoesNotExistError, InvalidParametersError, OperationTimedOutError
from .models import Credentials, InstanceParameters, ProvisionParameters
from .provider import FAILOVER_OPERATION, CacheProvider
from .states import OperationProgress, ServiceState, to_operation_progress

logger = logging.getLogger(__name__)

ACTION_PROVISIONING = "provisioning"
ACTION_DEPROVISIONING = "deprovisioning"
ACTION_UPDATING = "updating"
ACTION_FAILOVER = FAILOVER_OPERATION
FAILOVER_TIMEOUT = timedelta(minutes=45)

MAXMEMORY_POLICY = "maxmemory-policy"

_ParamsT = TypeVar("_ParamsT", bound=BaseModel)


@dataclass(slots=True)
class Operation:
    """Operation data handed back to the platform and echoed on every poll."""

    action: str
    primary_node: str = ""
    timeout: str = ""

    def to_json(self) -> str:
        return json.dumps({"action": self.action, "primaryNode": self.primary_node, "timeOut": self.timeout})

    @classmethod
    def parse(cls, data: str) -> "Operation":
        if not data:
            return cls(action="")
        try:
            raw = json.loads(data)
        except json.JSONDecodeError as exc:
            raise InvalidParametersError(f"invalid operation data: {data}") from exc
        if not isinstance(raw, dict):
            raise InvalidParametersError(f"invalid operation data: {data}")
        action = raw.get("action") or ""
        if not action:
            raise InvalidParametersError(f"invalid operation, action parameter is empty: {data}")
        return cls(action=action, primary_node=raw.get("primaryNode") or "", timeout=raw.get("timeOut") or "")


@dataclass(slots=True)
class RequestContext:
    service_id: str = ""
    organization_id: str = ""
    space_id: str = ""


@dataclass(slots=True)
class LastOperation:
    state: OperationProgress
    description: str


@dataclass(slots=True)
class InstanceDetails:
    service_id: str
    plan_id: str
    parameters: InstanceParameters = field(default_factory=InstanceParameters)


class ProvisionRequestParameters(BaseModel):
    model_config = ConfigDict(extra="forbid")

    restore_from_latest_snapshot_of: Optional[str] = None
    maxmemory_policy: Optional[str] = None
    preferred_maintenance_window: str = ""


class UpdateRequestParameters(BaseModel):
    model_config = ConfigDict(extra="forbid")

    maxmemory_policy: Optional[str] = None
    preferred_maintenance_window: str = ""
    test_failover: Optional[bool] = None

    def is_empty(self) -> bool:
        return self.maxmemory_policy is None and not self.preferred_maintenance_window and self.test_failover is None


def parse_parameters(raw: Optional[Dict[str, Any]], model: Type[_ParamsT]) -> _ParamsT:
    raw = raw or {}
    for key in raw:
        if key not in model.model_fields:
            raise InvalidParametersError(f"unknown parameter: {key}")
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise InvalidParametersError(f"invalid parameters: {exc}") from exc


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Broker:
    def __init__(
        self,
        config: BrokerConfig,
        provider: CacheProvider,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._provider = provider
        self._now = now

    def provision(
        self,
        instance_id: str,
        plan_id: str,
        raw_params: Optional[Dict[str, Any]] = None,
        context: Optional[RequestContext] = None,
    ) -> Operation:
        context = context or RequestContext()
        plan = self._config.plan(plan_id)
        user_params = parse_parameters(raw_params, ProvisionRequestParameters)

        restore_from: Optional[str] = None
        if user_params.restore_from_latest_snapshot_of:
            restore_from = self._latest_snapshot_name(user_params.restore_from_latest_snapshot_of, plan_id, context)

        parameters = dict(plan.parameters)
        if user_params.maxmemory_policy is not None:
            parameters[MAXMEMORY_POLICY] = user_params.maxmemory_policy

        params = ProvisionParameters(
            instance_type=plan.instance_type,
            cache_parameter_group_family=plan.cache_parameter_group_family,
            security_group_ids=list(self._config.vpc_security_group_ids),
            cache_subnet_group_name=self._config.cache_subnet_group_name,
            engine=plan.engine,
            engine_version=plan.engine_version,
            preferred_maintenance_window=user_params.preferred_maintenance_window,
            replicas_per_node_group=plan.replicas_per_node_group,
            shard_count=plan.shard_count,
            snapshot_retention_limit=plan.snapshot_retention_limit,
            restore_from_snapshot=restore_from,
            automatic_failover_enabled=plan.automatic_failover_enabled,
            multi_az_enabled=plan.multi_az_enabled,
            parameters=parameters,
            tags={
                "created-by": self._config.broker_name,
                "service-id": context.service_id,
                "plan-id": plan_id,
                "organization-id": context.organization_id,
                "space-id": context.space_id,
                "instance-id": instance_id,
                # configured cost allocation tag, snake_case on purpose
                "chargeable_entity": instance_id,
            },
        )
        self._provider.provision(instance_id, params)
        logger.info("Provision of instance '%s' (plan %s) accepted", instance_id, plan_id)
        return Operation(action=ACTION_PROVISIONING)

    def _latest_snapshot_name(self, source_instance_id: str, plan_id: str, context: RequestContext) -> str:
        snapshots = self._provider.find_snapshots(source_instance_id)
        if not snapshots:
            raise InvalidParametersError(f"No snapshots found for: {source_instance_id}")
        latest = max(snapshots, key=lambda snapshot: snapshot.create_time)
        if (
            latest.tags.get("space-id") != context.space_id
            or latest.tags.get("organization-id") != context.organization_id
        ):
            raise InvalidParametersError(
                "The service instance you are getting a snapshot from is not in the same org or space"
            )
        if latest.tags.get("plan-id") != plan_id:
            raise InvalidParametersError(
                "You must use the same plan as the service instance you are getting a snapshot from"
            )
        logger.info("Restoring from snapshot '%s' of instance '%s'", latest.name, source_instance_id)
        return latest.name

    def update(
        self,
        instance_id: str,
        plan_id: str,
        raw_params: Optional[Dict[str, Any]] = None,
        *,
        previous_plan_id: Optional[str] = None,
        service_id: Optional[str] = None,
        previous_service_id: Optional[str] = None,
    ) -> Operation:
        """Apply maintenance window / maxmemory policy changes, or start a failover test.

        Previous values default to the requested ones. Updates are applied one after
        the other; the first failure aborts the rest.
        """
        if previous_plan_id is not None and previous_plan_id != plan_id:
            raise InvalidParametersError("changing plans is not currently supported")
        if previous_service_id is not None and previous_service_id != service_id:
            raise InvalidParametersError("changing plans is not currently supported")

        user_params = parse_parameters(raw_params, UpdateRequestParameters)
        if user_params.is_empty():
            raise InvalidParametersError("no parameters provided")

        if user_params.test_failover is not None:
            self._check_failover_allowed(plan_id, user_params)
            return self.start_failover_test(instance_id)

        if user_params.preferred_maintenance_window:
            self._provider.update_replication_group(instance_id, user_params.preferred_maintenance_window)
        if user_params.maxmemory_policy is not None:
            self._provider.update_parameters(instance_id, {MAXMEMORY_POLICY: user_params.maxmemory_policy})
        return Operation(action=ACTION_UPDATING)

    def start_failover_test(self, instance_id: str) -> Operation:
        primary = self._provider.start_failover_test(instance_id)
        timeout = (self._now() + FAILOVER_TIMEOUT).isoformat(timespec="seconds")
        return Operation(action=ACTION_FAILOVER, primary_node=primary, timeout=timeout)

    def _check_failover_allowed(self, plan_id: str, user_params: UpdateRequestParameters) -> None:
        plan = self._config.plan(plan_id)
        if plan.cluster_enabled:
            raise InvalidParametersError("Test failover is not supported for Redis instances in cluster mode")
        if not (plan.multi_az_enabled and plan.automatic_failover_enabled):
            raise InvalidParametersError(
                "Test failover is not supported without MultiAZEnabled and AutomaticFailoverEnabled"
            )
        if plan.replicas_per_node_group < 1:
            raise InvalidParametersError("Test failover requires one or more replicas")
        if user_params.maxmemory_policy is not None or user_params.preferred_maintenance_window:
            raise InvalidParametersError("Test failover must be used by itself")

    def deprovision(self, instance_id: str) -> Operation:
        self._provider.deprovision(instance_id)
        return Operation(action=ACTION_DEPROVISIONING)

    def last_operation(self, instance_id: str, operation_data: str = "") -> LastOperation:
        operation = Operation.parse(operation_data)
        self._check_timeout(instance_id, operation)

        state, description = self._provider.progress_state(instance_id, operation.action, operation.primary_node)
        if state == ServiceState.NON_EXISTING:
            if operation.action == ACTION_DEPROVISIONING:
                self._provider.delete_cache_parameter_group(instance_id)
            raise InstanceDoesNotExistError(f"instance does not exist: {instance_id}")

        progress = to_operation_progress(state)
        if not isinstance(state, ServiceState):
            logger.error("Unknown service state '%s' for instance '%s'", state.value, instance_id)
        return LastOperation(state=progress, description=description)

    def _check_timeout(self, instance_id: str, operation: Operation) -> None:
        if not operation.timeout:
            return
        try:
            deadline = datetime.fromisoformat(operation.timeout)
        except ValueError as exc:
            raise InvalidParametersError(f"Failed to parse time out string: {operation.timeout}") from exc
        if deadline.tzinfo is None:
            deadline = deadline.replace(tzinfo=timezone.utc)
        if self._now() > deadline:
            raise OperationTimedOutError(f"Operation {operation.action} timed out for {instance_id}")

    def get_instance(self, instance_id: str) -> InstanceDetails:
        parameters = self._provider.get_instance_parameters(instance_id)
        tags = self._provider.get_instance_tags(instance_id)
        return InstanceDetails(
            service_id=tags.get("service-id", ""),
            plan_id=tags.get("plan-id", ""),
            parameters=parameters,
        )

    def bind(self, instance_id: str, binding_id: str) -> Credentials:
        return self._provider.generate_credentials(instance_id, binding_id)

    def unbind(self, instance_id: str, binding_id: str) -> None:
        self._provider.revoke_credentials(instance_id, binding_id)
