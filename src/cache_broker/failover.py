"""Failover test choreography.

Nothing about an in-flight failover is stored locally. Each poll infers the phase
from the replication group as it looks right now plus the primary node the caller
recorded when the test started:

* status not ``available``: wait, the control plane is still busy;
* automatic failover off and the recorded primary still primary: promote the replica;
* automatic failover off and a different node is primary: re-enable failover and multi-AZ;
* automatic failover on: done.

Re-running a phase on an unchanged snapshot yields the same mutation, so a lost
acknowledgement or a crashed caller is recovered by simply polling again.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from .errors import AmbiguousTopologyError
from .models import ROLE_PRIMARY, ROLE_REPLICA, ExternalResourceSnapshot, ReplicationGroupChange
from .states import ServiceState


class FailoverPhase(str, Enum):
    NOT_APPLICABLE = "not-applicable"
    PRE_CUTOVER = "pre-cutover"
    POST_CUTOVER = "post-cutover"
    CONVERGED = "converged"


@dataclass(slots=True, frozen=True)
class FailoverDecision:
    phase: FailoverPhase
    change: Optional[ReplicationGroupChange] = None
    # None means the normalizer decides
    reported_state: Optional[ServiceState] = None


DISABLE_HIGH_AVAILABILITY = ReplicationGroupChange(automatic_failover_enabled=False, multi_az_enabled=False)
ENABLE_HIGH_AVAILABILITY = ReplicationGroupChange(automatic_failover_enabled=True, multi_az_enabled=True)


def _single_node(snapshot: ExternalResourceSnapshot, role: str) -> str:
    nodes = snapshot.nodes_with_role(role)
    if len(nodes) != 1:
        raise AmbiguousTopologyError(role=role, matches=len(nodes), replication_group_id=snapshot.replication_group_id)
    return nodes[0]


def primary_and_replica(snapshot: ExternalResourceSnapshot) -> Tuple[str, str]:
    """Return ``(primary, replica)`` node ids, requiring exactly one of each."""
    return _single_node(snapshot, ROLE_PRIMARY), _single_node(snapshot, ROLE_REPLICA)


def plan_failover(snapshot: ExternalResourceSnapshot, previous_primary: Optional[str]) -> FailoverDecision:
    if snapshot.status != ServiceState.AVAILABLE.value:
        return FailoverDecision(FailoverPhase.NOT_APPLICABLE)

    if snapshot.automatic_failover_enabled:
        return FailoverDecision(FailoverPhase.CONVERGED, reported_state=ServiceState.AVAILABLE)

    primary, replica = primary_and_replica(snapshot)
    if not previous_primary or primary == previous_primary:
        return FailoverDecision(
            FailoverPhase.PRE_CUTOVER,
            change=ReplicationGroupChange(primary_cluster_id=replica),
            reported_state=ServiceState.MODIFYING,
        )
    return FailoverDecision(
        FailoverPhase.POST_CUTOVER,
        change=ENABLE_HIGH_AVAILABILITY,
        reported_state=ServiceState.MODIFYING,
    )
