"""Closed state vocabulary and the mappings applied to raw replication group statuses."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .models import ExternalResourceSnapshot

logger = logging.getLogger(__name__)


class ServiceState(str, Enum):
    CREATING = "creating"
    AVAILABLE = "available"
    MODIFYING = "modifying"
    DELETING = "deleting"
    CREATE_FAILED = "create-failed"
    SNAPSHOTTING = "snapshotting"
    NON_EXISTING = "non-existing"


class OperationProgress(str, Enum):
    SUCCEEDED = "succeeded"
    IN_PROGRESS = "in progress"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class UnrecognizedState:
    """A raw status outside the closed vocabulary, carried verbatim for diagnostics."""

    raw: str

    @property
    def value(self) -> str:
        return self.raw


ReportedState = Union[ServiceState, UnrecognizedState]

_KNOWN_STATES = {state.value: state for state in ServiceState}

_PROGRESS = {
    ServiceState.AVAILABLE: OperationProgress.SUCCEEDED,
    ServiceState.CREATE_FAILED: OperationProgress.FAILED,
    ServiceState.CREATING: OperationProgress.IN_PROGRESS,
    ServiceState.MODIFYING: OperationProgress.IN_PROGRESS,
    ServiceState.DELETING: OperationProgress.IN_PROGRESS,
    ServiceState.SNAPSHOTTING: OperationProgress.IN_PROGRESS,
}


def parse_state(raw_status: str) -> ReportedState:
    """Match a raw status case-sensitively against the closed vocabulary."""
    known = _KNOWN_STATES.get(raw_status)
    if known is not None:
        return known
    logger.warning("Unrecognized replication group status '%s'; reporting operation in progress", raw_status)
    return UnrecognizedState(raw_status)


def normalize(snapshot: Optional[ExternalResourceSnapshot]) -> ReportedState:
    """Map a snapshot (``None`` when the resource is gone) onto the reported state."""
    if snapshot is None:
        return ServiceState.NON_EXISTING
    return parse_state(snapshot.status)


def to_operation_progress(state: ReportedState) -> OperationProgress:
    # anything without an explicit entry keeps the caller polling
    if isinstance(state, ServiceState):
        return _PROGRESS.get(state, OperationProgress.IN_PROGRESS)
    return OperationProgress.IN_PROGRESS
