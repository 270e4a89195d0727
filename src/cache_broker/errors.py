"""Error taxonomy and the single translation point for AWS SDK failures."""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    ReadTimeoutError,
)

NOT_FOUND_CODES = frozenset(
    {
        "ReplicationGroupNotFoundFault",
        "CacheParameterGroupNotFound",
        "CacheParameterGroupNotFoundFault",
        "CacheClusterNotFound",
        "SnapshotNotFoundFault",
        "ResourceNotFoundException",
    }
)


class BrokerError(Exception):
    """Base class for every error the engine hands back to its caller."""


class ResourceNotFoundError(BrokerError):
    """The external resource does not exist (an expected outcome, not a fault)."""

    def __init__(self, resource: str, message: Optional[str] = None) -> None:
        self.resource = resource
        super().__init__(message or f"Resource does not exist: {resource}")


@dataclass(eq=False)
class TransientExternalError(BrokerError):
    """An external call failed; nothing changed and re-invoking is safe."""

    operation: str
    resource: str
    detail: str
    code: Optional[str] = None

    def __str__(self) -> str:  # noqa: D401 - simple representation
        code = f" [{self.code}]" if self.code else ""
        return f"{self.operation} failed for {self.resource}{code}: {self.detail}"


@dataclass(eq=False)
class DeadlineExceededError(TransientExternalError):
    """The invocation ran past its deadline before the call completed."""


@dataclass(eq=False)
class AmbiguousTopologyError(BrokerError):
    """Exactly one primary and one replica are needed to pick a cutover target."""

    role: str
    matches: int
    replication_group_id: str = "<unknown>"

    def __str__(self) -> str:
        return (
            f"Unable to determine {self.role} node for {self.replication_group_id}: "
            f"expected exactly one node with role '{self.role}', found {self.matches}"
        )


class InvalidResponseError(BrokerError):
    """The control plane answered with a payload missing required data."""


class InvalidParametersError(BrokerError):
    """User supplied parameters failed validation."""


class PlanNotFoundError(BrokerError):
    """No plan configuration exists for the requested plan id."""


class InstanceDoesNotExistError(BrokerError):
    """The polled instance is gone; the protocol layer reports it as deleted."""


class OperationTimedOutError(BrokerError):
    """An asynchronous operation outlived the deadline recorded in its operation data."""


def error_code(exc: BaseException) -> Optional[str]:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code")
    return None


def translate_client_error(exc: BaseException, operation: str, resource: str) -> BrokerError:
    """Map a botocore failure onto the closed taxonomy above."""
    if isinstance(exc, (ConnectTimeoutError, ReadTimeoutError)):
        return DeadlineExceededError(operation=operation, resource=resource, detail=str(exc))
    code = error_code(exc)
    if code in NOT_FOUND_CODES:
        message = exc.response.get("Error", {}).get("Message") or f"Resource does not exist: {resource}"  # type: ignore[attr-defined]
        return ResourceNotFoundError(resource, message)
    return TransientExternalError(operation=operation, resource=resource, detail=str(exc), code=code)


@contextmanager
def aws_errors(operation: str, resource: str) -> Iterator[None]:
    try:
        yield
    except (BotoCoreError, ClientError) as exc:
        raise translate_client_error(exc, operation, resource) from exc
