"""Deterministic naming for replication groups, secrets, and ARNs."""
from __future__ import annotations

import base64

NAME_PREFIX = "cf-"
AUTH_TOKEN_SUFFIX = "auth-token"

_FNV64_OFFSET_BASIS = 0xCBF29CE484222325
_FNV64_PRIME = 0x100000001B3
_UINT64_MASK = 0xFFFFFFFFFFFFFFFF


def _fnv1a_64(data: bytes) -> int:
    value = _FNV64_OFFSET_BASIS
    for byte in data:
        value ^= byte
        value = (value * _FNV64_PRIME) & _UINT64_MASK
    return value


def derive_name(instance_id: str) -> str:
    """Return the replication group name for a service instance.

    ElastiCache names must be 1-20 characters, start with a letter, contain only
    alphanumerics or hyphens, and never end with a hyphen or contain two consecutive
    hyphens. The FNV-1a digest encodes to 13 base32 characters, so the prefixed name
    is always 16 characters long.
    """
    digest = _fnv1a_64(instance_id.encode("utf-8")).to_bytes(8, "big")
    encoded = base64.b32encode(digest).decode("ascii").rstrip("=")
    return (NAME_PREFIX + encoded).lower()


def secret_path(base_path: str, instance_id: str) -> str:
    return f"{base_path.rstrip('/')}/{instance_id}/{AUTH_TOKEN_SUFFIX}"


def replication_group_arn(partition: str, region: str, account_id: str, replication_group_id: str) -> str:
    return f"arn:{partition}:elasticache:{region}:{account_id}:replicationgroup:{replication_group_id}"


def snapshot_arn(partition: str, region: str, account_id: str, snapshot_name: str) -> str:
    return f"arn:{partition}:elasticache:{region}:{account_id}:snapshot:{snapshot_name}"
