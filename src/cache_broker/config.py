"""Configuration loading for the cache broker."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator, validator

from .errors import PlanNotFoundError

_REQUIRED_STRINGS = (
    "broker_name",
    "region",
    "cache_subnet_group_name",
    "secrets_manager_path",
)


def _is_placeholder(value: str) -> bool:
    stripped = value.strip()
    return not stripped or (stripped.startswith("<") and stripped.endswith(">"))


class PlanConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    instance_type: str = Field(description="ElastiCache node type, e.g. cache.t3.micro")
    cache_parameter_group_family: str = Field(description="Parameter group family, e.g. redis7")
    engine: str = "redis"
    engine_version: str = ""
    replicas_per_node_group: int = Field(0, ge=0, le=5)
    shard_count: int = Field(1, ge=1)
    snapshot_retention_limit: int = Field(0, ge=0)
    automatic_failover_enabled: bool = False
    multi_az_enabled: bool = False
    parameters: Dict[str, str] = Field(
        default_factory=dict,
        description="Cache parameter group overrides applied at provision time",
    )

    @validator("instance_type", "cache_parameter_group_family")
    def validate_not_placeholder(cls, value: str) -> str:  # noqa: D417 - pydantic validator signature
        if _is_placeholder(value):
            raise ValueError("plan value must not be empty or a <placeholder>")
        return value.strip()

    @property
    def cluster_enabled(self) -> bool:
        return self.parameters.get("cluster-enabled", "no") == "yes"


class BrokerConfig(BaseModel):
    broker_name: str
    region: str
    aws_partition: str = "aws"
    aws_account_id: Optional[str] = Field(
        default=None,
        description="Account id used to build ARNs; looked up through STS when omitted",
    )
    log_level: Optional[str] = Field(default=None, description="Overrides CACHE_BROKER_LOG_LEVEL when set")
    cache_subnet_group_name: str
    vpc_security_group_ids: list[str] = Field(min_length=1)
    kms_key_id: Optional[str] = Field(default=None, description="KMS key used to encrypt auth tokens")
    secrets_manager_path: str
    call_timeout_seconds: float = Field(30.0, gt=0)
    plan_configs: Dict[str, PlanConfig] = Field(default_factory=dict)

    @model_validator(mode="before")
    def _reject_placeholders(cls, values: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(values, dict):
            return values
        for key in _REQUIRED_STRINGS:
            value = values.get(key)
            if isinstance(value, str) and _is_placeholder(value):
                raise ValueError(f"{key} must be set to a real value, got '{value}'")
        for key in ("aws_account_id", "kms_key_id", "log_level"):
            value = values.get(key)
            if isinstance(value, str) and _is_placeholder(value):
                values[key] = None
        return values

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "BrokerConfig":
        return cls.model_validate(raw)

    @classmethod
    def from_yaml(cls, path: Path) -> "BrokerConfig":
        data = yaml.safe_load(path.read_text())
        return cls.from_dict(data or {})

    def plan(self, plan_id: str) -> PlanConfig:
        try:
            return self.plan_configs[plan_id]
        except KeyError:
            raise PlanNotFoundError(f"plan not found: {plan_id}") from None


def load_config(path: str | Path) -> BrokerConfig:
    """Load a BrokerConfig from a YAML file."""
    config_path = Path(path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    return BrokerConfig.from_yaml(config_path)
