"""CLI entrypoint for the cache broker."""
from __future__ import annotations

import json
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

import typer
from pydantic import ValidationError
from tenacity import retry, retry_if_exception_type, retry_if_result, stop_after_attempt, wait_exponential

from .broker import Broker, LastOperation, RequestContext
from .config import BrokerConfig, load_config
from .errors import AmbiguousTopologyError, BrokerError, InstanceDoesNotExistError, TransientExternalError
from .naming import derive_name
from .provider import CacheProvider
from .states import OperationProgress

LOG_LEVEL_ENV = "CACHE_BROKER_LOG_LEVEL"


def _level_from_name(name: str, source: str) -> int:
    level = getattr(logging, name.upper(), None)
    if not isinstance(level, int):
        logging.warning("Unrecognized %s '%s'; defaulting to INFO", source, name)
        return logging.INFO
    return level


def _configure_logging() -> None:
    env_level = os.getenv(LOG_LEVEL_ENV, "INFO")
    logging.basicConfig(
        level=_level_from_name(env_level, LOG_LEVEL_ENV),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


_configure_logging()

app = typer.Typer(help="Provision and observe ElastiCache Redis service instances")

ConfigOption = typer.Option(..., exists=True, readable=True, help="Path to broker config YAML")


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except AmbiguousTopologyError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc
    except (BrokerError, ValidationError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


def _build_broker(config_path: Path) -> Broker:
    broker_config: BrokerConfig = load_config(config_path)
    if broker_config.log_level:
        logging.getLogger().setLevel(_level_from_name(broker_config.log_level, "log_level"))
    return Broker(broker_config, CacheProvider.from_config(broker_config))


def _parse_params(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        typer.secho(f"--params is not valid JSON: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    if not isinstance(parsed, dict):
        typer.secho("--params must be a JSON object", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return parsed


def _echo(payload: Dict[str, Any]) -> None:
    typer.echo(json.dumps(payload, indent=2))


def _last_operation_payload(instance_id: str, result: LastOperation) -> Dict[str, Any]:
    return {"instance_id": instance_id, "state": result.state.value, "description": result.description}


def _gone_payload(instance_id: str) -> Dict[str, Any]:
    return {"instance_id": instance_id, "state": "gone", "description": "instance does not exist"}


@app.command("provision")
def provision(
    instance_id: str,
    plan_id: str,
    config: Path = ConfigOption,
    params: Optional[str] = typer.Option(None, help="User parameters as a JSON object"),
    service_id: str = typer.Option("", help="Service id recorded in the resource tags"),
    organization_id: str = typer.Option("", help="Organization the instance belongs to"),
    space_id: str = typer.Option("", help="Space the instance belongs to"),
) -> None:
    """Start creating the replication group for a new service instance."""

    with _cli_errors():
        broker = _build_broker(config)
        context = RequestContext(service_id=service_id, organization_id=organization_id, space_id=space_id)
        operation = broker.provision(instance_id, plan_id, _parse_params(params), context)
    _echo({"instance_id": instance_id, "operation_data": operation.to_json()})


@app.command("deprovision")
def deprovision(instance_id: str, config: Path = ConfigOption) -> None:
    """Start deleting the replication group of a service instance."""

    with _cli_errors():
        operation = _build_broker(config).deprovision(instance_id)
    _echo({"instance_id": instance_id, "operation_data": operation.to_json()})


@app.command("update")
def update(
    instance_id: str,
    plan_id: str,
    config: Path = ConfigOption,
    params: Optional[str] = typer.Option(None, help="User parameters as a JSON object"),
    previous_plan_id: Optional[str] = typer.Option(None, help="Plan the instance currently runs on"),
    service_id: Optional[str] = typer.Option(None, help="Requested service offering id"),
    previous_service_id: Optional[str] = typer.Option(None, help="Service offering id the instance was created with"),
) -> None:
    """Change the maintenance window or maxmemory policy, or start a failover test."""

    with _cli_errors():
        operation = _build_broker(config).update(
            instance_id,
            plan_id,
            _parse_params(params),
            previous_plan_id=previous_plan_id,
            service_id=service_id,
            previous_service_id=previous_service_id,
        )
    _echo({"instance_id": instance_id, "operation_data": operation.to_json()})


@app.command("last-operation")
def last_operation(
    instance_id: str,
    config: Path = ConfigOption,
    operation_data: str = typer.Option("", help="Operation data returned by the command that started it"),
) -> None:
    """Poll the instance once, advancing any failover test in flight."""

    with _cli_errors():
        broker = _build_broker(config)
        try:
            result = broker.last_operation(instance_id, operation_data)
        except InstanceDoesNotExistError:
            _echo(_gone_payload(instance_id))
            return
    _echo(_last_operation_payload(instance_id, result))


def _in_progress(result: LastOperation) -> bool:
    return result.state == OperationProgress.IN_PROGRESS


def _poll_until_settled(
    broker: Broker,
    instance_id: str,
    operation_data: str,
    attempts: int,
    min_interval: float,
    max_interval: float,
) -> LastOperation:
    poll = retry(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=1, min=min_interval, max=max_interval),
        retry=retry_if_result(_in_progress) | retry_if_exception_type(TransientExternalError),
        retry_error_callback=lambda state: state.outcome.result(),
    )(broker.last_operation)
    return poll(instance_id, operation_data)


@app.command("wait")
def wait(
    instance_id: str,
    config: Path = ConfigOption,
    operation_data: str = typer.Option("", help="Operation data returned by the command that started it"),
    attempts: int = typer.Option(120, min=1, help="Maximum number of polls"),
    min_interval: float = typer.Option(5.0, min=0, help="Shortest pause between polls, in seconds"),
    max_interval: float = typer.Option(60.0, min=0, help="Longest pause between polls, in seconds"),
) -> None:
    """Poll until the operation succeeds, fails, or the instance is gone."""

    with _cli_errors():
        broker = _build_broker(config)
        try:
            result = _poll_until_settled(broker, instance_id, operation_data, attempts, min_interval, max_interval)
        except InstanceDoesNotExistError:
            _echo(_gone_payload(instance_id))
            return

    _echo(_last_operation_payload(instance_id, result))
    if result.state != OperationProgress.SUCCEEDED:
        raise typer.Exit(code=1)


@app.command("bind")
def bind(instance_id: str, binding_id: str, config: Path = ConfigOption) -> None:
    """Print connection credentials for an application binding."""

    with _cli_errors():
        credentials = _build_broker(config).bind(instance_id, binding_id)
    _echo(credentials.as_dict())


@app.command("unbind")
def unbind(instance_id: str, binding_id: str, config: Path = ConfigOption) -> None:
    with _cli_errors():
        _build_broker(config).unbind(instance_id, binding_id)
    _echo({"instance_id": instance_id, "binding_id": binding_id, "unbound": True})


@app.command("start-failover-test")
def start_failover_test(instance_id: str, config: Path = ConfigOption) -> None:
    """Disable automatic failover and report the primary node to fail over from."""

    with _cli_errors():
        operation = _build_broker(config).start_failover_test(instance_id)
    _echo({"instance_id": instance_id, "primary_node": operation.primary_node, "operation_data": operation.to_json()})


@app.command("derive-name")
def derive_name_command(instance_id: str) -> None:
    """Print the replication group name used for a service instance."""

    _echo({"instance_id": instance_id, "replication_group_id": derive_name(instance_id)})


if __name__ == "__main__":
    app()
