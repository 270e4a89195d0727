from __future__ import annotations

from typing import Any, Dict, List

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from cache_broker.errors import InvalidResponseError, ResourceNotFoundError, TransientExternalError
from cache_broker.secret_store import SecretsManagerStore


class DummySecretsManager:
    def __init__(self) -> None:
        self.requests: List[tuple] = []
        self.value: Dict[str, Any] = {"SecretString": "token"}
        self.error: Exception | None = None

    def _handle(self, method: str, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        self.requests.append((method, kwargs))
        if self.error is not None:
            raise self.error
        return self.value if method == "get_secret_value" else {}

    def create_secret(self, **kwargs: Any) -> Dict[str, Any]:
        return self._handle("create_secret", kwargs)

    def get_secret_value(self, **kwargs: Any) -> Dict[str, Any]:
        return self._handle("get_secret_value", kwargs)

    def delete_secret(self, **kwargs: Any) -> Dict[str, Any]:
        return self._handle("delete_secret", kwargs)


def test_create_secret_sends_tags_and_kms_key() -> None:
    client = DummySecretsManager()

    SecretsManagerStore(client).create_secret("path/abc/auth-token", "token", {"chargeable_entity": "abc"}, "kms-1")

    assert client.requests == [
        (
            "create_secret",
            {
                "Name": "path/abc/auth-token",
                "SecretString": "token",
                "Tags": [{"Key": "chargeable_entity", "Value": "abc"}],
                "KmsKeyId": "kms-1",
            },
        )
    ]


def test_create_secret_without_kms_key_uses_default() -> None:
    client = DummySecretsManager()

    SecretsManagerStore(client).create_secret("path", "token", {})

    assert "KmsKeyId" not in client.requests[0][1]


def test_get_secret_returns_string() -> None:
    client = DummySecretsManager()

    assert SecretsManagerStore(client).get_secret("path") == "token"
    assert client.requests == [("get_secret_value", {"SecretId": "path"})]


def test_get_secret_without_string_is_invalid() -> None:
    client = DummySecretsManager()
    client.value = {"SecretBinary": b"token"}

    with pytest.raises(InvalidResponseError):
        SecretsManagerStore(client).get_secret("path")


def test_missing_secret_is_not_found() -> None:
    client = DummySecretsManager()
    client.error = ClientError(
        {"Error": {"Code": "ResourceNotFoundException", "Message": "Secrets Manager can't find the secret."}},
        "GetSecretValue",
    )

    with pytest.raises(ResourceNotFoundError, match="can't find the secret"):
        SecretsManagerStore(client).get_secret("path")


def test_delete_secret_schedules_with_recovery_window() -> None:
    client = DummySecretsManager()

    SecretsManagerStore(client).delete_secret("path", 30)

    assert client.requests == [("delete_secret", {"SecretId": "path", "RecoveryWindowInDays": 30})]


def test_connection_failures_are_transient() -> None:
    client = DummySecretsManager()
    client.error = EndpointConnectionError(endpoint_url="https://secretsmanager.eu-west-1.amazonaws.com")

    with pytest.raises(TransientExternalError) as excinfo:
        SecretsManagerStore(client).delete_secret("path", 7)

    assert excinfo.value.operation == "DeleteSecret"
    assert excinfo.value.code is None
