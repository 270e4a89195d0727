"""Secret store capability backed by AWS Secrets Manager."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

from .errors import InvalidResponseError, aws_errors

logger = logging.getLogger(__name__)


class SecretStore(Protocol):
    def create_secret(
        self,
        name: str,
        secret_string: str,
        tags: Dict[str, str],
        kms_key_id: Optional[str] = None,
    ) -> None: ...

    def get_secret(self, name: str) -> str: ...

    def delete_secret(self, name: str, recovery_window_days: int) -> None: ...


class SecretsManagerStore:
    """Wraps a boto3 ``secretsmanager`` client."""

    def __init__(self, client: Any) -> None:
        self._client = client

    def create_secret(
        self,
        name: str,
        secret_string: str,
        tags: Dict[str, str],
        kms_key_id: Optional[str] = None,
    ) -> None:
        request: Dict[str, Any] = {
            "Name": name,
            "SecretString": secret_string,
            "Tags": [{"Key": key, "Value": value} for key, value in sorted(tags.items())],
        }
        if kms_key_id:
            request["KmsKeyId"] = kms_key_id
        logger.info("Storing secret '%s'", name)
        with aws_errors("CreateSecret", name):
            self._client.create_secret(**request)

    def get_secret(self, name: str) -> str:
        with aws_errors("GetSecretValue", name):
            response = self._client.get_secret_value(SecretId=name)
        value = response.get("SecretString")
        if value is None:
            raise InvalidResponseError(f"Invalid response from AWS: secret '{name}' has no string value")
        return value

    def delete_secret(self, name: str, recovery_window_days: int) -> None:
        logger.info("Scheduling deletion of secret '%s' in %d days", name, recovery_window_days)
        with aws_errors("DeleteSecret", name):
            self._client.delete_secret(SecretId=name, RecoveryWindowInDays=recovery_window_days)
