"""Auth token lifecycle for cache instances.

A single token is generated when an instance is provisioned and shared by every
binding of that instance, so unbinding an application never touches it.
"""
from __future__ import annotations

import logging
import secrets
import string
from typing import Optional

from .errors import TransientExternalError
from .naming import secret_path
from .secret_store import SecretStore

logger = logging.getLogger(__name__)

PASSWORD_LENGTH = 32
COST_ALLOCATION_TAG = "chargeable_entity"
ALPHANUMERIC = string.ascii_letters + string.digits


def random_alphanumeric(length: int) -> str:
    return "".join(secrets.choice(ALPHANUMERIC) for _ in range(length))


class CredentialLifecycle:
    def __init__(self, store: SecretStore, base_path: str, kms_key_id: Optional[str] = None) -> None:
        self._store = store
        self._base_path = base_path
        self._kms_key_id = kms_key_id

    def path_for(self, instance_id: str) -> str:
        return secret_path(self._base_path, instance_id)

    def issue(self, instance_id: str) -> str:
        token = random_alphanumeric(PASSWORD_LENGTH)
        try:
            self._store.create_secret(
                self.path_for(instance_id),
                token,
                tags={COST_ALLOCATION_TAG: instance_id},
                kms_key_id=self._kms_key_id,
            )
        except TransientExternalError as exc:
            raise TransientExternalError(
                operation=exc.operation,
                resource=exc.resource,
                detail=f"failed to create auth token: {exc.detail}",
                code=exc.code,
            ) from exc
        return token

    def retrieve(self, instance_id: str) -> str:
        return self._store.get_secret(self.path_for(instance_id))

    def revoke(self, instance_id: str, recovery_window_days: int) -> None:
        logger.info(
            "Revoking auth token for instance '%s' with a %d day recovery window",
            instance_id,
            recovery_window_days,
        )
        self._store.delete_secret(self.path_for(instance_id), recovery_window_days)
