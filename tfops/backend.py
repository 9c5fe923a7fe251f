"""
Remote state backends.

tfops never touches state itself. A backend only knows how to describe
itself to ``terraform init``; locking and lease handling stay with
Terraform and the storage service.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Protocol

import structlog

from tfops.errors import AuthenticationError, ExecutionError
from tfops.runner import run_live
from tfops.validate import validate_azure_backend

LOGGER = structlog.get_logger(__name__)


class StateBackend(Protocol):
    def init_args(self) -> list[str]: ...

    def check_access(self) -> None: ...


@dataclass(frozen=True)
class AzureBlobBackend:
    resource_group: str
    storage_account: str
    container: str
    key: str

    def __post_init__(self) -> None:
        validate_azure_backend(self.resource_group, self.storage_account, self.container, self.key)

    def init_args(self) -> list[str]:
        config = {
            "resource_group_name": self.resource_group,
            "storage_account_name": self.storage_account,
            "container_name": self.container,
            "key": self.key,
            "use_azuread_auth": "true",
        }
        return [f"-backend-config={k}={v}" for k, v in config.items()]

    def check_access(self) -> None:
        """Confirm the Azure CLI holds a session Terraform can reuse (ARM_USE_CLI)."""
        try:
            result = run_live(["az", "account", "show", "--output", "json"], quiet=True)
        except ExecutionError as exc:
            raise AuthenticationError("Azure", "arm_use_cli") from exc
        if result.code != 0:
            raise AuthenticationError("Azure", "arm_use_cli")
        try:
            account = json.loads(result.stdout)
        except json.JSONDecodeError:
            account = {}
        LOGGER.info(
            "✓ Azure CLI session found",
            subscription=account.get("name", "unknown"),
            backend=f"{self.storage_account}/{self.container}/{self.key}",
        )
