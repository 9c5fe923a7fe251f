"""Azure Blob state backend configuration and CLI session check."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from tests.conftest import ok
from tfops.backend import AzureBlobBackend
from tfops.errors import AuthenticationError, ErrorCode, ExecutionError, ValidationError


def _backend() -> AzureBlobBackend:
    return AzureBlobBackend("rg-tfstate", "sttfstate001", "tfstate", "prod.tfstate")


def test_init_args():
    assert _backend().init_args() == [
        "-backend-config=resource_group_name=rg-tfstate",
        "-backend-config=storage_account_name=sttfstate001",
        "-backend-config=container_name=tfstate",
        "-backend-config=key=prod.tfstate",
        "-backend-config=use_azuread_auth=true",
    ]


def test_rejects_invalid_account():
    with pytest.raises(ValidationError):
        AzureBlobBackend("rg", "Not_Valid", "tfstate", "prod.tfstate")


def test_check_access(capsys):
    account = {"name": "Production", "id": "0000"}
    with patch("tfops.backend.run_live", return_value=ok(json.dumps(account))) as mock_run:
        _backend().check_access()
    assert mock_run.call_args[0][0] == ["az", "account", "show", "--output", "json"]
    assert "subscription=Production" in capsys.readouterr().out


def test_check_access_not_logged_in():
    with patch("tfops.backend.run_live", return_value=ok(code=1, stderr="Please run 'az login'")):
        with pytest.raises(AuthenticationError) as exc_info:
            _backend().check_access()
    assert exc_info.value.code == ErrorCode.AUTHENTICATION_FAILED
    assert exc_info.value.message == "Authentication failed for Azure"
    assert "arm_use_cli" in exc_info.value.hint


def test_check_access_without_az():
    with patch("tfops.backend.run_live", side_effect=ExecutionError("Required command 'az' not found in PATH")):
        with pytest.raises(AuthenticationError):
            _backend().check_access()
