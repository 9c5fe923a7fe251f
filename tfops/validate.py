"""
Input validation run before any external tool is invoked.

Each check raises ``ValidationError`` naming the offending input and logs a
notice when it passes. Composite checks (``validate_plan_inputs`` and
friends) are what the commands call.
"""

from __future__ import annotations

import os
import re
import shutil
from pathlib import Path

import structlog

from tfops.annotations import group
from tfops.errors import ExecutionError, ValidationError

LOGGER = structlog.get_logger(__name__)

ENVIRONMENT_RE = re.compile(r"[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9]|[a-zA-Z0-9]")
STORAGE_ACCOUNT_RE = re.compile(r"[a-z0-9]{3,24}")
RESOURCE_GROUP_RE = re.compile(r"[a-zA-Z0-9._-]{1,90}")
EXIT_CODE_RE = re.compile(r"[0-9]+")


def var_file_name(environment: str) -> str:
    return f"{environment}-variables.tfvars"


def validate_required(input_name: str, value: str | None) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(input_name, f"Required input '{input_name}' is empty or not provided")
    return str(value)


def validate_directory(input_name: str, directory: Path) -> Path:
    if not directory.is_dir():
        raise ValidationError(input_name, f"Directory '{directory}' specified in '{input_name}' does not exist")
    if not os.access(directory, os.R_OK):
        raise ValidationError(input_name, f"Directory '{directory}' is not readable")
    LOGGER.info(f"✓ Directory validation passed: {directory}")
    return directory


def validate_file(input_name: str, file_path: Path) -> Path:
    if not file_path.is_file():
        raise ValidationError(input_name, f"File '{file_path}' specified in '{input_name}' does not exist")
    if not os.access(file_path, os.R_OK):
        raise ValidationError(input_name, f"File '{file_path}' is not readable")
    LOGGER.info(f"✓ File validation passed: {file_path}")
    return file_path


def validate_files_in_dir(input_name: str, directory: Path, pattern: str) -> list[Path]:
    if not directory.is_dir():
        raise ValidationError(input_name, f"Directory '{directory}' does not exist")
    matches = sorted(p for p in directory.glob(pattern) if p.is_file())
    if not matches:
        LOGGER.info("Expected file format: {environment}-variables.tfvars")
        raise ValidationError(input_name, f"No files matching pattern '{pattern}' found in '{directory}'")
    LOGGER.info(f"✓ Files validation passed: Found {len(matches)} file(s) matching '{pattern}'")
    return matches


def validate_environment_name(environment: str) -> str:
    if not ENVIRONMENT_RE.fullmatch(environment or ""):
        raise ValidationError(
            "environment",
            f"Invalid environment name '{environment}'. Use alphanumeric characters and hyphens only",
        )
    LOGGER.info(f"✓ Environment name validation passed: {environment}")
    return environment


def validate_terraform_dir(working_dir: Path) -> list[Path]:
    if not working_dir.is_dir():
        raise ValidationError("working_dir", f"Working directory '{working_dir}' does not exist")
    tf_files = sorted(working_dir.glob("*.tf"))
    if not tf_files:
        raise ValidationError("working_dir", f"No Terraform files (*.tf) found in '{working_dir}'")
    LOGGER.info(f"✓ Terraform directory validation passed: Found {len(tf_files)} Terraform file(s)")
    return tf_files


def validate_azure_backend(
    backend_rg: str | None,
    backend_sa: str | None,
    backend_sa_container: str | None,
    backend_sa_key: str | None,
) -> None:
    validate_required("backend_rg", backend_rg)
    validate_required("backend_sa", backend_sa)
    validate_required("backend_sa_container", backend_sa_container)
    validate_required("backend_sa_key", backend_sa_key)

    if not STORAGE_ACCOUNT_RE.fullmatch(backend_sa or ""):
        raise ValidationError(
            "backend_sa",
            f"Invalid storage account name '{backend_sa}'. Must be 3-24 lowercase alphanumeric characters",
        )
    if not RESOURCE_GROUP_RE.fullmatch(backend_rg or ""):
        raise ValidationError("backend_rg", f"Invalid resource group name '{backend_rg}'")
    LOGGER.info("✓ Azure backend parameters validation passed")


def validate_exit_code(value: str | int) -> int:
    text = str(value).strip()
    if not EXIT_CODE_RE.fullmatch(text):
        raise ValidationError("exitcode", f"Exit code must be numeric, got: '{value}'")
    code = int(text)
    if code > 255:
        raise ValidationError("exitcode", f"Exit code must be between 0 and 255, got: {code}")
    LOGGER.info(f"✓ Exit code validation passed: {code}")
    return code


def validate_summary(summary: str) -> str:
    if not summary:
        raise ValidationError("summary", "Output summary is empty")
    if len(summary) < 10:
        LOGGER.warning(f"Output summary is very short ({len(summary)} characters)")
    LOGGER.info("✓ Summary validation passed")
    return summary


def require_command(command: str) -> str:
    path = shutil.which(command)
    if path is None:
        raise ExecutionError(f"Required command '{command}' not found in PATH")
    LOGGER.info(f"✓ Command found: {command}")
    return path


def require_env_var(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise ValidationError(name, f"Required environment variable '{name}' is not set")
    LOGGER.info(f"✓ Environment variable set: {name}")
    return value


def validate_plan_inputs(environment: str, working_dir: Path, params_dir: Path) -> Path:
    """Validate plan/drift/destroy inputs; return the environment's var file."""
    with group("Validating plan action inputs"):
        validate_required("environment", environment)
        validate_required("working_dir", str(working_dir))
        validate_required("params_dir", str(params_dir))
        validate_environment_name(environment)
        validate_directory("working_dir", working_dir)
        validate_terraform_dir(working_dir)
        (var_file,) = validate_files_in_dir("params_dir", params_dir, var_file_name(environment))
    LOGGER.info("All plan action inputs validated successfully ✓")
    return var_file


def validate_init_inputs(
    backend_rg: str | None,
    backend_sa: str | None,
    backend_sa_container: str | None,
    backend_sa_key: str | None,
    working_dir: Path,
) -> None:
    with group("Validating init action inputs"):
        validate_azure_backend(backend_rg, backend_sa, backend_sa_container, backend_sa_key)
        validate_required("working_dir", str(working_dir))
        validate_directory("working_dir", working_dir)
    LOGGER.info("All init action inputs validated successfully ✓")
