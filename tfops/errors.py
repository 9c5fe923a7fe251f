"""Error taxonomy shared by every tfops command.

Domain code raises one of these; the CLI reports it once as an error
annotation and exits with the class's code.
"""

from __future__ import annotations

from enum import IntEnum


class ErrorCode(IntEnum):
    VALIDATION_FAILED = 10
    TERRAFORM_FAILED = 20
    EXECUTION_FAILED = 30
    AUTHENTICATION_FAILED = 40
    RESOURCE_NOT_FOUND = 60


class TfopsError(Exception):
    """Base class: a message for the annotation and a process exit code."""

    code: ErrorCode = ErrorCode.EXECUTION_FAILED

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint


class ValidationError(TfopsError):
    code = ErrorCode.VALIDATION_FAILED

    def __init__(self, input_name: str, message: str) -> None:
        super().__init__(message)
        self.input_name = input_name


class TerraformError(TfopsError):
    code = ErrorCode.TERRAFORM_FAILED

    def __init__(self, operation: str, exit_code: int, message: str | None = None) -> None:
        super().__init__(message or f"Terraform {operation} failed with errors")
        self.operation = operation
        self.exit_code = exit_code


class ExecutionError(TfopsError):
    code = ErrorCode.EXECUTION_FAILED


class AuthenticationError(TfopsError):
    code = ErrorCode.AUTHENTICATION_FAILED

    def __init__(self, service: str, method: str | None = None) -> None:
        hint = None
        if method:
            hint = (
                f"Attempted method: {method}. "
                "Verify credentials are configured correctly in the GitHub Actions environment"
            )
        super().__init__(f"Authentication failed for {service}", hint=hint)
        self.service = service


class ResourceNotFoundError(TfopsError):
    code = ErrorCode.RESOURCE_NOT_FOUND
