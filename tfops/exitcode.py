"""
Terraform's detailed exit code, as a value instead of a raw integer.

``plan -detailed-exitcode`` returns 0 when nothing changes, 2 when it
succeeded and found changes, 1 on error. Anything else is an unexpected
failure and is reported apart from 1.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import structlog
import typer

from tfops.annotations import sanitize_output
from tfops.errors import ExecutionError, TerraformError

LOGGER = structlog.get_logger(__name__)

LOG_TAIL_LINES = 20


class ChangeState(str, Enum):
    CLEAN = "NO_CHANGES"
    DIRTY = "HAS_CHANGES"
    ERROR = "HAS_ERROR"
    UNEXPECTED = "UNEXPECTED_EXIT"


@dataclass(frozen=True)
class PlanOutcome:
    state: ChangeState
    code: int

    @classmethod
    def from_exit_code(cls, code: int) -> PlanOutcome:
        if code == 0:
            return cls(ChangeState.CLEAN, code)
        if code == 2:
            return cls(ChangeState.DIRTY, code)
        if code == 1:
            return cls(ChangeState.ERROR, code)
        return cls(ChangeState.UNEXPECTED, code)

    @property
    def succeeded(self) -> bool:
        return self.state in (ChangeState.CLEAN, ChangeState.DIRTY)

    @property
    def has_changes(self) -> bool:
        return self.state is ChangeState.DIRTY

    def raise_for_error(self, operation: str) -> None:
        if self.state is ChangeState.ERROR:
            raise TerraformError(operation, self.code)
        if self.state is ChangeState.UNEXPECTED:
            raise ExecutionError(f"Terraform {operation} exited with unexpected code: {self.code}")


def _log_tail(log_file: Path, lines: int = LOG_TAIL_LINES) -> None:
    tail = log_file.read_text(encoding="utf-8", errors="replace").splitlines()[-lines:]
    LOGGER.error(f"Last {lines} lines of logs:")
    for ln in tail:
        typer.echo(f"  {sanitize_output(ln)}")


def interpret(operation: str, code: int, *, log_file: Path | None = None) -> PlanOutcome:
    """Map an exit code to a ``PlanOutcome`` and annotate it once."""
    outcome = PlanOutcome.from_exit_code(code)
    if outcome.state is ChangeState.CLEAN:
        LOGGER.info(f"Terraform {operation} succeeded")
    elif outcome.state is ChangeState.DIRTY:
        LOGGER.info(f"Terraform {operation} succeeded with changes detected")
    elif outcome.state is ChangeState.ERROR:
        if log_file is not None and log_file.is_file():
            _log_tail(log_file)
    else:
        LOGGER.warning(f"Terraform {operation} exited outside the 0/1/2 protocol", exitcode=code)
    return outcome
