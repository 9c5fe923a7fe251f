"""
GitHub Actions workflow commands on top of structlog.

Log events render as annotation lines (``::error::``, ``::warning::``,
``::notice::``) that the Actions UI picks up. Step outputs and the step
summary are written to the files the runner hands us through the
environment.
"""

from __future__ import annotations

import logging
import os
import re
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import structlog
import typer

LOGGER = structlog.get_logger(__name__)

ANNOTATION = {
    "critical": "::error::",
    "exception": "::error::",
    "error": "::error::",
    "warning": "::warning::",
    "info": "::notice::",
}

SECRET_PATTERNS = [
    (re.compile(r"oauth2:[^@\s]*@"), "oauth2:***@"),
    (re.compile(r"Bearer [^\s]+"), "Bearer ***"),
]


def sanitize_output(text: str) -> str:
    """Mask token-shaped substrings before they reach the job log."""
    for pattern, repl in SECRET_PATTERNS:
        text = pattern.sub(repl, text)
    return text


def _escape(message: str) -> str:
    # Workflow commands are single-line
    return message.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def mask_secrets(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = sanitize_output(value)
    return event_dict


def render_annotation(_logger: Any, method_name: str, event_dict: dict[str, Any]) -> str:
    message = str(event_dict.pop("event", ""))
    if event_dict:
        message += " " + " ".join(f"{k}={v}" for k, v in event_dict.items())
    prefix = ANNOTATION.get(method_name)
    if prefix is None:
        return message
    return prefix + _escape(message)


def configure_logging(*, verbose: bool = False) -> None:
    """Route structlog through the annotation renderer, printing to stdout."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            mask_secrets,
            render_annotation,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG if verbose else logging.INFO),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


def add_mask(value: str) -> None:
    if value:
        typer.echo(f"::add-mask::{value}")


@contextmanager
def group(name: str, message: str | None = None) -> Iterator[None]:
    """Fold everything logged inside the block under a collapsible group."""
    typer.echo(f"::group::{name}")
    if message:
        LOGGER.info(message)
    try:
        yield
    finally:
        typer.echo("::endgroup::")


def set_output(name: str, value: object, *, output_file: Path | None = None) -> None:
    """Append a step output to $GITHUB_OUTPUT (heredoc form for multi-line values)."""
    text = str(value)
    target = output_file or _env_path("GITHUB_OUTPUT")
    if target is None:
        LOGGER.debug("GITHUB_OUTPUT not set, output not persisted", name=name, value=text)
        return
    with target.open("a", encoding="utf-8") as fh:
        if "\n" in text:
            delim = f"ghadelimiter_{uuid.uuid4().hex}"
            fh.write(f"{name}<<{delim}\n{text}\n{delim}\n")
        else:
            fh.write(f"{name}={text}\n")


def append_step_summary(markdown: str, *, summary_file: Path | None = None) -> None:
    target = summary_file or _env_path("GITHUB_STEP_SUMMARY")
    if target is None:
        LOGGER.debug("GITHUB_STEP_SUMMARY not set, summary not persisted")
        return
    with target.open("a", encoding="utf-8") as fh:
        fh.write(markdown.rstrip("\n") + "\n")


def _env_path(name: str) -> Path | None:
    value = os.environ.get(name)
    return Path(value) if value else None


def format_duration(seconds: float) -> str:
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


@contextmanager
def timed(operation: str) -> Iterator[None]:
    started = time.monotonic()
    try:
        yield
    finally:
        LOGGER.info(f"{operation} completed in {format_duration(time.monotonic() - started)}")


def warn_destructive(operation: str, target: str = "infrastructure") -> None:
    LOGGER.warning(f"DESTRUCTIVE OPERATION: About to {operation} {target}. This cannot be undone.")


def debug_dump(operation: str, file_path: Path | None = None) -> None:
    """Log where and as whom an operation ran, for troubleshooting failed jobs."""
    with group("Debug Information"):
        LOGGER.info(f"Operation: {operation}")
        LOGGER.info(f"Timestamp: {time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime())}")
        LOGGER.info(f"Working directory: {Path.cwd()}")
        LOGGER.info(f"User: {os.environ.get('USER') or os.environ.get('GITHUB_ACTOR', 'unknown')}")
        if file_path is not None and file_path.is_file():
            LOGGER.info(f"File: {file_path}")
            LOGGER.info(f"File size: {file_path.stat().st_size}")
