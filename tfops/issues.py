"""
GitHub issues as the pipeline's external signals.

The approval gate opens an issue when a plan has pending changes and leaves
the decision to a human reviewing the pending environment deployment. Clean
plans close approval issues left open by earlier runs.
The drift reporter keeps at most one open drift issue per environment,
opening it on changes and closing it once a plan comes back clean.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

import jinja2
import structlog

from tfops.config import RunContext
from tfops.errors import ExecutionError
from tfops.exitcode import ChangeState, PlanOutcome
from tfops.runner import run_live
from tfops.validate import validate_environment_name

LOGGER = structlog.get_logger(__name__)

APPROVAL_LABELS = ("terraform", "approval-required")
DRIFT_LABELS = ("terraform", "drift")

APPROVAL_BODY_TMPL = """
## Terraform deployment awaiting approval

| | |
|---|---|
| Environment | `{{ environment }}` |
| Deployment | `{{ ctx.run_id }}` |
| Requested by | @{{ ctx.actor }} |
| Ref | `{{ ctx.ref }}` |
{% if ctx.run_url -%}
| Run | {{ ctx.run_url }} |
{% endif %}

The plan for `{{ environment }}` contains changes. Review the plan output, then
approve or reject the pending `{{ environment }}` deployment on the workflow run
page. The apply job waits on that environment review.
{% if summary %}

<details>
<summary>Plan summary</summary>

{{ summary }}

</details>
{% endif %}
"""

DRIFT_BODY_TMPL = """
## Infrastructure drift detected

Scheduled plan for `{{ environment }}` found differences between the deployed
infrastructure and the Terraform configuration.

| | |
|---|---|
| Environment | `{{ environment }}` |
| Deployment | `{{ ctx.run_id }}` |
| Triggered by | @{{ ctx.actor }} |
| Ref | `{{ ctx.ref }}` |
{% if ctx.run_url -%}
| Run | {{ ctx.run_url }} |
{% endif %}

This issue closes automatically when a later drift check reports no changes.
{% if summary %}

<details>
<summary>Plan summary</summary>

{{ summary }}

</details>
{% endif %}
"""


@dataclass(frozen=True)
class Issue:
    number: int
    title: str
    url: str = ""


class IssueTracker(Protocol):
    def find_open(self, title: str, labels: tuple[str, ...]) -> Issue | None: ...

    def list_open(self, labels: tuple[str, ...]) -> list[Issue]: ...

    def create(self, title: str, body: str, labels: tuple[str, ...]) -> Issue: ...

    def close(self, issue: Issue, comment: str | None = None) -> None: ...


class GhIssueTracker:
    """``IssueTracker`` over the GitHub CLI; auth comes from GH_TOKEN/GITHUB_TOKEN."""

    def __init__(self, repository: str | None = None) -> None:
        self.repository = repository

    def _gh(self, *args: str) -> str:
        cmd = ["gh", *args]
        if self.repository:
            cmd += ["--repo", self.repository]
        result = run_live(cmd, quiet=True)
        if result.code != 0:
            raise ExecutionError(f"gh {args[0]} {args[1]} failed: {result.stderr.strip()}")
        return result.stdout

    def find_open(self, title: str, labels: tuple[str, ...]) -> Issue | None:
        args = ["issue", "list", "--state", "open", "--search", f'"{title}" in:title', "--json", "number,title,url"]
        for label in labels:
            args += ["--label", label]
        for item in json.loads(self._gh(*args) or "[]"):
            if item.get("title") == title:
                return Issue(number=int(item["number"]), title=item["title"], url=item.get("url", ""))
        return None

    def list_open(self, labels: tuple[str, ...]) -> list[Issue]:
        args = ["issue", "list", "--state", "open", "--limit", "100", "--json", "number,title,url"]
        for label in labels:
            args += ["--label", label]
        return [
            Issue(number=int(item["number"]), title=item["title"], url=item.get("url", ""))
            for item in json.loads(self._gh(*args) or "[]")
        ]

    def create(self, title: str, body: str, labels: tuple[str, ...]) -> Issue:
        args = ["issue", "create", "--title", title, "--body", body]
        for label in labels:
            args += ["--label", label]
        url = self._gh(*args).strip().splitlines()[-1]
        return Issue(number=int(url.rstrip("/").rsplit("/", 1)[-1]), title=title, url=url)

    def close(self, issue: Issue, comment: str | None = None) -> None:
        args = ["issue", "close", str(issue.number)]
        if comment:
            args += ["--comment", comment]
        self._gh(*args)


def _render(template: str, **context: object) -> str:
    return jinja2.Template(template).render(**context).strip() + "\n"


def _approval_prefix(environment: str) -> str:
    return f"Terraform approval required: {environment} ("


def approval_title(environment: str, run_id: str) -> str:
    return f"{_approval_prefix(environment)}deployment {run_id})"


def drift_title(environment: str) -> str:
    return f"Terraform drift detected: {environment}"


def request_approval(
    tracker: IssueTracker,
    ctx: RunContext,
    environment: str,
    outcome: PlanOutcome,
    *,
    summary: str | None = None,
) -> Issue | None:
    """Open the approval issue for a plan with pending changes.

    Clean plans need no approval: they get ``None`` and close approval issues
    left open by earlier runs. Failed plans raise so nothing downstream can
    proceed to apply.
    """
    validate_environment_name(environment)
    outcome.raise_for_error("plan")
    if not outcome.has_changes:
        LOGGER.info(f"No changes for {environment}, approval not required")
        close_stale_approvals(tracker, ctx, environment)
        return None

    title = approval_title(environment, ctx.run_id)
    existing = tracker.find_open(title, APPROVAL_LABELS)
    if existing is not None:
        LOGGER.info(f"Approval already requested in issue #{existing.number}", url=existing.url)
        return existing

    body = _render(APPROVAL_BODY_TMPL, environment=environment, ctx=ctx, summary=summary)
    issue = tracker.create(title, body, APPROVAL_LABELS)
    LOGGER.info(f"Approval requested in issue #{issue.number}", url=issue.url)
    return issue


def close_stale_approvals(tracker: IssueTracker, ctx: RunContext, environment: str) -> list[Issue]:
    """Close open approval issues for ``environment`` once a plan reports no changes."""
    prefix = _approval_prefix(environment)
    stale = [issue for issue in tracker.list_open(APPROVAL_LABELS) if issue.title.startswith(prefix)]
    for issue in stale:
        tracker.close(
            issue,
            comment=f"Plan in deployment {ctx.run_id} reports no changes for `{environment}`. Approval is no longer needed.",
        )
        LOGGER.info(f"Closed stale approval issue #{issue.number}", url=issue.url)
    return stale


class DriftAction(str, Enum):
    OPENED = "opened"
    KEPT_OPEN = "kept-open"
    CLOSED = "closed"
    NONE = "none"


class DriftReporter:
    def __init__(self, tracker: IssueTracker, ctx: RunContext) -> None:
        self.tracker = tracker
        self.ctx = ctx

    def reconcile(self, environment: str, outcome: PlanOutcome, *, summary: str | None = None) -> DriftAction:
        validate_environment_name(environment)
        # Failed plans say nothing about drift; leave the issue state alone.
        outcome.raise_for_error("plan")

        title = drift_title(environment)
        existing = self.tracker.find_open(title, DRIFT_LABELS)

        if outcome.state is ChangeState.DIRTY:
            if existing is not None:
                LOGGER.warning(f"Drift persists for {environment}, issue #{existing.number} still open")
                return DriftAction.KEPT_OPEN
            body = _render(DRIFT_BODY_TMPL, environment=environment, ctx=self.ctx, summary=summary)
            issue = self.tracker.create(title, body, DRIFT_LABELS)
            LOGGER.warning(f"Drift detected for {environment}, opened issue #{issue.number}", url=issue.url)
            return DriftAction.OPENED

        if existing is not None:
            self.tracker.close(
                existing,
                comment=f"Drift check in deployment {self.ctx.run_id} reports no changes for `{environment}`.",
            )
            LOGGER.info(f"No drift for {environment}, closed issue #{existing.number}")
            return DriftAction.CLOSED

        LOGGER.info(f"No drift for {environment}")
        return DriftAction.NONE


def post_pr_comment(pr_number: int, body_file: Path, *, repository: str | None = None) -> None:
    cmd = ["gh", "pr", "comment", str(pr_number), "--body-file", str(body_file)]
    if repository:
        cmd += ["--repo", repository]
    result = run_live(cmd, quiet=True)
    if result.code != 0:
        raise ExecutionError(f"Failed to comment on pull request #{pr_number}: {result.stderr.strip()}")
    LOGGER.info(f"Commented on pull request #{pr_number}")
