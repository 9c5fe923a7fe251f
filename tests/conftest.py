"""
Shared test fixtures: a minimal Terraform project, GitHub Actions output
files, and an in-memory issue tracker.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import pytest

from tfops.annotations import configure_logging
from tfops.config import RunContext
from tfops.issues import Issue
from tfops.runner import CommandResult


@pytest.fixture(autouse=True)
def _actions_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("GITHUB_TOKEN", "GH_TOKEN", "GITHUB_REPOSITORY", "GITHUB_RUN_ID", "TFOPS_LOG_FILE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GITHUB_OUTPUT", str(tmp_path / "github_output"))
    monkeypatch.setenv("GITHUB_STEP_SUMMARY", str(tmp_path / "step_summary.md"))
    monkeypatch.setenv("GITHUB_WORKSPACE", str(tmp_path))
    monkeypatch.setenv("RUNNER_TEMP", str(tmp_path / "runner_temp"))
    configure_logging()


@pytest.fixture
def tf_project(tmp_path: Path) -> Path:
    """Terraform working directory with one .tf file."""
    working_dir = tmp_path / "terraform"
    working_dir.mkdir()
    (working_dir / "main.tf").write_text('resource "azurerm_resource_group" "rg" {}\n')
    return working_dir


@pytest.fixture
def params_dir(tmp_path: Path) -> Path:
    params = tmp_path / "environments"
    params.mkdir()
    (params / "prod-variables.tfvars").write_text('location = "westeurope"\n')
    (params / "dev-variables.tfvars").write_text('location = "northeurope"\n')
    return params


@pytest.fixture
def ctx(tmp_path: Path) -> RunContext:
    return RunContext(
        run_id="12345",
        actor="octocat",
        ref="refs/heads/main",
        repository="acme/infra",
        workspace=tmp_path,
    )


def read_outputs(tmp_path: Path) -> dict[str, str]:
    path = tmp_path / "github_output"
    if not path.exists():
        return {}
    outputs: dict[str, str] = {}
    lines = iter(path.read_text().splitlines())
    for ln in lines:
        if "<<" in ln:
            name, delim = ln.split("<<", 1)
            body: list[str] = []
            for inner in lines:
                if inner == delim:
                    break
                body.append(inner)
            outputs[name] = "\n".join(body)
        else:
            name, value = ln.split("=", 1)
            outputs[name] = value
    return outputs


def ok(stdout: str = "", code: int = 0, stderr: str = "") -> CommandResult:
    return CommandResult(code=code, stdout=stdout, stderr=stderr)


@dataclass
class FakeIssueTracker:
    """In-memory ``IssueTracker``."""

    issues: dict[int, dict] = field(default_factory=dict)
    created: int = 0
    closed: list[int] = field(default_factory=list)

    def find_open(self, title: str, labels: tuple[str, ...]) -> Issue | None:
        for number, data in self.issues.items():
            if data["state"] == "open" and data["title"] == title and set(labels) <= set(data["labels"]):
                return Issue(number=number, title=title, url=f"https://github.com/acme/infra/issues/{number}")
        return None

    def list_open(self, labels: tuple[str, ...]) -> list[Issue]:
        return [
            Issue(number=number, title=data["title"], url=f"https://github.com/acme/infra/issues/{number}")
            for number, data in self.issues.items()
            if data["state"] == "open" and set(labels) <= set(data["labels"])
        ]

    def create(self, title: str, body: str, labels: tuple[str, ...]) -> Issue:
        self.created += 1
        number = len(self.issues) + 1
        self.issues[number] = {"title": title, "body": body, "labels": labels, "state": "open"}
        return Issue(number=number, title=title, url=f"https://github.com/acme/infra/issues/{number}")

    def close(self, issue: Issue, comment: str | None = None) -> None:
        self.issues[issue.number]["state"] = "closed"
        self.issues[issue.number]["closing_comment"] = comment
        self.closed.append(issue.number)

    def open_issues(self) -> list[dict]:
        return [data for data in self.issues.values() if data["state"] == "open"]


@pytest.fixture
def tracker() -> FakeIssueTracker:
    return FakeIssueTracker()
