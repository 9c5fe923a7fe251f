"""Run context read from the GitHub Actions environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

# Fixed environment for every Terraform invocation
TERRAFORM_ENV = {
    "TF_IN_AUTOMATION": "true",
    "TF_INPUT": "0",
    "ARM_USE_CLI": "true",
}

ARTIFACT_RETENTION_DAYS = 7


@dataclass(frozen=True)
class RunContext:
    run_id: str
    actor: str
    ref: str
    repository: str
    workspace: Path
    token: str | None = None
    server_url: str = "https://github.com"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> RunContext:
        env = os.environ if env is None else env
        return cls(
            run_id=env.get("GITHUB_RUN_ID", "local"),
            actor=env.get("GITHUB_ACTOR", "unknown"),
            ref=env.get("GITHUB_REF", ""),
            repository=env.get("GITHUB_REPOSITORY", ""),
            workspace=Path(env.get("GITHUB_WORKSPACE") or Path.cwd()),
            token=env.get("GITHUB_TOKEN") or env.get("GH_TOKEN") or None,
            server_url=env.get("GITHUB_SERVER_URL", "https://github.com"),
        )

    @property
    def run_url(self) -> str | None:
        if not self.repository or self.run_id == "local":
            return None
        return f"{self.server_url}/{self.repository}/actions/runs/{self.run_id}"
