"""Run context from the Actions environment."""

from __future__ import annotations

from pathlib import Path

from tfops.config import TERRAFORM_ENV, RunContext


def test_from_env():
    ctx = RunContext.from_env(
        {
            "GITHUB_RUN_ID": "12345",
            "GITHUB_ACTOR": "octocat",
            "GITHUB_REF": "refs/heads/main",
            "GITHUB_REPOSITORY": "acme/infra",
            "GITHUB_WORKSPACE": "/work",
            "GH_TOKEN": "ghs_x",
        }
    )
    assert ctx.run_id == "12345"
    assert ctx.workspace == Path("/work")
    assert ctx.token == "ghs_x"
    assert ctx.run_url == "https://github.com/acme/infra/actions/runs/12345"


def test_local_defaults():
    ctx = RunContext.from_env({})
    assert ctx.run_id == "local"
    assert ctx.token is None
    assert ctx.run_url is None


def test_terraform_env():
    assert TERRAFORM_ENV == {"TF_IN_AUTOMATION": "true", "TF_INPUT": "0", "ARM_USE_CLI": "true"}
