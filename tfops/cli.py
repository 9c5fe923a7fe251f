"""
Terraform CI/CD pipeline steps as one CLI.

Each subcommand is a workflow step: it validates its own inputs, runs the
wrapped tool (terraform, az, gh), annotates the outcome and writes step
outputs. Job ordering, concurrency groups and the approval wait belong to
the workflow, not to this tool.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated

import structlog
import typer

from tfops import __version__
from tfops.annotations import (
    append_step_summary,
    configure_logging,
    debug_dump,
    group,
    set_output,
    timed,
    warn_destructive,
)
from tfops.artifacts import (
    ArtifactStore,
    DirectoryArtifactStore,
    GhRunArtifactStore,
    download_plan,
    publish_plan,
)
from tfops.backend import AzureBlobBackend
from tfops.config import ARTIFACT_RETENTION_DAYS, RunContext
from tfops.errors import ResourceNotFoundError, TerraformError, TfopsError, ValidationError
from tfops.exitcode import PlanOutcome, interpret
from tfops.issues import DriftReporter, GhIssueTracker, post_pr_comment, request_approval
from tfops.runner import Terraform, configure_git_auth, plan_file_name, unformatted_files
from tfops.summary import read_plan_log, render_summary
from tfops.validate import (
    validate_directory,
    validate_environment_name,
    validate_exit_code,
    validate_file,
    validate_init_inputs,
    validate_plan_inputs,
    validate_summary,
    validate_terraform_dir,
)

LOGGER = structlog.get_logger(__name__)

app = typer.Typer(
    name="tfops",
    help="Terraform pipeline ops: init, validate, fmt, plan, apply, destroy, plan artifacts, approval and drift",
    add_completion=False,
    no_args_is_help=True,
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", envvar="TFOPS_VERBOSE", help="Emit debug lines."),
) -> None:
    configure_logging(verbose=verbose)


@contextmanager
def _reported(operation: str, *, dump: Path | None = None) -> Iterator[None]:
    """Report a ``TfopsError`` once as an annotation and exit with its code."""
    try:
        yield
    except TfopsError as exc:
        LOGGER.error(exc.message)
        if exc.hint:
            LOGGER.error(exc.hint)
        if not isinstance(exc, ValidationError):
            debug_dump(operation, dump)
        raise typer.Exit(code=int(exc.code)) from exc


def _resolve(path: Path, ctx: RunContext) -> Path:
    """Relative path inputs are taken from the workspace root, as the workflow sees them."""
    return path if path.is_absolute() else ctx.workspace / path


def _resolve_optional(path: Path | None, ctx: RunContext) -> Path | None:
    return _resolve(path, ctx) if path is not None else None


def _default_staging_dir() -> Path:
    return Path(os.environ.get("RUNNER_TEMP") or tempfile.gettempdir()) / "tfops-artifacts"


def _artifact_store(staging_dir: Path | None, from_run: bool, ctx: RunContext, run_id: str) -> ArtifactStore:
    root = staging_dir or _default_staging_dir()
    if from_run:
        return GhRunArtifactStore(root, run_id=run_id, repository=ctx.repository or None)
    return DirectoryArtifactStore(root)


WorkingDir = Annotated[
    Path,
    typer.Option(..., envvar="TFOPS_WORKING_DIR", help="Directory holding the Terraform configuration."),
]
Environment = Annotated[
    str,
    typer.Option(..., envvar="TFOPS_ENVIRONMENT", help="Target environment, e.g. dev or prod."),
]
ParamsDir = Annotated[
    Path,
    typer.Option(
        ...,
        envvar="TFOPS_PARAMS_DIR",
        help="Directory holding {environment}-variables.tfvars, relative to the workspace.",
    ),
]
RunId = Annotated[
    str,
    typer.Option(..., envvar="GITHUB_RUN_ID", help="Workflow run id used in the artifact name."),
]


@app.command("init")
def init(
    working_dir: WorkingDir,
    backend_rg: str = typer.Option("", envvar="TFOPS_BACKEND_RG", help="State storage resource group."),
    backend_sa: str = typer.Option("", envvar="TFOPS_BACKEND_SA", help="State storage account name."),
    backend_sa_container: str = typer.Option("", envvar="TFOPS_BACKEND_SA_CONTAINER", help="State blob container."),
    backend_sa_key: str = typer.Option("", envvar="TFOPS_BACKEND_SA_KEY", help="State blob name."),
    *,
    upgrade: bool = typer.Option(False, help="Upgrade providers and modules."),
    check_auth: bool = typer.Option(True, help="Check the Azure CLI session before init."),
) -> None:
    """Initialise the working directory against the Azure Blob state backend."""
    ctx = RunContext.from_env()
    working_dir = _resolve(working_dir, ctx)
    with _reported("init"):
        validate_init_inputs(backend_rg, backend_sa, backend_sa_container, backend_sa_key, working_dir)
        backend = AzureBlobBackend(backend_rg, backend_sa, backend_sa_container, backend_sa_key)
        if check_auth:
            backend.check_access()
        configure_git_auth(ctx.token)
        tf = Terraform(working_dir)
        tf.version()
        with group("terraform init"), timed("Terraform init"):
            code = tf.init(backend.init_args(), upgrade=upgrade)
        interpret("init", code).raise_for_error("init")


@app.command("validate")
def validate(working_dir: WorkingDir) -> None:
    """Run terraform validate."""
    working_dir = _resolve(working_dir, RunContext.from_env())
    with _reported("validate"):
        validate_directory("working_dir", working_dir)
        validate_terraform_dir(working_dir)
        with group("terraform validate"):
            code = Terraform(working_dir).validate()
        interpret("validate", code).raise_for_error("validate")


@app.command("fmt")
def fmt(
    working_dir: WorkingDir,
    *,
    check: bool = typer.Option(True, "--check/--write", help="Fail on unformatted files instead of rewriting them."),
) -> None:
    """Check (or rewrite) Terraform formatting."""
    working_dir = _resolve(working_dir, RunContext.from_env())
    with _reported("fmt"):
        validate_directory("working_dir", working_dir)
        with group("terraform fmt"):
            result = Terraform(working_dir).fmt(check=check)
        if check and result.code == 3:
            files = ", ".join(unformatted_files(result.stdout)) or str(working_dir)
            raise ValidationError(
                "working_dir",
                f"Terraform files are not formatted: {files}. Run 'terraform fmt -recursive'",
            )
        if result.code != 0:
            raise TerraformError("fmt", result.code)
        set_output("fmt-outcome", "success")


@app.command("plan")
def plan(
    environment: Environment,
    working_dir: WorkingDir,
    params_dir: ParamsDir,
    log_file: Path | None = typer.Option(None, envvar="TFOPS_LOG_FILE", help="Also write plan output here."),
) -> None:
    """Plan with -detailed-exitcode and publish the exit code as a step output.

    Exit codes 0 (no changes) and 2 (changes) both end the step successfully.
    """
    ctx = RunContext.from_env()
    working_dir = _resolve(working_dir, ctx)
    log_file = _resolve_optional(log_file, ctx)
    with _reported("plan"):
        var_file = validate_plan_inputs(environment, working_dir, _resolve(params_dir, ctx))
        configure_git_auth(ctx.token)
        plan_file = plan_file_name(environment)
        with group(f"terraform plan ({environment})"), timed("Terraform plan"):
            code = Terraform(working_dir).plan(var_file.resolve(), plan_file, log_file=log_file)
        outcome = interpret("plan", code, log_file=log_file)
        set_output("exitcode", code)
        set_output("has-changes", str(outcome.has_changes).lower())
        set_output("plan-file", str(working_dir / plan_file))
        outcome.raise_for_error("plan")


@app.command("apply")
def apply(
    environment: Environment,
    working_dir: WorkingDir,
    plan_file: Path | None = typer.Option(None, help="Plan to apply; defaults to {environment}.plan.tfplan."),
    run_id: str | None = typer.Option(
        None, help="Fetch plan artifact tfplan-{environment}-{run_id} before applying."
    ),
    artifacts_dir: Path | None = typer.Option(None, envvar="TFOPS_ARTIFACTS_DIR", help="Local artifact root."),
    *,
    from_run: bool = typer.Option(False, help="Download the artifact from the workflow run with gh."),
) -> None:
    """Apply a saved plan. Never plans implicitly."""
    ctx = RunContext.from_env()
    working_dir = _resolve(working_dir, ctx)
    artifacts_dir = _resolve_optional(artifacts_dir, ctx)
    target = _resolve_optional(plan_file, ctx) or working_dir / plan_file_name(environment)
    with _reported("apply", dump=target):
        validate_environment_name(environment)
        validate_directory("working_dir", working_dir)
        if run_id and plan_file is not None:
            # A downloaded artifact always lands as {environment}.plan.tfplan
            raise ValidationError("plan_file", "Inputs 'plan_file' and 'run_id' cannot be used together")
        if run_id:
            download_plan(_artifact_store(artifacts_dir, from_run, ctx, run_id), environment, run_id, working_dir)
        if not target.is_file():
            raise ResourceNotFoundError(
                f"Plan file '{target}' does not exist. Download the plan artifact for '{environment}' first"
            )
        configure_git_auth(ctx.token)
        with group(f"terraform apply ({environment})"), timed("Terraform apply"):
            code = Terraform(working_dir).apply(str(target.resolve()))
        interpret("apply", code).raise_for_error("apply")


@app.command("destroy")
def destroy(
    environment: Environment,
    working_dir: WorkingDir,
    params_dir: ParamsDir,
    confirm: str = typer.Option("", help="Must repeat the environment name."),
) -> None:
    """Destroy every resource of an environment."""
    ctx = RunContext.from_env()
    working_dir = _resolve(working_dir, ctx)
    with _reported("destroy"):
        var_file = validate_plan_inputs(environment, working_dir, _resolve(params_dir, ctx))
        warn_destructive("destroy", f"environment '{environment}'")
        if confirm != environment:
            raise ValidationError("confirm", f"Input 'confirm' must equal the environment name '{environment}'")
        configure_git_auth(ctx.token)
        with group(f"terraform destroy ({environment})"), timed("Terraform destroy"):
            code = Terraform(working_dir).destroy(var_file.resolve())
        interpret("destroy", code).raise_for_error("destroy")


@app.command("publish")
def publish(
    environment: Environment,
    run_id: RunId,
    working_dir: WorkingDir,
    staging_dir: Path | None = typer.Option(None, envvar="TFOPS_ARTIFACTS_DIR", help="Artifact staging root."),
) -> None:
    """Stage the plan file as artifact tfplan-{environment}-{run_id}."""
    ctx = RunContext.from_env()
    working_dir = _resolve(working_dir, ctx)
    staging_dir = _resolve_optional(staging_dir, ctx)
    with _reported("publish"):
        validate_directory("working_dir", working_dir)
        name, location = publish_plan(_artifact_store(staging_dir, False, ctx, run_id), environment, run_id, working_dir)
        set_output("artifact-name", name)
        set_output("artifact-path", str(location))
        set_output("retention-days", ARTIFACT_RETENTION_DAYS)


@app.command("download")
def download(
    environment: Environment,
    run_id: RunId,
    working_dir: WorkingDir,
    source_dir: Path | None = typer.Option(None, envvar="TFOPS_ARTIFACTS_DIR", help="Local artifact root."),
    *,
    from_run: bool = typer.Option(False, help="Download from the workflow run with gh."),
) -> None:
    """Restore {environment}.plan.tfplan from artifact tfplan-{environment}-{run_id}."""
    ctx = RunContext.from_env()
    working_dir = _resolve(working_dir, ctx)
    source_dir = _resolve_optional(source_dir, ctx)
    with _reported("download"):
        validate_directory("working_dir", working_dir)
        path = download_plan(_artifact_store(source_dir, from_run, ctx, run_id), environment, run_id, working_dir)
        set_output("plan-file", str(path))


@app.command("request-approval")
def approval(
    environment: Environment,
    exitcode: str = typer.Option(..., help="Exit code reported by the plan step."),
    summary_file: Path | None = typer.Option(None, help="Markdown summary to embed in the issue."),
) -> None:
    """Open an approval issue when the plan reported pending changes."""
    ctx = RunContext.from_env()
    summary_file = _resolve_optional(summary_file, ctx)
    with _reported("request-approval"):
        outcome = PlanOutcome.from_exit_code(validate_exit_code(exitcode))
        summary = validate_file("summary_file", summary_file).read_text() if summary_file else None
        issue = request_approval(GhIssueTracker(ctx.repository or None), ctx, environment, outcome, summary=summary)
        set_output("approval-required", str(issue is not None).lower())
        if issue is not None:
            set_output("issue-number", issue.number)
            set_output("issue-url", issue.url)


@app.command("drift")
def drift(
    environment: Environment,
    working_dir: WorkingDir,
    params_dir: ParamsDir,
    log_file: Path | None = typer.Option(None, envvar="TFOPS_LOG_FILE", help="Also write plan output here."),
) -> None:
    """Re-plan and open or close the environment's drift issue."""
    ctx = RunContext.from_env()
    working_dir = _resolve(working_dir, ctx)
    log_file = _resolve_optional(log_file, ctx)
    with _reported("drift"):
        var_file = validate_plan_inputs(environment, working_dir, _resolve(params_dir, ctx))
        configure_git_auth(ctx.token)
        log = log_file or working_dir / f"{environment}.drift.log"
        with group(f"drift check ({environment})"), timed("Drift check"):
            code = Terraform(working_dir).plan(var_file.resolve(), plan_file_name(environment), log_file=log)
        outcome = interpret("plan", code, log_file=log)
        set_output("exitcode", code)
        summary = render_summary(environment, outcome, plan_text=read_plan_log(log)) if outcome.succeeded else None
        action = DriftReporter(GhIssueTracker(ctx.repository or None), ctx).reconcile(
            environment, outcome, summary=summary
        )
        set_output("drift-action", action.value)


@app.command("summary")
def summary(
    environment: Environment,
    exitcode: str = typer.Option(..., help="Exit code reported by the plan step."),
    log_file: Path | None = typer.Option(None, envvar="TFOPS_LOG_FILE", help="Plan log to summarise."),
    working_dir: Path | None = typer.Option(None, help="Read the plan with terraform show when no log is given."),
    output: Path | None = typer.Option(None, help="Also write the summary to this file."),
) -> None:
    """Render the plan summary into the step summary and the `summary` output."""
    ctx = RunContext.from_env()
    log_file = _resolve_optional(log_file, ctx)
    working_dir = _resolve_optional(working_dir, ctx)
    output = _resolve_optional(output, ctx)
    with _reported("summary"):
        validate_environment_name(environment)
        outcome = PlanOutcome.from_exit_code(validate_exit_code(exitcode))
        plan_text = None
        if log_file is not None:
            plan_text = read_plan_log(log_file)
        elif working_dir is not None and outcome.has_changes:
            plan_text = Terraform(working_dir).show(plan_file_name(environment)).stdout
        rendered = validate_summary(render_summary(environment, outcome, plan_text=plan_text))
        set_output("summary", rendered)
        append_step_summary(rendered)
        if output is not None:
            output.write_text(rendered)
            typer.echo(f"Wrote plan summary to {output}")


@app.command("pr-comment")
def pr_comment(
    pr: int = typer.Option(..., envvar="TFOPS_PR_NUMBER", help="Pull request number."),
    body_file: Path = typer.Option(..., help="Markdown file to post."),
) -> None:
    """Post a Markdown file as a pull request comment."""
    ctx = RunContext.from_env()
    body_file = _resolve(body_file, ctx)
    with _reported("pr-comment"):
        if pr <= 0:
            raise ValidationError("pr", f"Invalid pull request number '{pr}'")
        validate_file("body_file", body_file)
        post_pr_comment(pr, body_file, repository=ctx.repository or None)


@app.command("version")
def version() -> None:
    typer.echo(__version__)


if __name__ == "__main__":
    app()
