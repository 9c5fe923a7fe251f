"""
Plan artifacts between CI jobs.

Every job starts from a clean runner, so the binary plan produced by the plan
job travels to the apply job as a named artifact. The name is
``tfplan-{environment}-{run_id}`` so matrix jobs for different environments
in one run never collide.
"""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path
from typing import Protocol

import structlog

from tfops.errors import ExecutionError, ResourceNotFoundError
from tfops.runner import plan_file_name, run_live
from tfops.validate import validate_environment_name, validate_required

LOGGER = structlog.get_logger(__name__)


def artifact_name(environment: str, run_id: str) -> str:
    return f"tfplan-{environment}-{run_id}"


class ArtifactStore(Protocol):
    def publish(self, name: str, file: Path) -> Path: ...

    def download(self, name: str, destination: Path) -> Path: ...


class DirectoryArtifactStore:
    """Artifacts as ``<root>/<name>/<file>``.

    In a workflow the root is the staging directory handed to
    ``actions/upload-artifact``; retention is configured on that step.
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def publish(self, name: str, file: Path) -> Path:
        target_dir = self.root / name
        if target_dir.exists():
            shutil.rmtree(target_dir)
        target_dir.mkdir(parents=True)
        target = target_dir / file.name
        shutil.copy2(file, target)
        return target_dir

    def download(self, name: str, destination: Path) -> Path:
        return _take_single_file(self.root / name, name, destination)


class GhRunArtifactStore(DirectoryArtifactStore):
    """Stages uploads locally; downloads from a workflow run through ``gh run download``."""

    def __init__(self, root: Path, *, run_id: str, repository: str | None = None) -> None:
        super().__init__(root)
        self.run_id = run_id
        self.repository = repository

    def download(self, name: str, destination: Path) -> Path:
        with tempfile.TemporaryDirectory(prefix="tfops-") as tmp:
            cmd = ["gh", "run", "download", self.run_id, "--name", name, "--dir", tmp]
            if self.repository:
                cmd += ["--repo", self.repository]
            result = run_live(cmd, quiet=True)
            if result.code != 0:
                LOGGER.debug("gh run download failed", stderr=result.stderr.strip())
                raise ResourceNotFoundError(
                    f"Artifact '{name}' not found in run {self.run_id}. "
                    "The plan and publish steps must run first in the same pipeline"
                )
            return _take_single_file(Path(tmp), name, destination)


def _take_single_file(source_dir: Path, name: str, destination: Path) -> Path:
    files = sorted(p for p in source_dir.glob("*") if p.is_file()) if source_dir.is_dir() else []
    if not files:
        raise ResourceNotFoundError(
            f"Artifact '{name}' not found. The plan and publish steps must run first in the same pipeline"
        )
    if len(files) > 1:
        raise ExecutionError(f"Artifact '{name}' holds {len(files)} files, expected a single plan file")
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(files[0], destination)
    return destination


def publish_plan(store: ArtifactStore, environment: str, run_id: str, working_dir: Path) -> tuple[str, Path]:
    """Hand ``{environment}.plan.tfplan`` to the store; return the artifact name and location."""
    validate_environment_name(environment)
    validate_required("run_id", run_id)
    plan_file = working_dir / plan_file_name(environment)
    if not plan_file.is_file():
        raise ResourceNotFoundError(
            f"Plan file '{plan_file}' does not exist. Run plan for '{environment}' before publishing"
        )
    name = artifact_name(environment, run_id)
    location = store.publish(name, plan_file)
    LOGGER.info(f"Published plan artifact {name}", path=str(location))
    return name, location


def download_plan(store: ArtifactStore, environment: str, run_id: str, working_dir: Path) -> Path:
    """Fetch the run's plan artifact back into ``working_dir`` as ``{environment}.plan.tfplan``."""
    validate_environment_name(environment)
    validate_required("run_id", run_id)
    name = artifact_name(environment, run_id)
    path = store.download(name, working_dir / plan_file_name(environment))
    LOGGER.info(f"Downloaded plan artifact {name}", path=str(path))
    return path
