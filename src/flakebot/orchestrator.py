"""End-to-end workflow: from instructions to three pull requests."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .completion import CompletionClient
from .config import CrafterConfig
from .descriptor import BuildDescriptor
from .forge import GitHubForge, repo_name_from_url
from .models import WorkflowStage, WorkflowState
from .registry import CratesIoResolver
from .relay import BinaryRelay
from .repair import RepairLoop, read_snapshot
from .toolchain import CargoToolchain

logger = logging.getLogger(__name__)

GITIGNORE_ENTRIES = ["/target", "/result", "/work_dir", "/db", "/tmp", "/nix"]
TOOLING_DIRECTORIES = [".config", ".github", "misc"]
TOOLING_FILES = ["justfile"]
FINAL_BINARY_NAME = "final_binary"

# Fixed proposal sequence; None marks the start and the end of a run.
STAGE_TRANSITIONS: Dict[Optional[WorkflowStage], Optional[WorkflowStage]] = {
    None: WorkflowStage.BUILD_DESCRIPTOR,
    WorkflowStage.BUILD_DESCRIPTOR: WorkflowStage.TOOLING_INSTALL,
    WorkflowStage.TOOLING_INSTALL: WorkflowStage.FEATURE,
    WorkflowStage.FEATURE: None,
}


class WorkflowError(RuntimeError):
    """Raised when the workflow cannot continue."""


class NotFoundError(WorkflowError):
    """Raised when a lookup the workflow depends on finds nothing."""


def next_stage(stage: Optional[WorkflowStage]) -> Optional[WorkflowStage]:
    return STAGE_TRANSITIONS[stage]


def seed_gitignore(repo_dir: Path) -> None:
    """Make sure the build and work artifacts are ignored."""
    logger.info("Modifying .gitignore file...")
    path = Path(repo_dir) / ".gitignore"
    existing = path.read_text(encoding="utf-8") if path.exists() else ""
    present = {line.strip() for line in existing.splitlines()}
    missing = [entry for entry in GITIGNORE_ENTRIES if entry not in present]
    if not missing:
        return
    if existing and not existing.endswith("\n"):
        existing += "\n"
    path.write_text(existing + "\n".join(missing) + "\n", encoding="utf-8")


def install_tooling(tooling_dir: Path, repo_dir: Path) -> List[str]:
    """Copy the auxiliary tooling files into the repository.

    Returns the names that were copied; absent sources are skipped.
    """
    logger.info("Installing flakebox files...")
    tooling_dir = Path(tooling_dir)
    repo_dir = Path(repo_dir)
    copied: List[str] = []
    for name in TOOLING_DIRECTORIES:
        source = tooling_dir / name
        if not source.is_dir():
            logger.warning("Tooling directory %s not found; skipping", source)
            continue
        shutil.copytree(source, repo_dir / name, dirs_exist_ok=True)
        copied.append(name)
    for name in TOOLING_FILES:
        source = tooling_dir / name
        if not source.is_file():
            logger.warning("Tooling file %s not found; skipping", source)
            continue
        shutil.copyfile(source, repo_dir / name)
        copied.append(name)
    return copied


class Orchestrator:
    """Runs the fixed stage sequence against a :class:`WorkflowState`."""

    def __init__(
        self,
        config: CrafterConfig,
        completion: CompletionClient,
        resolver: CratesIoResolver,
        forge: GitHubForge,
        *,
        relay: Optional[BinaryRelay] = None,
        toolchain_factory: Callable[[Path], CargoToolchain] = CargoToolchain,
        descriptor_factory: Callable[[Path], BuildDescriptor] = BuildDescriptor,
    ) -> None:
        self._config = config
        self._completion = completion
        self._resolver = resolver
        self._forge = forge
        self._relay = relay or BinaryRelay(completion)
        self._toolchain_factory = toolchain_factory
        self._descriptor_factory = descriptor_factory
        self._stage_handlers: Dict[WorkflowStage, Callable[[WorkflowState], None]] = {
            WorkflowStage.BUILD_DESCRIPTOR: self.build_descriptor_stage,
            WorkflowStage.TOOLING_INSTALL: self.tooling_install_stage,
            WorkflowStage.FEATURE: self.feature_stage,
        }

    def run(self, state: WorkflowState) -> None:
        tool = self.resolve_tool(state)
        self.resolve_repository(state, tool)
        self.prepare_workspace(state)

        stage = next_stage(None)
        while stage is not None:
            self.run_stage(state, stage)
            stage = next_stage(stage)
        logger.info("Workflow finished for %s", state.repo_name)

    def run_stage(self, state: WorkflowState, stage: WorkflowStage) -> None:
        logger.info("Starting stage %s", stage.value)
        repo_dir = state.repo_dir
        base = self._forge.head_commit(repo_dir)
        self._forge.create_branch(repo_dir, stage.branch_name)
        self._stage_handlers[stage](state)

        self._forge.commit_all(repo_dir, stage)
        self._forge.push_current_branch(repo_dir)
        self._forge.propose_change(repo_dir, stage, base)
        state.completed_stages.append(stage)
        logger.info("Finished stage %s", stage.value)

    def resolve_tool(self, state: WorkflowState) -> str:
        crates = self._completion.identify_crates(state.instructions)
        logger.info("Tools identified: %s", ", ".join(crates))
        if not crates:
            raise NotFoundError("Failed to identify tool")
        logger.info("First tool: %s", crates[0])
        return crates[0]

    def resolve_repository(self, state: WorkflowState, tool: str) -> str:
        repo_url = self._resolver.resolve(tool)
        if not repo_url:
            raise NotFoundError(f"Failed to find crate {tool!r} on crates.io")
        state.repo_url = repo_url
        state.repo_name = repo_name_from_url(repo_url)
        return repo_url

    def prepare_workspace(self, state: WorkflowState) -> Path:
        if not state.repo_url:
            raise WorkflowError("Repository URL must be resolved before preparing the workspace")
        clone_url = self._forge.fork_if_needed(state.repo_url)
        repo_dir = self._forge.clone_into(clone_url, state.work_dir, state.repo_name)
        if not state.source_path.exists():
            raise WorkflowError(f"{state.source_path} not found; only binary crates are supported")
        return repo_dir

    def build_descriptor_stage(self, state: WorkflowState) -> None:
        repo_dir = state.repo_dir
        descriptor = self._descriptor_factory(repo_dir)
        descriptor.ensure(self._config.reference_flake)
        seed_gitignore(repo_dir)
        if not descriptor.path.exists():
            logger.warning("No flake.nix in %s; skipping metadata injection", repo_dir)
            return
        state.descriptor_path = descriptor.path

        cargo_toml = repo_dir / "Cargo.toml"
        if not cargo_toml.exists():
            raise WorkflowError(f"{cargo_toml} not found")
        readme = repo_dir / "README.md"
        if not readme.exists():
            logger.warning("%s not found; describing the crate without it", readme)
        description = self._completion.describe_crate(
            cargo_toml.read_text(encoding="utf-8"),
            readme.read_text(encoding="utf-8") if readme.exists() else "",
            read_snapshot(state.source_path),
        )
        descriptor.inject_metadata(description, state.repo_name)
        descriptor.static_check()

    def tooling_install_stage(self, state: WorkflowState) -> None:
        install_tooling(self._config.tooling_dir, state.repo_dir)

    def feature_stage(self, state: WorkflowState) -> None:
        loop = RepairLoop(
            self._completion,
            self._toolchain_factory(state.repo_dir),
            state.source_path,
            max_iterations=self._config.max_repair_iterations,
        )
        outcome = loop.run(state.instructions)
        logger.info(
            "Repair loop converged after %s validation rounds and %s rewrites",
            outcome.iterations,
            outcome.rewrites,
        )

        if state.descriptor_path is None:
            logger.warning("No flake.nix; skipping reproducible build and interactive run")
            return
        descriptor = self._descriptor_factory(state.repo_dir)
        state.binary_path = descriptor.build_binary(state.repo_name, state.work_dir / FINAL_BINARY_NAME)
        self._relay.run(state.binary_path, state.source_path)
