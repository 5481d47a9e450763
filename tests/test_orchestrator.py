"""Tests for the outer workflow."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, call

import pytest

from flakebot.config import CrafterConfig
from flakebot.descriptor import BINARY_NAME_PLACEHOLDER, DESCRIPTION_PLACEHOLDER
from flakebot.models import CheckResult, ValidationVerdict, WorkflowStage, WorkflowState
from flakebot.orchestrator import (
    GITIGNORE_ENTRIES,
    STAGE_TRANSITIONS,
    NotFoundError,
    Orchestrator,
    WorkflowError,
    install_tooling,
    next_stage,
    seed_gitignore,
)

INSTRUCTIONS = "add a GET /health endpoint returning 200"


def _config(tmp_path: Path, **overrides) -> CrafterConfig:
    values = dict(
        groq_api_key="gsk-test",
        github_token="ghp-test",
        work_dir=tmp_path / "work_dir",
        reference_flake=tmp_path / "absent_flake.nix",
        tooling_dir=tmp_path / "tooling",
    )
    values.update(overrides)
    return CrafterConfig(**values)


def _fake_clone(url, work_dir, name):
    repo = Path(work_dir) / name
    (repo / "src").mkdir(parents=True)
    (repo / "src" / "main.rs").write_text("fn main() {}\n", encoding="utf-8")
    (repo / "Cargo.toml").write_text('[package]\nname = "hello_world_tool"\n', encoding="utf-8")
    return repo


@pytest.fixture
def collaborators():
    completion = MagicMock()
    completion.identify_crates.return_value = ["hello_world_tool", "http_server"]
    completion.validate_program.return_value = ValidationVerdict.satisfied_verdict()
    completion.describe_crate.return_value = "Says hello over HTTP."
    resolver = MagicMock()
    resolver.resolve.return_value = "https://github.com/kodylow/hello_world_tool"
    forge = MagicMock()
    forge.fork_if_needed.return_value = "https://github.com/me/hello_world_tool.git"
    forge.clone_into.side_effect = _fake_clone
    forge.head_commit.side_effect = ["base1", "base2", "base3"]
    toolchain = MagicMock()
    toolchain.check.return_value = CheckResult(passed=True)
    return completion, resolver, forge, toolchain


def _orchestrator(tmp_path, collaborators, **config_overrides):
    completion, resolver, forge, toolchain = collaborators
    relay = MagicMock()
    orchestrator = Orchestrator(
        _config(tmp_path, **config_overrides),
        completion,
        resolver,
        forge,
        relay=relay,
        toolchain_factory=lambda repo_dir: toolchain,
    )
    return orchestrator, relay


def _state(tmp_path) -> WorkflowState:
    work_dir = tmp_path / "work_dir"
    work_dir.mkdir(exist_ok=True)
    return WorkflowState(instructions=INSTRUCTIONS, work_dir=work_dir)


class TestStageTable:
    def test_fixed_order(self):
        order = []
        stage = next_stage(None)
        while stage is not None:
            order.append(stage)
            stage = next_stage(stage)
        assert order == [WorkflowStage.BUILD_DESCRIPTOR, WorkflowStage.TOOLING_INSTALL, WorkflowStage.FEATURE]

    def test_every_stage_has_a_transition(self):
        assert set(WorkflowStage) <= set(STAGE_TRANSITIONS)


class TestHelpers:
    def test_seed_gitignore_appends_missing_entries(self, rust_repo):
        (rust_repo / ".gitignore").write_text("/target\n*.swp", encoding="utf-8")
        seed_gitignore(rust_repo)
        lines = (rust_repo / ".gitignore").read_text(encoding="utf-8").splitlines()
        assert lines[:2] == ["/target", "*.swp"]
        assert lines.count("/target") == 1
        assert set(GITIGNORE_ENTRIES) <= set(lines)

    def test_seed_gitignore_creates_file(self, rust_repo):
        seed_gitignore(rust_repo)
        assert (rust_repo / ".gitignore").read_text(encoding="utf-8").splitlines() == GITIGNORE_ENTRIES

    def test_install_tooling_copies_present_entries(self, rust_repo, tmp_path):
        tooling = tmp_path / "tooling"
        (tooling / ".github" / "workflows").mkdir(parents=True)
        (tooling / ".github" / "workflows" / "ci.yml").write_text("on: push\n")
        (tooling / "justfile").write_text("check:\n  cargo check\n")

        copied = install_tooling(tooling, rust_repo)

        assert copied == [".github", "justfile"]
        assert (rust_repo / ".github" / "workflows" / "ci.yml").read_text() == "on: push\n"
        assert (rust_repo / "justfile").exists()
        assert not (rust_repo / "misc").exists()


class TestRun:
    def test_full_run_opens_three_proposals(self, tmp_path, collaborators):
        completion, resolver, forge, toolchain = collaborators
        orchestrator, relay = _orchestrator(tmp_path, collaborators)
        state = _state(tmp_path)

        orchestrator.run(state)

        resolver.resolve.assert_called_once_with("hello_world_tool")
        assert state.repo_name == "hello_world_tool"
        assert state.repo_url == "https://github.com/kodylow/hello_world_tool"
        repo_dir = state.work_dir / "hello_world_tool"
        forge.clone_into.assert_called_once_with(
            "https://github.com/me/hello_world_tool.git", state.work_dir, "hello_world_tool"
        )
        assert forge.create_branch.call_args_list == [
            call(repo_dir, "build-descriptor"),
            call(repo_dir, "tooling-install"),
            call(repo_dir, "feature"),
        ]
        assert forge.propose_change.call_args_list == [
            call(repo_dir, WorkflowStage.BUILD_DESCRIPTOR, "base1"),
            call(repo_dir, WorkflowStage.TOOLING_INSTALL, "base2"),
            call(repo_dir, WorkflowStage.FEATURE, "base3"),
        ]
        assert forge.push_current_branch.call_count == 3
        assert state.completed_stages == list(WorkflowStage)
        assert (repo_dir / ".gitignore").exists()
        # no reference flake: no descriptor, so nothing is built or run
        assert state.descriptor_path is None
        relay.run.assert_not_called()
        completion.validate_program.assert_called_once_with(INSTRUCTIONS, "fn main() {}\n", "None")

    def test_commit_push_propose_order_per_stage(self, tmp_path, collaborators):
        _, _, forge, _ = collaborators
        orchestrator, _ = _orchestrator(tmp_path, collaborators)
        orchestrator.run(_state(tmp_path))

        names = [c[0] for c in forge.method_calls if c[0] in ("create_branch", "commit_all", "push_current_branch", "propose_change")]
        assert names == ["create_branch", "commit_all", "push_current_branch", "propose_change"] * 3

    def test_descriptor_stage_injects_and_checks(self, tmp_path, collaborators, monkeypatch):
        completion, _, forge, _ = collaborators
        reference = tmp_path / "reference_flake.nix"
        reference.write_text(f'{{ description = "{DESCRIPTION_PLACEHOLDER}"; pname = "{BINARY_NAME_PLACEHOLDER}"; }}')
        checks = []
        monkeypatch.setattr("flakebot.descriptor.BuildDescriptor.static_check", lambda self: checks.append(self.path))
        built = []

        def fake_build(self, name, destination):
            built.append(name)
            return destination

        monkeypatch.setattr("flakebot.descriptor.BuildDescriptor.build_binary", fake_build)
        orchestrator, relay = _orchestrator(tmp_path, collaborators, reference_flake=reference)
        state = _state(tmp_path)

        orchestrator.run(state)

        flake = state.work_dir / "hello_world_tool" / "flake.nix"
        assert state.descriptor_path == flake
        assert flake.read_text() == '{ description = "Says hello over HTTP."; pname = "hello_world_tool"; }'
        assert checks == [flake]
        assert built == ["hello_world_tool"]
        assert state.binary_path == state.work_dir / "final_binary"
        relay.run.assert_called_once_with(state.work_dir / "final_binary", state.source_path)
        cargo_toml, readme, main_rs = completion.describe_crate.call_args.args
        assert "hello_world_tool" in cargo_toml
        assert readme == ""

    def test_missing_crate_aborts_before_forking(self, tmp_path, collaborators):
        _, resolver, forge, _ = collaborators
        resolver.resolve.return_value = None
        orchestrator, _ = _orchestrator(tmp_path, collaborators)

        with pytest.raises(NotFoundError):
            orchestrator.run(_state(tmp_path))
        forge.fork_if_needed.assert_not_called()

    def test_empty_crate_list_aborts(self, tmp_path, collaborators):
        completion, resolver, _, _ = collaborators
        completion.identify_crates.return_value = []
        orchestrator, _ = _orchestrator(tmp_path, collaborators)
        with pytest.raises(NotFoundError):
            orchestrator.run(_state(tmp_path))
        resolver.resolve.assert_not_called()

    def test_library_crate_is_rejected(self, tmp_path, collaborators):
        _, _, forge, _ = collaborators

        def clone_without_main(url, work_dir, name):
            repo = Path(work_dir) / name
            repo.mkdir(parents=True)
            return repo

        forge.clone_into.side_effect = clone_without_main
        orchestrator, _ = _orchestrator(tmp_path, collaborators)
        with pytest.raises(WorkflowError, match="main.rs"):
            orchestrator.run(_state(tmp_path))
