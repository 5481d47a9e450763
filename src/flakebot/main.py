"""Command-line entrypoint for the flakebot workflow."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from .completion import CompletionClient, CompletionError
from .config import CrafterConfig
from .descriptor import BuildDescriptorError
from .forge import ForgeError, GitHubForge
from .models import WorkflowState, WorkflowStateError
from .orchestrator import Orchestrator, WorkflowError
from .registry import CratesIoResolver
from .repair import RepairDivergedError
from .toolchain import ToolchainError

logger = logging.getLogger("flakebot")

FATAL_ERRORS = (
    CompletionError,
    ForgeError,
    BuildDescriptorError,
    ToolchainError,
    WorkflowError,
    WorkflowStateError,
    RepairDivergedError,
    OSError,
)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "Build agent tools correctly, deterministically and reproducibly: "
            "find a crate, fork it, make it satisfy the instructions and open pull requests."
        )
    )
    parser.add_argument("-i", "--instructions", required=True, help="The agent instructions")
    parser.add_argument("--work-dir", type=Path, help="The directory to clone the repository into")
    parser.add_argument("--groq-api-key", help="The Groq API key (default: $GROQ_API_KEY)")
    parser.add_argument("--github-token", help="GitHub token for forking repositories (default: $GITHUB_TOKEN)")
    parser.add_argument("--cargo-cookie", help="Cookie for the crates.io session (default: $CARGO_COOKIE)")
    parser.add_argument("--reference-flake", type=Path, help="Reference flake.nix template")
    parser.add_argument("--tooling-dir", type=Path, help="Directory holding the tooling files to install")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def load_config(args: argparse.Namespace) -> CrafterConfig:
    cfg = CrafterConfig.from_env(groq_api_key=args.groq_api_key, github_token=args.github_token)
    if args.cargo_cookie:
        cfg = replace(cfg, cargo_cookie=args.cargo_cookie)
    if args.work_dir:
        cfg = replace(cfg, work_dir=args.work_dir)
    if args.reference_flake:
        cfg = replace(cfg, reference_flake=args.reference_flake)
    if args.tooling_dir:
        cfg = replace(cfg, tooling_dir=args.tooling_dir)
    return cfg


def build_orchestrator(cfg: CrafterConfig) -> Orchestrator:
    completion = CompletionClient(
        cfg.groq_api_key,
        cfg.model,
        cfg.base_url,
        retry_interval=cfg.retry_interval.total_seconds(),
        max_attempts=cfg.max_attempts,
    )
    resolver = CratesIoResolver(cfg.cargo_cookie)
    forge = GitHubForge(cfg.github_token, completion, commit_author=cfg.commit_author)
    return Orchestrator(cfg, completion, resolver, forge)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        cfg = load_config(args)
    except Exception as exc:  # noqa: BLE001
        logger.error("Configuration error: %s", exc)
        return 1

    instructions = args.instructions.strip()
    if not instructions:
        logger.error("Instructions must not be empty")
        return 1

    try:
        cfg.work_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("Failed to create work directory %s: %s", cfg.work_dir, exc)
        return 1

    state = WorkflowState(instructions=instructions, work_dir=cfg.work_dir.resolve())
    orchestrator = build_orchestrator(cfg)
    try:
        orchestrator.run(state)
    except FATAL_ERRORS as exc:
        logger.error("Workflow aborted: %s", exc)
        return 1

    logger.info("Completed stages: %s", ", ".join(stage.value for stage in state.completed_stages))
    return 0


if __name__ == "__main__":
    sys.exit(main())
