"""Cargo subprocess wrappers used by the repair loop."""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path
from typing import List

from .models import CheckResult

logger = logging.getLogger(__name__)


class ToolchainError(RuntimeError):
    """Raised when a cargo command cannot be run or fails."""


class CargoToolchain:
    """Runs ``cargo`` inside a candidate repository."""

    def __init__(self, repo_dir: Path) -> None:
        self._repo_dir = Path(repo_dir)

    def _run(self, args: List[str]) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(args, capture_output=True, text=True, cwd=str(self._repo_dir))
        except FileNotFoundError:
            raise ToolchainError(f"{args[0]} not found on PATH") from None

    def check(self) -> CheckResult:
        """Run ``cargo check`` and report whether the source compiles."""
        logger.info("Running cargo check...")
        result = self._run(["cargo", "check"])
        if result.returncode != 0:
            logger.error("Cargo check failed: %s", result.stderr)
            return CheckResult(passed=False, output=result.stderr)
        logger.info("Cargo check passed")
        return CheckResult(passed=True, output=result.stderr)

    def add_dependencies(self, command: str) -> None:
        """Run a model-suggested ``cargo add`` command.

        Only ``cargo add`` is accepted; the command is never passed to a shell.
        """
        try:
            args = shlex.split(command.strip())
        except ValueError as exc:
            raise ToolchainError(f"Unparseable dependency command: {command!r}") from exc
        if args[:2] != ["cargo", "add"]:
            raise ToolchainError(f"Refusing to run non-'cargo add' command: {command!r}")
        if len(args) == 2:
            logger.info("No dependencies to add")
            return

        logger.info("Adding cargo dependencies: %s", " ".join(args[2:]))
        result = self._run(args)
        if result.returncode != 0:
            raise ToolchainError(f"Failed to add missing crate: {result.stderr.strip()}")
