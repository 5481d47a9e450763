"""Reproducible build descriptor (``flake.nix``) management."""

from __future__ import annotations

import hashlib
import logging
import shutil
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

DESCRIPTOR_FILENAME = "flake.nix"
DESCRIPTION_PLACEHOLDER = "CRATE-DESCRIPTION"
BINARY_NAME_PLACEHOLDER = "CRATE-BINARY-NAME"


class BuildDescriptorError(RuntimeError):
    """Raised when the flake cannot be checked or built."""


class BuildDescriptor:
    """The ``flake.nix`` of one candidate repository."""

    def __init__(self, repo_dir: Path) -> None:
        self.repo_dir = Path(repo_dir)
        self.path = self.repo_dir / DESCRIPTOR_FILENAME

    def ensure(self, reference_path: Path) -> None:
        """Copy the reference flake in unless the candidate already has one.

        A missing reference is not an error: the run carries on without a
        descriptor.
        """
        reference_path = Path(reference_path)
        logger.info("Reference flake path: %s", reference_path)
        if not reference_path.exists():
            logger.info("Reference flake.nix not found at %s", reference_path)
            return
        if self.path.exists():
            logger.info("Found a flake.nix at %s", self.path)
            return
        logger.info("Creating flake.nix at %s", self.path)
        shutil.copyfile(reference_path, self.path)

    def inject_metadata(self, description: str, binary_name: str) -> None:
        try:
            contents = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise BuildDescriptorError(f"Failed to read {self.path}: {exc}") from exc
        contents = contents.replace(DESCRIPTION_PLACEHOLDER, description).replace(
            BINARY_NAME_PLACEHOLDER, binary_name
        )
        self.path.write_text(contents, encoding="utf-8")

    def _run(self, args: list) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(args, capture_output=True, text=True, cwd=str(self.repo_dir))
        except FileNotFoundError:
            raise BuildDescriptorError(f"{args[0]} not found on PATH") from None

    def static_check(self) -> None:
        logger.info("Checking flake.nix...")
        result = self._run(["nix", "flake", "check", "-L", "."])
        if result.returncode != 0:
            logger.error("nix flake check failed: %s", result.stderr)
            raise BuildDescriptorError(f"nix flake check failed: {result.stderr.strip()}")

    def build_binary(self, binary_name: str, destination: Path) -> Path:
        """Run ``nix build`` and copy ``result/bin/<binary_name>`` to ``destination``."""
        logger.info("Building the tool using flake.nix...")
        result = self._run(["nix", "build"])
        if result.returncode != 0:
            logger.error("nix build failed: %s", result.stderr)
            raise BuildDescriptorError(f"nix build failed: {result.stderr.strip()}")

        built = self.repo_dir / "result" / "bin" / binary_name
        if not built.exists():
            raise BuildDescriptorError(f"nix build produced no binary at {built}")
        digest = hashlib.sha256(built.read_bytes()).hexdigest()
        logger.info("Build successful, sha256 of %s: %s", built, digest)

        destination = Path(destination)
        shutil.copyfile(built, destination)
        destination.chmod(0o755)
        return destination
