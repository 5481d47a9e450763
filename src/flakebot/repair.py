"""Validate-and-repair loop over the candidate's primary source file.

The loop alternates between a language-model judge and ``cargo check``.
The judge decides whether the program satisfies the instructions; cargo
decides whether a rewrite is kept. A rewrite that fails to compile is
discarded and the last snapshot that compiled is written back before the
judge is consulted again, so broken rewrites never stack.

By default there is no iteration cap; the operator interrupts a run that
does not converge.
"""

from __future__ import annotations

import logging
from enum import Enum, auto
from pathlib import Path
from typing import Optional

from .completion import CompletionClient, CompletionError
from .models import RepairOutcome
from .toolchain import CargoToolchain, ToolchainError

logger = logging.getLogger(__name__)

NO_ERRORS = "None"


class LoopState(Enum):
    CHECKING = auto()
    JUDGING = auto()
    REWRITING = auto()
    SATISFIED = auto()


class RepairDivergedError(RuntimeError):
    """Raised when a configured iteration cap is reached without success."""


def read_snapshot(path: Path) -> str:
    with open(path, "r", encoding="utf-8", newline="") as handle:
        return handle.read()


def write_snapshot(path: Path, text: str) -> None:
    with open(path, "w", encoding="utf-8", newline="") as handle:
        handle.write(text)


def clean_rewrite(text: str, filename_marker: str = "main.rs") -> str:
    """Drop markdown fence lines and lines that echo the filename back."""
    kept = [
        line
        for line in text.split("\n")
        if not line.startswith("```") and filename_marker not in line
    ]
    return "\n".join(kept)


class RepairLoop:
    """Drives one source file until the judge accepts it."""

    def __init__(
        self,
        completion: CompletionClient,
        toolchain: CargoToolchain,
        source_path: Path,
        *,
        max_iterations: Optional[int] = None,
    ) -> None:
        self._completion = completion
        self._toolchain = toolchain
        self._source_path = Path(source_path)
        self._max_iterations = max_iterations

    def run(self, instructions: str) -> RepairOutcome:
        last_good = read_snapshot(self._source_path)
        current = last_good
        errors = NO_ERRORS
        repair_instructions = ""
        iterations = 0
        rewrites = 0
        state = LoopState.JUDGING

        while True:
            if state is LoopState.CHECKING:
                check = self._toolchain.check()
                if check.passed:
                    last_good = current
                    errors = NO_ERRORS
                else:
                    logger.error("Cargo check failed, restoring last known good source...")
                    write_snapshot(self._source_path, last_good)
                    current = last_good
                    errors = check.output.strip() or "cargo check failed"
                state = LoopState.JUDGING

            elif state is LoopState.JUDGING:
                if self._max_iterations is not None and iterations >= self._max_iterations:
                    raise RepairDivergedError(
                        f"Program still unsatisfied after {iterations} validation rounds"
                    )
                iterations += 1
                logger.info("Repair iteration %s: validating program", iterations)
                verdict = self._completion.validate_program(instructions, current, errors)
                if verdict.satisfied:
                    logger.info("Program satisfies user instructions")
                    state = LoopState.SATISFIED
                else:
                    logger.info("Program does not satisfy user instructions, rewriting code")
                    repair_instructions = verdict.instructions
                    state = LoopState.REWRITING

            elif state is LoopState.REWRITING:
                rewrites += 1
                current = self._rewrite(repair_instructions, current)
                state = LoopState.CHECKING

            else:
                return RepairOutcome(snapshot=last_good, iterations=iterations, rewrites=rewrites)

    def _rewrite(self, instructions: str, source: str) -> str:
        rewritten = self._completion.rewrite_main_rs(instructions, source)
        self._resolve_dependencies(rewritten)
        cleaned = clean_rewrite(rewritten, self._source_path.name)
        write_snapshot(self._source_path, cleaned)
        return cleaned

    def _resolve_dependencies(self, source: str) -> None:
        # Best effort: the next cargo check reports anything still missing.
        try:
            command = self._completion.dependency_command(source)
            self._toolchain.add_dependencies(command)
        except (CompletionError, ToolchainError) as exc:
            logger.error("Failed to add cargo dependencies: %s", exc)
