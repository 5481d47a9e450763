"""Runs the built binary and relays operator shell commands to it."""

from __future__ import annotations

import logging
import subprocess
import sys
from pathlib import Path
from typing import Any, Optional, TextIO

from .completion import CompletionClient
from .repair import read_snapshot

logger = logging.getLogger(__name__)

SENTINEL = "done"

BANNER = "*" * 26


class BinaryRelay:
    """Interactive session around a running candidate binary."""

    def __init__(
        self,
        completion: CompletionClient,
        *,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
    ) -> None:
        self._completion = completion
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout

    def _print(self, text: str) -> None:
        print(text, file=self._stdout, flush=True)

    def run(self, binary_path: Path, source_path: Path) -> None:
        binary_path = Path(binary_path)
        binary_path.chmod(binary_path.stat().st_mode | 0o111)

        logger.info("Running the binary %s...", binary_path)
        child = subprocess.Popen([str(binary_path)])
        logger.info("Binary started successfully (pid %s)", child.pid)
        try:
            instructions = self._completion.interaction_instructions(read_snapshot(source_path))
            self.print_instructions(instructions)
            self.relay_commands()
        finally:
            child.kill()
            child.wait()
            logger.info("Process killed successfully.")

    def print_instructions(self, instructions: str) -> None:
        self._print(f"\n{BANNER}\nTool Interaction Instructions: \n{BANNER}\n{instructions}\n{BANNER}\n")

    def relay_commands(self) -> int:
        """Run operator lines through the shell until the sentinel or EOF.

        Returns the number of commands executed.
        """
        self._print(f"Enter curl commands, type '{SENTINEL}' to exit:")
        executed = 0
        for raw in self._stdin:
            command = raw.strip()
            if command == SENTINEL:
                break
            if not command:
                continue
            result = self._run_shell(command)
            executed += 1
            if result.returncode == 0:
                self._print(f"Response: {result.stdout}")
            else:
                self._print(f"Error: {result.stderr}")
        return executed

    @staticmethod
    def _run_shell(command: str) -> Any:
        return subprocess.run(command, shell=True, capture_output=True, text=True)
