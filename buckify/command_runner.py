"""Run external tools (cargo, rustc, buck2) and capture their output."""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str
    streamed: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandError(RuntimeError):
    """Raised when a checked command exits non-zero or cannot be started."""

    def __init__(self, result: CommandResult):
        message = f"command failed with exit code {result.returncode}: {format_command(result.command)}"
        if not result.streamed and result.stderr.strip():
            message = f"{message}\n{result.stderr.strip()}"
        super().__init__(message)
        self.result = result


def format_command(command: Sequence[str]) -> str:
    return " ".join(shlex.quote(part) for part in command)


class CommandRunner:
    """Command runner interface; tests substitute a scripted implementation."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
        stream: bool = False,
    ) -> CommandResult:
        raise NotImplementedError


class SubprocessCommandRunner(CommandRunner):

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
        stream: bool = False,
    ) -> CommandResult:
        logger.debug("running %s (cwd=%s)", format_command(command), cwd or ".")
        try:
            if stream:
                process = subprocess.run(
                    list(command),
                    cwd=str(cwd) if cwd else None,
                    check=False,
                )
                result = CommandResult(command, process.returncode, "", "", streamed=True)
            else:
                process = subprocess.run(
                    list(command),
                    cwd=str(cwd) if cwd else None,
                    capture_output=True,
                    text=True,
                    check=False,
                )
                result = CommandResult(command, process.returncode, process.stdout, process.stderr)
        except FileNotFoundError as e:
            result = CommandResult(command, 127, "", str(e))

        if check and not result.ok:
            raise CommandError(result)
        return result
