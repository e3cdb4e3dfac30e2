"""Utility helpers for running subprocesses consistently."""

from __future__ import annotations

import shlex
import subprocess
from dataclasses import dataclass
from typing import Callable, Optional, Sequence


@dataclass
class CommandError(RuntimeError):
    """Raised when a subprocess exits with a non-zero status."""

    command: Sequence[str]
    returncode: int
    stderr: Optional[str] = None

    def __str__(self) -> str:
        message = f"{format_command(self.command)} exited with status {self.returncode}"
        if self.stderr:
            stderr = self.stderr.strip()
            if stderr:
                message = f"{message}\n{stderr}"
        return message


def format_command(command: Sequence[str]) -> str:
    """Render a subprocess command for display or logging."""

    return " ".join(shlex.quote(part) for part in command)


class CommandRunner:
    """Execute system commands, or only print them when ``dry_run`` is set.

    Read-only probes (:meth:`succeeds`, :meth:`capture`) always run so that a
    dry run reports the same decisions a real run would make.
    """

    def __init__(
        self,
        *,
        dry_run: bool = False,
        echo: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.dry_run = dry_run
        self.echo = echo or (lambda message: print(message, flush=True))

    def run(self, command: Sequence[str], *, input_text: Optional[str] = None) -> None:
        printable = format_command(command)
        if self.dry_run:
            self.echo(f"DRY-RUN: {printable}")
            return
        result = subprocess.run(
            list(command),
            input=input_text,
            check=False,
            text=True,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
        )
        if result.returncode != 0:
            raise CommandError(command, result.returncode, stderr=result.stderr)

    def capture(self, command: Sequence[str], *, input_text: Optional[str] = None) -> str:
        result = subprocess.run(
            list(command),
            input=input_text,
            check=False,
            text=True,
            capture_output=True,
        )
        if result.returncode != 0:
            raise CommandError(command, result.returncode, stderr=result.stderr)
        return result.stdout

    def succeeds(self, command: Sequence[str]) -> bool:
        try:
            result = subprocess.run(
                list(command),
                check=False,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except FileNotFoundError:
            return False
        return result.returncode == 0


__all__ = ["CommandError", "CommandRunner", "format_command"]
