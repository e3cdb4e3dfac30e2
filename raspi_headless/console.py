"""Operator-facing output honouring ``--quiet`` and ``--verbose``."""

from __future__ import annotations

import sys
from dataclasses import dataclass

PROGRAM = "raspi-headless"


@dataclass(frozen=True)
class Console:
    quiet: bool = False
    verbose: bool = False
    prefix: str = PROGRAM

    def info(self, message: str) -> None:
        if not self.quiet:
            print(f"{self.prefix}: {message}", flush=True)

    def detail(self, message: str) -> None:
        if self.verbose:
            print(f"{self.prefix}:   {message}", flush=True)

    def warn(self, message: str) -> None:
        print(f"{self.prefix}: warning: {message}", file=sys.stderr, flush=True)

    def error(self, message: str) -> None:
        print(f"{self.prefix}: error: {message}", file=sys.stderr, flush=True)


def make_console(*, quiet: bool, verbose: bool) -> Console:
    """Build a console; verbose output wins over ``--quiet``."""

    if verbose:
        quiet = False
    return Console(quiet=quiet, verbose=verbose)
