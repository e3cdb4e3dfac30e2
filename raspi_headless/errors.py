"""Error types shared by the raspi-headless commands."""

from __future__ import annotations


class HeadlessError(RuntimeError):
    """Base class for failures reported to the operator."""

    exit_code = 3


class UsageError(HeadlessError):
    """Raised when command-line arguments are missing or malformed."""

    exit_code = 2


class PreconditionError(HeadlessError):
    """Raised when the target environment is not what the command expects."""

    exit_code = 1
