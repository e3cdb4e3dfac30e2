"""Idempotent editing of ``KEY=VALUE`` statements in Raspberry Pi config files.

``config.txt`` on Raspberry Pi OS ships most optional settings as commented-out
placeholders such as ``#hdmi_group=1``. :func:`set_config_value` toggles one of
those placeholders on or off without touching any other line:

1. every active ``KEY=...`` line is reverted to the bare disabled form
   ``#KEY=`` (the previous value is discarded);
2. when a value is supplied, the first disabled ``#KEY=...`` line becomes
   ``KEY=value``.

A key with no placeholder line is left alone rather than appended, so files
that never carried the key cannot gain it through this helper.

Writes go to a temporary file next to the target which then replaces the
original, so a reader never observes a half-written file.
"""

from __future__ import annotations

import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import Iterable, Optional

from .errors import PreconditionError

_KEY_PATTERN = re.compile(r"[A-Za-z0-9_]+")
# Lines end at "\n" only; the final line may lack one.
_LINE = re.compile(r"[^\n]*\n|[^\n]+$")


def _validate_key(key: str) -> None:
    if not _KEY_PATTERN.fullmatch(key):
        raise ValueError(f"Invalid config key {key!r}: expected letters, digits or underscores")


def _validate_value(value: str) -> None:
    if "\n" in value or "\r" in value:
        raise ValueError("Config values cannot span multiple lines")


def _split_ending(line: str) -> tuple[str, str]:
    body = line.rstrip("\r\n")
    return body, line[len(body) :]


def patch_lines(lines: Iterable[str], key: str, value: Optional[str]) -> list[str]:
    """Return ``lines`` with ``key`` disabled and, if ``value`` is given, re-enabled.

    ``lines`` may carry their line endings; endings are preserved on every line.
    ``value`` of ``None`` or ``""`` means the key should end up disabled.
    """

    _validate_key(key)
    if value:
        _validate_value(value)

    active = re.compile(rf"^[ \t]*{key}=")
    disabled = re.compile(rf"^[ \t]*#{key}=")

    normalized: list[str] = []
    for line in lines:
        body, ending = _split_ending(line)
        if active.match(body):
            normalized.append(f"#{key}={ending}")
        else:
            normalized.append(line)

    if not value:
        return normalized

    result: list[str] = []
    applied = False
    for line in normalized:
        body, ending = _split_ending(line)
        if not applied and disabled.match(body):
            result.append(f"{key}={value}{ending}")
            applied = True
        else:
            result.append(line)
    return result


def read_lines(path: Path) -> list[str]:
    """Split ``path`` into lines, passing undecodable bytes through untouched."""

    with path.open("r", encoding="utf-8", errors="surrogateescape", newline="") as handle:
        return _LINE.findall(handle.read())


def write_atomic(path: Path, content: str) -> None:
    """Replace ``path`` with ``content`` through a sibling temporary file."""

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(
            fd, "w", encoding="utf-8", errors="surrogateescape", newline=""
        ) as handle:
            handle.write(content)
        if path.exists():
            try:
                shutil.copymode(path, tmp_path)
            except OSError:
                # FAT boot partitions do not carry Unix permissions.
                pass
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def ensure_writable(path: Path) -> None:
    """Raise :class:`PreconditionError` unless ``path`` is an editable file."""

    if not path.is_file():
        raise PreconditionError(f"config file not found: {path}")
    if not os.access(path, os.W_OK) or not os.access(path.parent, os.W_OK):
        raise PreconditionError(f"insufficient privileges to write to {path}")


def set_config_value(path: Path, key: str, value: Optional[str]) -> bool:
    """Set, or disable when ``value`` is ``None``, ``key`` inside ``path``.

    Returns ``True`` when the file content changed. The file is rewritten once
    per call either way.
    """

    path = Path(path)
    ensure_writable(path)
    original = read_lines(path)
    patched = patch_lines(original, key, value)
    write_atomic(path, "".join(patched))
    return patched != original


def ensure_statement(path: Path, key: str, value: str, *, create: bool = True) -> bool:
    """Replace every ``key=...`` line with ``key=value``, appending one if absent.

    Unlike :func:`set_config_value` this helper does not rely on a placeholder
    line, which suits files the tool owns such as RealVNC's ``vncserver-x11``.
    """

    _validate_key(key)
    _validate_value(value)
    path = Path(path)
    if path.exists():
        ensure_writable(path)
        original = read_lines(path)
    elif create:
        original = []
    else:
        raise PreconditionError(f"config file not found: {path}")

    statement = f"{key}={value}"
    pattern = re.compile(rf"^{key}=")
    updated: list[str] = []
    found = False
    for line in original:
        body, ending = _split_ending(line)
        if pattern.match(body):
            updated.append(f"{statement}{ending}")
            found = True
        else:
            updated.append(line)

    if not found:
        if updated and not updated[-1].endswith(("\n", "\r")):
            updated[-1] = updated[-1] + "\n"
        updated.append(f"{statement}\n")

    write_atomic(path, "".join(updated))
    return updated != original


__all__ = [
    "ensure_statement",
    "ensure_writable",
    "patch_lines",
    "read_lines",
    "set_config_value",
    "write_atomic",
]
