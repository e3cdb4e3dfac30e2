"""Raspberry Pi OS boot partition discovery and small file edits."""

from __future__ import annotations

import getpass
import os
import re
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .config_patch import read_lines, write_atomic
from .errors import PreconditionError

BOOT_MARKER_FILES = (
    "cmdline.txt",
    "config.txt",
    "LICENCE.broadcom",
    "start.elf",
    "bootcode.bin",
)
CMDLINE_NAME = "cmdline.txt"
CONFIG_NAME = "config.txt"
SSH_MARKER_NAME = "ssh"
INIT_SCRIPT_NAME = "headless_init.sh"
FIRST_BOOT_RESIZE_MARKER = "init_resize.sh"

BOOT_CANDIDATES_ENV = "RASPI_HEADLESS_BOOT_CANDIDATES"

_SYSTEMD_RUN = re.compile(r"systemd\.run=.*$")


def init_script_commands(init_name: str = INIT_SCRIPT_NAME) -> str:
    """Kernel parameters that make systemd run the init script once and reboot."""

    return " ".join(
        [
            f"systemd.run=/boot/{init_name}",
            "systemd.run_success_action=reboot",
            "systemd.unit=kernel-command-line.target",
        ]
    )


def has_raspberry_pi_os_files(directory: Path) -> bool:
    return all((directory / name).is_file() for name in BOOT_MARKER_FILES)


def default_boot_candidates() -> list[Path]:
    override = os.environ.get(BOOT_CANDIDATES_ENV)
    if override:
        return [Path(part) for part in override.split(os.pathsep) if part]
    candidates = [Path("/Volumes/boot"), Path("/Volumes/bootfs")]
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = None
    if user and user != "pi":
        candidates.append(Path("/media") / user / "boot")
    candidates.append(Path("/media/pi/boot"))
    return candidates


def find_boot_partition(candidates: Optional[Iterable[Path]] = None) -> Path:
    """Return the first mounted directory that looks like a boot partition."""

    for candidate in candidates if candidates is not None else default_boot_candidates():
        if candidate.is_dir() and has_raspberry_pi_os_files(candidate):
            return candidate
    raise PreconditionError("Raspberry Pi boot partition not found (use --boot)")


def resolve_boot_dir(explicit: Optional[Path]) -> Path:
    if explicit is None:
        return find_boot_partition()
    if not has_raspberry_pi_os_files(explicit):
        raise PreconditionError(f"not a Raspberry Pi image: missing files: {explicit}")
    return explicit


def check_writable(boot_dir: Path) -> None:
    if not os.access(boot_dir, os.W_OK):
        raise PreconditionError(f"insufficient privileges to write to {boot_dir}")
    config = boot_dir / CONFIG_NAME
    if not os.access(config, os.W_OK):
        raise PreconditionError(f"insufficient privileges to write to {config}")


def already_booted(boot_dir: Path) -> bool:
    """A first boot removes the root filesystem resize hook from cmdline.txt."""

    cmdline = (boot_dir / CMDLINE_NAME).read_bytes().decode("utf-8", errors="surrogateescape")
    return FIRST_BOOT_RESIZE_MARKER not in cmdline


def enable_ssh(boot_dir: Path) -> Path:
    marker = boot_dir / SSH_MARKER_NAME
    marker.touch()
    return marker


def patch_cmdline(lines: Sequence[str], extra: str) -> list[str]:
    """Attach ``extra`` to the kernel command line, replacing an earlier copy.

    The first ``systemd.run=`` occurrence and everything after it on that line
    is replaced. Without one, ``extra`` is appended to the first line.
    """

    result = list(lines)
    for index, line in enumerate(result):
        body = line.rstrip("\r\n")
        ending = line[len(body) :]
        if _SYSTEMD_RUN.search(body):
            result[index] = _SYSTEMD_RUN.sub(lambda _match: extra, body, count=1) + ending
            return result

    if not result:
        return [f"{extra}\n"]
    first = result[0]
    body = first.rstrip("\r\n")
    ending = first[len(body) :]
    separator = " " if body else ""
    result[0] = f"{body}{separator}{extra}{ending}"
    return result


def update_cmdline(boot_dir: Path, init_name: str = INIT_SCRIPT_NAME) -> bool:
    path = boot_dir / CMDLINE_NAME
    original = read_lines(path)
    updated = patch_cmdline(original, init_script_commands(init_name))
    write_atomic(path, "".join(updated))
    return updated != original


__all__ = [
    "BOOT_CANDIDATES_ENV",
    "BOOT_MARKER_FILES",
    "CMDLINE_NAME",
    "CONFIG_NAME",
    "INIT_SCRIPT_NAME",
    "SSH_MARKER_NAME",
    "already_booted",
    "check_writable",
    "default_boot_candidates",
    "enable_ssh",
    "find_boot_partition",
    "has_raspberry_pi_os_files",
    "init_script_commands",
    "patch_cmdline",
    "resolve_boot_dir",
    "update_cmdline",
]
