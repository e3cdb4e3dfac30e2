"""SSH and RealVNC configuration on a running Raspberry Pi.

Paths default to the locations used by Raspberry Pi OS and can be redirected
through environment variables so tests run without root privileges:

``RASPI_HEADLESS_DEVICE_MODEL``
    Device tree model file. Defaults to ``/proc/device-tree/model``.
``RASPI_HEADLESS_VNC_COMMON_CUSTOM``
    RealVNC common configuration. Defaults to ``/etc/vnc/config.d/common.custom``.
``RASPI_HEADLESS_VNC_X11_CONFIG``
    Per-root RealVNC X11 server configuration edited by the graphical options.
    Defaults to ``/root/.vnc/config.d/vncserver-x11``.
``RASPI_HEADLESS_ETC_DIR``
    Directory holding ``hostname`` and ``hosts``. Defaults to ``/etc``.
"""

from __future__ import annotations

import os
import re
import shutil
import socket
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Mapping, Optional

from . import __version__
from .config_patch import ensure_statement, read_lines, write_atomic
from .console import PROGRAM, Console
from .errors import PreconditionError
from .runner import CommandError, CommandRunner
from .settings import DeviceSettings

VNCSERVER_SERVICE = "vncserver-x11-serviced.service"
# sshd.service is only an alias on Raspberry Pi OS and cannot be enabled.
SSHD_SERVICE = "ssh.service"

VNC_LOCALHOST_ONLY = "+127.0.0.1,+::1,-"
VNC_ANY_CLIENT = "+"

_MODEL_CHARS = re.compile(r"[^ \-.0-9A-Za-z]")


@dataclass(frozen=True)
class DevicePaths:
    model_file: Path = Path("/proc/device-tree/model")
    vnc_common_custom: Path = Path("/etc/vnc/config.d/common.custom")
    vnc_x11_config: Path = Path("/root/.vnc/config.d/vncserver-x11")
    etc_dir: Path = Path("/etc")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> "DevicePaths":
        defaults = cls()
        return cls(
            model_file=Path(environ.get("RASPI_HEADLESS_DEVICE_MODEL", str(defaults.model_file))),
            vnc_common_custom=Path(
                environ.get("RASPI_HEADLESS_VNC_COMMON_CUSTOM", str(defaults.vnc_common_custom))
            ),
            vnc_x11_config=Path(
                environ.get("RASPI_HEADLESS_VNC_X11_CONFIG", str(defaults.vnc_x11_config))
            ),
            etc_dir=Path(environ.get("RASPI_HEADLESS_ETC_DIR", str(defaults.etc_dir))),
        )


def read_device_model(paths: DevicePaths) -> Optional[str]:
    """Return the board model, or ``None`` when not running on a Raspberry Pi."""

    try:
        raw = paths.model_file.read_bytes()
    except OSError:
        return None
    # The device tree string is NUL terminated.
    model = _MODEL_CHARS.sub("", raw.decode("ascii", errors="ignore"))
    return model or None


def vnc_installed(paths: DevicePaths) -> bool:
    return shutil.which("vncpasswd") is not None and paths.vnc_common_custom.parent.is_dir()


def check_device(paths: DevicePaths, *, want_vnc: bool, require_root: bool = True) -> str:
    """Verify the run can proceed before anything is prompted for or changed."""

    model = read_device_model(paths)
    if not model:
        raise PreconditionError("not running on a Raspberry Pi")
    if want_vnc and not vnc_installed(paths):
        raise PreconditionError("cannot configure VNC: RealVNC server not installed")
    if require_root and os.geteuid() != 0:
        raise PreconditionError("root privileges required")
    return model


class ServiceControl:
    """Start, stop, enable and disable systemd units idempotently."""

    def __init__(self, runner: CommandRunner, console: Console) -> None:
        self.runner = runner
        self.console = console

    def is_active(self, unit: str) -> bool:
        return self.runner.succeeds(["systemctl", "is-active", "--quiet", unit])

    def is_enabled(self, unit: str) -> bool:
        return self.runner.succeeds(["systemctl", "is-enabled", "--quiet", unit])

    def ensure_running(self, unit: str, label: str, *, restart: bool = False) -> None:
        if not self.is_active(unit):
            self.console.info(f"{label} start")
            self.runner.run(["systemctl", "start", unit])
        elif restart:
            self.console.info(f"{label} restart")
            self.runner.run(["systemctl", "restart", unit])
        else:
            self.console.detail(f"{label} already started")

        if not self.is_enabled(unit):
            self.console.info(f"{label} enable")
            self.runner.run(["systemctl", "enable", unit])

    def ensure_stopped(self, unit: str, label: str) -> None:
        if self.is_enabled(unit):
            self.console.info(f"{label} disable")
            self.runner.run(["systemctl", "disable", unit])

        if self.is_active(unit):
            self.console.info(f"{label} stop")
            self.runner.run(["systemctl", "stop", unit])
        else:
            self.console.detail(f"{label} already stopped")


def render_vnc_common_custom(path: Path, obfuscated: str, *, created: datetime) -> str:
    lines = [
        "# RealVNC common custom config",
        f"# {path}",
        f"# Created by {PROGRAM} {__version__} [{created.strftime('%Y-%m-%d %H:%M:%S %Z')}]",
        "",
        "# Use standard VNC password for authentication",
        "",
        "Authentication=VncAuth",
        obfuscated.strip(),
        "",
        "#EOF",
        "",
    ]
    return "\n".join(lines)


def configure_vnc_password(
    paths: DevicePaths,
    password: str,
    runner: CommandRunner,
    console: Console,
    *,
    created: Optional[datetime] = None,
) -> None:
    if runner.dry_run:
        console.info(f"DRY-RUN: write VNC password to {paths.vnc_common_custom}")
        return
    obfuscated = runner.capture(["vncpasswd", "-print"], input_text=f"{password}\n")
    content = render_vnc_common_custom(
        paths.vnc_common_custom,
        obfuscated,
        created=created or datetime.now().astimezone(),
    )
    write_atomic(paths.vnc_common_custom, content)
    console.detail(f"VNC password written to {paths.vnc_common_custom}")


def configure_vnc_clients(
    paths: DevicePaths, *, insecure: bool, dry_run: bool, console: Console
) -> None:
    """Limit RealVNC to localhost connections unless ``insecure`` is set."""

    config = paths.vnc_x11_config
    if not config.parent.is_dir():
        raise PreconditionError(f"directory not found: {config.parent}")

    value = VNC_ANY_CLIENT if insecure else VNC_LOCALHOST_ONLY
    if dry_run:
        console.info(f"DRY-RUN: set IpClientAddresses={value} in {config}")
    else:
        ensure_statement(config, "IpClientAddresses", value)

    if insecure:
        console.warn("VNC is insecurely exposed to the network")
    else:
        console.info("VNC restricted to localhost only (connect via ssh tunnel)")


def change_hostname(etc_dir: Path, new_hostname: str, *, dry_run: bool, console: Console) -> bool:
    """Write ``/etc/hostname`` and rename the matching ``/etc/hosts`` entry."""

    hostname_file = etc_dir / "hostname"
    hosts_file = etc_dir / "hosts"
    old_hostname = hostname_file.read_text(encoding="utf-8", errors="surrogateescape").strip()
    if old_hostname == new_hostname:
        console.detail(f"hostname already {new_hostname}")
        return False
    if dry_run:
        console.info(f"DRY-RUN: hostname {old_hostname} -> {new_hostname}")
        return True

    write_atomic(hostname_file, f"{new_hostname}\n")
    if hosts_file.exists() and old_hostname:
        entry = re.compile(rf"\t{re.escape(old_hostname)}$")
        updated = []
        for line in read_lines(hosts_file):
            body = line.rstrip("\r\n")
            ending = line[len(body) :]
            updated.append(entry.sub(f"\t{new_hostname}", body) + ending)
        write_atomic(hosts_file, "".join(updated))
    console.info(f"hostname: {new_hostname} (takes effect after reboot)")
    return True


def run_device_setup(
    settings: DeviceSettings,
    paths: DevicePaths,
    runner: CommandRunner,
    console: Console,
) -> None:
    services = ServiceControl(runner, console)

    if settings.enable_ssh:
        services.ensure_running(SSHD_SERVICE, "sshd")
    else:
        services.ensure_stopped(SSHD_SERVICE, "sshd")

    if settings.enable_vnc:
        if not settings.vnc_password:
            raise PreconditionError("VNC password required to configure VNC")
        configure_vnc_password(paths, settings.vnc_password, runner, console)
        configure_vnc_clients(
            paths, insecure=settings.insecure_vnc, dry_run=runner.dry_run, console=console
        )
        services.ensure_running(VNCSERVER_SERVICE, "vncserver", restart=True)
    elif vnc_installed(paths):
        services.ensure_stopped(VNCSERVER_SERVICE, "vncserver")

    if settings.hostname:
        change_hostname(paths.etc_dir, settings.hostname, dry_run=runner.dry_run, console=console)


def collect_status(paths: DevicePaths, runner: CommandRunner) -> dict[str, str]:
    """Summarise hostname, addresses and service state for ``status``."""

    services = ServiceControl(runner, Console(quiet=True))
    status: dict[str, str] = {}

    running_name = socket.gethostname()
    try:
        hostname_file = paths.etc_dir / "hostname"
        configured = hostname_file.read_text(encoding="utf-8", errors="surrogateescape").strip()
    except OSError:
        configured = running_name
    if configured == running_name:
        status["hostname"] = running_name
    else:
        status["hostname"] = f'{running_name} (config: "{configured}")'

    try:
        status["IP address"] = runner.capture(["hostname", "-I"]).strip() or "none"
    except (CommandError, OSError):
        status["IP address"] = "unknown"

    def describe(unit: str) -> str:
        run_state = "active" if services.is_active(unit) else "stopped"
        enable_state = "enabled" if services.is_enabled(unit) else "disabled"
        return f"{run_state}; {enable_state}"

    status["vncservice"] = describe(VNCSERVER_SERVICE) if vnc_installed(paths) else "not installed"
    status["sshd"] = describe(SSHD_SERVICE)
    status["device"] = read_device_model(paths) or "not a Raspberry Pi"
    return status


def format_status(status: Mapping[str, str]) -> str:
    width = max(len(key) for key in status)
    return "\n".join(f"{key.rjust(width)}: {value}" for key, value in status.items())


__all__ = [
    "DevicePaths",
    "SSHD_SERVICE",
    "ServiceControl",
    "VNCSERVER_SERVICE",
    "change_hostname",
    "check_device",
    "collect_status",
    "configure_vnc_clients",
    "configure_vnc_password",
    "format_status",
    "read_device_model",
    "render_vnc_common_custom",
    "run_device_setup",
    "vnc_installed",
]
