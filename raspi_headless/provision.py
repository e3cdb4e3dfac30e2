"""Prepare a Raspberry Pi OS boot partition for a headless first boot."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Optional

from . import boot
from .config_patch import write_atomic
from .console import Console
from .hdmi import apply_hdmi
from .init_script import PI_USERNAME, render_init_script
from .settings import DEFAULT_PI_PASSWORD, HeadlessSettings
from .wifi import WPA_SUPPLICANT_NAME, render_wpa_supplicant


def _configure_wifi(
    settings: HeadlessSettings, boot_dir: Path, booted: bool, console: Console
) -> None:
    wifi_conf = boot_dir / WPA_SUPPLICANT_NAME
    if settings.wifi is not None:
        write_atomic(wifi_conf, render_wpa_supplicant(settings.wifi))
        console.info(str(wifi_conf))
        console.detail(f"SSID={settings.wifi.ssid} (country: {settings.wifi.country})")
        return

    if wifi_conf.exists():
        wifi_conf.unlink()
        console.info(f"deleted: {wifi_conf}")
    if booted:
        # Raspberry Pi OS moves wpa_supplicant.conf off the boot partition on
        # first boot, so deleting it here does not undo an earlier setup.
        console.warn("already booted: Wi-Fi may have been configured")


def _configure_ssh(boot_dir: Path, console: Console) -> None:
    marker = boot.enable_ssh(boot_dir)
    console.info(str(marker))
    console.detail("sshd will be enabled")


def _configure_hdmi(settings: HeadlessSettings, boot_dir: Path, console: Console) -> None:
    if settings.hdmi is None:
        return
    config_file = boot_dir / boot.CONFIG_NAME
    apply_hdmi(config_file, settings.hdmi)
    console.info(str(config_file))
    console.detail(f"hdmi_force_hotplug: {settings.hdmi.force_hotplug or ''}")
    console.detail(f"HDMI group/mode: {settings.hdmi.group}/{settings.hdmi.mode or ''}")


def _write_init_script(
    settings: HeadlessSettings,
    boot_dir: Path,
    booted: bool,
    console: Console,
    created: Optional[datetime],
) -> Path:
    init_file = boot_dir / boot.INIT_SCRIPT_NAME
    console.info(str(init_file))

    if settings.uses_default_password:
        console.detail(f"{PI_USERNAME} user: using default password ({DEFAULT_PI_PASSWORD})")
    else:
        console.detail(f"{PI_USERNAME} user: password will be set")

    if settings.ssh_public_key_path is not None:
        console.detail(f"{PI_USERNAME} user: SSH public key: {settings.ssh_public_key_path}")
    elif booted:
        console.warn("already booted: .ssh/authorized_keys may exist")

    console.detail(f"hostname: {settings.hostname} (mDNS name: {settings.hostname}.local)")
    if settings.timezone:
        console.detail(f"timezone: {settings.timezone}")
    if settings.locale:
        console.detail(f"locale: {settings.locale}")

    if settings.vnc_password:
        console.detail("VNC server will be configured (if it is installed)")
    else:
        console.detail("VNC server will NOT be configured")
        if booted:
            console.warn("already booted: VNC server may have been configured")

    write_atomic(init_file, render_init_script(settings, created=created))
    return init_file


def run_setup(
    settings: HeadlessSettings,
    console: Console,
    *,
    created: Optional[datetime] = None,
) -> Path:
    """Apply ``settings`` to the boot partition and return its location."""

    boot_dir = boot.resolve_boot_dir(settings.boot_dir)
    boot.check_writable(boot_dir)
    booted = boot.already_booted(boot_dir)

    _configure_wifi(settings, boot_dir, booted, console)
    _configure_ssh(boot_dir, console)
    _configure_hdmi(settings, boot_dir, console)
    _write_init_script(settings, boot_dir, booted, console, created)

    if settings.update_cmdline:
        boot.update_cmdline(boot_dir)
        console.info(str(boot_dir / boot.CMDLINE_NAME))
    else:
        console.detail(f"{boot.CMDLINE_NAME} not updated: init script will not run on boot")

    return boot_dir


__all__ = ["run_setup"]
