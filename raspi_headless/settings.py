"""Validated, immutable settings assembled from flags, profiles and defaults.

Every value a run needs is resolved here, once, before any file is touched:
command-line flags win over a TOML profile (``--config``), which wins over the
built-in defaults. Secrets may come from the command line, from the first
line of a file, or from an interactive prompt.
"""

from __future__ import annotations

import argparse
import getpass
import os
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError as exc:  # pragma: no cover - Python < 3.11 guard
    raise SystemExit("python 3.11+ is required to load TOML profiles") from exc

from .errors import PreconditionError, UsageError
from .hdmi import DEFAULT_RESOLUTION, HdmiSettings, parse_resolution
from .init_script import PUBKEY_DELIMITER
from .wifi import WifiConfig, build_wifi_config, passphrase_problem

DEFAULT_HOSTNAME = "raspberrypi"
DEFAULT_PI_PASSWORD = "raspberry"
# VNC passwords are at most 8 characters; security comes from the
# localhost-only restriction instead.
DEFAULT_VNC_PASSWORD = "password"
DEFAULT_PUBKEY_NAMES = ("id_ed25519.pub", "id_rsa.pub")

VNC_PASSWORD_MIN = 6
VNC_PASSWORD_MAX = 8

_LANG_COUNTRY = re.compile(r"^[a-z][a-z]_([A-Z][A-Z])\.")
_TIMEZONE = re.compile(r"^[0-9A-Za-z_+-]+/[0-9A-Za-z_+-]+$")
_LOCALE = re.compile(r"^[A-Za-z0-9_.@-]+$")
_HOSTNAME_CHARS = re.compile(r"^[0-9A-Za-z-]*$")

Prompt = Callable[[str], str]
Profile = Mapping[str, Mapping[str, Any]]


@dataclass(frozen=True)
class HeadlessSettings:
    """Everything a boot partition run writes."""

    boot_dir: Optional[Path]
    wifi: Optional[WifiConfig]
    hdmi: Optional[HdmiSettings]
    pi_password: str
    hostname: str
    ssh_public_key: Optional[str] = None
    ssh_public_key_path: Optional[Path] = None
    timezone: Optional[str] = None
    locale: Optional[str] = None
    vnc_password: Optional[str] = None
    update_cmdline: bool = True
    quiet: bool = False
    verbose: bool = False

    @property
    def uses_default_password(self) -> bool:
        return self.pi_password == DEFAULT_PI_PASSWORD


@dataclass(frozen=True)
class DeviceSettings:
    """Options for configuring SSH and VNC on a running Raspberry Pi."""

    enable_ssh: bool = True
    enable_vnc: bool = True
    vnc_password: Optional[str] = None
    insecure_vnc: bool = False
    hostname: Optional[str] = None
    dry_run: bool = False
    quiet: bool = False
    verbose: bool = False


# Defaults derived from the host computer


def default_country(environ: Mapping[str, str] = os.environ) -> Optional[str]:
    """``en_AU.UTF-8`` in ``LANG`` yields ``AU``."""

    match = _LANG_COUNTRY.match(environ.get("LANG", ""))
    return match.group(1) if match else None


def default_locale(environ: Mapping[str, str] = os.environ) -> Optional[str]:
    return environ.get("LANG") or None


def default_timezone(localtime: Path = Path("/etc/localtime")) -> Optional[str]:
    if not localtime.is_symlink():
        return None
    target = Path(os.readlink(localtime))
    if not target.parent.name or target.parent.name == "zoneinfo":
        return None
    return f"{target.parent.name}/{target.name}"


def default_pubkey(home: Optional[Path] = None) -> Optional[Path]:
    ssh_dir = (home or Path.home()) / ".ssh"
    for name in DEFAULT_PUBKEY_NAMES:
        candidate = ssh_dir / name
        if candidate.is_file() and os.access(candidate, os.R_OK):
            return candidate
    return None


# Validation


def validate_hostname(hostname: str) -> str:
    if not hostname:
        raise UsageError("hostname cannot be an empty string")
    if not hostname[0].isascii() or not hostname[0].isalpha():
        raise UsageError(f"hostname must start with a letter: {hostname}")
    if len(hostname) > 1 and hostname.endswith("-"):
        raise UsageError(f"hostname cannot end with a hyphen: {hostname}")
    if not _HOSTNAME_CHARS.match(hostname):
        raise UsageError(f"hostname has unexpected characters: {hostname}")
    if len(hostname) > 63:
        raise UsageError(f"hostname too long: {hostname}")
    return hostname


def validate_timezone(timezone: str) -> str:
    if not _TIMEZONE.match(timezone):
        raise UsageError(f"invalid timezone (expecting name/name): {timezone}")
    return timezone


def validate_locale(locale: str) -> str:
    if not locale:
        raise UsageError("locale cannot be an empty string")
    if not _LOCALE.match(locale):
        raise UsageError(f"locale has unexpected characters: {locale}")
    return locale


def vnc_password_problem(password: str) -> Optional[str]:
    if not VNC_PASSWORD_MIN <= len(password) <= VNC_PASSWORD_MAX:
        return f"wrong length (must be {VNC_PASSWORD_MIN} to {VNC_PASSWORD_MAX} characters)"
    return None


def read_secret_file(path: Path, *, label: str, allow_empty: bool = False) -> str:
    """Return the first line of ``path`` without its line ending."""

    if not path.is_file() or not os.access(path, os.R_OK):
        raise UsageError(f"cannot read {label} file: {path}")
    text = path.read_text(encoding="utf-8")
    lines = text.splitlines()
    value = lines[0] if lines else ""
    if not value and not allow_empty:
        raise UsageError(f"no {label} in file: {path}")
    return value


# Profiles


def _expand_path(value: str, *, base: Path) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = (base / path).resolve()
    return path


def load_profile(path: Path) -> dict[str, dict[str, Any]]:
    """Load a TOML profile, resolving ``*_file``/``dir``/``pubkey`` paths."""

    if not path.is_file():
        raise UsageError(f"profile not found: {path}")
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise UsageError(f"invalid profile {path}: {exc}") from exc

    base_dir = path.parent
    profile: dict[str, dict[str, Any]] = {}
    for section_name in ("boot", "wifi", "hdmi", "vnc", "device"):
        section = data.get(section_name, {})
        if not isinstance(section, dict):
            raise UsageError(f"profile section [{section_name}] must be a table")
        resolved: dict[str, Any] = {}
        for key, value in section.items():
            if isinstance(value, str) and (key.endswith("_file") or key in {"dir", "pubkey"}):
                resolved[key] = _expand_path(value, base=base_dir)
            else:
                resolved[key] = value
        profile[section_name] = resolved
    return profile


def _section(profile: Optional[Profile], name: str) -> Mapping[str, Any]:
    if not profile:
        return {}
    return profile.get(name, {})


def _pick(cli_value: Any, section: Mapping[str, Any], key: str, default: Any = None) -> Any:
    if cli_value is not None:
        return cli_value
    if key in section:
        return section[key]
    return default


def _enabled(disabled_flag: bool, section: Mapping[str, Any]) -> bool:
    if disabled_flag:
        return False
    return bool(section.get("enabled", True))


def _path_or_none(value: Any) -> Optional[Path]:
    if value is None or value == "":
        return None
    return Path(value)


# Prompts


def prompt_secret(
    label: str,
    check: Callable[[str], Optional[str]],
    *,
    prompt: Prompt = getpass.getpass,
) -> str:
    """Prompt without echo until ``check`` accepts the answer."""

    while True:
        try:
            value = prompt(f"{label}: ")
        except (EOFError, KeyboardInterrupt) as exc:
            print(file=sys.stderr)
            raise PreconditionError("aborted") from exc
        problem = check(value)
        if problem is None:
            return value
        print(f"Error: {problem}", file=sys.stderr)


# Boot partition settings


def _resolve_pi_password(args: argparse.Namespace, boot: Mapping[str, Any]) -> str:
    if args.pi_password == "":
        raise UsageError("pi user password cannot be an empty string")
    password_file = _path_or_none(_pick(args.pi_password_file, boot, "pi_password_file"))
    if password_file is not None:
        if args.pi_password:
            raise UsageError("multiple pi user passwords provided")
        return read_secret_file(password_file, label="pi user password")
    if args.pi_password:
        return args.pi_password
    return DEFAULT_PI_PASSWORD


def _resolve_pubkey(
    args: argparse.Namespace, boot: Mapping[str, Any], home: Optional[Path]
) -> tuple[Optional[Path], Optional[str]]:
    if args.no_pubkey or boot.get("pubkey") is False:
        if args.pi_pubkey:
            raise UsageError("--pi-pubkey cannot be combined with --no-pubkey")
        return None, None
    pubkey_value = _pick(args.pi_pubkey, boot, "pubkey")
    path = _path_or_none(pubkey_value) if pubkey_value is not None else default_pubkey(home)
    if path is None:
        return None, None
    if not path.is_file() or not os.access(path, os.R_OK):
        raise UsageError(f"SSH public key file not found: {path}")
    content = path.read_text(encoding="utf-8").strip()
    if not content:
        raise UsageError(f"SSH public key file is empty: {path}")
    if any(line.strip() == PUBKEY_DELIMITER for line in content.splitlines()):
        raise UsageError(f"SSH public key file contains a {PUBKEY_DELIMITER} line: {path}")
    return path, content


def _resolve_wifi(
    args: argparse.Namespace,
    wifi: Mapping[str, Any],
    environ: Mapping[str, str],
    prompt: Prompt,
) -> Optional[WifiConfig]:
    passphrase_file = _path_or_none(_pick(args.ssid_passphrase_file, wifi, "passphrase_file"))
    psk = _pick(args.psk, wifi, "psk")

    if not _enabled(args.no_wifi, wifi):
        if args.ssid_passphrase or args.ssid_passphrase_file or args.psk:
            raise UsageError("Wi-Fi passwords not needed with --no-wifi")
        return None

    if args.ssid_passphrase == "":
        raise UsageError("Wi-Fi passphrase cannot be an empty string")

    ssid = _pick(args.ssid, wifi, "ssid")
    if not ssid:
        raise UsageError("missing Wi-Fi SSID (-h for help)")
    country = _pick(args.country, wifi, "country", default_country(environ))
    if not country:
        raise UsageError("missing Wi-Fi country code")

    sources = [
        value for value in (args.ssid_passphrase, passphrase_file, psk) if value is not None
    ]
    if len(sources) > 1:
        raise UsageError("multiple Wi-Fi passwords provided")

    passphrase: Optional[str] = args.ssid_passphrase
    if passphrase_file is not None:
        passphrase = read_secret_file(
            passphrase_file, label="Wi-Fi passphrase", allow_empty=True
        )
    if psk is None and passphrase is None:
        passphrase = prompt_secret(
            f'Wi-Fi password for "{ssid}"', passphrase_problem, prompt=prompt
        )

    hash_passphrase = not (args.plaintext_psk or wifi.get("hash_passphrase") is False)
    return build_wifi_config(
        str(ssid),
        str(country),
        psk=str(psk) if psk is not None else None,
        passphrase=passphrase,
        hash_passphrase=hash_passphrase,
    )


def _resolve_vnc_password(args: argparse.Namespace, vnc: Mapping[str, Any]) -> Optional[str]:
    password_file = _path_or_none(_pick(args.vnc_password_file, vnc, "password_file"))
    if not _enabled(args.no_vnc, vnc):
        if args.vnc_password or args.vnc_password_file:
            raise UsageError("VNC password provided when using --no-vnc")
        return None
    if args.vnc_password == "":
        raise UsageError("VNC password cannot be an empty string")
    if password_file is not None:
        if args.vnc_password:
            raise UsageError("multiple VNC passwords provided")
        password = read_secret_file(password_file, label="VNC password")
    else:
        password = args.vnc_password or DEFAULT_VNC_PASSWORD
    problem = vnc_password_problem(password)
    if problem:
        raise UsageError(f"VNC password: {problem}")
    return password


def _resolve_hdmi(args: argparse.Namespace, hdmi: Mapping[str, Any]) -> Optional[HdmiSettings]:
    if not _enabled(args.no_hdmi, hdmi):
        return None
    resolution = _pick(args.hdmi, hdmi, "resolution", DEFAULT_RESOLUTION)
    return parse_resolution(str(resolution))


def build_settings(
    args: argparse.Namespace,
    *,
    profile: Optional[Profile] = None,
    environ: Mapping[str, str] = os.environ,
    prompt: Prompt = getpass.getpass,
    home: Optional[Path] = None,
    localtime: Path = Path("/etc/localtime"),
) -> HeadlessSettings:
    """Validate the ``boot`` sub-command options into :class:`HeadlessSettings`."""

    boot = _section(profile, "boot")

    hostname = validate_hostname(str(_pick(args.hostname, boot, "hostname", DEFAULT_HOSTNAME)))

    timezone = _pick(args.timezone, boot, "timezone", default_timezone(localtime))
    if timezone:
        timezone = validate_timezone(str(timezone))

    locale = _pick(args.locale, boot, "locale", default_locale(environ))
    if locale is not None:
        locale = validate_locale(str(locale))

    pi_password = _resolve_pi_password(args, boot)
    pubkey_path, pubkey = _resolve_pubkey(args, boot, home)
    vnc_password = _resolve_vnc_password(args, _section(profile, "vnc"))
    hdmi = _resolve_hdmi(args, _section(profile, "hdmi"))
    wifi = _resolve_wifi(args, _section(profile, "wifi"), environ, prompt)

    update_cmdline = not args.no_cmdline_update and bool(boot.get("cmdline_update", True))
    boot_dir = _path_or_none(_pick(args.boot, boot, "dir"))

    return HeadlessSettings(
        boot_dir=boot_dir,
        wifi=wifi,
        hdmi=hdmi,
        pi_password=pi_password,
        hostname=hostname,
        ssh_public_key=pubkey,
        ssh_public_key_path=pubkey_path,
        timezone=timezone or None,
        locale=locale,
        vnc_password=vnc_password,
        update_cmdline=update_cmdline,
        quiet=bool(args.quiet) and not args.verbose,
        verbose=bool(args.verbose),
    )


def build_device_settings(
    args: argparse.Namespace,
    *,
    profile: Optional[Profile] = None,
    prompt: Prompt = getpass.getpass,
) -> DeviceSettings:
    """Validate the ``device`` sub-command options into :class:`DeviceSettings`.

    The VNC password is prompted for when VNC stays enabled and none was given.
    """

    device = _section(profile, "device")
    enable_vnc = not args.no_vnc and bool(device.get("vnc", True))
    enable_ssh = not args.no_ssh and bool(device.get("ssh", True))

    password = args.password
    if password is not None:
        if not enable_vnc:
            raise UsageError("cannot use both --password and --no-vnc")
        problem = vnc_password_problem(password)
        if problem:
            raise UsageError(f"VNC password: {problem}")
    elif enable_vnc:
        password_file = _path_or_none(device.get("vnc_password_file"))
        if password_file is not None:
            password = read_secret_file(password_file, label="VNC password")
            problem = vnc_password_problem(password)
            if problem:
                raise UsageError(f"VNC password: {problem}")
        else:
            password = prompt_secret("VNC password", vnc_password_problem, prompt=prompt)

    hostname = _pick(args.hostname, device, "hostname")
    if hostname is not None:
        hostname = validate_hostname(str(hostname))

    return DeviceSettings(
        enable_ssh=enable_ssh,
        enable_vnc=enable_vnc,
        vnc_password=password if enable_vnc else None,
        insecure_vnc=bool(args.insecure_vnc or device.get("insecure_vnc", False)),
        hostname=hostname,
        dry_run=bool(args.dry_run),
        quiet=bool(args.quiet) and not args.verbose,
        verbose=bool(args.verbose),
    )


__all__ = [
    "DEFAULT_HOSTNAME",
    "DEFAULT_PI_PASSWORD",
    "DEFAULT_VNC_PASSWORD",
    "DeviceSettings",
    "HeadlessSettings",
    "build_device_settings",
    "build_settings",
    "default_country",
    "default_locale",
    "default_pubkey",
    "default_timezone",
    "load_profile",
    "prompt_secret",
    "read_secret_file",
    "validate_hostname",
    "validate_locale",
    "validate_timezone",
    "vnc_password_problem",
]
