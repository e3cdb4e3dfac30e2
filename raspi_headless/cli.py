"""Entry points for the raspi-headless CLI."""

from __future__ import annotations

import argparse
import getpass
import sys
from pathlib import Path
from typing import Optional, Sequence

from . import __version__, provision, services
from .console import PROGRAM, Console, make_console
from .errors import HeadlessError, UsageError
from .hdmi import DEFAULT_RESOLUTION
from .runner import CommandError, CommandRunner
from .settings import (
    DEFAULT_HOSTNAME,
    DEFAULT_PI_PASSWORD,
    DEFAULT_VNC_PASSWORD,
    build_device_settings,
    build_settings,
    load_profile,
)

BOOT_EPILOG = """\
HDMI resolutions: "0" to auto-detect, or "hdmi_group/hdmi_mode":
  e.g. 1/4=720p, 1/16=1080p, 2/16=1024x768, 2/35=1280x1024, 2/51=1600x1200
"""


def _add_verbosity(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Output nothing unless an error occurs.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Output extra information when running (overrides --quiet).",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROGRAM,
        description="Configure Raspberry Pi OS for headless use: Wi-Fi, SSH, VNC and HDMI.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"{PROGRAM} {__version__}",
    )
    parser.set_defaults(handler=None)

    subparsers = parser.add_subparsers(dest="command")

    boot_parser = subparsers.add_parser(
        "boot",
        help="Prepare an imaged microSD card's boot partition before first boot.",
        epilog=BOOT_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    boot_parser.add_argument("ssid", nargs="?", help="Wi-Fi network name (case-sensitive).")
    boot_parser.add_argument(
        "--config",
        help="TOML profile providing defaults for any of these options.",
    )
    boot_parser.add_argument(
        "-p",
        "--pi-password",
        help=f"pi user account password (default: {DEFAULT_PI_PASSWORD}).",
    )
    boot_parser.add_argument(
        "-P",
        "--pi-password-file",
        help="Read the pi user account password from the first line of a file.",
    )
    boot_parser.add_argument(
        "-k",
        "--pi-pubkey",
        help="SSH public key installed in the pi user's authorized_keys.",
    )
    boot_parser.add_argument(
        "--no-pubkey",
        action="store_true",
        help="Do not configure .ssh/authorized_keys.",
    )
    boot_parser.add_argument(
        "-n",
        "--hostname",
        help=f"Pi's hostname (default: {DEFAULT_HOSTNAME}).",
    )
    boot_parser.add_argument("-t", "--timezone", help="Timezone such as Europe/Berlin.")
    boot_parser.add_argument("-l", "--locale", help="Locale such as en_AU.UTF-8.")
    boot_parser.add_argument("-c", "--country", help="Two letter ISO 3166-1 Wi-Fi country.")
    boot_parser.add_argument(
        "-s",
        "--ssid-passphrase",
        help="Wi-Fi plaintext passphrase.",
    )
    boot_parser.add_argument(
        "-S",
        "--ssid-passphrase-file",
        help="Read the Wi-Fi passphrase from the first line of a file.",
    )
    boot_parser.add_argument(
        "-d",
        "--psk",
        help="Wi-Fi PSK as 64 hexadecimal characters.",
    )
    boot_parser.add_argument(
        "--plaintext-psk",
        action="store_true",
        help="Store the passphrase itself instead of the derived PSK.",
    )
    boot_parser.add_argument(
        "--no-wifi",
        action="store_true",
        help="Do not configure Wi-Fi.",
    )
    boot_parser.add_argument(
        "-g",
        "--vnc-password",
        help=f"VNC password, 6-8 characters (default: {DEFAULT_VNC_PASSWORD}).",
    )
    boot_parser.add_argument(
        "-G",
        "--vnc-password-file",
        help="Read the VNC password from the first line of a file.",
    )
    boot_parser.add_argument(
        "--no-vnc",
        action="store_true",
        help="Do not attempt to configure the VNC server.",
    )
    boot_parser.add_argument(
        "-r",
        "--hdmi",
        help=f"hdmi_group and hdmi_mode (default: {DEFAULT_RESOLUTION}).",
    )
    boot_parser.add_argument(
        "--no-hdmi",
        action="store_true",
        help="Do not configure HDMI.",
    )
    boot_parser.add_argument(
        "-b",
        "--boot",
        help="Mount point of the Raspberry Pi boot partition.",
    )
    boot_parser.add_argument(
        "--no-cmdline-update",
        action="store_true",
        help="Write the init script but do not reference it from cmdline.txt.",
    )
    _add_verbosity(boot_parser)
    boot_parser.set_defaults(handler=_handle_boot)

    device_parser = subparsers.add_parser(
        "device",
        help="Configure SSH and VNC on the Raspberry Pi this runs on.",
    )
    device_parser.add_argument(
        "--config",
        help="TOML profile providing defaults for these options.",
    )
    device_parser.add_argument(
        "-p",
        "--password",
        help="VNC password to use instead of prompting for it.",
    )
    device_parser.add_argument(
        "--insecure-vnc",
        action="store_true",
        help="Do not restrict VNC access to localhost.",
    )
    device_parser.add_argument(
        "--no-vnc",
        action="store_true",
        help="Disable and stop VNC (default: run and enable).",
    )
    device_parser.add_argument(
        "-n",
        "--hostname",
        help="Change the hostname (default: no change).",
    )
    device_parser.add_argument(
        "--no-ssh",
        action="store_true",
        help="Disable and stop the SSH server (default: run and enable).",
    )
    device_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the changes without applying them.",
    )
    _add_verbosity(device_parser)
    device_parser.set_defaults(handler=_handle_device)

    status_parser = subparsers.add_parser(
        "status",
        help="Show hostname, addresses and SSH/VNC service state.",
    )
    status_parser.set_defaults(handler=_handle_status)

    return parser


def _profile_from(args: argparse.Namespace) -> Optional[dict]:
    if not args.config:
        return None
    return load_profile(Path(args.config).expanduser())


def _handle_boot(args: argparse.Namespace) -> int:
    settings = build_settings(args, profile=_profile_from(args), prompt=getpass.getpass)
    console = make_console(quiet=settings.quiet, verbose=settings.verbose)
    provision.run_setup(settings, console)
    return 0


def _handle_device(args: argparse.Namespace) -> int:
    profile = _profile_from(args)
    console = make_console(quiet=args.quiet, verbose=args.verbose)
    paths = services.DevicePaths.from_env()
    want_vnc = not args.no_vnc and bool((profile or {}).get("device", {}).get("vnc", True))
    services.check_device(paths, want_vnc=want_vnc, require_root=not args.dry_run)

    settings = build_device_settings(args, profile=profile, prompt=getpass.getpass)
    runner = CommandRunner(dry_run=settings.dry_run, echo=console.info)
    services.run_device_setup(settings, paths, runner, console)
    return 0


def _handle_status(args: argparse.Namespace) -> int:
    paths = services.DevicePaths.from_env()
    status = services.collect_status(paths, CommandRunner())
    print("Status:")
    print(services.format_status(status))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help(sys.stderr)
        return UsageError.exit_code

    try:
        return handler(args)
    except UsageError as exc:
        print(f"{PROGRAM}: usage error: {exc}", file=sys.stderr)
        return exc.exit_code
    except HeadlessError as exc:
        Console().error(str(exc))
        return exc.exit_code
    except (CommandError, OSError, UnicodeError) as exc:
        print(f"{PROGRAM}: aborted: {exc}", file=sys.stderr)
        return 3
