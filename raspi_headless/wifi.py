"""Wi-Fi credentials and ``wpa_supplicant.conf`` rendering for headless boots."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Optional

from .errors import UsageError

WPA_SUPPLICANT_NAME = "wpa_supplicant.conf"
PASSPHRASE_MIN = 8
PASSPHRASE_MAX = 63

_COUNTRY = re.compile(r"^[A-Z]{2}$")
_HEX_PSK = re.compile(r"^[0-9A-Fa-f]{64}$")


@dataclass(frozen=True)
class WifiConfig:
    """Network block written to the boot partition.

    Exactly one of ``psk`` (64 hex characters) or ``passphrase`` is set.
    """

    ssid: str
    country: str
    psk: Optional[str] = None
    passphrase: Optional[str] = None

    def psk_entry(self) -> str:
        if self.psk:
            # Unquoted value: wpa_supplicant reads it as a hex PSK.
            return f"psk={self.psk}"
        return f'psk="{self.passphrase}"'


def derive_psk(ssid: str, passphrase: str) -> str:
    """Derive the 256-bit WPA PSK the way ``wpa_passphrase`` does."""

    key = hashlib.pbkdf2_hmac(
        "sha1",
        passphrase.encode("utf-8"),
        ssid.encode("utf-8"),
        4096,
        dklen=32,
    )
    return key.hex()


def normalize_country(value: Optional[str]) -> str:
    if not value:
        raise UsageError("missing Wi-Fi country code")
    country = value.strip().upper()
    if not _COUNTRY.match(country):
        raise UsageError(f'bad two-letter country code: "{country}"')
    return country


def validate_psk(value: str) -> str:
    if not _HEX_PSK.match(value):
        raise UsageError("--psk value must be 64 hexadecimal chars")
    return value.lower()


def passphrase_problem(passphrase: str) -> Optional[str]:
    """Return why ``passphrase`` is unusable, or ``None`` when it is fine."""

    if not PASSPHRASE_MIN <= len(passphrase) <= PASSPHRASE_MAX:
        return f"wrong length (must be {PASSPHRASE_MIN} to {PASSPHRASE_MAX} characters)"
    if any(ord(char) < 32 or ord(char) > 126 for char in passphrase):
        return "passphrase must only contain printable ASCII characters"
    return None


def validate_ssid(ssid: str) -> str:
    if not ssid:
        raise UsageError("missing Wi-Fi SSID")
    if len(ssid.encode("utf-8")) > 32:
        raise UsageError(f"Wi-Fi SSID longer than 32 bytes: {ssid}")
    if any(char in ssid for char in '"\r\n'):
        raise UsageError(f"Wi-Fi SSID contains unsupported characters: {ssid!r}")
    return ssid


def build_wifi_config(
    ssid: str,
    country: str,
    *,
    psk: Optional[str] = None,
    passphrase: Optional[str] = None,
    hash_passphrase: bool = True,
) -> WifiConfig:
    ssid = validate_ssid(ssid)
    country = normalize_country(country)
    if psk:
        return WifiConfig(ssid=ssid, country=country, psk=validate_psk(psk))
    if passphrase is None:
        raise UsageError(f'no Wi-Fi passphrase for "{ssid}"')
    problem = passphrase_problem(passphrase)
    if problem:
        raise UsageError(f"Wi-Fi passphrase: {problem}")
    if hash_passphrase:
        return WifiConfig(ssid=ssid, country=country, psk=derive_psk(ssid, passphrase))
    return WifiConfig(ssid=ssid, country=country, passphrase=passphrase)


def render_wpa_supplicant(config: WifiConfig) -> str:
    lines = [
        "ctrl_interface=DIR=/var/run/wpa_supplicant GROUP=netdev",
        "update_config=1",
        f"country={config.country}",
        "",
        "network={",
        "  scan_ssid=1",
        f'  ssid="{config.ssid}"',
        f"  {config.psk_entry()}",
        "}",
        "",
    ]
    return "\n".join(lines)


__all__ = [
    "PASSPHRASE_MAX",
    "PASSPHRASE_MIN",
    "WPA_SUPPLICANT_NAME",
    "WifiConfig",
    "build_wifi_config",
    "derive_psk",
    "normalize_country",
    "passphrase_problem",
    "render_wpa_supplicant",
    "validate_psk",
    "validate_ssid",
]
