from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

import pytest

from raspi_headless import settings as settings_mod
from raspi_headless.cli import build_parser
from raspi_headless.errors import PreconditionError, UsageError
from raspi_headless.hdmi import HdmiSettings
from raspi_headless.wifi import derive_psk

ENVIRON = {"LANG": "en_AU.UTF-8"}


def _args(*argv: str):
    return build_parser().parse_args(list(argv))


def _no_prompt(label: str) -> str:
    raise AssertionError(f"unexpected prompt: {label}")


def _scripted(answers: Iterable[str]):
    pending = list(answers)

    def prompt(label: str) -> str:
        if not pending:
            raise EOFError
        return pending.pop(0)

    return prompt


def _build(args, tmp_path: Path, **kwargs):
    kwargs.setdefault("environ", ENVIRON)
    kwargs.setdefault("prompt", _no_prompt)
    kwargs.setdefault("home", tmp_path / "home")
    kwargs.setdefault("localtime", tmp_path / "no-localtime")
    return settings_mod.build_settings(args, **kwargs)


def test_boot_defaults(tmp_path: Path) -> None:
    result = _build(_args("boot", "Home", "-s", "password1"), tmp_path)

    assert result.hostname == "raspberrypi"
    assert result.pi_password == "raspberry"
    assert result.uses_default_password
    assert result.vnc_password == "password"
    assert result.hdmi == HdmiSettings(group="2", mode="35", force_hotplug="1")
    assert result.locale == "en_AU.UTF-8"
    assert result.timezone is None
    assert result.ssh_public_key is None
    assert result.update_cmdline is True
    assert result.wifi is not None
    assert result.wifi.country == "AU"
    assert result.wifi.psk == derive_psk("Home", "password1")


def test_default_pubkey_prefers_ed25519(tmp_path: Path) -> None:
    ssh_dir = tmp_path / ".ssh"
    ssh_dir.mkdir()
    (ssh_dir / "id_rsa.pub").write_text("ssh-rsa AAAA rsa\n", encoding="utf-8")
    assert settings_mod.default_pubkey(tmp_path) == ssh_dir / "id_rsa.pub"

    (ssh_dir / "id_ed25519.pub").write_text("ssh-ed25519 AAAA ed\n", encoding="utf-8")
    assert settings_mod.default_pubkey(tmp_path) == ssh_dir / "id_ed25519.pub"


def test_pubkey_is_read_from_home(tmp_path: Path) -> None:
    ssh_dir = tmp_path / "home" / ".ssh"
    ssh_dir.mkdir(parents=True)
    (ssh_dir / "id_rsa.pub").write_text("ssh-rsa AAAA me@host\n", encoding="utf-8")

    result = _build(_args("boot", "--no-wifi"), tmp_path)
    assert result.ssh_public_key == "ssh-rsa AAAA me@host"

    result = _build(_args("boot", "--no-wifi", "--no-pubkey"), tmp_path)
    assert result.ssh_public_key is None


def test_default_timezone_from_symlink(tmp_path: Path) -> None:
    berlin = tmp_path / "berlin"
    os.symlink("/usr/share/zoneinfo/Europe/Berlin", berlin)
    utc = tmp_path / "utc"
    os.symlink("/usr/share/zoneinfo/UTC", utc)

    assert settings_mod.default_timezone(berlin) == "Europe/Berlin"
    assert settings_mod.default_timezone(utc) is None
    assert settings_mod.default_timezone(tmp_path / "missing") is None


@pytest.mark.parametrize(
    ("lang", "expected"),
    [("en_AU.UTF-8", "AU"), ("de_DE.UTF-8", "DE"), ("C", None), ("", None)],
)
def test_default_country(lang: str, expected) -> None:
    assert settings_mod.default_country({"LANG": lang}) == expected


@pytest.mark.parametrize("hostname", ["", "1pi", "pi-", "pi_zero", "a" * 64])
def test_invalid_hostnames(hostname: str) -> None:
    with pytest.raises(UsageError):
        settings_mod.validate_hostname(hostname)


def test_invalid_timezone_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(UsageError, match="timezone"):
        _build(_args("boot", "--no-wifi", "-t", "Berlin"), tmp_path)


@pytest.mark.parametrize(
    ("argv", "message"),
    [
        (["boot", "Home", "-s", "password1", "-d", "ab" * 32], "multiple Wi-Fi passwords"),
        (["boot", "--no-wifi", "-s", "password1"], "not needed with --no-wifi"),
        (["boot", "-s", "password1"], "missing Wi-Fi SSID"),
        (["boot", "Home", "-s", ""], "cannot be an empty string"),
        (["boot", "--no-wifi", "--no-vnc", "-g", "secret1"], "--no-vnc"),
        (["boot", "--no-wifi", "-g", "abc"], "wrong length"),
        (["boot", "--no-wifi", "-p", ""], "cannot be an empty string"),
        (["boot", "--no-wifi", "-k", "/nonexistent/key.pub"], "not found"),
        (["boot", "--no-wifi", "-r", "1/108"], "maximum of 107"),
    ],
)
def test_invalid_boot_options(tmp_path: Path, argv: list[str], message: str) -> None:
    with pytest.raises(UsageError, match=message):
        _build(_args(*argv), tmp_path)


def test_missing_country_is_a_usage_error(tmp_path: Path) -> None:
    with pytest.raises(UsageError, match="country"):
        _build(_args("boot", "Home", "-s", "password1"), tmp_path, environ={"LANG": "C"})


def test_secrets_from_files(tmp_path: Path) -> None:
    pi_file = tmp_path / "pi.txt"
    pi_file.write_text("hunter22\nignored\n", encoding="utf-8")
    vnc_file = tmp_path / "vnc.txt"
    vnc_file.write_text("vncpass\n", encoding="utf-8")
    wifi_file = tmp_path / "wifi.txt"
    wifi_file.write_text("correct horse\n", encoding="utf-8")

    result = _build(
        _args("boot", "Home", "-P", str(pi_file), "-G", str(vnc_file), "-S", str(wifi_file)),
        tmp_path,
    )

    assert result.pi_password == "hunter22"
    assert result.vnc_password == "vncpass"
    assert result.wifi is not None
    assert result.wifi.psk == derive_psk("Home", "correct horse")


def test_conflicting_password_file(tmp_path: Path) -> None:
    pi_file = tmp_path / "pi.txt"
    pi_file.write_text("hunter22\n", encoding="utf-8")

    with pytest.raises(UsageError, match="multiple pi user passwords"):
        _build(_args("boot", "--no-wifi", "-p", "other", "-P", str(pi_file)), tmp_path)


def test_empty_password_file(tmp_path: Path) -> None:
    pi_file = tmp_path / "pi.txt"
    pi_file.write_text("", encoding="utf-8")

    with pytest.raises(UsageError, match="no pi user password"):
        _build(_args("boot", "--no-wifi", "-P", str(pi_file)), tmp_path)


def test_empty_wifi_passphrase_file_is_rejected(tmp_path: Path) -> None:
    wifi_file = tmp_path / "wifi.txt"
    wifi_file.write_text("\n", encoding="utf-8")

    with pytest.raises(UsageError, match="wrong length"):
        _build(_args("boot", "Home", "-S", str(wifi_file)), tmp_path)


def test_prompt_repeats_until_passphrase_is_valid(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    result = _build(
        _args("boot", "Home", "--plaintext-psk"),
        tmp_path,
        prompt=_scripted(["short", "long enough"]),
    )

    assert result.wifi is not None
    assert result.wifi.passphrase == "long enough"
    assert result.wifi.psk is None
    assert "Error: wrong length" in capsys.readouterr().err


def test_prompt_end_of_input_aborts(tmp_path: Path) -> None:
    with pytest.raises(PreconditionError, match="aborted"):
        _build(_args("boot", "Home"), tmp_path, prompt=_scripted([]))


def test_profile_supplies_defaults(tmp_path: Path) -> None:
    profile_dir = tmp_path / "profiles"
    profile_dir.mkdir()
    (profile_dir / "wifi.txt").write_text("from profile\n", encoding="utf-8")
    profile_path = profile_dir / "garden.toml"
    profile_path.write_text(
        "\n".join(
            [
                "[boot]",
                'hostname = "garden"',
                'timezone = "Europe/Berlin"',
                "",
                "[wifi]",
                'ssid = "Shed"',
                'country = "de"',
                'passphrase_file = "wifi.txt"',
                "hash_passphrase = false",
                "",
                "[hdmi]",
                'resolution = "0"',
                "",
                "[vnc]",
                "enabled = false",
                "",
            ]
        ),
        encoding="utf-8",
    )

    profile = settings_mod.load_profile(profile_path)
    assert profile["wifi"]["passphrase_file"] == profile_dir / "wifi.txt"

    result = _build(_args("boot", "-n", "override"), tmp_path, profile=profile)

    assert result.hostname == "override"
    assert result.timezone == "Europe/Berlin"
    assert result.wifi is not None
    assert result.wifi.ssid == "Shed"
    assert result.wifi.country == "DE"
    assert result.wifi.passphrase == "from profile"
    assert result.hdmi == HdmiSettings(group="0")
    assert result.vnc_password is None


def test_invalid_profile(tmp_path: Path) -> None:
    broken = tmp_path / "broken.toml"
    broken.write_text("[boot\nhostname = ", encoding="utf-8")

    with pytest.raises(UsageError, match="invalid profile"):
        settings_mod.load_profile(broken)
    with pytest.raises(UsageError, match="profile not found"):
        settings_mod.load_profile(tmp_path / "absent.toml")


def test_device_settings_prompt_for_vnc_password() -> None:
    result = settings_mod.build_device_settings(
        _args("device", "-n", "garden"), prompt=_scripted(["abc", "vncpass"])
    )

    assert result.enable_vnc is True
    assert result.enable_ssh is True
    assert result.vnc_password == "vncpass"
    assert result.hostname == "garden"


def test_device_settings_without_vnc_do_not_prompt() -> None:
    result = settings_mod.build_device_settings(
        _args("device", "--no-vnc", "--no-ssh", "--dry-run"), prompt=_no_prompt
    )

    assert result.enable_vnc is False
    assert result.enable_ssh is False
    assert result.vnc_password is None
    assert result.dry_run is True


@pytest.mark.parametrize(
    ("argv", "message"),
    [
        (["device", "--no-vnc", "-p", "secret1"], "cannot use both"),
        (["device", "-p", "abc"], "wrong length"),
        (["device", "-p", "secret1", "-n", "1bad"], "must start with a letter"),
    ],
)
def test_invalid_device_options(argv: list[str], message: str) -> None:
    with pytest.raises(UsageError, match=message):
        settings_mod.build_device_settings(_args(*argv), prompt=_no_prompt)


def test_pubkey_cannot_end_the_init_script_heredoc(tmp_path: Path) -> None:
    key = tmp_path / "id_rsa.pub"
    key.write_text("ssh-rsa AAAA me@host\nPUBKEY_EOF\nrm -rf /\n", encoding="utf-8")

    with pytest.raises(UsageError, match="PUBKEY_EOF"):
        _build(_args("boot", "--no-wifi", "-k", str(key)), tmp_path)
