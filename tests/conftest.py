"""Test fixtures and configuration helpers."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]

# Keep the package importable when the tests run from a plain checkout.
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

CONFIG_TXT_TEMPLATE = """\
# For more options and information see
# http://rpf.io/configtxt
# Some settings may impact device functionality. See link above for details

# uncomment if you get no picture on HDMI for a default "safe" mode
#hdmi_safe=1

# uncomment if hdmi display is not detected and composite is being output
#hdmi_force_hotplug=1

# uncomment to force a specific HDMI mode (this will force VGA)
#hdmi_group=1
#hdmi_mode=1

# Enable audio (loads snd_bcm2835)
dtparam=audio=on
"""

CMDLINE_FIRST_BOOT = (
    "console=serial0,115200 console=tty1 root=PARTUUID=6c586e13-02 rootfstype=ext4 "
    "fsck.repair=yes rootwait quiet init=/usr/lib/raspi-config/init_resize.sh\n"
)


@pytest.fixture
def boot_dir(tmp_path: Path) -> Path:
    """A directory laid out like a freshly imaged Raspberry Pi OS boot partition."""

    boot = tmp_path / "boot"
    boot.mkdir()
    for name in ("LICENCE.broadcom", "start.elf", "bootcode.bin"):
        (boot / name).write_bytes(b"")
    (boot / "config.txt").write_text(CONFIG_TXT_TEMPLATE, encoding="utf-8")
    (boot / "cmdline.txt").write_text(CMDLINE_FIRST_BOOT, encoding="utf-8")
    return boot


@pytest.fixture
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point ``HOME`` at an empty directory so no real SSH key is picked up."""

    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("LANG", "en_AU.UTF-8")
    return home
