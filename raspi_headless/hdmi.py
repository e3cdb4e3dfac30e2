"""HDMI resolution parsing and ``config.txt`` updates."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config_patch import set_config_value
from .errors import UsageError

DEFAULT_RESOLUTION = "2/35"  # 1280x1024

# hdmi_mode limits documented for config.txt video options.
HDMI_MODE_MAX = {
    1: 107,  # CEA: televisions
    2: 86,  # DMT: computer monitors
}

_GROUP_MODE = re.compile(r"^[1-9][0-9]*/[1-9][0-9]*$")


@dataclass(frozen=True)
class HdmiSettings:
    """Values for the three HDMI statements; ``None`` disables a statement."""

    group: str
    mode: Optional[str] = None
    force_hotplug: Optional[str] = None

    def assignments(self) -> list[tuple[str, Optional[str]]]:
        return [
            ("hdmi_force_hotplug", self.force_hotplug),
            ("hdmi_group", self.group),
            ("hdmi_mode", self.mode),
        ]

    def describe(self) -> str:
        if self.group == "0":
            return "auto-detect"
        return f"{self.group}/{self.mode}"


def parse_resolution(text: str) -> HdmiSettings:
    """Translate ``"0"`` or ``"GROUP/MODE"`` into :class:`HdmiSettings`."""

    if text == "0":
        return HdmiSettings(group="0")

    if not _GROUP_MODE.match(text):
        raise UsageError(f'resolution is not "GROUP/MODE": {text}')

    group_text, mode_text = text.split("/", 1)
    group = int(group_text)
    mode = int(mode_text)
    maximum = HDMI_MODE_MAX.get(group)
    if maximum is None:
        raise UsageError(f"unknown HDMI group (expect 1 or 2): {text}")
    if mode > maximum:
        raise UsageError(f"hdmi_mode exceeds maximum of {maximum}: {text}")

    return HdmiSettings(group=str(group), mode=str(mode), force_hotplug="1")


def apply_hdmi(config_path: Path, settings: HdmiSettings) -> None:
    for key, value in settings.assignments():
        set_config_value(config_path, key, value)


__all__ = [
    "DEFAULT_RESOLUTION",
    "HDMI_MODE_MAX",
    "HdmiSettings",
    "apply_hdmi",
    "parse_resolution",
]
