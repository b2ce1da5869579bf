"""Hardware capability interface for volume and brightness.

The implementation is picked once at startup from ``hardware.platform``.
"""

from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from gamed.config import HardwareConfig
from gamed.errors import ConfigError, PlatformError
from gamed.state import VOLUME_MAX

log = logging.getLogger(__name__)


class Platform(ABC):
    """Writes settings through to the device."""

    @abstractmethod
    def set_volume(self, volume: int) -> None:
        """Set speaker volume, 0..VOLUME_MAX."""
        ...

    @abstractmethod
    def set_brightness(self, brightness: int) -> None:
        """Set backlight brightness as a percentage."""
        ...


class LinuxPlatform(Platform):
    """ALSA mixer for volume, sysfs backlight for brightness."""

    def __init__(self, backlight: str | Path, mixer_control: str):
        self.backlight = Path(backlight)
        self.mixer_control = mixer_control

    def set_volume(self, volume: int) -> None:
        pct = volume * 100 // VOLUME_MAX
        cmd = ["amixer", "-q", "sset", self.mixer_control, f"{pct}%"]
        try:
            subprocess.run(cmd, check=True, capture_output=True, timeout=5)
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError) as e:
            raise PlatformError(f"failed to set volume to {volume}: {e}") from e

    def set_brightness(self, brightness: int) -> None:
        try:
            max_raw = int((self.backlight / "max_brightness").read_text().strip())
            raw = brightness * max_raw // 100
            (self.backlight / "brightness").write_text(f"{raw}\n")
        except (OSError, ValueError) as e:
            raise PlatformError(f"failed to set brightness to {brightness}: {e}") from e


class SimulatedPlatform(Platform):
    """Off-device stand-in that only records and logs what it was told."""

    def __init__(self):
        self.volume: int | None = None
        self.brightness: int | None = None

    def set_volume(self, volume: int) -> None:
        self.volume = volume
        log.info("volume -> %d", volume)

    def set_brightness(self, brightness: int) -> None:
        self.brightness = brightness
        log.info("brightness -> %d", brightness)


def create_platform(config: HardwareConfig) -> Platform:
    if config.platform == "linux":
        return LinuxPlatform(config.backlight, config.mixer_control)
    if config.platform == "simulated":
        return SimulatedPlatform()
    raise ConfigError(f"unknown platform {config.platform!r}")
