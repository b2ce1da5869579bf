"""Config loader — YAML to dataclasses."""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml

from gamed.errors import ConfigError

DEFAULT_CONFIG_PATH = "/mnt/SDCARD/.gamed/config.yaml"


@dataclass
class PathsConfig:
    state: str = "/mnt/SDCARD/.gamed/state/gamed.json"
    game_info: str = "/mnt/SDCARD/.gamed/state/game_info.json"
    database: str = "/mnt/SDCARD/.gamed/state/gamed.db"
    launcher: str = "/mnt/SDCARD/.gamed/bin/launcher"
    menu: str = "/mnt/SDCARD/.gamed/bin/menu"


@dataclass
class PowerConfig:
    sync_command: list[str] = field(default_factory=lambda: ["sync"])
    poweroff_command: list[str] = field(default_factory=lambda: ["poweroff"])
    exec_poweroff: bool = True  # false off-device: exit instead of exec
    terminate_timeout: float | None = None  # None waits forever


@dataclass
class KeymapConfig:
    menu: str = "KEY_ESC"
    vol_up: str = "KEY_VOLUMEUP"
    vol_down: str = "KEY_VOLUMEDOWN"
    power: str = "KEY_POWER"


@dataclass
class HardwareConfig:
    platform: str = "linux"  # "linux" | "simulated"
    input_devices: list[str] = field(default_factory=lambda: ["/dev/input/event0"])
    backlight: str = "/sys/class/backlight/backlight"
    mixer_control: str = "Master"
    wifi_init_command: list[str] | None = None


@dataclass
class AppConfig:
    paths: PathsConfig = field(default_factory=PathsConfig)
    power: PowerConfig = field(default_factory=PowerConfig)
    keymap: KeymapConfig = field(default_factory=KeymapConfig)
    hardware: HardwareConfig = field(default_factory=HardwareConfig)


# options holding argv lists (or device path lists); a bare string would be
# indexed char by char at exec time
_ARGV_OPTIONS = {
    PowerConfig: ("sync_command", "poweroff_command"),
    HardwareConfig: ("input_devices", "wifi_init_command"),
}
_NULLABLE = {"wifi_init_command"}


def _section(cls, raw):
    raw = raw or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{cls.__name__}: expected a mapping, got {type(raw).__name__}")
    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        raise ConfigError(f"{cls.__name__}: unknown option(s) {', '.join(sorted(unknown))}")
    for name in _ARGV_OPTIONS.get(cls, ()):
        if name not in raw or (raw[name] is None and name in _NULLABLE):
            continue
        value = raw[name]
        if not isinstance(value, list) or not value or not all(isinstance(v, str) for v in value):
            raise ConfigError(f"{cls.__name__}.{name}: expected a non-empty list of strings, got {value!r}")
    return cls(**raw)


def load_config(path: Path) -> AppConfig:
    """Load config from YAML file. A missing file yields the defaults."""
    if not path.exists():
        return AppConfig()

    with open(path) as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"{path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: top level must be a mapping")

    paths = _section(PathsConfig, raw.get("paths"))
    power = _section(PowerConfig, raw.get("power"))
    keymap = _section(KeymapConfig, raw.get("keymap"))
    hardware = _section(HardwareConfig, raw.get("hardware"))

    return AppConfig(paths=paths, power=power, keymap=keymap, hardware=hardware)


def config_path_from_env() -> Path:
    return Path(os.environ.get("GAMED_CONFIG", DEFAULT_CONFIG_PATH))
