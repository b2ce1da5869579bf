"""Persisted daemon settings: volume and brightness."""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from gamed.atomic_write import atomic_json_write

log = logging.getLogger(__name__)

VOLUME_MIN, VOLUME_MAX = 0, 20
BRIGHTNESS_MIN, BRIGHTNESS_MAX = 0, 100

DEFAULT_VOLUME = 0
DEFAULT_BRIGHTNESS = 50


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


@dataclass
class DaemonState:
    volume: int = DEFAULT_VOLUME
    brightness: int = DEFAULT_BRIGHTNESS

    def __post_init__(self):
        self.volume = clamp(self.volume, VOLUME_MIN, VOLUME_MAX)
        self.brightness = clamp(self.brightness, BRIGHTNESS_MIN, BRIGHTNESS_MAX)

    def to_dict(self) -> dict:
        return {"volume": self.volume, "brightness": self.brightness}

    @classmethod
    def from_dict(cls, raw) -> "DaemonState":
        """Build a state from parsed JSON.

        Raises ValueError if ``raw`` is not an object holding integer
        ``volume`` and ``brightness`` fields.
        """
        if not isinstance(raw, dict):
            raise ValueError(f"expected a JSON object, got {type(raw).__name__}")
        values = {}
        for key in ("volume", "brightness"):
            value = raw.get(key)
            # bool is an int subclass; reject it explicitly
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValueError(f"{key!r} must be an integer, got {value!r}")
            values[key] = value
        return cls(**values)


def load_state(path: Path) -> DaemonState:
    """Load settings, falling back to defaults.

    A file that cannot be read or parsed is logged and removed so the next
    save starts from a clean slot. Never raises for a bad file.
    """
    if not path.exists():
        log.debug("no state file at %s, using defaults", path)
        return DaemonState()

    try:
        with open(path, "rb") as f:
            state = DaemonState.from_dict(json.loads(f.read()))
        log.debug("loaded state from %s: %s", path, state)
        return state
    except (OSError, ValueError) as e:
        # JSONDecodeError and UnicodeDecodeError are ValueErrors
        log.warning("failed to read state file %s (%s), removing", path, e)

    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        log.warning("could not remove state file %s: %s", path, e)
    return DaemonState()


def save_state(path: Path, state: DaemonState) -> None:
    atomic_json_write(path, state.to_dict())
