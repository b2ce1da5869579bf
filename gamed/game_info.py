"""GameInfo — the file-backed record of the game currently being played.

The launcher writes this file before handing control to a game; the menu
overlay reads it to show the game's name. Its existence alone means the
device is in-game.
"""

import json
import re
import shlex
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path

from gamed.atomic_write import atomic_json_write

_FRACTION = re.compile(r"\.(\d+)")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value) -> datetime:
    """Parse an RFC 3339 timestamp; naive values are taken as UTC."""
    if not isinstance(value, str):
        raise ValueError(f"'start_time' must be a string, got {value!r}")
    # before Python 3.11 fromisoformat rejects a trailing Z and fractions
    # that are not exactly 3 or 6 digits; RFC 3339 writers emit both
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    value = _FRACTION.sub(lambda m: "." + (m.group(1) + "000000")[:6], value)
    start = datetime.fromisoformat(value)
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    return start


@dataclass
class GameInfo:
    path: str
    command: list[str]
    start_time: datetime = field(default_factory=_now)
    name: str | None = None

    @classmethod
    def from_dict(cls, raw) -> "GameInfo":
        if not isinstance(raw, dict):
            raise ValueError(f"expected a JSON object, got {type(raw).__name__}")
        try:
            path = raw["path"]
            command = raw["command"]
        except KeyError as e:
            raise ValueError(f"missing field {e}") from e
        if isinstance(command, str):
            command = shlex.split(command)
        if not isinstance(path, str) or not isinstance(command, list) or not command:
            raise ValueError("'path' must be a string and 'command' a non-empty list")

        name = raw.get("name")
        if name is not None and not isinstance(name, str):
            raise ValueError(f"'name' must be a string, got {name!r}")

        start_time = raw.get("start_time")
        if start_time is None:
            start = _now()
        else:
            start = _parse_timestamp(start_time)

        return cls(path=path, command=[str(c) for c in command],
                   start_time=start, name=name)

    def to_dict(self) -> dict:
        data = {
            "path": self.path,
            "command": self.command,
            "start_time": self.start_time.isoformat(),
        }
        if self.name is not None:
            data["name"] = self.name
        return data

    def play_time(self, now: datetime | None = None) -> timedelta:
        """Elapsed time since the session started, never negative."""
        elapsed = (now or _now()) - self.start_time
        return max(elapsed, timedelta(0))

    @staticmethod
    def exists(path: Path) -> bool:
        return path.exists()

    @classmethod
    def load(cls, path: Path) -> "GameInfo | None":
        """Read the record, or None when no game is running.

        Raises ValueError for a file that exists but does not parse.
        """
        try:
            with open(path) as f:
                raw = json.load(f)
        except FileNotFoundError:
            return None
        return cls.from_dict(raw)

    def save(self, path: Path) -> None:
        atomic_json_write(path, self.to_dict())

    @staticmethod
    def delete(path: Path) -> None:
        path.unlink(missing_ok=True)
