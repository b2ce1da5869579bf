"""Shared fakes for supervisor and daemon tests."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from gamed.config import AppConfig, PathsConfig, PowerConfig
from gamed.game_info import GameInfo
from gamed.platform import SimulatedPlatform
from gamed.process import ChildControl, ChildProcess, ProcessSupervisor
from gamed.state import DaemonState


class FakeChildControl(ChildControl):
    """Records every call instead of touching real processes."""

    def __init__(self):
        self.calls: list[tuple] = []
        self.next_pid = 100

    def spawn(self, argv, role):
        self.next_pid += 1
        self.calls.append(("spawn", role, list(argv)))
        return ChildProcess(role=role, pid=self.next_pid, argv=list(argv))

    def suspend(self, child):
        self.calls.append(("suspend", child.pid))

    def resume(self, child):
        self.calls.append(("resume", child.pid))

    def terminate(self, child, timeout=None):
        self.calls.append(("terminate", child.pid))

    def try_wait(self, child):
        return None

    def wait(self, child):
        return 0

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


class FakeStore:
    def __init__(self):
        self.calls: list[tuple] = []

    def add_play_time(self, path, duration):
        self.calls.append((path, duration))


@pytest.fixture
def config(tmp_path):
    return AppConfig(
        paths=PathsConfig(
            state=str(tmp_path / "gamed.json"),
            game_info=str(tmp_path / "game_info.json"),
            database=str(tmp_path / "gamed.db"),
            launcher="/opt/bin/launcher",
            menu="/opt/bin/menu",
        ),
        power=PowerConfig(sync_command=["sync"], exec_poweroff=False),
    )


@pytest.fixture
def control():
    return FakeChildControl()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def platform():
    return SimulatedPlatform()


@pytest.fixture
def supervisor(config, control, platform, store):
    return ProcessSupervisor(
        config=config,
        control=control,
        platform=platform,
        store=store,
        state=DaemonState(),
    )


@pytest.fixture
def write_game_info(config):
    """Put the device in-game by writing a GameInfo file."""

    def _write(started_ago: timedelta = timedelta(minutes=30)) -> GameInfo:
        info = GameInfo(
            path="/roms/gba/Golden Sun.gba",
            command=["/opt/cores/retroarch", "-L", "gba", "/roms/gba/Golden Sun.gba"],
            start_time=datetime.now(timezone.utc) - started_ago,
            name="Golden Sun",
        )
        info.save(Path(config.paths.game_info))
        return info

    return _write
