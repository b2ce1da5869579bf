"""Process supervision — the main child, the menu overlay, and power-off."""

from __future__ import annotations

import enum
import logging
import os
import subprocess
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, NamedTuple

import psutil

from gamed.config import AppConfig
from gamed.database import PlayTimeStore
from gamed.events import Channel, Event, EventKind
from gamed.game_info import GameInfo
from gamed.platform import Platform
from gamed.state import (
    BRIGHTNESS_MAX,
    BRIGHTNESS_MIN,
    VOLUME_MAX,
    VOLUME_MIN,
    DaemonState,
    clamp,
    save_state,
)

log = logging.getLogger(__name__)


class ChildRole(enum.Enum):
    MAIN = "main"
    MENU = "menu"


class ChildState(enum.Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    EXITED = "exited"


@dataclass
class ChildProcess:
    role: ChildRole
    pid: int
    argv: list[str]
    state: ChildState = ChildState.RUNNING
    handle: Any = None  # owned by the ChildControl that spawned it


class ChildControl(ABC):
    """What the supervisor needs to do to a child process."""

    @abstractmethod
    def spawn(self, argv: list[str], role: ChildRole) -> ChildProcess:
        ...

    @abstractmethod
    def suspend(self, child: ChildProcess) -> None:
        ...

    @abstractmethod
    def resume(self, child: ChildProcess) -> None:
        ...

    @abstractmethod
    def terminate(self, child: ChildProcess, timeout: float | None = None) -> None:
        """Ask the child to exit and block until it has."""
        ...

    @abstractmethod
    def try_wait(self, child: ChildProcess) -> int | None:
        """Exit status if the child has exited, else None. Never blocks."""
        ...

    @abstractmethod
    def wait(self, child: ChildProcess) -> int:
        ...


class _PosixHandle(NamedTuple):
    popen: subprocess.Popen
    process: psutil.Process


class PosixChildControl(ChildControl):
    """Children as OS processes, paused and resumed with SIGSTOP/SIGCONT.

    Signals go through the psutil.Process captured at spawn time. psutil
    refuses to signal a pid that has been reused by another process, and a
    child that is already gone is skipped.
    """

    def spawn(self, argv: list[str], role: ChildRole) -> ChildProcess:
        popen = subprocess.Popen(argv)
        try:
            process = psutil.Process(popen.pid)
        except psutil.NoSuchProcess:
            # exited before we looked; the exit watcher will reap it
            process = None
        return ChildProcess(role=role, pid=popen.pid, argv=list(argv),
                            handle=_PosixHandle(popen, process))

    def _signal(self, child: ChildProcess, action: str) -> None:
        popen, process = child.handle
        if popen.returncode is not None or process is None:
            log.debug("%s (pid %d) already exited, skipping %s", child.role.value, child.pid, action)
            return
        try:
            getattr(process, action)()
        except psutil.NoSuchProcess:
            log.debug("%s (pid %d) is gone, skipping %s", child.role.value, child.pid, action)

    def suspend(self, child: ChildProcess) -> None:
        self._signal(child, "suspend")

    def resume(self, child: ChildProcess) -> None:
        self._signal(child, "resume")

    def terminate(self, child: ChildProcess, timeout: float | None = None) -> None:
        self._signal(child, "terminate")
        popen = child.handle.popen
        try:
            popen.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            log.warning("%s (pid %d) ignored SIGTERM for %ss, killing",
                        child.role.value, child.pid, timeout)
            self._signal(child, "kill")
            popen.wait()

    def try_wait(self, child: ChildProcess) -> int | None:
        return child.handle.popen.poll()

    def wait(self, child: ChildProcess) -> int:
        return child.handle.popen.wait()


class ExitWatcher(threading.Thread):
    """Blocks until one child exits, then reports it on the channel."""

    def __init__(self, control: ChildControl, child: ChildProcess, channel: Channel):
        super().__init__(daemon=True, name=f"watch-{child.role.value}-{child.pid}")
        self.control = control
        self.child = child
        self.channel = channel

    def run(self):
        status = self.control.wait(self.child)
        log.debug("%s (pid %d) exited with %s", self.child.role.value, self.child.pid, status)
        kind = EventKind.MAIN_EXITED if self.child.role == ChildRole.MAIN else EventKind.MENU_EXITED
        self.channel.put(Event(kind, self.child.pid))


class ProcessSupervisor:
    """Owns the main and menu children and the persisted settings.

    Every method is called from the event loop thread only.
    """

    def __init__(self, config: AppConfig, control: ChildControl, platform: Platform,
                 store: PlayTimeStore, state: DaemonState, channel: Channel | None = None):
        self.paths = config.paths
        self.power = config.power
        self.control = control
        self.platform = platform
        self.store = store
        self.state = state
        self.channel = channel

        self.main: ChildProcess | None = None
        self.menu: ChildProcess | None = None
        self.is_terminating = False
        self.dirty = False

    @property
    def game_info_path(self) -> Path:
        return Path(self.paths.game_info)

    def is_ingame(self) -> bool:
        return GameInfo.exists(self.game_info_path)

    # -- children --

    def _spawn(self, argv: list[str], role: ChildRole) -> ChildProcess:
        child = self.control.spawn(argv, role)
        log.info("spawned %s (pid %d): %s", role.value, child.pid, " ".join(argv))
        if self.channel is not None:
            ExitWatcher(self.control, child, self.channel).start()
        return child

    def _main_command(self) -> list[str]:
        path = self.game_info_path
        try:
            game_info = GameInfo.load(path)
        except ValueError as e:
            log.warning("game info at %s is corrupt (%s), removing", path, e)
            GameInfo.delete(path)
            game_info = None

        if game_info is None:
            log.debug("no game info found, launching launcher")
            return [self.paths.launcher]

        log.debug("found game info, resuming %s", game_info.path)
        game_info.start_time = datetime.now(timezone.utc)
        game_info.save(path)
        return game_info.command

    def spawn_main(self) -> ChildProcess:
        """Start the game from GameInfo if there is one, else the launcher.

        Spawn errors propagate: nothing above the daemon would restart it.
        """
        self.main = self._spawn(self._main_command(), ChildRole.MAIN)
        return self.main

    def terminate(self, child: ChildProcess) -> None:
        log.debug("terminating %s (pid %d)", child.role.value, child.pid)
        self.control.terminate(child, timeout=self.power.terminate_timeout)
        child.state = ChildState.EXITED

    def on_main_exited(self, pid: int) -> None:
        if self.main is None or self.main.pid != pid:
            log.debug("ignoring exit of stale main pid %d", pid)
            return
        self.main.state = ChildState.EXITED
        if self.is_terminating:
            return

        if self.menu is not None:
            # menu only lives while main is stopped
            self.terminate(self.menu)
            self.menu = None

        log.info("main process terminated, recording play time")
        self.record_play_time()
        GameInfo.delete(self.game_info_path)
        self.spawn_main()

    def toggle_menu(self) -> None:
        if self.menu is None:
            self.control.suspend(self.main)
            self.main.state = ChildState.STOPPED
            self.menu = self._spawn([self.paths.menu], ChildRole.MENU)
        else:
            menu = self.menu
            self.terminate(menu)
            self.on_menu_exited(menu.pid)

    def on_menu_exited(self, pid: int) -> None:
        if self.menu is None or self.menu.pid != pid:
            log.debug("ignoring exit of stale menu pid %d", pid)
            return
        log.info("menu process terminated, resuming game")
        self.menu.state = ChildState.EXITED
        self.menu = None
        self.control.resume(self.main)
        self.main.state = ChildState.RUNNING

    # -- accounting --

    def record_play_time(self) -> None:
        path = self.game_info_path
        try:
            game_info = GameInfo.load(path)
        except ValueError as e:
            log.warning("game info at %s is corrupt (%s), play time not recorded", path, e)
            return
        if game_info is None:
            return
        self.store.add_play_time(game_info.path, game_info.play_time())

    # -- settings --

    def apply_settings(self) -> None:
        self.platform.set_volume(self.state.volume)
        self.platform.set_brightness(self.state.brightness)

    def add_volume(self, delta: int) -> None:
        volume = clamp(self.state.volume + delta, VOLUME_MIN, VOLUME_MAX)
        if volume == self.state.volume:
            return
        self.state.volume = volume
        self.platform.set_volume(volume)
        self.dirty = True

    def add_brightness(self, delta: int) -> None:
        brightness = clamp(self.state.brightness + delta, BRIGHTNESS_MIN, BRIGHTNESS_MAX)
        if brightness == self.state.brightness:
            return
        self.state.brightness = brightness
        self.platform.set_brightness(brightness)
        self.dirty = True

    def save(self) -> None:
        save_state(Path(self.paths.state), self.state)
        self.dirty = False
        log.debug("saved state %s", self.state)

    # -- shutdown --

    def power_off(self) -> None:
        """Stop the game cleanly, flush disks, and power the device off.

        Blocks until the game has exited. GameInfo is kept so the game
        resumes on the next boot. Does not return.
        """
        log.info("powering off")
        self.is_terminating = True
        self.save()

        if self.is_ingame():
            if self.menu is not None:
                menu = self.menu
                self.terminate(menu)
                self.on_menu_exited(menu.pid)
            if self.main.state == ChildState.STOPPED:
                self.control.resume(self.main)
                self.main.state = ChildState.RUNNING
            self.terminate(self.main)
            self.record_play_time()

        subprocess.run(self.power.sync_command)
        if self.power.exec_poweroff:
            cmd = self.power.poweroff_command
            os.execvp(cmd[0], cmd)
        raise SystemExit(0)
