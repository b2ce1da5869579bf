"""Tests for the process supervisor: spawn, respawn, menu toggle, power-off."""

import subprocess
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import psutil
import pytest

from gamed.game_info import GameInfo
from gamed.process import (
    ChildProcess,
    ChildRole,
    ChildState,
    PosixChildControl,
    _PosixHandle,
)
from gamed.state import DaemonState


# -- spawn_main --

def test_spawn_main_without_game_info_launches_launcher(supervisor, control):
    child = supervisor.spawn_main()
    assert control.calls == [("spawn", ChildRole.MAIN, ["/opt/bin/launcher"])]
    assert supervisor.main is child
    assert child.state == ChildState.RUNNING


def test_spawn_main_resumes_game_and_resets_start_time(supervisor, control, config, write_game_info):
    info = write_game_info(started_ago=timedelta(hours=5))
    before = datetime.now(timezone.utc)

    supervisor.spawn_main()

    assert control.calls == [("spawn", ChildRole.MAIN, info.command)]
    reloaded = GameInfo.load(Path(config.paths.game_info))
    assert reloaded.start_time >= before


def test_spawn_main_with_corrupt_game_info_falls_back_to_launcher(supervisor, control, config):
    path = Path(config.paths.game_info)
    path.write_text("{broken")

    supervisor.spawn_main()

    assert control.calls == [("spawn", ChildRole.MAIN, ["/opt/bin/launcher"])]
    assert not path.exists()


def test_spawn_main_with_mistyped_start_time_falls_back_to_launcher(supervisor, control, config):
    path = Path(config.paths.game_info)
    path.write_text('{"path": "/roms/a", "command": ["a"], "start_time": 1700000000}')

    supervisor.spawn_main()

    assert control.calls == [("spawn", ChildRole.MAIN, ["/opt/bin/launcher"])]
    assert not path.exists()


def test_spawn_failure_propagates(supervisor, control):
    control.spawn = MagicMock(side_effect=FileNotFoundError("/opt/bin/launcher"))
    with pytest.raises(FileNotFoundError):
        supervisor.spawn_main()


# -- main exit --

def test_main_exit_respawns_exactly_once(supervisor, control, store, config, write_game_info):
    write_game_info(started_ago=timedelta(minutes=30))
    main = supervisor.spawn_main()

    supervisor.on_main_exited(main.pid)

    assert control.count("spawn") == 2
    assert len(store.calls) == 1
    path, duration = store.calls[0]
    assert path == "/roms/gba/Golden Sun.gba"
    assert duration < timedelta(minutes=1)  # start_time was reset at spawn
    assert not Path(config.paths.game_info).exists()
    assert supervisor.main.argv == ["/opt/bin/launcher"]
    assert supervisor.main.pid != main.pid


def test_main_exit_while_terminating_does_nothing(supervisor, control, store, write_game_info):
    write_game_info()
    main = supervisor.spawn_main()
    supervisor.is_terminating = True

    supervisor.on_main_exited(main.pid)

    assert control.count("spawn") == 1
    assert store.calls == []
    assert main.state == ChildState.EXITED


def test_launcher_exit_respawns_without_play_time(supervisor, control, store):
    main = supervisor.spawn_main()
    supervisor.on_main_exited(main.pid)
    assert control.count("spawn") == 2
    assert store.calls == []


def test_main_exit_with_corrupt_game_info_still_respawns(supervisor, control, store, config):
    main = supervisor.spawn_main()
    path = Path(config.paths.game_info)
    path.write_text('{"path": "/roms/a", "command": ["a"], "start_time": 1700000000}')

    supervisor.on_main_exited(main.pid)

    assert store.calls == []
    assert not path.exists()
    assert control.calls[-1] == ("spawn", ChildRole.MAIN, ["/opt/bin/launcher"])


def test_stale_main_exit_is_ignored(supervisor, control):
    supervisor.spawn_main()
    supervisor.on_main_exited(12345)
    assert control.count("spawn") == 1


def test_main_exit_with_menu_open_closes_menu(supervisor, control, write_game_info):
    write_game_info()
    main = supervisor.spawn_main()
    supervisor.toggle_menu()
    menu = supervisor.menu

    supervisor.on_main_exited(main.pid)

    assert ("terminate", menu.pid) in control.calls
    assert supervisor.menu is None
    # a late reap of the old menu is stale
    supervisor.on_menu_exited(menu.pid)
    assert control.count("resume") == 0


# -- menu --

def test_toggle_menu_opens_then_closes(supervisor, control, write_game_info):
    write_game_info()
    main = supervisor.spawn_main()

    supervisor.toggle_menu()
    menu = supervisor.menu
    assert menu is not None
    assert menu.role == ChildRole.MENU
    assert main.state == ChildState.STOPPED
    assert control.calls[1:] == [
        ("suspend", main.pid),
        ("spawn", ChildRole.MENU, ["/opt/bin/menu"]),
    ]

    supervisor.toggle_menu()
    assert supervisor.menu is None
    assert menu.state == ChildState.EXITED
    assert main.state == ChildState.RUNNING
    assert control.calls[3:] == [("terminate", menu.pid), ("resume", main.pid)]


def test_menu_exiting_on_its_own_resumes_main(supervisor, control, write_game_info):
    write_game_info()
    main = supervisor.spawn_main()
    supervisor.toggle_menu()

    supervisor.on_menu_exited(supervisor.menu.pid)

    assert supervisor.menu is None
    assert main.state == ChildState.RUNNING
    assert control.calls[-1] == ("resume", main.pid)


# -- settings --

@pytest.mark.parametrize("delta", [-100, -21, -1, 1, 5, 20, 21, 1000])
def test_add_volume_clamps(supervisor, delta):
    for start in (0, 10, 20):
        supervisor.state.volume = start
        supervisor.add_volume(delta)
        assert 0 <= supervisor.state.volume <= 20


@pytest.mark.parametrize("delta", [-500, -101, -5, 5, 100, 101, 500])
def test_add_brightness_clamps(supervisor, delta):
    for start in (0, 50, 100):
        supervisor.state.brightness = start
        supervisor.add_brightness(delta)
        assert 0 <= supervisor.state.brightness <= 100


def test_zero_delta_is_a_no_op(supervisor, platform):
    supervisor.add_volume(0)
    supervisor.add_brightness(0)
    assert supervisor.state == DaemonState()
    assert not supervisor.dirty
    assert platform.volume is None and platform.brightness is None


def test_add_volume_writes_through_and_marks_dirty(supervisor, platform):
    supervisor.add_volume(3)
    supervisor.add_brightness(-5)
    assert platform.volume == 3
    assert platform.brightness == 45
    assert supervisor.dirty


def test_platform_error_propagates(supervisor):
    from gamed.errors import PlatformError

    supervisor.platform = MagicMock()
    supervisor.platform.set_volume.side_effect = PlatformError("amixer failed")
    with pytest.raises(PlatformError):
        supervisor.add_volume(1)


def test_save_clears_dirty(supervisor, config):
    supervisor.add_volume(2)
    supervisor.save()
    assert not supervisor.dirty
    assert Path(config.paths.state).read_text() == '{"volume": 2, "brightness": 50}'


# -- power off --

def test_power_off_in_game(supervisor, control, store, config, write_game_info):
    write_game_info()
    main = supervisor.spawn_main()

    with patch("subprocess.run") as mock_run, pytest.raises(SystemExit) as excinfo:
        supervisor.power_off()

    assert excinfo.value.code == 0
    assert supervisor.is_terminating
    assert control.calls[-1] == ("terminate", main.pid)
    assert len(store.calls) == 1
    mock_run.assert_called_once_with(["sync"])
    assert Path(config.paths.state).exists()
    # kept so the game resumes on next boot
    assert Path(config.paths.game_info).exists()


def test_power_off_with_menu_open_resumes_main_first(supervisor, control, write_game_info):
    write_game_info()
    main = supervisor.spawn_main()
    supervisor.toggle_menu()
    menu = supervisor.menu

    with patch("subprocess.run"), pytest.raises(SystemExit):
        supervisor.power_off()

    assert control.calls[-3:] == [
        ("terminate", menu.pid),
        ("resume", main.pid),
        ("terminate", main.pid),
    ]


def test_power_off_in_launcher_does_not_wait(supervisor, control, store):
    supervisor.spawn_main()
    with patch("subprocess.run"), pytest.raises(SystemExit):
        supervisor.power_off()
    assert control.count("terminate") == 0
    assert store.calls == []


def test_power_off_execs_poweroff(supervisor):
    supervisor.power.exec_poweroff = True
    supervisor.spawn_main()
    with patch("subprocess.run"), patch("os.execvp") as mock_exec, pytest.raises(SystemExit):
        supervisor.power_off()
    mock_exec.assert_called_once_with("poweroff", ["poweroff"])


# -- POSIX control --

def _posix_child(returncode=None):
    popen = MagicMock(returncode=returncode)
    process = MagicMock()
    child = ChildProcess(role=ChildRole.MAIN, pid=4242, argv=["game"],
                         handle=_PosixHandle(popen, process))
    return child, popen, process


def test_signal_to_reaped_child_is_skipped():
    child, _, process = _posix_child(returncode=0)
    PosixChildControl().suspend(child)
    process.suspend.assert_not_called()


def test_signal_to_vanished_pid_is_a_no_op():
    child, _, process = _posix_child()
    process.resume.side_effect = psutil.NoSuchProcess(4242)
    PosixChildControl().resume(child)
    process.resume.assert_called_once()


def test_terminate_kills_after_timeout():
    child, popen, process = _posix_child()
    popen.wait.side_effect = [subprocess.TimeoutExpired(["game"], 2), 0]

    PosixChildControl().terminate(child, timeout=2)

    process.terminate.assert_called_once()
    process.kill.assert_called_once()
    assert popen.wait.call_count == 2


def test_posix_control_with_real_process():
    control = PosixChildControl()
    child = control.spawn(["sleep", "30"], ChildRole.MAIN)
    try:
        assert control.try_wait(child) is None

        control.suspend(child)
        proc = psutil.Process(child.pid)
        deadline = time.monotonic() + 5
        while proc.status() != psutil.STATUS_STOPPED and time.monotonic() < deadline:
            time.sleep(0.01)
        assert proc.status() == psutil.STATUS_STOPPED

        control.resume(child)
        control.terminate(child, timeout=5)
        assert control.try_wait(child) is not None
    finally:
        if child.handle.popen.returncode is None:
            child.handle.popen.kill()
            child.handle.popen.wait()
