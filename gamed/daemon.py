"""gamed — the resident supervisor daemon."""

import logging
import os
import signal
import subprocess
import sys
from pathlib import Path

from gamed.config import AppConfig, config_path_from_env, load_config
from gamed.database import PlayTimeStore
from gamed.errors import InputError
from gamed.events import Channel, Event, EventKind, new_channel
from gamed.input import InputClassifier, InputThread, IntentKind, build_keymap
from gamed.platform import create_platform
from gamed.process import PosixChildControl, ProcessSupervisor
from gamed.state import load_state

log = logging.getLogger(__name__)

QUIT_SIGNALS = (signal.SIGHUP, signal.SIGINT, signal.SIGQUIT, signal.SIGTERM)


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if root.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s"))
    root.addHandler(handler)


class Daemon:
    """Event loop: one channel in, one handler at a time."""

    def __init__(self, config: AppConfig, supervisor: ProcessSupervisor, channel: Channel):
        self.config = config
        self.supervisor = supervisor
        self.channel = channel
        self.classifier = InputClassifier(is_ingame=supervisor.is_ingame)
        self.input: InputThread | None = None

    def start(self):
        """Bring the device up: settings, Wi-Fi, main child, event sources."""
        self.supervisor.apply_settings()
        self._init_wifi()
        self.supervisor.spawn_main()
        self._install_signal_handlers()

        keymap = build_keymap(self.config.keymap)
        self.input = InputThread.open(self.channel, self.config.hardware.input_devices, keymap)
        self.input.start()

    def _init_wifi(self):
        cmd = self.config.hardware.wifi_init_command
        if cmd:
            log.debug("initializing wifi: %s", " ".join(cmd))
            subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)

    def _install_signal_handlers(self):
        def on_signal(signum, frame):
            self.channel.put(Event(EventKind.QUIT, signum))

        for sig in QUIT_SIGNALS:
            signal.signal(sig, on_signal)

    def run(self):
        """Dispatch events forever. Only power-off leaves this loop."""
        log.info("running gamed")
        while True:
            self.dispatch(self.channel.get())

    def dispatch(self, event: Event):
        sup = self.supervisor
        log.debug("event %s; main=%s menu=%s ingame=%s", event,
                  sup.main.pid if sup.main else None,
                  sup.menu.pid if sup.menu else None,
                  sup.is_ingame())

        if event.kind == EventKind.KEY:
            self._handle_key(event.payload)
        elif event.kind == EventKind.MAIN_EXITED:
            sup.on_main_exited(event.payload)
        elif event.kind == EventKind.MENU_EXITED:
            sup.on_menu_exited(event.payload)
        elif event.kind == EventKind.INPUT_FAILED:
            raise InputError(f"input reader stopped: {event.payload}") from event.payload
        elif event.kind == EventKind.QUIT:
            log.debug("received signal %s, saving state", event.payload)
            sup.save()

        if sup.dirty:
            sup.save()

    def _handle_key(self, key_event):
        intent = self.classifier.classify(key_event)
        if intent is None:
            return
        sup = self.supervisor
        if intent.kind == IntentKind.VOLUME:
            sup.add_volume(intent.delta)
        elif intent.kind == IntentKind.BRIGHTNESS:
            sup.add_brightness(intent.delta)
        elif intent.kind == IntentKind.TOGGLE_MENU:
            sup.toggle_menu()
        elif intent.kind == IntentKind.POWER_OFF:
            sup.power_off()


def build_daemon(config: AppConfig) -> Daemon:
    channel = new_channel()
    supervisor = ProcessSupervisor(
        config=config,
        control=PosixChildControl(),
        platform=create_platform(config.hardware),
        store=PlayTimeStore(config.paths.database),
        state=load_state(Path(config.paths.state)),
        channel=channel,
    )
    return Daemon(config, supervisor, channel)


def main():
    setup_logging(os.environ.get("GAMED_LOG_LEVEL", "INFO"))

    try:
        config = load_config(config_path_from_env())
        daemon = build_daemon(config)
        daemon.start()
        daemon.run()
    except Exception:
        log.exception("gamed stopped")
        sys.exit(1)


if __name__ == "__main__":
    main()
