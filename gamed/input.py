"""Key input — evdev reader thread and menu-chord classification."""

from __future__ import annotations

import enum
import logging
import select
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass

import evdev
from evdev import ecodes

from gamed.config import KeymapConfig
from gamed.errors import ConfigError
from gamed.events import Channel, Event, EventKind

log = logging.getLogger(__name__)

VOLUME_STEP = 1
BRIGHTNESS_STEP = 5


class Key(enum.Enum):
    MENU = "menu"
    VOL_UP = "vol_up"
    VOL_DOWN = "vol_down"
    POWER = "power"
    OTHER = "other"


class KeyKind(enum.Enum):
    PRESSED = 1
    RELEASED = 0
    AUTOREPEAT = 2


@dataclass(frozen=True)
class KeyEvent:
    kind: KeyKind
    key: Key

    @classmethod
    def pressed(cls, key: Key) -> "KeyEvent":
        return cls(KeyKind.PRESSED, key)

    @classmethod
    def released(cls, key: Key) -> "KeyEvent":
        return cls(KeyKind.RELEASED, key)

    @classmethod
    def autorepeat(cls, key: Key) -> "KeyEvent":
        return cls(KeyKind.AUTOREPEAT, key)


class IntentKind(enum.Enum):
    VOLUME = "volume"
    BRIGHTNESS = "brightness"
    TOGGLE_MENU = "toggle_menu"
    POWER_OFF = "power_off"


@dataclass(frozen=True)
class Intent:
    kind: IntentKind
    delta: int = 0


@dataclass
class MenuChord:
    is_menu_pressed: bool = False
    is_menu_pressed_alone: bool = False


class InputClassifier:
    """Turns raw key events into intents.

    Holding Menu turns the volume keys into brightness keys. Menu pressed and
    released with nothing in between toggles the in-game menu, but only while
    ``is_ingame()`` says a game is running.
    """

    def __init__(self, is_ingame: Callable[[], bool]):
        self.is_ingame = is_ingame
        self.chord = MenuChord()

    def classify(self, event: KeyEvent) -> Intent | None:
        chord = self.chord
        if event == KeyEvent.pressed(Key.MENU):
            chord.is_menu_pressed = True
            chord.is_menu_pressed_alone = True
        elif event != KeyEvent.released(Key.MENU):
            chord.is_menu_pressed_alone = False

        held = event.kind in (KeyKind.PRESSED, KeyKind.AUTOREPEAT)

        if held and event.key in (Key.VOL_UP, Key.VOL_DOWN):
            sign = 1 if event.key == Key.VOL_UP else -1
            if chord.is_menu_pressed:
                return Intent(IntentKind.BRIGHTNESS, sign * BRIGHTNESS_STEP)
            return Intent(IntentKind.VOLUME, sign * VOLUME_STEP)

        if event == KeyEvent.autorepeat(Key.POWER):
            return Intent(IntentKind.POWER_OFF)

        if event == KeyEvent.released(Key.MENU):
            chord.is_menu_pressed = False
            if chord.is_menu_pressed_alone and self.is_ingame():
                chord.is_menu_pressed_alone = False
                return Intent(IntentKind.TOGGLE_MENU)

        return None


def build_keymap(config: KeymapConfig) -> dict[int, Key]:
    """Resolve configured evdev key names to codes."""
    keymap = {}
    for key, name in (
        (Key.MENU, config.menu),
        (Key.VOL_UP, config.vol_up),
        (Key.VOL_DOWN, config.vol_down),
        (Key.POWER, config.power),
    ):
        code = ecodes.ecodes.get(name)
        if code is None:
            raise ConfigError(f"unknown key name {name!r} for {key.value}")
        keymap[code] = key
    return keymap


def translate(event, keymap: dict[int, Key]) -> KeyEvent | None:
    """Map a raw evdev event to a KeyEvent; non-key events give None."""
    if event.type != ecodes.EV_KEY:
        return None
    try:
        kind = KeyKind(event.value)
    except ValueError:
        return None
    return KeyEvent(kind, keymap.get(event.code, Key.OTHER))


class InputThread(threading.Thread):
    """Background reader that pushes KEY events onto the channel.

    A device error ends the reader; it is reported as INPUT_FAILED so the
    event loop can stop the daemon instead of running without keys.
    """

    def __init__(self, channel: Channel, devices: Iterable, keymap: dict[int, Key]):
        super().__init__(daemon=True, name="input")
        self.channel = channel
        self.devices = list(devices)
        self.keymap = keymap

    @classmethod
    def open(cls, channel: Channel, paths: Iterable[str], keymap: dict[int, Key]) -> "InputThread":
        devices = [evdev.InputDevice(p) for p in paths]
        for dev in devices:
            log.info("reading input from %s (%s)", dev.path, dev.name)
        return cls(channel, devices, keymap)

    def run(self):
        try:
            while True:
                r, _, _ = select.select(self.devices, [], [])
                for dev in r:
                    try:
                        events = list(dev.read())
                    except BlockingIOError:
                        continue
                    for raw in events:
                        key_event = translate(raw, self.keymap)
                        if key_event is not None:
                            self.channel.put(Event(EventKind.KEY, key_event))
        except OSError as e:
            log.error("input device failed: %s", e)
            self.channel.put(Event(EventKind.INPUT_FAILED, e))
        finally:
            for dev in self.devices:
                dev.close()
