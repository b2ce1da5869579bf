"""Tagged events carried on the daemon's single dispatch channel."""

from __future__ import annotations

import enum
import queue
from dataclasses import dataclass
from typing import Any


class EventKind(enum.Enum):
    KEY = "key"
    MAIN_EXITED = "main_exited"
    MENU_EXITED = "menu_exited"
    QUIT = "quit"
    INPUT_FAILED = "input_failed"


@dataclass(frozen=True)
class Event:
    kind: EventKind
    payload: Any = None  # KeyEvent for KEY, pid for *_EXITED, signal number for QUIT, OSError for INPUT_FAILED


# SimpleQueue.put is reentrant, so signal handlers may push onto it.
Channel = queue.SimpleQueue


def new_channel() -> Channel:
    return queue.SimpleQueue()
