"""
Input Injection — Voicify

Synthesized pointer and key events, and the facility that delivers them to
the device. Concrete injectors implement ``send_pointer`` and ``send_key``;
``click`` and ``press_key`` build the usual DOWN/UP pairs on top of them.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional

logger = logging.getLogger("injection")


def uptime_ms() -> int:
    """Monotonic milliseconds, the clock recorded event times are measured in."""
    return int(time.monotonic() * 1000)


class MotionAction(str, Enum):
    DOWN = "down"
    UP = "up"


class KeyAction(str, Enum):
    DOWN = "down"
    UP = "up"


class KeyCode(IntEnum):
    """Android key codes used during replay."""
    DPAD_UP = 19
    DPAD_DOWN = 20
    DPAD_LEFT = 21
    DPAD_RIGHT = 22
    DPAD_CENTER = 23


@dataclass(frozen=True)
class MotionEvent:
    """
    A pointer event. ``down_time`` is the logical time the gesture started
    (the recorded time for replays); ``event_time`` is when it is sent.
    """
    down_time: int
    event_time: int
    action: MotionAction
    x: float
    y: float


@dataclass(frozen=True)
class KeyEvent:
    down_time: int
    event_time: int
    action: KeyAction
    key_code: int


class InputInjector(ABC):
    """Delivers synthesized input to the foreground application."""

    @abstractmethod
    def send_pointer(self, event: MotionEvent) -> None:
        ...

    @abstractmethod
    def send_key(self, event: KeyEvent) -> None:
        ...

    def click(self, x: float, y: float, down_time: Optional[int] = None) -> None:
        """DOWN then UP at (x, y), both stamped with the current time as event time."""
        now = uptime_ms()
        if down_time is None or down_time < 0:
            down_time = now
        self.send_pointer(MotionEvent(down_time, now, MotionAction.DOWN, x, y))
        self.send_pointer(MotionEvent(down_time, now, MotionAction.UP, x, y))
        logger.debug("Injected click at (%.1f, %.1f)", x, y)

    def press_key(self, key_code: int) -> None:
        now = uptime_ms()
        self.send_key(KeyEvent(now, now, KeyAction.DOWN, int(key_code)))
        self.send_key(KeyEvent(now, now, KeyAction.UP, int(key_code)))
        logger.debug("Injected key %d", int(key_code))
