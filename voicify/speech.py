"""
Speech Output — Voicify

Announcement of on-screen content after a replay.

    Announcer        — interface used by the replay engine
    TtsAnnouncer     — pyttsx3 text-to-speech on a dedicated worker thread
    LoggingAnnouncer — writes announcements to the log (headless runs)

``announce`` only appends to a queue; it never waits for speech to finish.
"""

from __future__ import annotations

import logging
import queue
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional

import pyttsx3

logger = logging.getLogger("speech")

# Multiplier applied to the engine's default speaking rate
SPEECH_RATE = 1.2

_STOP = object()


class Announcer(ABC):

    @abstractmethod
    def is_ready(self) -> bool:
        ...

    @abstractmethod
    def announce(self, text: str) -> None:
        ...

    def shutdown(self) -> None:
        pass


class LoggingAnnouncer(Announcer):
    """Records announcements instead of speaking them."""

    def __init__(self) -> None:
        self.spoken: List[str] = []

    def is_ready(self) -> bool:
        return True

    def announce(self, text: str) -> None:
        self.spoken.append(text)
        logger.info("Announce: %s", text)


class TtsAnnouncer(Announcer):
    """
    pyttsx3-backed announcer.

    The engine is created and driven on its own thread, since pyttsx3 engines
    must be used from the thread that created them. Until that thread has
    initialised the engine, ``is_ready`` is False; if initialisation fails it
    stays False and announcements are dropped with a warning.
    """

    def __init__(
        self,
        rate_multiplier: float = SPEECH_RATE,
        engine_factory: Callable[[], Any] = pyttsx3.init,
        ready_timeout: float = 5.0,
    ) -> None:
        self.rate_multiplier = rate_multiplier
        self._engine_factory = engine_factory
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._ready = False
        self._initialised = threading.Event()
        self._thread = threading.Thread(target=self._run, name="voicify-tts", daemon=True)
        self._thread.start()
        self._initialised.wait(ready_timeout)

    def is_ready(self) -> bool:
        return self._ready

    def announce(self, text: str) -> None:
        if not self._ready:
            logger.warning("Speech engine not ready; dropping %r", text)
            return
        self._queue.put(text)

    def shutdown(self, timeout: Optional[float] = 2.0) -> None:
        self._queue.put(_STOP)
        self._thread.join(timeout)

    def _run(self) -> None:
        try:
            engine = self._engine_factory()
            rate = engine.getProperty("rate")
            engine.setProperty("rate", int(rate * self.rate_multiplier))
        except Exception as exc:
            logger.warning("Text-to-speech unavailable: %s", exc)
            self._initialised.set()
            return

        self._ready = True
        self._initialised.set()
        logger.info("Text-to-speech ready (rate x%.1f)", self.rate_multiplier)

        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            try:
                engine.say(item)
                engine.runAndWait()
            except RuntimeError as exc:
                logger.warning("Speech failed for %r: %s", item, exc)

        self._ready = False
        try:
            engine.stop()
        except RuntimeError:
            pass
