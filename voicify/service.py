"""
Voicify Service — Voicify

Orchestrates recording, saving and voice-triggered replay.

State machine:
    IDLE --start_recording--> RECORDING --end_recording--> SAVING
    SAVING --save_recording / cancel_recording--> IDLE
    IDLE --on_voice_command (match)--> PLAYING --replay finished--> IDLE

The notification thread calls ``on_accessibility_event`` for every interface
change; it records clicks while RECORDING, keeps the StateBridge root current
and feeds the selection channel while PLAYING. Each replay runs on its own
thread, and only one replay may be in flight at a time.

Usage:
    from voicify.service import VoicifyService

    service = VoicifyService(engine, bridge, CatalogStore())
    service.start_recording()
    ...
    service.end_recording()
    service.add_output_selection(0, 400, 1080, 600)
    service.save_recording("check battery")

    service.on_voice_command("check the battery")
    result = service.wait_for_playback(timeout=60)
"""

from __future__ import annotations

import logging
import os
import threading
from enum import Enum
from typing import Callable, Optional

from voicify.accessibility import AccessibilityEvent, is_active_window_event, is_selection_event
from voicify.catalog import CatalogStore, DemonstrationCatalog
from voicify.errors import ExtractionError, PersistenceError
from voicify.models import Demonstration, OutputSelection
from voicify.playback import PlaybackResult, ReplayEngine
from voicify.recorder import ActionRecorder
from voicify.state_bridge import StateBridge

logger = logging.getLogger("service")

# ---------------------------------------------------------------------------
# Constants & Configuration
# ---------------------------------------------------------------------------

COMMAND_DISTANCE_THRESHOLD = int(os.getenv("VOICIFY_COMMAND_DISTANCE_THRESHOLD", "100"))


class ServiceState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    SAVING = "saving"
    PLAYING = "playing"


class VoicifyService:
    """
    Owns the catalog, the recorder and the replay thread.

    ``on_warning`` receives short user-facing messages (recording errors,
    unmatched commands). ``on_playback_complete`` receives the PlaybackResult
    of every replay, on the replay thread.
    """

    def __init__(
        self,
        engine: ReplayEngine,
        bridge: StateBridge,
        store: CatalogStore,
        recorder: Optional[ActionRecorder] = None,
        catalog: Optional[DemonstrationCatalog] = None,
        on_warning: Optional[Callable[[str], None]] = None,
        on_playback_complete: Optional[Callable[[PlaybackResult], None]] = None,
        command_distance_threshold: int = COMMAND_DISTANCE_THRESHOLD,
    ) -> None:
        self.engine = engine
        self.bridge = bridge
        self.store = store
        self.recorder = recorder or ActionRecorder(
            list_class_name=engine.config.list_class_name,
            toggle_class_name=engine.config.toggle_class_name,
        )
        self.catalog = catalog if catalog is not None else store.load()
        self.on_warning = on_warning
        self.on_playback_complete = on_playback_complete
        self.command_distance_threshold = command_distance_threshold

        self._state = ServiceState.IDLE
        self._state_lock = threading.Lock()
        self._demonstration: Optional[Demonstration] = None
        self._replay_thread: Optional[threading.Thread] = None
        self._last_result: Optional[PlaybackResult] = None

    # ----- State -----

    @property
    def state(self) -> ServiceState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: ServiceState) -> None:
        with self._state_lock:
            self._state = state
        logger.debug("State -> %s", state.value)

    @property
    def is_recording(self) -> bool:
        return self.state == ServiceState.RECORDING

    @property
    def current_demonstration(self) -> Optional[Demonstration]:
        return self._demonstration

    @property
    def last_result(self) -> Optional[PlaybackResult]:
        return self._last_result

    def _warn(self, message: str) -> None:
        logger.warning("%s", message)
        if self.on_warning is not None:
            self.on_warning(message)

    # ----- Notification thread -----

    def on_accessibility_event(self, event: Optional[AccessibilityEvent]) -> None:
        if event is None:
            logger.error("Received null accessibility event")
            return

        state = self.state
        demo = self._demonstration
        if (
            state == ServiceState.RECORDING
            and demo is not None
            and self.recorder.is_actionable(event)
            and self.recorder.is_unique(event)
        ):
            self.recorder.note_event(event)
            try:
                demo.add_action(self.recorder.obtain(event))
            except ExtractionError as exc:
                self._warn(f"Recording error: {exc}")

        if is_active_window_event(event.event_type) and event.source is not None:
            self.bridge.update_active_window(event.source)

        if state == ServiceState.PLAYING and is_selection_event(event.event_type):
            self.bridge.update_selection(event)

    # ----- Recording -----

    def start_recording(self) -> bool:
        root = self.bridge.root
        if root is None:
            self._warn("No active window yet; can't start recording")
            return False

        with self._state_lock:
            if self._state == ServiceState.SAVING:
                busy = "Still saving last recording"
            elif self._state == ServiceState.PLAYING:
                busy = "Still carrying out voice command"
            else:
                busy = None
                self._state = ServiceState.RECORDING
                self._demonstration = Demonstration(command="", app_identifier=root.package_name)
        if busy:
            self._warn(busy)
            return False

        self.recorder.reset()
        logger.info("Started recording in %s", root.package_name)
        return True

    def end_recording(self) -> bool:
        if self.state != ServiceState.RECORDING:
            return False
        self._set_state(ServiceState.SAVING)
        logger.info("Ended recording (%d actions)", len(self._demonstration.actions))
        return True

    def add_output_selection(self, left: int, top: int, right: int, bottom: int) -> bool:
        if self.state != ServiceState.SAVING or self._demonstration is None:
            return False
        selection = OutputSelection(left, top, right, bottom)
        self._demonstration.add_output_selection(selection)
        logger.info("Added output selection %s", selection.rect)
        return True

    def save_recording(self, command: str) -> bool:
        """
        Name the pending demonstration and persist the catalog. The
        demonstration stays in the in-memory catalog even if saving fails.
        """
        command = (command or "").strip()
        if self.state != ServiceState.SAVING or self._demonstration is None:
            logger.error("No demonstration to save")
            return False
        if not command:
            self._warn("A command name is required")
            return False

        demo = self._demonstration
        demo.command = command
        self.catalog.add(demo)
        self._demonstration = None
        self._set_state(ServiceState.IDLE)
        logger.info("Saving %r for %s (%d actions)", command, demo.app_identifier, len(demo.actions))
        return self._persist("Saving")

    def cancel_recording(self) -> bool:
        """Discard the pending recording. Only acts while RECORDING or SAVING."""
        with self._state_lock:
            if self._state not in (ServiceState.RECORDING, ServiceState.SAVING):
                return False
            self._demonstration = None
            self._state = ServiceState.IDLE
        logger.info("Recording discarded")
        return True

    # ----- Voice commands -----

    def on_voice_command(self, phrase: str, app_identifier: Optional[str] = None) -> bool:
        """
        Replay the demonstration that best matches ``phrase`` in the foreground
        app. Returns True if a replay was started.
        """
        if app_identifier is None:
            root = self.bridge.root
            app_identifier = root.package_name if root is not None else None
        if not app_identifier:
            self._warn("No active window yet; can't resolve command")
            return False

        with self._state_lock:
            if self._state != ServiceState.IDLE:
                busy = self._state
            else:
                busy = None
                demo = self.catalog.find_best_match(phrase, app_identifier)
                if demo is not None and demo.match_distance <= self.command_distance_threshold:
                    self._state = ServiceState.PLAYING
                else:
                    demo = None
        if busy is not None:
            self._warn(f"Busy ({busy.value}); ignoring command {phrase!r}")
            return False
        if demo is None:
            self._warn(f"No good match for command {phrase!r}")
            return False

        logger.info("Heard %r - doing demo %r (distance=%d)", phrase, demo.command, demo.match_distance)
        self.bridge.clear_selection()
        self._last_result = None
        thread = threading.Thread(target=self._play, args=(demo,), name="voicify-replay", daemon=True)
        self._replay_thread = thread
        thread.start()
        return True

    def _play(self, demo: Demonstration) -> None:
        try:
            result = self.engine.play(demo)
        except Exception as exc:
            logger.exception("Replay of %r crashed", demo.command)
            result = PlaybackResult(command=demo.command, actions_total=len(demo.actions), error=str(exc))
        self._on_done_playback(result)

    def _on_done_playback(self, result: PlaybackResult) -> None:
        if result.success:
            logger.info("Demonstration %r ended successfully", result.command)
        else:
            logger.error("Parts of demonstration %r might be aborted: %s", result.command, result.error)
        self._last_result = result
        self._set_state(ServiceState.IDLE)
        if self.on_playback_complete is not None:
            self.on_playback_complete(result)

    def wait_for_playback(self, timeout: Optional[float] = None) -> Optional[PlaybackResult]:
        thread = self._replay_thread
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                return None
        return self._last_result

    # ----- Catalog management -----

    def delete_demonstration(self, app_identifier: str, command: str) -> bool:
        if not self.catalog.remove(app_identifier, command):
            return False
        return self._persist("Deleting")

    def clear_catalog(self) -> bool:
        self.catalog.clear()
        return self._persist("Clearing")

    def _persist(self, what: str) -> bool:
        try:
            self.store.save(self.catalog)
        except PersistenceError as exc:
            self._warn(f"{what} failed: {exc}")
            return False
        return True

    def reload_catalog(self) -> int:
        self.catalog = self.store.load()
        return len(self.catalog)
