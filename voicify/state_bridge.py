"""
State Bridge — Voicify

Shared state between the notification thread, which observes the interface,
and the replay thread, which acts on it.

Two independently locked slots:
    root       — the root node of the current foreground window
    selection  — the latest selection/scroll notification, with a
                 "wait for the next one" primitive used while stepping
                 through lists with directional keys

Both slots are last-writer-wins. Nothing is queued.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from voicify.accessibility import AccessibilityEvent, AccessibilityNode

logger = logging.getLogger("state_bridge")

# Seconds to let the interface settle after a selection arrives
SELECTION_SETTLE_DELAY = 0.1
DEFAULT_SELECTION_TIMEOUT = 5.0


class StateBridge:
    """Cross-thread handoff of the foreground root and the current selection."""

    def __init__(
        self,
        settle_delay: float = SELECTION_SETTLE_DELAY,
        wait_timeout: float = DEFAULT_SELECTION_TIMEOUT,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settle_delay = settle_delay
        self.wait_timeout = wait_timeout
        self._sleep = sleep

        self._root_lock = threading.Lock()
        self._root: Optional[AccessibilityNode] = None
        self._window_id: Optional[int] = None

        self._selection_cond = threading.Condition(threading.Lock())
        self._selection: Optional[AccessibilityEvent] = None
        self._generation = 0
        self._floor = 0

    # ----- Root reference -----

    def update_active_window(self, node: Optional[AccessibilityNode]) -> bool:
        """Cache ``node`` as the root if it belongs to a different window. Returns True if replaced."""
        if node is None:
            return False
        with self._root_lock:
            if self._window_id is None or self._root is None or node.window_id != self._window_id:
                self._root = node
                self._window_id = node.window_id
                logger.debug("Active window changed to %d (%s)", node.window_id, node.package_name)
                return True
        return False

    @property
    def root(self) -> Optional[AccessibilityNode]:
        with self._root_lock:
            return self._root

    @property
    def window_id(self) -> Optional[int]:
        with self._root_lock:
            return self._window_id

    def reset_root(self) -> None:
        with self._root_lock:
            self._root = None
            self._window_id = None

    # ----- Selection channel -----

    def update_selection(self, event: AccessibilityEvent) -> None:
        with self._selection_cond:
            self._selection = event
            self._generation += 1
            self._selection_cond.notify_all()

    def clear_selection(self) -> None:
        """Forget the current selection so the next wait needs a fresh one."""
        with self._selection_cond:
            self._selection = None
            self._floor = self._generation

    def peek_selection(self) -> Optional[AccessibilityEvent]:
        with self._selection_cond:
            return self._selection

    def wait_for_selection(self, timeout: Optional[float] = None) -> Optional[AccessibilityEvent]:
        """
        Block until a selection newer than the last consumed one arrives,
        then wait the settle delay and return the latest selection.

        Returns None if nothing arrives within ``timeout`` seconds.
        """
        if timeout is None:
            timeout = self.wait_timeout
        with self._selection_cond:
            arrived = self._selection_cond.wait_for(
                lambda: self._generation > self._floor, timeout=timeout,
            )
            if not arrived:
                logger.debug("No selection within %.1fs", timeout)
                return None
            self._floor = self._generation

        if self.settle_delay > 0:
            self._sleep(self.settle_delay)

        with self._selection_cond:
            return self._selection
