"""
Android Device Adapter — Voicify

Connects the replay engine to a real Android device over ADB.

Architecture:
    ReplayEngine --> AdbInjector --------.
                                         v
    HierarchyPoller --> AndroidDevice --> AdbTransport
          |                                |-- LocalAdbTransport  (adb shell via subprocess)
          v                                `-- NodeAdbTransport   (OpenClaw node HTTP API)
    VoicifyService.on_accessibility_event

ADB exposes no accessibility event stream, so ``HierarchyPoller`` dumps the
UI hierarchy periodically and reports every change as a window-state event.
The window id of a dump is the CRC32 of its XML.

Nodes parsed from a dump cannot take input focus over ADB; FOCUS requests
fail, so the replay engine falls back to injected taps. CLICK taps the
node's center.

Usage:
    from voicify.device import AndroidDevice, AdbInjector, LocalAdbTransport

    device = AndroidDevice(LocalAdbTransport(serial="emulator-5554"))
    root = device.ui_dump()
    injector = AdbInjector(device.transport)
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

import requests

from voicify.accessibility import (
    AccessibilityEvent,
    AccessibilityNode,
    EventType,
    NodeAction,
    parse_ui_hierarchy,
)
from voicify.errors import DeviceError
from voicify.injection import InputInjector, KeyAction, KeyEvent, MotionAction, MotionEvent, uptime_ms

logger = logging.getLogger("device")

# ---------------------------------------------------------------------------
# Constants & Configuration
# ---------------------------------------------------------------------------

DEFAULT_NODE_URL = os.getenv("OPENCLAW_NODE_URL", "http://localhost:18789")
DEFAULT_NODE_NAME = os.getenv("OPENCLAW_ANDROID_NODE", "android")
DEFAULT_SERIAL = os.getenv("ANDROID_SERIAL", "")

# Seconds
DEFAULT_COMMAND_TIMEOUT = 30
DEFAULT_POLL_INTERVAL = 1.0

UI_DUMP_COMMAND = "uiautomator dump /dev/tty"
CURRENT_APP_COMMAND = "dumpsys activity activities | grep mResumedActivity"


# ===================================================================
# Transports
# ===================================================================

class AdbTransport(ABC):
    """Runs ``adb shell`` commands on one device and returns stdout."""

    @abstractmethod
    def shell(self, command: str, timeout: Optional[float] = None) -> str:
        ...


class LocalAdbTransport(AdbTransport):
    """Calls the ``adb`` binary on this machine."""

    def __init__(
        self,
        serial: Optional[str] = None,
        adb_path: str = "adb",
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        self.serial = serial if serial is not None else (DEFAULT_SERIAL or None)
        self.adb_path = adb_path
        self.command_timeout = command_timeout

    def shell(self, command: str, timeout: Optional[float] = None) -> str:
        args = [self.adb_path]
        if self.serial:
            args += ["-s", self.serial]
        args += ["shell", command]

        logger.debug("adb shell: %s", command)
        try:
            proc = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=timeout or self.command_timeout,
            )
        except FileNotFoundError as exc:
            raise DeviceError(f"adb executable not found: {self.adb_path}") from exc
        except subprocess.TimeoutExpired as exc:
            raise DeviceError(f"adb shell timed out: {command}") from exc

        if proc.returncode != 0:
            raise DeviceError(f"adb shell failed ({proc.returncode}): {proc.stderr.strip()[:500]}")
        return proc.stdout


class NodeAdbTransport(AdbTransport):
    """
    Sends commands to an OpenClaw Android node, which runs them through
    Termux/Shizuku on the paired device.

    The node API expects POST /api/nodes/invoke with:
        { "node": "<name>", "command": "<cmd>", "params": {...} }
    """

    def __init__(
        self,
        node_url: str = DEFAULT_NODE_URL,
        node_name: str = DEFAULT_NODE_NAME,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.node_url = node_url.rstrip("/")
        self.node_name = node_name
        self.command_timeout = command_timeout
        self._session = session or requests.Session()

    def invoke(self, command: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload = {
            "node": self.node_name,
            "command": command,
            "params": params or {},
        }
        url = f"{self.node_url}/api/nodes/invoke"
        logger.debug("Node invoke: %s %s", command, params or {})

        try:
            resp = self._session.post(url, json=payload, timeout=self.command_timeout)
        except requests.RequestException as exc:
            raise DeviceError(f"Failed to reach node at {url}: {exc}") from exc

        if resp.status_code != 200:
            raise DeviceError(f"Node returned HTTP {resp.status_code}: {resp.text[:500]}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise DeviceError(f"Node returned invalid JSON: {exc}") from exc
        if data.get("error"):
            raise DeviceError(f"Node error: {data['error']}")
        return data

    def shell(self, command: str, timeout: Optional[float] = None) -> str:
        result = self.invoke("adb.shell", {"command": command, "timeout": timeout or self.command_timeout})
        return result.get("stdout", "")

    def close(self) -> None:
        self._session.close()


# ===================================================================
# AndroidDevice
# ===================================================================

class AndroidDevice:
    """Reads the interface state of a device."""

    def __init__(self, transport: AdbTransport) -> None:
        self.transport = transport

    def ui_dump(self) -> Optional[AccessibilityNode]:
        """Current UI hierarchy as an AccessibilityNode tree, or None if unreadable."""
        xml_content = self.transport.shell(UI_DUMP_COMMAND)
        return parse_ui_hierarchy(xml_content, action_handler=self._perform_node_action)

    def current_package(self) -> str:
        output = self.transport.shell(CURRENT_APP_COMMAND)
        match = re.search(r"u0\s+(\S+)/", output)
        return match.group(1) if match else ""

    def tap(self, x: int, y: int) -> None:
        self.transport.shell(f"input tap {int(x)} {int(y)}")

    def _perform_node_action(self, node: AccessibilityNode, action: NodeAction) -> bool:
        if action == NodeAction.CLICK:
            self.tap(*node.bounds.center)
            return True
        return False


# ===================================================================
# AdbInjector
# ===================================================================

class AdbInjector(InputInjector):
    """
    Replays synthesized input with ``input`` shell commands. A pointer DOWN
    is held until the matching UP arrives; the pair becomes one tap, or a
    swipe if the pointer moved. Key DOWNs are ignored and each key UP
    becomes one ``input keyevent``.
    """

    def __init__(self, transport: AdbTransport) -> None:
        self.transport = transport
        self._pending_down: Optional[MotionEvent] = None

    def send_pointer(self, event: MotionEvent) -> None:
        if event.action == MotionAction.DOWN:
            self._pending_down = event
            return

        down = self._pending_down
        self._pending_down = None
        x, y = int(round(event.x)), int(round(event.y))
        if down is not None and (int(round(down.x)), int(round(down.y))) != (x, y):
            self.transport.shell(f"input swipe {int(round(down.x))} {int(round(down.y))} {x} {y}")
        else:
            self.transport.shell(f"input tap {x} {y}")

    def send_key(self, event: KeyEvent) -> None:
        if event.action == KeyAction.UP:
            self.transport.shell(f"input keyevent {event.key_code}")


# ===================================================================
# HierarchyPoller
# ===================================================================

class HierarchyPoller(threading.Thread):
    """
    Dumps the UI hierarchy every ``interval`` seconds and reports each new
    window as a WINDOW_STATE_CHANGED event. Acts as the notification thread
    for device-backed replays.
    """

    def __init__(
        self,
        device: AndroidDevice,
        on_event: Callable[[AccessibilityEvent], None],
        interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        super().__init__(name="voicify-poller", daemon=True)
        self.device = device
        self.on_event = on_event
        self.interval = interval
        self._stop_event = threading.Event()
        self._last_window_id: Optional[int] = None

    def poll_once(self) -> Optional[AccessibilityEvent]:
        """Dump once; returns the event delivered, or None when nothing changed."""
        try:
            root = self.device.ui_dump()
        except DeviceError as exc:
            logger.warning("UI dump failed: %s", exc)
            return None
        if root is None or root.window_id == self._last_window_id:
            return None

        self._last_window_id = root.window_id
        event = AccessibilityEvent(
            event_type=EventType.WINDOW_STATE_CHANGED,
            event_time=uptime_ms(),
            package_name=root.package_name,
            class_name=root.class_name,
            source=root,
            window_id=root.window_id,
        )
        self.on_event(event)
        return event

    def run(self) -> None:
        logger.info("Polling UI hierarchy every %.1fs", self.interval)
        self.poll_once()
        while not self._stop_event.wait(self.interval):
            self.poll_once()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout)

    @property
    def last_window_id(self) -> Optional[int]:
        return self._last_window_id

