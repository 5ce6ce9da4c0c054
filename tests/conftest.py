"""
Shared fixtures for the Voicify test suite.

Provides interface trees, accessibility events and fake input/output
collaborators so that all tests run WITHOUT a device or speech engine.
"""

from typing import Callable, List, Optional, Tuple

import pytest

from voicify.accessibility import (
    AccessibilityEvent,
    AccessibilityNode,
    AccessibilityRecord,
    EventType,
    NodeAction,
    Rect,
)
from voicify.injection import InputInjector, KeyAction, KeyEvent, MotionAction, MotionEvent
from voicify.speech import LoggingAnnouncer
from voicify.state_bridge import StateBridge


SETTINGS_PACKAGE = "com.android.settings"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeInjector(InputInjector):
    """Records injected input. ``on_key`` is called for every key UP."""

    def __init__(self, on_key: Optional[Callable[[int], None]] = None) -> None:
        self.pointer_events: List[MotionEvent] = []
        self.key_events: List[KeyEvent] = []
        self.on_key = on_key

    def send_pointer(self, event: MotionEvent) -> None:
        self.pointer_events.append(event)

    def send_key(self, event: KeyEvent) -> None:
        self.key_events.append(event)
        if event.action == KeyAction.UP and self.on_key is not None:
            self.on_key(event.key_code)

    @property
    def clicks(self) -> List[Tuple[float, float]]:
        return [(e.x, e.y) for e in self.pointer_events if e.action == MotionAction.UP]

    @property
    def keys(self) -> List[int]:
        return [e.key_code for e in self.key_events if e.action == KeyAction.UP]


class FocusHandler:
    """Node action handler that records requests and answers with ``result``."""

    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.calls: List[Tuple[AccessibilityNode, NodeAction]] = []

    def __call__(self, node: AccessibilityNode, action: NodeAction) -> bool:
        self.calls.append((node, action))
        return self.result

    @property
    def focused(self) -> List[AccessibilityNode]:
        return [n for n, a in self.calls if a == NodeAction.FOCUS]


# ---------------------------------------------------------------------------
# Tree fixtures
# ---------------------------------------------------------------------------

def _node(class_name: str, bounds: Tuple[int, int, int, int], text: str = "",
          desc: str = "", children=None, window_id: int = 1) -> AccessibilityNode:
    return AccessibilityNode(
        class_name=class_name,
        text=text,
        content_description=desc,
        bounds=Rect(*bounds),
        package_name=SETTINGS_PACKAGE,
        window_id=window_id,
        children=children or [],
    )


def _settings_row(label: str, top: int) -> AccessibilityNode:
    return _node("android.widget.LinearLayout", (0, top, 1080, top + 200), children=[
        _node("android.widget.RelativeLayout", (0, top, 800, top + 200), children=[
            _node("android.widget.TextView", (40, top + 50, 400, top + 150), text=label),
        ]),
        _node("android.widget.Switch", (900, top + 50, 1040, top + 150)),
    ])


@pytest.fixture
def make_settings_tree():
    """Factory for a Settings-like window: toolbar, a list of toggle rows, a status line."""
    def _make(window_id: int = 1, handler: Optional[FocusHandler] = None) -> AccessibilityNode:
        root = _node("android.widget.FrameLayout", (0, 0, 1080, 1920), window_id=window_id, children=[
            _node("android.widget.ImageButton", (0, 0, 120, 56), desc="Navigate up"),
            _node("android.widget.TextView", (120, 0, 600, 56), text="Settings"),
            _node("android.widget.ListView", (0, 100, 1080, 1500), children=[
                _settings_row("Wi-Fi", 100),
                _settings_row("Bluetooth", 300),
            ]),
            _node("android.widget.TextView", (0, 1600, 1080, 1700), text="80%", desc="Battery level"),
            _node("android.view.View", (0, 1750, 1080, 1850)),
        ])
        for node in root.walk():
            node.window_id = window_id
        root.action_handler = handler
        return root
    return _make


@pytest.fixture
def settings_tree(make_settings_tree):
    return make_settings_tree()


# ---------------------------------------------------------------------------
# Event fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def make_click_event():
    """Factory for VIEW_CLICKED events."""
    def _make(text=None, desc: str = "", source: Optional[AccessibilityNode] = None,
              event_time: int = 1000, record_class: Optional[str] = None,
              record_text=None) -> AccessibilityEvent:
        records = []
        if record_class is not None:
            records.append(AccessibilityRecord(class_name=record_class, text=list(record_text or [])))
        return AccessibilityEvent(
            event_type=EventType.VIEW_CLICKED,
            event_time=event_time,
            package_name=SETTINGS_PACKAGE,
            text=list(text or []),
            content_description=desc,
            source=source,
            records=records,
        )
    return _make


@pytest.fixture
def make_window_event():
    def _make(root: AccessibilityNode, event_time: int = 0) -> AccessibilityEvent:
        return AccessibilityEvent(
            event_type=EventType.WINDOW_STATE_CHANGED,
            event_time=event_time,
            package_name=root.package_name,
            source=root,
            window_id=root.window_id,
        )
    return _make


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

@pytest.fixture
def bridge():
    """StateBridge with no settle delay and a short wait timeout."""
    return StateBridge(settle_delay=0, wait_timeout=0.2)


@pytest.fixture
def injector():
    return FakeInjector()


@pytest.fixture
def announcer():
    return LoggingAnnouncer()


@pytest.fixture
def sleeps():
    """List that records requested sleeps; pass ``sleeps.append`` as the sleep function."""
    return []


@pytest.fixture
def make_injector():
    """Factory for FakeInjector, optionally with an ``on_key`` hook."""
    return FakeInjector


@pytest.fixture
def make_focus_handler():
    return FocusHandler
