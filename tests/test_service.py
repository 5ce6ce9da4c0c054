"""Test service — Voicify."""
from __future__ import annotations

import threading
from unittest.mock import MagicMock, patch

import pytest

try:
    from voicify.accessibility import (
        SWITCH_WIDGET_CLASS_NAME,
        AccessibilityEvent,
        AccessibilityNode,
        EventType,
        Rect,
    )
    from voicify.catalog import CatalogStore, DemonstrationCatalog
    from voicify.errors import PersistenceError
    from voicify.models import Demonstration, OutputSelection, PlaybackAction
    from voicify.playback import PlaybackConfig, PlaybackResult, ReplayEngine
    from voicify.recorder import ActionRecorder
    from voicify.service import ServiceState, VoicifyService
    HAS_MODULE = True
except ImportError:
    HAS_MODULE = False

pytestmark = pytest.mark.skipif(not HAS_MODULE, reason="service not available")


SETTINGS = "com.android.settings"


# ===================================================================
# Fixtures
# ===================================================================


@pytest.fixture
def store(tmp_path):
    return CatalogStore(tmp_path / "voicify_catalog.json")


@pytest.fixture
def engine(bridge, injector, announcer):
    config = PlaybackConfig(max_action_delay=0, selection_wait_timeout=0.2, wait_before_reading=0)
    return ReplayEngine(bridge, injector, announcer, config)


@pytest.fixture
def warnings():
    return []


@pytest.fixture
def make_service(engine, bridge, store, warnings):
    def _make(**kwargs):
        kwargs.setdefault("on_warning", warnings.append)
        return VoicifyService(kwargs.pop("engine", engine), bridge, store, **kwargs)
    return _make


@pytest.fixture
def service(make_service):
    return make_service()


@pytest.fixture
def live_service(service, settings_tree, make_window_event):
    """Service with a Settings window already in the foreground."""
    service.on_accessibility_event(make_window_event(settings_tree))
    return service


def _battery_demo():
    demo = Demonstration(command="check battery", app_identifier=SETTINGS)
    demo.add_action(PlaybackAction(x=540, y=900, event_time=100))
    demo.add_output_selection(OutputSelection(0, 1550, 1080, 1720))
    return demo


class BlockingEngine:
    """Stands in for ReplayEngine; ``play`` blocks until ``release`` is set."""

    def __init__(self):
        self.config = PlaybackConfig()
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def play(self, demo):
        with self._lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.started.set()
        self.release.wait(5)
        with self._lock:
            self.active -= 1
        return PlaybackResult(command=demo.command, success=True, actions_success=True, output_success=True)


# ===================================================================
# Notification handling
# ===================================================================


class TestAccessibilityEvents:
    def test_window_event_updates_root(self, service, bridge, settings_tree, make_window_event):
        service.on_accessibility_event(make_window_event(settings_tree))
        assert bridge.root is settings_tree

    def test_window_event_without_source_ignored(self, service, bridge):
        service.on_accessibility_event(AccessibilityEvent(EventType.WINDOW_STATE_CHANGED))
        assert bridge.root is None

    def test_none_event_ignored(self, service):
        service.on_accessibility_event(None)
        assert service.state == ServiceState.IDLE

    def test_selection_ignored_when_idle(self, service, bridge):
        service.on_accessibility_event(AccessibilityEvent(EventType.VIEW_SELECTED, text=["Alpha"]))
        assert bridge.peek_selection() is None

    def test_clicks_ignored_when_not_recording(self, live_service, settings_tree, make_click_event):
        wifi = settings_tree.find_by_text("Wi-Fi")[0]
        live_service.on_accessibility_event(make_click_event(text=["Wi-Fi"], source=wifi))
        assert live_service.current_demonstration is None


# ===================================================================
# Recording
# ===================================================================


class TestRecording:
    def test_requires_root(self, service, warnings):
        assert service.start_recording() is False
        assert service.state == ServiceState.IDLE
        assert warnings

    def test_full_flow(self, live_service, store, settings_tree, make_click_event):
        wifi = settings_tree.find_by_text("Wi-Fi")[0]
        assert live_service.start_recording()
        assert live_service.is_recording
        assert live_service.current_demonstration.app_identifier == SETTINGS

        live_service.on_accessibility_event(make_click_event(text=["Wi-Fi"], source=wifi, event_time=1000))
        live_service.on_accessibility_event(make_click_event(desc="Navigate up", event_time=2000))

        assert live_service.end_recording()
        assert live_service.state == ServiceState.SAVING
        assert live_service.add_output_selection(1080, 1720, 0, 1550)
        assert live_service.save_recording("  turn on wifi  ")

        assert live_service.state == ServiceState.IDLE
        assert live_service.current_demonstration is None
        saved = store.load().get(SETTINGS, "turn on wifi")
        assert [a.primary_text for a in saved.actions] == ["Wi-Fi", None]
        assert saved.actions[1].content_description == "Navigate up"
        assert saved.output_selections == [OutputSelection(0, 1550, 1080, 1720)]

    def test_duplicate_events_filtered(self, live_service, make_click_event):
        live_service.start_recording()
        live_service.on_accessibility_event(make_click_event(text=["OK"], event_time=1000))
        live_service.on_accessibility_event(make_click_event(text=["OK"], event_time=1200))
        live_service.on_accessibility_event(make_click_event(text=["OK"], event_time=1800))
        assert len(live_service.current_demonstration.actions) == 2

    def test_non_click_events_not_recorded(self, live_service):
        live_service.start_recording()
        live_service.on_accessibility_event(AccessibilityEvent(EventType.VIEW_FOCUSED, text=["OK"]))
        assert live_service.current_demonstration.actions == []

    def test_extraction_error_warns_and_continues(self, live_service, warnings, make_click_event):
        live_service.start_recording()
        live_service.on_accessibility_event(
            make_click_event(text=["ON"], record_class=SWITCH_WIDGET_CLASS_NAME, record_text=[])
        )
        assert live_service.is_recording
        assert live_service.current_demonstration.actions == []
        assert any("Recording error" in w for w in warnings)

    def test_restart_discards_previous(self, live_service, make_click_event):
        live_service.start_recording()
        live_service.on_accessibility_event(make_click_event(text=["OK"], event_time=1000))
        assert live_service.start_recording()
        assert live_service.current_demonstration.actions == []
        live_service.on_accessibility_event(make_click_event(text=["OK"], event_time=1001))
        assert len(live_service.current_demonstration.actions) == 1

    def test_refused_while_saving(self, live_service, warnings):
        live_service.start_recording()
        live_service.end_recording()
        assert live_service.start_recording() is False
        assert live_service.state == ServiceState.SAVING
        assert "Still saving last recording" in warnings

    def test_end_requires_recording(self, live_service):
        assert live_service.end_recording() is False

    def test_selection_requires_saving(self, live_service):
        live_service.start_recording()
        assert live_service.add_output_selection(0, 0, 10, 10) is False

    def test_empty_name_rejected(self, live_service, warnings):
        live_service.start_recording()
        live_service.end_recording()
        assert live_service.save_recording("   ") is False
        assert live_service.state == ServiceState.SAVING

    def test_save_without_recording(self, live_service):
        assert live_service.save_recording("x") is False

    def test_save_failure_keeps_in_memory(self, live_service, store, warnings):
        live_service.start_recording()
        live_service.end_recording()
        with patch.object(store, "save", side_effect=PersistenceError("disk full")):
            assert live_service.save_recording("broken") is False
        assert live_service.state == ServiceState.IDLE
        assert live_service.catalog.get(SETTINGS, "broken") is not None
        assert any("Saving failed" in w for w in warnings)

    def test_same_name_replaces(self, live_service):
        for _ in range(2):
            live_service.start_recording()
            live_service.end_recording()
            live_service.save_recording("dup")
        assert live_service.catalog.count(SETTINGS) == 1

    def test_cancel(self, live_service):
        live_service.start_recording()
        live_service.end_recording()
        assert live_service.cancel_recording() is True
        assert live_service.state == ServiceState.IDLE
        assert live_service.current_demonstration is None
        assert len(live_service.catalog) == 0

    def test_cancel_while_recording(self, live_service, make_click_event):
        live_service.start_recording()
        live_service.on_accessibility_event(make_click_event(text=["OK"], event_time=1000))
        assert live_service.cancel_recording() is True
        assert live_service.state == ServiceState.IDLE
        assert live_service.current_demonstration is None

    def test_cancel_when_idle_is_refused(self, live_service):
        assert live_service.cancel_recording() is False
        assert live_service.state == ServiceState.IDLE


# ===================================================================
# Voice commands
# ===================================================================


class TestVoiceCommands:
    def test_replays_best_match(self, make_service, bridge, injector, announcer, settings_tree, make_window_event):
        results = []
        catalog = DemonstrationCatalog()
        catalog.add(_battery_demo())
        service = make_service(catalog=catalog, on_playback_complete=results.append)
        service.on_accessibility_event(make_window_event(settings_tree))

        assert service.on_voice_command("check the battery")
        result = service.wait_for_playback(timeout=5)

        assert result.success
        assert injector.clicks == [(540, 900)]
        assert announcer.spoken == ["Battery level.80%."]
        assert results == [result]
        assert service.last_result is result
        assert service.state == ServiceState.IDLE

    def test_no_match_beyond_threshold(self, make_service, warnings, settings_tree, make_window_event):
        catalog = DemonstrationCatalog()
        catalog.add(_battery_demo())
        service = make_service(catalog=catalog, command_distance_threshold=2)
        service.on_accessibility_event(make_window_event(settings_tree))
        assert service.on_voice_command("check the battery") is False
        assert service.state == ServiceState.IDLE
        assert any("No good match" in w for w in warnings)

    def test_empty_catalog(self, live_service, warnings):
        assert live_service.on_voice_command("anything") is False

    def test_no_foreground_app(self, service, warnings):
        assert service.on_voice_command("check battery") is False
        assert warnings

    def test_explicit_app(self, make_service, injector, settings_tree, make_window_event):
        catalog = DemonstrationCatalog()
        other = Demonstration(command="compose", app_identifier="com.google.android.gm")
        catalog.add(other)
        service = make_service(catalog=catalog)
        service.on_accessibility_event(make_window_event(settings_tree))
        assert service.on_voice_command("compose", app_identifier="com.google.android.gm")
        assert service.wait_for_playback(timeout=5).command == "compose"

    def test_refused_while_recording(self, make_service, settings_tree, make_window_event, warnings):
        catalog = DemonstrationCatalog()
        catalog.add(_battery_demo())
        service = make_service(catalog=catalog)
        service.on_accessibility_event(make_window_event(settings_tree))
        service.start_recording()
        assert service.on_voice_command("check battery") is False
        assert service.is_recording

    def test_busy_while_playing_and_selection_forwarded(self, make_service, bridge, settings_tree,
                                                        make_window_event, warnings):
        engine = BlockingEngine()
        catalog = DemonstrationCatalog()
        catalog.add(_battery_demo())
        service = make_service(engine=engine, catalog=catalog, recorder=ActionRecorder())
        service.on_accessibility_event(make_window_event(settings_tree))

        assert service.on_voice_command("check battery")
        assert engine.started.wait(5)
        try:
            assert service.state == ServiceState.PLAYING
            assert service.on_voice_command("check battery") is False
            assert service.start_recording() is False
            assert "Still carrying out voice command" in warnings

            service.on_accessibility_event(AccessibilityEvent(EventType.VIEW_SELECTED, text=["Alpha"]))
            assert bridge.peek_selection().text == ["Alpha"]
        finally:
            engine.release.set()

        assert service.wait_for_playback(timeout=5).success
        assert service.state == ServiceState.IDLE

    def test_cancel_during_playback_keeps_single_replay(self, make_service, bridge, settings_tree,
                                                        make_window_event):
        engine = BlockingEngine()
        catalog = DemonstrationCatalog()
        catalog.add(_battery_demo())
        service = make_service(engine=engine, catalog=catalog, recorder=ActionRecorder())
        service.on_accessibility_event(make_window_event(settings_tree))

        assert service.on_voice_command("check battery")
        assert engine.started.wait(5)
        try:
            assert service.cancel_recording() is False
            assert service.state == ServiceState.PLAYING
            assert service.on_voice_command("check battery") is False

            service.on_accessibility_event(AccessibilityEvent(EventType.VIEW_SCROLLED, text=["Beta"]))
            assert bridge.peek_selection().text == ["Beta"]
        finally:
            engine.release.set()

        assert service.wait_for_playback(timeout=5).success
        assert engine.calls == 1
        assert engine.max_active == 1
        assert service.state == ServiceState.IDLE

    def test_engine_crash_returns_to_idle(self, make_service, settings_tree, make_window_event):
        engine = MagicMock()
        engine.config = PlaybackConfig()
        engine.play.side_effect = RuntimeError("boom")
        catalog = DemonstrationCatalog()
        catalog.add(_battery_demo())
        service = make_service(engine=engine, catalog=catalog)
        service.on_accessibility_event(make_window_event(settings_tree))

        assert service.on_voice_command("check battery")
        result = service.wait_for_playback(timeout=5)
        assert not result.success
        assert result.error == "boom"
        assert service.state == ServiceState.IDLE

    def test_wait_without_playback(self, service):
        assert service.wait_for_playback(timeout=0.01) is None


# ===================================================================
# Record then replay
# ===================================================================


NOTES = "com.example.notes"


def _notes_window(window_id, save_bounds):
    return AccessibilityNode(
        class_name="android.widget.FrameLayout",
        bounds=Rect(0, 0, 1080, 1920),
        package_name=NOTES,
        window_id=window_id,
        children=[
            AccessibilityNode(class_name="android.view.View", bounds=Rect(0, 0, 20, 100),
                              package_name=NOTES, window_id=window_id),
            AccessibilityNode(class_name="android.widget.Button", text="Save", bounds=save_bounds,
                              package_name=NOTES, window_id=window_id),
        ],
    )


class TestRecordAndReplay:
    def test_replay_follows_moved_label(self, make_service, bridge, injector, announcer, sleeps,
                                        make_click_event, make_window_event):
        config = PlaybackConfig(max_action_delay=10, selection_wait_timeout=0.2, wait_before_reading=0)
        engine = ReplayEngine(bridge, injector, announcer, config, sleep=sleeps.append)
        service = make_service(engine=engine)

        recorded = _notes_window(1, Rect(100, 250, 300, 350))
        corner, save = recorded.children
        service.on_accessibility_event(make_window_event(recorded))
        assert service.start_recording()
        service.on_accessibility_event(make_click_event(source=corner, event_time=1000))
        service.on_accessibility_event(make_click_event(text=["Save"], source=save, event_time=2000))
        assert service.end_recording()
        assert service.save_recording("save note")

        demo = service.catalog.get(NOTES, "save note")
        assert [(a.x, a.y) for a in demo.actions] == [(10, 50), (200, 300)]

        service.on_accessibility_event(make_window_event(_notes_window(2, Rect(600, 1000, 800, 1100))))
        assert service.on_voice_command("save note")
        result = service.wait_for_playback(timeout=5)

        assert result.success
        assert result.strategies_used == ["raw_coordinates", "label_text"]
        assert injector.clicks == [(10, 50), (700.0, 1050.0)]
        assert sleeps == [1.0]


# ===================================================================
# Catalog management
# ===================================================================


class TestCatalogManagement:
    def test_loads_catalog_from_store(self, make_service, store):
        catalog = DemonstrationCatalog()
        catalog.add(_battery_demo())
        store.save(catalog)
        assert len(make_service().catalog) == 1

    def test_delete(self, make_service, store):
        catalog = DemonstrationCatalog()
        catalog.add(_battery_demo())
        service = make_service(catalog=catalog)
        assert service.delete_demonstration(SETTINGS, "check battery")
        assert not service.delete_demonstration(SETTINGS, "check battery")
        assert len(store.load()) == 0

    def test_clear_and_reload(self, make_service, store):
        catalog = DemonstrationCatalog()
        catalog.add(_battery_demo())
        store.save(catalog)
        service = make_service()
        assert service.clear_catalog() is True
        assert len(service.catalog) == 0
        assert service.reload_catalog() == 0

    def test_delete_save_failure_warns(self, make_service, store, warnings):
        catalog = DemonstrationCatalog()
        catalog.add(_battery_demo())
        service = make_service(catalog=catalog)
        with patch.object(store, "save", side_effect=PersistenceError("read-only")):
            assert service.delete_demonstration(SETTINGS, "check battery") is False
        assert service.catalog.get(SETTINGS, "check battery") is None
        assert any("Deleting failed" in w for w in warnings)

    def test_clear_save_failure_warns(self, make_service, store, warnings):
        catalog = DemonstrationCatalog()
        catalog.add(_battery_demo())
        service = make_service(catalog=catalog)
        with patch.object(store, "save", side_effect=PersistenceError("read-only")):
            assert service.clear_catalog() is False
        assert len(service.catalog) == 0
        assert any("Clearing failed" in w for w in warnings)
