"""
Replay Engine — Voicify

Re-executes a recorded Demonstration against the live interface tree and
then reads the recorded output regions aloud.

Architecture:
    VoicifyService (replay thread)
        |
        v
    ReplayEngine.play(demonstration)
        |-- for each action: pace -> require root -> strategy chain
        |       1. RawCoordinatesStrategy   tap the recorded point
        |       2. ListItemStrategy         focus list, D-pad through items
        |       3. LabelTextStrategy        find node by text, click it
        |       4. ContentLabelStrategy     find node by content description
        |-- wait before reading
        `-- announce text inside each OutputSelection

The first strategy that succeeds wins. When none does, the replay stops at
that action. Strategies never retry; each fallback is a different way of
finding the same target.

Usage:
    from voicify.playback import PlaybackConfig, ReplayEngine

    engine = ReplayEngine(bridge, injector, announcer, PlaybackConfig.from_env())
    result = engine.play(demonstration)
    print(result.success, result.strategies_used)
"""

from __future__ import annotations

import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from voicify.accessibility import (
    LIST_VIEW_CLASS_NAME,
    SWITCH_WIDGET_CLASS_NAME,
    AccessibilityEvent,
    AccessibilityNode,
    EventType,
    NodeAction,
    Rect,
    has_text,
)
from voicify.errors import (
    LocationError,
    NoForegroundContextError,
    OutputUnavailableError,
    VoicifyError,
)
from voicify.injection import InputInjector, KeyCode
from voicify.models import (
    TOP_STATIC_REGION_HEIGHT,
    Demonstration,
    OutputSelection,
    PlaybackAction,
    SpecialCase,
)
from voicify.speech import Announcer
from voicify.state_bridge import SELECTION_SETTLE_DELAY, StateBridge

logger = logging.getLogger("playback")

# ---------------------------------------------------------------------------
# Constants & Configuration
# ---------------------------------------------------------------------------

# Defaults in seconds; PlaybackConfig.from_env() applies the VOICIFY_* overrides
MAX_ACTION_DELAY = 10.0
SELECTION_TIMEOUT = 5.0
WAIT_BEFORE_READING = 5.0

# Upper bound on DOWN presses while searching one list
MAX_LIST_STEPS = 200


@dataclass
class PlaybackConfig:
    """Tunables for a replay. Times are in seconds."""
    static_region_height: int = TOP_STATIC_REGION_HEIGHT
    max_action_delay: float = MAX_ACTION_DELAY
    selection_wait_timeout: float = SELECTION_TIMEOUT
    selection_settle_delay: float = SELECTION_SETTLE_DELAY
    wait_before_reading: float = WAIT_BEFORE_READING
    max_list_steps: int = MAX_LIST_STEPS
    list_class_name: str = LIST_VIEW_CLASS_NAME
    toggle_class_name: str = SWITCH_WIDGET_CLASS_NAME

    @classmethod
    def from_env(cls) -> PlaybackConfig:
        return cls(
            max_action_delay=float(os.getenv("VOICIFY_MAX_ACTION_DELAY", str(MAX_ACTION_DELAY))),
            selection_wait_timeout=float(os.getenv("VOICIFY_SELECTION_TIMEOUT", str(SELECTION_TIMEOUT))),
            wait_before_reading=float(os.getenv("VOICIFY_WAIT_BEFORE_READING", str(WAIT_BEFORE_READING))),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ===================================================================
# Result
# ===================================================================

@dataclass
class PlaybackResult:
    """Outcome of one replay. ``success`` is actions AND output."""
    command: str = ""
    success: bool = False
    actions_success: bool = False
    output_success: bool = False
    actions_completed: int = 0
    actions_total: int = 0
    failed_action: int = -1
    error: Optional[str] = None
    strategies_used: List[str] = field(default_factory=list)
    announced: List[str] = field(default_factory=list)
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ===================================================================
# Helpers
# ===================================================================

def closest_node(nodes: Sequence[AccessibilityNode], x: int, y: int) -> Optional[AccessibilityNode]:
    """Node whose center is nearest (x, y); the first node when the point is unknown."""
    if not nodes:
        return None
    if x < 0 or y < 0:
        return nodes[0]

    best: Optional[AccessibilityNode] = None
    best_distance = -1
    for node in nodes:
        cx, cy = node.bounds.center
        d = (cx - x) ** 2 + (cy - y) ** 2
        if best is None or d < best_distance:
            best = node
            best_distance = d
    return best


def selection_matches_labels(event: AccessibilityEvent, text: Optional[str], description: Optional[str]) -> bool:
    """
    True when the selected item carries exactly the recorded labels: text and
    description must each be present on both sides or absent on both, and
    equal where present.
    """
    if has_text(event.text) != bool(text):
        return False
    if bool(event.content_description) != bool(description):
        return False
    if text and event.text[0] != text:
        return False
    if description and event.content_description != description:
        return False
    return True


# ===================================================================
# Toggle location
# ===================================================================

class ToggleLocator(ABC):
    """Finds the toggle control that belongs to a label node."""

    @abstractmethod
    def locate(self, label_node: AccessibilityNode) -> Optional[AccessibilityNode]:
        ...


class SiblingToggleLocator(ToggleLocator):
    """
    Settings-style rows: the label sits two levels below the row, and the
    toggle is a direct child of the row.
    """

    def __init__(self, toggle_class_name: str = SWITCH_WIDGET_CLASS_NAME, levels: int = 2) -> None:
        self.toggle_class_name = toggle_class_name
        self.levels = levels

    def locate(self, label_node: AccessibilityNode) -> Optional[AccessibilityNode]:
        row = label_node.ancestor(self.levels)
        if row is None:
            return None
        for child in row.children:
            if child.class_name == self.toggle_class_name:
                return child
        return None


# ===================================================================
# Strategies
# ===================================================================

class LocateStrategy(ABC):
    """One way of finding and activating the target of a recorded action."""

    name = ""

    @abstractmethod
    def eligible(self, action: PlaybackAction, config: PlaybackConfig) -> bool:
        ...

    @abstractmethod
    def attempt(self, action: PlaybackAction, engine: ReplayEngine) -> bool:
        ...


class RawCoordinatesStrategy(LocateStrategy):
    name = "raw_coordinates"

    def eligible(self, action: PlaybackAction, config: PlaybackConfig) -> bool:
        return action.should_use_xy(config.static_region_height)

    def attempt(self, action: PlaybackAction, engine: ReplayEngine) -> bool:
        logger.info("Clicking on raw coordinates (%d, %d)", action.x, action.y)
        engine.injector.click(action.x, action.y, down_time=action.event_time)
        return True


class ListItemStrategy(LocateStrategy):
    """
    Focus the list under the recorded point and step through it with the
    D-pad until the selected item carries the recorded labels.
    """

    name = "list_item"

    def eligible(self, action: PlaybackAction, config: PlaybackConfig) -> bool:
        return action.special_case == SpecialCase.LIST_ITEM

    def attempt(self, action: PlaybackAction, engine: ReplayEngine) -> bool:
        config = engine.config
        bridge = engine.bridge
        injector = engine.injector

        root = bridge.root
        if root is None:
            return False

        selections: Optional[List[Rect]] = None
        if action.has_location:
            selections = [Rect.around_point(action.x, action.y)]
        else:
            logger.warning("No location for list item; using any list on screen")

        lists = root.filter_in_selections(selections, lambda n: n.class_name == config.list_class_name)
        if not lists:
            logger.error("Can't find a list at the recorded location")
            return False

        if not lists[0].perform_action(NodeAction.FOCUS):
            logger.error("Can't focus list %s", lists[0].describe())
            return False

        # DOWN then UP leaves the first item selected and produces a fresh selection
        bridge.clear_selection()
        injector.press_key(KeyCode.DPAD_DOWN)
        injector.press_key(KeyCode.DPAD_UP)
        selected = bridge.wait_for_selection(config.selection_wait_timeout)

        text = action.primary_text
        description = action.content_description or None
        last_key = None
        steps = 0
        while selected is not None and selected.item_key() != last_key:
            if selection_matches_labels(selected, text, description):
                injector.press_key(KeyCode.DPAD_CENTER)
                logger.info("Selected list item %r after %d steps", text or description, steps)
                return True
            if steps >= config.max_list_steps:
                logger.warning("Gave up on list after %d steps", steps)
                return False
            steps += 1
            last_key = selected.item_key()
            bridge.clear_selection()
            injector.press_key(KeyCode.DPAD_DOWN)
            selected = bridge.wait_for_selection(config.selection_wait_timeout)

        if selected is None:
            logger.warning("No selection arrived while searching list for %r", text or description)
        else:
            logger.info("Reached end of list without finding %r", text or description)
        return False


class _LabelStrategy(LocateStrategy):
    """Click the node carrying a label, preferring the one nearest the recorded point."""

    @abstractmethod
    def label_for(self, action: PlaybackAction) -> Optional[str]:
        ...

    def eligible(self, action: PlaybackAction, config: PlaybackConfig) -> bool:
        return bool(self.label_for(action))

    def attempt(self, action: PlaybackAction, engine: ReplayEngine) -> bool:
        label = self.label_for(action)
        root = engine.bridge.root
        if root is None or not label:
            return False

        target = closest_node(root.find_by_text(label), action.x, action.y)
        if target is None:
            logger.debug("No node labelled %r", label)
            return False

        if action.special_case == SpecialCase.TOGGLE_WIDGET:
            toggle = engine.toggle_locator.locate(target)
            if toggle is None:
                logger.error("Can't find toggle with label %r", label)
                return False
            target = toggle

        if target.perform_action(NodeAction.FOCUS):
            engine.injector.press_key(KeyCode.DPAD_CENTER)
            logger.info("Clicked %r with D-pad", label)
        else:
            cx, cy = target.bounds.exact_center
            logger.info("Focus unavailable; injecting click on %s", target.describe())
            engine.injector.click(cx, cy, down_time=action.event_time)
        return True


class LabelTextStrategy(_LabelStrategy):
    name = "label_text"

    def label_for(self, action: PlaybackAction) -> Optional[str]:
        return action.primary_text


class ContentLabelStrategy(_LabelStrategy):
    name = "content_label"

    def label_for(self, action: PlaybackAction) -> Optional[str]:
        return action.content_description or None


def default_strategies() -> List[LocateStrategy]:
    return [
        RawCoordinatesStrategy(),
        ListItemStrategy(),
        LabelTextStrategy(),
        ContentLabelStrategy(),
    ]


# ===================================================================
# ReplayEngine
# ===================================================================

class ReplayEngine:
    """
    Replays Demonstrations. Runs on the caller's thread and may block for
    the recorded pacing, list navigation and the pre-reading wait.
    The demonstration is only read, never modified.
    """

    def __init__(
        self,
        bridge: StateBridge,
        injector: InputInjector,
        announcer: Announcer,
        config: Optional[PlaybackConfig] = None,
        strategies: Optional[List[LocateStrategy]] = None,
        toggle_locator: Optional[ToggleLocator] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.bridge = bridge
        self.injector = injector
        self.announcer = announcer
        self.config = config or PlaybackConfig()
        self.strategies = strategies if strategies is not None else default_strategies()
        self.toggle_locator = toggle_locator or SiblingToggleLocator(self.config.toggle_class_name)
        self._sleep = sleep

    def play(self, demonstration: Demonstration) -> PlaybackResult:
        start = time.monotonic()
        result = PlaybackResult(
            command=demonstration.command,
            actions_total=len(demonstration.actions),
        )
        logger.info("Playing %r (%d actions, %d output regions)",
                    demonstration.command, len(demonstration.actions),
                    len(demonstration.output_selections))

        try:
            self.perform_actions(demonstration.actions, result)
            result.actions_success = True
        except VoicifyError as exc:
            logger.warning("Aborting playback: %s", exc)
            result.error = str(exc)
            result.failed_action = exc.action_index

        if self.config.wait_before_reading > 0:
            self._sleep(self.config.wait_before_reading)

        try:
            result.announced = self.speak_output_selections(demonstration.output_selections)
            result.output_success = True
        except OutputUnavailableError as exc:
            logger.error("%s", exc)
            if result.error is None:
                result.error = str(exc)

        result.success = result.actions_success and result.output_success
        result.duration_ms = round((time.monotonic() - start) * 1000, 1)
        logger.info("Playback of %r finished: success=%s (%d/%d actions)",
                    demonstration.command, result.success,
                    result.actions_completed, result.actions_total)
        return result

    def perform_actions(self, actions: Sequence[PlaybackAction], result: Optional[PlaybackResult] = None) -> None:
        """
        Execute ``actions`` in order.

        Raises:
            NoForegroundContextError: If there is no root when an action is due.
            LocationError: If no strategy located the target of an action.
        """
        if result is None:
            result = PlaybackResult(actions_total=len(actions))

        previous_time = -1
        for index, action in enumerate(actions):
            if action.event_type != EventType.VIEW_CLICKED:
                logger.debug("Skipping unsupported action type %s", action.event_type.value)
                continue

            if previous_time >= 0 and action.has_event_time:
                self._pace(action.event_time - previous_time)

            if self.bridge.root is None:
                raise NoForegroundContextError("No active window, aborting playback", action_index=index)

            strategy = self._locate(action)
            if strategy is None:
                raise LocationError(
                    f"Failed to locate target of action {index} "
                    f"(text={action.primary_text!r}, desc={action.content_description!r})",
                    action_index=index,
                )

            result.strategies_used.append(strategy.name)
            result.actions_completed += 1
            previous_time = action.event_time

    def speak_output_selections(self, selections: Sequence[OutputSelection]) -> List[str]:
        """
        Announce every labelled node inside ``selections``. Returns the
        announced strings.

        Raises:
            OutputUnavailableError: If the announcer is not ready.
        """
        if not selections:
            return []
        if not self.announcer.is_ready():
            raise OutputUnavailableError("Speech output not initialised, aborting read-out")

        root = self.bridge.root
        if root is None:
            logger.warning("No root to read output selections from")
            return []

        rects = [s.rect for s in selections]
        announced: List[str] = []
        for node in root.filter_in_selections(rects, lambda n: n.has_label):
            spoken = node.spoken_label()
            logger.info("Reading: %s", spoken)
            self.announcer.announce(spoken)
            announced.append(spoken)
        return announced

    def _pace(self, delta_ms: int) -> None:
        delay = min(max(delta_ms / 1000.0, 0.0), self.config.max_action_delay)
        if delay > 0:
            logger.debug("Waiting %.2fs before next action", delay)
            self._sleep(delay)

    def _locate(self, action: PlaybackAction) -> Optional[LocateStrategy]:
        for strategy in self.strategies:
            if not strategy.eligible(action, self.config):
                continue
            logger.debug("Trying %s", strategy.name)
            if strategy.attempt(action, self):
                return strategy
        return None
