"""
Action Recorder — Voicify

Turns captured accessibility events into PlaybackActions.

Only click events are recorded. The first record attached to the event
describes the container of the clicked element and decides the special
case:

    toggle class (android.widget.Switch)  -> TOGGLE_WIDGET, text from the record
    list class   (android.widget.ListView)-> LIST_ITEM
    anything else                         -> NORMAL

Usage:
    from voicify.recorder import ActionRecorder

    recorder = ActionRecorder()
    if recorder.is_actionable(event) and recorder.is_unique(event):
        recorder.note_event(event)
        action = recorder.obtain(event)
"""

from __future__ import annotations

import logging

from voicify.accessibility import (
    LIST_VIEW_CLASS_NAME,
    SWITCH_WIDGET_CLASS_NAME,
    AccessibilityEvent,
    EventType,
    has_text,
)
from voicify.errors import ExtractionError
from voicify.models import UNSET, PlaybackAction, SpecialCase

logger = logging.getLogger("recorder")

# Events closer together than this are treated as a single human action
MIN_HUMAN_ACTION_DELAY_MS = 500


class ActionRecorder:
    """Extracts PlaybackActions and filters duplicate click notifications."""

    def __init__(
        self,
        list_class_name: str = LIST_VIEW_CLASS_NAME,
        toggle_class_name: str = SWITCH_WIDGET_CLASS_NAME,
        min_action_gap_ms: int = MIN_HUMAN_ACTION_DELAY_MS,
    ) -> None:
        self.list_class_name = list_class_name
        self.toggle_class_name = toggle_class_name
        self.min_action_gap_ms = min_action_gap_ms
        self._last_action_time = UNSET

    @staticmethod
    def is_actionable(event: AccessibilityEvent) -> bool:
        return event.event_type == EventType.VIEW_CLICKED

    def is_unique(self, event: AccessibilityEvent) -> bool:
        """False for an event that follows the previous recorded one too closely."""
        if self._last_action_time == UNSET or event.event_time < 0:
            return True
        return event.event_time - self._last_action_time > self.min_action_gap_ms

    def note_event(self, event: AccessibilityEvent) -> None:
        if event.event_time >= 0:
            self._last_action_time = event.event_time

    def reset(self) -> None:
        self._last_action_time = UNSET

    def obtain(self, event: AccessibilityEvent) -> PlaybackAction:
        """
        Build a PlaybackAction from ``event``.

        Raises:
            ExtractionError: If a toggle click carries no label on its record.
        """
        action = PlaybackAction(
            event_type=event.event_type,
            content_description=event.content_description or "",
            event_time=event.event_time,
        )
        if has_text(event.text):
            action.text = list(event.text)

        if event.source is None:
            logger.warning("Event has no source element; location unknown")
        else:
            action.x, action.y = event.source.bounds.center

        record = event.first_record
        if record is not None:
            if record.class_name == self.toggle_class_name:
                if not has_text(record.text):
                    raise ExtractionError("Toggle widget click has no label on its record")
                action.text = list(record.text)
                action.special_case = SpecialCase.TOGGLE_WIDGET
            elif record.class_name == self.list_class_name:
                action.special_case = SpecialCase.LIST_ITEM

        logger.debug(
            "Recorded %s text=%r desc=%r at (%d, %d)",
            action.special_case.value, action.primary_text,
            action.content_description, action.x, action.y,
        )
        return action
