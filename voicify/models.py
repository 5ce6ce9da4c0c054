"""
Action Model — Voicify

Data types for recorded demonstrations.

    PlaybackAction   — one recorded interaction, app-independent
    OutputSelection  — a screen region whose content is read aloud after replay
    Demonstration    — a named, ordered sequence of actions plus output regions

All types serialise to plain dicts of primitives (``to_dict``) and back
(``from_dict``); unknown keys are ignored on load.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from voicify.accessibility import EventType, Rect, has_text

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

UNSET = -1
NO_MATCH = 999

# Status bar and toolbar area whose content is stable across runs
TOP_STATIC_REGION_HEIGHT = 60


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class SpecialCase(str, Enum):
    NORMAL = "normal"
    TOGGLE_WIDGET = "toggle_widget"
    LIST_ITEM = "list_item"


# ===================================================================
# PlaybackAction
# ===================================================================

@dataclass
class PlaybackAction:
    """A single recorded interaction. ``UNSET`` marks unknown coordinates/time."""

    event_type: EventType = EventType.VIEW_CLICKED
    text: List[str] = field(default_factory=list)
    content_description: str = ""
    x: int = UNSET
    y: int = UNSET
    event_time: int = UNSET
    special_case: SpecialCase = SpecialCase.NORMAL

    @property
    def primary_text(self) -> Optional[str]:
        return self.text[0] if has_text(self.text) else None

    @property
    def has_text(self) -> bool:
        return has_text(self.text)

    @property
    def has_content_description(self) -> bool:
        return bool(self.content_description)

    @property
    def has_location(self) -> bool:
        return self.x >= 0 and self.y >= 0

    @property
    def has_event_time(self) -> bool:
        return self.event_time >= 0

    def in_static_region(self, height: int = TOP_STATIC_REGION_HEIGHT) -> bool:
        return self.has_location and self.y <= height

    def should_use_xy(self, height: int = TOP_STATIC_REGION_HEIGHT) -> bool:
        """
        Raw coordinates are trusted when there is nothing else to go on, or
        when the point lies in the static strip at the top of the screen.
        """
        if not self.has_location:
            return False
        if not self.has_text and not self.has_content_description:
            return True
        return self.in_static_region(height)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["event_type"] = self.event_type.value
        d["special_case"] = self.special_case.value
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PlaybackAction:
        valid = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in valid}
        if "event_type" in filtered:
            filtered["event_type"] = EventType(filtered["event_type"])
        if "special_case" in filtered:
            filtered["special_case"] = SpecialCase(filtered["special_case"])
        if filtered.get("text") is None:
            filtered["text"] = []
        else:
            filtered["text"] = [str(t) for t in filtered["text"]]
        if filtered.get("content_description") is None:
            filtered["content_description"] = ""
        return cls(**filtered)


# ===================================================================
# OutputSelection
# ===================================================================

@dataclass
class OutputSelection:
    """Axis-aligned screen rectangle. Corners are normalised on construction."""

    left: int = 0
    top: int = 0
    right: int = 0
    bottom: int = 0

    def __post_init__(self) -> None:
        if self.left > self.right:
            self.left, self.right = self.right, self.left
        if self.top > self.bottom:
            self.top, self.bottom = self.bottom, self.top

    @property
    def rect(self) -> Rect:
        return Rect(self.left, self.top, self.right, self.bottom)

    @classmethod
    def from_rect(cls, rect: Rect) -> OutputSelection:
        return cls(rect.left, rect.top, rect.right, rect.bottom)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> OutputSelection:
        valid = {f.name for f in cls.__dataclass_fields__.values()}
        return cls(**{k: int(v) for k, v in data.items() if k in valid})


# ===================================================================
# Demonstration
# ===================================================================

@dataclass
class Demonstration:
    """
    A named macro scoped to one application.

    ``match_distance`` is set by the catalog when the demonstration is
    returned from a lookup. It and ``created_at`` do not take part in
    equality.
    """

    command: str
    app_identifier: str = ""
    actions: List[PlaybackAction] = field(default_factory=list)
    output_selections: List[OutputSelection] = field(default_factory=list)
    match_distance: int = field(default=NO_MATCH, compare=False)
    created_at: str = field(default_factory=_now_iso, compare=False)

    def add_action(self, action: PlaybackAction) -> None:
        self.actions.append(action)

    def add_output_selection(self, selection: OutputSelection) -> None:
        self.output_selections.append(selection)

    @property
    def selection_rects(self) -> List[Rect]:
        return [s.rect for s in self.output_selections]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command": self.command,
            "app_identifier": self.app_identifier,
            "actions": [a.to_dict() for a in self.actions],
            "output_selections": [s.to_dict() for s in self.output_selections],
            "match_distance": self.match_distance,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Demonstration:
        data = dict(data)
        raw_actions = data.pop("actions", None) or []
        raw_selections = data.pop("output_selections", None) or []
        valid = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in valid}
        demo = cls(**filtered)
        demo.actions = [PlaybackAction.from_dict(a) for a in raw_actions]
        demo.output_selections = [OutputSelection.from_dict(s) for s in raw_selections]
        return demo
