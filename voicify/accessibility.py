"""
Accessibility Model — Voicify

In-memory representation of the live interface tree and of the
accessibility notifications that describe changes to it.

Three groups of types:
    Geometry      — Rect, with Android's strict intersection semantics
    Tree          — AccessibilityNode, iterative traversal and text search
    Notifications — AccessibilityEvent / AccessibilityRecord and EventType

Trees come either from a platform binding that builds AccessibilityNode
objects directly, or from a ``uiautomator dump`` parsed by
``parse_ui_hierarchy``.

Usage:
    from voicify.accessibility import parse_ui_hierarchy

    root = parse_ui_hierarchy(xml_text)
    for node in root.find_by_text("Wi-Fi"):
        print(node.bounds.center)
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
import zlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

logger = logging.getLogger("accessibility")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

LIST_VIEW_CLASS_NAME = "android.widget.ListView"
SWITCH_WIDGET_CLASS_NAME = "android.widget.Switch"

_BOUNDS_RE = re.compile(r"\[(?P<x1>-?\d+),(?P<y1>-?\d+)\]\[(?P<x2>-?\d+),(?P<y2>-?\d+)\]")


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class EventType(str, Enum):
    """Kinds of accessibility notification delivered by the platform."""
    VIEW_CLICKED = "view_clicked"
    VIEW_LONG_CLICKED = "view_long_clicked"
    VIEW_SELECTED = "view_selected"
    VIEW_FOCUSED = "view_focused"
    VIEW_TEXT_CHANGED = "view_text_changed"
    VIEW_SCROLLED = "view_scrolled"
    VIEW_HOVER_ENTER = "view_hover_enter"
    VIEW_HOVER_EXIT = "view_hover_exit"
    WINDOW_STATE_CHANGED = "window_state_changed"
    WINDOW_CONTENT_CHANGED = "window_content_changed"
    NOTIFICATION_STATE_CHANGED = "notification_state_changed"


# Event kinds that can bring a different window to the foreground
ACTIVE_WINDOW_EVENT_TYPES = frozenset({
    EventType.WINDOW_STATE_CHANGED,
    EventType.VIEW_HOVER_ENTER,
    EventType.VIEW_HOVER_EXIT,
})

# Event kinds that report the item reached by directional navigation
SELECTION_EVENT_TYPES = frozenset({
    EventType.VIEW_SELECTED,
    EventType.VIEW_SCROLLED,
})


class NodeAction(str, Enum):
    """Actions a node can be asked to perform on itself."""
    FOCUS = "focus"
    CLEAR_FOCUS = "clear_focus"
    SELECT = "select"
    CLICK = "click"


def is_active_window_event(event_type: EventType) -> bool:
    return event_type in ACTIVE_WINDOW_EVENT_TYPES


def is_selection_event(event_type: EventType) -> bool:
    return event_type in SELECTION_EVENT_TYPES


def has_text(texts: Optional[Sequence[str]]) -> bool:
    """True when the list is non-empty and its first item is non-empty."""
    return bool(texts) and bool(texts[0])


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Rect:
    """Screen rectangle in pixels (left, top, right, bottom)."""
    left: int = 0
    top: int = 0
    right: int = 0
    bottom: int = 0

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top

    @property
    def center(self) -> Tuple[int, int]:
        """Integer center, rounded down."""
        return ((self.left + self.right) // 2, (self.top + self.bottom) // 2)

    @property
    def exact_center(self) -> Tuple[float, float]:
        return ((self.left + self.right) * 0.5, (self.top + self.bottom) * 0.5)

    def intersects(self, other: Rect) -> bool:
        """
        Strict overlap test. Rectangles that only share an edge do not
        intersect, but a zero-area point strictly inside does.
        """
        return (
            self.left < other.right
            and other.left < self.right
            and self.top < other.bottom
            and other.top < self.bottom
        )

    def contains_point(self, x: int, y: int) -> bool:
        return self.left <= x < self.right and self.top <= y < self.bottom

    def union(self, other: Rect) -> Rect:
        return Rect(
            min(self.left, other.left),
            min(self.top, other.top),
            max(self.right, other.right),
            max(self.bottom, other.bottom),
        )

    @classmethod
    def around_point(cls, x: int, y: int) -> Rect:
        """Zero-area rectangle used to find containers under a point."""
        return cls(x, y, x, y)


# ---------------------------------------------------------------------------
# Tree
# ---------------------------------------------------------------------------

NodeActionHandler = Callable[["AccessibilityNode", NodeAction], bool]


@dataclass(eq=False)
class AccessibilityNode:
    """
    One element of the live interface tree.

    Nodes are compared by identity. ``perform_action`` is delegated to the
    nearest ``action_handler`` found on the node or one of its ancestors; a
    tree without any handler cannot focus or click its nodes directly.
    """
    class_name: str = ""
    text: str = ""
    content_description: str = ""
    bounds: Rect = field(default_factory=Rect)
    package_name: str = ""
    window_id: int = -1
    resource_id: str = ""
    clickable: bool = False
    focusable: bool = False
    focused: bool = False
    enabled: bool = True
    children: List[AccessibilityNode] = field(default_factory=list)
    parent: Optional[AccessibilityNode] = field(default=None, repr=False)
    action_handler: Optional[NodeActionHandler] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        for child in self.children:
            child.parent = self

    # ----- Structure -----

    def add_child(self, child: AccessibilityNode) -> AccessibilityNode:
        child.parent = self
        self.children.append(child)
        return child

    @property
    def child_count(self) -> int:
        return len(self.children)

    def ancestor(self, levels: int = 1) -> Optional[AccessibilityNode]:
        """Walk up ``levels`` parents. Returns None if the tree is not that deep."""
        node: Optional[AccessibilityNode] = self
        for _ in range(levels):
            if node is None:
                return None
            node = node.parent
        return node

    def walk(self) -> Iterator[AccessibilityNode]:
        """Pre-order traversal over an explicit stack."""
        stack: List[AccessibilityNode] = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    # ----- Labels -----

    @property
    def has_label(self) -> bool:
        return bool(self.text) or bool(self.content_description)

    def spoken_label(self) -> str:
        """Description then text, each followed by a period."""
        parts = []
        if self.content_description:
            parts.append(self.content_description + ".")
        if self.text:
            parts.append(self.text + ".")
        return "".join(parts)

    # ----- Search -----

    def find_by_text(self, label: str) -> List[AccessibilityNode]:
        """
        Nodes whose text or content description contains ``label``,
        ignoring case. Pre-order, so earlier nodes come first.
        """
        if not label:
            return []
        needle = label.casefold()
        return [
            node for node in self.walk()
            if needle in node.text.casefold() or needle in node.content_description.casefold()
        ]

    def find_by_class(self, class_name: str) -> List[AccessibilityNode]:
        return [node for node in self.walk() if node.class_name == class_name]

    def filter_in_selections(
        self,
        selections: Optional[Sequence[Rect]],
        predicate: Callable[[AccessibilityNode], bool],
    ) -> List[AccessibilityNode]:
        """
        Collect nodes accepted by ``predicate`` whose bounds intersect at
        least one of ``selections``. Subtrees outside every selection are
        pruned. The starting node itself is only tested by ``predicate``.
        ``selections=None`` disables the geometric filter.
        """
        results: List[AccessibilityNode] = []
        stack: List[AccessibilityNode] = [self]
        while stack:
            node = stack.pop()
            if (
                node is not self
                and selections is not None
                and not any(node.bounds.intersects(s) for s in selections)
            ):
                continue
            if predicate(node):
                results.append(node)
            stack.extend(reversed(node.children))
        return results

    # ----- Actions -----

    def perform_action(self, action: NodeAction) -> bool:
        node: Optional[AccessibilityNode] = self
        while node is not None:
            if node.action_handler is not None:
                try:
                    return bool(node.action_handler(self, action))
                except Exception as exc:
                    logger.warning("Action %s failed on %s: %s", action.value, self.describe(), exc)
                    return False
            node = node.parent
        return False

    def describe(self) -> str:
        label = self.text or self.content_description or self.resource_id
        return f"{self.class_name}[{label!r}] {self.bounds.left},{self.bounds.top},{self.bounds.right},{self.bounds.bottom}"


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

@dataclass
class AccessibilityRecord:
    """A record attached to an event, describing a related (container) element."""
    class_name: str = ""
    text: List[str] = field(default_factory=list)
    content_description: str = ""


@dataclass
class AccessibilityEvent:
    """
    One interface-change notification.

    ``source`` is the element the event originated from, when the platform
    provides it. ``event_time`` is in monotonic milliseconds.
    """
    event_type: EventType
    event_time: int = -1
    package_name: str = ""
    class_name: str = ""
    text: List[str] = field(default_factory=list)
    content_description: str = ""
    source: Optional[AccessibilityNode] = None
    window_id: int = -1
    records: List[AccessibilityRecord] = field(default_factory=list)
    current_item_index: int = -1
    item_count: int = -1

    @property
    def first_record(self) -> Optional[AccessibilityRecord]:
        return self.records[0] if self.records else None

    @property
    def primary_text(self) -> Optional[str]:
        return self.text[0] if has_text(self.text) else None

    def item_key(self) -> Tuple:
        """Identity of the selected item, used to detect a list that stopped moving."""
        return (
            self.package_name,
            self.class_name,
            tuple(self.text),
            self.content_description,
            self.current_item_index,
        )


# ---------------------------------------------------------------------------
# uiautomator parsing
# ---------------------------------------------------------------------------

def _parse_bounds(raw: str) -> Rect:
    match = _BOUNDS_RE.search(raw or "")
    if not match:
        return Rect()
    return Rect(
        int(match.group("x1")), int(match.group("y1")),
        int(match.group("x2")), int(match.group("y2")),
    )


def _node_from_element(el: ET.Element, window_id: int) -> AccessibilityNode:
    return AccessibilityNode(
        class_name=el.get("class", ""),
        text=el.get("text", ""),
        content_description=el.get("content-desc", ""),
        bounds=_parse_bounds(el.get("bounds", "")),
        package_name=el.get("package", ""),
        window_id=window_id,
        resource_id=el.get("resource-id", ""),
        clickable=el.get("clickable") == "true",
        focusable=el.get("focusable") == "true",
        focused=el.get("focused") == "true",
        enabled=el.get("enabled", "true") == "true",
    )


def _strip_dump_noise(xml_content: str) -> str:
    """uiautomator prints status lines around the XML when dumping to a tty."""
    start = xml_content.find("<?xml")
    if start < 0:
        start = xml_content.find("<hierarchy")
    end = xml_content.rfind("</hierarchy>")
    if start < 0 or end < 0:
        return ""
    return xml_content[start:end + len("</hierarchy>")]


def parse_ui_hierarchy(
    xml_content: str,
    window_id: Optional[int] = None,
    action_handler: Optional[NodeActionHandler] = None,
) -> Optional[AccessibilityNode]:
    """
    Parse a ``uiautomator dump`` into an AccessibilityNode tree.

    The window id defaults to the CRC32 of the dump, so any change in the
    hierarchy is treated as a new window. When the dump holds several
    top-level nodes they are wrapped in a synthetic root spanning all of them.
    Returns None for empty or malformed dumps.
    """
    cleaned = _strip_dump_noise(xml_content)
    if not cleaned:
        logger.warning("UI dump contained no hierarchy")
        return None

    try:
        hierarchy = ET.fromstring(cleaned)
    except ET.ParseError as exc:
        logger.warning("Malformed UI dump: %s", exc)
        return None

    if window_id is None:
        window_id = zlib.crc32(cleaned.encode("utf-8"))

    tops: List[AccessibilityNode] = []
    stack: List[Tuple[ET.Element, Optional[AccessibilityNode]]] = [
        (el, None) for el in reversed(list(hierarchy)) if el.tag == "node"
    ]
    count = 0
    while stack:
        el, parent = stack.pop()
        node = _node_from_element(el, window_id)
        count += 1
        if parent is None:
            tops.append(node)
        else:
            parent.add_child(node)
        stack.extend((child, node) for child in reversed(list(el)) if child.tag == "node")

    if not tops:
        return None

    if len(tops) == 1:
        root = tops[0]
    else:
        bounds = tops[0].bounds
        for top in tops[1:]:
            bounds = bounds.union(top.bounds)
        root = AccessibilityNode(
            class_name="hierarchy",
            bounds=bounds,
            package_name=tops[0].package_name,
            window_id=window_id,
            children=tops,
        )

    root.action_handler = action_handler
    logger.debug("UI dump parsed %d nodes (window=%d)", count, window_id)
    return root
