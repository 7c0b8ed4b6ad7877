from __future__ import annotations

"""Data structures describing what the explorer has seen: elements, screens, actions and transitions.

Everything here is a passive record. The graph that links screens together lives in
`navigation_graph.py`; the step-by-step log lives in `exploration_path.py`.
"""

import base64
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActionType(str, Enum):
    """Interaction primitives the explorer can ask the executor to perform."""

    TAP = "tap"
    TYPE = "type"
    SWIPE = "swipe"
    BACK = "back"
    DONE = "done"


class ElementType(str, Enum):
    BUTTON = "button"
    INPUT = "input"
    TEXT = "text"
    IMAGE = "image"
    TOGGLE = "toggle"
    LINK = "link"
    TAB = "tab"
    SCROLLABLE = "scrollable"
    CONTAINER = "container"
    PICKER = "picker"
    SLIDER = "slider"


class SemanticIntent(str, Enum):
    SUBMIT = "submit"
    CANCEL = "cancel"
    DESTRUCTIVE = "destructive"
    NAVIGATION = "navigation"
    NEUTRAL = "neutral"


class ScreenType(str, Enum):
    LOGIN = "login"
    FORM = "form"
    LIST = "list"
    SETTINGS = "settings"
    TAB_NAVIGATION = "tabNavigation"
    ERROR = "error"
    LOADING = "loading"
    CONTENT = "content"


@dataclass
class Element:
    """A single UI element as reported by the capture collaborator."""

    type: ElementType
    id: Optional[str] = None
    label: Optional[str] = None
    interactive: bool = False
    value: Optional[str] = None
    intent: Optional[SemanticIntent] = None
    priority: Optional[int] = None
    children: List["Element"] = field(default_factory=list, repr=False)

    @property
    def identifier(self) -> Optional[str]:
        """The handle used to target this element: its id, falling back to its label."""
        return self.id or self.label

    @property
    def is_empty(self) -> bool:
        return not self.value

    def matches(self, target: str) -> bool:
        return self.id == target or self.label == target

    def to_json(self, include_children: bool = True) -> Dict[str, Any]:
        # nil / empty fields are omitted to keep prompts small
        data: Dict[str, Any] = {"type": self.type.value, "interactive": self.interactive}
        if self.id is not None:
            data["id"] = self.id
        if self.label is not None:
            data["label"] = self.label
        if self.value is not None:
            data["value"] = self.value
        if self.intent is not None:
            data["intent"] = self.intent.value
        if self.priority is not None:
            data["priority"] = self.priority
        if include_children and self.children:
            data["children"] = [c.to_json() for c in self.children]
        return data

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Element":
        intent = data.get("intent")
        return cls(
            type=ElementType(data["type"]),
            id=data.get("id"),
            label=data.get("label"),
            interactive=bool(data.get("interactive", False)),
            value=data.get("value"),
            intent=SemanticIntent(intent) if intent else None,
            priority=data.get("priority"),
            children=[cls.from_json(c) for c in data.get("children", [])],
        )


@dataclass
class ScreenSnapshot:
    """Result of one capture: the element list plus the screen's identity."""

    elements: List[Element]
    fingerprint: str
    screenshot: bytes = b""
    screen_type: Optional[ScreenType] = None

    @property
    def interactive_elements(self) -> List[Element]:
        return [e for e in self.elements if e.interactive]

    def find(self, target: str) -> Optional[Element]:
        for element in self.elements:
            if element.matches(target):
                return element
        return None

    def describe(self) -> str:
        """Short human-readable description built from the first interactive elements."""
        interactive = self.interactive_elements
        if not interactive:
            return "Empty screen"
        names = [e.identifier for e in interactive[:5] if e.identifier]
        more = "..." if len(interactive) > 5 else ""
        return f"Screen with: {', '.join(names)}{more}"

    def to_json(self, include_screenshot: bool = False, interactive_only: bool = False) -> Dict[str, Any]:
        elements = self.interactive_elements if interactive_only else self.elements
        data: Dict[str, Any] = {"elements": [e.to_json() for e in elements]}
        if self.screen_type is not None:
            data["screenType"] = self.screen_type.value
        if include_screenshot and self.screenshot:
            data["screenshot"] = base64.b64encode(self.screenshot).decode()
        return data


@dataclass
class Action:
    """The action attached to a transition edge."""

    type: ActionType
    target_element: Optional[str] = None
    text_typed: Optional[str] = None
    reasoning: str = ""
    confidence: int = 100

    def __post_init__(self) -> None:
        self.confidence = min(100, max(0, int(self.confidence)))

    def to_json(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "targetElement": self.target_element,
            "textTyped": self.text_typed,
            "reasoning": self.reasoning,
            "confidence": self.confidence,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Action":
        return cls(
            type=ActionType(data["type"]),
            target_element=data.get("targetElement"),
            text_typed=data.get("textTyped"),
            reasoning=data.get("reasoning", ""),
            confidence=data.get("confidence", 100),
        )


@dataclass(eq=False)
class ScreenNode:
    """A discovered screen. Identity is the fingerprint; nothing else takes part in equality."""

    fingerprint: str
    screen_type: Optional[ScreenType] = None
    elements: List[Element] = field(default_factory=list, repr=False)
    screenshot: bytes = field(default=b"", repr=False)
    depth: int = 0
    parent_fingerprint: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)
    visit_count: int = 1
    last_visited: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.last_visited is None:
            self.last_visited = self.timestamp

    def __eq__(self, other: object) -> bool:
        return isinstance(other, ScreenNode) and other.fingerprint == self.fingerprint

    def __hash__(self) -> int:
        return hash(self.fingerprint)

    @classmethod
    def from_snapshot(
        cls, snapshot: ScreenSnapshot, depth: int, parent_fingerprint: Optional[str] = None
    ) -> "ScreenNode":
        return cls(
            fingerprint=snapshot.fingerprint,
            screen_type=snapshot.screen_type,
            elements=list(snapshot.elements),
            screenshot=snapshot.screenshot,
            depth=depth,
            parent_fingerprint=parent_fingerprint,
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "screenType": self.screen_type.value if self.screen_type else None,
            "elements": [e.to_json() for e in self.elements],
            "screenshot": base64.b64encode(self.screenshot).decode(),
            "depth": self.depth,
            "parentFingerprint": self.parent_fingerprint,
            "timestamp": self.timestamp.isoformat(),
            "visitCount": self.visit_count,
            "lastVisited": self.last_visited.isoformat() if self.last_visited else None,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ScreenNode":
        screen_type = data.get("screenType")
        last_visited = data.get("lastVisited")
        return cls(
            fingerprint=data["fingerprint"],
            screen_type=ScreenType(screen_type) if screen_type else None,
            elements=[Element.from_json(e) for e in data.get("elements", [])],
            screenshot=base64.b64decode(data.get("screenshot", "")),
            depth=data.get("depth", 0),
            parent_fingerprint=data.get("parentFingerprint"),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            visit_count=data.get("visitCount", 1),
            last_visited=datetime.fromisoformat(last_visited) if last_visited else None,
        )


@dataclass(eq=False)
class Transition:
    """A directed, timestamped edge between two screens."""

    from_fingerprint: str
    to_fingerprint: str
    action: Action
    duration: float
    edge_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utcnow)
    was_successful: bool = True

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Transition) and other.edge_id == self.edge_id

    def __hash__(self) -> int:
        return hash(self.edge_id)

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.edge_id,
            "from": self.from_fingerprint,
            "to": self.to_fingerprint,
            "action": self.action.to_json(),
            "duration": self.duration,
            "timestamp": self.timestamp.isoformat(),
            "wasSuccessful": self.was_successful,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Transition":
        return cls(
            from_fingerprint=data["from"],
            to_fingerprint=data["to"],
            action=Action.from_json(data["action"]),
            duration=float(data["duration"]),
            edge_id=data["id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            was_successful=data.get("wasSuccessful", True),
        )
