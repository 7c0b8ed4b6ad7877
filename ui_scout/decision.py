from __future__ import annotations

"""Decision types exchanged with the oracle, and the parsers that build them from raw responses."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import InvalidDecisionError
from .knowledge import Action, ActionType

logger = logging.getLogger(__name__)


class ConfidenceLevel(str, Enum):
    VERY_LOW = "very_low"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"

    @property
    def rank(self) -> int:
        return list(ConfidenceLevel).index(self)

    # ordered by strength, not alphabetically
    def __lt__(self, other: "ConfidenceLevel") -> bool:  # type: ignore[override]
        return self.rank < ConfidenceLevel(other).rank

    def __le__(self, other: "ConfidenceLevel") -> bool:  # type: ignore[override]
        return self.rank <= ConfidenceLevel(other).rank

    def __gt__(self, other: "ConfidenceLevel") -> bool:  # type: ignore[override]
        return self.rank > ConfidenceLevel(other).rank

    def __ge__(self, other: "ConfidenceLevel") -> bool:  # type: ignore[override]
        return self.rank >= ConfidenceLevel(other).rank


@dataclass(frozen=True)
class SuccessProbability:
    """Probability (clamped to [0, 1]) that an action succeeds, with the oracle's reasoning."""

    value: float
    reasoning: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", min(max(float(self.value), 0.0), 1.0))

    @property
    def confidence_level(self) -> ConfidenceLevel:
        if self.value < 0.2:
            return ConfidenceLevel.VERY_LOW
        if self.value < 0.4:
            return ConfidenceLevel.LOW
        if self.value < 0.6:
            return ConfidenceLevel.MEDIUM
        if self.value < 0.8:
            return ConfidenceLevel.HIGH
        return ConfidenceLevel.VERY_HIGH

    @classmethod
    def certain(cls, reasoning: str) -> "SuccessProbability":
        return cls(1.0, reasoning)

    @classmethod
    def moderate(cls, reasoning: str) -> "SuccessProbability":
        return cls(0.5, reasoning)

    @classmethod
    def unlikely(cls, reasoning: str) -> "SuccessProbability":
        return cls(0.2, reasoning)

    def to_json(self) -> Dict[str, Any]:
        return {"value": self.value, "reasoning": self.reasoning}


@dataclass(frozen=True)
class AlternativeAction:
    """A fallback action suggested by the oracle: an action kind plus an optional target."""

    action: ActionType
    target: Optional[str] = None

    @classmethod
    def parse(cls, descriptor: str) -> Optional["AlternativeAction"]:
        """Build from the wire encoding `"<action>"` or `"<action>_<target>"`.

        Returns None for descriptors whose action part is not a known action.
        """
        descriptor = (descriptor or "").strip()
        if not descriptor:
            return None
        head, _, tail = descriptor.partition("_")
        try:
            action = ActionType(head.lower())
        except ValueError:
            return None
        return cls(action=action, target=tail or None)

    def describe(self) -> str:
        return f"{self.action.value}_{self.target}" if self.target else self.action.value


@dataclass
class Decision:
    """The resolved intent for one step."""

    action: ActionType
    reasoning: str
    success_probability: SuccessProbability
    target_element: Optional[str] = None
    text_to_type: Optional[str] = None
    expected_outcome: Optional[str] = None
    alternative_actions: List[AlternativeAction] = field(default_factory=list)

    @property
    def confidence(self) -> int:
        return round(self.success_probability.value * 100)

    @property
    def is_done(self) -> bool:
        return self.action == ActionType.DONE

    @classmethod
    def done(cls, reasoning: str, confidence: int = 100) -> "Decision":
        return cls(
            action=ActionType.DONE,
            reasoning=reasoning,
            success_probability=SuccessProbability(confidence / 100, reasoning),
        )

    def to_action(self) -> Action:
        return Action(
            type=self.action,
            target_element=self.target_element,
            text_typed=self.text_to_type,
            reasoning=self.reasoning,
            confidence=self.confidence,
        )

    def describe(self) -> str:
        target = f" → {self.target_element}" if self.target_element else ""
        return f"{self.action.value}{target}"


@dataclass
class ChoiceResponse:
    """The oracle's answer in multiple-choice mode."""

    choice: int
    reasoning: str
    confidence: int
    expected_outcome: Optional[str] = None
    alternative_choices: List[int] = field(default_factory=list)


CHOICE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "choice": {
            "type": "integer",
            "description": "The number of the action to perform. MUST be a number from the list.",
        },
        "reasoning": {"type": "string", "description": "Why this action was chosen (1-2 sentences)."},
        "confidence": {"type": "integer", "minimum": 0, "maximum": 100},
        "expectedOutcome": {
            "type": "string",
            "description": "What should be visible after the action succeeds (element ids or screen name).",
        },
        "alternativeChoices": {
            "type": "array",
            "items": {"type": "integer"},
            "description": "Other choice numbers worth trying if this one has no effect, best first.",
        },
    },
    "required": ["choice", "reasoning", "confidence"],
}

DECISION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "action": {"type": "string", "enum": [a.value for a in ActionType]},
        "targetElement": {"type": ["string", "null"]},
        "textToType": {"type": ["string", "null"]},
        "reasoning": {"type": "string"},
        "successProbability": {
            "type": "object",
            "properties": {"value": {"type": "number"}, "reasoning": {"type": "string"}},
            "required": ["value", "reasoning"],
        },
        "expectedOutcome": {"type": ["string", "null"]},
        "alternativeActions": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Fallback actions such as 'swipe', 'back' or 'tap_cancelButton'.",
        },
    },
    "required": ["action", "reasoning", "successProbability", "alternativeActions"],
}


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise InvalidDecisionError(f"'{name}' must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidDecisionError(f"'{name}' must be an integer, got {value!r}") from None


def parse_choice_response(raw: Dict[str, Any]) -> ChoiceResponse:
    if not isinstance(raw, dict) or "choice" not in raw:
        raise InvalidDecisionError(f"Choice response missing 'choice': {raw!r}")
    alternatives: List[int] = []
    for item in raw.get("alternativeChoices") or []:
        try:
            alternatives.append(_as_int(item, "alternativeChoices"))
        except InvalidDecisionError:
            logger.debug("Ignoring malformed alternative choice %r", item)
    return ChoiceResponse(
        choice=_as_int(raw["choice"], "choice"),
        reasoning=str(raw.get("reasoning") or ""),
        confidence=min(100, max(0, _as_int(raw.get("confidence", 0), "confidence"))),
        expected_outcome=raw.get("expectedOutcome") or None,
        alternative_choices=alternatives,
    )


def parse_decision(raw: Dict[str, Any]) -> Decision:
    """Build a `Decision` from a free-form oracle response.

    Alternative descriptors are turned into `AlternativeAction` values here, once;
    unknown ones are dropped.
    """
    if not isinstance(raw, dict):
        raise InvalidDecisionError(f"Decision response is not an object: {raw!r}")
    try:
        action = ActionType(str(raw.get("action", "")).lower())
    except ValueError:
        raise InvalidDecisionError(
            f"Invalid action {raw.get('action')!r}; must be one of {', '.join(a.value for a in ActionType)}"
        ) from None

    prob_raw = raw.get("successProbability") or {}
    if isinstance(prob_raw, (int, float)) and not isinstance(prob_raw, bool):
        probability = SuccessProbability(prob_raw)
    elif isinstance(prob_raw, dict):
        try:
            probability = SuccessProbability(float(prob_raw.get("value", 0.5)), str(prob_raw.get("reasoning") or ""))
        except (TypeError, ValueError):
            raise InvalidDecisionError(f"Invalid successProbability {prob_raw!r}") from None
    else:
        raise InvalidDecisionError(f"Invalid successProbability {prob_raw!r}")

    alternatives: List[AlternativeAction] = []
    for descriptor in raw.get("alternativeActions") or []:
        alt = AlternativeAction.parse(str(descriptor))
        if alt is None:
            logger.debug("Dropping unknown alternative action %r", descriptor)
            continue
        alternatives.append(alt)

    return Decision(
        action=action,
        reasoning=str(raw.get("reasoning") or ""),
        success_probability=probability,
        target_element=raw.get("targetElement") or None,
        text_to_type=raw.get("textToType") or None,
        expected_outcome=raw.get("expectedOutcome") or None,
        alternative_actions=alternatives,
    )


def validate_decision(decision: Decision) -> None:
    """Reject free-form decisions that cannot be acted upon."""
    if decision.action in (ActionType.TAP, ActionType.TYPE) and not decision.target_element:
        raise InvalidDecisionError(f"Missing targetElement for '{decision.action.value}' action")
    if decision.action == ActionType.TYPE and not decision.text_to_type:
        raise InvalidDecisionError("Missing textToType for 'type' action")
    if not decision.reasoning.strip():
        raise InvalidDecisionError("Empty reasoning")
