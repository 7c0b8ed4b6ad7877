from __future__ import annotations

"""Post-action outcome checks comparing the screen before and after an executed decision."""

import logging
import string
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .decision import Decision
from .knowledge import ActionType, ScreenSnapshot

logger = logging.getLogger(__name__)

UI_KEYWORDS = (
    "button", "field", "label", "text", "view", "screen", "message", "title", "header",
    "footer", "nav", "tab", "alert", "dialog", "dashboard", "welcome", "login",
    "settings", "profile",
)
# too generic to prove anything on their own
GENERIC_WORDS = {"message", "text", "button", "field"}
MIN_WORD_LENGTH = 4
FUZZY_MATCH_LENGTH = 8


@dataclass(frozen=True)
class VerificationResult:
    passed: bool
    reason: str
    screen_changed: bool
    expected_element_found: Optional[bool] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "reason": self.reason,
            "screenChanged": self.screen_changed,
            "expectedElementFound": self.expected_element_found,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "VerificationResult":
        return cls(
            passed=data["passed"],
            reason=data["reason"],
            screen_changed=data["screenChanged"],
            expected_element_found=data.get("expectedElementFound"),
        )


def extract_candidate_ids(text: str) -> List[str]:
    """Pull identifier-looking words out of free text.

    A word qualifies when it contains UI vocabulary ("dashboard", "button", ...) or is
    camelCase. A word can be emitted twice when both rules match.
    """
    candidates: List[str] = []
    for raw in text.split():
        word = raw.strip(string.punctuation)
        if len(word) < MIN_WORD_LENGTH:
            continue
        lowered = word.lower()
        if any(k in lowered for k in UI_KEYWORDS):
            candidates.append(word)
        if word[0].islower() and any(c.isupper() for c in word):
            candidates.append(word)
    return candidates


class ActionVerifier:
    """Decides whether an executed action had its intended effect.

    A changed fingerprint alone never confirms a tap that declared an expected outcome:
    the expected element has to be on the new screen.
    """

    def verify(self, decision: Decision, before: ScreenSnapshot, after: ScreenSnapshot) -> VerificationResult:
        if decision.action == ActionType.DONE:
            return VerificationResult(True, "Verification skipped for done action", screen_changed=False)

        changed = before.fingerprint != after.fingerprint

        if decision.action == ActionType.SWIPE:
            if changed:
                return VerificationResult(True, "Swipe succeeded: screen changed (new content visible)", True)
            return VerificationResult(False, "Swipe failed: screen did not change (likely at bottom/top)", False)

        if decision.action == ActionType.TYPE and decision.target_element and decision.text_to_type:
            target = decision.target_element
            element = after.find(target)
            if element is not None and element.value and decision.text_to_type in element.value:
                return VerificationResult(
                    True, f"Type action succeeded: text was entered into '{target}'", changed
                )
            return VerificationResult(
                False, f"Type action failed: text not found in target element '{target}'", changed
            )

        if decision.expected_outcome:
            if self._expected_outcome_present(decision.expected_outcome, after):
                return VerificationResult(
                    True,
                    "Tap succeeded: expected element/screen found (outcome matched)",
                    changed,
                    expected_element_found=True,
                )
            if changed:
                return VerificationResult(
                    False,
                    "Tap changed screen but expected element not found (unexpected outcome)",
                    True,
                    expected_element_found=False,
                )
            return VerificationResult(
                False,
                "Tap failed: screen did not change and expected element not found",
                False,
                expected_element_found=False,
            )

        if changed:
            return VerificationResult(True, "Action succeeded: screen changed (basic verification)", True)
        return VerificationResult(False, "Action failed: screen did not change (no visible effect)", False)

    @staticmethod
    def _expected_outcome_present(expected_outcome: str, after: ScreenSnapshot) -> bool:
        for word in extract_candidate_ids(expected_outcome):
            needle = word.lower()
            if needle in GENERIC_WORDS:
                continue
            for element in after.elements:
                for handle in (element.id, element.label):
                    if not handle:
                        continue
                    hay = handle.lower()
                    if hay == needle or (len(word) >= FUZZY_MATCH_LENGTH and needle in hay):
                        logger.debug("Expected outcome matched '%s' via '%s'", word, handle)
                        return True
        return False
