from __future__ import annotations

"""Step ledger: the ordered, persisted record of everything the explorer did in a session.

The ledger steers later decisions (visited targets, the compact navigation map shown to
the oracle) and is the input for reproduction export once a session ends.
"""

import dataclasses
import json
import logging
import os
import re
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from .decision import Decision
from .errors import PersistenceError
from .knowledge import ActionType, ScreenSnapshot, utcnow
from .verifier import VerificationResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExplorationStep:
    """One recorded step. Only `ExplorationPath.mark_last_step_failed` ever rewrites a step."""

    action: ActionType
    target_element: Optional[str]
    text_typed: Optional[str]
    screen_description: str
    interactive_element_count: int
    reasoning: str
    confidence: int
    was_successful: bool = True
    verification_result: Optional[VerificationResult] = None
    was_retry: bool = False
    screenshot_path: Optional[str] = None
    step_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def from_decision(
        cls,
        decision: Decision,
        snapshot: ScreenSnapshot,
        was_successful: bool = True,
        verification_result: Optional[VerificationResult] = None,
        was_retry: bool = False,
        screenshot_path: Optional[str] = None,
    ) -> "ExplorationStep":
        return cls(
            action=decision.action,
            target_element=decision.target_element,
            text_typed=decision.text_to_type,
            screen_description=snapshot.describe(),
            interactive_element_count=len(snapshot.interactive_elements),
            reasoning=decision.reasoning,
            confidence=decision.confidence,
            was_successful=was_successful,
            verification_result=verification_result,
            was_retry=was_retry,
            screenshot_path=screenshot_path,
        )

    def compact_description(self) -> str:
        text = f" '{self.text_typed}'" if self.text_typed else ""
        return f"{self.action.value} {self.target_element or 'none'}{text}"

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.step_id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "targetElement": self.target_element,
            "textTyped": self.text_typed,
            "screenDescription": self.screen_description,
            "interactiveElementCount": self.interactive_element_count,
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "wasSuccessful": self.was_successful,
            "verificationResult": self.verification_result.to_json() if self.verification_result else None,
            "wasRetry": self.was_retry,
            "screenshotPath": self.screenshot_path,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ExplorationStep":
        verification = data.get("verificationResult")
        return cls(
            action=ActionType(data["action"]),
            target_element=data.get("targetElement"),
            text_typed=data.get("textTyped"),
            screen_description=data.get("screenDescription", ""),
            interactive_element_count=data.get("interactiveElementCount", 0),
            reasoning=data.get("reasoning", ""),
            confidence=data.get("confidence", 0),
            was_successful=data.get("wasSuccessful", True),
            verification_result=VerificationResult.from_json(verification) if verification else None,
            was_retry=data.get("wasRetry", False),
            screenshot_path=data.get("screenshotPath"),
            step_id=data["id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


class ExplorationPath:
    """Append-only step log for one session.

    When `persist_path` is given, every mutation is written through to that file, and
    an existing file at that path is loaded on construction so an interrupted session
    resumes where it stopped. Write failures are logged and the ledger carries on in
    memory.
    """

    def __init__(self, goal: str, session_id: Optional[str] = None, persist_path: Optional[str] = None) -> None:
        self.goal = goal
        self.session_id = session_id or str(uuid.uuid4())
        self.start_time: datetime = utcnow()
        self.steps: List[ExplorationStep] = []
        self.metadata: Optional[Dict[str, Any]] = None
        self.persist_path = persist_path

        if persist_path and os.path.exists(persist_path):
            try:
                loaded = ExplorationPath.load(persist_path)
            except PersistenceError as exc:
                logger.warning("Could not resume from %s: %s", persist_path, exc)
            else:
                self.steps = loaded.steps
                self.session_id = loaded.session_id
                self.start_time = loaded.start_time
                self.metadata = loaded.metadata
                logger.info("Resumed session %s with %d steps", self.session_id[:8], len(self.steps))

    # --- mutation ---------------------------------------------------------
    def add_step(self, step: ExplorationStep) -> "ExplorationPath":
        self.steps.append(step)
        self._autosave()
        return self

    def update_last_step(self, step: ExplorationStep) -> "ExplorationPath":
        if not self.steps:
            return self
        self.steps[-1] = step
        self._autosave()
        return self

    def mark_last_step_failed(self, reason: Optional[str] = None) -> "ExplorationPath":
        """Flip the last step to failed, replacing its reasoning with `reason` when given."""
        if not self.steps:
            return self
        last = self.steps[-1]
        return self.update_last_step(
            dataclasses.replace(last, was_successful=False, reasoning=reason or last.reasoning)
        )

    def attach_metadata(self, metadata: Dict[str, Any]) -> "ExplorationPath":
        self.metadata = metadata
        self._autosave()
        return self

    def clear(self) -> None:
        self.steps.clear()
        self._autosave()

    # --- derived views ----------------------------------------------------
    @property
    def visited_elements(self) -> Set[str]:
        return {s.target_element for s in self.steps if s.target_element}

    @property
    def last_action(self) -> Optional[str]:
        return self.steps[-1].compact_description() if self.steps else None

    def recent_steps(self, count: int) -> List[ExplorationStep]:
        return self.steps[-count:] if count > 0 else []

    @property
    def success_rate(self) -> Tuple[int, int]:
        """(successful, failed) step counts."""
        successful = sum(1 for s in self.steps if s.was_successful)
        return successful, len(self.steps) - successful

    @property
    def failed_steps(self) -> List[ExplorationStep]:
        return [s for s in self.steps if not s.was_successful]

    @property
    def successful_steps(self) -> List[ExplorationStep]:
        return [s for s in self.steps if s.was_successful]

    def reproduction_path(self, step: ExplorationStep) -> List[ExplorationStep]:
        """All steps up to and including `step`, or [] if it is not in this ledger."""
        for index, candidate in enumerate(self.steps):
            if candidate.step_id == step.step_id:
                return self.steps[: index + 1]
        return []

    def navigation_map(self, max_steps: int = 10) -> str:
        if not self.steps:
            return "📍 START → [no steps taken yet]"

        recent = self.steps[-max_steps:]
        offset = len(self.steps) - len(recent)
        lines = ["📍 EXPLORATION PATH:"]
        for index, step in enumerate(recent):
            indicator = "→ 📍" if index == len(recent) - 1 else "  →"
            status = "✓" if step.was_successful else "✗"
            lines.append(f"{offset + index + 1}. {indicator} {step.compact_description()} {status}")
        if len(self.steps) > max_steps:
            lines.append(f"   ... ({len(self.steps) - max_steps} earlier steps)")
        lines.append("")
        lines.append(f"🎯 Current: {self.steps[-1].screen_description}")
        lines.append(f"📊 Progress: {len(self.steps)} steps, {len(self.visited_elements)} unique elements")
        return "\n".join(lines)

    def summary(self) -> str:
        successful, failed = self.success_rate
        elapsed = int((utcnow() - self.start_time).total_seconds())
        return "\n".join(
            [
                f"🎯 Goal: {self.goal}",
                f"📅 Session: {self.session_id[:8]}...",
                f"⏱️ Duration: {elapsed}s",
                f"📊 Total Steps: {len(self.steps)}",
                f"✅ Successful: {successful}",
                f"❌ Failed: {failed}",
                f"🔍 Unique Elements: {len(self.visited_elements)}",
            ]
        )

    # --- reproduction export ----------------------------------------------
    def export_reproductions(self, directory: str, max_workers: int = 4) -> List[str]:
        """Write one reproduction document per failed step into `directory`.

        Each document holds the failing step plus every step leading up to it. Units
        share nothing but the read-only ledger, so they are written on a thread pool.
        Returns the written paths in failed-step order.
        """
        failed = self.failed_steps
        if not failed:
            return []
        os.makedirs(directory, exist_ok=True)

        def write_one(item: Tuple[int, ExplorationStep]) -> str:
            number, step = item
            name = re.sub(r"[^A-Za-z0-9_-]+", "_", step.target_element or step.action.value)
            path = os.path.join(directory, f"reproduction_{number:03d}_{name}.json")
            document = {
                "sessionId": self.session_id,
                "goal": self.goal,
                "failedStep": step.to_json(),
                "steps": [s.to_json() for s in self.reproduction_path(step)],
            }
            try:
                with open(path, "w", encoding="utf-8") as fh:
                    json.dump(document, fh, indent=2)
            except OSError as exc:
                raise PersistenceError(f"Could not write reproduction {path}: {exc}") from exc
            return path

        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            return list(pool.map(write_one, enumerate(failed, start=1)))

    # --- persistence ------------------------------------------------------
    def to_json(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "sessionId": self.session_id,
            "goal": self.goal,
            "startTime": self.start_time.isoformat(),
            "steps": [s.to_json() for s in self.steps],
        }
        if self.metadata is not None:
            data["metadata"] = self.metadata
        return data

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ExplorationPath":
        path = cls(goal=data["goal"], session_id=data["sessionId"])
        path.start_time = datetime.fromisoformat(data["startTime"])
        path.steps = [ExplorationStep.from_json(s) for s in data.get("steps", [])]
        path.metadata = data.get("metadata")
        return path

    def save(self, path: str) -> None:
        try:
            with open(path, "w", encoding="utf-8") as fh:
                json.dump(self.to_json(), fh, indent=2)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Could not save exploration path to {path}: {exc}") from exc

    @classmethod
    def load(cls, path: str) -> "ExplorationPath":
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
            return cls.from_json(data)
        except (OSError, ValueError, KeyError) as exc:
            raise PersistenceError(f"Could not load exploration path from {path}: {exc}") from exc

    def _autosave(self) -> None:
        if not self.persist_path:
            return
        try:
            self.save(self.persist_path)
        except PersistenceError as exc:
            logger.warning("%s; continuing in memory", exc)
