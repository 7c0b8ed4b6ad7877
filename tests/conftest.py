from typing import Any, Dict, List, Optional, Sequence, Union

import pytest

from ui_scout.decision import Decision
from ui_scout.errors import ActionExecutionError
from ui_scout.knowledge import Element, ElementType, ScreenSnapshot, ScreenType, SemanticIntent


def button(identifier: str, label: Optional[str] = None, priority: int = 60, intent: Optional[SemanticIntent] = None) -> Element:
    return Element(type=ElementType.BUTTON, id=identifier, label=label, interactive=True, priority=priority, intent=intent)


def text_input(identifier: str, value: Optional[str] = None, priority: int = 100) -> Element:
    return Element(type=ElementType.INPUT, id=identifier, interactive=True, value=value, priority=priority)


def label(text: str) -> Element:
    return Element(type=ElementType.TEXT, label=text)


def snapshot(fingerprint: str, elements: Sequence[Element], screen_type: Optional[ScreenType] = None) -> ScreenSnapshot:
    return ScreenSnapshot(elements=list(elements), fingerprint=fingerprint, screenshot=b"png", screen_type=screen_type)


class FakeOracle:
    """Replays scripted responses; an Exception in the script is raised instead of returned."""

    def __init__(self, responses: Sequence[Union[Dict[str, Any], Exception]] = ()) -> None:
        self.responses = list(responses)
        self.prompts: List[str] = []

    async def respond(self, prompt: str, schema: Dict[str, Any]) -> Dict[str, Any]:
        self.prompts.append(prompt)
        if not self.responses:
            raise AssertionError("oracle called more often than scripted")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def calls(self) -> int:
        return len(self.prompts)


class FakeScreen:
    """Capture/execute collaborator returning scripted snapshots in order (the last one repeats)."""

    def __init__(self, snapshots: Sequence[ScreenSnapshot], failures: Sequence[Optional[str]] = ()) -> None:
        self.snapshots = list(snapshots)
        self.failures = list(failures)
        self.executed: List[Decision] = []
        self.captures = 0

    async def capture(self) -> ScreenSnapshot:
        self.captures += 1
        if len(self.snapshots) > 1:
            return self.snapshots.pop(0)
        return self.snapshots[0]

    async def execute(self, decision: Decision) -> bool:
        self.executed.append(decision)
        failure = self.failures.pop(0) if self.failures else None
        if failure:
            raise ActionExecutionError(failure, action=decision.action.value, target=decision.target_element)
        return True


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def no_sleep() -> SleepRecorder:
    return SleepRecorder()
