from __future__ import annotations

"""Ranked, numbered action menu presented to the oracle for one step."""

import logging
from dataclasses import dataclass
from typing import AbstractSet, Iterable, List, Optional

from .input_generator import InputTextGenerator
from .knowledge import ActionType, Element, ElementType, ScreenType, SemanticIntent

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 50
DONE_PRIORITY = 5
# more elements than this probably extends past the viewport
SCROLL_ELEMENT_THRESHOLD = 10


@dataclass(frozen=True)
class ActionChoice:
    """One candidate action. Lives only for the duration of a single oracle request."""

    number: int
    action: ActionType
    description: str
    priority: int
    target_element: Optional[str] = None
    text_to_type: Optional[str] = None
    intent: Optional[str] = None

    def format_for_prompt(self) -> str:
        marker = ""
        if self.priority >= 100:
            marker = "⭐️ "
        elif self.priority <= 25:
            marker = "⚠️  "
        hints = ([self.intent] if self.intent else []) + [f"priority: {self.priority}"]
        return f"{self.number}. {marker}{self.description} [{', '.join(hints)}]"


class ActionSelector:
    """Turns a captured element list plus exploration history into an `ActionChoice` menu.

    Elements are considered in descending semantic priority. Already-visited targets are
    skipped unless they are inputs (a field may need re-typing), and targets already
    attempted on the current screen are always skipped. A `done` choice is always last,
    so its number equals the menu length.
    """

    def __init__(self, max_choices: int = 12, input_generator: InputTextGenerator | None = None) -> None:
        self.max_choices = max_choices
        self._inputs = input_generator or InputTextGenerator()

    def build(
        self,
        elements: List[Element],
        visited: AbstractSet[str],
        screen_type: Optional[ScreenType] = None,
        attempted: Iterable[str] = (),
    ) -> List[ActionChoice]:
        attempted = set(attempted)
        # stable sort keeps capture order for equal priorities
        ranked = sorted(elements, key=lambda e: e.priority or 0, reverse=True)

        is_form = screen_type in (ScreenType.FORM, ScreenType.LOGIN)
        inputs = [e for e in elements if e.type == ElementType.INPUT]
        form_complete = is_form and bool(inputs) and all(not e.is_empty for e in inputs)

        choices: List[ActionChoice] = []
        for element in ranked:
            if len(choices) >= self.max_choices:
                break
            element_id = element.identifier
            if not element_id:
                # nothing could locate it again
                continue
            is_visited = element_id in visited
            is_input = element.type == ElementType.INPUT

            if is_visited and not is_input:
                continue
            if element_id in attempted:
                logger.debug("Skipping '%s' - already tried on this screen", element_id)
                continue

            priority = element.priority if element.priority is not None else DEFAULT_PRIORITY
            visited_marker = " [visited]" if is_visited else ""
            intent = element.intent.value if element.intent else None

            if is_input:
                if element.is_empty:
                    priority = int(priority * 1.25)
                else:
                    priority = priority // 4
                text = self._inputs.generate(element_id, element)
                current = f" (current: {element.value})" if element.value else ""
                choices.append(
                    ActionChoice(
                        number=len(choices) + 1,
                        action=ActionType.TYPE,
                        target_element=element_id,
                        text_to_type=text,
                        description=f'Type "{text}" into {element_id}{current}{visited_marker}',
                        priority=priority,
                        intent=intent,
                    )
                )
            elif element.interactive:
                if is_form and element.intent == SemanticIntent.SUBMIT:
                    # submitting an incomplete form is almost never useful
                    priority = int(priority * 1.3) if form_complete else priority // 4
                if is_visited:
                    priority = priority // 2
                choices.append(
                    ActionChoice(
                        number=len(choices) + 1,
                        action=ActionType.TAP,
                        target_element=element_id,
                        description=f"Tap {element.label or element_id}{visited_marker}",
                        priority=priority,
                        intent=intent,
                    )
                )

        if self.should_offer_swipe(elements, screen_type):
            unvisited = sum(1 for c in choices if c.target_element and c.target_element not in visited)
            if unvisited < 2:
                swipe_priority = 130
            elif screen_type == ScreenType.LIST:
                swipe_priority = 80
            else:
                swipe_priority = 40
            choices.append(
                ActionChoice(
                    number=len(choices) + 1,
                    action=ActionType.SWIPE,
                    description="Swipe to see more content",
                    priority=swipe_priority,
                )
            )

        choices.append(
            ActionChoice(
                number=len(choices) + 1,
                action=ActionType.DONE,
                description="Done exploring this screen",
                priority=DONE_PRIORITY,
            )
        )
        return choices

    @staticmethod
    def should_offer_swipe(elements: List[Element], screen_type: Optional[ScreenType]) -> bool:
        if screen_type == ScreenType.LIST:
            return True
        if any(e.type == ElementType.SCROLLABLE for e in elements):
            return True
        return len(elements) > SCROLL_ELEMENT_THRESHOLD
