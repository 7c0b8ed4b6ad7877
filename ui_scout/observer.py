from __future__ import annotations

"""Optional callbacks fired by the crawler and the exploration loop."""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional

if TYPE_CHECKING:
    from .decision import Decision
    from .knowledge import ScreenSnapshot, Transition


@dataclass
class ExplorationObserver:
    """Bundle of hooks passed explicitly to `AICrawler` / `ExplorationAgent`.

    Every hook is optional and called synchronously on the exploration loop.
    """

    on_will_decide: Optional[Callable[["ScreenSnapshot"], Any]] = None
    on_decision: Optional[Callable[["Decision", "ScreenSnapshot"], Any]] = None
    on_new_screen: Optional[Callable[[str, "ScreenSnapshot"], Any]] = None
    on_revisit: Optional[Callable[[str, int], Any]] = None
    on_transition: Optional[Callable[["Transition"], Any]] = None
    on_stuck: Optional[Callable[[int, str], Any]] = None
    on_error: Optional[Callable[[Exception], Any]] = None

    def emit(self, hook: str, *args: Any) -> None:
        callback = getattr(self, hook)
        if callback is not None:
            callback(*args)
