from __future__ import annotations

"""Decision protocol: one oracle consultation per exploration step.

`AICrawler` owns the per-screen attempt bookkeeping (stuck-loop guard), renders the
choice menu into a prompt, calls the oracle with bounded retries and turns the answer
into a `Decision`. It also records screen visits and transitions into the navigation
graph on behalf of the exploration loop.
"""

import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from . import prompts
from .action_selector import ActionChoice, ActionSelector
from .config import ExplorationConfig
from .decision import (
    CHOICE_SCHEMA,
    DECISION_SCHEMA,
    AlternativeAction,
    ChoiceResponse,
    Decision,
    SuccessProbability,
    parse_choice_response,
    parse_decision,
    validate_decision,
)
from .errors import (
    CapacityExceededError,
    ContentPolicyBlockedError,
    InvalidDecisionError,
    OracleError,
    OracleUnavailableError,
)
from .exploration_path import ExplorationPath, ExplorationStep
from .input_generator import InputTextGenerator
from .knowledge import ActionType, ScreenNode, ScreenSnapshot, Transition
from .navigation_graph import CoverageStats, NavigationGraph
from .observer import ExplorationObserver
from .oracle import DecisionOracle
from .verifier import ActionVerifier, VerificationResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

# rough token estimate used for prompt budgeting
CHARS_PER_TOKEN = 4
ESTIMATED_ELEMENT_CHARS = 150
JSON_OVERHEAD_CHARS = 50
MIN_TRUNCATED_ELEMENTS = 5
MAX_TRUNCATED_ELEMENTS = 15

# matched case-insensitively; the replacement takes the case of the matched word
SANITIZE_REPLACEMENTS = (
    ("password", "auth field"),
    ("login", "sign in"),
    ("credentials", "access info"),
)

_MINIMAL_FIELDS = ("type", "interactive", "id", "label", "value", "intent", "priority")


def sanitize_prompt(prompt: str) -> str:
    """Swap authentication-flavoured words for neutral ones to get past over-eager content filters."""
    for pattern, replacement in SANITIZE_REPLACEMENTS:
        prompt = re.sub(pattern, lambda m, r=replacement: _match_case(m.group(0), r), prompt, flags=re.IGNORECASE)
    return prompt


def _match_case(word: str, replacement: str) -> str:
    if word.isupper():
        return replacement.upper()
    if word[0].isupper():
        return replacement[0].upper() + replacement[1:]
    return replacement


def _compact_hierarchy(elements: List[Dict[str, Any]], screen_type: Optional[str]) -> str:
    minimal = [{k: e[k] for k in _MINIMAL_FIELDS if k in e} for e in elements]
    payload: Dict[str, Any] = {"elements": minimal}
    if screen_type:
        payload["screenType"] = screen_type
    return json.dumps(payload, separators=(",", ":"))


def truncate_hierarchy(payload: str, max_tokens: int) -> str:
    """Shrink a serialized element list to roughly `max_tokens`, keeping the highest-priority elements.

    Elements are ranked by priority, stripped to the fields needed to identify and act on
    them, and cut to an estimated count; if the estimate still overflows, one smaller
    count is tried. Payloads that are not an element document are cut as plain text.
    """
    max_chars = max_tokens * CHARS_PER_TOKEN
    if len(payload) <= max_chars:
        return payload

    try:
        parsed = json.loads(payload)
        elements = list(parsed["elements"])
    except (ValueError, KeyError, TypeError):
        logger.warning("Could not parse hierarchy for truncation, cutting to %d chars", max_chars)
        return payload[: max_chars - JSON_OVERHEAD_CHARS] + "\n... (content truncated to fit token limit)"

    ranked = sorted(elements, key=lambda e: e.get("priority") or 0, reverse=True)
    screen_type = parsed.get("screenType")
    target = max(
        MIN_TRUNCATED_ELEMENTS,
        min(MAX_TRUNCATED_ELEMENTS, (max_chars - JSON_OVERHEAD_CHARS) // ESTIMATED_ELEMENT_CHARS),
    )
    compact = _compact_hierarchy(ranked[:target], screen_type)
    if len(compact) > max_chars and target > MIN_TRUNCATED_ELEMENTS:
        target = max(MIN_TRUNCATED_ELEMENTS, target - 5)
        logger.info("Truncation estimate too high, retrying with %d elements", target)
        compact = _compact_hierarchy(ranked[:target], screen_type)

    logger.info(
        "Hierarchy truncated: %d -> %d chars, kept %d of %d elements",
        len(payload), len(compact), min(target, len(ranked)), len(ranked),
    )
    return compact


class AICrawler:
    """Makes exploration decisions for captured screens.

    A single instance serves one session: it is the only writer of the navigation graph
    and (through the exploration loop) of the step ledger.
    """

    def __init__(
        self,
        oracle: DecisionOracle,
        config: Optional[ExplorationConfig] = None,
        navigation_graph: Optional[NavigationGraph] = None,
        exploration_path: Optional[ExplorationPath] = None,
        observer: Optional[ExplorationObserver] = None,
        input_generator: Optional[InputTextGenerator] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.oracle = oracle
        self.config = config or ExplorationConfig()
        self.navigation_graph = navigation_graph or NavigationGraph()
        self.exploration_path = exploration_path
        self.observer = observer or ExplorationObserver()
        self._inputs = input_generator or InputTextGenerator()
        self._selector = ActionSelector(max_choices=self.config.max_choices, input_generator=self._inputs)
        self._verifier = ActionVerifier()
        self._sleep = sleep

        self._current_fingerprint: Optional[str] = None
        self._actions_on_screen: List[str] = []
        # set when the loop already counted the visit to the screen `decide` will see next
        self._visit_recorded = False

    # --- session ----------------------------------------------------------
    def start_exploration(self, goal: str, persist_path: Optional[str] = None) -> ExplorationPath:
        self.exploration_path = ExplorationPath(goal=goal, persist_path=persist_path)
        return self.exploration_path

    def resume_exploration(self, path: str) -> ExplorationPath:
        """Continue the ledger saved at `path`; later mutations are written back to it.

        Raises `PersistenceError` when the file cannot be read.
        """
        self.exploration_path = ExplorationPath.load(path)
        self.exploration_path.persist_path = path
        self._current_fingerprint = None
        self._visit_recorded = False
        self.reset_action_counter()
        logger.info(
            "Resumed session %s with %d steps", self.exploration_path.session_id, len(self.exploration_path.steps)
        )
        return self.exploration_path

    @property
    def current_fingerprint(self) -> Optional[str]:
        return self._current_fingerprint

    @property
    def actions_on_current_screen(self) -> List[str]:
        return list(self._actions_on_screen)

    def reset_action_counter(self) -> None:
        self._actions_on_screen = []

    def did_screen_change(self, snapshot: ScreenSnapshot) -> bool:
        return self._current_fingerprint is None or snapshot.fingerprint != self._current_fingerprint

    # --- multiple-choice decision -----------------------------------------
    async def decide(
        self,
        snapshot: ScreenSnapshot,
        goal: Optional[str] = None,
        record_step: bool = False,
    ) -> Decision:
        """Choose the next action for `snapshot`.

        The oracle is not consulted when the stuck-loop guard fires or when nothing on
        the screen is actionable; both cases yield a `done` decision.
        """
        if self._visit_recorded and snapshot.fingerprint == self._current_fingerprint:
            is_new = False
        else:
            is_new = self.record_screen_visit(snapshot)
        self._visit_recorded = False

        if not is_new and len(self._actions_on_screen) >= self.config.max_actions_per_screen:
            count = len(self._actions_on_screen)
            logger.warning("Tried %d actions on screen %s with no progress, moving on", count, snapshot.fingerprint[:8])
            self.observer.emit("on_stuck", count, snapshot.fingerprint)
            self.reset_action_counter()
            decision = Decision.done(
                f"Tried {count} actions on this screen without progress. Moving on to avoid an infinite loop.",
                confidence=80,
            )
            return self._finish(decision, snapshot, record_step)

        if not snapshot.elements:
            decision = Decision.done("No interactive elements found on screen. Marking exploration as complete.")
            return self._finish(decision, snapshot, record_step)

        path = self.exploration_path
        visited = path.visited_elements if path else set()
        choices = self._selector.build(snapshot.elements, visited, snapshot.screen_type, self._actions_on_screen)
        if all(c.action == ActionType.DONE for c in choices):
            decision = Decision.done("No valid actions available on this screen.")
            return self._finish(decision, snapshot, record_step)

        self.observer.emit("on_will_decide", snapshot)
        navigation_map = None
        if path and self.config.navigation_map_steps:
            navigation_map = path.navigation_map(self.config.navigation_map_steps)
        prompt = prompts.explore_with_choices(
            choices,
            visited,
            goal or (path.goal if path else self.config.goal),
            previous_action=path.last_action if path else None,
            navigation_map=navigation_map,
            screen_type=snapshot.screen_type.value if snapshot.screen_type else None,
        )

        count = len(choices)

        def parse(raw: Dict[str, Any]) -> ChoiceResponse:
            response = parse_choice_response(raw)
            if not 1 <= response.choice <= count:
                logger.warning("Oracle returned invalid choice %d (valid: 1-%d)", response.choice, count)
                raise InvalidDecisionError(f"Choice {response.choice} outside 1-{count}")
            return response

        def fallback(exc: OracleError) -> ChoiceResponse:
            # the last choice is always "done"
            return ChoiceResponse(choice=count, reasoning=f"Oracle could not answer ({exc}); marking as done", confidence=0)

        response = await self._ask(prompt, CHOICE_SCHEMA, parse, fallback, sanitize_on_failure=False)
        decision = self.convert_choice(response, choices)
        self.observer.emit("on_decision", decision, snapshot)

        if decision.target_element and decision.target_element not in self._actions_on_screen:
            self._actions_on_screen.append(decision.target_element)
            logger.info(
                "Action attempt #%d on this screen: %s",
                len(self._actions_on_screen), decision.describe(),
            )
        return self._finish(decision, snapshot, record_step)

    @staticmethod
    def convert_choice(response: ChoiceResponse, choices: List[ActionChoice]) -> Decision:
        """Map a validated choice number (and any alternative numbers) onto a `Decision`."""
        if not 1 <= response.choice <= len(choices):
            raise InvalidDecisionError(f"Choice {response.choice} outside 1-{len(choices)}")
        selected = choices[response.choice - 1]
        alternatives = [
            AlternativeAction(choices[n - 1].action, choices[n - 1].target_element)
            for n in response.alternative_choices
            if 1 <= n <= len(choices) and n != response.choice
        ]
        return Decision(
            action=selected.action,
            reasoning=response.reasoning,
            success_probability=SuccessProbability(response.confidence / 100, response.reasoning),
            target_element=selected.target_element,
            text_to_type=selected.text_to_type,
            expected_outcome=response.expected_outcome,
            alternative_actions=alternatives,
        )

    # --- free-form decision -----------------------------------------------
    async def find_feature(self, snapshot: ScreenSnapshot, target: str) -> Decision:
        """Ask the oracle which element leads to `target`, using the free-form protocol."""
        if not snapshot.elements:
            return Decision.done("No elements found on screen. Cannot find target feature.", confidence=0)

        payload = json.dumps(snapshot.to_json(include_screenshot=False, interactive_only=True))
        prompt = prompts.find_feature(truncate_hierarchy(payload, self.config.max_tokens), target)

        def parse(raw: Dict[str, Any]) -> Decision:
            decision = parse_decision(raw)
            validate_decision(decision)
            return decision

        def fallback(exc: OracleError) -> Decision:
            if isinstance(exc, CapacityExceededError):
                return Decision(
                    action=ActionType.SWIPE,
                    reasoning="Unable to process the full hierarchy due to size. Scrolling to see more content.",
                    success_probability=SuccessProbability.moderate("Prompt too large for the oracle"),
                )
            return Decision.done(f"Oracle declined to answer: {exc}", confidence=0)

        return await self._ask(prompt, DECISION_SCHEMA, parse, fallback, sanitize_on_failure=True)

    # --- oracle plumbing --------------------------------------------------
    async def _ask(
        self,
        prompt: str,
        schema: Dict[str, Any],
        parse: Callable[[Dict[str, Any]], T],
        fallback: Callable[[OracleError], T],
        sanitize_on_failure: bool,
    ) -> T:
        """Call the oracle with bounded retries and exponential backoff.

        Unavailability propagates at once; capacity errors short-circuit to `fallback`;
        a content-policy refusal that survives every retry also degrades to `fallback`.
        Any other failure is re-raised after the last attempt.
        """
        retries = self.config.oracle_retries
        last_error: Optional[OracleError] = None
        sanitized = False

        for attempt in range(retries):
            try:
                return parse(await self.oracle.respond(prompt, schema))
            except OracleUnavailableError:
                raise
            except CapacityExceededError as exc:
                logger.warning("Prompt exceeded oracle capacity, falling back: %s", exc)
                return fallback(exc)
            except OracleError as exc:
                last_error = exc
                logger.warning("Oracle call failed (attempt %d/%d): %s", attempt + 1, retries, exc)

            if sanitize_on_failure and not sanitized:
                sanitized = True
                logger.info("Retrying once with a sanitized prompt")
                try:
                    return parse(await self.oracle.respond(sanitize_prompt(prompt), schema))
                except OracleUnavailableError:
                    raise
                except CapacityExceededError as exc:
                    return fallback(exc)
                except OracleError as exc:
                    last_error = exc

            if attempt < retries - 1:
                delay = self.config.backoff_base * (2 ** attempt)
                logger.debug("Backing off %.2fs before retry", delay)
                await self._sleep(delay)

        assert last_error is not None
        if isinstance(last_error, ContentPolicyBlockedError):
            logger.warning("Oracle kept refusing on content grounds, degrading")
            return fallback(last_error)
        raise last_error

    def _finish(self, decision: Decision, snapshot: ScreenSnapshot, record_step: bool) -> Decision:
        if record_step and self.exploration_path is not None:
            self.exploration_path.add_step(ExplorationStep.from_decision(decision, snapshot))
        return decision

    # --- verification & retries -------------------------------------------
    def verify_action(self, decision: Decision, before: ScreenSnapshot, after: ScreenSnapshot) -> VerificationResult:
        result = self._verifier.verify(decision, before, after)
        if not result.passed:
            logger.info("Verification failed for %s: %s", decision.describe(), result.reason)
        return result

    def convert_alternative(self, alternative: AlternativeAction, snapshot: ScreenSnapshot) -> Decision:
        """Turn an oracle-suggested fallback into an executable decision for the current screen."""
        text = None
        if alternative.action == ActionType.TYPE:
            element = snapshot.find(alternative.target) if alternative.target else None
            text = self._inputs.generate(alternative.target, element)
        return Decision(
            action=alternative.action,
            reasoning=f"Retrying with alternative action: {alternative.describe()}",
            success_probability=SuccessProbability.moderate("Alternative action after verification failure"),
            target_element=alternative.target,
            text_to_type=text,
        )

    def mark_last_step_failed(self, reason: Optional[str] = None) -> None:
        if self.exploration_path is not None:
            self.exploration_path.mark_last_step_failed(reason)

    # --- navigation graph -------------------------------------------------
    def record_screen_visit(self, snapshot: ScreenSnapshot) -> bool:
        """Add or revisit the node for `snapshot` and make it the current screen.

        Entering a different fingerprint clears the per-screen attempt list. A new
        node's depth is the number of screens known when it was found, not its
        distance in steps from the launch screen.
        """
        node = ScreenNode.from_snapshot(
            snapshot,
            depth=len(self.navigation_graph.nodes),
            parent_fingerprint=self._current_fingerprint,
        )
        is_new = self.navigation_graph.add_node(node)
        fp = snapshot.fingerprint
        if is_new:
            logger.info("New screen discovered: %s...", fp[:8])
            self.observer.emit("on_new_screen", fp, snapshot)
        else:
            visits = self.navigation_graph.visit_count(fp)
            logger.info("Revisiting screen (visit #%d): %s...", visits, fp[:8])
            self.observer.emit("on_revisit", fp, visits)

        if self.did_screen_change(snapshot):
            self.reset_action_counter()
        self._current_fingerprint = fp
        return is_new

    def record_arrival(self, snapshot: ScreenSnapshot) -> bool:
        """Count the visit to the screen reached by an action, so the next `decide` does not count it again."""
        is_new = self.record_screen_visit(snapshot)
        self._visit_recorded = True
        return is_new

    def record_transition(self, from_fp: str, to_fp: str, decision: Decision, duration: float) -> Transition:
        edge = self.navigation_graph.add_transition(from_fp, to_fp, decision.to_action(), duration)
        self.observer.emit("on_transition", edge)
        return edge

    def would_create_cycle(self, from_fp: str, to_fp: str) -> bool:
        return self.navigation_graph.would_create_cycle(from_fp, to_fp)

    def visit_count(self, fingerprint: str) -> int:
        return self.navigation_graph.visit_count(fingerprint)

    def coverage(self) -> CoverageStats:
        return self.navigation_graph.coverage_stats()

    def export_mermaid(self) -> str:
        return self.navigation_graph.export_mermaid()
