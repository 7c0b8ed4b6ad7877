"""UI Scout: autonomous, oracle-guided exploration of interactive applications.

Each step captures the current screen, asks a decision oracle (an LLM) to pick the next
action from a ranked menu, executes it, verifies the outcome and records the result in
a navigation graph and a persisted step ledger.

Key sub-modules:

knowledge.py           – Element, screen, action and transition records.
navigation_graph.py    – Screens and transitions, with cycle, shortest-path and coverage queries.
action_selector.py     – Ranked action-choice menu with form-aware priority heuristics.
decision.py            – Decision types and parsers for oracle responses.
oracle.py              – OpenAI-backed decision oracle and its error mapping.
crawler.py             – Decision protocol: stuck-loop guard, prompting, retries, truncation.
verifier.py            – Post-action outcome verification.
exploration_path.py    – Step ledger with persistence and reproduction export.
exploration_policy.py  – The end-to-end exploration loop.
browser.py             – Playwright capture and execution collaborators.
"""

from .config import ExplorationConfig
from .crawler import AICrawler
from .decision import AlternativeAction, Decision, SuccessProbability
from .errors import (
    ActionExecutionError,
    CapacityExceededError,
    ContentPolicyBlockedError,
    ExplorationAssertionError,
    InvalidDecisionError,
    InvalidHierarchyError,
    OracleError,
    OracleUnavailableError,
    PersistenceError,
    ScoutError,
)
from .exploration_path import ExplorationPath, ExplorationStep
from .exploration_policy import ExplorationAgent
from .knowledge import Action, ActionType, Element, ElementType, ScreenNode, ScreenSnapshot, ScreenType, SemanticIntent, Transition
from .navigation_graph import CoverageStats, NavigationGraph
from .observer import ExplorationObserver
from .results import ExplorationResult
from .verifier import ActionVerifier, VerificationResult

__all__ = [
    "Action",
    "ActionExecutionError",
    "ActionType",
    "ActionVerifier",
    "AICrawler",
    "AlternativeAction",
    "CapacityExceededError",
    "ContentPolicyBlockedError",
    "CoverageStats",
    "Decision",
    "Element",
    "ElementType",
    "ExplorationAgent",
    "ExplorationAssertionError",
    "ExplorationConfig",
    "ExplorationObserver",
    "ExplorationPath",
    "ExplorationResult",
    "ExplorationStep",
    "InvalidDecisionError",
    "InvalidHierarchyError",
    "NavigationGraph",
    "OracleError",
    "OracleUnavailableError",
    "PersistenceError",
    "ScoutError",
    "ScreenNode",
    "ScreenSnapshot",
    "ScreenType",
    "SemanticIntent",
    "SuccessProbability",
    "Transition",
    "VerificationResult",
]
