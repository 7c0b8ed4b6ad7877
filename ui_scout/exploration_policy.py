from __future__ import annotations

"""The exploration driver: capture → decide → execute → verify → retry-or-accept → record."""

import asyncio
import logging
import os
import time
from typing import Any, Awaitable, Callable, Optional, Protocol

import networkx as nx

from .config import ExplorationConfig
from .crawler import AICrawler
from .decision import Decision
from .errors import ActionExecutionError, InvalidHierarchyError, OracleError, PersistenceError
from .exploration_path import ExplorationPath, ExplorationStep
from .knowledge import ActionType, ScreenSnapshot, utcnow
from .navigation_graph import NavigationGraph
from .observer import ExplorationObserver
from .oracle import DecisionOracle
from .results import ExplorationResult
from .verifier import VerificationResult

logger = logging.getLogger(__name__)


class ScreenCapturer(Protocol):
    async def capture(self) -> ScreenSnapshot:
        ...


class ActionExecutor(Protocol):
    async def execute(self, decision: Decision) -> bool:
        ...


class ExplorationAgent:
    """High-level orchestrator running one exploration session.

    The agent is the single owner of the session's navigation graph and step ledger.
    Steps never overlap; cancellation (via `explore(cancel=...)`) is honoured between
    steps only.
    """

    def __init__(
        self,
        capturer: ScreenCapturer,
        executor: ActionExecutor,
        oracle: Optional[DecisionOracle] = None,
        config: Optional[ExplorationConfig] = None,
        observer: Optional[ExplorationObserver] = None,
        crawler: Optional[AICrawler] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config or ExplorationConfig()
        self.observer = observer or ExplorationObserver()
        self._capturer = capturer
        self._executor = executor
        self._sleep = sleep

        if crawler is None:
            if oracle is None:
                raise ValueError("ExplorationAgent needs either an oracle or a crawler")
            crawler = AICrawler(
                oracle,
                config=self.config,
                navigation_graph=self._initial_graph(),
                observer=self.observer,
                sleep=sleep,
            )
        self.crawler = crawler
        if self.crawler.exploration_path is None:
            self._open_session()

        # progress tracking
        self.verifications_performed = 0
        self.verifications_passed = 0
        self.verifications_failed = 0
        self.retry_attempts = 0
        self._screenshots_dir: Optional[str] = None

    @property
    def navigation_graph(self) -> NavigationGraph:
        return self.crawler.navigation_graph

    @property
    def exploration_path(self) -> ExplorationPath:
        assert self.crawler.exploration_path is not None
        return self.crawler.exploration_path

    def _open_session(self) -> None:
        persist_path = self.config.persist_path
        if persist_path and os.path.exists(persist_path):
            try:
                self.crawler.resume_exploration(persist_path)
                return
            except PersistenceError as exc:
                logger.warning("%s; starting a new session", exc)
        self.crawler.start_exploration(self.config.goal, persist_path=persist_path)

    def _initial_graph(self) -> NavigationGraph:
        graph_path = self.config.graph_path
        if graph_path and os.path.exists(graph_path):
            try:
                graph = NavigationGraph.load(graph_path)
                logger.info("Loaded navigation graph with %d screens from %s", len(graph.nodes), graph_path)
                return graph
            except PersistenceError as exc:
                logger.warning("%s; starting with an empty graph", exc)
        return NavigationGraph()

    # ------------------------------------------------------------------
    async def explore(self, cancel: Optional[asyncio.Event] = None) -> ExplorationResult:
        """Entry-point of the loop. Always leaves a usable ledger behind, even when it raises."""
        start_time = utcnow()
        started = time.monotonic()
        self._prepare_output_dir()

        try:
            for step_number in range(1, self.config.steps + 1):
                if cancel is not None and cancel.is_set():
                    logger.info("Exploration cancelled before step %d", step_number)
                    break
                if not await self._run_step(step_number):
                    break
        except OracleError as exc:
            logger.error("Exploration aborted: %s", exc)
            self.observer.emit("on_error", exc)
            raise
        finally:
            self._write_artifacts()

        reproductions = self._export_reproductions()
        coverage = self.navigation_graph.coverage_stats()
        successful, failed = self.exploration_path.success_rate
        result = ExplorationResult(
            screens_discovered=coverage.total_screens,
            transitions=coverage.total_edges,
            duration=time.monotonic() - started,
            navigation_graph=self.navigation_graph,
            successful_actions=successful,
            failed_actions=failed,
            verifications_performed=self.verifications_performed,
            verifications_passed=self.verifications_passed,
            verifications_failed=self.verifications_failed,
            retry_attempts=self.retry_attempts,
            start_time=start_time,
            session_id=self.exploration_path.session_id,
            reproduction_files=reproductions,
        )
        logger.info("\n%s", result.summary)
        return result

    async def _run_step(self, step_number: int) -> bool:
        """Run one step. Returns False when exploration should stop."""
        try:
            before = await self._capturer.capture()
        except InvalidHierarchyError as exc:
            logger.warning("Step %d: capture failed (%s), trying again next step", step_number, exc)
            self.observer.emit("on_error", exc)
            return True
        screenshot_path = self._save_screenshot(before, step_number)

        decision = await self.crawler.decide(before, goal=self.config.goal)
        if decision.is_done:
            logger.info("Exploration complete at step %d: %s", step_number, decision.reasoning)
            return False

        current = decision
        origin = before.fingerprint
        executed = False
        error: Optional[str] = None
        verification: Optional[VerificationResult] = None
        retries = 0
        attempt = 0
        max_attempts = 1 + self.config.max_retries if self.config.enable_verification else 1

        while attempt < max_attempts:
            action_started = time.monotonic()
            try:
                executed = await self._executor.execute(current)
            except ActionExecutionError as exc:
                executed = False
                error = str(exc)
                logger.warning("Step %d: action %s failed: %s", step_number, current.describe(), exc)
                self.observer.emit("on_error", exc)
                break
            if not executed:
                break

            await self._sleep(self.config.settle_delay)
            try:
                after = await self._capturer.capture()
            except InvalidHierarchyError as exc:
                error = f"Could not capture screen after action: {exc}"
                logger.warning("Step %d: could not capture outcome: %s", step_number, exc)
                self.observer.emit("on_error", exc)
                break
            self._record_arrival(origin, after, current, time.monotonic() - action_started)
            origin = after.fingerprint

            if not self.config.enable_verification:
                break
            verification = self.crawler.verify_action(current, before, after)
            self.verifications_performed += 1
            if verification.passed:
                self.verifications_passed += 1
                break
            self.verifications_failed += 1

            attempt += 1
            # alternatives always come from the oracle's original decision
            if attempt >= max_attempts or attempt - 1 >= len(decision.alternative_actions):
                break
            alternative = decision.alternative_actions[attempt - 1]
            if alternative.action == ActionType.DONE:
                break
            retries += 1
            self.retry_attempts += 1
            logger.info("Step %d: retrying with alternative %s", step_number, alternative.describe())
            current = self.crawler.convert_alternative(alternative, after)

        succeeded = executed and error is None and (verification.passed if verification is not None else True)
        step = ExplorationStep.from_decision(
            current,
            before,
            was_successful=succeeded,
            verification_result=verification,
            was_retry=retries > 0,
            screenshot_path=screenshot_path,
        )
        self.exploration_path.add_step(step)
        if error is not None:
            self.crawler.mark_last_step_failed(error)
        logger.info(
            "Step %d: %s %s", step_number, step.compact_description(), "✓" if succeeded else "✗"
        )
        return True

    def _record_arrival(self, origin: str, after: ScreenSnapshot, decision: Decision, duration: float) -> None:
        # unchanged screens are counted as revisits by the next decide()
        if after.fingerprint == origin:
            return
        self.crawler.record_arrival(after)
        self.crawler.record_transition(origin, after.fingerprint, decision, duration)

    # ------------------------------------------------------------------
    # Artefacts --------------------------------------------------------

    def _prepare_output_dir(self) -> None:
        if not self.config.output_dir:
            return
        self._screenshots_dir = os.path.join(self.config.output_dir, "screenshots")
        try:
            os.makedirs(self._screenshots_dir, exist_ok=True)
        except OSError as exc:
            logger.warning("Could not create %s: %s", self._screenshots_dir, exc)
            self._screenshots_dir = None

    def _save_screenshot(self, snapshot: ScreenSnapshot, step_number: int) -> Optional[str]:
        if self._screenshots_dir is None:
            return None
        if not snapshot.screenshot:
            logger.debug("Step %d: screenshot is empty", step_number)
            return None
        filename = f"step_{step_number}_before.png"
        try:
            with open(os.path.join(self._screenshots_dir, filename), "wb") as fh:
                fh.write(snapshot.screenshot)
        except OSError as exc:
            logger.warning("Step %d: failed to save screenshot: %s", step_number, exc)
            return None
        # relative to output_dir so the run folder can be moved
        return f"screenshots/{filename}"

    def _write_artifacts(self) -> None:
        graph = self.navigation_graph
        targets = []
        if self.config.graph_path:
            targets.append(self.config.graph_path)
        if self.config.output_dir:
            targets.append(os.path.join(self.config.output_dir, "navigation_graph.json"))
        for target in targets:
            try:
                graph.save(target)
            except PersistenceError as exc:
                logger.warning("%s", exc)

        if not self.config.output_dir:
            return
        try:
            self.exploration_path.save(os.path.join(self.config.output_dir, "exploration.json"))
        except PersistenceError as exc:
            logger.warning("%s", exc)
        try:
            graph.write_graphml(os.path.join(self.config.output_dir, "navigation.graphml"))
        except (OSError, nx.NetworkXError) as exc:
            logger.warning("Failed to write GraphML: %s", exc)

    def _export_reproductions(self) -> list[str]:
        if not self.config.output_dir or not self.exploration_path.failed_steps:
            return []
        try:
            return self.exploration_path.export_reproductions(os.path.join(self.config.output_dir, "reproductions"))
        except PersistenceError as exc:
            logger.warning("%s", exc)
            return []
