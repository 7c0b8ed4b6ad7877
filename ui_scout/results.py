from __future__ import annotations

"""Outcome of a finished exploration run, with assertion helpers for use in test suites."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .errors import ExplorationAssertionError
from .navigation_graph import NavigationGraph


@dataclass
class ExplorationResult:
    screens_discovered: int
    transitions: int
    duration: float
    navigation_graph: NavigationGraph = field(repr=False)
    successful_actions: int = 0
    failed_actions: int = 0
    verifications_performed: int = 0
    verifications_passed: int = 0
    verifications_failed: int = 0
    retry_attempts: int = 0
    start_time: Optional[datetime] = None
    session_id: Optional[str] = None
    reproduction_files: List[str] = field(default_factory=list)

    @property
    def total_actions(self) -> int:
        return self.successful_actions + self.failed_actions

    @property
    def success_rate_percent(self) -> int:
        if self.total_actions == 0:
            return 0
        return (self.successful_actions * 100) // self.total_actions

    @property
    def verification_success_rate(self) -> int:
        if self.verifications_performed == 0:
            return 0
        return (self.verifications_passed * 100) // self.verifications_performed

    @property
    def has_critical_failures(self) -> bool:
        return self.failed_actions > 0

    @property
    def summary(self) -> str:
        lines = [
            "📊 Exploration Summary:",
            f"   • Screens: {self.screens_discovered}",
            f"   • Transitions: {self.transitions}",
            f"   • Duration: {int(self.duration)}s",
            f"   • Success Rate: {self.success_rate_percent}% ({self.successful_actions}/{self.total_actions})",
            f"   • Failures: {self.failed_actions}",
        ]
        if self.verifications_performed:
            lines.append(
                f"   • Verification: {self.verification_success_rate}% pass rate "
                f"({self.verifications_passed}/{self.verifications_performed})"
            )
        if self.retry_attempts:
            lines.append(f"   • Retries: {self.retry_attempts} alternative actions attempted")
        return "\n".join(lines)

    def to_json(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "screensDiscovered": self.screens_discovered,
            "transitions": self.transitions,
            "duration": self.duration,
            "successfulActions": self.successful_actions,
            "failedActions": self.failed_actions,
            "verificationsPerformed": self.verifications_performed,
            "verificationsPassed": self.verifications_passed,
            "verificationsFailed": self.verifications_failed,
            "retryAttempts": self.retry_attempts,
            "startTime": self.start_time.isoformat() if self.start_time else None,
            "reproductionFiles": self.reproduction_files,
            "coverage": self.navigation_graph.coverage_stats().to_json(),
        }

    # --- assertions -------------------------------------------------------
    def assert_discovered(self, min_screens: int) -> None:
        if self.screens_discovered < min_screens:
            raise ExplorationAssertionError(
                f"Insufficient screen coverage: expected at least {min_screens} screens, "
                f"got {self.screens_discovered}"
            )

    def assert_transitions(self, minimum: int) -> None:
        if self.transitions < minimum:
            raise ExplorationAssertionError(
                f"Insufficient transitions: expected at least {minimum}, got {self.transitions}"
            )

    def assert_success_rate(self, min_percent: int) -> None:
        if self.total_actions == 0:
            raise ExplorationAssertionError("No actions were executed during exploration")
        if self.success_rate_percent < min_percent:
            raise ExplorationAssertionError(
                f"Insufficient success rate: expected at least {min_percent}%, got "
                f"{self.success_rate_percent}% ({self.successful_actions} successful, "
                f"{self.failed_actions} failed)"
            )

    def assert_no_critical_issues(self) -> None:
        if self.has_critical_failures:
            message = f"Critical failures found: {self.failed_actions} action(s) failed during exploration"
            if self.reproduction_files:
                message += f"\nReproductions: {', '.join(self.reproduction_files)}"
            raise ExplorationAssertionError(message)
