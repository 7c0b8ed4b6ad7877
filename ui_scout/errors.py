from __future__ import annotations

"""Exception hierarchy shared by the crawler, the oracle client and the exploration loop."""


class ScoutError(Exception):
    """Base class for every error raised by ui_scout."""


class OracleError(ScoutError):
    """Generic, retryable failure talking to the decision oracle."""


class OracleUnavailableError(OracleError):
    """The oracle cannot be used at all (missing key, auth failure, unknown model).

    Fatal for the session: never retried.
    """


class CapacityExceededError(OracleError):
    """The prompt exceeded what the oracle can process."""


class ContentPolicyBlockedError(OracleError):
    """The oracle declined the request on content-safety grounds."""


class InvalidDecisionError(OracleError):
    """The oracle answered, but the answer is malformed or out of range."""


class InvalidHierarchyError(ScoutError):
    """Screen capture produced no usable structure."""


class ActionExecutionError(ScoutError):
    """The execution collaborator could not perform an action."""

    def __init__(self, message: str, action: str | None = None, target: str | None = None) -> None:
        super().__init__(message)
        self.action = action
        self.target = target


class PersistenceError(ScoutError):
    """Saving or loading exploration state failed."""


class ExplorationAssertionError(ScoutError, AssertionError):
    """Raised by the assertion helpers on `ExplorationResult`."""
