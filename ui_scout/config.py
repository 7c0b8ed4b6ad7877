from __future__ import annotations

"""Exploration settings."""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_GOAL = "Explore the app systematically"
MAX_PROMPT_TOKENS = 3000


@dataclass
class ExplorationConfig:
    """Knobs for one exploration session. Out-of-range values are clamped, never rejected."""

    steps: int = 20
    goal: str = DEFAULT_GOAL
    output_dir: Optional[str] = None
    enable_verification: bool = True
    max_retries: int = 2
    settle_delay: float = 1.0
    temperature: float = 0.7
    seed: Optional[int] = None
    top_p: float = 0.9
    max_actions_per_screen: int = 3
    max_choices: int = 12
    max_tokens: int = MAX_PROMPT_TOKENS
    oracle_retries: int = 2
    backoff_base: float = 0.5
    navigation_map_steps: int = 5
    persist_path: Optional[str] = None
    graph_path: Optional[str] = None

    def __post_init__(self) -> None:
        self.steps = max(0, self.steps)
        self.max_retries = max(0, self.max_retries)
        self.settle_delay = max(0.0, self.settle_delay)
        self.temperature = min(max(self.temperature, 0.0), 1.0)
        self.top_p = min(max(self.top_p, 0.0), 1.0)
        self.max_actions_per_screen = max(1, self.max_actions_per_screen)
        self.max_choices = max(1, self.max_choices)
        # leave room for the reply inside a 4k context
        self.max_tokens = min(max(1, self.max_tokens), MAX_PROMPT_TOKENS)
        self.oracle_retries = max(1, self.oracle_retries)
        self.backoff_base = max(0.0, self.backoff_base)
        self.navigation_map_steps = max(0, self.navigation_map_steps)

    @classmethod
    def ci_preset(cls, steps: int = 20, goal: str = DEFAULT_GOAL, **overrides: Any) -> "ExplorationConfig":
        """Low-temperature, seeded settings so CI runs are as reproducible as the oracle allows."""
        params: Dict[str, Any] = {"steps": steps, "goal": goal, "temperature": 0.3, "seed": 42, "top_p": 0.9}
        params.update(overrides)
        return cls(**params)

    @classmethod
    def from_env(cls, **overrides: Any) -> "ExplorationConfig":
        """Build from `SCOUT_<FIELD>` environment variables (a `.env` file is honoured).

        Keyword overrides win over the environment. A malformed value raises
        `pydantic.ValidationError` naming the field.
        """
        params: Dict[str, Any] = ScoutSettings().model_dump(exclude_none=True)
        params.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**params)


class ScoutSettings(BaseSettings):
    """Environment layer for `ExplorationConfig`. Unset fields stay None and fall back to its defaults."""

    steps: Optional[int] = None
    goal: Optional[str] = None
    output_dir: Optional[str] = None
    enable_verification: Optional[bool] = None
    max_retries: Optional[int] = None
    settle_delay: Optional[float] = None
    temperature: Optional[float] = None
    seed: Optional[int] = None
    top_p: Optional[float] = None
    max_actions_per_screen: Optional[int] = None
    max_choices: Optional[int] = None
    max_tokens: Optional[int] = None
    oracle_retries: Optional[int] = None
    backoff_base: Optional[float] = None
    navigation_map_steps: Optional[int] = None
    persist_path: Optional[str] = None
    graph_path: Optional[str] = None

    model_config = SettingsConfigDict(
        env_prefix="SCOUT_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        extra="ignore",
    )
