from __future__ import annotations

"""Decision oracle backed by the OpenAI chat completions API.

The crawler only depends on the `DecisionOracle` protocol: an async `respond(prompt, schema)`
returning a decoded JSON object. `OpenAIOracle` is the production implementation; it
translates SDK failures into the `ui_scout.errors` taxonomy so the crawler can tell a
fatal misconfiguration from a retryable hiccup or an oversized prompt.
"""

import json
import logging
import os
import re
from typing import Any, Dict, Optional, Protocol

from dotenv import load_dotenv
import openai
from openai import AsyncOpenAI

from .errors import (
    CapacityExceededError,
    ContentPolicyBlockedError,
    InvalidDecisionError,
    OracleError,
    OracleUnavailableError,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"

_POLICY_CODES = {"content_filter", "content_policy_violation"}
_CAPACITY_CODES = {"context_length_exceeded", "string_above_max_length"}


class DecisionOracle(Protocol):
    async def respond(self, prompt: str, schema: Dict[str, Any]) -> Dict[str, Any]:
        ...


def strip_code_fences(content: str) -> str:
    """Remove markdown fences some models wrap around JSON despite instructions."""
    return re.sub(r"```[a-zA-Z]*", "", content).strip("` \n")


class OpenAIOracle:
    """Chat-completions oracle that forces a JSON object reply matching `schema`."""

    def __init__(
        self,
        model: Optional[str] = None,
        temperature: float = 0.7,
        top_p: float = 0.9,
        seed: Optional[int] = None,
        client: Optional[AsyncOpenAI] = None,
        max_completion_tokens: int = 512,
    ) -> None:
        load_dotenv()
        self.model = model or os.getenv("SCOUT_MODEL", DEFAULT_MODEL)
        self.temperature = temperature
        self.top_p = top_p
        self.seed = seed
        self.max_completion_tokens = max_completion_tokens
        self.token_usage: int = 0
        if client is None:
            try:
                client = AsyncOpenAI()
            except openai.OpenAIError as exc:
                # raised when OPENAI_API_KEY is missing
                raise OracleUnavailableError(str(exc)) from exc
        self._client = client

    async def respond(self, prompt: str, schema: Dict[str, Any]) -> Dict[str, Any]:
        system = (
            "You drive an automated UI explorer. Reply with a single JSON object that "
            f"conforms to this JSON schema:\n{json.dumps(schema)}"
        )
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "response_format": {"type": "json_object"},
            "temperature": self.temperature,
            "top_p": self.top_p,
            "max_tokens": self.max_completion_tokens,
        }
        if self.seed is not None:
            kwargs["seed"] = self.seed

        try:
            resp = await self._client.chat.completions.create(**kwargs)
        except (openai.AuthenticationError, openai.PermissionDeniedError, openai.NotFoundError) as exc:
            raise OracleUnavailableError(f"Oracle unavailable: {exc}") from exc
        except openai.BadRequestError as exc:
            code = getattr(exc, "code", None)
            if code in _CAPACITY_CODES:
                raise CapacityExceededError(str(exc)) from exc
            if code in _POLICY_CODES:
                raise ContentPolicyBlockedError(str(exc)) from exc
            raise InvalidDecisionError(f"Oracle rejected request: {exc}") from exc
        except openai.OpenAIError as exc:
            # connection, timeout, rate limit and 5xx errors are worth retrying
            raise OracleError(f"Oracle request failed: {exc}") from exc

        self.token_usage += resp.usage.total_tokens if resp and resp.usage else 0
        choice = resp.choices[0]
        if choice.finish_reason == "content_filter":
            raise ContentPolicyBlockedError("Response withheld by content filter")

        content = (choice.message.content or "").strip()
        try:
            parsed = json.loads(strip_code_fences(content))
        except json.JSONDecodeError as exc:
            raise InvalidDecisionError(f"Oracle reply is not valid JSON: {content[:200]!r}") from exc
        if not isinstance(parsed, dict):
            raise InvalidDecisionError(f"Oracle reply is not a JSON object: {content[:200]!r}")
        return parsed
