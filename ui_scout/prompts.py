from __future__ import annotations

"""Prompt templates sent to the decision oracle."""

from typing import AbstractSet, List, Optional

from .action_selector import ActionChoice


def _visited_list(visited: AbstractSet[str], limit: int) -> str:
    if not visited:
        return "none"
    return ", ".join(sorted(visited)[:limit])


def _screen_context(screen_type: Optional[str]) -> str:
    return f" [{screen_type} screen]" if screen_type else ""


def _map_context(navigation_map: Optional[str]) -> str:
    return f"\n\n{navigation_map}\n" if navigation_map else ""


def explore_with_choices(
    choices: List[ActionChoice],
    visited: AbstractSet[str],
    goal: str,
    previous_action: Optional[str] = None,
    navigation_map: Optional[str] = None,
    screen_type: Optional[str] = None,
) -> str:
    """Multiple-choice prompt. The oracle answers with a choice number from the list."""
    choices_text = "\n".join(c.format_for_prompt() for c in choices)
    previous = f"\n\nPrevious action: {previous_action}" if previous_action else ""
    return (
        f"App crawler{_screen_context(screen_type)}. Goal: {goal}{_map_context(navigation_map)}\n\n"
        "AVAILABLE ACTIONS (select one):\n"
        f"{choices_text}\n\n"
        f"Already visited: {_visited_list(visited, 10)}{previous}\n\n"
        "STRATEGY:\n"
        "- ⭐️ = High priority (submit, important navigation)\n"
        "- ⚠️  = Low priority (cancel, destructive)\n"
        "- For login screens: fill inputs before tapping submit\n"
        "- For forms: complete all fields before submitting\n"
        "- Explore unvisited high-priority actions first\n\n"
        "Select ONE action number and explain why (1-2 sentences).\n"
        "Optionally list alternativeChoices to try if it has no effect, and describe the expectedOutcome.\n"
        "IMPORTANT: Your choice number MUST be from the list above.\n"
        "Respond with a JSON object."
    )


def find_feature(hierarchy: str, target: str) -> str:
    """Prompt that hunts for one specific feature instead of exploring broadly."""
    return (
        f"Find: {target}\n\n"
        "ELEMENTS:\n"
        f"{hierarchy}\n\n"
        f'Find the element leading to "{target}".\n\n'
        "OUTPUT (JSON object):\n"
        '- action="tap" with targetElement (exact id/label from the JSON)\n'
        '- action="done" if found or not available\n'
        '- successProbability: {"value": 0..1, "reasoning": "..."}\n'
        "- alternativeActions: []\n\n"
        'CRITICAL: If action="tap", targetElement is REQUIRED.'
    )
