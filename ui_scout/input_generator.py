from __future__ import annotations

"""Content-aware text for input fields, derived from the field's identifier, label or placeholder."""

from typing import Optional

from .knowledge import Element

# checked in order; first keyword found in the field name wins
_FIELD_HINTS = (
    (("email", "e-mail", "username", "login"), "test@example.com"),
    (("password", "passcode", "pin"), "password123"),
    (("phone", "mobile", "tel"), "555-123-4567"),
    (("first", "given"), "Jane"),
    (("last", "surname", "family"), "Doe"),
    (("name",), "Jane Doe"),
    (("zip", "postal"), "94105"),
    (("age", "quantity", "amount", "count", "number"), "42"),
    (("url", "website", "link"), "https://example.com"),
    (("search", "query", "find"), "test"),
)

DEFAULT_TEXT = "sample text"


class InputTextGenerator:
    """Picks plausible text for a field so typed actions look like real user input."""

    def __init__(self, default: str = DEFAULT_TEXT) -> None:
        self._default = default

    def generate(self, target: Optional[str], element: Optional[Element] = None) -> str:
        hints = [target or ""]
        if element is not None:
            hints.extend([element.id or "", element.label or ""])
        haystack = " ".join(hints).lower()
        for keywords, text in _FIELD_HINTS:
            if any(k in haystack for k in keywords):
                return text
        return self._default
