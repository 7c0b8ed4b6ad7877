from __future__ import annotations

"""Playwright-backed capture and execution collaborators for exploring web apps."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, async_playwright

from .decision import Decision
from .errors import ActionExecutionError, InvalidHierarchyError
from .knowledge import ActionType, Element, ElementType, ScreenSnapshot, ScreenType, SemanticIntent
from .state_matcher import signature

logger = logging.getLogger(__name__)

# Stamps every candidate with a stable data-scout-id so later actions can locate it.
CAPTURE_JS = """
(limit) => {
  const selector = [
    'a[href]', 'button', 'input', 'textarea', 'select', '[contenteditable="true"]',
    '[role=button]', '[role=link]', '[role=tab]', '[role=checkbox]', '[role=switch]',
    'h1', 'h2', 'h3', '[role=heading]', '[role=alert]'
  ].join(',');
  window.__scoutNextId = window.__scoutNextId || 1;
  const visible = (el) => {
    const r = el.getBoundingClientRect();
    const s = window.getComputedStyle(el);
    return r.width > 0 && r.height > 0 && s.visibility !== 'hidden' && s.display !== 'none';
  };
  const out = [];
  for (const el of document.querySelectorAll(selector)) {
    if (out.length >= limit) break;
    if (!visible(el) || el.type === 'hidden') continue;
    if (!el.hasAttribute('data-scout-id')) {
      el.setAttribute('data-scout-id', String(window.__scoutNextId++));
    }
    const text = (el.innerText || '').trim().replace(/\\s+/g, ' ').slice(0, 60);
    out.push({
      scoutId: el.getAttribute('data-scout-id'),
      tag: el.tagName.toLowerCase(),
      role: el.getAttribute('role') || '',
      inputType: (el.getAttribute('type') || '').toLowerCase(),
      id: el.id || el.getAttribute('name') || el.getAttribute('data-testid') || null,
      label: el.getAttribute('aria-label') || text || el.getAttribute('placeholder')
             || el.getAttribute('title') || el.getAttribute('alt') || null,
      value: ('value' in el && typeof el.value === 'string') ? el.value : null,
      scrollable: el.scrollHeight > el.clientHeight + 20,
    });
  }
  return {
    elements: out,
    scrollable: document.documentElement.scrollHeight > window.innerHeight + 20,
  };
}
"""

_SUBMIT_WORDS = ("submit", "sign in", "log in", "login", "save", "continue", "next", "send", "search")
_CANCEL_WORDS = ("cancel", "close", "dismiss", "back", "skip")
_DESTRUCTIVE_WORDS = ("delete", "remove", "log out", "logout", "sign out", "reset")

_INTENT_PRIORITY = {
    SemanticIntent.SUBMIT: 150,
    SemanticIntent.NAVIGATION: 100,
    SemanticIntent.NEUTRAL: 60,
    SemanticIntent.CANCEL: 30,
    SemanticIntent.DESTRUCTIVE: 15,
}


def _element_type(raw: Dict[str, Any]) -> ElementType:
    tag, role, input_type = raw["tag"], raw["role"], raw["inputType"]
    if tag in ("h1", "h2", "h3") or role in ("heading", "alert"):
        return ElementType.TEXT
    if role == "tab":
        return ElementType.TAB
    if tag == "select":
        return ElementType.PICKER
    if input_type in ("checkbox", "radio") or role in ("checkbox", "switch"):
        return ElementType.TOGGLE
    if input_type == "range":
        return ElementType.SLIDER
    if input_type in ("submit", "button", "reset", "image"):
        return ElementType.BUTTON
    if tag in ("input", "textarea") or raw.get("role") == "textbox":
        return ElementType.INPUT
    if tag == "a" or role == "link":
        return ElementType.LINK
    return ElementType.BUTTON


def _intent(element_type: ElementType, raw: Dict[str, Any]) -> SemanticIntent:
    words = " ".join(filter(None, [raw.get("id"), raw.get("label")])).lower()
    if any(w in words for w in _DESTRUCTIVE_WORDS):
        return SemanticIntent.DESTRUCTIVE
    if any(w in words for w in _CANCEL_WORDS):
        return SemanticIntent.CANCEL
    if raw["inputType"] == "submit" or any(w in words for w in _SUBMIT_WORDS):
        return SemanticIntent.SUBMIT
    if element_type in (ElementType.LINK, ElementType.TAB):
        return SemanticIntent.NAVIGATION
    return SemanticIntent.NEUTRAL


def _priority(element: Element) -> int:
    intent = element.intent or SemanticIntent.NEUTRAL
    priority = _INTENT_PRIORITY[intent]
    if element.interactive and intent == SemanticIntent.NEUTRAL:
        priority += 20
    if element.id:
        priority += 10
    if element.type == ElementType.INPUT:
        priority += 40
    return priority


def classify_screen(elements: List[Element], page_scrollable: bool = False) -> ScreenType:
    """Coarse screen classification from the captured element mix."""
    inputs = [e for e in elements if e.type == ElementType.INPUT]
    if any("password" in (e.identifier or "").lower() for e in inputs):
        return ScreenType.LOGIN
    if len(inputs) >= 2:
        return ScreenType.FORM
    if sum(1 for e in elements if e.type == ElementType.TAB) >= 2:
        return ScreenType.TAB_NAVIGATION
    links = sum(1 for e in elements if e.type == ElementType.LINK)
    if links >= 8 or (page_scrollable and links >= 4):
        return ScreenType.LIST
    return ScreenType.CONTENT


class PlaywrightScreen:
    """Capture and execution collaborator driving a single Playwright `Page`."""

    def __init__(self, page: Page, max_elements: int = 50, action_timeout_ms: int = 5000) -> None:
        self.page = page
        self.max_elements = max_elements
        self.action_timeout_ms = action_timeout_ms
        # identifier -> data-scout-id from the most recent capture
        self._handles: Dict[str, str] = {}

    async def capture(self) -> ScreenSnapshot:
        try:
            result = await self.page.evaluate(CAPTURE_JS, self.max_elements)
            screenshot = await self.page.screenshot()
        except PlaywrightError as exc:
            raise InvalidHierarchyError(f"Could not capture {self.page.url}: {exc}") from exc

        elements: List[Element] = []
        handles: Dict[str, str] = {}
        page_scrollable = bool(result.get("scrollable"))
        for raw in result.get("elements", []):
            element_type = _element_type(raw)
            if raw.get("scrollable") and element_type not in (ElementType.INPUT, ElementType.TEXT):
                element_type = ElementType.SCROLLABLE
            interactive = element_type != ElementType.TEXT
            element = Element(
                type=element_type,
                id=raw.get("id"),
                label=raw.get("label"),
                interactive=interactive,
                value=raw.get("value") if element_type == ElementType.INPUT else None,
            )
            if interactive:
                element.intent = _intent(element_type, raw)
            element.priority = _priority(element)
            elements.append(element)
            if element.identifier and element.identifier not in handles:
                handles[element.identifier] = raw["scoutId"]

        if page_scrollable and not any(e.type == ElementType.SCROLLABLE for e in elements):
            elements.append(Element(type=ElementType.SCROLLABLE, id="page", interactive=False))

        self._handles = handles
        return ScreenSnapshot(
            elements=elements,
            fingerprint=signature(elements, self.page.url),
            screenshot=screenshot,
            screen_type=classify_screen(elements, page_scrollable),
        )

    async def execute(self, decision: Decision) -> bool:
        action = decision.action
        try:
            if action == ActionType.TAP:
                await self._locate(decision).click(timeout=self.action_timeout_ms)
            elif action == ActionType.TYPE:
                await self._locate(decision).fill(decision.text_to_type or "", timeout=self.action_timeout_ms)
            elif action == ActionType.SWIPE:
                await self.page.mouse.wheel(0, 600)
            elif action == ActionType.BACK:
                await self.page.go_back(timeout=self.action_timeout_ms)
            elif action == ActionType.DONE:
                return True
        except PlaywrightError as exc:
            raise ActionExecutionError(str(exc), action=action.value, target=decision.target_element) from exc

        await self._ensure_single_tab()
        return True

    def _locate(self, decision: Decision):
        target = decision.target_element
        if not target:
            raise ActionExecutionError(
                f"'{decision.action.value}' needs a target element", action=decision.action.value
            )
        scout_id = self._handles.get(target)
        if scout_id is None:
            raise ActionExecutionError(
                f"Element '{target}' not found on current screen", action=decision.action.value, target=target
            )
        return self.page.locator(f'[data-scout-id="{scout_id}"]')

    async def _ensure_single_tab(self) -> None:
        """Close pop-up tabs so exploration stays on one page."""
        for extra in self.page.context.pages:
            if extra is self.page:
                continue
            try:
                await extra.close()
            except PlaywrightError:
                logger.debug("Could not close extra tab %s", extra.url)


@asynccontextmanager
async def open_page(url: str, headless: bool = True, settle: float = 1.0) -> AsyncIterator[Page]:
    """Launch Chromium, open `url` and yield the page; everything is closed on exit."""
    async with async_playwright() as pw:
        browser = await pw.chromium.launch(headless=headless)
        try:
            page = await browser.new_page()
            await page.goto(url)
            await page.wait_for_load_state("load")
            await asyncio.sleep(settle)
            yield page
        finally:
            await browser.close()
