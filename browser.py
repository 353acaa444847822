"""
browser.py: Browser control plane for the Threads extractor

Two interchangeable page adapters share one read-only contract:

• PlaywrightPage / PlaywrightElement: a live Chromium page driven by Playwright
• StaticPage / StaticElement: a saved HTML snapshot parsed with BeautifulSoup

Every read returns an optional value instead of raising, so a missing element,
a detached node or a slow probe is simply "no signal" for the caller. Only
navigation raises (NavigationError).
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from bs4 import BeautifulSoup
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

logger = logging.getLogger(__name__)


class NavigationError(Exception):
    """The browser could not reach the requested page."""


class BrowserUnavailable(Exception):
    """The shared browser session is not running."""


# ───────────────────────────── PLAYWRIGHT ADAPTERS ───────────────────────── #

class PlaywrightElement:
    def __init__(self, handle):
        self._handle = handle

    def attribute(self, name: str) -> Optional[str]:
        try:
            return self._handle.get_attribute(name)
        except PlaywrightError as e:
            logger.debug(f"Attribute read failed ({name}): {e}")
            return None

    def query_all(self, selector: str) -> List["PlaywrightElement"]:
        try:
            return [PlaywrightElement(h) for h in self._handle.query_selector_all(selector)]
        except PlaywrightError as e:
            logger.debug(f"Nested query failed ({selector}): {e}")
            return []

    def evaluate(self, expression: str) -> Optional[str]:
        try:
            value = self._handle.evaluate(expression)
        except PlaywrightError as e:
            logger.debug(f"Element script failed: {e}")
            return None
        if value is None or value == "":
            return None
        return str(value)


class PlaywrightPage:
    def __init__(self, page):
        self._page = page

    @property
    def url(self) -> str:
        return self._page.url

    def navigate(self, url: str, timeout_ms: int) -> None:
        try:
            self._page.goto(url, timeout=timeout_ms, wait_until="domcontentloaded")
        except PlaywrightError as e:
            raise NavigationError(str(e)) from e

    def wait_for_load(self, timeout_ms: int) -> bool:
        try:
            self._page.wait_for_load_state("load", timeout=timeout_ms)
            return True
        except PlaywrightError as e:
            logger.info(f"Page load timeout, proceeding anyway: {e}")
            return False

    def wait_for_elements(self, selector: str, timeout_ms: int) -> bool:
        try:
            self._page.wait_for_selector(selector, timeout=timeout_ms, state="attached")
            return True
        except PlaywrightError as e:
            logger.info(f"No elements for {selector!r} yet, proceeding: {e}")
            return False

    def query(self, selector: str) -> Optional[PlaywrightElement]:
        try:
            handle = self._page.query_selector(selector)
        except PlaywrightError as e:
            logger.debug(f"Query failed ({selector}): {e}")
            return None
        return PlaywrightElement(handle) if handle else None

    def query_all(self, selector: str) -> List[PlaywrightElement]:
        try:
            return [PlaywrightElement(h) for h in self._page.query_selector_all(selector)]
        except PlaywrightError as e:
            logger.debug(f"Query failed ({selector}): {e}")
            return []

    def html(self) -> Optional[str]:
        try:
            return self._page.content()
        except PlaywrightError as e:
            logger.warning(f"Failed to get HTML content: {e}")
            return None


# ───────────────────────────── BROWSER SESSION ───────────────────────────── #

class BrowserSession:
    """
    One long-lived Chromium instance shared by every extraction.

    Each call to open_page() gets its own browser context (cookies, storage,
    user agent, viewport), which is closed on every exit path.
    """

    def __init__(
        self,
        user_agent: str,
        viewport: Dict[str, int],
        probe_timeout_ms: int = 3000,
        headless: bool = True,
        executable_path: Optional[str] = None,
        proxy: Optional[str] = None,
        args: Optional[List[str]] = None,
    ):
        self.user_agent = user_agent
        self.viewport = viewport
        self.probe_timeout_ms = probe_timeout_ms
        self.headless = headless
        self.executable_path = executable_path
        self.proxy = proxy
        self.args = list(args or [])
        self._playwright = None
        self._browser = None

    @property
    def running(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    def start(self) -> None:
        if self._browser is not None:
            return
        logger.info("Launching Chromium")
        self._playwright = sync_playwright().start()
        launch_options = {"headless": self.headless, "args": self.args}
        if self.executable_path:
            launch_options["executable_path"] = self.executable_path
        if self.proxy:
            launch_options["proxy"] = {"server": self.proxy}
        try:
            self._browser = self._playwright.chromium.launch(**launch_options)
        except PlaywrightError:
            self._playwright.stop()
            self._playwright = None
            raise
        logger.info("Chromium ready")

    def close(self) -> None:
        if self._browser is not None:
            try:
                self._browser.close()
            except PlaywrightError as e:
                logger.warning(f"Browser close failed: {e}")
            self._browser = None
        if self._playwright is not None:
            self._playwright.stop()
            self._playwright = None

    @contextmanager
    def open_page(self) -> Iterator[PlaywrightPage]:
        if not self.running:
            raise BrowserUnavailable("browser session is not running")
        context = self._browser.new_context(
            user_agent=self.user_agent,
            viewport=self.viewport,
            device_scale_factor=1,
            is_mobile=False,
        )
        try:
            page = context.new_page()
            page.set_default_timeout(self.probe_timeout_ms)
            yield PlaywrightPage(page)
        finally:
            try:
                context.close()
            except PlaywrightError as e:
                logger.warning(f"Page close failed: {e}")


# ───────────────────────────── STATIC SNAPSHOT ───────────────────────────── #

class StaticElement:
    def __init__(self, tag):
        self._tag = tag

    def attribute(self, name: str) -> Optional[str]:
        value = self._tag.get(name)
        if isinstance(value, list):
            return " ".join(value)
        return value

    def query_all(self, selector: str) -> List["StaticElement"]:
        return [StaticElement(t) for t in self._tag.select(selector)]

    def evaluate(self, expression: str) -> Optional[str]:
        # A snapshot has no script engine and no live playback state.
        return None


class StaticPage:
    """A previously rendered page replayed from its serialized markup."""

    def __init__(self, html: str, url: str = ""):
        self._html = html
        self._soup = BeautifulSoup(html, "html.parser")
        self.url = url

    def navigate(self, url: str, timeout_ms: int) -> None:
        self.url = url

    def wait_for_load(self, timeout_ms: int) -> bool:
        return True

    def wait_for_elements(self, selector: str, timeout_ms: int) -> bool:
        return self._soup.select_one(selector) is not None

    def query(self, selector: str) -> Optional[StaticElement]:
        tag = self._soup.select_one(selector)
        return StaticElement(tag) if tag is not None else None

    def query_all(self, selector: str) -> List[StaticElement]:
        return [StaticElement(t) for t in self._soup.select(selector)]

    def html(self) -> Optional[str]:
        return self._html


class SnapshotSession:
    """Session stand-in that hands out the same saved snapshot for every call."""

    def __init__(self, html: str):
        self.html = html

    def start(self) -> None:
        pass

    def close(self) -> None:
        pass

    @contextmanager
    def open_page(self) -> Iterator[StaticPage]:
        yield StaticPage(self.html)
