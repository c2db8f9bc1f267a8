"""Browser sandbox agent backed by Playwright."""

import asyncio
import hashlib
import os
import re
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional
from urllib.parse import quote_plus

from playwright.async_api import Browser, Page, async_playwright
from playwright.async_api import Error as PlaywrightError

from ..lib.completion import CompletionClient
from ..lib.metrics import time_agent_operation
from ..models.agent_result import AgentResult, ErrorCode
from ..models.capability import AgentKind
from ..models.message import Message
from .base_agent import BaseAgent
from .sandbox_policy import SandboxGuard


WEB_PROMPT = """You are a Web Browsing Agent for Morpheus AI.
Your role is to browse the internet, retrieve information, and summarize content for the user.
- You should only visit websites that are safe and appropriate.
- You should provide accurate summaries of web content.
- You can take screenshots of websites for visual reference.
- You must respect website terms of service and rate limits.
- You should extract key information from pages to answer user queries effectively."""

URL_PATTERN = re.compile(r"https?://[^\s]+")

CONTENT_SELECTORS = [
    "main",
    "article",
    "#content",
    ".content",
    "#main",
    ".main",
    ".post-content",
    ".article-content",
]

NAVIGATE_SUMMARY_LIMIT = 1000
EXTRACT_SUMMARY_LIMIT = 2000


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def screenshot_filename(url: str, now: Optional[datetime] = None) -> str:
    """`screenshot-<timestamp>-<url hash>.png` with `:` and `.` replaced by `-`."""
    now = now or datetime.now(timezone.utc)
    timestamp = now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    digest = hashlib.md5(url.encode("utf-8")).hexdigest()[:8]
    return f"screenshot-{re.sub(r'[:.]', '-', timestamp)}-{digest}.png"


class WebAgent(BaseAgent):
    """Navigates, screenshots and extracts pages, one page at a time."""

    kind = AgentKind.WEB

    def __init__(
        self,
        completion: CompletionClient,
        screenshot_dir: str = "./screenshots",
        headless: bool = True,
        navigation_timeout_ms: int = 30000,
        guard: Optional[SandboxGuard] = None,
        browser_launcher: Optional[Callable[[], Awaitable[Any]]] = None
    ):
        super().__init__(
            "Web Agent",
            "Researches and summarizes information using web browsing",
            WEB_PROMPT,
            completion
        )
        self.screenshot_dir = os.path.realpath(os.path.expanduser(screenshot_dir))
        self.headless = headless
        self.navigation_timeout_ms = navigation_timeout_ms
        self.guard = guard or SandboxGuard()
        self._browser_launcher = browser_launcher or self._launch_chromium
        self._playwright = None
        self.browser: Optional[Browser] = None
        self.active_page: Optional[Page] = None
        # guards browser and active_page; the agent is shared by every session
        self._page_lock = asyncio.Lock()

    async def _launch_chromium(self) -> Browser:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(
            headless=self.headless,
            args=["--no-sandbox", "--disable-setuid-sandbox"]
        )

    async def initialize(self) -> bool:
        try:
            os.makedirs(self.screenshot_dir, exist_ok=True)
            await self._close_browser()
            self.browser = await self._browser_launcher()
            test_page = await self.browser.new_page()
            await test_page.close()
        except (PlaywrightError, OSError) as e:
            self.logger.error(f"Failed to initialize Web Agent: {e}")
            self.browser = None
            return False
        self.logger.info("Web Agent browser launched")
        return await super().initialize()

    async def shutdown(self) -> None:
        await self._close_browser()
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        await super().shutdown()

    async def _close_browser(self) -> None:
        async with self._page_lock:
            await self._close_browser_locked()

    async def _close_browser_locked(self) -> None:
        if self.active_page is not None:
            try:
                await self.active_page.close()
            except PlaywrightError as e:
                self.logger.debug(f"Ignoring error closing page: {e}")
            self.active_page = None
        if self.browser is not None:
            try:
                await self.browser.close()
            except PlaywrightError as e:
                self.logger.debug(f"Ignoring error closing browser: {e}")
            self.browser = None

    async def handle(self, message: str, history: List[Message]) -> AgentResult:
        url_match = URL_PATTERN.search(message)
        if url_match:
            return await self.navigate(url_match.group(0))

        lowered = message.lower()
        if "screenshot" in lowered:
            return await self.screenshot()
        if "extract" in lowered or "scrape" in lowered:
            return await self.extract_content()

        result = await self._answer(message, history)
        if not result.success:
            return result

        suggested = URL_PATTERN.search(result.content)
        if suggested:
            navigation = await self.navigate(suggested.group(0))
            if navigation.success:
                return AgentResult.ok(
                    f"{result.content}\n\nI've navigated to the suggested URL: {suggested.group(0)}",
                    navigation.data
                )
        return result

    async def _ensure_browser(self) -> Optional[str]:
        """Launch the browser lazily; returns an error message on failure."""
        if self.browser is not None:
            return None
        self.logger.info("Browser not initialized, launching")
        try:
            self.browser = await self._browser_launcher()
        except PlaywrightError as e:
            self.logger.error(f"Failed to launch browser: {e}")
            self.browser = None
            return str(e)
        return None

    async def navigate(self, url: str, session_id: Optional[str] = None) -> AgentResult:
        """Open `url` in a fresh page, replacing any previously open page.

        Returns:
            AgentResult with title, screenshot path and content summary
        """
        check = self.guard.check_url(url, session_id)
        if not check["allowed"]:
            return AgentResult.fail(
                "I cannot access this URL as it appears to be an internal or potentially unsafe resource.",
                check["error"],
                {"url": url, "reason": check["reason"]}
            )

        async with self._page_lock:
            return await self._navigate_locked(url)

    async def _navigate_locked(self, url: str) -> AgentResult:
        launch_error = await self._ensure_browser()
        if launch_error is not None:
            return AgentResult.fail(
                f"Error initializing browser: {launch_error}", ErrorCode.BROWSER_UNAVAILABLE
            )

        with time_agent_operation(self.name, "navigate") as timer:
            try:
                if self.active_page is not None:
                    await self.active_page.close()
                    self.active_page = None

                self.active_page = await self.browser.new_page()
                await self.active_page.goto(
                    url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms
                )
                screenshot_path = await self._save_screenshot()
                title = await self.active_page.title()
                content = await self._extract_main_content()
            except PlaywrightError as e:
                timer.success = False
                self.logger.warning(f"Navigation to {url} failed: {e}")
                return AgentResult.fail(
                    f"Error navigating to {url}: {e}",
                    ErrorCode.UPSTREAM_ERROR,
                    {"url": url, "message": str(e)}
                )

        return AgentResult.ok(
            f"Successfully navigated to {url}\nTitle: {title}\n\n"
            f"Page Content Summary:\n{_truncate(content, NAVIGATE_SUMMARY_LIMIT)}",
            {
                "url": url,
                "title": title,
                "screenshot_path": screenshot_path,
                "content_summary": _truncate(content, NAVIGATE_SUMMARY_LIMIT),
                "content_length": len(content)
            }
        )

    async def search(self, query: str, session_id: Optional[str] = None) -> AgentResult:
        """Run a web search by navigating to the search results page."""
        return await self.navigate(f"https://www.google.com/search?q={quote_plus(query)}", session_id)

    async def screenshot(self) -> AgentResult:
        async with self._page_lock:
            return await self._screenshot_locked()

    async def _screenshot_locked(self) -> AgentResult:
        if self.active_page is None:
            return AgentResult.fail(
                "No active page to screenshot. Please navigate to a URL first.",
                ErrorCode.NO_ACTIVE_PAGE
            )
        try:
            path = await self._save_screenshot()
        except PlaywrightError as e:
            return AgentResult.fail(f"Error taking screenshot: {e}", ErrorCode.UPSTREAM_ERROR, {"message": str(e)})
        return AgentResult.ok(f"Screenshot taken and saved to {path}", {"path": path, "screenshot_path": path})

    async def extract_content(self) -> AgentResult:
        async with self._page_lock:
            return await self._extract_locked()

    async def _extract_locked(self) -> AgentResult:
        if self.active_page is None:
            return AgentResult.fail(
                "No active page to extract content from. Please navigate to a URL first.",
                ErrorCode.NO_ACTIVE_PAGE
            )
        try:
            content = await self._extract_main_content()
            title = await self.active_page.title()
        except PlaywrightError as e:
            return AgentResult.fail(f"Error extracting content: {e}", ErrorCode.UPSTREAM_ERROR, {"message": str(e)})

        url = self.active_page.url
        return AgentResult.ok(
            f"Content extracted from {url}\nTitle: {title}\n\n{_truncate(content, EXTRACT_SUMMARY_LIMIT)}",
            {"url": url, "title": title, "text": content, "content_length": len(content)}
        )

    async def _save_screenshot(self) -> str:
        os.makedirs(self.screenshot_dir, exist_ok=True)
        path = os.path.join(self.screenshot_dir, screenshot_filename(self.active_page.url))
        await self.active_page.screenshot(path=path)
        return path

    async def _extract_main_content(self) -> str:
        """Text of the first matching content container, else the whole body."""
        for selector in CONTENT_SELECTORS:
            element = await self.active_page.query_selector(selector)
            if element is not None:
                return (await element.inner_text()).strip()
        return (await self.active_page.inner_text("body")).strip()
