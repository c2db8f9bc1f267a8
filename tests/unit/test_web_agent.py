"""
Unit tests for the browser sandbox agent, using an in-memory browser.
"""

import asyncio
import hashlib
import os
from datetime import datetime, timezone

import pytest
from playwright.async_api import Error as PlaywrightError

from morpheus.models.agent_result import ErrorCode
from morpheus.services.web_agent import WebAgent, screenshot_filename


class FakeElement:
    def __init__(self, text):
        self.text = text

    async def inner_text(self):
        return self.text


class FakePage:
    def __init__(self, browser, selectors=None, body="Body text", title="Example Domain", fail_goto=False, delay=0):
        self.browser = browser
        self.selectors = selectors or {}
        self.body = body
        self._title = title
        self.fail_goto = fail_goto
        self.delay = delay
        self.url = "about:blank"
        self.closed = False
        self.goto_calls = []

    async def goto(self, url, wait_until=None, timeout=None):
        self.goto_calls.append((url, wait_until, timeout))
        await asyncio.sleep(self.delay)
        if self.fail_goto:
            raise PlaywrightError("net::ERR_NAME_NOT_RESOLVED")
        self.url = url

    async def title(self):
        return self._title

    async def screenshot(self, path):
        with open(path, "wb") as f:
            f.write(b"png")

    async def query_selector(self, selector):
        if selector in self.selectors:
            return FakeElement(self.selectors[selector])
        return None

    async def inner_text(self, selector):
        assert selector == "body"
        return self.body

    async def close(self):
        await asyncio.sleep(self.delay)
        self.closed = True


class FakeBrowser:
    def __init__(self, **page_options):
        self.page_options = page_options
        self.pages = []
        self.closed = False

    async def new_page(self):
        await asyncio.sleep(self.page_options.get("delay", 0))
        page = FakePage(self, **self.page_options)
        self.pages.append(page)
        return page

    async def close(self):
        self.closed = True


@pytest.fixture
def screenshot_dir(tmp_path):
    return str(tmp_path / "shots")


def make_agent(completion, guard, screenshot_dir, **page_options):
    browser = FakeBrowser(**page_options)
    launches = []

    async def launcher():
        launches.append(1)
        return browser

    agent = WebAgent(
        completion,
        screenshot_dir=screenshot_dir,
        navigation_timeout_ms=5000,
        guard=guard,
        browser_launcher=launcher
    )
    return agent, browser, launches


class TestNavigate:
    """Test navigation through the fake browser."""

    @pytest.mark.asyncio
    async def test_navigate(self, completion, guard, screenshot_dir):
        agent, browser, _ = make_agent(completion, guard, screenshot_dir, selectors={"main": "  Main text  "})

        result = await agent.navigate("https://example.com")

        assert result.success
        assert result.data["title"] == "Example Domain"
        assert result.data["content_summary"] == "Main text"
        assert os.path.isfile(result.data["screenshot_path"])
        assert os.path.dirname(result.data["screenshot_path"]) == os.path.realpath(screenshot_dir)
        assert browser.pages[0].goto_calls == [("https://example.com", "domcontentloaded", 5000)]

    @pytest.mark.asyncio
    async def test_blocked_url_never_launches_browser(self, completion, guard, screenshot_dir):
        agent, browser, launches = make_agent(completion, guard, screenshot_dir)

        result = await agent.navigate("http://127.0.0.1:8080/admin")

        assert not result.success
        assert result.error == ErrorCode.DOMAIN_BLOCKED.value
        assert launches == []
        assert browser.pages == []

    @pytest.mark.asyncio
    async def test_one_page_at_a_time(self, completion, guard, screenshot_dir):
        agent, browser, launches = make_agent(completion, guard, screenshot_dir)

        await agent.navigate("https://example.com")
        await agent.navigate("https://example.org")

        assert len(launches) == 1
        assert browser.pages[0].closed is True
        assert browser.pages[1].closed is False
        assert agent.active_page is browser.pages[1]

    @pytest.mark.asyncio
    async def test_concurrent_navigations_keep_one_live_page(self, completion, guard, screenshot_dir):
        agent, browser, launches = make_agent(completion, guard, screenshot_dir, delay=0.01)

        results = await asyncio.gather(
            agent.navigate("https://example.com"),
            agent.navigate("https://example.org"),
            agent.navigate("https://example.net"),
            agent.screenshot(),
        )

        assert all(result.success for result in results)
        assert len(launches) == 1
        live = [page for page in browser.pages if not page.closed]
        assert live == [agent.active_page]

    @pytest.mark.asyncio
    async def test_body_fallback_and_truncation(self, completion, guard, screenshot_dir):
        agent, _, _ = make_agent(completion, guard, screenshot_dir, body="x" * 1500)

        result = await agent.navigate("https://example.com")

        assert result.data["content_summary"] == "x" * 1000 + "..."
        assert result.data["content_length"] == 1500

    @pytest.mark.asyncio
    async def test_navigation_error(self, completion, guard, screenshot_dir):
        agent, _, _ = make_agent(completion, guard, screenshot_dir, fail_goto=True)

        result = await agent.navigate("https://no-such-host.example")

        assert not result.success
        assert result.error == ErrorCode.UPSTREAM_ERROR.value
        assert "ERR_NAME_NOT_RESOLVED" in result.data["message"]

    @pytest.mark.asyncio
    async def test_browser_launch_failure(self, completion, guard, screenshot_dir):
        async def launcher():
            raise PlaywrightError("Executable doesn't exist")

        agent = WebAgent(completion, screenshot_dir=screenshot_dir, guard=guard, browser_launcher=launcher)

        result = await agent.navigate("https://example.com")

        assert result.error == ErrorCode.BROWSER_UNAVAILABLE.value


class TestPageOperations:
    """Test screenshot and extraction against the active page."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", ["screenshot", "extract_content"])
    async def test_requires_active_page(self, completion, guard, screenshot_dir, operation):
        agent, _, _ = make_agent(completion, guard, screenshot_dir)

        result = await getattr(agent, operation)()

        assert result.error == ErrorCode.NO_ACTIVE_PAGE.value

    @pytest.mark.asyncio
    async def test_extract_uses_first_matching_selector(self, completion, guard, screenshot_dir):
        agent, _, _ = make_agent(
            completion, guard, screenshot_dir,
            selectors={"article": "Article text", "#content": "Content text"}
        )
        await agent.navigate("https://example.com/post")

        result = await agent.extract_content()

        assert result.success
        assert result.data["text"] == "Article text"
        assert result.data["url"] == "https://example.com/post"

    @pytest.mark.asyncio
    async def test_screenshot(self, completion, guard, screenshot_dir):
        agent, _, _ = make_agent(completion, guard, screenshot_dir)
        await agent.navigate("https://example.com")

        result = await agent.screenshot()

        assert result.success
        assert os.path.isfile(result.data["path"])


class TestWebHandle:
    """Test free-text handling."""

    @pytest.mark.asyncio
    async def test_url_in_message_navigates(self, completion, guard, screenshot_dir):
        agent, browser, _ = make_agent(completion, guard, screenshot_dir)

        result = await agent.handle("please open https://example.com/docs now", [])

        assert result.success
        assert browser.pages[0].url == "https://example.com/docs"
        assert completion.calls == []

    @pytest.mark.asyncio
    async def test_suggested_url_is_followed(self, scripted, guard, screenshot_dir):
        completion = scripted(["Try https://docs.python.org/3/ for that."])
        agent, browser, _ = make_agent(completion, guard, screenshot_dir)

        result = await agent.handle("where are the python docs?", [])

        assert result.success
        assert "I've navigated to the suggested URL: https://docs.python.org/3/" in result.content
        assert browser.pages[0].url == "https://docs.python.org/3/"

    @pytest.mark.asyncio
    async def test_shutdown_closes_browser(self, completion, guard, screenshot_dir):
        agent, browser, _ = make_agent(completion, guard, screenshot_dir)
        assert await agent.initialize() is True

        await agent.shutdown()

        assert browser.closed is True
        assert agent.browser is None


def test_screenshot_filename():
    now = datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)
    digest = hashlib.md5(b"https://example.com").hexdigest()[:8]

    assert screenshot_filename("https://example.com", now) == f"screenshot-2024-01-02T03-04-05-678Z-{digest}.png"
