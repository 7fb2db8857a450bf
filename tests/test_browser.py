import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from clients.browser import goto_with_fallback
from conftest import BASE_URL, FakePage


class SlowPage(FakePage):
    """Raises ``error`` while navigating with the given ``wait_until`` strategy."""

    def __init__(self, stalls_on: str, error: Exception) -> None:
        super().__init__()
        self.stalls_on = stalls_on
        self.error = error
        self.attempts = []

    async def goto(self, url, wait_until=None, timeout=None):
        self.attempts.append((wait_until, timeout))
        if wait_until == self.stalls_on:
            raise self.error
        await super().goto(url, wait_until=wait_until, timeout=timeout)


async def test_network_idle_timeout_retries_with_dom_content_loaded():
    page = SlowPage("networkidle", PlaywrightTimeoutError("Timeout 30000ms exceeded"))

    await goto_with_fallback(page, BASE_URL + "/app/home", timeout_ms=500)

    assert page.attempts == [("networkidle", 500), ("domcontentloaded", 500)]
    assert page.url == BASE_URL + "/app/home"


async def test_network_idle_success_needs_no_retry():
    page = SlowPage("domcontentloaded", PlaywrightTimeoutError("unused"))

    await goto_with_fallback(page, BASE_URL + "/app/home", timeout_ms=500)

    assert page.attempts == [("networkidle", 500)]


async def test_navigation_error_is_not_retried():
    page = SlowPage("networkidle", PlaywrightError("net::ERR_NAME_NOT_RESOLVED"))

    with pytest.raises(PlaywrightError):
        await goto_with_fallback(page, BASE_URL + "/app/home", timeout_ms=500)

    assert page.attempts == [("networkidle", 500)]


async def test_fallback_failure_propagates():
    page = SlowPage("networkidle", PlaywrightTimeoutError("Timeout"))
    page.fail_paths = {"/app/home"}

    with pytest.raises(PlaywrightError):
        await goto_with_fallback(page, BASE_URL + "/app/home", timeout_ms=500)

    assert [a[0] for a in page.attempts] == ["networkidle", "domcontentloaded"]
