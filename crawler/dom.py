"""Small in-page helpers used while crawling."""

from __future__ import annotations

import re
from typing import List, Optional

from loguru import logger
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from config.settings import settings

COOKIE_BUTTON_LABELS = [
    re.compile(r"accept all", re.IGNORECASE),
    re.compile(r"accept cookies", re.IGNORECASE),
    re.compile(r"accept$", re.IGNORECASE),
    re.compile(r"got it", re.IGNORECASE),
    re.compile(r"i agree", re.IGNORECASE),
    re.compile(r"allow all", re.IGNORECASE),
    re.compile(r"ok$", re.IGNORECASE),
    re.compile(r"okay", re.IGNORECASE),
    re.compile(r"consent", re.IGNORECASE),
]

_SAME_ORIGIN_LINKS_JS = """
(base) => {
  const origin = new URL(base).origin;
  const out = [];
  for (const a of document.querySelectorAll('a[href]')) {
    try {
      const url = new URL(a.href);
      if (url.origin === origin) out.push(url.pathname + url.search);
    } catch (_) {}
  }
  return out;
}
"""


async def dismiss_cookie_banner(page: Page, timeout_ms: Optional[int] = None) -> bool:
    """Click the first affirmative consent button found. Returns True when one was clicked."""
    timeout_ms = timeout_ms or settings.cookie_banner_timeout_ms
    for label in COOKIE_BUTTON_LABELS:
        button = page.get_by_role("button", name=label).first
        try:
            await button.wait_for(timeout=timeout_ms)
            await button.click()
        except PlaywrightError:
            continue
        logger.info("  Dismissed cookie banner")
        return True
    return False


async def extract_links(page: Page, base_url: str) -> List[str]:
    """Same-origin anchor targets as ``pathname + search``, de-duplicated in page order."""
    hrefs = await page.evaluate(_SAME_ORIGIN_LINKS_JS, base_url)
    return list(dict.fromkeys(h for h in hrefs if h))
