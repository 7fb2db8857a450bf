"""Crawl runner.

Coordinates a complete crawl of one product:
lookup → launch → login → seed → crawl → teardown.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from loguru import logger

from clients.browser import BrowserAgent, goto_with_fallback
from config.settings import settings
from crawler.auth import Authenticator, FormLoginAuthenticator
from crawler.dom import dismiss_cookie_banner
from crawler.engine import CrawlEngine
from models.errors import ProductNotFoundError
from models.mirror import AuthState, CrawlSummary, Product
from storage.base import MirrorStore
from utils.helpers import url_path

ManualLogin = Callable[[Product], Awaitable[None]]


class CrawlRunner:
    """
    Top-level entry point for autonomous crawling.

    Steps:
    1. Resolve the product from the store
    2. Launch a browser
    3. Log in via the authenticator (or hand over to a human)
    4. Land on the product's start page and take its path as the seed
    5. Run the CrawlEngine until the discovery queue is empty
    """

    def __init__(
        self,
        store: MirrorStore,
        authenticator: Optional[Authenticator] = None,
        browser_factory: Callable[[], BrowserAgent] = BrowserAgent,
        manual_login: Optional[ManualLogin] = None,
        engine: Optional[CrawlEngine] = None,
    ) -> None:
        self._store = store
        self._authenticator = authenticator or FormLoginAuthenticator()
        self._browser_factory = browser_factory
        self._manual_login = manual_login
        self._engine = engine or CrawlEngine(store)

    async def run(self, product_id: str) -> CrawlSummary:
        product = await self._store.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)

        logger.info("=" * 60)
        logger.info(f"Starting crawl for: {product.name}")
        logger.info(f"URL: {product.staging_url}")
        logger.info(f"Auth state: {product.auth_state}")
        logger.info("=" * 60)

        async with self._browser_factory() as browser:
            page = browser.page
            logged_in = await self._authenticator.authenticate(page, product)

            if product.auth_state == AuthState.AUTHENTICATED and not logged_in:
                if self._manual_login is not None:
                    await self._manual_login(product)
                    logged_in = True
                else:
                    logger.warning("Login failed and no manual fallback; crawling unauthenticated.")

            if not logged_in or product.auth_state == AuthState.PUBLIC:
                await goto_with_fallback(page, product.base_url)
                await asyncio.sleep(settings.page_settle_ms / 1000)
                await dismiss_cookie_banner(page)

            seed_path = url_path(page.url)
            summary = await self._engine.crawl(page, product, seed_path)

        logger.info("=" * 60)
        logger.success(
            f"Crawl complete: {summary.screens_discovered} screens, "
            f"{summary.connections_saved} connections, {len(summary.failed_paths)} failed paths."
        )
        logger.info("=" * 60)
        return summary
