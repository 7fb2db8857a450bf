"""Breadth-first crawl engine.

Walks same-origin links from a seed path, captures every distinct screen
once and records how screens link to each other.
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional

from loguru import logger
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from clients.browser import goto_with_fallback
from config.settings import settings
from crawler.classify import classify_path, display_name
from crawler.dom import dismiss_cookie_banner, extract_links
from crawler.state import CrawlState
from models.errors import StoreError
from models.mirror import Connection, CrawlSummary, Product, Screen
from recording.capture import ScreenCapturer
from storage.base import MirrorStore
from utils.helpers import chunk_list, crawl_blob_key


class CrawlEngine:
    """
    Processes one path at a time (navigate, classify, capture, extract
    links) until the discovery queue is empty, then persists the link graph.

    A failure on one path is logged and only abandons that path.
    """

    def __init__(
        self,
        store: MirrorStore,
        capturer: Optional[ScreenCapturer] = None,
        settle_ms: Optional[int] = None,
        batch_size: Optional[int] = None,
    ) -> None:
        self._store = store
        self._capturer = capturer or ScreenCapturer(store)
        self._settle_ms = settings.page_settle_ms if settle_ms is None else settle_ms
        self._batch_size = batch_size or settings.connection_batch_size

    async def crawl(self, page: Page, product: Product, seed_path: str) -> CrawlSummary:
        state = CrawlState(product=product)
        state.enqueue(seed_path)

        logger.info(f"Starting link discovery for {product.name} from {seed_path}")
        while True:
            path = state.next_path()
            if path is None:
                break
            await self.process_path(page, state, path)

        saved = await self.save_connections(state)
        summary = CrawlSummary(
            product_id=product.id,
            screens_discovered=len(state.visited) - len(state.skipped_paths) - len(state.failed_paths),
            screens_skipped=len(state.skipped_paths),
            failed_paths=list(state.failed_paths),
            links_recorded=len(state.graph),
            connections_saved=saved,
        )
        logger.success(f"Done! Discovered {summary.screens_discovered} screens.")
        return summary

    async def process_path(self, page: Page, state: CrawlState, path: str) -> None:
        if not state.mark_visited(path):
            return
        if not state.claim_base_path(path):
            logger.info(f"  Skipping duplicate: {path} (base path already captured)")
            state.skipped_paths.append(path)
            return

        product = state.product
        logger.info(f"Discovering: {path}")
        try:
            await goto_with_fallback(page, product.base_url + path)
        except PlaywrightError as exc:
            logger.warning(f"  Navigation failed for {path}: {exc}")
            state.failed_paths.append(path)
            return

        await asyncio.sleep(self._settle_ms / 1000)
        await dismiss_cookie_banner(page)

        try:
            screen = await self._capture_screen(page, state, path)
            links = await extract_links(page, product.base_url)
        except (PlaywrightError, StoreError) as exc:
            logger.error(f"  Capture failed for {path}: {exc}")
            state.failed_paths.append(path)
            return

        logger.info(f"  ✓ Captured: {screen.name} ({screen.flow_name})")
        for link in links:
            state.graph.add_link(path, link)
            state.enqueue(link)

    async def _capture_screen(self, page: Page, state: CrawlState, path: str) -> Screen:
        product = state.product
        png = await page.screenshot(full_page=False)
        title = ""
        try:
            title = await page.title()
        except PlaywrightError:
            pass
        name = display_name(title, product.name, path)

        screen = await self._store.find_crawled_screen(product.id, path)
        if screen is not None:
            if screen.name != name:
                await self._store.update_screen_name(screen.id, name)
                screen = screen.model_copy(update={"name": name})
        else:
            screen = await self._store.insert_screen(
                Screen(product_id=product.id, path=path, name=name, flow_name=classify_path(path))
            )
        state.register_route(path, screen.id)

        key = crawl_blob_key(product.name, name, int(time.time() * 1000))
        await self._capturer.store_capture(screen.id, png, key)
        return screen

    async def save_connections(self, state: CrawlState) -> int:
        """Resolve the link graph and upsert it in batches. Returns rows written."""
        logger.info("Saving page connections...")
        resolved = state.graph.resolve(state.path_to_route_id)
        if resolved.dangling or resolved.self_loops:
            logger.debug(
                f"  Dropped {resolved.dangling} unresolved and {resolved.self_loops} self-referencing links"
            )

        connections = [
            Connection(product_id=state.product.id, source_route_id=source, destination_route_id=dest)
            for source, dest in resolved.edges
        ]
        if not connections:
            logger.info("No connections to save.")
            return 0

        saved = 0
        for batch in chunk_list(connections, self._batch_size):
            try:
                saved += await self._store.upsert_connections(batch)
            except StoreError as exc:
                logger.warning(f"  Connection batch of {len(batch)} failed: {exc}")

        logger.success(f"Saved {saved} unique connections (from {len(state.graph)} total links).")
        return saved
