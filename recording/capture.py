"""Shared capture primitive: screenshot, upload, Screen + Capture rows."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Optional

from loguru import logger
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from config.settings import settings
from models.mirror import Capture, CapturePlacement, CaptureResult, Screen
from storage.base import MirrorStore
from utils.helpers import recording_blob_key, url_path


class ScreenCapturer:
    """
    Turns a live page into persisted rows.

    ``capture()`` is the recording-mode entry point; ``store_capture()`` is
    the upload-and-record tail the crawler reuses for its own Screens.
    Failures propagate as exceptions. Nothing is rolled back, so a failed
    row insert can leave an uploaded screenshot behind.
    """

    def __init__(self, store: MirrorStore, settle_ms: Optional[int] = None) -> None:
        self._store = store
        self._settle_ms = settings.capture_settle_ms if settle_ms is None else settle_ms

    async def store_capture(self, route_id: str, png: bytes, key: str, upsert: bool = False) -> Capture:
        """Upload ``png`` under ``key`` and insert a Capture for ``route_id``."""
        await self._store.upload_screenshot(key, png, upsert=upsert)
        screenshot_url = self._store.public_url(key)
        return await self._store.insert_capture(
            Capture(route_id=route_id, screenshot_url=screenshot_url, captured_at=datetime.utcnow())
        )

    async def capture(self, page: Page, placement: CapturePlacement) -> CaptureResult:
        # The foreground tab is the one that renders when popups are open.
        await page.bring_to_front()
        await asyncio.sleep(self._settle_ms / 1000)

        png = await page.screenshot(full_page=True)
        url = page.url
        title = ""
        try:
            title = await page.title()
        except PlaywrightError:
            logger.debug(f"Could not read title of {url} (navigated mid-capture)")

        path = url_path(url)
        key = recording_blob_key(placement.session_id, placement.flow_id, placement.step_number)
        await self._store.upload_screenshot(key, png, upsert=True)
        screenshot_url = self._store.public_url(key)

        screen = await self._store.insert_screen(
            Screen(
                product_id=placement.product_id,
                path=path,
                name=title or "Untitled",
                flow_name=placement.flow_name,
                flow_id=placement.flow_id,
                session_id=placement.session_id,
                step_number=placement.step_number,
            )
        )
        await self._store.insert_capture(
            Capture(route_id=screen.id, screenshot_url=screenshot_url, captured_at=datetime.utcnow())
        )
        return CaptureResult(route_id=screen.id, screenshot_url=screenshot_url, path=path, title=title)
