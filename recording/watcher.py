"""Live navigation watcher for interactive recording.

Four independent signals ask for a capture:

1. polling the page URL
2. main-frame ``framenavigated`` events
3. trusted clicks forwarded by an injected script (client-side routes that
   never change the URL)
4. popups opened from the watched page

Signals 1-2 share one ``ScheduledRequest`` (a newer navigation replaces a
settling one) and clicks have their own, so a click never delays a pending
navigation capture. Both end in ``try_capture()``, whose ``CaptureGate``
collapses duplicates. Popups are captured on their own.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Optional, Set

from loguru import logger
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Frame, Page

from config.settings import settings
from models.mirror import CapturePlacement, CaptureResult, Flow
from recording.capture import ScreenCapturer
from recording.gate import CaptureGate, GateDecision, ScheduledRequest
from storage.base import MirrorStore

CLICK_BINDING = "__pmCapture"

CLICK_LISTENER_JS = f"""
document.addEventListener('click', (e) => {{
  if (e.isTrusted && window.{CLICK_BINDING}) {{
    window.{CLICK_BINDING}();
  }}
}}, true);
"""


@dataclass
class WatcherTimings:
    """Delays in seconds."""

    poll_interval: float = field(default_factory=lambda: settings.poll_interval_ms / 1000)
    navigation_settle: float = field(default_factory=lambda: settings.navigation_settle_ms / 1000)
    click_settle: float = field(default_factory=lambda: settings.click_settle_ms / 1000)


class NavigationWatcher:
    """Auto-captures every distinct URL the user reaches while a Flow is active."""

    def __init__(
        self,
        session_id: str,
        page: Page,
        product_id: str,
        get_active_flow: Callable[[], Optional[Flow]],
        store: MirrorStore,
        capturer: Optional[ScreenCapturer] = None,
        timings: Optional[WatcherTimings] = None,
    ) -> None:
        self.session_id = session_id
        self._page = page
        self._product_id = product_id
        self._get_active_flow = get_active_flow
        self._store = store
        self._capturer = capturer or ScreenCapturer(store)
        self._timings = timings or WatcherTimings()

        self._gate = CaptureGate()
        # Navigation signals share one slot; clicks get their own so a click
        # never delays a navigation capture that is already settling.
        self._request = ScheduledRequest()
        self._click_request = ScheduledRequest()
        # Serializes step numbering between the main page and popups.
        self._capture_lock = asyncio.Lock()
        self._last_url: str = page.url
        self._poll_task: Optional[asyncio.Task] = None
        self._popup_tasks: Set[asyncio.Task] = set()
        self._frame_handler = self._on_frame_navigated
        self._popup_handler = self._on_popup
        self.running = False

    @property
    def gate(self) -> CaptureGate:
        return self._gate

    @property
    def request(self) -> ScheduledRequest:
        return self._request

    @property
    def click_request(self) -> ScheduledRequest:
        return self._click_request

    async def start(self) -> None:
        self.running = True
        self._poll_task = asyncio.create_task(self._poll_url())
        self._page.on("framenavigated", self._frame_handler)
        self._page.on("popup", self._popup_handler)

        try:
            await self._page.expose_function(CLICK_BINDING, self._on_click)
        except PlaywrightError as exc:
            logger.debug(f"Click binding already exposed: {exc}")
        await self._page.add_init_script(script=CLICK_LISTENER_JS)
        try:
            await self._page.evaluate(CLICK_LISTENER_JS)
        except PlaywrightError as exc:
            logger.debug(f"Could not inject click listener into current page: {exc}")
        logger.info(f"Watching navigation for session {self.session_id}")

    def stop(self) -> None:
        """Stop polling and detach listeners. The injected click script stays in the page."""
        if not self.running:
            return
        self.running = False
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        self._request.cancel()
        self._click_request.cancel()
        self._page.remove_listener("framenavigated", self._frame_handler)
        self._page.remove_listener("popup", self._popup_handler)
        logger.info(f"Stopped watching session {self.session_id}")

    # ── Signals ───────────────────────────────────────────────────────────────

    async def _poll_url(self) -> None:
        while True:
            await asyncio.sleep(self._timings.poll_interval)
            current = self._page.url
            if current != self._last_url:
                self._last_url = current
                self.request_capture("url-change", self._timings.navigation_settle)

    def _on_frame_navigated(self, frame: Frame) -> None:
        if frame != self._page.main_frame:
            return
        self._last_url = self._page.url
        self.request_capture("frame-navigated", self._timings.navigation_settle)

    def _on_click(self) -> None:
        if self.running:
            self._click_request.schedule(self._timings.click_settle, self.try_capture, "click-settle")

    def _on_popup(self, popup: Page) -> None:
        logger.info(f"Popup opened: {popup.url}")
        task = asyncio.create_task(self.capture_popup(popup))
        self._popup_tasks.add(task)
        task.add_done_callback(self._popup_tasks.discard)

    def request_capture(self, reason: str, delay_s: float) -> None:
        if not self.running:
            return
        self._request.schedule(delay_s, self.try_capture, reason)

    # ── Decision ──────────────────────────────────────────────────────────────

    async def try_capture(self, reason: str) -> Optional[CaptureResult]:
        """Capture the main page unless the gate says otherwise."""
        flow = self._get_active_flow()
        decision = self._gate.begin(self._page.url, flow is not None)
        if decision == GateDecision.DUPLICATE:
            return None
        if decision == GateDecision.BUSY:
            logger.info(f"[{reason}] Skipping capture: capture already in progress")
            return None
        if decision == GateDecision.NO_FLOW:
            logger.info(f"[{reason}] Skipping capture: no active flow")
            return None

        try:
            result = await self._capture_for_flow(self._page, flow, reason)
        except Exception as exc:
            self._gate.fail()
            logger.error(f"[{reason}] Screenshot capture failed: {exc}")
            return None
        self._gate.succeed()
        return result

    async def capture_popup(self, popup: Page) -> Optional[CaptureResult]:
        """Capture a popup once loaded. Not deduplicated against the main page."""
        try:
            await popup.wait_for_load_state("load")
        except PlaywrightError as exc:
            logger.warning(f"[popup] Popup closed before loading: {exc}")
            return None
        flow = self._get_active_flow()
        if flow is None:
            logger.info("[popup] Skipping capture: no active flow")
            return None
        try:
            return await self._capture_for_flow(popup, flow, "popup")
        except Exception as exc:
            logger.error(f"[popup] Screenshot capture failed: {exc}")
            return None

    async def _capture_for_flow(self, page: Page, flow: Flow, reason: str) -> CaptureResult:
        async with self._capture_lock:
            step_number = await self._store.count_flow_screens(flow.id) + 1
            result = await self._capturer.capture(
                page,
                CapturePlacement(
                    session_id=self.session_id,
                    flow_id=flow.id,
                    flow_name=flow.name,
                    product_id=self._product_id,
                    step_number=step_number,
                ),
            )
            try:
                await self._store.update_flow(flow.id, step_count=step_number)
            except Exception as exc:
                logger.warning(f"[{reason}] Could not update step count for flow {flow.id}: {exc}")
        logger.success(f'[{reason}] Captured step {step_number} for flow "{flow.name}": {result.path}')
        return result

    async def drain(self) -> None:
        """Wait until no capture is pending or running."""
        while self._request.busy or self._click_request.busy:
            await self._request.drain()
            await self._click_request.drain()
        while self._popup_tasks:
            await asyncio.gather(*list(self._popup_tasks), return_exceptions=True)
