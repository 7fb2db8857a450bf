"""Recording session and flow lifecycle.

A RecordingSession owns one browser and one NavigationWatcher. Flows are
product-scoped and outlive sessions; a session only points at the Flow
currently receiving captures.

Active-flow slots, completed-flow sets and browser handles live in this
process only. Run a single instance of the service.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

from loguru import logger

from clients.browser import BrowserAgent
from models.errors import (
    FlowNotFoundError,
    InvalidRequestError,
    ProductNotFoundError,
    SessionNotFoundError,
    StoreError,
)
from models.mirror import (
    Flow,
    FlowStatus,
    FlowTemplate,
    FlowView,
    Product,
    RecordingSession,
    SessionStatusView,
)
from recording.capture import ScreenCapturer
from recording.watcher import NavigationWatcher, WatcherTimings
from storage.base import MirrorStore

# Used when the flow_templates table is missing or empty
DEFAULT_FLOWS: List[FlowTemplate] = [
    FlowTemplate(name="Login / Sign up", sort_order=1),
    FlowTemplate(name="Dashboard / Home", sort_order=2),
    FlowTemplate(name="Settings / Account", sort_order=3),
    FlowTemplate(name="Billing", sort_order=4),
    FlowTemplate(name="Team / Users", sort_order=5),
    FlowTemplate(name="Notifications", sort_order=6),
    FlowTemplate(name="Help / Support", sort_order=7),
]


@dataclass
class LiveSession:
    """In-memory bookkeeping for one open recording session."""

    session_id: str
    product_id: str
    browser: BrowserAgent
    watcher: Optional[NavigationWatcher] = None
    active_flow: Optional[Flow] = None
    completed_flow_ids: Set[str] = field(default_factory=set)


class SessionManager:
    """Starts/stops recording sessions and flows and reports their status."""

    def __init__(
        self,
        store: MirrorStore,
        browser_factory: Callable[[], BrowserAgent] = BrowserAgent,
        capturer: Optional[ScreenCapturer] = None,
        timings: Optional[WatcherTimings] = None,
    ) -> None:
        self._store = store
        self._browser_factory = browser_factory
        self._capturer = capturer or ScreenCapturer(store)
        self._timings = timings
        self._sessions: Dict[str, LiveSession] = {}

    def live_session(self, session_id: str) -> Optional[LiveSession]:
        return self._sessions.get(session_id)

    # ── Sessions ──────────────────────────────────────────────────────────────

    async def start_session(self, product_id: str) -> str:
        if not product_id:
            raise InvalidRequestError("productId is required")
        product = await self._store.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)

        session = await self._store.insert_session(RecordingSession(product_id=product_id))
        await self._seed_default_flows(product)

        browser = self._browser_factory()
        try:
            page = await browser.launch(product.staging_url)
        except Exception:
            await browser.close()
            await self._store.complete_session(session.id)
            raise

        live = LiveSession(session_id=session.id, product_id=product_id, browser=browser)
        live.watcher = NavigationWatcher(
            session.id,
            page,
            product_id,
            get_active_flow=lambda: live.active_flow,
            store=self._store,
            capturer=self._capturer,
            timings=self._timings,
        )
        self._sessions[session.id] = live
        try:
            await live.watcher.start()
        except Exception:
            live.watcher.stop()
            self._sessions.pop(session.id, None)
            await browser.close()
            await self._store.complete_session(session.id)
            raise
        browser.on_disconnect(lambda: self._on_browser_disconnected(session.id))

        logger.success(f"Recording session {session.id} started for {product.name}")
        return session.id

    async def end_session(self, session_id: str) -> None:
        if not session_id:
            raise InvalidRequestError("sessionId is required")
        if await self._store.get_session(session_id) is None:
            raise SessionNotFoundError(session_id)

        live = self._sessions.pop(session_id, None)
        if live is not None:
            if live.watcher is not None:
                live.watcher.stop()
            await live.browser.close()

        await self._store.complete_session(session_id)

        # Flows are product-scoped, so this reaches flows other open sessions
        # are recording too.
        reset = await self._store.reset_recording_flows()
        logger.info(f"Session {session_id} completed; {reset} recording flow(s) reset to pending")

    async def shutdown(self) -> None:
        """End every open session (process exit)."""
        for session_id in list(self._sessions):
            try:
                await self.end_session(session_id)
            except Exception as exc:
                logger.warning(f"Failed to end session {session_id} on shutdown: {exc}")

    def _on_browser_disconnected(self, session_id: str) -> None:
        logger.info(f"Browser disconnected for session {session_id}")
        live = self._sessions.get(session_id)
        if live is not None and live.watcher is not None:
            live.watcher.stop()

    async def _seed_default_flows(self, product: Product) -> None:
        templates = await self._store.list_flow_templates()
        source = templates or DEFAULT_FLOWS

        seeded = 0
        seen: Set[str] = set()
        try:
            for template in source:
                if template.name in seen:
                    continue
                seen.add(template.name)
                if await self._store.find_flow_by_name(product.id, template.name) is None:
                    await self._store.insert_flow(Flow(product_id=product.id, name=template.name))
                    seeded += 1
        except StoreError as exc:
            # The session still works; the user can add flows by name.
            logger.error(f"Failed to seed default flows: {exc}")
            return
        logger.info(f"Seeded {seeded} default flows for {product.name}")

    # ── Flows ─────────────────────────────────────────────────────────────────

    async def start_flow(
        self,
        session_id: str,
        flow_name: Optional[str] = None,
        flow_id: Optional[str] = None,
    ) -> Flow:
        if not session_id:
            raise InvalidRequestError("sessionId is required")
        if not flow_name and not flow_id:
            raise InvalidRequestError("flowName or flowId is required")
        live = self._sessions.get(session_id)
        if live is None:
            raise SessionNotFoundError(session_id)

        if flow_id:
            flow = await self._store.get_flow(flow_id)
            if flow is None:
                raise FlowNotFoundError(flow_id)
            await self._store.update_flow(flow.id, status=FlowStatus.RECORDING)
        else:
            flow = await self._store.find_flow_by_name(live.product_id, flow_name)
            if flow is not None:
                await self._store.update_flow(flow.id, status=FlowStatus.RECORDING)
            else:
                flow = await self._store.insert_flow(
                    Flow(product_id=live.product_id, name=flow_name, status=FlowStatus.RECORDING)
                )
        flow = flow.model_copy(update={"status": FlowStatus.RECORDING.value})

        previous = live.active_flow
        if previous is not None and previous.id != flow.id:
            # The previous flow is not ended and stays "recording" until the session ends.
            logger.warning(
                f'Flow "{previous.name}" replaced by "{flow.name}" without being ended'
            )
        live.active_flow = flow
        logger.info(f'Flow started: "{flow.name}" ({flow.id}) in session {session_id}')
        return flow

    async def end_flow(self, session_id: str, flow_id: str) -> int:
        """Finish a flow for this session and return its screen count."""
        if not session_id or not flow_id:
            raise InvalidRequestError("sessionId and flowId are required")
        flow = await self._store.get_flow(flow_id)
        if flow is None:
            raise FlowNotFoundError(flow_id)

        screen_count = await self._store.count_flow_screens(flow_id)
        await self._store.update_flow(flow_id, status=FlowStatus.PENDING, step_count=screen_count)

        live = self._sessions.get(session_id)
        if live is not None:
            live.completed_flow_ids.add(flow_id)
            live.active_flow = None
        logger.info(f'Flow ended: "{flow.name}" with {screen_count} screens')
        return screen_count

    # ── Status ────────────────────────────────────────────────────────────────

    async def get_session_status(self, session_id: str) -> Optional[SessionStatusView]:
        session = await self._store.get_session(session_id)
        if session is None:
            return None

        live = self._sessions.get(session_id)
        active = live.active_flow if live else None
        completed = live.completed_flow_ids if live else set()

        flows: List[FlowView] = []
        active_view: Optional[FlowView] = None
        for flow in await self._store.list_flows(session.product_id):
            if active is not None and flow.id == active.id:
                view = FlowView(
                    id=flow.id,
                    name=flow.name,
                    status=FlowStatus.RECORDING,
                    screen_count=await self._store.count_flow_screens(flow.id),
                )
                active_view = view
            else:
                status = FlowStatus.COMPLETED if flow.id in completed else FlowStatus.PENDING
                view = FlowView(id=flow.id, name=flow.name, status=status, screen_count=flow.step_count)
            flows.append(view)

        if active is not None and active_view is None:
            active_view = FlowView(
                id=active.id,
                name=active.name,
                status=FlowStatus.RECORDING,
                screen_count=await self._store.count_flow_screens(active.id),
            )

        return SessionStatusView(
            session_id=session.id,
            status=session.status,
            started_at=session.started_at,
            ended_at=session.ended_at,
            browser_connected=bool(live and live.browser.is_connected()),
            active_flow=active_view,
            flows=flows,
            total_screens=sum(f.screen_count for f in flows),
        )
