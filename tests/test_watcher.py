import asyncio

import pytest

from conftest import BASE_URL, FakeFrame, FakePage
from models.mirror import Flow
from recording.capture import ScreenCapturer
from recording.watcher import CLICK_BINDING, NavigationWatcher, WatcherTimings


class FlakyCapturer(ScreenCapturer):
    """Fails the first ``failures`` captures."""

    def __init__(self, store, failures: int = 1) -> None:
        super().__init__(store, settle_ms=0)
        self.failures = failures
        self.calls = 0

    async def capture(self, page, placement):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError("upload failed")
        return await super().capture(page, placement)


@pytest.fixture
async def flow(store, product) -> Flow:
    return await store.insert_flow(Flow(product_id=product.id, name="Onboarding"))


@pytest.fixture
def page() -> FakePage:
    return FakePage({"/app/home": ("Home", []), "/app/billing": ("Billing", [])}, url=BASE_URL + "/app/home")


@pytest.fixture
async def watcher(store, product, flow, page, capturer, timings):
    active = {"flow": flow}
    watcher = NavigationWatcher(
        "session-1",
        page,
        product.id,
        get_active_flow=lambda: active["flow"],
        store=store,
        capturer=capturer,
        timings=timings,
    )
    watcher.active = active
    await watcher.start()
    yield watcher
    watcher.stop()
    await watcher.drain()


async def test_same_url_twice_captures_once(store, watcher, flow):
    first = await watcher.try_capture("url-change")
    second = await watcher.try_capture("frame-navigated")

    assert first is not None
    assert second is None
    assert await store.count_flow_screens(flow.id) == 1


async def test_two_signals_in_one_settle_window_capture_once(store, watcher, page, flow):
    page.url = BASE_URL + "/app/billing"
    watcher.request_capture("url-change", 0.02)
    watcher.request_capture("frame-navigated", 0.02)

    await watcher.drain()

    assert await store.count_flow_screens(flow.id) == 1


async def test_capture_records_step_and_flow_count(store, watcher, page, flow):
    await watcher.try_capture("url-change")
    page.url = BASE_URL + "/app/billing"
    await watcher.try_capture("url-change")

    screens = sorted(
        (s for s in await store.list_screens(flow.product_id) if s.flow_id == flow.id),
        key=lambda s: s.step_number,
    )
    assert [(s.path, s.step_number) for s in screens] == [("/app/home", 1), ("/app/billing", 2)]
    assert screens[0].session_id == "session-1"
    assert screens[1].name == "Billing"
    assert (await store.get_flow(flow.id)).step_count == 2

    captures = await store.latest_captures(screens[1].id)
    assert captures[0].screenshot_url.endswith(f"session-1/{flow.id}/2.png")


async def test_polling_detects_client_side_navigation(store, watcher, page, flow):
    page.url = BASE_URL + "/app/billing"
    await asyncio.sleep(0.1)
    await watcher.drain()

    screens = await store.list_screens(flow.product_id)
    assert [s.path for s in screens] == ["/app/billing"]


async def test_frame_navigated_ignores_subframes(watcher, page):
    page.emit("framenavigated", FakeFrame())
    assert not watcher.request.pending

    page.emit("framenavigated", page.main_frame)
    assert watcher.request.pending
    assert watcher.request.reason == "frame-navigated"


async def test_click_binding_schedules_settle_capture(watcher, page):
    assert CLICK_BINDING in page.exposed
    assert page.init_scripts

    page.exposed[CLICK_BINDING]()
    assert watcher.click_request.reason == "click-settle"
    assert not watcher.request.pending

    watcher.request_capture("url-change", 0.02)
    assert watcher.request.reason == "url-change"
    assert watcher.click_request.pending


async def test_click_does_not_delay_settling_navigation(store, product, flow, page, capturer):
    timings = WatcherTimings(poll_interval=0.01, navigation_settle=0.02, click_settle=0.2)
    watcher = NavigationWatcher(
        "session-3", page, product.id, lambda: flow, store, capturer=capturer, timings=timings
    )
    await watcher.start()
    try:
        page.url = BASE_URL + "/app/billing"
        page.emit("framenavigated", page.main_frame)
        await asyncio.sleep(0.005)
        page.exposed[CLICK_BINDING]()
        await asyncio.sleep(0.08)
        page.url = BASE_URL + "/app/settings"
        page.emit("framenavigated", page.main_frame)
        await watcher.drain()
    finally:
        watcher.stop()

    paths = [s.path for s in await store.list_screens(product.id)]
    assert "/app/billing" in paths
    assert "/app/settings" in paths
    assert len(paths) == 2


async def test_no_active_flow_skips_without_claiming(store, watcher, flow):
    watcher.active["flow"] = None

    assert await watcher.try_capture("url-change") is None
    assert watcher.gate.last_captured_url is None

    watcher.active["flow"] = flow
    assert await watcher.try_capture("url-change") is not None


async def test_failed_capture_is_retried_on_next_signal(store, product, flow, page, timings):
    capturer = FlakyCapturer(store)
    watcher = NavigationWatcher(
        "session-2", page, product.id, lambda: flow, store, capturer=capturer, timings=timings
    )

    assert await watcher.try_capture("url-change") is None
    assert watcher.gate.last_captured_url is None
    assert not watcher.gate.in_flight

    assert await watcher.try_capture("url-change") is not None
    assert await store.count_flow_screens(flow.id) == 1


async def test_popup_is_captured_into_active_flow(store, watcher, page, flow):
    await watcher.try_capture("url-change")
    popup = FakePage({"/checkout": ("Checkout", [])}, url=BASE_URL + "/checkout")

    page.emit("popup", popup)
    await watcher.drain()

    screens = sorted(await store.list_screens(flow.product_id), key=lambda s: s.step_number)
    assert [(s.path, s.step_number) for s in screens] == [("/app/home", 1), ("/checkout", 2)]
    assert watcher.gate.last_captured_url == BASE_URL + "/app/home"


async def test_stop_detaches_listeners_and_ignores_requests(watcher, page):
    watcher.stop()
    watcher.stop()

    assert page.listener_count("framenavigated") == 0
    assert page.listener_count("popup") == 0
    watcher.request_capture("url-change", 0.01)
    assert not watcher.request.pending
    page.exposed[CLICK_BINDING]()
    assert not watcher.click_request.pending
