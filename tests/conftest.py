"""Shared fixtures: fake Playwright objects and a throwaway local store."""

from __future__ import annotations

import io
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

import pytest
from PIL import Image, ImageDraw
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from models.mirror import AuthState, Product
from recording.capture import ScreenCapturer
from recording.watcher import WatcherTimings
from storage.local_store import LocalMirrorStore

BASE_URL = "https://app.example.com"


def make_png(
    width: int = 100,
    height: int = 100,
    color: Tuple[int, int, int] = (255, 255, 255),
    box: Optional[Tuple[int, int, int, int]] = None,
) -> bytes:
    """Solid PNG, optionally with a black rectangle ``box`` (x0, y0, x1, y1) inclusive."""
    image = Image.new("RGB", (width, height), color)
    if box is not None:
        ImageDraw.Draw(image).rectangle(box, fill=(0, 0, 0))
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


class FakeLocator:
    """Locator that never finds anything (no cookie banner, no login form)."""

    @property
    def first(self) -> "FakeLocator":
        return self

    async def wait_for(self, state: Optional[str] = None, timeout: Optional[float] = None) -> None:
        raise PlaywrightTimeoutError("Timeout waiting for locator")

    async def click(self) -> None:
        raise PlaywrightError("Element not found")


class FakeFrame:
    pass


class FakePage:
    """
    In-memory stand-in for a Playwright page over a tiny site map.

    ``site`` maps ``path[?query]`` to ``(title, [links])``.
    """

    def __init__(
        self,
        site: Optional[Dict[str, Tuple[str, List[str]]]] = None,
        url: str = "about:blank",
        base_url: str = BASE_URL,
        fail_paths: Sequence[str] = (),
        png: Optional[bytes] = None,
    ) -> None:
        self.site = site or {}
        self.url = url
        self.base_url = base_url
        self.fail_paths = set(fail_paths)
        self.png = png or make_png()
        self.main_frame = FakeFrame()
        self.visits: List[str] = []
        self.screenshots = 0
        self.exposed: Dict[str, Callable] = {}
        self.init_scripts: List[str] = []
        self._listeners: Dict[str, List[Callable]] = defaultdict(list)

    def _path(self) -> str:
        parsed = urlparse(self.url)
        return (parsed.path or "/") + (f"?{parsed.query}" if parsed.query else "")

    async def goto(self, url: str, wait_until: Optional[str] = None, timeout: Optional[float] = None) -> None:
        path = url[len(self.base_url):] if url.startswith(self.base_url) else url
        self.visits.append(path or "/")
        if path in self.fail_paths:
            raise PlaywrightError(f"net::ERR_CONNECTION_REFUSED at {url}")
        self.url = url

    async def title(self) -> str:
        entry = self.site.get(self._path())
        return entry[0] if entry else ""

    async def screenshot(self, full_page: bool = False) -> bytes:
        self.screenshots += 1
        return self.png

    async def evaluate(self, expression: str, arg=None):
        if arg is None:
            return None
        entry = self.site.get(self._path())
        return list(entry[1]) if entry else []

    def get_by_role(self, role: str, name=None) -> FakeLocator:
        return FakeLocator()

    async def bring_to_front(self) -> None:
        pass

    async def wait_for_load_state(self, state: str = "load") -> None:
        pass

    async def expose_function(self, name: str, callback: Callable) -> None:
        if name in self.exposed:
            raise PlaywrightError(f'Function "{name}" has been already registered')
        self.exposed[name] = callback

    async def add_init_script(self, script: Optional[str] = None) -> None:
        self.init_scripts.append(script)

    def on(self, event: str, handler: Callable) -> None:
        self._listeners[event].append(handler)

    def remove_listener(self, event: str, handler: Callable) -> None:
        self._listeners[event].remove(handler)

    def listener_count(self, event: str) -> int:
        return len(self._listeners[event])

    def emit(self, event: str, arg) -> None:
        for handler in list(self._listeners[event]):
            handler(arg)


class FakeBrowser:
    """Stand-in for BrowserAgent."""

    def __init__(self, page: Optional[FakePage] = None, fail_launch: bool = False) -> None:
        self._page = page or FakePage()
        self.fail_launch = fail_launch
        self.connected = False
        self.closed = False
        self.launched_url: Optional[str] = None
        self._disconnect_callback: Optional[Callable] = None

    async def __aenter__(self) -> "FakeBrowser":
        await self.launch()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    @property
    def page(self) -> FakePage:
        return self._page

    async def launch(self, url: Optional[str] = None) -> FakePage:
        if self.fail_launch:
            raise PlaywrightError("Executable doesn't exist")
        self.connected = True
        self.launched_url = url
        if url:
            self._page.url = url
        return self._page

    def is_connected(self) -> bool:
        return self.connected

    def on_disconnect(self, callback: Callable) -> None:
        self._disconnect_callback = callback

    def disconnect(self) -> None:
        self.connected = False
        if self._disconnect_callback:
            self._disconnect_callback()

    async def close(self) -> None:
        self.closed = True
        self.connected = False


@pytest.fixture
def store(tmp_path) -> LocalMirrorStore:
    return LocalMirrorStore(str(tmp_path / "mirror"))


@pytest.fixture
def product(store) -> Product:
    product = Product(id="prod-1", name="Acme", staging_url=BASE_URL + "/", auth_state=AuthState.PUBLIC)
    store.upsert_product(product)
    return product


@pytest.fixture
def capturer(store) -> ScreenCapturer:
    return ScreenCapturer(store, settle_ms=0)


@pytest.fixture
def timings() -> WatcherTimings:
    return WatcherTimings(poll_interval=0.01, navigation_settle=0.02, click_settle=0.03)
