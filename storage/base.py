"""Persistence interface shared by the crawler, the recorder and change detection."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from models.mirror import (
    Capture,
    Connection,
    Flow,
    FlowTemplate,
    Product,
    RecordingSession,
    Screen,
)


class MirrorStore(ABC):
    """
    Row storage for products, screens, captures, connections, flows and
    recording sessions, plus blob storage for screenshots.

    Every method raises ``StoreError`` when the backend rejects the
    operation. Writes are sequential and best-effort; there are no
    transactions.
    """

    # ── Products ──────────────────────────────────────────────────────────────

    @abstractmethod
    async def get_product(self, product_id: str) -> Optional[Product]: ...

    # ── Screens ───────────────────────────────────────────────────────────────

    @abstractmethod
    async def find_crawled_screen(self, product_id: str, path: str) -> Optional[Screen]:
        """Return the crawl-mode Screen (no recording session) for product+path."""

    @abstractmethod
    async def insert_screen(self, screen: Screen) -> Screen: ...

    @abstractmethod
    async def update_screen_name(self, screen_id: str, name: str) -> None: ...

    @abstractmethod
    async def list_screens(self, product_id: str) -> List[Screen]: ...

    @abstractmethod
    async def count_flow_screens(self, flow_id: str) -> int: ...

    # ── Captures ──────────────────────────────────────────────────────────────

    @abstractmethod
    async def insert_capture(self, capture: Capture) -> Capture: ...

    @abstractmethod
    async def latest_captures(self, route_id: str, limit: int = 2) -> List[Capture]:
        """Captures of a Screen ordered by ``captured_at`` descending."""

    @abstractmethod
    async def update_capture_changes(
        self,
        capture_id: str,
        has_changes: bool,
        change_summary: Optional[str],
    ) -> None: ...

    # ── Connections ───────────────────────────────────────────────────────────

    @abstractmethod
    async def upsert_connections(self, connections: List[Connection]) -> int:
        """Upsert keyed on (source_route_id, destination_route_id); returns rows written."""

    @abstractmethod
    async def list_connections(self, product_id: str) -> List[Connection]: ...

    # ── Flows ─────────────────────────────────────────────────────────────────

    @abstractmethod
    async def get_flow(self, flow_id: str) -> Optional[Flow]: ...

    @abstractmethod
    async def find_flow_by_name(self, product_id: str, name: str) -> Optional[Flow]: ...

    @abstractmethod
    async def insert_flow(self, flow: Flow) -> Flow: ...

    @abstractmethod
    async def update_flow(self, flow_id: str, **fields) -> None: ...

    @abstractmethod
    async def list_flows(self, product_id: str) -> List[Flow]: ...

    @abstractmethod
    async def reset_recording_flows(self) -> int:
        """Set every Flow in status ``recording`` back to ``pending``; returns the count."""

    @abstractmethod
    async def list_flow_templates(self) -> List[FlowTemplate]: ...

    # ── Recording sessions ────────────────────────────────────────────────────

    @abstractmethod
    async def insert_session(self, session: RecordingSession) -> RecordingSession: ...

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[RecordingSession]: ...

    @abstractmethod
    async def complete_session(self, session_id: str) -> None: ...

    # ── Blobs ─────────────────────────────────────────────────────────────────

    @abstractmethod
    async def upload_screenshot(self, key: str, data: bytes, upsert: bool = False) -> None: ...

    @abstractmethod
    def public_url(self, key: str) -> str: ...

    @abstractmethod
    async def download_screenshot(self, url: str) -> bytes: ...

    async def aclose(self) -> None:
        """Release backend resources."""


def build_store(backend: Optional[str] = None) -> MirrorStore:
    """Instantiate the configured backend."""
    from config.settings import settings

    backend = (backend or settings.storage_backend).lower()
    if backend == "supabase":
        from clients.supabase_client import SupabaseMirrorStore

        return SupabaseMirrorStore()
    if backend == "local":
        from storage.local_store import LocalMirrorStore

        return LocalMirrorStore()
    raise ValueError(f"Unknown storage backend: {backend!r}")
