"""Mirror store backed by JSON files and a local screenshot directory."""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Type, TypeVar
from urllib.parse import unquote, urlparse

import httpx
from loguru import logger
from pydantic import BaseModel

from config.settings import settings
from models.errors import StoreError
from models.mirror import (
    Capture,
    Connection,
    Flow,
    FlowStatus,
    FlowTemplate,
    Product,
    RecordingSession,
    Screen,
    SessionStatus,
)
from storage.base import MirrorStore

M = TypeVar("M", bound=BaseModel)

_TABLES: Dict[str, Type[BaseModel]] = {
    "products": Product,
    "routes": Screen,
    "captures": Capture,
    "page_connections": Connection,
    "flows": Flow,
    "flow_templates": FlowTemplate,
    "recording_sessions": RecordingSession,
}


class LocalMirrorStore(MirrorStore):
    """
    Simple file-backed store.

    Each table is persisted as one JSON file under ``data_dir/``
    (e.g. data/mirror/routes.json) and kept in an in-memory cache.
    Screenshots are written under ``data_dir/screenshots/<key>`` and their
    public URL is the ``file://`` URI of that path.
    """

    def __init__(self, data_dir: Optional[str] = None) -> None:
        self._data_dir = Path(data_dir or settings.data_dir)
        self._blob_dir = self._data_dir / settings.screenshots_bucket
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._blob_dir.mkdir(parents=True, exist_ok=True)
        self._cache: Dict[str, Dict[str, BaseModel]] = {name: {} for name in _TABLES}
        self._load_all()

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _table_file(self, table: str) -> Path:
        return self._data_dir / f"{table}.json"

    def _load_all(self) -> None:
        """Load every table file into the memory cache."""
        for table, model in _TABLES.items():
            path = self._table_file(table)
            if not path.exists():
                continue
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    rows = json.load(fh)
                for index, raw in enumerate(rows):
                    record = model(**raw)
                    key = getattr(record, "id", None) or self._row_key(table, record, index)
                    self._cache[table][key] = record
            except Exception as exc:
                logger.warning(f"Failed to load {path}: {exc}")
        total = sum(len(rows) for rows in self._cache.values())
        logger.debug(f"Loaded {total} rows from {self._data_dir}")

    @staticmethod
    def _row_key(table: str, record: BaseModel, index: int) -> str:
        if table == "flow_templates":
            return record.name
        return str(index)

    def _save(self, table: str) -> None:
        path = self._table_file(table)
        try:
            with open(path, "w", encoding="utf-8") as fh:
                json.dump(
                    [r.model_dump(mode="json") for r in self._cache[table].values()],
                    fh,
                    indent=2,
                    default=str,
                )
        except OSError as exc:
            raise StoreError(f"Failed to write {path}: {exc}") from exc

    def _insert(self, table: str, record: M) -> M:
        record = record.model_copy(update={"id": record.id or str(uuid.uuid4())})
        self._cache[table][record.id] = record
        self._save(table)
        return record.model_copy()

    def _rows(self, table: str) -> List:
        return [r.model_copy() for r in self._cache[table].values()]

    def _update(self, table: str, row_id: str, **fields) -> None:
        record = self._cache[table].get(row_id)
        if record is None:
            raise StoreError(f"{table} row not found: {row_id}")
        self._cache[table][row_id] = record.model_copy(update=fields)
        self._save(table)

    # ── Seeding (outside the engine's contract) ───────────────────────────────

    def upsert_product(self, product: Product) -> None:
        self._cache["products"][product.id] = product
        self._save("products")

    def upsert_flow_template(self, template: FlowTemplate) -> None:
        self._cache["flow_templates"][template.name] = template
        self._save("flow_templates")

    # ── Products ──────────────────────────────────────────────────────────────

    async def get_product(self, product_id: str) -> Optional[Product]:
        return self._cache["products"].get(product_id)

    # ── Screens ───────────────────────────────────────────────────────────────

    async def find_crawled_screen(self, product_id: str, path: str) -> Optional[Screen]:
        for screen in self._cache["routes"].values():
            if screen.product_id == product_id and screen.path == path and screen.session_id is None:
                return screen.model_copy()
        return None

    async def insert_screen(self, screen: Screen) -> Screen:
        return self._insert("routes", screen)

    async def update_screen_name(self, screen_id: str, name: str) -> None:
        self._update("routes", screen_id, name=name)

    async def list_screens(self, product_id: str) -> List[Screen]:
        return [s for s in self._rows("routes") if s.product_id == product_id]

    async def count_flow_screens(self, flow_id: str) -> int:
        return sum(1 for s in self._cache["routes"].values() if s.flow_id == flow_id)

    # ── Captures ──────────────────────────────────────────────────────────────

    async def insert_capture(self, capture: Capture) -> Capture:
        if capture.route_id not in self._cache["routes"]:
            raise StoreError(f"Capture references unknown route {capture.route_id}")
        return self._insert("captures", capture)

    async def latest_captures(self, route_id: str, limit: int = 2) -> List[Capture]:
        captures = [c for c in self._rows("captures") if c.route_id == route_id]
        captures.sort(key=lambda c: c.captured_at, reverse=True)
        return captures[:limit]

    async def update_capture_changes(
        self,
        capture_id: str,
        has_changes: bool,
        change_summary: Optional[str],
    ) -> None:
        self._update("captures", capture_id, has_changes=has_changes, change_summary=change_summary)

    # ── Connections ───────────────────────────────────────────────────────────

    async def upsert_connections(self, connections: List[Connection]) -> int:
        table = self._cache["page_connections"]
        existing = {c.key: row_id for row_id, c in table.items()}
        for connection in connections:
            row_id = existing.get(connection.key) or connection.id or str(uuid.uuid4())
            table[row_id] = connection.model_copy(update={"id": row_id})
            existing[connection.key] = row_id
        self._save("page_connections")
        return len(connections)

    async def list_connections(self, product_id: str) -> List[Connection]:
        return [c for c in self._rows("page_connections") if c.product_id == product_id]

    # ── Flows ─────────────────────────────────────────────────────────────────

    async def get_flow(self, flow_id: str) -> Optional[Flow]:
        flow = self._cache["flows"].get(flow_id)
        return flow.model_copy() if flow else None

    async def find_flow_by_name(self, product_id: str, name: str) -> Optional[Flow]:
        for flow in self._cache["flows"].values():
            if flow.product_id == product_id and flow.name == name:
                return flow.model_copy()
        return None

    async def insert_flow(self, flow: Flow) -> Flow:
        return self._insert("flows", flow)

    async def update_flow(self, flow_id: str, **fields) -> None:
        self._update("flows", flow_id, **fields)

    async def list_flows(self, product_id: str) -> List[Flow]:
        flows = [f for f in self._rows("flows") if f.product_id == product_id]
        flows.sort(key=lambda f: f.created_at)
        return flows

    async def reset_recording_flows(self) -> int:
        reset = 0
        for row_id, flow in self._cache["flows"].items():
            if flow.status == FlowStatus.RECORDING:
                self._cache["flows"][row_id] = flow.model_copy(update={"status": FlowStatus.PENDING.value})
                reset += 1
        if reset:
            self._save("flows")
        return reset

    async def list_flow_templates(self) -> List[FlowTemplate]:
        return sorted(self._rows("flow_templates"), key=lambda t: t.sort_order)

    # ── Recording sessions ────────────────────────────────────────────────────

    async def insert_session(self, session: RecordingSession) -> RecordingSession:
        return self._insert("recording_sessions", session)

    async def get_session(self, session_id: str) -> Optional[RecordingSession]:
        session = self._cache["recording_sessions"].get(session_id)
        return session.model_copy() if session else None

    async def complete_session(self, session_id: str) -> None:
        self._update(
            "recording_sessions",
            session_id,
            status=SessionStatus.COMPLETED.value,
            ended_at=datetime.utcnow(),
        )

    # ── Blobs ─────────────────────────────────────────────────────────────────

    def _blob_path(self, key: str) -> Path:
        path = (self._blob_dir / key).resolve()
        if self._blob_dir.resolve() not in path.parents:
            raise StoreError(f"Refusing to write outside the screenshot directory: {key}")
        return path

    async def upload_screenshot(self, key: str, data: bytes, upsert: bool = False) -> None:
        path = self._blob_path(key)
        if path.exists() and not upsert:
            raise StoreError(f"Screenshot already exists: {key}")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise StoreError(f"Screenshot upload failed for {key}: {exc}") from exc

    def public_url(self, key: str) -> str:
        return self._blob_path(key).as_uri()

    async def download_screenshot(self, url: str) -> bytes:
        parsed = urlparse(url)
        if parsed.scheme == "file":
            try:
                return Path(unquote(parsed.path)).read_bytes()
            except OSError as exc:
                raise StoreError(f"Failed to read {url}: {exc}") from exc
        try:
            async with httpx.AsyncClient(timeout=settings.store_timeout_seconds) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.content
        except httpx.HTTPError as exc:
            raise StoreError(f"Failed to download {url}: {exc}") from exc
