"""Async Supabase (PostgREST + Storage) client implementing the mirror store."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Type, TypeVar

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


class SupabaseMirrorStore(MirrorStore):
    """
    Talks to a Supabase project over its REST endpoints.

    Rows go through PostgREST (``/rest/v1/<table>``) and screenshots through
    Storage (``/storage/v1/object/<bucket>/<key>``). Any non-2xx response is
    raised as ``StoreError``.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        key: Optional[str] = None,
        bucket: Optional[str] = None,
        timeout: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._url = (url or settings.supabase_url).rstrip("/")
        self._key = key or settings.supabase_key
        self._bucket = bucket or settings.screenshots_bucket
        self._timeout = timeout or settings.store_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        if not self._url or not self._key:
            raise StoreError("SUPABASE_URL and SUPABASE_KEY must be set for the supabase backend.")

    async def __aenter__(self) -> "SupabaseMirrorStore":
        self._http()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._url,
                headers={
                    "apikey": self._key,
                    "Authorization": f"Bearer {self._key}",
                },
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._http().request(method, path, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text[:300]
            raise StoreError(f"HTTP {exc.response.status_code} on {method} {path}: {detail}") from exc
        except httpx.RequestError as exc:
            raise StoreError(f"Request error on {method} {path}: {exc}") from exc

    async def _select(
        self,
        table: str,
        model: Type[M],
        filters: Dict[str, str],
        order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[M]:
        params = {"select": "*", **filters}
        if order:
            params["order"] = order
        if limit:
            params["limit"] = str(limit)
        response = await self._request("GET", f"/rest/v1/{table}", params=params)
        return [model(**row) for row in response.json()]

    async def _select_one(self, table: str, model: Type[M], filters: Dict[str, str]) -> Optional[M]:
        rows = await self._select(table, model, filters, limit=1)
        return rows[0] if rows else None

    async def _insert(self, table: str, record: M) -> M:
        payload = record.model_dump(mode="json", exclude_none=True)
        response = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        rows = response.json()
        if not rows:
            raise StoreError(f"Insert into {table} returned no row")
        return type(record)(**rows[0])

    async def _patch(self, table: str, filters: Dict[str, str], fields: Dict[str, Any]) -> httpx.Response:
        payload = {k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in fields.items()}
        return await self._request("PATCH", f"/rest/v1/{table}", params=filters, json=payload)

    # ── Products ──────────────────────────────────────────────────────────────

    async def get_product(self, product_id: str) -> Optional[Product]:
        return await self._select_one("products", Product, {"id": f"eq.{product_id}"})

    # ── Screens ───────────────────────────────────────────────────────────────

    async def find_crawled_screen(self, product_id: str, path: str) -> Optional[Screen]:
        return await self._select_one(
            "routes",
            Screen,
            {"product_id": f"eq.{product_id}", "path": f"eq.{path}", "session_id": "is.null"},
        )

    async def insert_screen(self, screen: Screen) -> Screen:
        return await self._insert("routes", screen)

    async def update_screen_name(self, screen_id: str, name: str) -> None:
        await self._patch("routes", {"id": f"eq.{screen_id}"}, {"name": name})

    async def list_screens(self, product_id: str) -> List[Screen]:
        return await self._select("routes", Screen, {"product_id": f"eq.{product_id}"})

    async def count_flow_screens(self, flow_id: str) -> int:
        response = await self._request(
            "GET",
            "/rest/v1/routes",
            params={"select": "id", "flow_id": f"eq.{flow_id}"},
        )
        return len(response.json())

    # ── Captures ──────────────────────────────────────────────────────────────

    async def insert_capture(self, capture: Capture) -> Capture:
        return await self._insert("captures", capture)

    async def latest_captures(self, route_id: str, limit: int = 2) -> List[Capture]:
        return await self._select(
            "captures",
            Capture,
            {"route_id": f"eq.{route_id}"},
            order="captured_at.desc",
            limit=limit,
        )

    async def update_capture_changes(
        self,
        capture_id: str,
        has_changes: bool,
        change_summary: Optional[str],
    ) -> None:
        await self._patch(
            "captures",
            {"id": f"eq.{capture_id}"},
            {"has_changes": has_changes, "change_summary": change_summary},
        )

    # ── Connections ───────────────────────────────────────────────────────────

    async def upsert_connections(self, connections: List[Connection]) -> int:
        if not connections:
            return 0
        payload = [c.model_dump(mode="json", exclude_none=True) for c in connections]
        await self._request(
            "POST",
            "/rest/v1/page_connections",
            params={"on_conflict": "source_route_id,destination_route_id"},
            json=payload,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )
        return len(connections)

    async def list_connections(self, product_id: str) -> List[Connection]:
        return await self._select("page_connections", Connection, {"product_id": f"eq.{product_id}"})

    # ── Flows ─────────────────────────────────────────────────────────────────

    async def get_flow(self, flow_id: str) -> Optional[Flow]:
        return await self._select_one("flows", Flow, {"id": f"eq.{flow_id}"})

    async def find_flow_by_name(self, product_id: str, name: str) -> Optional[Flow]:
        return await self._select_one(
            "flows", Flow, {"product_id": f"eq.{product_id}", "name": f"eq.{name}"}
        )

    async def insert_flow(self, flow: Flow) -> Flow:
        return await self._insert("flows", flow)

    async def update_flow(self, flow_id: str, **fields) -> None:
        fields = {k: (v.value if isinstance(v, FlowStatus) else v) for k, v in fields.items()}
        await self._patch("flows", {"id": f"eq.{flow_id}"}, fields)

    async def list_flows(self, product_id: str) -> List[Flow]:
        return await self._select("flows", Flow, {"product_id": f"eq.{product_id}"}, order="created_at")

    async def reset_recording_flows(self) -> int:
        response = await self._request(
            "PATCH",
            "/rest/v1/flows",
            params={"status": f"eq.{FlowStatus.RECORDING.value}"},
            json={"status": FlowStatus.PENDING.value},
            headers={"Prefer": "return=representation"},
        )
        return len(response.json())

    async def list_flow_templates(self) -> List[FlowTemplate]:
        try:
            return await self._select("flow_templates", FlowTemplate, {}, order="sort_order")
        except StoreError as exc:
            logger.warning(f"flow_templates query failed (table may not exist): {exc}")
            return []

    # ── Recording sessions ────────────────────────────────────────────────────

    async def insert_session(self, session: RecordingSession) -> RecordingSession:
        return await self._insert("recording_sessions", session)

    async def get_session(self, session_id: str) -> Optional[RecordingSession]:
        return await self._select_one("recording_sessions", RecordingSession, {"id": f"eq.{session_id}"})

    async def complete_session(self, session_id: str) -> None:
        await self._patch(
            "recording_sessions",
            {"id": f"eq.{session_id}"},
            {"status": SessionStatus.COMPLETED.value, "ended_at": datetime.utcnow()},
        )

    # ── Blobs ─────────────────────────────────────────────────────────────────

    async def upload_screenshot(self, key: str, data: bytes, upsert: bool = False) -> None:
        await self._request(
            "POST",
            f"/storage/v1/object/{self._bucket}/{key}",
            content=data,
            headers={"Content-Type": "image/png", "x-upsert": "true" if upsert else "false"},
        )

    def public_url(self, key: str) -> str:
        return f"{self._url}/storage/v1/object/public/{self._bucket}/{key}"

    async def download_screenshot(self, url: str) -> bytes:
        response = await self._request("GET", url)
        return response.content
