import json

import httpx
import pytest

from clients.supabase_client import SupabaseMirrorStore
from models.errors import StoreError
from models.mirror import Connection, FlowStatus, Screen

URL = "https://proj.supabase.co"


class Recorder:
    """MockTransport handler returning canned responses by (method, path)."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.responses.get((request.method, request.url.path), (200, []))
        if isinstance(body, (bytes, str)):
            return httpx.Response(status, content=body)
        return httpx.Response(status, json=body)


def _store(recorder: Recorder) -> SupabaseMirrorStore:
    return SupabaseMirrorStore(url=URL, key="service-key", transport=httpx.MockTransport(recorder))


def test_missing_credentials_rejected():
    with pytest.raises(StoreError):
        SupabaseMirrorStore(url="", key="")


async def test_get_product_sends_auth_and_filter():
    recorder = Recorder(
        {("GET", "/rest/v1/products"): (200, [{"id": "p1", "name": "Acme", "staging_url": "https://a.io", "auth_state": "authenticated"}])}
    )
    async with _store(recorder) as store:
        product = await store.get_product("p1")

    assert product.name == "Acme"
    assert product.auth_state == "authenticated"
    request = recorder.requests[0]
    assert request.headers["apikey"] == "service-key"
    assert request.headers["authorization"] == "Bearer service-key"
    assert request.url.params["id"] == "eq.p1"


async def test_find_crawled_screen_filters_out_sessions():
    recorder = Recorder()
    async with _store(recorder) as store:
        assert await store.find_crawled_screen("p1", "/home") is None

    params = recorder.requests[0].url.params
    assert params["product_id"] == "eq.p1"
    assert params["path"] == "eq./home"
    assert params["session_id"] == "is.null"


async def test_insert_returns_representation():
    row = {"id": "r1", "product_id": "p1", "path": "/home", "name": "Home", "created_at": "2024-01-01T00:00:00"}
    recorder = Recorder({("POST", "/rest/v1/routes"): (201, [row])})
    async with _store(recorder) as store:
        screen = await store.insert_screen(Screen(product_id="p1", path="/home", name="Home"))

    assert screen.id == "r1"
    request = recorder.requests[0]
    assert request.headers["prefer"] == "return=representation"
    assert "id" not in json.loads(request.content)


async def test_http_error_becomes_store_error():
    recorder = Recorder({("GET", "/rest/v1/flows"): (500, {"message": "boom"})})
    async with _store(recorder) as store:
        with pytest.raises(StoreError):
            await store.get_flow("f1")


async def test_connections_upsert_on_conflict_pair():
    recorder = Recorder({("POST", "/rest/v1/page_connections"): (201, b"")})
    connections = [Connection(product_id="p1", source_route_id="a", destination_route_id="b")]
    async with _store(recorder) as store:
        assert await store.upsert_connections(connections) == 1
        assert await store.upsert_connections([]) == 0

    assert len(recorder.requests) == 1
    request = recorder.requests[0]
    assert request.url.params["on_conflict"] == "source_route_id,destination_route_id"
    assert "merge-duplicates" in request.headers["prefer"]


async def test_update_flow_serializes_status():
    recorder = Recorder({("PATCH", "/rest/v1/flows"): (204, b"")})
    async with _store(recorder) as store:
        await store.update_flow("f1", status=FlowStatus.RECORDING, step_count=2)

    request = recorder.requests[0]
    assert request.url.params["id"] == "eq.f1"
    assert json.loads(request.content) == {"status": "recording", "step_count": 2}


async def test_reset_recording_flows_counts_rows():
    recorder = Recorder({("PATCH", "/rest/v1/flows"): (200, [{"id": "f1"}, {"id": "f2"}])})
    async with _store(recorder) as store:
        assert await store.reset_recording_flows() == 2

    request = recorder.requests[0]
    assert request.url.params["status"] == "eq.recording"
    assert json.loads(request.content) == {"status": "pending"}


async def test_missing_flow_templates_table_yields_empty_list():
    recorder = Recorder({("GET", "/rest/v1/flow_templates"): (404, {"message": "relation does not exist"})})
    async with _store(recorder) as store:
        assert await store.list_flow_templates() == []


async def test_upload_and_public_url():
    recorder = Recorder({("POST", "/storage/v1/object/screenshots/s1/f1/1.png"): (200, {"Key": "x"})})
    async with _store(recorder) as store:
        await store.upload_screenshot("s1/f1/1.png", b"png-bytes", upsert=True)
        url = store.public_url("s1/f1/1.png")

    request = recorder.requests[0]
    assert request.headers["x-upsert"] == "true"
    assert request.headers["content-type"] == "image/png"
    assert request.content == b"png-bytes"
    assert url == f"{URL}/storage/v1/object/public/screenshots/s1/f1/1.png"
