import pytest
from starlette.testclient import TestClient

from conftest import FakeBrowser, FakePage
from recording.session import SessionManager
from server import create_app


@pytest.fixture
def client(store, product, capturer, timings):
    manager = SessionManager(
        store,
        browser_factory=lambda: FakeBrowser(FakePage()),
        capturer=capturer,
        timings=timings,
    )
    with TestClient(create_app(manager)) as client:
        yield client


def _start(client, product_id="prod-1") -> str:
    response = client.post("/api/recording/start", json={"productId": product_id})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    return body["sessionId"]


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_start_requires_product_id(client):
    response = client.post("/api/recording/start", json={})
    assert response.status_code == 400
    assert response.json() == {"error": "productId is required"}


def test_start_with_malformed_body_is_bad_request(client):
    response = client.post("/api/recording/start", content=b"not json")
    assert response.status_code == 400


def test_start_unknown_product_is_not_found(client):
    response = client.post("/api/recording/start", json={"productId": "missing"})
    assert response.status_code == 404
    assert "missing" in response.json()["error"]


def test_status_round_trip(client):
    session_id = _start(client)

    response = client.get("/api/recording/status", params={"sessionId": session_id})

    assert response.status_code == 200
    body = response.json()
    assert body["sessionId"] == session_id
    assert body["status"] == "in_progress"
    assert body["browserConnected"] is True
    assert body["activeFlow"] is None
    assert body["totalScreens"] == 0
    assert {"id", "name", "status", "screenCount"} <= set(body["flows"][0])


def test_status_errors(client):
    assert client.get("/api/recording/status").status_code == 400
    response = client.get("/api/recording/status", params={"sessionId": "missing"})
    assert response.status_code == 404
    assert response.json() == {"error": "Session not found"}


def test_flow_start_and_end(client):
    session_id = _start(client)

    response = client.post("/api/recording/flow/start", json={"sessionId": session_id, "flowName": "Checkout"})
    assert response.status_code == 200
    started = response.json()
    assert started["success"] is True
    assert started["name"] == "Checkout"

    status = client.get("/api/recording/status", params={"sessionId": session_id}).json()
    assert status["activeFlow"]["id"] == started["flowId"]
    assert status["activeFlow"]["status"] == "recording"

    response = client.post("/api/recording/flow/end", json={"sessionId": session_id, "flowId": started["flowId"]})
    assert response.status_code == 200
    assert response.json() == {"success": True, "screenCount": 0}


def test_flow_validation(client):
    session_id = _start(client)

    assert client.post("/api/recording/flow/start", json={"flowName": "x"}).status_code == 400
    response = client.post("/api/recording/flow/start", json={"sessionId": session_id})
    assert response.status_code == 400
    assert response.json() == {"error": "flowName or flowId is required"}
    assert client.post("/api/recording/flow/start", json={"sessionId": "nope", "flowName": "x"}).status_code == 404
    assert client.post("/api/recording/flow/end", json={"sessionId": session_id}).status_code == 400
    assert client.post("/api/recording/flow/end", json={"sessionId": session_id, "flowId": "nope"}).status_code == 404


def test_end_session(client):
    session_id = _start(client)

    assert client.post("/api/recording/end", json={}).status_code == 400
    assert client.post("/api/recording/end", json={"sessionId": "missing"}).status_code == 404

    response = client.post("/api/recording/end", json={"sessionId": session_id})
    assert response.status_code == 200
    assert response.json() == {"success": True}
    status = client.get("/api/recording/status", params={"sessionId": session_id}).json()
    assert status["status"] == "completed"
    assert status["browserConnected"] is False


def test_browser_launch_failure_is_server_error(store, product, capturer, timings):
    manager = SessionManager(
        store,
        browser_factory=lambda: FakeBrowser(fail_launch=True),
        capturer=capturer,
        timings=timings,
    )
    with TestClient(create_app(manager)) as client:
        response = client.post("/api/recording/start", json={"productId": product.id})

    assert response.status_code == 500
    assert "Executable" in response.json()["error"]


def test_start_with_undecodable_body_is_bad_request(client):
    response = client.post(
        "/api/recording/start",
        content=b"\xff\xfe\xfa",
        headers={"content-type": "application/json"},
    )
    assert response.status_code == 400
