# tests/aggregator/test_api.py
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from hostwatch.services.aggregator.src.main import create_app
from hostwatch.shared.core.config import AggregatorConfig
from hostwatch.shared.core.models import MetricsSnapshot


@pytest.fixture
def client():
    app = create_app(AggregatorConfig(history_capacity=3))
    with TestClient(app) as client:
        yield client


@pytest.fixture
def payload(make_snapshot):
    return make_snapshot().model_dump(mode='json')


def test_latest_before_first_ingest(client):
    response = client.get("/api/metrics")

    assert response.status_code == 200
    body = response.json()
    assert tuple(body.keys()) == MetricsSnapshot.WIRE_FIELDS
    assert body["cpuPercent"] == 0.0
    assert body["processes"] == []


def test_ingest_then_read_back(client, payload):
    response = client.post("/api/metrics", json=payload)

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert client.get("/api/metrics").json() == payload
    assert client.get("/api/history").json() == [payload]


def test_history_is_bounded_and_ordered(client, payload):
    for i in range(5):
        client.post("/api/metrics", json={**payload, "capturedAt": i})

    history = client.get("/api/history").json()

    assert [s["capturedAt"] for s in history] == [2, 3, 4]


@pytest.mark.parametrize("body", [
    [1, 2, 3],
    {"memory": "plenty"},
    {"processes": "none"},
    {},
    {"cpuPercent": "x"},
])
def test_invalid_body_is_rejected(client, body):
    response = client.post("/api/metrics", json=body)

    assert response.status_code == 422
    assert client.get("/api/history").json() == []


@pytest.mark.parametrize("field, value", [
    ("cpuPercent", "not-a-number"),
    ("uptimeSeconds", "lots"),
    ("capturedAt", None),
])
def test_non_numeric_field_does_not_replace_latest(client, payload, field, value):
    client.post("/api/metrics", json=payload)

    response = client.post("/api/metrics", json={**payload, field: value})

    assert response.status_code == 422
    assert client.get("/api/metrics").json() == payload


def test_out_of_range_values_are_clamped(client, payload):
    client.post("/api/metrics", json={**payload, "cpuPercent": 180, "uptimeSeconds": -4})

    latest = client.get("/api/metrics").json()
    assert latest["cpuPercent"] == 100.0
    assert latest["uptimeSeconds"] == 0.0


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service_status": "running"}


def test_status(client, payload):
    client.post("/api/metrics", json=payload)

    body = client.get("/status").json()

    assert "Aggregation Service Status:" in body["status"]
    assert body["sessions"] == []


def test_prometheus_endpoint(client, payload):
    client.post("/api/metrics", json=payload)

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "hostwatch_snapshots_received_total 1.0" in response.text


def test_websocket_sends_history_then_metrics(client, payload):
    client.post("/api/metrics", json={**payload, "capturedAt": 1})

    with client.websocket_connect("/ws") as ws:
        history = ws.receive_json()
        client.post("/api/metrics", json={**payload, "capturedAt": 2})
        metrics = ws.receive_json()

    assert history["type"] == "history"
    assert [s["capturedAt"] for s in history["data"]] == [1]
    assert metrics == {"type": "metrics", "data": {**payload, "capturedAt": 2}}


def test_websocket_malformed_frame_closes_viewer(client):
    with client.websocket_connect("/ws") as ws:
        assert ws.receive_json() == {"type": "history", "data": []}
        ws.send_text("definitely not json")

        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_text()

    assert exc_info.value.code == 1007


def test_websocket_viewer_listed_in_status(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        sessions = client.get("/status").json()["sessions"]

    assert len(sessions) == 1
    assert sessions[0]["state"] == "open"


def test_wildcard_cors_does_not_allow_credentials(client):
    response = client.get("/health", headers={"Origin": "http://elsewhere.test"})

    assert response.headers["access-control-allow-origin"] == "*"
    assert "access-control-allow-credentials" not in response.headers


def test_explicit_cors_origins_allow_credentials():
    app = create_app(AggregatorConfig(cors_origins=["http://dashboard.test"]))
    with TestClient(app) as client:
        allowed = client.get("/health", headers={"Origin": "http://dashboard.test"})
        other = client.get("/health", headers={"Origin": "http://elsewhere.test"})

    assert allowed.headers["access-control-allow-origin"] == "http://dashboard.test"
    assert allowed.headers["access-control-allow-credentials"] == "true"
    assert "access-control-allow-origin" not in other.headers
