from fastapi.testclient import TestClient


def _get_client() -> TestClient:
    from taskflow.main import app

    return TestClient(app)


def test_health_endpoint_returns_ok() -> None:
    client = _get_client()
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_request_id_generated_and_returned() -> None:
    client = _get_client()
    response = client.get("/health")

    assert response.headers.get("X-Request-Id")


def test_request_id_echoed_from_header() -> None:
    client = _get_client()
    req_id = "test-request-id-123"
    response = client.get("/health", headers={"X-Request-Id": req_id})

    assert response.headers.get("X-Request-Id") == req_id


def test_health_trace_carries_request_id(monkeypatch) -> None:
    from taskflow.observability import tracing

    recorded = []

    class _Trace:
        def end(self) -> None:
            pass

    class _Client:
        def trace(self, name, metadata=None):
            recorded.append((name, metadata))
            return _Trace()

    monkeypatch.setattr(tracing, "get_opik_client", lambda: _Client())
    client = _get_client()
    client.get("/health", headers={"X-Request-Id": "req-health-1"})

    assert recorded == [("http.health_check", {"route": "/health", "request_id": "req-health-1"})]
