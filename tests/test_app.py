"""HTTP surface: /health and /proxy through FastAPI's TestClient."""

import json
from dataclasses import replace
from types import SimpleNamespace
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import SECRET
from courier.app import create_app, parse_payload


def upstream(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/missing":
        return httpx.Response(404, json={"error": "not here"})
    if request.url.path == "/empty":
        return httpx.Response(204)
    return httpx.Response(200, json={"path": request.url.path, "ua": request.headers["user-agent"]})


def refused(request: httpx.Request):
    raise httpx.ConnectError("[Errno 111] Connection refused", request=request)


@pytest.fixture
def client(settings):
    app = create_app(settings, transport=httpx.MockTransport(upstream))
    with TestClient(app) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "UP"
    assert body["message"] == "Proxy is healthy and ready."
    assert "timestamp" in body


def test_proxy_success(client):
    response = client.post(
        "/proxy",
        json={
            "targetUrl": "https://upstream.test/things",
            "headers": {"User-Agent": "workflow-bot"},
            "secret": SECRET,
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"] == {"path": "/things", "ua": "workflow-bot"}
    assert body["meta"]["target"] == "https://upstream.test/things"
    assert response.headers["x-request-id"] == body["meta"]["requestId"]


def test_proxy_upstream_404_mirrors_status(client):
    response = client.post("/proxy", json={"targetUrl": "https://upstream.test/missing", "secret": SECRET})

    assert response.status_code == 404
    assert response.json()["success"] is True
    assert response.json()["data"] == {"error": "not here"}


def test_proxy_upstream_204_has_no_body(client):
    response = client.post("/proxy", json={"targetUrl": "https://upstream.test/empty", "secret": SECRET})

    assert response.status_code == 204
    assert response.content == b""


def test_proxy_bad_secret(client):
    response = client.post("/proxy", json={"targetUrl": "https://upstream.test/", "secret": "nope"})

    assert response.status_code == 403
    assert response.json()["error"] == "Invalid Secret"


@pytest.mark.parametrize("secret_json", [r'"\ud800"', "1234", "true"])
def test_proxy_unusual_secret_is_forbidden(client, secret_json):
    raw = '{"targetUrl": "https://upstream.test/", "secret": %s}' % secret_json

    response = client.post("/proxy", content=raw, headers={"content-type": "application/json"})

    assert response.status_code == 403
    assert response.json()["error"] == "Invalid Secret"


def test_proxy_empty_body_is_unauthenticated(client):
    response = client.post("/proxy")

    assert response.status_code == 403


def test_proxy_missing_target(client):
    response = client.post("/proxy", json={"secret": SECRET})

    assert response.status_code == 400
    assert response.json()["error"] == "Target URL required"


def test_proxy_undecodable_body(client):
    response = client.post("/proxy", content=b"{not json", headers={"content-type": "application/json"})

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "status": 400,
        "error": "Invalid request body",
        "meta": {"requestId": response.headers["x-request-id"]},
    }


def test_proxy_json_array_body_is_rejected(client):
    response = client.post("/proxy", json=[1, 2, 3])

    assert response.status_code == 400


def test_proxy_form_encoded_body(client):
    response = client.post("/proxy", data={"targetUrl": "https://upstream.test/form", "secret": SECRET})

    assert response.status_code == 200
    assert response.json()["data"]["path"] == "/form"


def test_proxy_body_limit(settings):
    app = create_app(replace(settings, body_limit=64), transport=httpx.MockTransport(upstream))
    with TestClient(app) as small_client:
        response = small_client.post(
            "/proxy",
            json={"targetUrl": "https://upstream.test/", "secret": SECRET, "data": "x" * 200},
        )

    assert response.status_code == 413
    assert response.json()["success"] is False


def test_proxy_transport_failure(settings):
    app = create_app(settings, transport=httpx.MockTransport(refused))
    with TestClient(app) as failing_client:
        response = failing_client.post("/proxy", json={"targetUrl": "http://127.0.0.1:9/", "secret": SECRET})

    assert response.status_code == 502
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "ConnectionRefused"
    assert body["code"] == "ECONNREFUSED"


def test_proxy_non_ascii_header_value_is_bad_gateway(client):
    response = client.post(
        "/proxy",
        json={"targetUrl": "https://upstream.test/", "headers": {"x-name": "\u65e5\u672c"}, "secret": SECRET},
    )

    assert response.status_code == 502
    assert response.json()["code"] == "ERR_INVALID_CHAR"


def test_internal_fault_becomes_500(settings):
    app = create_app(settings, transport=httpx.MockTransport(upstream))

    async def broken(request, request_id=None):
        raise RuntimeError("envelope construction bug")

    app.state.forwarder.handle = broken

    with TestClient(app) as broken_client:
        response = broken_client.post("/proxy", json={"targetUrl": "https://upstream.test/", "secret": SECRET})
        # The service keeps answering afterwards.
        health = broken_client.get("/health")

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "InternalFault"
    assert body["code"] == "INTERNAL_ERROR"
    assert "envelope construction bug" not in json.dumps(body)
    assert health.status_code == 200


@pytest.mark.parametrize(
    "raw, content_type, expected",
    [
        (b"", "application/json", {}),
        (b'{"secret": "s"}', "application/json", {"secret": "s"}),
        (b'"just a string"', "application/json", None),
        (b"\xff\xfe", "application/json", None),
        (b"targetUrl=https%3A%2F%2Fx.test&secret=s", "application/x-www-form-urlencoded", {"targetUrl": "https://x.test", "secret": "s"}),
    ],
)
def test_parse_payload(raw, content_type, expected):
    assert parse_payload(raw, content_type) == expected


@pytest.mark.asyncio
async def test_last_resort_handler_logs_the_traceback(settings):
    app = create_app(settings, transport=httpx.MockTransport(upstream))
    handler = app.exception_handlers[Exception]
    request = SimpleNamespace(method="POST", url=SimpleNamespace(path="/proxy"))
    exc = RuntimeError("escaped the route")

    with patch("courier.app.logfire") as sink:
        response = await handler(request, exc)

    assert response.status_code == 500
    assert json.loads(response.body)["code"] == "INTERNAL_ERROR"
    assert sink.exception.call_count == 1
    assert sink.exception.call_args.kwargs["_exc_info"] is exc
    assert sink.exception.call_args.kwargs["path"] == "/proxy"
