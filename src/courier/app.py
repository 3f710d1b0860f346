"""Courier - FastAPI application.

One endpoint in, any endpoint out.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any
from urllib.parse import parse_qsl

import httpx
import logfire
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from . import envelope
from .config import Settings
from .envelope import ResponseEnvelope
from .forwarder import Forwarder, new_request_id
from .models import ProxyRequest
from .transport import TransportPool

# Suppress harmless OTel context warnings before they're configured
logging.getLogger("opentelemetry.context").setLevel(logging.CRITICAL)

# Ships to Logfire only when LOGFIRE_TOKEN is set; always logs to the console.
logfire.configure(
    service_name="courier",
    send_to_logfire="if-token-present",
    distributed_tracing=True,
)
logfire.instrument_httpx()

# Statuses that must not carry a response body.
NO_BODY_STATUSES = frozenset({204, 304})


def render(result: ResponseEnvelope, request_id: str) -> Response:
    """Write an envelope as the HTTP response, status mirrored."""
    headers = {"x-request-id": request_id}
    if result.status in NO_BODY_STATUSES or result.status < 200:
        return Response(status_code=result.status, headers=headers)
    return JSONResponse(result.body, status_code=result.status, headers=headers)


def parse_payload(body_bytes: bytes, content_type: str) -> dict[str, Any] | None:
    """Decode the POST /proxy body. None means it isn't a usable object."""
    if "application/x-www-form-urlencoded" in content_type:
        return dict(parse_qsl(body_bytes.decode("utf-8", errors="replace"), keep_blank_values=True))
    if not body_bytes.strip():
        return {}
    try:
        payload = json.loads(body_bytes)
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def _declared_length(request: Request) -> int | None:
    value = request.headers.get("content-length")
    if value is None or not value.isdigit():
        return None
    return int(value)


def _log_loop_exception(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    """Stray task errors get logged, never allowed to take the service down."""
    logfire.error(
        "Unhandled error in event loop: {message}",
        message=context.get("message", ""),
        exception=repr(context.get("exception")),
    )


def create_app(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the application. `transport` replaces the upstream pools (tests)."""
    settings = settings or Settings.from_env()
    pool = TransportPool(settings, transport=transport)
    forwarder = Forwarder(settings, pool)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifecycle."""
        logfire.info("Courier is starting up on port {port}...", port=settings.port)
        if settings.uses_default_secret:
            logfire.warning("PROXY_SECRET is not set; the default secret is in use")
        asyncio.get_running_loop().set_exception_handler(_log_loop_exception)
        yield
        logfire.info("Courier is shutting down...")
        await pool.close()

    app = FastAPI(
        title="Courier",
        description="Authenticated, header-sanitized HTTP forwarding for automation workflows.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.forwarder = forwarder

    logfire.instrument_fastapi(app)

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "UP",
            "message": "Proxy is healthy and ready.",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": "courier",
        }

    @app.post("/proxy")
    async def proxy(request: Request):
        """Relay one JSON-described request upstream."""
        request_id = new_request_id()

        try:
            declared = _declared_length(request)
            if declared is not None and declared > settings.body_limit:
                return render(envelope.rejected(413, envelope.PAYLOAD_TOO_LARGE, request_id), request_id)

            body_bytes = await request.body()
            if len(body_bytes) > settings.body_limit:
                return render(envelope.rejected(413, envelope.PAYLOAD_TOO_LARGE, request_id), request_id)

            payload = parse_payload(body_bytes, request.headers.get("content-type", ""))
            if payload is None:
                logfire.info("Rejected {request_id}: undecodable body", request_id=request_id)
                return render(envelope.rejected(400, envelope.INVALID_BODY, request_id), request_id)

            result = await forwarder.handle(ProxyRequest.from_payload(payload), request_id=request_id)
            return render(result, request_id)

        except Exception:
            logfire.exception("Internal fault while handling {request_id}", request_id=request_id)
            return render(envelope.internal_fault(request_id), request_id)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        request_id = new_request_id()
        logfire.exception(
            "Unhandled error on {method} {path}",
            method=request.method,
            path=request.url.path,
            request_id=request_id,
            _exc_info=exc,
        )
        return render(envelope.internal_fault(request_id), request_id)

    return app


app = create_app()
