"""The Forwarder - one proxy call, start to finish.

Received -> Authenticated -> Validated -> Dispatching -> Succeeded | Failed.
The secret is checked before anything else is looked at, so a bad secret and
a bad URL are indistinguishable to an unauthenticated caller.
"""

import hmac
import logging
import uuid
from urllib.parse import urlsplit

import httpx
import logfire

from . import envelope
from .config import Settings
from .envelope import ResponseEnvelope
from .errors import classify_failure
from .headers import sanitize_headers
from .models import CallState, ProxyRequest
from .transport import TransportPool

logger = logging.getLogger(__name__)

# Everything dispatch can raise that means "no upstream response at all".
# UnicodeError: httpx refuses to encode a header value or body it cannot send.
TRANSPORT_FAILURES = (TimeoutError, httpx.HTTPError, httpx.InvalidURL, OSError, UnicodeError)


def new_request_id() -> str:
    return str(uuid.uuid4())


def secret_matches(candidate: str | None, expected: str) -> bool:
    """Exact equality, compared in constant time.

    JSON strings may hold lone surrogates, so both sides are encoded with
    surrogatepass; such a secret is just another mismatch.
    """
    if not isinstance(candidate, str):
        return False
    return hmac.compare_digest(
        candidate.encode("utf-8", "surrogatepass"),
        expected.encode("utf-8", "surrogatepass"),
    )


def _host(url: str) -> str:
    try:
        return urlsplit(url).netloc or url
    except ValueError:
        return url


class Forwarder:
    """Relays a ProxyRequest upstream and wraps the outcome in an envelope.

    Holds no per-call state; one instance serves every concurrent call.
    """

    def __init__(self, settings: Settings, pool: TransportPool):
        self._settings = settings
        self._pool = pool

    @staticmethod
    def _advance(request_id: str, state: CallState) -> None:
        logger.debug("call %s: %s", request_id[:8], state.value)

    async def handle(self, request: ProxyRequest, request_id: str | None = None) -> ResponseEnvelope:
        request_id = request_id or new_request_id()
        self._advance(request_id, CallState.RECEIVED)

        if not secret_matches(request.secret, self._settings.secret):
            logfire.info(
                "Rejected {request_id}: invalid secret",
                request_id=request_id,
                state=CallState.FAILED.value,
            )
            return envelope.rejected(403, envelope.INVALID_SECRET, request_id)
        self._advance(request_id, CallState.AUTHENTICATED)

        target = request.target_url
        if not target:
            logfire.info(
                "Rejected {request_id}: no target URL",
                request_id=request_id,
                state=CallState.FAILED.value,
            )
            return envelope.rejected(400, envelope.TARGET_URL_REQUIRED, request_id)
        self._advance(request_id, CallState.VALIDATED)

        headers = sanitize_headers(request.headers)
        host = _host(target)

        with logfire.span(
            "courier: {method} {host}",
            method=request.method,
            host=host,
            request_id=request_id,
        ) as span:
            self._advance(request_id, CallState.DISPATCHING)
            try:
                result = await self._pool.dispatch(
                    method=request.method,
                    url=target,
                    headers=headers,
                    query_params=request.query_params,
                    body=request.body,
                    timeout=self._settings.call_timeout,
                )
            except TRANSPORT_FAILURES as e:
                failure = classify_failure(e, timeout=self._settings.call_timeout)
                span.set_attribute("state", CallState.FAILED.value)
                span.set_attribute("error_type", failure.error_type.value)
                logfire.warning(
                    "Upstream {host} failed for {request_id}: {error_type} ({code})",
                    host=host,
                    request_id=request_id,
                    error_type=failure.error_type.value,
                    code=failure.code,
                    message=failure.message,
                )
                return envelope.failed(failure, request_id)

            span.set_attribute("state", CallState.SUCCEEDED.value)
            span.set_attribute("http.status_code", result.status_code)
            logfire.info(
                "Upstream {host} answered {status} for {request_id} in {duration_ms}ms",
                host=host,
                request_id=request_id,
                status=result.status_code,
                duration_ms=result.duration_ms,
            )

        return envelope.succeeded(result, request_id, target)
