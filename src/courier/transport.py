"""Outbound HTTP - the Transport Pool.

One long-lived httpx client with a connection pool mounted per scheme. By
default nothing is reused between calls: every call gets a fresh connection
so upstreams can't correlate calls by source port or TLS session.
"""

import asyncio
import json
import logging
import ssl
import time
from typing import Any

import certifi
import httpx

from .config import Settings
from .models import UpstreamResult

logger = logging.getLogger(__name__)

# TLS 1.2 suites in the order a current desktop Chrome offers them. TLS 1.3
# suites are not configurable through OpenSSL's cipher string and already
# match browser defaults.
BROWSER_CIPHERS = ":".join(
    [
        "ECDHE-ECDSA-AES128-GCM-SHA256",
        "ECDHE-RSA-AES128-GCM-SHA256",
        "ECDHE-ECDSA-AES256-GCM-SHA384",
        "ECDHE-RSA-AES256-GCM-SHA384",
        "ECDHE-ECDSA-CHACHA20-POLY1305",
        "ECDHE-RSA-CHACHA20-POLY1305",
        "ECDHE-RSA-AES128-SHA",
        "ECDHE-RSA-AES256-SHA",
        "AES128-GCM-SHA256",
        "AES256-GCM-SHA384",
        "AES128-SHA",
        "AES256-SHA",
    ]
)


def build_tls_context() -> ssl.SSLContext:
    """SSL context for the https:// pool, tuned to look like a browser."""
    context = ssl.create_default_context(cafile=certifi.where())
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.set_ciphers(BROWSER_CIPHERS)
    return context


def decode_body(response: httpx.Response) -> Any:
    """JSON if it parses, text otherwise. httpx has already undone gzip/br."""
    text = response.text
    if not text:
        return ""
    try:
        return json.loads(text)
    except ValueError:
        return text


class TransportPool:
    """Connection manager for upstream calls.

    Pass `transport` to replace both per-scheme pools (tests use
    httpx.MockTransport).
    """

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self._settings = settings
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _limits(self) -> httpx.Limits:
        return httpx.Limits(
            max_connections=None,
            max_keepalive_connections=None if self._settings.upstream_keep_alive else 0,
            keepalive_expiry=self._settings.socket_timeout,
        )

    def _build_client(self) -> httpx.AsyncClient:
        options: dict[str, Any] = {
            "timeout": httpx.Timeout(self._settings.socket_timeout),
            "follow_redirects": True,
            "max_redirects": self._settings.max_redirects,
        }
        if self._transport is not None:
            return httpx.AsyncClient(transport=self._transport, **options)

        limits = self._limits()
        return httpx.AsyncClient(
            mounts={
                "http://": httpx.AsyncHTTPTransport(limits=limits),
                "https://": httpx.AsyncHTTPTransport(limits=limits, verify=build_tls_context()),
            },
            **options,
        )

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = self._build_client()
            logger.info(
                "Transport pool ready (upstream keep-alive %s, socket timeout %ss)",
                "on" if self._settings.upstream_keep_alive else "off",
                self._settings.socket_timeout,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def dispatch(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        query_params: dict[str, Any] | None = None,
        body: Any = None,
        timeout: float | None = None,
    ) -> UpstreamResult:
        """Send one request upstream and read the whole response.

        Any status code is a result. Only connection-level trouble raises:
        TimeoutError when `timeout` expires, otherwise whatever httpx raised.
        """
        target = httpx.URL(url)
        if target.scheme not in ("http", "https"):
            raise httpx.UnsupportedProtocol(f"Unsupported protocol in {url!r}: expected http:// or https://")

        client = await self.get_client()

        request_kwargs: dict[str, Any] = {"headers": headers}
        if query_params:
            request_kwargs["params"] = query_params
        if body is not None:
            if isinstance(body, (str, bytes)):
                request_kwargs["content"] = body
            else:
                request_kwargs["json"] = body

        started = time.perf_counter()
        response = await asyncio.wait_for(
            client.request(method, url, **request_kwargs),
            timeout=timeout,
        )
        duration_ms = int((time.perf_counter() - started) * 1000)

        return UpstreamResult(
            status_code=response.status_code,
            status_text=response.reason_phrase,
            headers=response.headers,
            body=decode_body(response),
            duration_ms=duration_ms,
        )
