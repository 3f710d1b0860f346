from dataclasses import replace

import httpx
import logfire
import pytest

from courier.config import Settings
from courier.forwarder import Forwarder
from courier.transport import TransportPool

# Keep the observability sink local during tests.
logfire.configure(send_to_logfire=False, console=False)

SECRET = "test-secret"


@pytest.fixture
def settings():
    return Settings(secret=SECRET, call_timeout=0.2, socket_timeout=1.0)


class CountingTransport(httpx.MockTransport):
    """MockTransport that remembers every request it was handed."""

    def __init__(self, handler):
        self.requests: list[httpx.Request] = []

        async def recording_handler(request: httpx.Request):
            self.requests.append(request)
            result = handler(request)
            if hasattr(result, "__await__"):
                result = await result
            return result

        super().__init__(recording_handler)


@pytest.fixture
def make_forwarder(settings):
    """Build a Forwarder whose upstream is the given handler."""

    def _make(handler, **overrides):
        effective = replace(settings, **overrides)
        transport = CountingTransport(handler)
        return Forwarder(effective, TransportPool(effective, transport=transport)), transport

    return _make
