"""Transport failure classification.

Maps whatever went wrong on the way to the upstream onto a small, stable set
of error types the caller can branch on. An upstream HTTP error status is not
a failure and never reaches this module.
"""

import errno
import socket
import ssl
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator

import httpx

from .transport import decode_body


class ErrorType(str, Enum):
    TIMEOUT = "Timeout"
    DNS_FAILURE = "DnsFailure"
    CONNECTION_REFUSED = "ConnectionRefused"
    GENERIC = "GenericProxyError"


@dataclass
class FailureClassification:
    http_status: int
    error_type: ErrorType
    code: str
    message: str
    details: Any = None


# Resolver messages, for when the gaierror itself didn't survive the wrapping.
_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated with hostname",
)

_REFUSED_MARKERS = (
    "connection refused",
    "actively refused",
)


def iter_causes(exc: BaseException) -> Iterator[BaseException]:
    """Walk an exception, its causes, contexts and group members once each."""
    seen: set[int] = set()
    stack: list[BaseException | None] = [exc]
    while stack:
        current = stack.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        if isinstance(current, BaseExceptionGroup):
            stack.extend(current.exceptions)
        stack.append(current.__cause__)
        stack.append(current.__context__)


def _mentions(chain: list[BaseException], markers: tuple[str, ...]) -> bool:
    return any(marker in str(e).lower() for e in chain for marker in markers)


def _is_timeout(chain: list[BaseException]) -> bool:
    return isinstance(chain[0], (TimeoutError, httpx.TimeoutException))


def _is_dns_failure(chain: list[BaseException]) -> bool:
    if any(isinstance(e, socket.gaierror) for e in chain):
        return True
    return _mentions(chain, _DNS_MARKERS)


def _is_refused(chain: list[BaseException]) -> bool:
    for e in chain:
        if isinstance(e, ConnectionRefusedError):
            return True
        if isinstance(e, OSError) and e.errno == errno.ECONNREFUSED:
            return True
    return _mentions(chain, _REFUSED_MARKERS)


def _generic_code(chain: list[BaseException]) -> str:
    top = chain[0]
    if isinstance(top, httpx.TooManyRedirects):
        return "ERR_TOO_MANY_REDIRECTS"
    if isinstance(top, (httpx.InvalidURL, httpx.UnsupportedProtocol)):
        return "ERR_INVALID_URL"
    if isinstance(top, UnicodeError):
        return "ERR_INVALID_CHAR"
    if any(isinstance(e, ssl.SSLError) for e in chain):
        return "ERR_TLS"
    for e in chain:
        if isinstance(e, OSError) and isinstance(e.errno, int) and e.errno in errno.errorcode:
            return errno.errorcode[e.errno]
    return "UNKNOWN_ERROR"


def _message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def _details(exc: BaseException) -> Any:
    """Upstream error content carried by the failure, if any.

    httpx transport errors never carry a response. This covers
    HTTPStatusError and anything a custom transport or event hook raises
    with a `response` attached.
    """
    response = getattr(exc, "response", None)
    if isinstance(response, httpx.Response):
        return {"status": response.status_code, "data": decode_body(response)}
    return None


def classify_failure(exc: BaseException, timeout: float | None = None) -> FailureClassification:
    """Classify a transport-level failure.

    Order matters: a timeout wins over anything in its cause chain, and a
    resolver failure wins over a refusal.
    """
    chain = list(iter_causes(exc))

    if _is_timeout(chain):
        message = f"timeout of {int(timeout * 1000)}ms exceeded" if timeout else _message(exc)
        return FailureClassification(504, ErrorType.TIMEOUT, "ETIMEDOUT", message)

    if _is_dns_failure(chain):
        return FailureClassification(502, ErrorType.DNS_FAILURE, "ENOTFOUND", _message(exc))

    if _is_refused(chain):
        return FailureClassification(502, ErrorType.CONNECTION_REFUSED, "ECONNREFUSED", _message(exc))

    return FailureClassification(
        502,
        ErrorType.GENERIC,
        _generic_code(chain),
        _message(exc),
        details=_details(exc),
    )
