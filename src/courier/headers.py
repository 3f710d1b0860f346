"""Header sanitization - what goes out to upstream, what comes back to the caller."""

import json
from types import MappingProxyType
from typing import Any, Mapping

# Hop-by-hop and forwarding-disclosure headers. host and content-length are
# recomputed by httpx from the resolved target and body; stale copies break
# SNI/Host matching and framing.
BANNED_REQUEST_HEADERS = frozenset(
    {
        "host",
        "connection",
        "content-length",
        "via",
        "x-forwarded-for",
        "x-forwarded-host",
        "x-forwarded-proto",
        "forwarded",
        "x-real-ip",
        "cf-connecting-ip",
    }
)

FALLBACK_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Browser identity fields filled in when the caller leaves them out.
DEFAULT_REQUEST_HEADERS = MappingProxyType(
    {
        "user-agent": FALLBACK_USER_AGENT,
        "accept": "application/json, text/plain, */*",
        "accept-language": "en-US,en;q=0.9",
        "accept-encoding": "gzip, deflate, br",
    }
)

# httpx has already decoded the body, so these would lie to the caller.
STRIPPED_RESPONSE_HEADERS = frozenset({"content-encoding", "transfer-encoding"})


def sanitize_headers(headers: Mapping[str, Any] | None) -> dict[str, str]:
    """Normalize caller headers before forwarding.

    Keys are lower-cased (last one wins on case collisions), banned headers
    are dropped, and missing browser identity headers get defaults. A value
    the caller set explicitly is never overwritten.
    """
    sanitized: dict[str, str] = {}
    for key, value in (headers or {}).items():
        if value is None:
            continue
        sanitized[str(key).lower()] = value if isinstance(value, str) else json.dumps(value)

    for key in BANNED_REQUEST_HEADERS:
        sanitized.pop(key, None)

    for key, value in DEFAULT_REQUEST_HEADERS.items():
        if not sanitized.get(key, "").strip():
            sanitized[key] = value

    return sanitized


def filter_response_headers(headers: Any) -> dict[str, Any]:
    """Pass upstream response headers through, minus transport framing.

    Accepts httpx.Headers or a plain mapping. Repeated set-cookie headers
    stay a list; other repeats are comma-joined.
    """
    items = headers.multi_items() if hasattr(headers, "multi_items") else headers.items()

    collected: dict[str, list[str]] = {}
    for key, value in items:
        name = key.lower()
        if name in STRIPPED_RESPONSE_HEADERS:
            continue
        values = collected.setdefault(name, [])
        if isinstance(value, (list, tuple)):
            values.extend(str(v) for v in value)
        else:
            values.append(str(value))

    return {
        name: values if name == "set-cookie" else ", ".join(values)
        for name, values in collected.items()
    }
