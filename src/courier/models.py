"""Per-call data: what comes in, what comes back from upstream."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class CallState(str, Enum):
    """Where a single forwarding call is in its lifecycle.

    Received -> Authenticated -> Validated -> Dispatching -> Succeeded | Failed.
    There is no way back: one failure is terminal for the call.
    """

    RECEIVED = "received"
    AUTHENTICATED = "authenticated"
    VALIDATED = "validated"
    DISPATCHING = "dispatching"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def _string_mapping(value: Any) -> dict[str, str]:
    """Coerce a caller-supplied mapping to str -> str, dropping nulls.

    Non-string values take their JSON spelling: true, 2, 1.5.
    """
    if not isinstance(value, dict):
        return {}
    return {str(k): v if isinstance(v, str) else json.dumps(v) for k, v in value.items() if v is not None}


@dataclass
class ProxyRequest:
    """One inbound forwarding call, as described by the caller."""

    target_url: str | None = None
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    query_params: dict[str, Any] = field(default_factory=dict)
    body: Any = None
    secret: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ProxyRequest":
        """Build from the decoded POST /proxy body.

        Lenient on purpose: the Forwarder decides what is acceptable, and it
        has to check the secret before it says anything about the rest.
        """
        target_url = payload.get("targetUrl")
        secret = payload.get("secret")
        params = payload.get("params")
        return cls(
            target_url=str(target_url).strip() if target_url is not None else None,
            method=str(payload.get("method") or "GET").upper(),
            headers=_string_mapping(payload.get("headers")),
            query_params={str(k): v for k, v in params.items() if v is not None} if isinstance(params, dict) else {},
            body=payload.get("data"),
            secret=secret if isinstance(secret, str) else None,
        )


@dataclass
class UpstreamResult:
    """Whatever the upstream answered, any status code."""

    status_code: int
    status_text: str
    headers: Any
    body: Any
    duration_ms: int = 0
