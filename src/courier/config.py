"""Process-wide settings, read once from the environment at startup."""

import os
from dataclasses import dataclass

DEFAULT_SECRET = "n8n-default-secret"

_TRUTHY = ("1", "true", "yes", "on")


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


@dataclass(frozen=True)
class Settings:
    """Everything the proxy needs to know about its environment.

    Built once in the entry point and handed to the Forwarder and the
    Transport Pool by reference. Nothing in the pipeline reads os.environ.
    """

    secret: str = DEFAULT_SECRET
    host: str = "0.0.0.0"
    port: int = 3000

    # Whole upstream call. Deliberately shorter than the socket timeout so a
    # call-level timeout is distinguishable from a dead socket.
    call_timeout: float = 30.0
    socket_timeout: float = 60.0
    max_redirects: int = 5
    body_limit: int = 10 * 1024 * 1024

    # Upstream (target-facing) and downstream (client-facing) keep-alive are
    # independent policies.
    upstream_keep_alive: bool = False
    downstream_keep_alive_timeout: int = 65

    @property
    def uses_default_secret(self) -> bool:
        return self.secret == DEFAULT_SECRET

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            secret=os.environ.get("PROXY_SECRET") or DEFAULT_SECRET,
            host=os.environ.get("HOST", "0.0.0.0"),
            port=int(os.environ.get("PORT", "3000")),
            call_timeout=float(os.environ.get("PROXY_CALL_TIMEOUT", "30")),
            socket_timeout=float(os.environ.get("PROXY_SOCKET_TIMEOUT", "60")),
            max_redirects=int(os.environ.get("PROXY_MAX_REDIRECTS", "5")),
            body_limit=int(os.environ.get("PROXY_BODY_LIMIT", str(10 * 1024 * 1024))),
            upstream_keep_alive=_env_bool("UPSTREAM_KEEP_ALIVE", False),
            downstream_keep_alive_timeout=int(os.environ.get("DOWNSTREAM_KEEP_ALIVE_TIMEOUT", "65")),
        )
