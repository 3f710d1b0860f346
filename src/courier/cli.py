"""
courier: run the proxy, or push a single call through it without a server.

Usage:
    courier serve
    courier send https://httpbin.org/get --param q=1 --pretty
    courier send https://httpbin.org/post -X POST -H "X-Api-Key: abc" -d '{"a": 1}'
"""

import asyncio
import json
from typing import List, Optional

import logfire
import typer

from .config import Settings
from .forwarder import Forwarder
from .models import ProxyRequest
from .transport import TransportPool

app = typer.Typer(help="Single-endpoint HTTP forwarding proxy.")


def parse_header(raw: str) -> tuple[str, str]:
    """'Name: value' -> ('Name', 'value')."""
    name, sep, value = raw.partition(":")
    if not sep or not name.strip():
        raise typer.BadParameter(f"Header must look like 'Name: value', got {raw!r}")
    return name.strip(), value.strip()


def parse_param(raw: str) -> tuple[str, str]:
    """'key=value' -> ('key', 'value')."""
    key, sep, value = raw.partition("=")
    if not sep or not key:
        raise typer.BadParameter(f"Param must look like 'key=value', got {raw!r}")
    return key, value


def parse_data(raw: str | None):
    """JSON if it parses, the raw string otherwise."""
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw


@app.command()
def serve(reload: bool = typer.Option(False, "--reload", help="Reload on code changes")):
    """Run the HTTP server."""
    from .__main__ import main

    main(reload=reload)


@app.command()
def send(
    url: str = typer.Argument(..., help="Target URL"),
    method: str = typer.Option("GET", "--method", "-X", help="HTTP method"),
    header: Optional[List[str]] = typer.Option(None, "--header", "-H", help="Header, 'Name: value'"),
    param: Optional[List[str]] = typer.Option(None, "--param", "-p", help="Query param, 'key=value'"),
    data: Optional[str] = typer.Option(None, "--data", "-d", help="Body, JSON or raw text"),
    pretty: bool = typer.Option(False, "--pretty", help="Pretty-print JSON output"),
):
    """Forward one request in-process and print the envelope."""
    logfire.configure(service_name="courier-cli", send_to_logfire="if-token-present", console=False)

    settings = Settings.from_env()
    request = ProxyRequest(
        target_url=url,
        method=method.upper(),
        headers=dict(parse_header(h) for h in header or []),
        query_params=dict(parse_param(p) for p in param or []),
        body=parse_data(data),
        secret=settings.secret,
    )

    async def do_send():
        pool = TransportPool(settings)
        try:
            return await Forwarder(settings, pool).handle(request)
        finally:
            await pool.close()

    result = asyncio.run(do_send())

    if pretty:
        print(json.dumps(result.body, indent=2))
    else:
        print(json.dumps(result.body))

    if not result.success:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
