"""Entry point for running Courier directly."""

import uvicorn

from .config import Settings


def main(reload: bool = False):
    """Run the Courier server."""
    settings = Settings.from_env()
    uvicorn.run(
        "courier.app:app",
        host=settings.host,
        port=settings.port,
        reload=reload,
        # Client-facing keep-alive; upstream reuse is UPSTREAM_KEEP_ALIVE.
        timeout_keep_alive=settings.downstream_keep_alive_timeout,
    )


if __name__ == "__main__":
    main()
