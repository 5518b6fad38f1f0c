"""API server — runs uvicorn inside the existing asyncio event loop."""

from __future__ import annotations

import uvicorn
from loguru import logger

from config.settings import settings


def build_server() -> uvicorn.Server:
    """Create the uvicorn server for the quote and claim API.

    Uses ``uvicorn.Server.serve()`` so the caller keeps control of the loop
    and can stop it by setting ``server.should_exit``.
    """
    from src.api.app import create_app

    app = create_app()
    config = uvicorn.Config(
        app=app,
        host="0.0.0.0",
        port=settings.api_port,
        log_level="warning",
        loop="none",  # use the existing event loop
    )
    return uvicorn.Server(config)


async def run_api_server(server: uvicorn.Server | None = None) -> None:
    server = server or build_server()
    logger.info(f"Launchpad API starting on http://0.0.0.0:{settings.api_port}")
    await server.serve()
