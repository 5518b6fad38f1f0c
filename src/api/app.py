"""FastAPI application factory for the launchpad quote and claim API."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.cors import CORSMiddleware

from config.settings import settings
from src.api.middleware import SecurityHeadersMiddleware
from src.exceptions import InvalidInputError

# Rate limiter (shared instance)
limiter = Limiter(key_func=get_remote_address)


async def _invalid_input_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=400, content={"success": False, "error": str(exc)})


def create_app() -> FastAPI:
    """Build and configure the FastAPI application."""
    app = FastAPI(
        title="Launchpad Core API",
        version="0.1.0",
        docs_url="/api/docs" if settings.api_debug else None,
        redoc_url=None,
        openapi_url="/api/openapi.json" if settings.api_debug else None,
    )

    # Rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(InvalidInputError, _invalid_input_handler)

    # Security headers
    app.add_middleware(SecurityHeadersMiddleware)

    # CORS for the local launchpad frontend (dev server on :5173)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173"],
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # Import and include routers
    from src.api.routers.claims import router as claims_router
    from src.api.routers.health import router as health_router
    from src.api.routers.quotes import router as quotes_router

    app.include_router(health_router)
    app.include_router(quotes_router)
    app.include_router(claims_router)

    return app
