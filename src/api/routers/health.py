"""Health check — no auth required."""

from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import text

from src.api.registry import registry
from src.db.database import engine
from src.db.redis import redis_healthy

router = APIRouter(prefix="/api/v1", tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    db_ok: bool
    redis_ok: bool
    programs: list[str]


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check DB and Redis connectivity."""
    db_ok = False
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_ok = True
    except Exception:
        pass

    redis_ok = await redis_healthy(registry.redis)

    return HealthResponse(
        status="ok" if db_ok and redis_ok else "degraded",
        version="0.1.0",
        db_ok=db_ok,
        redis_ok=redis_ok,
        programs=sorted(registry.ledgers),
    )
