"""FastAPI dependency injection — registry and per-program ledger."""

from __future__ import annotations

from fastapi import HTTPException, Path, status

from src.api.registry import ServiceRegistry, registry
from src.settlement.ledger import FeeSettlementLedger


def get_registry() -> ServiceRegistry:
    """Return the global service registry."""
    return registry


def get_ledger(
    program: str = Path(..., min_length=1, max_length=20, pattern="^[a-z0-9_]+$"),
) -> FeeSettlementLedger:
    """Resolve the ledger for ``{program}`` in the URL path."""
    ledger = registry.ledgers.get(program)
    if ledger is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown claim program: {program}",
        )
    return ledger
