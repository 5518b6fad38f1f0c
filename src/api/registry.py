"""Singleton registry for runtime objects shared with the API.

Populated once during startup in ``src.main``. FastAPI endpoints read these
references directly; everything runs in a single event loop.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from src.settlement.ledger import FeeSettlementLedger


class ServiceRegistry:
    """Holds ledgers per claim program and shared clients."""

    def __init__(self) -> None:
        self.ledgers: dict[str, FeeSettlementLedger] = {}
        self.redis: Any | None = None  # Redis[str]
        self.closers: list[Any] = []  # objects with async close()

    def register_ledger(self, ledger: FeeSettlementLedger) -> None:
        self.ledgers[ledger.program.name] = ledger

    def clear(self) -> None:
        self.ledgers.clear()
        self.redis = None
        self.closers.clear()


registry = ServiceRegistry()
