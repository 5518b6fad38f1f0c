"""Collaborator interfaces for the fee settlement ledger.

All coordination between concurrent claim handlers goes through these:
no in-process state is shared between claim requests.
"""

from __future__ import annotations

from collections.abc import Collection, Sequence
from datetime import datetime
from decimal import Decimal
from typing import Protocol

from src.settlement.types import (
    DistributionRecord,
    DistributionStatus,
    DistributionType,
    FeeClaimRecord,
    TransferResult,
)


class LedgerStore(Protocol):
    """Append-only fee-claim and distribution ledgers for one program."""

    async def fee_claims(self, token_ids: Collection[str]) -> list[FeeClaimRecord]: ...

    async def distributions(
        self,
        beneficiary_key: str,
        token_ids: Collection[str],
        *,
        types: Collection[DistributionType],
        status: DistributionStatus = DistributionStatus.COMPLETED,
    ) -> list[DistributionRecord]: ...

    async def last_distribution_at(
        self,
        beneficiary_key: str,
        *,
        types: Collection[DistributionType],
        status: DistributionStatus = DistributionStatus.COMPLETED,
    ) -> datetime | None: ...

    async def record_distributions(self, records: Sequence[DistributionRecord]) -> None:
        """Insert all rows in one transaction, or none."""
        ...


class LockStore(Protocol):
    """Expiring mutual exclusion keyed by beneficiary."""

    async def try_acquire(self, key: str, ttl_sec: int) -> str | None:
        """Single atomic conditional write. An expired lock counts as absent.

        Returns the owner token, or None when the lock is held.
        """
        ...

    async def release(self, key: str, token: str) -> None:
        """Delete the lock only while ``token`` still owns it."""
        ...


class PaymentExecutor(Protocol):
    """On-chain transfer from a funding authority (the treasury)."""

    async def get_balance(self, address: str | None = None) -> Decimal: ...

    async def transfer(
        self, to_address: str, amount_sol: Decimal, *, timeout: float | None = None
    ) -> TransferResult:
        """Send and confirm within ``timeout`` seconds (send + confirmation)."""
        ...


class TokenScopeResolver(Protocol):
    """Token ids a beneficiary may claim against."""

    async def resolve(self, beneficiary_key: str) -> list[str]: ...
