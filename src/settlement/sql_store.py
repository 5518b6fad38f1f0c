"""PostgreSQL-backed ledger store and token scope resolver.

Each call opens its own short session: reads are independent snapshots
(reverification after the lock must see rows committed by other workers).
"""

from __future__ import annotations

from collections.abc import Collection, Sequence
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.models.ledger import Distribution, FeeClaim, LaunchedToken
from src.settlement.types import (
    DistributionRecord,
    DistributionStatus,
    DistributionType,
    FeeClaimRecord,
)


class SqlLedgerStore:
    """fee_claims / distributions tables filtered by program."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], program: str) -> None:
        self._session_factory = session_factory
        self._program = program

    async def fee_claims(self, token_ids: Collection[str]) -> list[FeeClaimRecord]:
        if not token_ids:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(FeeClaim.token_id, FeeClaim.claimed_sol, FeeClaim.created_at).where(
                    FeeClaim.program == self._program,
                    FeeClaim.token_id.in_(list(token_ids)),
                )
            )
            return [
                FeeClaimRecord(
                    token_id=row.token_id,
                    claimed_sol=row.claimed_sol,
                    created_at=row.created_at,
                )
                for row in result.all()
            ]

    async def distributions(
        self,
        beneficiary_key: str,
        token_ids: Collection[str],
        *,
        types: Collection[DistributionType],
        status: DistributionStatus = DistributionStatus.COMPLETED,
    ) -> list[DistributionRecord]:
        if not token_ids:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(Distribution).where(
                    Distribution.program == self._program,
                    Distribution.beneficiary_key == beneficiary_key,
                    Distribution.token_id.in_(list(token_ids)),
                    Distribution.distribution_type.in_([str(t) for t in types]),
                    Distribution.status == str(status),
                )
            )
            return [_to_record(row) for row in result.scalars().all()]

    async def last_distribution_at(
        self,
        beneficiary_key: str,
        *,
        types: Collection[DistributionType],
        status: DistributionStatus = DistributionStatus.COMPLETED,
    ) -> datetime | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.max(Distribution.created_at)).where(
                    Distribution.program == self._program,
                    Distribution.beneficiary_key == beneficiary_key,
                    Distribution.distribution_type.in_([str(t) for t in types]),
                    Distribution.status == str(status),
                )
            )
            return result.scalar_one_or_none()

    async def record_distributions(self, records: Sequence[DistributionRecord]) -> None:
        if not records:
            return
        async with self._session_factory() as session:
            async with session.begin():
                session.add_all(
                    [
                        Distribution(
                            program=self._program,
                            token_id=r.token_id,
                            beneficiary_key=r.beneficiary_key,
                            payout_wallet=r.payout_wallet,
                            amount_sol=r.amount_sol,
                            distribution_type=str(r.distribution_type),
                            status=str(r.status),
                            signature=r.signature,
                        )
                        for r in records
                    ]
                )


class SqlTokenScopeResolver:
    """Active launched tokens whose creator handle matches the beneficiary."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], program: str) -> None:
        self._session_factory = session_factory
        self._program = program

    async def resolve(self, beneficiary_key: str) -> list[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(LaunchedToken.id)
                .where(
                    LaunchedToken.program == self._program,
                    func.lower(LaunchedToken.creator_handle) == beneficiary_key.lower(),
                    LaunchedToken.status == "active",
                )
                .order_by(LaunchedToken.created_at)
            )
            return list(result.scalars().all())


def _to_record(row: Distribution) -> DistributionRecord:
    return DistributionRecord(
        token_id=row.token_id,
        beneficiary_key=row.beneficiary_key,
        amount_sol=row.amount_sol,
        distribution_type=DistributionType(row.distribution_type),
        status=DistributionStatus(row.status),
        signature=row.signature,
        payout_wallet=row.payout_wallet,
        created_at=row.created_at,
    )
