from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Index, Numeric, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base


class FeeClaim(Base):
    """SOL collected from a pool's fee vault (append-only, written by the collector)."""

    __tablename__ = "fee_claims"

    id: Mapped[int] = mapped_column(primary_key=True)
    program: Mapped[str] = mapped_column(String(20))  # "agent" | "claw"
    token_id: Mapped[str] = mapped_column(String(64))
    claimed_sol: Mapped[Decimal] = mapped_column(Numeric(20, 9))
    signature: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (Index("idx_fee_claims_program_token", "program", "token_id"),)


class Distribution(Base):
    """Payout already made to a beneficiary (append-only)."""

    __tablename__ = "distributions"

    id: Mapped[int] = mapped_column(primary_key=True)
    program: Mapped[str] = mapped_column(String(20))
    token_id: Mapped[str] = mapped_column(String(64))
    beneficiary_key: Mapped[str] = mapped_column(String(64))
    payout_wallet: Mapped[str | None] = mapped_column(String(64))
    amount_sol: Mapped[Decimal] = mapped_column(Numeric(20, 9))
    distribution_type: Mapped[str] = mapped_column(String(20))  # "creator_claim" | "creator"
    status: Mapped[str] = mapped_column(String(20), default="completed")
    signature: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index(
            "idx_distributions_beneficiary",
            "program", "beneficiary_key", "status", "created_at",
        ),
        Index("idx_distributions_program_token", "program", "token_id"),
    )


class ClaimLock(Base):
    """Short-lived mutual exclusion row, one per (program, beneficiary)."""

    __tablename__ = "claim_locks"

    id: Mapped[int] = mapped_column(primary_key=True)
    program: Mapped[str] = mapped_column(String(20))
    lock_key: Mapped[str] = mapped_column(String(128))
    holder: Mapped[str] = mapped_column(String(64))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    acquired_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("program", "lock_key", name="uq_claim_locks_program_key"),
    )


class LaunchedToken(Base):
    """Token → creator ownership, used to resolve a beneficiary's claim scope."""

    __tablename__ = "launched_tokens"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    program: Mapped[str] = mapped_column(String(20))
    mint_address: Mapped[str | None] = mapped_column(String(64))
    creator_handle: Mapped[str] = mapped_column(String(64))
    creator_wallet: Mapped[str | None] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(20), default="active")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("idx_launched_tokens_creator", "program", "creator_handle"),
    )
