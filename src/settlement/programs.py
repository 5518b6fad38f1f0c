"""Claim program configuration — one FeeSettlementLedger per product surface."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from config.settings import Settings
from src.settlement.types import DistributionType

AGENT_PROGRAM = "agent"
CLAW_PROGRAM = "claw"


@dataclass(frozen=True)
class ClaimProgram:
    """Per-surface settlement constants.

    creator_share_pct: earned = collected * pct (0.3 means 30%)
    min_claim_sol: claims below this are rejected
    cooldown_sec: enforced gap between successful claims per beneficiary
    lock_duration_sec: max lifetime of a claim lock
    payment_margin_sec: lock lifetime left unused when the payment deadline passes
    reserve_buffer_sol: SOL the treasury must keep after paying
    max_single_claim_sol: optional ceiling per claim; the remainder stays claimable
    """

    name: str
    creator_share_pct: Decimal
    min_claim_sol: Decimal = Decimal("0.01")
    cooldown_sec: int = 3600
    lock_duration_sec: int = 60
    payment_margin_sec: int = 10
    reserve_buffer_sol: Decimal = Decimal("0.01")
    max_single_claim_sol: Decimal | None = None
    distribution_types: tuple[DistributionType, ...] = (
        DistributionType.CREATOR_CLAIM,
        DistributionType.CREATOR,
    )

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Program name is empty")
        if not Decimal("0") < self.creator_share_pct <= Decimal("1"):
            raise ValueError(f"creator_share_pct must be in (0, 1]: {self.creator_share_pct}")
        if self.min_claim_sol < 0 or self.reserve_buffer_sol < 0:
            raise ValueError("min_claim_sol and reserve_buffer_sol must be >= 0")
        if self.cooldown_sec < 0 or self.lock_duration_sec <= 0:
            raise ValueError("cooldown_sec must be >= 0 and lock_duration_sec > 0")
        if not 0 <= self.payment_margin_sec < self.lock_duration_sec:
            raise ValueError("payment_margin_sec must be in [0, lock_duration_sec)")
        if self.max_single_claim_sol is not None and self.max_single_claim_sol <= 0:
            raise ValueError("max_single_claim_sol must be positive when set")

    @property
    def payment_timeout_sec(self) -> int:
        """Time a payment may take after the lock is acquired."""
        return self.lock_duration_sec - self.payment_margin_sec


def program_from_settings(name: str, settings: Settings) -> ClaimProgram:
    shares = {
        AGENT_PROGRAM: settings.agent_creator_share_pct,
        CLAW_PROGRAM: settings.claw_creator_share_pct,
    }
    if name not in shares:
        raise ValueError(f"Unknown claim program: {name}")

    max_single = settings.claim_max_single_sol
    return ClaimProgram(
        name=name,
        creator_share_pct=Decimal(str(shares[name])),
        min_claim_sol=Decimal(str(settings.claim_min_sol)),
        cooldown_sec=settings.claim_cooldown_sec,
        lock_duration_sec=settings.claim_lock_sec,
        payment_margin_sec=settings.claim_payment_margin_sec,
        reserve_buffer_sol=Decimal(str(settings.claim_reserve_buffer_sol)),
        max_single_claim_sol=Decimal(str(max_single)) if max_single else None,
    )
