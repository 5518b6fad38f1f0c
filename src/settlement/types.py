"""Settlement value types shared by the ledger, stores and API layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import StrEnum


class DistributionType(StrEnum):
    CREATOR_CLAIM = "creator_claim"  # creator-initiated claim
    CREATOR = "creator"  # automatic distribution


class DistributionStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ClaimStatus(StrEnum):
    COMPLETED = "completed"
    INVALID_INPUT = "invalid_input"
    NO_TOKENS = "no_tokens"
    RATE_LIMITED = "rate_limited"
    BELOW_MINIMUM = "below_minimum"
    LOCKED = "locked"
    NOTHING_LEFT = "nothing_left"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    PAYMENT_FAILED = "payment_failed"


@dataclass(frozen=True)
class FeeClaimRecord:
    """SOL actually collected from a pool's fee vault."""

    token_id: str
    claimed_sol: Decimal
    created_at: datetime | None = None


@dataclass(frozen=True)
class DistributionRecord:
    """A payout already made (or attempted) to a beneficiary."""

    token_id: str
    beneficiary_key: str
    amount_sol: Decimal
    distribution_type: DistributionType = DistributionType.CREATOR_CLAIM
    status: DistributionStatus = DistributionStatus.COMPLETED
    signature: str | None = None
    payout_wallet: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class TransferResult:
    """Outcome of one treasury → beneficiary SOL transfer."""

    success: bool
    signature: str | None = None
    error: str | None = None
    outcome_unknown: bool = False  # submitted but never confirmed; may still land


@dataclass
class ClaimableBalance:
    claimable: Decimal
    total_earned: Decimal
    total_paid: Decimal
    earned_by_token: dict[str, Decimal] = field(default_factory=dict)
    paid_by_token: dict[str, Decimal] = field(default_factory=dict)
    capped: bool = False


@dataclass(frozen=True)
class CooldownStatus:
    can_claim: bool
    remaining_seconds: int = 0
    next_claim_at: datetime | None = None
    last_claim_at: datetime | None = None


@dataclass
class ClaimResult:
    """Structured outcome of a claim attempt. Rejections are values, not exceptions."""

    status: ClaimStatus
    reason: str = ""
    claimed_amount: Decimal = Decimal("0")
    pending_amount: Decimal | None = None
    signature: str | None = None
    payout_wallet: str | None = None
    remaining_seconds: int = 0
    next_claim_at: datetime | None = None
    tokens_claimed: int = 0

    @property
    def success(self) -> bool:
        return self.status is ClaimStatus.COMPLETED


@dataclass(frozen=True)
class ClaimStatusReport:
    """Read-only claim preview for a beneficiary."""

    can_claim: bool
    remaining_seconds: int
    next_claim_at: datetime | None
    pending_amount: Decimal
    total_earned: Decimal
    total_claimed: Decimal
    min_claim_amount: Decimal
    meets_minimum: bool
    token_count: int
