"""Fee settlement ledger — claimable creator earnings and race-safe payouts.

Claim flow (one beneficiary):
1. Cooldown check (fast reject, no lock)
2. Claimable estimate vs minimum (fast reject, no lock)
3. Acquire beneficiary lock (atomic, expiring, owner token kept by this claim)
4. Re-verify claimable AND cooldown under the lock
5. Treasury balance check + transfer, bounded to finish before the lock expires
6. Append distribution rows, one per token, summing to the paid amount
7. Release lock with the owner token (always, in finally)

Step 4 is what prevents double payouts: two requests can both pass 1-2,
only the lock holder reaches 5, and it re-reads the ledger first.
Do not drop it as redundant.
"""

from __future__ import annotations

import asyncio
import math
import re
import time
from collections import defaultdict
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from loguru import logger

from src.curve.bonding_curve import quantize_amount
from src.exceptions import (
    DistributionRecordingError,
    InsufficientFundsError,
    InvalidInputError,
    PaymentError,
)
from src.settlement.programs import ClaimProgram
from src.settlement.stores import LedgerStore, LockStore, PaymentExecutor, TokenScopeResolver
from src.settlement.types import (
    ClaimableBalance,
    ClaimResult,
    ClaimStatus,
    ClaimStatusReport,
    CooldownStatus,
    DistributionRecord,
    DistributionStatus,
    DistributionType,
)
from src.trading.treasury import is_valid_address

if TYPE_CHECKING:
    from src.settlement.alerts import ClaimAlertDispatcher

ZERO = Decimal("0")
_HANDLE_RE = re.compile(r"^[a-z0-9_]{1,64}$")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class FeeSettlementLedger:
    """Computes and pays creator fee claims for one program."""

    def __init__(
        self,
        *,
        program: ClaimProgram,
        ledger: LedgerStore,
        locks: LockStore,
        payer: PaymentExecutor,
        scope_resolver: TokenScopeResolver | None = None,
        alert_dispatcher: ClaimAlertDispatcher | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._program = program
        self._ledger = ledger
        self._locks = locks
        self._payer = payer
        self._resolver = scope_resolver
        self._alerts = alert_dispatcher
        self._clock = clock

    @property
    def program(self) -> ClaimProgram:
        return self._program

    @staticmethod
    def normalize_beneficiary(raw: str | None) -> str:
        """'@SomeUser ' → 'someuser'. Raises InvalidInputError on malformed handles."""
        if not raw or not isinstance(raw, str):
            raise InvalidInputError("Beneficiary is required")
        key = raw.strip().lstrip("@").lower()
        if not _HANDLE_RE.match(key):
            raise InvalidInputError(f"Invalid beneficiary: {raw!r}")
        return key

    def _lock_key(self, beneficiary: str) -> str:
        return f"claim:{self._program.name}:{beneficiary}"

    # ─── Reads ───────────────────────────────────────────────────────

    async def resolve_scope(
        self,
        beneficiary: str,
        token_ids: Sequence[str] | None = None,
    ) -> list[str]:
        """Owned tokens, narrowed to ``token_ids`` when given."""
        requested = list(dict.fromkeys(token_ids or []))
        if self._resolver is None:
            return requested
        owned = await self._resolver.resolve(beneficiary)
        if not requested:
            return list(dict.fromkeys(owned))
        owned_set = set(owned)
        return [t for t in requested if t in owned_set]

    async def compute_claimable(
        self,
        beneficiary: str,
        token_scope: Sequence[str],
    ) -> ClaimableBalance:
        """earned = collected * share; claimable = max(0, earned - paid), capped."""
        scope = set(token_scope)
        if not scope:
            return ClaimableBalance(claimable=ZERO, total_earned=ZERO, total_paid=ZERO)

        share = self._program.creator_share_pct
        earned_by_token: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for fc in await self._ledger.fee_claims(scope):
            if fc.token_id in scope:
                earned_by_token[fc.token_id] += fc.claimed_sol * share

        paid_by_token: dict[str, Decimal] = defaultdict(lambda: ZERO)
        paid_rows = await self._ledger.distributions(
            beneficiary,
            scope,
            types=self._program.distribution_types,
            status=DistributionStatus.COMPLETED,
        )
        for d in paid_rows:
            if d.token_id in scope:
                paid_by_token[d.token_id] += d.amount_sol

        total_earned = sum(earned_by_token.values(), ZERO)
        total_paid = sum(paid_by_token.values(), ZERO)
        claimable = max(ZERO, total_earned - total_paid)

        capped = False
        ceiling = self._program.max_single_claim_sol
        if ceiling is not None and claimable > ceiling:
            claimable = ceiling
            capped = True

        return ClaimableBalance(
            claimable=quantize_amount(claimable),
            total_earned=total_earned,
            total_paid=total_paid,
            earned_by_token=dict(earned_by_token),
            paid_by_token=dict(paid_by_token),
            capped=capped,
        )

    async def check_cooldown(self, beneficiary: str) -> CooldownStatus:
        """Cooldown is per beneficiary across all tokens of the program."""
        last = await self._ledger.last_distribution_at(
            beneficiary,
            types=self._program.distribution_types,
            status=DistributionStatus.COMPLETED,
        )
        if last is None:
            return CooldownStatus(can_claim=True)
        if last.tzinfo is None:
            last = last.replace(tzinfo=UTC)

        now = self._clock()
        next_claim_at = last + timedelta(seconds=self._program.cooldown_sec)
        if now >= next_claim_at:
            return CooldownStatus(can_claim=True, last_claim_at=last)

        remaining = max(1, math.ceil((next_claim_at - now).total_seconds()))
        return CooldownStatus(
            can_claim=False,
            remaining_seconds=remaining,
            next_claim_at=next_claim_at,
            last_claim_at=last,
        )

    async def get_claim_status(
        self,
        beneficiary: str,
        token_ids: Sequence[str] | None = None,
    ) -> ClaimStatusReport:
        """Read-only preview: cooldown + claimable, no lock, no payment."""
        key = self.normalize_beneficiary(beneficiary)
        scope = await self.resolve_scope(key, token_ids)
        cooldown = await self.check_cooldown(key)
        balance = await self.compute_claimable(key, scope)
        return ClaimStatusReport(
            can_claim=cooldown.can_claim,
            remaining_seconds=cooldown.remaining_seconds,
            next_claim_at=cooldown.next_claim_at,
            pending_amount=balance.claimable,
            total_earned=balance.total_earned,
            total_claimed=balance.total_paid,
            min_claim_amount=self._program.min_claim_sol,
            meets_minimum=balance.claimable >= self._program.min_claim_sol,
            token_count=len(scope),
        )

    # ─── Lock ────────────────────────────────────────────────────────

    async def acquire_lock(self, beneficiary: str) -> str | None:
        """Owner token for the release, or None when another claim holds it."""
        return await self._locks.try_acquire(
            self._lock_key(beneficiary), self._program.lock_duration_sec
        )

    async def release_lock(self, beneficiary: str, token: str) -> None:
        await self._locks.release(self._lock_key(beneficiary), token)

    # ─── Writes ──────────────────────────────────────────────────────

    async def execute_payment(
        self,
        payout_wallet: str,
        amount: Decimal,
        *,
        deadline: float | None = None,
    ) -> str:
        """Fresh balance check, then a single transfer. Never retried.

        The transfer must finish by ``deadline`` (``time.monotonic()``); a
        claim sets it ``payment_margin_sec`` before its lock expires. A payer
        still running halfway into the margin is cancelled and the outcome
        is reported as unknown.
        """
        if deadline is None:
            deadline = time.monotonic() + self._program.payment_timeout_sec

        balance = await self._payer.get_balance()
        required = amount + self._program.reserve_buffer_sol
        if balance < required:
            raise InsufficientFundsError(balance, required)

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise PaymentError("No time left in the claim lock to send the transfer")
        try:
            result = await asyncio.wait_for(
                self._payer.transfer(payout_wallet, amount, timeout=remaining),
                timeout=remaining + self._program.payment_margin_sec / 2,
            )
        except TimeoutError as e:
            raise PaymentError(
                f"Transfer still running after {self._program.payment_timeout_sec}s, cancelled",
                outcome_unknown=True,
            ) from e
        if not result.success:
            raise PaymentError(
                result.error or "Transfer failed",
                signature=result.signature,
                outcome_unknown=result.outcome_unknown,
            )
        if not result.signature:
            raise PaymentError("Transfer returned no signature", outcome_unknown=True)
        return result.signature

    async def record_distribution(
        self,
        balance: ClaimableBalance,
        beneficiary: str,
        payout_wallet: str,
        amount: Decimal,
        signature: str,
    ) -> list[DistributionRecord]:
        """Append one completed row per token, split by per-token claimable.

        Rows sum exactly to ``amount``. Any failure is fatal: the payment
        already happened, so a missing row means a retry could pay twice.
        """
        try:
            records = self._split_distribution(
                balance, beneficiary, payout_wallet, amount, signature
            )
            await self._ledger.record_distributions(records)
        except Exception as e:
            logger.critical(
                f"[CLAIM] {self._program.name} @{beneficiary}: payment {signature} "
                f"({amount} SOL) succeeded but distribution write failed: {e}"
            )
            if self._alerts:
                await self._alerts.send_reconciliation_required(
                    program=self._program.name,
                    beneficiary=beneficiary,
                    amount_sol=amount,
                    signature=signature,
                    error=str(e),
                )
            raise DistributionRecordingError(
                f"Distribution recording failed after payment {signature}",
                signature=signature,
                amount=amount,
            ) from e
        return records

    def _split_distribution(
        self,
        balance: ClaimableBalance,
        beneficiary: str,
        payout_wallet: str,
        amount: Decimal,
        signature: str,
    ) -> list[DistributionRecord]:
        shares = {
            token_id: earned - balance.paid_by_token.get(token_id, ZERO)
            for token_id, earned in balance.earned_by_token.items()
        }
        shares = {t: s for t, s in shares.items() if s > 0}
        if not shares:
            # aggregate claimable > 0 implies a positive per-token share
            raise ValueError("No token with positive claimable balance")

        total_share = sum(shares.values(), ZERO)
        amounts = {t: quantize_amount(amount * s / total_share) for t, s in shares.items()}
        largest = max(shares, key=lambda t: (shares[t], t))
        amounts[largest] += amount - sum(amounts.values(), ZERO)

        return [
            DistributionRecord(
                token_id=token_id,
                beneficiary_key=beneficiary,
                amount_sol=amounts[token_id],
                distribution_type=DistributionType.CREATOR_CLAIM,
                status=DistributionStatus.COMPLETED,
                signature=signature,
                payout_wallet=payout_wallet,
            )
            for token_id in sorted(amounts)
            if amounts[token_id] > 0
        ]

    # ─── Claim ───────────────────────────────────────────────────────

    async def claim(
        self,
        beneficiary: str,
        payout_wallet: str,
        token_ids: Sequence[str] | None = None,
    ) -> ClaimResult:
        """Run the full claim state machine. Raises only DistributionRecordingError."""
        name = self._program.name
        min_claim = self._program.min_claim_sol

        try:
            key = self.normalize_beneficiary(beneficiary)
        except InvalidInputError as e:
            return ClaimResult(status=ClaimStatus.INVALID_INPUT, reason=str(e))
        if not payout_wallet or not is_valid_address(payout_wallet):
            return ClaimResult(status=ClaimStatus.INVALID_INPUT, reason="Invalid wallet address")

        scope = await self.resolve_scope(key, token_ids)
        if not scope:
            return ClaimResult(
                status=ClaimStatus.NO_TOKENS,
                reason=f"No tokens found to claim from for @{key}",
            )

        # Phase 1: estimate without the lock
        cooldown = await self.check_cooldown(key)
        balance = await self.compute_claimable(key, scope)
        if not cooldown.can_claim:
            return _rate_limited(cooldown, balance.claimable)
        if balance.claimable < min_claim:
            return ClaimResult(
                status=ClaimStatus.BELOW_MINIMUM,
                reason=f"Minimum claim is {min_claim} SOL. Current: {balance.claimable} SOL",
                pending_amount=balance.claimable,
            )

        lock_token = await self.acquire_lock(key)
        if lock_token is None:
            logger.info(f"[CLAIM] {name} : lock held by another claim")
            return ClaimResult(status=ClaimStatus.LOCKED, reason="Another claim in progress")
        payment_deadline = time.monotonic() + self._program.payment_timeout_sec

        try:
            # Phase 2: authoritative re-check under the lock
            balance = await self.compute_claimable(key, scope)
            if balance.claimable < min_claim:
                logger.info(
                    f"[CLAIM] {name} @{key}: nothing left after lock "
                    f"(claimable={balance.claimable}), concurrent claim won"
                )
                return ClaimResult(
                    status=ClaimStatus.NOTHING_LEFT,
                    reason="Fees were already claimed by a concurrent request",
                    pending_amount=balance.claimable,
                )
            cooldown = await self.check_cooldown(key)
            if not cooldown.can_claim:
                return _rate_limited(cooldown, balance.claimable)

            amount = balance.claimable
            logger.info(
                f"[CLAIM] {name} @{key}: earned={balance.total_earned:.9f} "
                f"paid={balance.total_paid:.9f} claiming={amount} "
                f"tokens={len(scope)}{' (capped)' if balance.capped else ''}"
            )

            try:
                signature = await self.execute_payment(
                    payout_wallet, amount, deadline=payment_deadline
                )
            except InsufficientFundsError as e:
                logger.error(f"[CLAIM] {name} @{key}: {e}")
                if self._alerts:
                    await self._alerts.send_insufficient_funds(
                        program=name, balance_sol=e.balance, required_sol=e.required
                    )
                return ClaimResult(
                    status=ClaimStatus.INSUFFICIENT_FUNDS,
                    reason="Insufficient treasury balance. Please try again later.",
                    pending_amount=amount,
                )
            except PaymentError as e:
                logger.error(f"[CLAIM] {name} @{key}: payment failed: {e} sig={e.signature}")
                if e.outcome_unknown and self._alerts:
                    await self._alerts.send_payment_unknown(
                        program=name,
                        beneficiary=key,
                        amount_sol=amount,
                        signature=e.signature,
                        error=str(e),
                    )
                return ClaimResult(
                    status=ClaimStatus.PAYMENT_FAILED,
                    reason=f"Payment failed: {e}",
                    pending_amount=amount,
                    signature=e.signature,
                )

            records = await self.record_distribution(balance, key, payout_wallet, amount, signature)

            logger.info(f"[CLAIM] {name} @{key}: sent {amount} SOL to {payout_wallet[:8]}…, sig={signature}")
            if self._alerts:
                await self._alerts.send_claim_completed(
                    program=name, beneficiary=key, amount_sol=amount, signature=signature
                )
            return ClaimResult(
                status=ClaimStatus.COMPLETED,
                reason="Claim completed",
                claimed_amount=amount,
                signature=signature,
                payout_wallet=payout_wallet,
                next_claim_at=self._clock() + timedelta(seconds=self._program.cooldown_sec),
                tokens_claimed=len(records),
            )
        finally:
            try:
                await self.release_lock(key, lock_token)
            except Exception as e:
                # lock expires on its own after lock_duration_sec
                logger.error(f"[LOCK] {name} @{key}: release failed: {e}")


def _rate_limited(cooldown: CooldownStatus, pending: Decimal) -> ClaimResult:
    minutes = cooldown.remaining_seconds // 60
    return ClaimResult(
        status=ClaimStatus.RATE_LIMITED,
        reason=f"Rate limited. Next claim in {minutes}m",
        pending_amount=pending,
        remaining_seconds=cooldown.remaining_seconds,
        next_claim_at=cooldown.next_claim_at,
    )
