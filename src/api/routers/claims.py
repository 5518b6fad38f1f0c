"""Creator fee claim endpoints — status preview and payout."""

from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, Field

from config.settings import settings
from src.api.app import limiter
from src.api.dependencies import get_ledger
from src.exceptions import DistributionRecordingError
from src.settlement.ledger import FeeSettlementLedger
from src.settlement.types import ClaimResult, ClaimStatus

router = APIRouter(prefix="/api/v1/claims", tags=["claims"])

_HTTP_STATUS: dict[ClaimStatus, int] = {
    ClaimStatus.COMPLETED: 200,
    ClaimStatus.INVALID_INPUT: 400,
    ClaimStatus.BELOW_MINIMUM: 400,
    ClaimStatus.NO_TOKENS: 404,
    ClaimStatus.NOTHING_LEFT: 409,
    ClaimStatus.LOCKED: 423,
    ClaimStatus.RATE_LIMITED: 429,
    ClaimStatus.PAYMENT_FAILED: 502,
    ClaimStatus.INSUFFICIENT_FUNDS: 503,
}


class ClaimRequest(BaseModel):
    beneficiary: str = Field(min_length=1, max_length=65)
    payout_wallet: str = Field(min_length=32, max_length=44)
    token_ids: list[str] | None = Field(None, max_length=500)


def _dec(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


def _result_payload(program: str, result: ClaimResult) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "success": result.success,
        "program": program,
        "status": str(result.status),
    }
    if result.success:
        payload.update(
            claimed_amount=str(result.claimed_amount),
            payout_wallet=result.payout_wallet,
            signature=result.signature,
            solscan_url=f"https://solscan.io/tx/{result.signature}",
            tokens_claimed=result.tokens_claimed,
        )
    else:
        payload["error"] = result.reason
        if result.signature:
            payload["signature"] = result.signature
    if result.pending_amount is not None:
        payload["pending_amount"] = _dec(result.pending_amount)
    if result.status is ClaimStatus.RATE_LIMITED:
        payload["rate_limited"] = True
        payload["remaining_seconds"] = result.remaining_seconds
    if result.status is ClaimStatus.LOCKED:
        payload["locked"] = True
    if result.next_claim_at is not None:
        payload["next_claim_at"] = result.next_claim_at.isoformat()
    return payload


@router.get("/{program}/status")
async def claim_status(
    program: str,
    beneficiary: str = Query(..., min_length=1, max_length=65),
    token_ids: list[str] | None = Query(None),
    ledger: FeeSettlementLedger = Depends(get_ledger),
) -> dict[str, Any]:
    """Cooldown and claimable balance for a beneficiary — no payment."""
    report = await ledger.get_claim_status(beneficiary, token_ids)
    return {
        "success": True,
        "program": program,
        "can_claim": report.can_claim,
        "remaining_seconds": report.remaining_seconds,
        "next_claim_at": report.next_claim_at.isoformat() if report.next_claim_at else None,
        "pending_amount": str(report.pending_amount),
        "total_earned": str(report.total_earned),
        "total_claimed": str(report.total_claimed),
        "min_claim_amount": str(report.min_claim_amount),
        "meets_minimum": report.meets_minimum,
        "token_count": report.token_count,
    }


@router.post("/{program}")
@limiter.limit(settings.api_claim_rate_limit)
async def claim_fees(
    request: Request,
    program: str,
    body: ClaimRequest,
    ledger: FeeSettlementLedger = Depends(get_ledger),
) -> JSONResponse:
    """Pay out a beneficiary's claimable creator fees."""
    try:
        result = await ledger.claim(body.beneficiary, body.payout_wallet, body.token_ids)
    except DistributionRecordingError as e:
        logger.critical(f"[API] {program} claim needs reconciliation: sig={e.signature} amount={e.amount}")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "program": program,
                "status": "recording_failed",
                "error": "Payment sent but not recorded. Support has been notified.",
                "signature": e.signature,
            },
        )

    return JSONResponse(
        status_code=_HTTP_STATUS[result.status],
        content=_result_payload(program, result),
    )
