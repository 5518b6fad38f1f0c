"""Bonding curve quote endpoints — buy/sell preview before a trade is built."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel, Field

from config.settings import settings
from src.curve.bonding_curve import (
    Quote,
    ReserveSnapshot,
    graduation_progress,
    is_graduated,
    market_cap_sol,
    min_output_with_slippage,
    quote_buy,
    quote_sell,
    validate_reserves,
    validate_trade_amount,
)
from src.exceptions import InvalidInputError

router = APIRouter(prefix="/api/v1/quotes", tags=["quotes"])


class ReservesIn(BaseModel):
    virtual_sol_reserves: Decimal
    virtual_token_reserves: Decimal
    real_sol_reserves: Decimal = Decimal("0")
    real_token_reserves: Decimal = Decimal("0")


class QuoteRequest(BaseModel):
    amount: Decimal
    reserves: ReservesIn | None = None  # fresh launch curve when omitted
    slippage_pct: Decimal | None = Field(None, ge=0, le=100)  # settings default when omitted


def _default_reserves() -> ReserveSnapshot:
    return ReserveSnapshot.from_values(
        settings.curve_initial_virtual_sol,
        settings.curve_total_supply,
    )


def _snapshot(body: QuoteRequest) -> ReserveSnapshot:
    if body.reserves is None:
        return _default_reserves()
    return validate_reserves(
        ReserveSnapshot(
            virtual_sol_reserves=body.reserves.virtual_sol_reserves,
            virtual_token_reserves=body.reserves.virtual_token_reserves,
            real_sol_reserves=body.reserves.real_sol_reserves,
            real_token_reserves=body.reserves.real_token_reserves,
        )
    )


def _quote_payload(
    side: str,
    amount: Decimal,
    quote: Quote,
    reserves: ReserveSnapshot,
    slippage_pct: Decimal,
) -> dict[str, Any]:
    threshold = Decimal(str(settings.curve_graduation_threshold_sol))
    payload: dict[str, Any] = {
        "side": side,
        "input_amount": str(amount),
        "output_amount": str(quote.output_amount),
        "price_impact_pct": str(quote.price_impact_pct),
        "spot_price_before": str(quote.spot_price_before),
        "execution_price": str(quote.execution_price),
        "new_spot_price": str(quote.new_spot_price),
        "market_cap_sol": str(market_cap_sol(reserves, Decimal(settings.curve_total_supply))),
        "graduation_progress_pct": str(graduation_progress(reserves, threshold)),
        "is_graduated": is_graduated(reserves, threshold),
        "slippage_pct": str(slippage_pct),
        "min_output": str(min_output_with_slippage(quote, slippage_pct)),
    }
    return payload


def _slippage(body: QuoteRequest) -> Decimal:
    if body.slippage_pct is None:
        return Decimal(str(settings.curve_default_slippage_pct))
    return body.slippage_pct


def _require_bonding(reserves: ReserveSnapshot) -> None:
    if is_graduated(reserves, Decimal(str(settings.curve_graduation_threshold_sol))):
        raise InvalidInputError("Token has graduated; trade on the DEX pool instead")


@router.post("/buy")
async def buy_quote(body: QuoteRequest) -> dict[str, Any]:
    """Tokens out for a SOL amount."""
    amount = validate_trade_amount(body.amount)
    reserves = _snapshot(body)
    _require_bonding(reserves)
    quote = quote_buy(amount, reserves)
    return _quote_payload("buy", amount, quote, reserves, _slippage(body))


@router.post("/sell")
async def sell_quote(body: QuoteRequest) -> dict[str, Any]:
    """SOL out for a token amount."""
    amount = validate_trade_amount(body.amount)
    reserves = _snapshot(body)
    _require_bonding(reserves)
    quote = quote_sell(amount, reserves)
    return _quote_payload("sell", amount, quote, reserves, _slippage(body))
