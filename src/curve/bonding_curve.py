"""Bonding curve pricing — constant-product quotes on virtual reserves.

Pure functions: no I/O, no state. Every quote runs under a private decimal
context so results are identical regardless of the caller's context.

Amounts are quantized DOWN to 9 decimals (lamports / token base units),
so a quote never promises more than the pool can deliver.
Prices and price impact keep full context precision.

Callers validate input (``validate_trade_amount``) before quoting;
the engine trusts its inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import ROUND_DOWN, ROUND_HALF_EVEN, Context, Decimal, InvalidOperation, localcontext

from src.exceptions import InvalidInputError

AMOUNT_SCALE = Decimal("0.000000001")  # 9 dp
HUNDRED = Decimal("100")
ZERO = Decimal("0")

_CURVE_CONTEXT = Context(prec=50, rounding=ROUND_HALF_EVEN)


def to_decimal(value: int | float | str | Decimal) -> Decimal:
    """Convert to Decimal. Floats go through str() to avoid binary noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def quantize_amount(value: Decimal) -> Decimal:
    return value.quantize(AMOUNT_SCALE, rounding=ROUND_DOWN)


@dataclass(frozen=True)
class ReserveSnapshot:
    """Virtual + real reserves of one bonding-curve market."""

    virtual_sol_reserves: Decimal
    virtual_token_reserves: Decimal
    real_sol_reserves: Decimal = ZERO
    real_token_reserves: Decimal = ZERO

    @classmethod
    def from_values(
        cls,
        virtual_sol: int | float | str | Decimal,
        virtual_token: int | float | str | Decimal,
        real_sol: int | float | str | Decimal = 0,
        real_token: int | float | str | Decimal = 0,
    ) -> ReserveSnapshot:
        return cls(
            virtual_sol_reserves=to_decimal(virtual_sol),
            virtual_token_reserves=to_decimal(virtual_token),
            real_sol_reserves=to_decimal(real_sol),
            real_token_reserves=to_decimal(real_token),
        )

    @property
    def effective_sol(self) -> Decimal:
        with localcontext(_CURVE_CONTEXT):
            return self.virtual_sol_reserves + self.real_sol_reserves

    @property
    def effective_token(self) -> Decimal:
        with localcontext(_CURVE_CONTEXT):
            return self.virtual_token_reserves - self.real_token_reserves

    @property
    def spot_price(self) -> Decimal:
        """SOL per token at the current curve position."""
        with localcontext(_CURVE_CONTEXT):
            return self.effective_sol / self.effective_token


@dataclass(frozen=True)
class Quote:
    """Result of a hypothetical trade against a reserve snapshot."""

    output_amount: Decimal
    price_impact_pct: Decimal
    new_spot_price: Decimal
    spot_price_before: Decimal
    execution_price: Decimal


def _zero_quote(spot: Decimal) -> Quote:
    return Quote(
        output_amount=ZERO,
        price_impact_pct=ZERO,
        new_spot_price=spot,
        spot_price_before=spot,
        execution_price=spot,
    )


def quote_buy(sol_in: Decimal, reserves: ReserveSnapshot) -> Quote:
    """Tokens received for ``sol_in`` SOL, holding k = sol * token constant."""
    with localcontext(_CURVE_CONTEXT):
        sol = reserves.effective_sol
        token = reserves.effective_token
        spot_before = sol / token
        if sol_in == 0:
            return _zero_quote(spot_before)

        k = sol * token
        new_sol = sol + sol_in
        new_token = k / new_sol
        tokens_out = token - new_token

        execution_price = sol_in / tokens_out if tokens_out > 0 else spot_before
        impact = abs(execution_price - spot_before) / spot_before * HUNDRED

        return Quote(
            output_amount=quantize_amount(tokens_out),
            price_impact_pct=impact,
            new_spot_price=new_sol / new_token,
            spot_price_before=spot_before,
            execution_price=execution_price,
        )


def quote_sell(tokens_in: Decimal, reserves: ReserveSnapshot) -> Quote:
    """SOL received for ``tokens_in`` tokens, holding k constant."""
    with localcontext(_CURVE_CONTEXT):
        sol = reserves.effective_sol
        token = reserves.effective_token
        spot_before = sol / token
        if tokens_in == 0:
            return _zero_quote(spot_before)

        k = sol * token
        new_token = token + tokens_in
        new_sol = k / new_token
        sol_out = sol - new_sol

        execution_price = sol_out / tokens_in
        impact = abs(execution_price - spot_before) / spot_before * HUNDRED

        return Quote(
            output_amount=quantize_amount(sol_out),
            price_impact_pct=impact,
            new_spot_price=new_sol / new_token,
            spot_price_before=spot_before,
            execution_price=execution_price,
        )


def apply_buy(sol_in: Decimal, reserves: ReserveSnapshot) -> ReserveSnapshot:
    """Snapshot after a buy settles at its quoted output."""
    quote = quote_buy(sol_in, reserves)
    with localcontext(_CURVE_CONTEXT):
        return replace(
            reserves,
            real_sol_reserves=reserves.real_sol_reserves + sol_in,
            real_token_reserves=reserves.real_token_reserves + quote.output_amount,
        )


def apply_sell(tokens_in: Decimal, reserves: ReserveSnapshot) -> ReserveSnapshot:
    """Snapshot after a sell settles at its quoted output."""
    quote = quote_sell(tokens_in, reserves)
    with localcontext(_CURVE_CONTEXT):
        return replace(
            reserves,
            real_sol_reserves=reserves.real_sol_reserves - quote.output_amount,
            real_token_reserves=reserves.real_token_reserves - tokens_in,
        )


def graduation_progress(reserves: ReserveSnapshot, threshold_sol: Decimal) -> Decimal:
    """Percent of the graduation threshold filled by real SOL, capped at 100."""
    if threshold_sol <= 0:
        return ZERO
    with localcontext(_CURVE_CONTEXT):
        progress = reserves.real_sol_reserves / threshold_sol * HUNDRED
        return min(progress, HUNDRED)


def is_graduated(reserves: ReserveSnapshot, threshold_sol: Decimal) -> bool:
    return graduation_progress(reserves, threshold_sol) >= HUNDRED


def market_cap_sol(reserves: ReserveSnapshot, total_supply: Decimal) -> Decimal:
    with localcontext(_CURVE_CONTEXT):
        return reserves.spot_price * total_supply


def min_output_with_slippage(quote: Quote, slippage_pct: Decimal) -> Decimal:
    """Lowest output still acceptable at the given slippage tolerance."""
    with localcontext(_CURVE_CONTEXT):
        factor = (HUNDRED - slippage_pct) / HUNDRED
        return quantize_amount(quote.output_amount * max(factor, ZERO))


def validate_trade_amount(amount: int | float | str | Decimal) -> Decimal:
    """Caller-side check before quoting. Zero is allowed (empty quote)."""
    try:
        value = to_decimal(amount)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise InvalidInputError(f"Trade amount is not a number: {amount!r}") from e
    if not value.is_finite():
        raise InvalidInputError(f"Trade amount must be finite: {amount!r}")
    if value < 0:
        raise InvalidInputError(f"Trade amount must be >= 0: {amount!r}")
    return value


def validate_reserves(reserves: ReserveSnapshot) -> ReserveSnapshot:
    """Reject snapshots whose effective reserves are not strictly positive."""
    for name in (
        "virtual_sol_reserves",
        "virtual_token_reserves",
        "real_sol_reserves",
        "real_token_reserves",
    ):
        value = getattr(reserves, name)
        if not value.is_finite() or value < 0:
            raise InvalidInputError(f"{name} must be a finite non-negative number")
    if reserves.effective_sol <= 0 or reserves.effective_token <= 0:
        raise InvalidInputError("Effective reserves must be strictly positive")
    return reserves
