"""
Concentrated-liquidity swap kernel (single active range).

Prices are tracked as sqrt(price) in Q64.96 fixed point, where price is
token1 per token0. A pool holds liquidity `L` over one active range; a swap
step moves the sqrt price along the curve and never crosses a tick boundary,
so running out of range is a liquidity failure rather than a tick transition.

Rounding follows the usual concentrated-liquidity rules:
- amounts owed to the pool round up,
- amounts paid out by the pool round down,
- the next sqrt price is rounded in the direction that keeps the pool solvent.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import InsufficientInput, InsufficientLiquidity, InsufficientOutput, InvalidAction
from .uint import (
    UINT128_MAX,
    UINT160_MAX,
    UINT256_MAX,
    checked,
    div_round_up,
    mul_div,
    mul_div_rounding_up,
    require_uint,
)

Q96 = 1 << 96
FEE_DENOM = 1_000_000

MIN_SQRT_RATIO = 4295128739
MAX_SQRT_RATIO = 1461446703485210103287273052203988822378723970342


@dataclass(frozen=True)
class SwapStep:
    sqrt_price_next_x96: int
    amount_in: int  # excludes fee
    amount_out: int
    fee_amount: int

    @property
    def amount_in_with_fee(self) -> int:
        return self.amount_in + self.fee_amount


def _require_fee_pips(fee_pips: int) -> int:
    if not isinstance(fee_pips, int) or isinstance(fee_pips, bool):
        raise InvalidAction("fee must be an int")
    if not (0 <= fee_pips < FEE_DENOM):
        raise InvalidAction(f"fee must be in [0, {FEE_DENOM}): {fee_pips}")
    return fee_pips


def _require_sqrt_price(sqrt_price_x96: int) -> int:
    require_uint(sqrt_price_x96, name="sqrt_price_x96", bound=UINT160_MAX)
    if not (MIN_SQRT_RATIO <= sqrt_price_x96 < MAX_SQRT_RATIO):
        raise InsufficientLiquidity(f"sqrt price out of range: {sqrt_price_x96}")
    return sqrt_price_x96


def get_amount0_delta(sqrt_a_x96: int, sqrt_b_x96: int, liquidity: int, round_up: bool) -> int:
    """Token0 amount between two sqrt prices: L * (sqrt_b - sqrt_a) / (sqrt_a * sqrt_b)."""
    if sqrt_a_x96 > sqrt_b_x96:
        sqrt_a_x96, sqrt_b_x96 = sqrt_b_x96, sqrt_a_x96
    if sqrt_a_x96 <= 0:
        raise InsufficientLiquidity("sqrt price must be positive")
    numerator1 = liquidity << 96
    numerator2 = sqrt_b_x96 - sqrt_a_x96
    if round_up:
        return checked(div_round_up(mul_div_rounding_up(numerator1, numerator2, sqrt_b_x96), sqrt_a_x96))
    return mul_div(numerator1, numerator2, sqrt_b_x96) // sqrt_a_x96


def get_amount1_delta(sqrt_a_x96: int, sqrt_b_x96: int, liquidity: int, round_up: bool) -> int:
    """Token1 amount between two sqrt prices: L * (sqrt_b - sqrt_a)."""
    if sqrt_a_x96 > sqrt_b_x96:
        sqrt_a_x96, sqrt_b_x96 = sqrt_b_x96, sqrt_a_x96
    if round_up:
        return mul_div_rounding_up(liquidity, sqrt_b_x96 - sqrt_a_x96, Q96)
    return mul_div(liquidity, sqrt_b_x96 - sqrt_a_x96, Q96)


def _next_sqrt_price_from_amount0_rounding_up(sqrt_price_x96: int, liquidity: int, amount: int, add: bool) -> int:
    if amount == 0:
        return sqrt_price_x96
    numerator1 = liquidity << 96
    product = amount * sqrt_price_x96
    if add:
        return mul_div_rounding_up(numerator1, sqrt_price_x96, numerator1 + product)
    if numerator1 <= product:
        raise InsufficientLiquidity("output exceeds token0 available in range")
    return checked(mul_div_rounding_up(numerator1, sqrt_price_x96, numerator1 - product), bound=UINT160_MAX)


def _next_sqrt_price_from_amount1_rounding_down(sqrt_price_x96: int, liquidity: int, amount: int, add: bool) -> int:
    if add:
        quotient = (amount << 96) // liquidity
        return checked(sqrt_price_x96 + quotient, name="sqrt_price", bound=UINT160_MAX)
    quotient = div_round_up(amount << 96, liquidity)
    if sqrt_price_x96 <= quotient:
        raise InsufficientLiquidity("output exceeds token1 available in range")
    return sqrt_price_x96 - quotient


def get_next_sqrt_price_from_input(sqrt_price_x96: int, liquidity: int, amount_in: int, zero_for_one: bool) -> int:
    if liquidity <= 0:
        raise InsufficientLiquidity("no active liquidity")
    if zero_for_one:
        return _next_sqrt_price_from_amount0_rounding_up(sqrt_price_x96, liquidity, amount_in, True)
    return _next_sqrt_price_from_amount1_rounding_down(sqrt_price_x96, liquidity, amount_in, True)


def get_next_sqrt_price_from_output(sqrt_price_x96: int, liquidity: int, amount_out: int, zero_for_one: bool) -> int:
    if liquidity <= 0:
        raise InsufficientLiquidity("no active liquidity")
    if zero_for_one:
        return _next_sqrt_price_from_amount1_rounding_down(sqrt_price_x96, liquidity, amount_out, False)
    return _next_sqrt_price_from_amount0_rounding_up(sqrt_price_x96, liquidity, amount_out, False)


def _require_in_range(sqrt_price_next_x96: int) -> None:
    if not (MIN_SQRT_RATIO <= sqrt_price_next_x96 < MAX_SQRT_RATIO):
        raise InsufficientLiquidity("swap moves price outside the active range")


def compute_swap_exact_in(
    *,
    sqrt_price_x96: int,
    liquidity: int,
    amount_in: int,
    fee_pips: int,
    zero_for_one: bool,
) -> SwapStep:
    """
    One exact-in step: the whole `amount_in` (fee included) is consumed.

    Raises InsufficientInput if nothing is left after the fee and
    InsufficientOutput if the trade is too small to move any output.
    """
    _require_sqrt_price(sqrt_price_x96)
    require_uint(liquidity, name="liquidity", bound=UINT128_MAX)
    require_uint(amount_in, name="amount_in", bound=UINT256_MAX)
    _require_fee_pips(fee_pips)
    if amount_in == 0:
        raise InsufficientInput("amount_in must be positive")

    amount_less_fee = mul_div(amount_in, FEE_DENOM - fee_pips, FEE_DENOM)
    if amount_less_fee == 0:
        raise InsufficientInput("amount_in does not cover the fee")
    sqrt_next = get_next_sqrt_price_from_input(sqrt_price_x96, liquidity, amount_less_fee, zero_for_one)
    _require_in_range(sqrt_next)

    if zero_for_one:
        used = get_amount0_delta(sqrt_next, sqrt_price_x96, liquidity, True)
        amount_out = get_amount1_delta(sqrt_next, sqrt_price_x96, liquidity, False)
    else:
        used = get_amount1_delta(sqrt_price_x96, sqrt_next, liquidity, True)
        amount_out = get_amount0_delta(sqrt_price_x96, sqrt_next, liquidity, False)
    if amount_out == 0:
        raise InsufficientOutput("trade too small to produce output")
    # The range is never exhausted within a step, so the remainder is fee.
    return SwapStep(
        sqrt_price_next_x96=sqrt_next,
        amount_in=used,
        amount_out=amount_out,
        fee_amount=amount_in - used,
    )


def compute_swap_exact_out(
    *,
    sqrt_price_x96: int,
    liquidity: int,
    amount_out: int,
    fee_pips: int,
    zero_for_one: bool,
) -> SwapStep:
    """One exact-out step: delivers exactly `amount_out`, charges the fee on top of the input."""
    _require_sqrt_price(sqrt_price_x96)
    require_uint(liquidity, name="liquidity", bound=UINT128_MAX)
    require_uint(amount_out, name="amount_out", bound=UINT256_MAX)
    _require_fee_pips(fee_pips)
    if amount_out == 0:
        raise InsufficientOutput("amount_out must be positive")

    sqrt_next = get_next_sqrt_price_from_output(sqrt_price_x96, liquidity, amount_out, zero_for_one)
    _require_in_range(sqrt_next)

    if zero_for_one:
        amount_in = get_amount0_delta(sqrt_next, sqrt_price_x96, liquidity, True)
    else:
        amount_in = get_amount1_delta(sqrt_price_x96, sqrt_next, liquidity, True)
    fee_amount = mul_div_rounding_up(amount_in, fee_pips, FEE_DENOM - fee_pips)
    return SwapStep(
        sqrt_price_next_x96=sqrt_next,
        amount_in=amount_in,
        amount_out=amount_out,
        fee_amount=fee_amount,
    )


def virtual_reserves(sqrt_price_x96: int, liquidity: int) -> tuple[int, int]:
    """(token0, token1) reserves a constant-product pool with the same L and price would hold."""
    _require_sqrt_price(sqrt_price_x96)
    return (liquidity << 96) // sqrt_price_x96, mul_div(liquidity, sqrt_price_x96, Q96)
