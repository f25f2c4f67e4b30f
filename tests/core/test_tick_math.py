# [TESTER] v1

from __future__ import annotations

import math

import pytest

from flashlever.core.errors import InsufficientInput, InsufficientLiquidity, InsufficientOutput, InvalidAction
from flashlever.core.tick_math import (
    FEE_DENOM,
    MIN_SQRT_RATIO,
    Q96,
    compute_swap_exact_in,
    compute_swap_exact_out,
    get_amount0_delta,
    get_amount1_delta,
    virtual_reserves,
)

L = 10**6


def test_virtual_reserves_at_unit_price() -> None:
    assert virtual_reserves(Q96, L) == (L, L)


def test_virtual_reserves_track_price() -> None:
    sqrt_p = math.isqrt(4 << 192)  # price 4: token1 per token0
    r0, r1 = virtual_reserves(sqrt_p, L)
    assert r0 == L // 2
    assert r1 == 2 * L


def test_amount_delta_rounding_brackets_exact_value() -> None:
    a, b = Q96, Q96 + Q96 // 7
    for fn in (get_amount0_delta, get_amount1_delta):
        up = fn(a, b, L, True)
        down = fn(a, b, L, False)
        assert 0 <= up - down <= 1
        assert fn(b, a, L, True) == up


@pytest.mark.parametrize("zero_for_one", [True, False])
def test_exact_out_delivers_exact_amount_and_charges_fee(zero_for_one: bool) -> None:
    step = compute_swap_exact_out(
        sqrt_price_x96=Q96, liquidity=L, amount_out=1_000, fee_pips=3_000, zero_for_one=zero_for_one
    )
    assert step.amount_out == 1_000
    # Price impact at 0.1% of depth: a little over 1_000 before fees.
    assert 1_000 < step.amount_in <= 1_003
    assert step.fee_amount == -(-step.amount_in * 3_000 // (FEE_DENOM - 3_000))
    if zero_for_one:
        assert step.sqrt_price_next_x96 < Q96
    else:
        assert step.sqrt_price_next_x96 > Q96


@pytest.mark.parametrize("zero_for_one", [True, False])
def test_paying_exact_out_quote_as_input_covers_the_output(zero_for_one: bool) -> None:
    out_step = compute_swap_exact_out(
        sqrt_price_x96=Q96, liquidity=L, amount_out=5_000, fee_pips=500, zero_for_one=zero_for_one
    )
    in_step = compute_swap_exact_in(
        sqrt_price_x96=Q96,
        liquidity=L,
        amount_in=out_step.amount_in_with_fee,
        fee_pips=500,
        zero_for_one=zero_for_one,
    )
    assert in_step.amount_out >= 5_000
    assert in_step.amount_in_with_fee == out_step.amount_in_with_fee


def test_exact_in_consumes_whole_input() -> None:
    step = compute_swap_exact_in(sqrt_price_x96=Q96, liquidity=L, amount_in=10_000, fee_pips=3_000, zero_for_one=True)
    assert step.amount_in + step.fee_amount == 10_000
    assert 0 < step.amount_out < 10_000


def test_exact_in_errors() -> None:
    with pytest.raises(InsufficientInput):
        compute_swap_exact_in(sqrt_price_x96=Q96, liquidity=L, amount_in=0, fee_pips=3_000, zero_for_one=True)
    with pytest.raises(InsufficientInput):
        # Whole input eaten by the fee.
        compute_swap_exact_in(sqrt_price_x96=Q96, liquidity=L, amount_in=1, fee_pips=3_000, zero_for_one=True)
    with pytest.raises(InsufficientOutput):
        compute_swap_exact_in(sqrt_price_x96=Q96, liquidity=L, amount_in=1, fee_pips=0, zero_for_one=True)
    with pytest.raises(InvalidAction):
        compute_swap_exact_in(sqrt_price_x96=Q96, liquidity=L, amount_in=10, fee_pips=FEE_DENOM, zero_for_one=True)


def test_exact_out_beyond_range_is_insufficient_liquidity() -> None:
    with pytest.raises(InsufficientLiquidity):
        compute_swap_exact_out(sqrt_price_x96=Q96, liquidity=L, amount_out=L, fee_pips=3_000, zero_for_one=True)
    with pytest.raises(InsufficientLiquidity):
        compute_swap_exact_out(sqrt_price_x96=Q96, liquidity=L, amount_out=L, fee_pips=3_000, zero_for_one=False)
    with pytest.raises(InsufficientLiquidity):
        compute_swap_exact_out(
            sqrt_price_x96=MIN_SQRT_RATIO - 1, liquidity=L, amount_out=1, fee_pips=3_000, zero_for_one=True
        )
