# [TESTER] v1

from __future__ import annotations

import importlib.util

import pytest

from flashlever.core.errors import (
    ArithmeticOverflow,
    InsufficientInput,
    InsufficientLiquidity,
    InsufficientOutput,
    InvalidAction,
)
from flashlever.core.swap_math import chain_quote_in, chain_quote_out, quote_in_given_out, quote_out_given_in
from flashlever.core.uint import UINT256_MAX


def test_quote_in_given_out_matches_closed_form() -> None:
    # 100 A out of a (B=10_000, A=5_000) pool at 0.3%.
    expected = 10_000 * 100 * 10_000 // ((5_000 - 100) * 9_970) + 1
    assert expected == 205
    assert quote_in_given_out(100, 10_000, 5_000) == 205


def test_quote_out_given_in_is_floor_of_formula() -> None:
    # 205 * 9970 * 5000 / (10000 * 10000 + 205 * 9970) = 100.146...
    assert quote_out_given_in(205, 10_000, 5_000) == 100
    assert quote_out_given_in(1, 10_000, 5_000) == 0


def test_zero_fee_quotes() -> None:
    assert quote_out_given_in(100, 1_000, 1_000, fee_bps=0) == 90
    assert quote_in_given_out(90, 1_000, 1_000, fee_bps=0) == 1_000 * 90 // 910 + 1


def test_quote_errors() -> None:
    with pytest.raises(InsufficientInput):
        quote_out_given_in(0, 10, 10)
    with pytest.raises(InsufficientLiquidity):
        quote_out_given_in(1, 0, 10)
    with pytest.raises(InsufficientOutput):
        quote_in_given_out(0, 10, 10)
    with pytest.raises(InsufficientLiquidity):
        quote_in_given_out(10, 10, 10)
    with pytest.raises(InsufficientLiquidity):
        quote_in_given_out(1, 0, 10)
    with pytest.raises(InvalidAction):
        quote_out_given_in(-1, 10, 10)
    with pytest.raises(InvalidAction):
        quote_out_given_in(1, 10, 10, fee_bps=10_000)


def test_overflow_is_reported_not_wrapped() -> None:
    with pytest.raises(ArithmeticOverflow):
        quote_in_given_out(2, UINT256_MAX, 3)
    with pytest.raises(ArithmeticOverflow):
        quote_out_given_in(UINT256_MAX + 1, 10, 10)


def _static_reserves(table):
    def reserves(asset_in, asset_out):
        return table[(asset_in, asset_out)]

    return reserves


def test_chain_quote_in_is_reversed_relative_to_path() -> None:
    reserves = _static_reserves({("C", "B"): (20_000, 10_000), ("B", "A"): (10_000, 5_000)})
    amounts = chain_quote_in(["C", "B", "A"], 100, reserves=reserves)
    assert amounts[0] == 100
    assert amounts[1] == quote_in_given_out(100, 10_000, 5_000) == 205
    assert amounts[2] == quote_in_given_out(205, 20_000, 10_000)
    assert len(amounts) == 3


def test_chain_quote_out_is_forward() -> None:
    reserves = _static_reserves({("A", "B"): (5_000, 10_000), ("B", "C"): (10_000, 20_000)})
    amounts = chain_quote_out(["A", "B", "C"], 100, reserves=reserves)
    assert amounts[0] == 100
    assert amounts[1] == quote_out_given_in(100, 5_000, 10_000)
    assert amounts[2] == quote_out_given_in(amounts[1], 10_000, 20_000)


def test_chain_quote_rejects_short_or_degenerate_paths() -> None:
    reserves = _static_reserves({})
    with pytest.raises(InvalidAction):
        chain_quote_in(["A"], 1, reserves=reserves)
    with pytest.raises(InvalidAction):
        chain_quote_out(["A", "A"], 1, reserves=reserves)


if importlib.util.find_spec("hypothesis") is not None:  # pragma: no branch
    import hypothesis.strategies as st
    from hypothesis import assume, given, settings

    @settings(max_examples=300, deadline=None)
    @given(
        reserve_in=st.integers(min_value=1, max_value=10**24),
        reserve_out=st.integers(min_value=2, max_value=10**24),
        y_seed=st.integers(min_value=0, max_value=10**24),
        fee_bps=st.integers(min_value=0, max_value=1_000),
    )
    def test_exact_out_quote_never_underpays(reserve_in: int, reserve_out: int, y_seed: int, fee_bps: int) -> None:
        y = 1 + y_seed % (reserve_out - 1)
        x = quote_in_given_out(y, reserve_in, reserve_out, fee_bps)
        assert quote_out_given_in(x, reserve_in, reserve_out, fee_bps) >= y

    @settings(max_examples=200, deadline=None)
    @given(
        r1=st.tuples(st.integers(10**6, 10**9), st.integers(10**6, 10**9)),
        r2=st.tuples(st.integers(10**6, 10**9), st.integers(10**6, 10**9)),
        x=st.integers(min_value=1, max_value=10**2),
    )
    def test_chained_exact_out_round_trip_covers_target(r1, r2, x: int) -> None:
        reserves = _static_reserves({("A", "B"): r1, ("B", "C"): r2})
        path = ["A", "B", "C"]
        try:
            needed = chain_quote_in(path, x, reserves=reserves)[-1]
        except InsufficientLiquidity:
            assume(False)
        assert chain_quote_out(path, needed, reserves=reserves)[-1] >= x
