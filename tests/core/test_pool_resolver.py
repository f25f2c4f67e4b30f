# [TESTER] v1

from __future__ import annotations

import pytest

from flashlever.core.errors import InvalidAction, PoolNotFound
from flashlever.core.pool_resolver import pool_id, reserves_of, resolve_reserves
from flashlever.core.tick_math import Q96
from flashlever.integration.venues import ConcentratedVenue, ConstantProductVenue
from flashlever.state.balances import BalanceTable
from flashlever.state.pools import PoolKind, sort_assets


def test_pool_id_is_order_independent_and_kind_scoped() -> None:
    assert pool_id("A", "B") == pool_id("B", "A")
    assert pool_id("A", "B").startswith("0x")
    cl = pool_id("A", "B", 3_000, kind=PoolKind.CONCENTRATED)
    assert cl != pool_id("A", "B")
    assert cl != pool_id("A", "B", 500, kind=PoolKind.CONCENTRATED)


def test_pool_id_rejects_bad_pairs_and_fee_usage() -> None:
    with pytest.raises(InvalidAction):
        pool_id("A", "A")
    with pytest.raises(InvalidAction):
        pool_id("A", "B", 30)
    with pytest.raises(InvalidAction):
        pool_id("A", "B", kind=PoolKind.CONCENTRATED)


def test_sort_assets_is_lexicographic() -> None:
    assert sort_assets("b", "a") == ("a", "b")
    assert sort_assets("WETH", "USDC") == ("USDC", "WETH")


def test_reserves_follow_requested_order() -> None:
    bank = BalanceTable()
    bank.set("lp", "A", 5_000)
    bank.set("lp", "B", 10_000)
    venue = ConstantProductVenue(bank)
    pid = venue.create_pool("lp", "B", 10_000, "A", 5_000)
    assert pid == pool_id("A", "B")
    assert reserves_of(venue, pid, "A", "B") == (5_000, 10_000)
    assert reserves_of(venue, pid, "B", "A") == (10_000, 5_000)
    assert resolve_reserves(venue, "B", "A") == (10_000, 5_000)
    with pytest.raises(PoolNotFound):
        reserves_of(venue, pid, "A", "C")


def test_unknown_pool_fails_closed() -> None:
    venue = ConstantProductVenue(BalanceTable())
    with pytest.raises(PoolNotFound):
        resolve_reserves(venue, "A", "B")


def test_concentrated_pool_reports_virtual_reserves() -> None:
    bank = BalanceTable()
    bank.set("lp", "A", 10**7)
    bank.set("lp", "B", 10**7)
    venue = ConcentratedVenue(bank)
    venue.create_pool("lp", "A", "B", 3_000, sqrt_price_x96=Q96, liquidity=10**6)
    assert resolve_reserves(venue, "A", "B", 3_000) == (10**6, 10**6)
    with pytest.raises(PoolNotFound):
        resolve_reserves(venue, "A", "B", 500)
