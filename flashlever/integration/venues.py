"""
In-process AMM venues: a constant-product venue and a concentrated-liquidity venue.

Both venues hold their pools' tokens in the shared BalanceTable under the pool id
and support flash swaps: output is transferred first, then the requester's
callback runs, then the pool verifies it has been paid. Each pool carries a
reentrancy lock, so a path that revisits a pool inside its own callback fails.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Callable, Dict, FrozenSet, Iterable, Optional, Set, Tuple

import structlog

from ..core.errors import (
    InsufficientInput,
    InsufficientLiquidity,
    InsufficientOutput,
    InvalidAction,
    PoolNotFound,
    VenueRejected,
)
from ..core.pool_resolver import pool_id as derive_pool_id
from ..core.tick_math import compute_swap_exact_in, compute_swap_exact_out, virtual_reserves
from ..core.uint import require_uint
from ..state.balances import Address, Amount, AssetId, BalanceTable
from ..state.pools import ConcentratedPoolState, ConstantProductPoolState, PoolKind, sort_assets

logger = structlog.get_logger(__name__)

BPS_DENOM = 10_000

# (caller, sender, amount0_out, amount1_out, data)
ConstantProductCallback = Callable[[str, Address, Amount, Amount, bytes], None]
# (caller, amount0_delta, amount1_delta, data)
ConcentratedCallback = Callable[[str, int, int, bytes], None]


class _LockedPools:
    def __init__(self) -> None:
        self._locked: Set[str] = set()

    def acquire(self, pid: str) -> None:
        if pid in self._locked:
            raise VenueRejected(f"pool {pid} is locked")
        self._locked.add(pid)

    def release(self, pid: str) -> None:
        self._locked.discard(pid)


class ConstantProductVenue:
    """x*y=k pools with one venue-wide fee, flash swaps via optimistic transfer."""

    kind = PoolKind.CONSTANT_PRODUCT

    def __init__(self, bank: BalanceTable, *, fee_bps: int = 30) -> None:
        if not isinstance(fee_bps, int) or isinstance(fee_bps, bool) or not (0 <= fee_bps < BPS_DENOM):
            raise ValueError(f"fee_bps must be in [0, {BPS_DENOM}): {fee_bps!r}")
        self.bank = bank
        self.fee_bps = fee_bps
        self.pools: Dict[str, ConstantProductPoolState] = {}
        self._locks = _LockedPools()

    def pool_id_for(self, asset_a: AssetId, asset_b: AssetId) -> str:
        return derive_pool_id(asset_a, asset_b, kind=self.kind)

    def create_pool(
        self,
        provider: Address,
        asset_a: AssetId,
        amount_a: Amount,
        asset_b: AssetId,
        amount_b: Amount,
    ) -> str:
        """Create a pool seeded with liquidity transferred from `provider`."""
        require_uint(amount_a, name="amount_a")
        require_uint(amount_b, name="amount_b")
        if amount_a == 0 or amount_b == 0:
            raise InvalidAction("initial liquidity must be positive on both sides")
        asset0, asset1 = sort_assets(asset_a, asset_b)
        pid = self.pool_id_for(asset0, asset1)
        if pid in self.pools:
            raise InvalidAction(f"pool already exists: {pid}")
        amount0, amount1 = (amount_a, amount_b) if asset_a == asset0 else (amount_b, amount_a)
        self.bank.transfer(provider, pid, asset0, amount0)
        self.bank.transfer(provider, pid, asset1, amount1)
        self.pools[pid] = ConstantProductPoolState(
            pool_id=pid, asset0=asset0, asset1=asset1, reserve0=amount0, reserve1=amount1
        )
        logger.debug("cp_pool_created", pool=pid, asset0=asset0, asset1=asset1)
        return pid

    def get_pool(self, pid: str) -> ConstantProductPoolState:
        pool = self.pools.get(pid)
        if pool is None:
            raise PoolNotFound(f"no constant-product pool {pid}")
        return pool

    def has_pool(self, pid: str) -> bool:
        return pid in self.pools

    def pool_assets(self, pid: str) -> Tuple[AssetId, AssetId]:
        pool = self.get_pool(pid)
        return pool.asset0, pool.asset1

    def reserves(self, pid: str) -> Tuple[Amount, Amount]:
        pool = self.get_pool(pid)
        return pool.reserve0, pool.reserve1

    def swap(
        self,
        pid: str,
        amount0_out: Amount,
        amount1_out: Amount,
        to: Address,
        data: bytes = b"",
        *,
        sender: Address,
        callback: Optional[ConstantProductCallback] = None,
    ) -> Tuple[Amount, Amount]:
        """
        Send the requested outputs to `to`, run the flash callback if `data` is
        non-empty, then require the fee-adjusted invariant to hold on the new
        balances. Returns (amount0_in, amount1_in).
        """
        pool = self.get_pool(pid)
        require_uint(amount0_out, name="amount0_out")
        require_uint(amount1_out, name="amount1_out")
        if amount0_out == 0 and amount1_out == 0:
            raise InsufficientOutput("swap must request some output")
        if amount0_out >= pool.reserve0 or amount1_out >= pool.reserve1:
            raise InsufficientLiquidity(f"pool {pid} cannot pay ({amount0_out}, {amount1_out})")
        if to == pid:
            raise InvalidAction("swap recipient cannot be the pool itself")

        self._locks.acquire(pid)
        try:
            self.bank.transfer(pid, to, pool.asset0, amount0_out)
            self.bank.transfer(pid, to, pool.asset1, amount1_out)
            if data:
                if callback is None:
                    raise VenueRejected("flash swap requires a callback")
                callback(pid, sender, amount0_out, amount1_out, data)

            balance0 = self.bank.get(pid, pool.asset0)
            balance1 = self.bank.get(pid, pool.asset1)
            floor0 = pool.reserve0 - amount0_out
            floor1 = pool.reserve1 - amount1_out
            amount0_in = balance0 - floor0 if balance0 > floor0 else 0
            amount1_in = balance1 - floor1 if balance1 > floor1 else 0
            if amount0_in == 0 and amount1_in == 0:
                raise InsufficientInput(f"pool {pid} was not paid")
            adjusted0 = balance0 * BPS_DENOM - amount0_in * self.fee_bps
            adjusted1 = balance1 * BPS_DENOM - amount1_in * self.fee_bps
            if adjusted0 * adjusted1 < pool.get_constant_product() * BPS_DENOM * BPS_DENOM:
                raise VenueRejected(f"pool {pid} invariant check failed")

            pool.reserve0, pool.reserve1 = balance0, balance1
        finally:
            self._locks.release(pid)
        logger.debug("cp_swap", pool=pid, amounts_in=(amount0_in, amount1_in), amounts_out=(amount0_out, amount1_out))
        return amount0_in, amount1_in

    def snapshot(self) -> Dict[str, ConstantProductPoolState]:
        return {pid: replace(p) for pid, p in self.pools.items()}

    def restore(self, snap: Dict[str, ConstantProductPoolState]) -> None:
        self.pools = {pid: replace(p) for pid, p in snap.items()}


class ConcentratedVenue:
    """Sqrt-price pools with per-pool fee tiers; the pool prices each swap itself."""

    kind = PoolKind.CONCENTRATED

    def __init__(self, bank: BalanceTable, *, fee_tiers: Iterable[int] = (100, 500, 3000, 10000)) -> None:
        self.bank = bank
        self.fee_tiers: FrozenSet[int] = frozenset(int(t) for t in fee_tiers)
        self.pools: Dict[str, ConcentratedPoolState] = {}
        self._locks = _LockedPools()

    def pool_id_for(self, asset_a: AssetId, asset_b: AssetId, fee_tier: int) -> str:
        return derive_pool_id(asset_a, asset_b, fee_tier, kind=self.kind)

    def create_pool(
        self,
        provider: Address,
        asset_a: AssetId,
        asset_b: AssetId,
        fee_tier: int,
        *,
        sqrt_price_x96: int,
        liquidity: int,
    ) -> str:
        """
        Create a pool at `sqrt_price_x96` (asset1 per asset0 in canonical order)
        and fund it from `provider` with the virtual reserves backing `liquidity`.
        """
        if fee_tier not in self.fee_tiers:
            raise InvalidAction(f"fee tier {fee_tier} is not enabled")
        asset0, asset1 = sort_assets(asset_a, asset_b)
        pid = self.pool_id_for(asset0, asset1, fee_tier)
        if pid in self.pools:
            raise InvalidAction(f"pool already exists: {pid}")
        amount0, amount1 = virtual_reserves(sqrt_price_x96, liquidity)
        # Round the backing up so the pool can always pay what its curve promises.
        self.bank.transfer(provider, pid, asset0, amount0 + 1)
        self.bank.transfer(provider, pid, asset1, amount1 + 1)
        self.pools[pid] = ConcentratedPoolState(
            pool_id=pid,
            asset0=asset0,
            asset1=asset1,
            fee_tier=fee_tier,
            sqrt_price_x96=sqrt_price_x96,
            liquidity=liquidity,
        )
        logger.debug("cl_pool_created", pool=pid, asset0=asset0, asset1=asset1, fee_tier=fee_tier)
        return pid

    def get_pool(self, pid: str) -> ConcentratedPoolState:
        pool = self.pools.get(pid)
        if pool is None:
            raise PoolNotFound(f"no concentrated pool {pid}")
        return pool

    def has_pool(self, pid: str) -> bool:
        return pid in self.pools

    def pool_assets(self, pid: str) -> Tuple[AssetId, AssetId]:
        pool = self.get_pool(pid)
        return pool.asset0, pool.asset1

    def reserves(self, pid: str) -> Tuple[Amount, Amount]:
        pool = self.get_pool(pid)
        return virtual_reserves(pool.sqrt_price_x96, pool.liquidity)

    def swap(
        self,
        pid: str,
        recipient: Address,
        zero_for_one: bool,
        amount_specified: int,
        data: bytes,
        *,
        callback: ConcentratedCallback,
    ) -> Tuple[int, int]:
        """
        Swap against `pid`. Positive `amount_specified` is an exact input, negative
        an exact output. Returns (amount0_delta, amount1_delta) from the pool's
        perspective: positive is owed to the pool, negative was paid out.
        """
        pool = self.get_pool(pid)
        if not isinstance(amount_specified, int) or isinstance(amount_specified, bool) or amount_specified == 0:
            raise InvalidAction("amount_specified must be a non-zero int")
        if callback is None:
            raise VenueRejected("swap requires a callback")

        if amount_specified > 0:
            step = compute_swap_exact_in(
                sqrt_price_x96=pool.sqrt_price_x96,
                liquidity=pool.liquidity,
                amount_in=amount_specified,
                fee_pips=pool.fee_tier,
                zero_for_one=zero_for_one,
            )
            amount_in = amount_specified
        else:
            step = compute_swap_exact_out(
                sqrt_price_x96=pool.sqrt_price_x96,
                liquidity=pool.liquidity,
                amount_out=-amount_specified,
                fee_pips=pool.fee_tier,
                zero_for_one=zero_for_one,
            )
            amount_in = step.amount_in_with_fee
        amount_out = step.amount_out

        if zero_for_one:
            token_in, token_out = pool.asset0, pool.asset1
            deltas = (amount_in, -amount_out)
        else:
            token_in, token_out = pool.asset1, pool.asset0
            deltas = (-amount_out, amount_in)

        self._locks.acquire(pid)
        try:
            pool.sqrt_price_x96 = step.sqrt_price_next_x96
            self.bank.transfer(pid, recipient, token_out, amount_out)
            balance_before = self.bank.get(pid, token_in)
            callback(pid, deltas[0], deltas[1], data)
            if self.bank.get(pid, token_in) < balance_before + amount_in:
                raise VenueRejected(f"pool {pid} was not paid {amount_in} of {token_in}")
        finally:
            self._locks.release(pid)
        logger.debug("cl_swap", pool=pid, deltas=deltas)
        return deltas

    def snapshot(self) -> Dict[str, ConcentratedPoolState]:
        return {pid: replace(p) for pid, p in self.pools.items()}

    def restore(self, snap: Dict[str, ConcentratedPoolState]) -> None:
        self.pools = {pid: replace(p) for pid, p in snap.items()}
