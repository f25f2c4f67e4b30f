"""
Pool identity and state for the two AMM venue types.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from .balances import Amount, AssetId
from .canonical import domain_sep_bytes, sha256_hex


class PoolKind(Enum):
    """Pool pricing model."""
    CONSTANT_PRODUCT = "CONSTANT_PRODUCT"
    CONCENTRATED = "CONCENTRATED"


def sort_assets(asset_a: AssetId, asset_b: AssetId) -> Tuple[AssetId, AssetId]:
    """
    Canonical (token0, token1) ordering used by both venues: ascending by identifier.

    Raises:
        ValueError: If the assets are identical or empty
    """
    if not isinstance(asset_a, str) or not isinstance(asset_b, str) or not asset_a or not asset_b:
        raise ValueError("asset identifiers must be non-empty strings")
    if asset_a == asset_b:
        raise ValueError(f"identical assets: {asset_a}")
    return (asset_a, asset_b) if asset_a < asset_b else (asset_b, asset_a)


def compute_pool_id(
    asset0: AssetId,
    asset1: AssetId,
    fee_tier: Optional[int] = None,
    *,
    kind: PoolKind = PoolKind.CONSTANT_PRODUCT,
) -> str:
    """
    Deterministically compute a pool_id for the given pool parameters.

    Formula:
        sha256(domain_sep("pool_id:<kind>") || asset0 || 0x00 || asset1 || 0x00 || fee_tier)

    Constant-product pools carry no fee tier (the venue charges one fee for all
    pools); concentrated pools must name theirs.
    """
    if asset0 >= asset1:
        raise ValueError(f"Assets must be in canonical order: {asset0} < {asset1}")
    if kind is PoolKind.CONSTANT_PRODUCT:
        if fee_tier is not None:
            raise ValueError("constant-product pools do not take a fee tier")
        fee_part = b""
    else:
        if not isinstance(fee_tier, int) or isinstance(fee_tier, bool) or fee_tier < 0:
            raise ValueError("concentrated pools require a non-negative int fee tier")
        fee_part = str(int(fee_tier)).encode("ascii")

    pool_id_data = (
        domain_sep_bytes(f"pool_id:{kind.value}")
        + asset0.encode("utf-8")
        + b"\x00"
        + asset1.encode("utf-8")
        + b"\x00"
        + fee_part
    )
    return sha256_hex(pool_id_data)


@dataclass
class ConstantProductPoolState:
    """
    State of a constant-product pool.

    Attributes:
        pool_id: Pool identifier (address the pool's tokens are held under)
        asset0: First asset identifier (must be < asset1 lexicographically)
        asset1: Second asset identifier
        reserve0: Last synced reserve of asset0
        reserve1: Last synced reserve of asset1
    """
    pool_id: str
    asset0: AssetId
    asset1: AssetId
    reserve0: Amount
    reserve1: Amount

    def __post_init__(self):
        if self.asset0 >= self.asset1:
            raise ValueError(
                f"Assets must be in canonical order: {self.asset0} < {self.asset1}"
            )
        if self.reserve0 < 0 or self.reserve1 < 0:
            raise ValueError(
                f"Reserves must be non-negative: ({self.reserve0}, {self.reserve1})"
            )

    def get_constant_product(self) -> int:
        return self.reserve0 * self.reserve1

    def __repr__(self) -> str:
        return (
            f"ConstantProductPoolState(pool_id={self.pool_id[:16]}..., "
            f"assets=({self.asset0}, {self.asset1}), "
            f"reserves=({self.reserve0}, {self.reserve1}))"
        )


@dataclass
class ConcentratedPoolState:
    """
    State of a concentrated-liquidity pool with one active range.

    Attributes:
        pool_id: Pool identifier
        asset0 / asset1: Canonically ordered assets
        fee_tier: Swap fee in pips (1/1_000_000)
        sqrt_price_x96: Current sqrt(asset1 per asset0) in Q64.96
        liquidity: Active liquidity L
    """
    pool_id: str
    asset0: AssetId
    asset1: AssetId
    fee_tier: int
    sqrt_price_x96: int
    liquidity: int

    def __post_init__(self):
        if self.asset0 >= self.asset1:
            raise ValueError(
                f"Assets must be in canonical order: {self.asset0} < {self.asset1}"
            )
        if self.sqrt_price_x96 <= 0:
            raise ValueError(f"sqrt_price_x96 must be positive: {self.sqrt_price_x96}")
        if self.liquidity < 0:
            raise ValueError(f"liquidity must be non-negative: {self.liquidity}")

    def __repr__(self) -> str:
        return (
            f"ConcentratedPoolState(pool_id={self.pool_id[:16]}..., "
            f"assets=({self.asset0}, {self.asset1}), fee={self.fee_tier}, "
            f"sqrt_price_x96={self.sqrt_price_x96}, liquidity={self.liquidity})"
        )
