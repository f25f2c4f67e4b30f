"""
Pool identity derivation and reserve reads.

`pool_id` is call-free: it never asks a venue whether a pool exists, it derives
the identity the venue itself would assign. A wrong canonical ordering therefore
produces an identity no venue knows, and every downstream read fails closed with
PoolNotFound.
"""

from __future__ import annotations

from typing import Optional, Protocol, Tuple

from ..state.balances import Amount, AssetId
from ..state.pools import PoolKind, compute_pool_id, sort_assets
from .errors import InvalidAction, PoolNotFound


class PoolVenue(Protocol):
    kind: PoolKind

    def has_pool(self, pool_id: str) -> bool: ...

    def pool_assets(self, pool_id: str) -> Tuple[AssetId, AssetId]: ...

    def reserves(self, pool_id: str) -> Tuple[Amount, Amount]: ...


class ConstantProductPoolVenue(PoolVenue, Protocol):
    fee_bps: int


def pool_id(
    asset_a: AssetId,
    asset_b: AssetId,
    fee_tier: Optional[int] = None,
    *,
    kind: PoolKind = PoolKind.CONSTANT_PRODUCT,
) -> str:
    """Canonical pool identity for an unordered asset pair (and fee tier)."""
    try:
        asset0, asset1 = sort_assets(asset_a, asset_b)
        return compute_pool_id(asset0, asset1, fee_tier, kind=kind)
    except ValueError as exc:
        raise InvalidAction(str(exc)) from exc


def reserves_of(
    venue: PoolVenue,
    pid: str,
    asset_a: AssetId,
    asset_b: AssetId,
) -> Tuple[Amount, Amount]:
    """
    Live reserves of `pid`, reordered to match the requested (asset_a, asset_b).

    Raises:
        PoolNotFound: If the venue has no such pool, or the pool does not hold the pair
    """
    if not venue.has_pool(pid):
        raise PoolNotFound(f"no {venue.kind.value} pool {pid}")
    asset0, asset1 = venue.pool_assets(pid)
    reserve0, reserve1 = venue.reserves(pid)
    if (asset_a, asset_b) == (asset0, asset1):
        return reserve0, reserve1
    if (asset_a, asset_b) == (asset1, asset0):
        return reserve1, reserve0
    raise PoolNotFound(f"pool {pid} does not trade {asset_a}/{asset_b}")


def resolve_reserves(
    venue: PoolVenue,
    asset_a: AssetId,
    asset_b: AssetId,
    fee_tier: Optional[int] = None,
) -> Tuple[Amount, Amount]:
    """pool_id + reserves_of in one step."""
    return reserves_of(venue, pool_id(asset_a, asset_b, fee_tier, kind=venue.kind), asset_a, asset_b)
