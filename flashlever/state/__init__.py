"""
State stores shared by the executor: balances, pools, deferred checks, journal
"""

from .balances import NATIVE_ASSET, BalanceTable
from .deferred import DeferredCheckState, DeferredCheckTable
from .journal import Journal
from .pools import ConcentratedPoolState, ConstantProductPoolState, PoolKind, compute_pool_id, sort_assets

__all__ = [
    "NATIVE_ASSET",
    "BalanceTable",
    "DeferredCheckState",
    "DeferredCheckTable",
    "Journal",
    "ConcentratedPoolState",
    "ConstantProductPoolState",
    "PoolKind",
    "compute_pool_id",
    "sort_assets",
]
