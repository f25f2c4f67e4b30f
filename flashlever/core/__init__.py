"""
Core execution and settlement algorithms
"""

from .swap_math import (
    quote_out_given_in,
    quote_in_given_out,
    chain_quote_in,
    chain_quote_out,
)
from .pool_resolver import pool_id, reserves_of, resolve_reserves
from .descriptor import FULL_AMOUNT, SubAction, SwapDescriptor, SwapMode
from .deferred_check import DeferredCheckScope
from .settlement_engine import EngineState, SettlementEngine, SettlementResult
from .dispatcher import Action, ActionDispatcher, Opcode
from .errors import ExecutionError

__all__ = [
    "quote_out_given_in",
    "quote_in_given_out",
    "chain_quote_in",
    "chain_quote_out",
    "pool_id",
    "reserves_of",
    "resolve_reserves",
    "FULL_AMOUNT",
    "SubAction",
    "SwapDescriptor",
    "SwapMode",
    "DeferredCheckScope",
    "EngineState",
    "SettlementEngine",
    "SettlementResult",
    "Action",
    "ActionDispatcher",
    "Opcode",
    "ExecutionError",
]
