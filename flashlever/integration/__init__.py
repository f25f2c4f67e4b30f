"""
In-memory collaborators and the executor entry point
"""

from .executor import ExecutionResult, Executor
from .ledger import LendingLedger
from .venues import ConcentratedVenue, ConstantProductVenue
from .wrapped_native import WrappedNative

__all__ = [
    "ExecutionResult",
    "Executor",
    "LendingLedger",
    "ConcentratedVenue",
    "ConstantProductVenue",
    "WrappedNative",
]
