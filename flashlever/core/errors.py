"""Exception types for the execution and settlement core.

Every failure aborts the whole in-flight batch, including all nested flash-swap
frames. The dispatcher stamps ``action_index`` on the way out and the settlement
engine stamps ``depth``, so a caller can tell where a batch failed even though no
partial state survives.
"""

from __future__ import annotations

from typing import Optional


class ExecutionError(Exception):
    """Base class for every structured failure raised by the core."""

    kind = "ExecutionError"

    def __init__(
        self,
        message: str = "",
        *,
        action_index: Optional[int] = None,
        depth: Optional[int] = None,
    ) -> None:
        self.message = message or self.kind
        self.action_index = action_index
        self.depth = depth
        super().__init__(self.message)

    def __str__(self) -> str:
        where = []
        if self.action_index is not None:
            where.append(f"action={self.action_index}")
        if self.depth is not None:
            where.append(f"depth={self.depth}")
        suffix = f" ({', '.join(where)})" if where else ""
        return f"{self.kind}: {self.message}{suffix}"


class InvalidAction(ExecutionError):
    """Malformed payload, inconsistent descriptor, or unusable request."""

    kind = "InvalidAction"


class UnknownAction(InvalidAction):
    """Opcode is not a member of the action set."""

    kind = "UnknownAction"


class DeadlineExpired(ExecutionError):
    kind = "DeadlineExpired"


class InsufficientLiquidity(ExecutionError):
    kind = "InsufficientLiquidity"


class InsufficientInput(ExecutionError):
    kind = "InsufficientInput"


class InsufficientOutput(ExecutionError):
    kind = "InsufficientOutput"


class PoolNotFound(ExecutionError):
    kind = "PoolNotFound"


class UnauthorizedCallback(ExecutionError):
    """Settlement callback not from the pending pool, or nothing pending."""

    kind = "UnauthorizedCallback"


class SlippageExceeded(ExecutionError):
    kind = "SlippageExceeded"


class ArithmeticOverflow(ExecutionError):
    kind = "ArithmeticOverflow"


class LedgerRejected(ExecutionError):
    """Any refusal surfaced by the lending ledger (insolvency, caps, pauses, auth)."""

    kind = "LedgerRejected"


class VenueRejected(ExecutionError):
    """An AMM venue refused the swap (reentrancy lock, invariant check, unpaid callback)."""

    kind = "VenueRejected"


class UnbalancedCheckScope(ExecutionError):
    """A deferred-check scope was exited more times than it was entered."""

    kind = "UnbalancedCheckScope"


class InvalidSignature(ExecutionError):
    """A signed batch failed authentication or replay protection."""

    kind = "InvalidSignature"
