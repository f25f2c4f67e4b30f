"""
Executor shell: wires the in-memory collaborators to the dispatcher and turns
structured failures into an `ExecutionResult`.

All collaborators share one BalanceTable and are registered with one Journal,
so a failed batch leaves balances, pools, ledger positions and deferred-check
state exactly as they were.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Tuple

import structlog

from ..config import ExecutorConfig
from ..core.deferred_check import DeferredCheckScope
from ..core.dispatcher import Action, ActionDispatcher
from ..core.errors import ExecutionError, InvalidSignature
from ..core.settlement_engine import SettlementEngine, unix_time
from ..state.balances import Address, Amount, BalanceTable
from ..state.journal import Journal
from .ledger import LendingLedger
from .signing import NonceTable, SignedBatch, verify_batch_signature
from .venues import ConcentratedVenue, ConstantProductVenue
from .wrapped_native import WrappedNative

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ExecutionResult:
    ok: bool
    results: Tuple[Any, ...] = ()
    error: Optional[str] = None
    error_kind: Optional[str] = None
    action_index: Optional[int] = None
    depth: Optional[int] = None

    @classmethod
    def from_error(cls, exc: ExecutionError) -> "ExecutionResult":
        return cls(
            ok=False,
            error=str(exc),
            error_kind=exc.kind,
            action_index=exc.action_index,
            depth=exc.depth,
        )


class Executor:
    def __init__(self, config: Optional[ExecutorConfig] = None, *, clock: Callable[[], int] = unix_time) -> None:
        cfg = config or ExecutorConfig()
        self.config = cfg
        self.bank = BalanceTable()
        self.ledger = LendingLedger(
            self.bank,
            address=cfg.ledger_address,
            trusted_operators=(cfg.engine_address, cfg.executor_address),
        )
        self.constant_product = ConstantProductVenue(self.bank, fee_bps=cfg.cp_fee_bps)
        self.concentrated = ConcentratedVenue(self.bank, fee_tiers=cfg.cl_fee_tiers)
        self.wrapped_native = WrappedNative(self.bank)
        self.nonces = NonceTable()
        self.journal = Journal(self.bank, self.ledger, self.constant_product, self.concentrated)
        self.scope = DeferredCheckScope(self.ledger)
        self.engine = SettlementEngine(
            bank=self.bank,
            ledger=self.ledger,
            journal=self.journal,
            scope=self.scope,
            constant_product=self.constant_product,
            concentrated=self.concentrated,
            address=cfg.engine_address,
            clock=clock,
            max_hops=cfg.max_hops,
        )
        self.dispatcher = ActionDispatcher(
            bank=self.bank,
            ledger=self.ledger,
            engine=self.engine,
            journal=self.journal,
            scope=self.scope,
            wrapped_native=self.wrapped_native,
            address=cfg.executor_address,
            max_actions=cfg.max_actions,
        )

    def execute(self, caller: Address, actions: Sequence[Action], value: Amount = 0) -> ExecutionResult:
        """Run a batch for an already-authenticated caller."""
        try:
            results = self.dispatcher.dispatch(caller, actions, value=value)
        except ExecutionError as exc:
            logger.warning("batch_rejected", caller=caller, error=str(exc))
            return ExecutionResult.from_error(exc)
        except (ValueError, TypeError) as exc:
            logger.warning("batch_failed", caller=caller, error=str(exc))
            return ExecutionResult(ok=False, error=str(exc), error_kind=type(exc).__name__)
        logger.debug("batch_applied", caller=caller, actions=len(results))
        return ExecutionResult(ok=True, results=results)

    def submit(self, batch: SignedBatch) -> ExecutionResult:
        """
        Authenticate a signed batch, consume its nonce, then execute it.

        The nonce is consumed once authentication passes, even if the batch
        itself reverts, so a signed batch can never be replayed.
        """
        try:
            caller = batch.caller
        except (TypeError, ValueError) as exc:
            return ExecutionResult.from_error(InvalidSignature(f"bad caller public key: {exc}"))
        if self.config.require_signatures:
            ok, err = verify_batch_signature(batch, chain_id=self.config.chain_id)
            if not ok:
                logger.warning("batch_unauthenticated", caller=caller, error=err)
                return ExecutionResult.from_error(InvalidSignature(err or "rejected"))
        try:
            self.nonces.consume(caller, batch.nonce)
        except InvalidSignature as exc:
            logger.warning("batch_rejected", caller=caller, error=str(exc))
            return ExecutionResult.from_error(exc)
        return self.execute(caller, batch.actions, value=batch.value)

    # --- setup helpers ------------------------------------------------------

    def mint(self, holder: Address, asset: str, amount: Amount) -> None:
        """Credit `amount` of `asset` to `holder` (test and demo setup)."""
        self.bank.add(holder, asset, amount)
