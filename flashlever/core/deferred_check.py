"""
Deferred solvency-check scope.

Acquire on enter, release with a side effect on the last exit: the ledger's
solvency check for an account runs exactly once, when the outermost scope for
that account closes. Depth counting (not a boolean) is what keeps nested entry
from flash-swap callbacks from firing the check early or twice.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Protocol

import structlog

from ..state.balances import Address
from ..state.deferred import DeferredCheckTable
from .errors import UnbalancedCheckScope

logger = structlog.get_logger(__name__)


class SolvencyChecked(Protocol):
    deferred_checks: DeferredCheckTable

    def check_account_solvency(self, account: Address) -> None: ...


class DeferredCheckScope:
    def __init__(self, ledger: SolvencyChecked) -> None:
        self._ledger = ledger

    @property
    def _table(self) -> DeferredCheckTable:
        return self._ledger.deferred_checks

    def depth(self, account: Address) -> int:
        return self._table.get(account).depth

    def is_deferred(self, account: Address) -> bool:
        return self._table.is_deferred(account)

    def enter(self, account: Address) -> int:
        depth = self._table.get(account).depth + 1
        self._table.set_depth(account, depth)
        if depth == 1:
            logger.debug("solvency_check_deferred", account=account)
        return depth

    def exit(self, account: Address) -> int:
        """Leave one scope level; the outermost exit runs the solvency check."""
        depth = self._table.get(account).depth
        if depth == 0:
            raise UnbalancedCheckScope(f"exit without matching enter for {account}")
        self._table.set_depth(account, depth - 1)
        if depth == 1:
            logger.debug("solvency_check_running", account=account)
            self._ledger.check_account_solvency(account)
        return depth - 1

    def abandon(self, account: Address) -> int:
        """Leave one scope level without checking (the enclosing work is being reverted)."""
        depth = self._table.get(account).depth
        if depth == 0:
            raise UnbalancedCheckScope(f"abandon without matching enter for {account}")
        self._table.set_depth(account, depth - 1)
        return depth - 1

    @contextmanager
    def deferred(self, account: Address) -> Iterator[int]:
        depth = self.enter(account)
        try:
            yield depth
        except BaseException:
            self.abandon(account)
            raise
        self.exit(account)
