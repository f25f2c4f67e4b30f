"""
Deferred solvency-check table.

Per account, whether the ledger's solvency check is currently deferred and how
many nested scopes hold the deferral. The table is owned by the ledger so that
deferral state lives next to the positions it protects and is journaled with
them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping

from .balances import Address


@dataclass(frozen=True)
class DeferredCheckState:
    active: bool
    depth: int

    def __post_init__(self) -> None:
        if self.depth < 0:
            raise ValueError(f"depth must be non-negative: {self.depth}")
        if self.active != (self.depth > 0):
            raise ValueError("active must be set exactly when depth > 0")


@dataclass
class DeferredCheckTable:
    """
    Mutable mapping: account -> DeferredCheckState.

    Accounts without an entry have no deferral in progress; entries are removed
    (not zeroed) once the outermost scope closes.
    """

    _states: Dict[Address, DeferredCheckState] = field(default_factory=dict)

    def get(self, account: Address) -> DeferredCheckState:
        return self._states.get(account, DeferredCheckState(active=False, depth=0))

    def set_depth(self, account: Address, depth: int) -> None:
        if not isinstance(depth, int) or isinstance(depth, bool) or depth < 0:
            raise ValueError(f"depth must be a non-negative int: {depth!r}")
        if depth == 0:
            self._states.pop(account, None)
        else:
            self._states[account] = DeferredCheckState(active=True, depth=depth)

    def is_deferred(self, account: Address) -> bool:
        return self.get(account).active

    def get_all(self) -> Mapping[Address, DeferredCheckState]:
        return dict(self._states)

    def snapshot(self) -> Dict[Address, DeferredCheckState]:
        return dict(self._states)

    def restore(self, snap: Dict[Address, DeferredCheckState]) -> None:
        self._states = dict(snap)
