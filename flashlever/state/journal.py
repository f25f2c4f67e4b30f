"""
All-or-nothing execution journal.

A batch touches several independent stores (token balances, pool state, the
ledger's positions and its deferred-check store). The journal snapshots every
registered participant when an atomic scope opens and restores all of them if
the scope exits with an exception, so no partial state change is observable.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, List, Protocol, Tuple


class Journaled(Protocol):
    def snapshot(self) -> Any: ...

    def restore(self, snap: Any) -> None: ...


class Journal:
    def __init__(self, *participants: Journaled) -> None:
        self._participants: List[Journaled] = list(participants)
        self._depth = 0

    def register(self, participant: Journaled) -> None:
        if self._depth:
            raise RuntimeError("cannot register participants inside an atomic scope")
        self._participants.append(participant)

    @property
    def depth(self) -> int:
        return self._depth

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Run the body atomically; nested scopes roll back only their own changes."""
        snaps: List[Tuple[Journaled, Any]] = [(p, p.snapshot()) for p in self._participants]
        self._depth += 1
        try:
            yield
        except BaseException:
            for participant, snap in reversed(snaps):
                participant.restore(snap)
            raise
        finally:
            self._depth -= 1
