"""Batched action dispatcher.

``dispatch(caller, actions, value=...)`` is the single entry point. It:

1. Escrows the attached native value.
2. Opens one journal scope and one deferred solvency-check scope for the caller.
3. Runs each action through the opcode -> handler table, in order.
4. Refunds unspent native value and closes the scope (one solvency check).

Any failure reverts the whole batch; the raised error carries the index of the
action that failed.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum, unique
from typing import Any, Callable, Dict, List, Optional, Sequence, TYPE_CHECKING, Tuple

import structlog

from ..state.balances import NATIVE_ASSET, Address, Amount, AssetId, BalanceTable
from ..state.canonical import decode_canonical_json
from ..state.journal import Journal
from ..state.pools import PoolKind
from .deferred_check import DeferredCheckScope
from .descriptor import FULL_AMOUNT, descriptor_from_dict
from .errors import ExecutionError, InvalidAction, UnknownAction
from .settlement_engine import SettlementEngine
from .uint import UINT256_MAX

if TYPE_CHECKING:
    from ..integration.ledger import LedgerProtocol

logger = structlog.get_logger(__name__)

DEFAULT_DISPATCHER_ADDRESS = "flashlever:dispatcher"


@unique
class Opcode(IntEnum):
    DEFER_LIQUIDITY_CHECK = 0
    SUPPLY = 1
    BORROW = 2
    REDEEM = 3
    REPAY = 4
    SUPPLY_NATIVE = 5
    BORROW_NATIVE = 6
    REDEEM_NATIVE = 7
    REPAY_NATIVE = 8
    LEVERAGE_CONSTANT_PRODUCT = 9
    LEVERAGE_CONCENTRATED = 10


@dataclass(frozen=True)
class Action:
    opcode: int
    payload: bytes = b"{}"


# -- payload field checks ---------------------------------------------------


def _require_str(value: Any, *, name: str, max_len: int = 256) -> str:
    if not isinstance(value, str) or not value:
        raise InvalidAction(f"{name} must be a non-empty string")
    if len(value) > max_len:
        raise InvalidAction(f"{name} too long")
    return value


def _require_amount(value: Any, *, name: str, allow_full: bool = False) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidAction(f"{name} must be an int")
    if value < 0 or value > UINT256_MAX:
        raise InvalidAction(f"{name} must be a uint256")
    if value == FULL_AMOUNT and not allow_full:
        raise InvalidAction(f"{name} does not accept the full-balance amount")
    return value


def decode_payload(action: Action, fields: Sequence[str]) -> Dict[str, Any]:
    """Decode a canonical-JSON payload object and require exactly `fields`."""
    if not isinstance(action.payload, (bytes, bytearray)):
        raise InvalidAction("payload must be bytes")
    try:
        obj = decode_canonical_json(bytes(action.payload))
    except ValueError as exc:
        raise InvalidAction(f"malformed payload: {exc}") from exc
    if not isinstance(obj, dict):
        raise InvalidAction("payload must be an object")
    if set(obj.keys()) != set(fields):
        raise InvalidAction(f"payload fields must be {sorted(fields)}, got {sorted(obj.keys())}")
    return obj


@dataclass
class _BatchContext:
    caller: Address
    native_remaining: Amount


Handler = Callable[["ActionDispatcher", _BatchContext, Action], Any]


class ActionDispatcher:
    def __init__(
        self,
        *,
        bank: BalanceTable,
        ledger: LedgerProtocol,
        engine: SettlementEngine,
        journal: Journal,
        scope: DeferredCheckScope,
        wrapped_native: Any = None,
        address: Address = DEFAULT_DISPATCHER_ADDRESS,
        max_actions: Optional[int] = None,
    ) -> None:
        self.bank = bank
        self.ledger = ledger
        self.engine = engine
        self.journal = journal
        self.scope = scope
        self.wrapped_native = wrapped_native
        self.address = address
        self.max_actions = max_actions

    def dispatch(self, caller: Address, actions: Sequence[Action], *, value: Amount = 0) -> Tuple[Any, ...]:
        """
        Execute `actions` for `caller` as one atomic unit.

        Returns one result per action (amount moved, or a SettlementResult).

        Raises:
            ExecutionError: The first failure, with `action_index` set
        """
        actions = tuple(actions)
        _require_amount(value, name="value")
        if self.max_actions is not None and len(actions) > self.max_actions:
            raise InvalidAction(f"batch has {len(actions)} actions, limit is {self.max_actions}")

        results: List[Any] = []
        logger.debug("dispatch", caller=caller, actions=len(actions), value=value)
        with self.journal.atomic():
            self._move(caller, self.address, NATIVE_ASSET, value)
            ctx = _BatchContext(caller=caller, native_remaining=value)
            with self.scope.deferred(caller):
                for index, action in enumerate(actions):
                    try:
                        results.append(self._run(ctx, action))
                    except ExecutionError as exc:
                        if exc.action_index is None:
                            exc.action_index = index
                        raise
            if ctx.native_remaining:
                self._move(self.address, caller, NATIVE_ASSET, ctx.native_remaining)
        return tuple(results)

    def _run(self, ctx: _BatchContext, action: Action) -> Any:
        if not isinstance(action, Action):
            raise InvalidAction("batch entries must be Action objects")
        if isinstance(action.opcode, bool):
            raise UnknownAction(f"unknown opcode {action.opcode!r}")
        try:
            opcode = Opcode(action.opcode)
        except ValueError as exc:
            raise UnknownAction(f"unknown opcode {action.opcode!r}") from exc
        handler = _DISPATCH[opcode]
        return handler(self, ctx, action)

    # --- handlers -----------------------------------------------------------

    def _defer_liquidity_check(self, ctx: _BatchContext, action: Action) -> None:
        decode_payload(action, ())
        if not self.scope.is_deferred(ctx.caller):
            raise InvalidAction("liquidity check is not deferred")

    def _supply(self, ctx: _BatchContext, action: Action) -> Amount:
        asset, amount = self._asset_amount(action, allow_full=False)
        return self.ledger.supply(ctx.caller, ctx.caller, ctx.caller, asset, amount)

    def _borrow(self, ctx: _BatchContext, action: Action) -> Amount:
        asset, amount = self._asset_amount(action, allow_full=False)
        return self.ledger.borrow(ctx.caller, ctx.caller, ctx.caller, asset, amount)

    def _redeem(self, ctx: _BatchContext, action: Action) -> Amount:
        asset, amount = self._asset_amount(action, allow_full=True)
        return self.ledger.redeem(ctx.caller, ctx.caller, ctx.caller, asset, amount)

    def _repay(self, ctx: _BatchContext, action: Action) -> Amount:
        asset, amount = self._asset_amount(action, allow_full=True)
        return self.ledger.repay(ctx.caller, ctx.caller, ctx.caller, asset, amount)

    def _supply_native(self, ctx: _BatchContext, action: Action) -> Amount:
        wrapper = self._wrapper()
        amount = self._native_amount(action, allow_full=False)
        self._spend_native(ctx, amount)
        wrapper.deposit(self.address, amount)
        return self.ledger.supply(self.address, self.address, ctx.caller, wrapper.asset, amount)

    def _borrow_native(self, ctx: _BatchContext, action: Action) -> Amount:
        wrapper = self._wrapper()
        amount = self._native_amount(action, allow_full=False)
        amount = self.ledger.borrow(self.address, ctx.caller, self.address, wrapper.asset, amount)
        wrapper.withdraw(self.address, amount)
        self._move(self.address, ctx.caller, NATIVE_ASSET, amount)
        return amount

    def _redeem_native(self, ctx: _BatchContext, action: Action) -> Amount:
        wrapper = self._wrapper()
        amount = self._native_amount(action, allow_full=True)
        amount = self.ledger.redeem(self.address, ctx.caller, self.address, wrapper.asset, amount)
        wrapper.withdraw(self.address, amount)
        self._move(self.address, ctx.caller, NATIVE_ASSET, amount)
        return amount

    def _repay_native(self, ctx: _BatchContext, action: Action) -> Amount:
        wrapper = self._wrapper()
        amount = self._native_amount(action, allow_full=True)
        if amount == FULL_AMOUNT:
            amount = self.ledger.get_borrow_balance(ctx.caller, wrapper.asset)
        self._spend_native(ctx, amount)
        wrapper.deposit(self.address, amount)
        return self.ledger.repay(self.address, self.address, ctx.caller, wrapper.asset, amount)

    def _leverage_constant_product(self, ctx: _BatchContext, action: Action) -> Any:
        obj = decode_payload(action, ("descriptor",))
        return self.engine.execute_leverage_action(
            ctx.caller, descriptor_from_dict(obj["descriptor"]), venue_kind=PoolKind.CONSTANT_PRODUCT
        )

    def _leverage_concentrated(self, ctx: _BatchContext, action: Action) -> Any:
        obj = decode_payload(action, ("descriptor",))
        return self.engine.execute_leverage_action(
            ctx.caller, descriptor_from_dict(obj["descriptor"]), venue_kind=PoolKind.CONCENTRATED
        )

    # --- helpers ------------------------------------------------------------

    @staticmethod
    def _asset_amount(action: Action, *, allow_full: bool) -> Tuple[AssetId, Amount]:
        obj = decode_payload(action, ("amount", "asset"))
        return (
            _require_str(obj["asset"], name="asset"),
            _require_amount(obj["amount"], name="amount", allow_full=allow_full),
        )

    @staticmethod
    def _native_amount(action: Action, *, allow_full: bool) -> Amount:
        obj = decode_payload(action, ("amount",))
        return _require_amount(obj["amount"], name="amount", allow_full=allow_full)

    def _wrapper(self) -> Any:
        if self.wrapped_native is None:
            raise InvalidAction("native actions are not enabled")
        return self.wrapped_native

    @staticmethod
    def _spend_native(ctx: _BatchContext, amount: Amount) -> None:
        if amount > ctx.native_remaining:
            raise InvalidAction(f"native value {ctx.native_remaining} does not cover {amount}")
        ctx.native_remaining -= amount

    def _move(self, src: Address, dst: Address, asset: AssetId, amount: Amount) -> None:
        try:
            self.bank.transfer(src, dst, asset, amount)
        except ValueError as exc:
            raise InvalidAction(str(exc)) from exc


_DISPATCH: Dict[Opcode, Handler] = {
    Opcode.DEFER_LIQUIDITY_CHECK: ActionDispatcher._defer_liquidity_check,
    Opcode.SUPPLY: ActionDispatcher._supply,
    Opcode.BORROW: ActionDispatcher._borrow,
    Opcode.REDEEM: ActionDispatcher._redeem,
    Opcode.REPAY: ActionDispatcher._repay,
    Opcode.SUPPLY_NATIVE: ActionDispatcher._supply_native,
    Opcode.BORROW_NATIVE: ActionDispatcher._borrow_native,
    Opcode.REDEEM_NATIVE: ActionDispatcher._redeem_native,
    Opcode.REPAY_NATIVE: ActionDispatcher._repay_native,
    Opcode.LEVERAGE_CONSTANT_PRODUCT: ActionDispatcher._leverage_constant_product,
    Opcode.LEVERAGE_CONCENTRATED: ActionDispatcher._leverage_concentrated,
}
