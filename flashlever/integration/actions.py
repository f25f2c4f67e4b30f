"""
Action builders and batch codec.

Builders produce `Action` values with canonical-JSON payloads. The batch codec
maps a sequence of actions to/from a JSON-safe list of
``{"op": <opcode name>, "payload": <hex>}`` objects, used for signing and by
the demo CLI.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence, Tuple

from ..core.descriptor import SwapDescriptor, descriptor_to_dict
from ..core.dispatcher import Action, Opcode
from ..core.errors import InvalidAction
from ..state.balances import Amount, AssetId
from ..state.canonical import canonical_json_bytes


def _action(opcode: Opcode, payload: Dict[str, Any]) -> Action:
    return Action(opcode=int(opcode), payload=canonical_json_bytes(payload))


def defer_liquidity_check() -> Action:
    return _action(Opcode.DEFER_LIQUIDITY_CHECK, {})


def supply(asset: AssetId, amount: Amount) -> Action:
    return _action(Opcode.SUPPLY, {"asset": asset, "amount": amount})


def borrow(asset: AssetId, amount: Amount) -> Action:
    return _action(Opcode.BORROW, {"asset": asset, "amount": amount})


def redeem(asset: AssetId, amount: Amount) -> Action:
    return _action(Opcode.REDEEM, {"asset": asset, "amount": amount})


def repay(asset: AssetId, amount: Amount) -> Action:
    return _action(Opcode.REPAY, {"asset": asset, "amount": amount})


def supply_native(amount: Amount) -> Action:
    return _action(Opcode.SUPPLY_NATIVE, {"amount": amount})


def borrow_native(amount: Amount) -> Action:
    return _action(Opcode.BORROW_NATIVE, {"amount": amount})


def redeem_native(amount: Amount) -> Action:
    return _action(Opcode.REDEEM_NATIVE, {"amount": amount})


def repay_native(amount: Amount) -> Action:
    return _action(Opcode.REPAY_NATIVE, {"amount": amount})


def leverage_constant_product(descriptor: SwapDescriptor) -> Action:
    return _action(Opcode.LEVERAGE_CONSTANT_PRODUCT, {"descriptor": descriptor_to_dict(descriptor)})


def leverage_concentrated(descriptor: SwapDescriptor) -> Action:
    return _action(Opcode.LEVERAGE_CONCENTRATED, {"descriptor": descriptor_to_dict(descriptor)})


def _require_str(value: Any, *, name: str, max_len: int = 4096) -> str:
    if not isinstance(value, str) or not value:
        raise InvalidAction(f"{name} must be a non-empty string")
    if len(value) > max_len:
        raise InvalidAction(f"{name} too long")
    return value


def batch_to_list(actions: Sequence[Action]) -> List[Dict[str, str]]:
    out: List[Dict[str, str]] = []
    for action in actions:
        try:
            name = Opcode(action.opcode).name
        except ValueError:
            # Unknown opcodes survive encoding; the dispatcher rejects them.
            name = str(int(action.opcode))
        out.append({"op": name, "payload": bytes(action.payload).hex()})
    return out


def batch_from_list(items: Any) -> Tuple[Action, ...]:
    """Inverse of `batch_to_list`; structural problems raise InvalidAction."""
    if not isinstance(items, list):
        raise InvalidAction("batch must be a list")
    actions: List[Action] = []
    for i, item in enumerate(items):
        if not isinstance(item, dict) or set(item.keys()) != {"op", "payload"}:
            raise InvalidAction(f"batch[{i}] must be an object with op and payload")
        op = _require_str(item["op"], name=f"batch[{i}].op")
        if op in Opcode.__members__:
            opcode = int(Opcode[op])
        elif op.isdigit():
            opcode = int(op)
        else:
            raise InvalidAction(f"batch[{i}].op is not an opcode: {op}")
        payload_hex = item["payload"]
        if not isinstance(payload_hex, str):
            raise InvalidAction(f"batch[{i}].payload must be a hex string")
        try:
            payload = bytes.fromhex(payload_hex)
        except ValueError as exc:
            raise InvalidAction(f"batch[{i}].payload must be valid hex") from exc
        actions.append(Action(opcode=opcode, payload=payload))
    return tuple(actions)
