"""Swap descriptor types for leveraged settlement.

Path orientation is the same for every sub-action: ``path[0]`` is the asset the
user pays (borrowed or redeemed from the ledger) and ``path[-1]`` is the asset
the user receives (supplied or repaid to the ledger).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, unique
from typing import Any, Dict, Optional, Tuple

from ..state.balances import Amount, AssetId
from .errors import InvalidAction
from .uint import UINT256_MAX

# "Use the whole existing position" marker for amount_specified / ledger amounts.
FULL_AMOUNT = UINT256_MAX


@unique
class SwapMode(Enum):
    EXACT_INPUT = "EXACT_INPUT"
    EXACT_OUTPUT = "EXACT_OUTPUT"


@unique
class SubAction(Enum):
    OPEN_LONG = "OPEN_LONG"
    CLOSE_LONG = "CLOSE_LONG"
    OPEN_SHORT = "OPEN_SHORT"
    CLOSE_SHORT = "CLOSE_SHORT"
    SWAP_DEBT = "SWAP_DEBT"
    SWAP_COLLATERAL = "SWAP_COLLATERAL"


@unique
class Obtain(Enum):
    """How the paid asset (path[0]) is sourced from the ledger."""
    BORROW = "borrow"
    REDEEM = "redeem"


@unique
class Deliver(Enum):
    """Where the received asset (path[-1]) goes in the ledger."""
    SUPPLY = "supply"
    REPAY = "repay"


# sub_action -> (mode, obtain, deliver)
SUB_ACTION_RULES: Dict[SubAction, Tuple[SwapMode, Obtain, Deliver]] = {
    SubAction.OPEN_LONG: (SwapMode.EXACT_OUTPUT, Obtain.BORROW, Deliver.SUPPLY),
    SubAction.CLOSE_SHORT: (SwapMode.EXACT_OUTPUT, Obtain.REDEEM, Deliver.REPAY),
    SubAction.SWAP_DEBT: (SwapMode.EXACT_OUTPUT, Obtain.BORROW, Deliver.REPAY),
    SubAction.CLOSE_LONG: (SwapMode.EXACT_INPUT, Obtain.REDEEM, Deliver.REPAY),
    SubAction.OPEN_SHORT: (SwapMode.EXACT_INPUT, Obtain.BORROW, Deliver.SUPPLY),
    SubAction.SWAP_COLLATERAL: (SwapMode.EXACT_INPUT, Obtain.REDEEM, Deliver.SUPPLY),
}


@dataclass(frozen=True)
class SwapDescriptor:
    """One leveraged swap request.

    ``amount_specified`` fixes the paid side for exact-input modes and the
    received side for exact-output modes; ``amount_limit`` bounds the other side
    (receive at least / pay at most). ``fee_tiers`` is only used by the
    concentrated venue, one tier per hop.
    """

    mode: SwapMode
    sub_action: SubAction
    path: Tuple[AssetId, ...]
    amount_specified: Amount
    amount_limit: Amount
    deadline: int
    fee_tiers: Tuple[int, ...] = field(default=())

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", tuple(self.path))
        object.__setattr__(self, "fee_tiers", tuple(self.fee_tiers))

    @property
    def rules(self) -> Tuple[SwapMode, Obtain, Deliver]:
        return SUB_ACTION_RULES[self.sub_action]

    @property
    def asset_in(self) -> AssetId:
        return self.path[0]

    @property
    def asset_out(self) -> AssetId:
        return self.path[-1]

    @property
    def is_full(self) -> bool:
        return self.amount_specified == FULL_AMOUNT

    def validate(self) -> None:
        """Structural checks that do not depend on time or venue."""
        for name, v in (
            ("amount_specified", self.amount_specified),
            ("amount_limit", self.amount_limit),
            ("deadline", self.deadline),
        ):
            if not isinstance(v, int) or isinstance(v, bool) or v < 0:
                raise InvalidAction(f"{name} must be a non-negative int")
            if v > UINT256_MAX:
                raise InvalidAction(f"{name} exceeds uint256")
        if len(self.path) < 2:
            raise InvalidAction(f"path must contain at least 2 assets, got {len(self.path)}")
        for asset in self.path:
            if not isinstance(asset, str) or not asset:
                raise InvalidAction("path entries must be non-empty strings")
        for a, b in zip(self.path, self.path[1:]):
            if a == b:
                raise InvalidAction(f"path contains a self-swap hop: {a}")
        for tier in self.fee_tiers:
            if not isinstance(tier, int) or isinstance(tier, bool) or tier < 0:
                raise InvalidAction("fee tiers must be non-negative ints")

        mode, obtain, deliver = self.rules
        if mode is not self.mode:
            raise InvalidAction(f"{self.sub_action.value} requires {mode.value}, got {self.mode.value}")
        if self.amount_specified == 0:
            raise InvalidAction("amount_specified must be positive")
        if self.is_full:
            # FULL means "the whole existing position": only meaningful on the side
            # that already exists in the ledger.
            if mode is SwapMode.EXACT_INPUT and obtain is not Obtain.REDEEM:
                raise InvalidAction(f"{self.sub_action.value} does not accept the full-balance amount")
            if mode is SwapMode.EXACT_OUTPUT and deliver is not Deliver.REPAY:
                raise InvalidAction(f"{self.sub_action.value} does not accept the full-balance amount")


def descriptor_to_dict(d: SwapDescriptor) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "mode": d.mode.value,
        "sub_action": d.sub_action.value,
        "path": list(d.path),
        "amount_specified": d.amount_specified,
        "amount_limit": d.amount_limit,
        "deadline": d.deadline,
    }
    if d.fee_tiers:
        out["fee_tiers"] = list(d.fee_tiers)
    return out


def descriptor_from_dict(obj: Any) -> SwapDescriptor:
    """Parse a descriptor object; any structural problem is an InvalidAction."""
    if not isinstance(obj, dict):
        raise InvalidAction("descriptor must be an object")
    allowed = {"mode", "sub_action", "path", "amount_specified", "amount_limit", "deadline", "fee_tiers"}
    extra = set(obj.keys()) - allowed
    if extra:
        raise InvalidAction(f"descriptor has unknown fields: {sorted(extra)}")
    try:
        mode = SwapMode(obj.get("mode"))
        sub_action = SubAction(obj.get("sub_action"))
    except ValueError as exc:
        raise InvalidAction(f"invalid descriptor enum: {exc}") from exc
    path = obj.get("path")
    if not isinstance(path, list):
        raise InvalidAction("descriptor.path must be a list")
    fee_tiers: Optional[Any] = obj.get("fee_tiers", [])
    if not isinstance(fee_tiers, list):
        raise InvalidAction("descriptor.fee_tiers must be a list")
    d = SwapDescriptor(
        mode=mode,
        sub_action=sub_action,
        path=tuple(path),
        amount_specified=obj.get("amount_specified"),
        amount_limit=obj.get("amount_limit"),
        deadline=obj.get("deadline"),
        fee_tiers=tuple(fee_tiers),
    )
    d.validate()
    return d
