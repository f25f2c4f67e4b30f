"""
Constant-product swap quoting (single pool and chained multi-hop).

This module implements the quote arithmetic the settlement engine uses to size
constant-product flash swaps before any funds move.

Algorithm Design:
- Type: Fixed-Point Integer Arithmetic / Deterministic Rounding
- Time Complexity: O(1) per hop, O(n) per chained quote
- Space Complexity: O(n) for the returned hop amounts
- Rounding: amounts the caller receives round down, amounts the caller pays
  round up, so the pool is never underpaid.
"""

from __future__ import annotations

from typing import Callable, List, Sequence, Tuple

from ..state.balances import Amount, AssetId
from .errors import InsufficientInput, InsufficientLiquidity, InsufficientOutput, InvalidAction
from .uint import add, mul, require_uint

BPS_DENOM = 10_000
DEFAULT_FEE_BPS = 30

HopAmounts = Tuple[Amount, ...]
ReservesFn = Callable[[AssetId, AssetId], Tuple[Amount, Amount]]


def _require_fee_bps(fee_bps: int) -> int:
    if not isinstance(fee_bps, int) or isinstance(fee_bps, bool):
        raise InvalidAction("fee_bps must be an int")
    if not (0 <= fee_bps < BPS_DENOM):
        raise InvalidAction(f"fee_bps must be in [0, {BPS_DENOM}): {fee_bps}")
    return fee_bps


def quote_out_given_in(
    amount_in: Amount,
    reserve_in: Amount,
    reserve_out: Amount,
    fee_bps: int = DEFAULT_FEE_BPS,
) -> Amount:
    """
    Compute the output of an exact-in swap.

    Formula (fee taken from the input side before x*y=k):
        in_with_fee = amount_in * (10_000 - fee_bps)
        amount_out = floor(in_with_fee * reserve_out / (reserve_in * 10_000 + in_with_fee))

    Raises:
        InsufficientInput: amount_in == 0
        InsufficientLiquidity: either reserve is empty
    """
    require_uint(amount_in, name="amount_in")
    require_uint(reserve_in, name="reserve_in")
    require_uint(reserve_out, name="reserve_out")
    _require_fee_bps(fee_bps)
    if amount_in == 0:
        raise InsufficientInput("amount_in must be positive")
    if reserve_in == 0 or reserve_out == 0:
        raise InsufficientLiquidity("cannot quote against an empty reserve")

    in_with_fee = mul(amount_in, BPS_DENOM - fee_bps)
    numerator = mul(in_with_fee, reserve_out)
    denominator = add(mul(reserve_in, BPS_DENOM), in_with_fee)
    return numerator // denominator


def quote_in_given_out(
    amount_out: Amount,
    reserve_in: Amount,
    reserve_out: Amount,
    fee_bps: int = DEFAULT_FEE_BPS,
) -> Amount:
    """
    Compute the input required by an exact-out swap.

    Formula:
        amount_in = floor(reserve_in * amount_out * 10_000 / ((reserve_out - amount_out) * (10_000 - fee_bps))) + 1

    The trailing +1 rounds up so that paying `amount_in` and taking `amount_out`
    never decreases the pool's fee-adjusted invariant.

    Raises:
        InsufficientOutput: amount_out == 0
        InsufficientLiquidity: amount_out >= reserve_out, or reserve_in is empty
    """
    require_uint(amount_out, name="amount_out")
    require_uint(reserve_in, name="reserve_in")
    require_uint(reserve_out, name="reserve_out")
    _require_fee_bps(fee_bps)
    if amount_out == 0:
        raise InsufficientOutput("amount_out must be positive")
    if reserve_in == 0 or amount_out >= reserve_out:
        raise InsufficientLiquidity(
            f"cannot take {amount_out} out of reserve {reserve_out} (reserve_in={reserve_in})"
        )

    numerator = mul(mul(reserve_in, amount_out), BPS_DENOM)
    denominator = mul(reserve_out - amount_out, BPS_DENOM - fee_bps)
    return add(numerator // denominator, 1)


def _require_path(path: Sequence[AssetId]) -> None:
    if len(path) < 2:
        raise InvalidAction(f"path must contain at least 2 assets, got {len(path)}")
    for a, b in zip(path, path[1:]):
        if a == b:
            raise InvalidAction(f"path contains a self-swap hop: {a}")


def chain_quote_in(
    path: Sequence[AssetId],
    amount_out: Amount,
    *,
    reserves: ReservesFn,
    fee_bps: int = DEFAULT_FEE_BPS,
) -> HopAmounts:
    """
    Quote the inputs needed to receive `amount_out` of `path[-1]`.

    Walks the path from its last hop to its first. The result is in reverse order
    relative to the path: entry 0 is the terminal output, the last entry is the
    amount needed at `path[0]`. Exact-output settlement recurses in this same
    order and consumes the entries front to back.

    `reserves(asset_in, asset_out)` returns the pool's reserves ordered as
    (reserve_in, reserve_out).
    """
    _require_path(path)
    amounts: List[Amount] = [require_uint(amount_out, name="amount_out")]
    for i in range(len(path) - 1, 0, -1):
        reserve_in, reserve_out = reserves(path[i - 1], path[i])
        amounts.append(quote_in_given_out(amounts[-1], reserve_in, reserve_out, fee_bps))
    return tuple(amounts)


def chain_quote_out(
    path: Sequence[AssetId],
    amount_in: Amount,
    *,
    reserves: ReservesFn,
    fee_bps: int = DEFAULT_FEE_BPS,
) -> HopAmounts:
    """
    Quote the outputs received for paying `amount_in` of `path[0]`.

    Forward order: entry 0 is `amount_in`, the last entry is the amount received
    at `path[-1]`.
    """
    _require_path(path)
    amounts: List[Amount] = [require_uint(amount_in, name="amount_in")]
    for i in range(len(path) - 1):
        reserve_in, reserve_out = reserves(path[i], path[i + 1])
        amounts.append(quote_out_given_in(amounts[-1], reserve_in, reserve_out, fee_bps))
    return tuple(amounts)
