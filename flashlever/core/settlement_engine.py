"""
Flash-swap settlement engine for leveraged positions.

One `execute_leverage_action` call moves a user's ledger position along an asset
path by chaining flash swaps through AMM pools. Funds are requested before they
exist: each hop's pool sends its output first and calls back; the callback either
opens the next hop or, at the last frame, settles with the ledger. Every frame
then pays its own pool on the way back out of the recursion.

Recursion order:
    EXACT_OUTPUT walks the path backward (last hop first). The first frame takes
    the exact target output of path[-1]; every frame owes the input of its hop,
    which the next (earlier) hop produces.
    EXACT_INPUT walks the path forward. The first frame owes the exact input of
    path[0]; every frame's output funds the next (later) hop.
In both modes the final frame borrows or redeems path[0] and supplies or repays
path[-1], so the ledger sees exactly one obtain and one deliver.

Callback authentication:
    The expected pool of every open frame is kept on an explicit pending stack.
    A callback is honoured only if a flash request is outstanding, its caller is
    the top of that stack, the pool id recomputed from the payload's asset pair
    (and fee tier) equals it, the payload is byte-for-byte the one the engine sent,
    the swap was initiated by this engine, and the frame has not been called back
    already. Nothing is mutated before these checks.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum, unique
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING, Tuple

import structlog

from ..state.balances import Address, Amount, AssetId, BalanceTable
from ..state.canonical import canonical_json_bytes, decode_canonical_json
from ..state.journal import Journal
from ..state.pools import PoolKind
from .deferred_check import DeferredCheckScope
from .descriptor import SUB_ACTION_RULES, Deliver, Obtain, SubAction, SwapDescriptor, SwapMode
from .errors import (
    DeadlineExpired,
    ExecutionError,
    InsufficientInput,
    InvalidAction,
    PoolNotFound,
    SlippageExceeded,
    UnauthorizedCallback,
)
from .pool_resolver import ConstantProductPoolVenue, PoolVenue, pool_id, reserves_of
from .swap_math import chain_quote_in, chain_quote_out

if TYPE_CHECKING:
    from ..integration.ledger import LedgerProtocol

logger = structlog.get_logger(__name__)

DEFAULT_ENGINE_ADDRESS = "flashlever:engine"
DEFAULT_MAX_HOPS = 4


@unique
class EngineState(Enum):
    IDLE = "IDLE"
    FLASH_REQUESTED = "FLASH_REQUESTED"
    CALLBACK_RECEIVED = "CALLBACK_RECEIVED"
    LEDGER_SETTLED = "LEDGER_SETTLED"
    COMPLETING = "COMPLETING"


@dataclass(frozen=True)
class SettlementResult:
    """Outcome of one leveraged action.

    ``hops`` holds one amount per path node, in path order: ``hops[0]`` was paid
    at ``path[0]`` and ``hops[-1]`` was received at ``path[-1]``.
    """

    amount_in: Amount
    amount_out: Amount
    hops: Tuple[Amount, ...]


@dataclass
class _PendingFrame:
    pool_id: str
    depth: int
    payload: bytes
    received: bool = False


def unix_time() -> int:
    return int(time.time())


class SettlementEngine:
    def __init__(
        self,
        *,
        bank: BalanceTable,
        ledger: LedgerProtocol,
        journal: Journal,
        scope: DeferredCheckScope,
        constant_product: Optional[ConstantProductPoolVenue] = None,
        concentrated: Optional[PoolVenue] = None,
        address: Address = DEFAULT_ENGINE_ADDRESS,
        clock: Callable[[], int] = unix_time,
        max_hops: int = DEFAULT_MAX_HOPS,
    ) -> None:
        if constant_product is not None and not isinstance(getattr(constant_product, "fee_bps", None), int):
            raise TypeError("constant-product venue must expose an int fee_bps")
        self.bank = bank
        self.ledger = ledger
        self.journal = journal
        self.scope = scope
        self.constant_product = constant_product
        self.concentrated = concentrated
        self.address = address
        self.clock = clock
        self.max_hops = max_hops
        self.state = EngineState.IDLE
        self._pending: List[_PendingFrame] = []
        self._settled: Optional[SettlementResult] = None

    @property
    def pending_pools(self) -> Tuple[str, ...]:
        return tuple(f.pool_id for f in self._pending)

    # --- entry point --------------------------------------------------------

    def execute_leverage_action(
        self,
        user: Address,
        descriptor: SwapDescriptor,
        *,
        venue_kind: PoolKind,
    ) -> SettlementResult:
        """
        Run one leveraged swap for `user` atomically.

        Raises:
            InvalidAction: Malformed descriptor, unsupported venue, or a settlement in progress
            DeadlineExpired: The injected clock is past `descriptor.deadline`
            SlippageExceeded: The settled amounts violate `descriptor.amount_limit`
            Any swap-math, venue or ledger error raised along the chain
        """
        if self.state is not EngineState.IDLE or self._pending:
            raise InvalidAction("a settlement is already in progress")
        venue = self._venue(venue_kind)
        self._validate(descriptor, venue_kind)

        with self.journal.atomic():
            with self.scope.deferred(user):
                try:
                    amount = self._resolve_amount(user, descriptor)
                    ctx = self._initial_context(user, descriptor, amount, venue_kind)
                    logger.debug(
                        "leverage_start",
                        sub_action=descriptor.sub_action.value,
                        user=user,
                        venue=venue_kind.value,
                        path="->".join(descriptor.path),
                        amount=amount,
                    )
                    if venue_kind is PoolKind.CONSTANT_PRODUCT:
                        self._cp_request(venue, ctx)
                    else:
                        self._cl_request(venue, ctx)
                    result = self._settled
                    if result is None:
                        raise InvalidAction("flash chain completed without settling")
                finally:
                    self._settled = None
                    self._pending.clear()
                    self.state = EngineState.IDLE
        logger.debug(
            "leverage_settled",
            sub_action=descriptor.sub_action.value,
            amount_in=result.amount_in,
            amount_out=result.amount_out,
        )
        return result

    # --- validation ---------------------------------------------------------

    def _venue(self, venue_kind: PoolKind) -> PoolVenue:
        venue = self.constant_product if venue_kind is PoolKind.CONSTANT_PRODUCT else self.concentrated
        if venue is None:
            raise InvalidAction(f"no {venue_kind.value} venue configured")
        return venue

    def _validate(self, d: SwapDescriptor, venue_kind: PoolKind) -> None:
        d.validate()
        hops = len(d.path) - 1
        if hops > self.max_hops:
            raise InvalidAction(f"path has {hops} hops, limit is {self.max_hops}")
        if venue_kind is PoolKind.CONSTANT_PRODUCT and d.fee_tiers:
            raise InvalidAction("constant-product paths do not take fee tiers")
        if venue_kind is PoolKind.CONCENTRATED and len(d.fee_tiers) != hops:
            raise InvalidAction(f"expected {hops} fee tiers, got {len(d.fee_tiers)}")
        now = self.clock()
        if now > d.deadline:
            raise DeadlineExpired(f"deadline {d.deadline} passed (now {now})")

    def _resolve_amount(self, user: Address, d: SwapDescriptor) -> Amount:
        """Substitute the full-position sentinel, once, before any quoting."""
        if not d.is_full:
            return d.amount_specified
        if d.mode is SwapMode.EXACT_INPUT:
            amount = self.ledger.get_supply_balance(user, d.asset_in)
        else:
            amount = self.ledger.get_borrow_balance(user, d.asset_out)
        if amount == 0:
            raise InvalidAction(f"{d.sub_action.value}: no position to use in full")
        logger.debug("full_amount_resolved", user=user, amount=amount)
        return amount

    def _initial_context(
        self, user: Address, d: SwapDescriptor, amount: Amount, venue_kind: PoolKind
    ) -> Dict[str, Any]:
        hops = len(d.path) - 1
        ctx: Dict[str, Any] = {
            "user": user,
            "sub_action": d.sub_action.value,
            "mode": d.mode.value,
            "path": list(d.path),
            "fee_tiers": list(d.fee_tiers),
            "limit": d.amount_limit,
            "depth": 1,
            "hop": hops - 1 if d.mode is SwapMode.EXACT_OUTPUT else 0,
            "amounts": [amount],
        }
        if venue_kind is PoolKind.CONSTANT_PRODUCT:
            venue = self.constant_product

            def reserves(asset_in: AssetId, asset_out: AssetId) -> Tuple[Amount, Amount]:
                return reserves_of(venue, pool_id(asset_in, asset_out, kind=venue.kind), asset_in, asset_out)

            fee_bps = venue.fee_bps
            if d.mode is SwapMode.EXACT_OUTPUT:
                ctx["amounts"] = list(chain_quote_in(d.path, amount, reserves=reserves, fee_bps=fee_bps))
            else:
                ctx["amounts"] = list(chain_quote_out(d.path, amount, reserves=reserves, fee_bps=fee_bps))
        return ctx

    # --- frames -------------------------------------------------------------

    def _push(self, pid: str, depth: int, payload: bytes) -> _PendingFrame:
        frame = _PendingFrame(pool_id=pid, depth=depth, payload=payload)
        self._pending.append(frame)
        self.state = EngineState.FLASH_REQUESTED
        return frame

    def _pop(self, frame: _PendingFrame) -> None:
        if self._pending and self._pending[-1] is frame:
            self._pending.pop()

    def _cp_request(self, venue: Any, ctx: Dict[str, Any]) -> None:
        """Open the constant-product frame for hop ctx['hop']."""
        path: List[AssetId] = ctx["path"]
        h: int = ctx["hop"]
        depth: int = ctx["depth"]
        asset_in, asset_out = path[h], path[h + 1]
        amount_out = _cp_hop_amounts(ctx, h)[1]
        pid = pool_id(asset_in, asset_out, kind=PoolKind.CONSTANT_PRODUCT)
        asset0, _ = venue.pool_assets(pid)
        amount0_out, amount1_out = (amount_out, 0) if asset_out == asset0 else (0, amount_out)

        payload = canonical_json_bytes(ctx)
        frame = self._push(pid, depth, payload)
        try:
            logger.debug("cp_flash_requested", depth=depth, pool=pid, asset_out=asset_out, amount_out=amount_out)
            venue.swap(
                pid,
                amount0_out,
                amount1_out,
                self.address,
                payload,
                sender=self.address,
                callback=self.constant_product_callback,
            )
        except ExecutionError as exc:
            if exc.depth is None:
                exc.depth = depth
            raise
        finally:
            self._pop(frame)

    def _cl_request(self, venue: Any, ctx: Dict[str, Any]) -> None:
        """Open the concentrated-liquidity frame for hop ctx['hop']."""
        path: List[AssetId] = ctx["path"]
        h: int = ctx["hop"]
        depth: int = ctx["depth"]
        asset_in, asset_out = path[h], path[h + 1]
        fee_tier = ctx["fee_tiers"][h]
        pid = pool_id(asset_in, asset_out, fee_tier, kind=PoolKind.CONCENTRATED)
        if not venue.has_pool(pid):
            raise PoolNotFound(f"no concentrated pool {asset_in}/{asset_out} fee={fee_tier}", depth=depth)
        # amounts grows by one entry per frame; its last entry is this hop's fixed side.
        fixed = ctx["amounts"][-1]
        amount_specified = -fixed if ctx["mode"] == SwapMode.EXACT_OUTPUT.value else fixed

        payload = canonical_json_bytes(ctx)
        frame = self._push(pid, depth, payload)
        try:
            logger.debug(
                "cl_flash_requested",
                depth=depth,
                pool=pid,
                asset_in=asset_in,
                asset_out=asset_out,
                amount_specified=amount_specified,
            )
            venue.swap(
                pid,
                self.address,
                asset_in < asset_out,
                amount_specified,
                payload,
                callback=self.concentrated_callback,
            )
        except ExecutionError as exc:
            if exc.depth is None:
                exc.depth = depth
            raise
        finally:
            self._pop(frame)

    # --- callbacks ----------------------------------------------------------

    def _authenticate(self, caller: str, data: bytes, kind: PoolKind) -> Tuple[_PendingFrame, Dict[str, Any]]:
        if self.state is not EngineState.FLASH_REQUESTED or not self._pending:
            raise UnauthorizedCallback("no flash request is pending")
        frame = self._pending[-1]
        if frame.received:
            raise UnauthorizedCallback(f"pool {caller} already called back", depth=frame.depth)
        try:
            ctx = decode_canonical_json(data)
            path = ctx["path"]
            h = ctx["hop"]
            fee = ctx["fee_tiers"][h] if kind is PoolKind.CONCENTRATED else None
            expected = pool_id(path[h], path[h + 1], fee, kind=kind)
        except (ValueError, KeyError, IndexError, TypeError, ExecutionError) as exc:
            raise UnauthorizedCallback(f"unrecognised callback payload: {exc}", depth=frame.depth) from exc
        if caller != expected or caller != frame.pool_id or ctx.get("depth") != frame.depth:
            raise UnauthorizedCallback(f"callback from {caller}, expected {frame.pool_id}", depth=frame.depth)
        if bytes(data) != frame.payload:
            raise UnauthorizedCallback(f"callback payload from {caller} differs from the request", depth=frame.depth)
        frame.received = True
        self.state = EngineState.CALLBACK_RECEIVED
        return frame, ctx

    def constant_product_callback(
        self,
        caller: str,
        sender: Address,
        amount0_out: Amount,
        amount1_out: Amount,
        data: bytes,
    ) -> None:
        """Flash callback invoked by a constant-product pool after it sent its output."""
        if sender != self.address:
            raise UnauthorizedCallback(f"flash swap initiated by {sender}, not this engine")
        frame, ctx = self._authenticate(caller, data, PoolKind.CONSTANT_PRODUCT)
        path: List[AssetId] = ctx["path"]
        h: int = ctx["hop"]
        amount_owed, amount_out = _cp_hop_amounts(ctx, h)
        if amount0_out + amount1_out != amount_out or 0 not in (amount0_out, amount1_out):
            raise UnauthorizedCallback(
                f"pool {caller} reported output ({amount0_out}, {amount1_out}), requested {amount_out}",
                depth=frame.depth,
            )

        self._continue_or_settle(ctx, self._cp_request, self.constant_product)
        self._repay_pool(frame, path[h], amount_owed)

    def concentrated_callback(
        self,
        caller: str,
        amount0_delta: int,
        amount1_delta: int,
        data: bytes,
    ) -> None:
        """Swap callback invoked by a concentrated pool; positive deltas are owed to it."""
        frame, ctx = self._authenticate(caller, data, PoolKind.CONCENTRATED)
        path: List[AssetId] = ctx["path"]
        h: int = ctx["hop"]
        zero_for_one = path[h] < path[h + 1]
        owed, received = (amount0_delta, -amount1_delta) if zero_for_one else (amount1_delta, -amount0_delta)
        fixed = ctx["amounts"][-1]
        exact_output = ctx["mode"] == SwapMode.EXACT_OUTPUT.value
        if owed <= 0 or received <= 0 or (received if exact_output else owed) != fixed:
            raise UnauthorizedCallback(
                f"callback deltas ({amount0_delta}, {amount1_delta}) do not match the request", depth=frame.depth
            )
        # exact output: [out at path[-1], in of last hop, ...]; exact input: [in at path[0], out of hop 0, ...]
        ctx["amounts"].append(owed if exact_output else received)

        self._continue_or_settle(ctx, self._cl_request, self.concentrated)
        self._repay_pool(frame, path[h], owed)

    # --- settlement ---------------------------------------------------------

    def _continue_or_settle(self, ctx: Dict[str, Any], request: Callable[[Any, Dict[str, Any]], None], venue: Any) -> None:
        if _has_next_hop(ctx):
            request(venue, _next_context(ctx))
            return
        amounts = tuple(ctx["amounts"])
        # Settlement amounts are reported in path order.
        hops = tuple(reversed(amounts)) if ctx["mode"] == SwapMode.EXACT_OUTPUT.value else amounts
        self._settle(ctx, hops)

    def _settle(self, ctx: Dict[str, Any], hops: Tuple[Amount, ...]) -> None:
        """Final frame: check the limit, then obtain path[0] and deliver path[-1] via the ledger."""
        user: Address = ctx["user"]
        path: List[AssetId] = ctx["path"]
        d_mode, obtain, deliver = SUB_ACTION_RULES[SubAction(ctx["sub_action"])]
        limit: Amount = ctx["limit"]
        amount_in, amount_out = hops[0], hops[-1]

        if d_mode is SwapMode.EXACT_OUTPUT and amount_in > limit:
            raise SlippageExceeded(f"required input {amount_in} exceeds limit {limit}", depth=ctx["depth"])
        if d_mode is SwapMode.EXACT_INPUT and amount_out < limit:
            raise SlippageExceeded(f"output {amount_out} below limit {limit}", depth=ctx["depth"])

        try:
            if obtain is Obtain.BORROW:
                self.ledger.borrow(self.address, user, self.address, path[0], amount_in)
            else:
                self.ledger.redeem(self.address, user, self.address, path[0], amount_in)

            if deliver is Deliver.SUPPLY:
                self.ledger.supply(self.address, self.address, user, path[-1], amount_out)
            else:
                debt = self.ledger.get_borrow_balance(user, path[-1])
                repaid = min(amount_out, debt)
                if repaid:
                    self.ledger.repay(self.address, self.address, user, path[-1], repaid)
                if amount_out > repaid:
                    self.bank.transfer(self.address, user, path[-1], amount_out - repaid)
        except ExecutionError as exc:
            if exc.depth is None:
                exc.depth = ctx["depth"]
            raise

        self.state = EngineState.LEDGER_SETTLED
        self._settled = SettlementResult(amount_in=amount_in, amount_out=amount_out, hops=hops)
        logger.debug(
            "ledger_settled",
            depth=ctx["depth"],
            user=user,
            obtain=obtain.value,
            amount_in=amount_in,
            asset_in=path[0],
            deliver=deliver.value,
            amount_out=amount_out,
            asset_out=path[-1],
        )

    def _repay_pool(self, frame: _PendingFrame, asset: AssetId, amount: Amount) -> None:
        self.state = EngineState.COMPLETING
        try:
            self.bank.transfer(self.address, frame.pool_id, asset, amount)
        except ValueError as exc:
            raise InsufficientInput(f"cannot repay pool {frame.pool_id}: {exc}", depth=frame.depth) from exc
        logger.debug("pool_repaid", depth=frame.depth, pool=frame.pool_id, asset=asset, amount=amount)


def _has_next_hop(ctx: Dict[str, Any]) -> bool:
    if ctx["mode"] == SwapMode.EXACT_OUTPUT.value:
        return ctx["hop"] > 0
    return ctx["hop"] < len(ctx["path"]) - 2


def _next_context(ctx: Dict[str, Any]) -> Dict[str, Any]:
    step = -1 if ctx["mode"] == SwapMode.EXACT_OUTPUT.value else 1
    nxt = dict(ctx)
    nxt["hop"] = ctx["hop"] + step
    nxt["depth"] = ctx["depth"] + 1
    nxt["amounts"] = list(ctx["amounts"])
    return nxt


def _cp_hop_amounts(ctx: Dict[str, Any], h: int) -> Tuple[Amount, Amount]:
    """(input, output) of constant-product hop h from the precomputed quote."""
    amounts: List[Amount] = ctx["amounts"]
    if ctx["mode"] == SwapMode.EXACT_OUTPUT.value:
        # chain_quote_in order: amounts[j] is the amount at path[-1 - j].
        last = len(ctx["path"]) - 1
        return amounts[last - h], amounts[last - h - 1]
    return amounts[h], amounts[h + 1]
