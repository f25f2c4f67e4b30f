"""
In-memory lending ledger.

Positions are per-(account, asset) supply and borrow balances. Market cash is the
ledger's own holding in the shared BalanceTable. Prices and collateral factors are
static per market: there is no interest accrual, no liquidation and no oracle.

Solvency rule (integer, no rounding in the account's favour):
    sum(supply * price * collateral_factor_bps // 10_000) >= sum(borrow * price)

Borrow and redeem run the solvency check immediately unless the account's check
is currently deferred, in which case DeferredCheckScope runs it once when the
outermost scope closes.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Iterable, Optional, Protocol, Set, Tuple

import structlog

from ..core.descriptor import FULL_AMOUNT
from ..core.errors import ExecutionError, LedgerRejected
from ..core.uint import require_uint
from ..state.balances import Address, Amount, AssetId, BalanceTable
from ..state.deferred import DeferredCheckTable

logger = structlog.get_logger(__name__)

BPS_DENOM = 10_000


class LedgerProtocol(Protocol):
    deferred_checks: DeferredCheckTable

    def supply(self, operator: Address, payer: Address, receiver: Address, asset: AssetId, amount: Amount) -> Amount: ...

    def borrow(self, operator: Address, borrower: Address, receiver: Address, asset: AssetId, amount: Amount) -> Amount: ...

    def redeem(self, operator: Address, owner: Address, receiver: Address, asset: AssetId, amount: Amount) -> Amount: ...

    def repay(self, operator: Address, payer: Address, account: Address, asset: AssetId, amount: Amount) -> Amount: ...

    def check_account_solvency(self, account: Address) -> None: ...

    def get_supply_balance(self, account: Address, asset: AssetId) -> Amount: ...

    def get_borrow_balance(self, account: Address, asset: AssetId) -> Amount: ...


@dataclass
class Market:
    asset: AssetId
    price: int
    collateral_factor_bps: int
    supply_cap: Optional[int] = None
    paused: bool = False
    total_supply: Amount = 0
    total_borrow: Amount = 0


@dataclass(frozen=True)
class _LedgerSnapshot:
    markets: Dict[AssetId, Market]
    supplies: Dict[Tuple[Address, AssetId], Amount]
    borrows: Dict[Tuple[Address, AssetId], Amount]
    operators: Dict[Address, frozenset]
    deferred: object


class LendingLedger:
    def __init__(
        self,
        bank: BalanceTable,
        *,
        address: Address = "ledger",
        trusted_operators: Iterable[Address] = (),
    ) -> None:
        self.bank = bank
        self.address = address
        self.trusted_operators: frozenset = frozenset(trusted_operators)
        self.markets: Dict[AssetId, Market] = {}
        self.supplies: Dict[Tuple[Address, AssetId], Amount] = {}
        self.borrows: Dict[Tuple[Address, AssetId], Amount] = {}
        self.operators: Dict[Address, Set[Address]] = {}
        self.deferred_checks = DeferredCheckTable()

    # --- administration -----------------------------------------------------

    def list_market(
        self,
        asset: AssetId,
        price: int,
        collateral_factor_bps: int,
        *,
        supply_cap: Optional[int] = None,
    ) -> Market:
        if not isinstance(asset, str) or not asset:
            raise ValueError("asset must be a non-empty string")
        if not isinstance(price, int) or isinstance(price, bool) or price <= 0:
            raise ValueError(f"price must be a positive int: {price!r}")
        if not isinstance(collateral_factor_bps, int) or not (0 <= collateral_factor_bps <= BPS_DENOM):
            raise ValueError(f"collateral_factor_bps must be in [0, {BPS_DENOM}]: {collateral_factor_bps!r}")
        if asset in self.markets:
            raise ValueError(f"market already listed: {asset}")
        market = Market(asset=asset, price=price, collateral_factor_bps=collateral_factor_bps, supply_cap=supply_cap)
        self.markets[asset] = market
        return market

    def set_paused(self, asset: AssetId, paused: bool) -> None:
        self._market(asset).paused = bool(paused)

    def authorize(self, account: Address, operator: Address) -> None:
        self.operators.setdefault(account, set()).add(operator)

    def revoke(self, account: Address, operator: Address) -> None:
        self.operators.get(account, set()).discard(operator)

    def is_authorized(self, account: Address, operator: Address) -> bool:
        return (
            operator == account
            or operator in self.trusted_operators
            or operator in self.operators.get(account, ())
        )

    # --- reads --------------------------------------------------------------

    def get_supply_balance(self, account: Address, asset: AssetId) -> Amount:
        return self.supplies.get((account, asset), 0)

    def get_borrow_balance(self, account: Address, asset: AssetId) -> Amount:
        return self.borrows.get((account, asset), 0)

    def cash(self, asset: AssetId) -> Amount:
        return self.bank.get(self.address, asset)

    def account_liquidity(self, account: Address) -> Tuple[int, int]:
        """(risk-adjusted collateral value, debt value) in price units."""
        collateral = 0
        debt = 0
        for (holder, asset), amount in self.supplies.items():
            if holder == account:
                m = self.markets[asset]
                collateral += amount * m.price * m.collateral_factor_bps // BPS_DENOM
        for (holder, asset), amount in self.borrows.items():
            if holder == account:
                debt += amount * self.markets[asset].price
        return collateral, debt

    def check_account_solvency(self, account: Address) -> None:
        collateral, debt = self.account_liquidity(account)
        if collateral < debt:
            logger.debug("account_insolvent", account=account, collateral=collateral, debt=debt)
            raise LedgerRejected(f"account {account} is insolvent (collateral {collateral} < debt {debt})")

    # --- operations ---------------------------------------------------------

    def supply(self, operator: Address, payer: Address, receiver: Address, asset: AssetId, amount: Amount) -> Amount:
        """Pull `amount` of `asset` from `payer` into the market, credited to `receiver`."""
        self._require_operator(payer, operator)
        market = self._active_market(asset)
        amount = self._require_amount(amount, allow_full=False)
        if market.supply_cap is not None and market.total_supply + amount > market.supply_cap:
            raise LedgerRejected(f"supply cap reached for {asset}")
        self._move(payer, self.address, asset, amount)
        self._set_position(self.supplies, receiver, asset, self.get_supply_balance(receiver, asset) + amount)
        market.total_supply += amount
        return amount

    def borrow(self, operator: Address, borrower: Address, receiver: Address, asset: AssetId, amount: Amount) -> Amount:
        """Lend `amount` of `asset` to `receiver`, charged to `borrower`'s debt."""
        self._require_operator(borrower, operator)
        market = self._active_market(asset)
        amount = self._require_amount(amount, allow_full=False)
        if self.cash(asset) < amount:
            raise LedgerRejected(f"insufficient {asset} cash: {self.cash(asset)} < {amount}")
        self._move(self.address, receiver, asset, amount)
        self._set_position(self.borrows, borrower, asset, self.get_borrow_balance(borrower, asset) + amount)
        market.total_borrow += amount
        self._check_unless_deferred(borrower)
        return amount

    def redeem(self, operator: Address, owner: Address, receiver: Address, asset: AssetId, amount: Amount) -> Amount:
        """Withdraw supplied `asset` from `owner`'s position; FULL_AMOUNT redeems all of it."""
        self._require_operator(owner, operator)
        market = self._active_market(asset)
        balance = self.get_supply_balance(owner, asset)
        amount = balance if self._require_amount(amount, allow_full=True) == FULL_AMOUNT else amount
        if amount > balance:
            raise LedgerRejected(f"redeem {amount} exceeds supply balance {balance} of {asset}")
        if self.cash(asset) < amount:
            raise LedgerRejected(f"insufficient {asset} cash: {self.cash(asset)} < {amount}")
        self._move(self.address, receiver, asset, amount)
        self._set_position(self.supplies, owner, asset, balance - amount)
        market.total_supply -= amount
        self._check_unless_deferred(owner)
        return amount

    def repay(self, operator: Address, payer: Address, account: Address, asset: AssetId, amount: Amount) -> Amount:
        """Pay down `account`'s debt from `payer`; FULL_AMOUNT repays the whole debt."""
        self._require_operator(payer, operator)
        market = self._market(asset)
        debt = self.get_borrow_balance(account, asset)
        amount = debt if self._require_amount(amount, allow_full=True) == FULL_AMOUNT else amount
        if amount > debt:
            raise LedgerRejected(f"repay {amount} exceeds debt {debt} of {asset}")
        self._move(payer, self.address, asset, amount)
        self._set_position(self.borrows, account, asset, debt - amount)
        market.total_borrow -= amount
        return amount

    # --- journal ------------------------------------------------------------

    def snapshot(self) -> _LedgerSnapshot:
        return _LedgerSnapshot(
            markets={a: replace(m) for a, m in self.markets.items()},
            supplies=dict(self.supplies),
            borrows=dict(self.borrows),
            operators={a: frozenset(ops) for a, ops in self.operators.items()},
            deferred=self.deferred_checks.snapshot(),
        )

    def restore(self, snap: _LedgerSnapshot) -> None:
        self.markets = {a: replace(m) for a, m in snap.markets.items()}
        self.supplies = dict(snap.supplies)
        self.borrows = dict(snap.borrows)
        self.operators = {a: set(ops) for a, ops in snap.operators.items()}
        self.deferred_checks.restore(snap.deferred)

    # --- helpers ------------------------------------------------------------

    def _market(self, asset: AssetId) -> Market:
        market = self.markets.get(asset)
        if market is None:
            raise LedgerRejected(f"market not listed: {asset}")
        return market

    def _active_market(self, asset: AssetId) -> Market:
        market = self._market(asset)
        if market.paused:
            raise LedgerRejected(f"market paused: {asset}")
        return market

    def _require_operator(self, account: Address, operator: Address) -> None:
        if not self.is_authorized(account, operator):
            raise LedgerRejected(f"{operator} is not authorized to act for {account}")

    @staticmethod
    def _require_amount(amount: Amount, *, allow_full: bool) -> Amount:
        try:
            require_uint(amount, name="amount")
        except ExecutionError as exc:
            raise LedgerRejected(str(exc)) from exc
        if amount == FULL_AMOUNT and not allow_full:
            raise LedgerRejected("full-balance amount is only accepted by redeem and repay")
        return amount

    def _move(self, src: Address, dst: Address, asset: AssetId, amount: Amount) -> None:
        try:
            self.bank.transfer(src, dst, asset, amount)
        except ValueError as exc:
            raise LedgerRejected(str(exc)) from exc

    @staticmethod
    def _set_position(table: Dict[Tuple[Address, AssetId], Amount], account: Address, asset: AssetId, value: Amount) -> None:
        if value:
            table[(account, asset)] = value
        else:
            table.pop((account, asset), None)

    def _check_unless_deferred(self, account: Address) -> None:
        if not self.deferred_checks.is_deferred(account):
            self.check_account_solvency(account)
