"""Wrapped native asset: 1:1 claim on native value held by the wrapper."""

from __future__ import annotations

from ..core.errors import InvalidAction
from ..core.uint import require_uint
from ..state.balances import NATIVE_ASSET, Address, Amount, AssetId, BalanceTable

WRAPPED_NATIVE_ASSET = "wnative"


class WrappedNative:
    def __init__(
        self,
        bank: BalanceTable,
        *,
        asset: AssetId = WRAPPED_NATIVE_ASSET,
        address: Address = "wnative:vault",
    ) -> None:
        if asset == NATIVE_ASSET:
            raise ValueError("wrapped asset id must differ from the native asset id")
        self.bank = bank
        self.asset = asset
        self.address = address

    @property
    def total_supply(self) -> Amount:
        return self.bank.get(self.address, NATIVE_ASSET)

    def deposit(self, account: Address, amount: Amount) -> Amount:
        """Lock `amount` native from `account` and credit it the same amount of wrapped asset."""
        require_uint(amount, name="amount")
        try:
            self.bank.transfer(account, self.address, NATIVE_ASSET, amount)
        except ValueError as exc:
            raise InvalidAction(f"cannot wrap {amount}: {exc}") from exc
        self.bank.add(account, self.asset, amount)
        return amount

    def withdraw(self, account: Address, amount: Amount) -> Amount:
        """Burn `amount` wrapped asset from `account` and release the native value."""
        require_uint(amount, name="amount")
        try:
            self.bank.subtract(account, self.asset, amount)
        except ValueError as exc:
            raise InvalidAction(f"cannot unwrap {amount}: {exc}") from exc
        self.bank.transfer(self.address, account, NATIVE_ASSET, amount)
        return amount
