"""
Multi-asset token balance tracking with deterministic ordering.

Implements BalanceTable[Address, AssetId] -> Amount.

Every participant of an execution (user accounts, pools, the ledger's market
cash, the executor itself) holds tokens in one shared table; moving tokens
between them is a `transfer`.
"""

from typing import Dict, Tuple


# Type aliases
Address = str  # account / contract identifier
AssetId = str  # token identifier
Amount = int  # Non-negative integer (arbitrary precision, bounded by uint256 at the edges)

# Native asset identifier (the value attached to a dispatch call)
NATIVE_ASSET = "native"


class BalanceTable:
    """
    Deterministic balance table mapping (holder, asset) -> amount.

    Note: this class stores balances in a plain dict. Do not rely on dict
    iteration order; callers sort keys explicitly where order matters.
    """

    def __init__(self):
        """Initialize empty balance table."""
        self._balances: Dict[Tuple[Address, AssetId], Amount] = {}

    def get(self, holder: Address, asset: AssetId) -> Amount:
        """Get balance for (holder, asset). Returns 0 if not found."""
        return self._balances.get((holder, asset), 0)

    def set(self, holder: Address, asset: AssetId, amount: Amount) -> None:
        """
        Set balance for (holder, asset).

        Raises:
            ValueError: If amount is negative
        """
        if amount < 0:
            raise ValueError(f"Balance cannot be negative: {amount}")
        if amount == 0:
            # Remove zero balances to keep table sparse
            self._balances.pop((holder, asset), None)
        else:
            self._balances[(holder, asset)] = amount

    def add(self, holder: Address, asset: AssetId, delta: Amount) -> None:
        """
        Add delta to balance (delta may be negative).

        Raises:
            ValueError: If resulting balance would be negative
        """
        current = self.get(holder, asset)
        new_balance = current + delta
        if new_balance < 0:
            raise ValueError(
                f"Insufficient balance of {asset} for {holder}: {current} + {delta} = {new_balance} < 0"
            )
        self.set(holder, asset, new_balance)

    def subtract(self, holder: Address, asset: AssetId, delta: Amount) -> None:
        """
        Subtract a non-negative delta from balance.

        Raises:
            ValueError: If delta is negative or insufficient balance
        """
        if delta < 0:
            raise ValueError(f"Delta must be non-negative: {delta}")
        self.add(holder, asset, -delta)

    def transfer(self, src: Address, dst: Address, asset: AssetId, amount: Amount) -> None:
        """Move `amount` of `asset` from `src` to `dst` (all-or-nothing)."""
        if amount < 0:
            raise ValueError(f"Transfer amount must be non-negative: {amount}")
        if amount == 0:
            return
        if src == dst:
            if self.get(src, asset) < amount:
                raise ValueError(f"Insufficient balance of {asset} for {src}")
            return
        self.subtract(src, asset, amount)
        self.add(dst, asset, amount)

    def get_all_balances(self) -> Dict[Tuple[Address, AssetId], Amount]:
        """Get all balances as a dictionary (shallow copy)."""
        return dict(self._balances)

    def get_balances_for_holder(self, holder: Address) -> Dict[AssetId, Amount]:
        """Get all balances held by `holder`, keyed by asset."""
        return {a: amount for (h, a), amount in self._balances.items() if h == holder}

    def snapshot(self) -> Dict[Tuple[Address, AssetId], Amount]:
        return dict(self._balances)

    def restore(self, snap: Dict[Tuple[Address, AssetId], Amount]) -> None:
        self._balances = dict(snap)

    def __repr__(self) -> str:
        return f"BalanceTable({len(self._balances)} entries)"
