"""
swapper.py - Reference liquidation swapper

FixedPriceSwapper buys seized collateral at a fixed bid from its own credit
balance and pays the vault that called it. It stands in for a marketplace
sale in tests and simulations.
"""

from __future__ import annotations
from typing import List, Optional, Tuple

from .core import Address, Amount, TokenId, CreditAsset, _require_amount


class FixedPriceSwapper:
    """
    Swapper that pays a fixed bid per seized token.

    With bid=None it pays exactly the owed amount. Payment is capped at the
    swapper's own credit balance, so an unfunded swapper produces a shortfall
    rather than an error.

    Example:
        swapper = FixedPriceSwapper(clink)
        book.deploy(swapper, "swapper")
        clink.mint(owner, swapper.address, 20000 * WAD)
        vault.liquidate(keeper, token_id, swapper, beneficiary=keeper)
    """

    def __init__(self, credit_asset: CreditAsset, bid: Optional[Amount] = None):
        if bid is not None:
            _require_amount("bid", bid, allow_zero=True)
        self.address: Address = ""
        self.credit_asset = credit_asset
        self.bid = bid
        # (collateral_asset, token_id, owed, paid) per swap
        self.fills: List[Tuple[Address, TokenId, Amount, Amount]] = []

    def swap(
        self,
        sender: Address,
        collateral_asset: Address,
        token_id: TokenId,
        owed: Amount,
        beneficiary: Address,
    ) -> Amount:
        price = owed if self.bid is None else self.bid
        paid = min(price, self.credit_asset.balance_of(self.address))
        if paid > 0:
            self.credit_asset.transfer(self.address, sender, paid)
        self.fills.append((collateral_asset, token_id, owed, paid))
        return paid

    def __repr__(self) -> str:
        return f"FixedPriceSwapper(bid={self.bid}, fills={len(self.fills)}, address={self.address})"
