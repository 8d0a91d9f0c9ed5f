"""
oracle.py - Collateral valuation sources

Provides PriceOracle implementations the vault can resolve by address:

- StaticPriceOracle: Prices that change only when set
- TimeSeriesPriceOracle: Price history read at the current clock time

Prices can be set for one token id or as a collection-wide default
(token_id None), which applies to every token of the collection without a
price of its own. All valuations are integers in base units of the credit
asset.
"""

from __future__ import annotations
from bisect import bisect_right, insort
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .core import Address, Amount, TokenId, PriceUnavailable, _require_amount
from .clock import Clock

PriceKey = Tuple[Address, Optional[TokenId]]


class StaticPriceOracle:
    """
    Oracle with explicitly set prices (time-independent).

    Example:
        oracle = StaticPriceOracle()
        book.deploy(oracle, "oracle")
        oracle.set_price(nft.address, token_id, 10000 * WAD)
        oracle.valuation(nft.address, token_id)
    """

    def __init__(self, prices: Optional[Dict[PriceKey, Amount]] = None):
        self.address: Address = ""
        self.prices: Dict[PriceKey, Amount] = {}
        for (asset, token_id), value in (prices or {}).items():
            self.set_price(asset, token_id, value)

    def valuation(self, collateral_asset: Address, token_id: TokenId) -> Amount:
        """
        Price of token_id, falling back to the collection default.

        Raises:
            PriceUnavailable: If neither is set.
        """
        value = self.prices.get((collateral_asset, token_id))
        if value is None:
            value = self.prices.get((collateral_asset, None))
        if value is None:
            raise PriceUnavailable(f"no price for {collateral_asset} #{token_id}")
        return value

    def set_price(self, collateral_asset: Address, token_id: Optional[TokenId], value: Amount) -> None:
        """Set the price of token_id, or the collection default when token_id is None."""
        _require_amount("price", value, allow_zero=True)
        self.prices[(collateral_asset, token_id)] = value

    def remove_price(self, collateral_asset: Address, token_id: Optional[TokenId]) -> None:
        self.prices.pop((collateral_asset, token_id), None)

    def __repr__(self) -> str:
        return f"StaticPriceOracle({len(self.prices)} prices, address={self.address})"


class TimeSeriesPriceOracle:
    """
    Oracle over recorded price observations.

    valuation() returns the most recent observation at or before the clock's
    current time, for the token id if it has any, otherwise for the
    collection default.

    Example:
        oracle = TimeSeriesPriceOracle(clock)
        oracle.add_price(nft.address, None, t0, 10000 * WAD)
        oracle.add_price(nft.address, None, t0 + timedelta(days=30), 9000 * WAD)
    """

    def __init__(self, clock: Clock):
        self.address: Address = ""
        self.clock = clock
        self.price_history: Dict[PriceKey, List[Tuple[datetime, Amount]]] = {}

    def add_price(
        self,
        collateral_asset: Address,
        token_id: Optional[TokenId],
        timestamp: datetime,
        value: Amount,
    ) -> None:
        """Record an observation; history stays sorted by timestamp."""
        _require_amount("price", value, allow_zero=True)
        insort(self.price_history.setdefault((collateral_asset, token_id), []), (timestamp, value))

    def get_price(
        self,
        collateral_asset: Address,
        token_id: Optional[TokenId],
        timestamp: datetime,
    ) -> Optional[Amount]:
        """Most recent observation for exactly this key at or before timestamp."""
        history = self.price_history.get((collateral_asset, token_id))
        if not history:
            return None
        idx = bisect_right([t for t, _ in history], timestamp)
        if idx == 0:
            return None
        return history[idx - 1][1]

    def valuation(self, collateral_asset: Address, token_id: TokenId) -> Amount:
        now = self.clock.now()
        value = self.get_price(collateral_asset, token_id, now)
        if value is None:
            value = self.get_price(collateral_asset, None, now)
        if value is None:
            raise PriceUnavailable(f"no price for {collateral_asset} #{token_id} at {now}")
        return value

    def __repr__(self) -> str:
        return f"TimeSeriesPriceOracle({len(self.price_history)} series, address={self.address})"
