"""
stress.py - Vectorized solvency stress analysis

Projects a vault's open positions through a grid of collateral price shocks
and reports, per shock, how many positions become liquidatable and how much
debt is left uncovered by collateral.

Amounts are converted to float64 whole-token units (amount / 10**decimals)
before vectorizing; results are approximations for risk reporting and never
feed back into the integer ledger.

Provides:
- position_arrays: open-position debts and valuations as numpy arrays
- liquidation_prices: shock multiplier at which each position becomes liquidatable
- stress_test: StressResult over a vector of price multipliers
"""

from dataclasses import dataclass
from typing import Sequence, Tuple, Union

import numpy as np

from .core import Rate
from .vault import NFTVault


# Type alias for scalar or array inputs
Numeric = Union[float, np.ndarray]


@dataclass(frozen=True)
class StressResult:
    """
    Outcome of a price-shock sweep, one entry per shock.

    Attributes:
        shocks: Price multipliers applied to every valuation (1.0 = unchanged).
        liquidatable: Number of positions at or above the liquidation limit.
        debt_at_risk: Total debt of those positions.
        shortfall: Total debt plus liquidation fee not covered by shocked
                   collateral value, over liquidatable positions.
        collateral_value: Total shocked collateral value.
    """
    shocks: np.ndarray
    liquidatable: np.ndarray
    debt_at_risk: np.ndarray
    shortfall: np.ndarray
    collateral_value: np.ndarray

    def worst(self) -> Tuple[float, float]:
        """(shock, shortfall) with the largest shortfall."""
        i = int(np.argmax(self.shortfall))
        return float(self.shocks[i]), float(self.shortfall[i])


def _rate_float(rate: Rate) -> float:
    return rate.numerator / rate.denominator


def position_arrays(vault: NFTVault, decimals: int = 18) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Token ids, current debts (with pending interest) and valuations of the
    vault's open positions, in token id order.
    """
    positions = vault.open_positions()
    scale = float(10 ** decimals)
    token_ids = np.array([p.token_id for p in positions], dtype=np.int64)
    debts = np.array([vault.get_debt_amount(p.token_id) / scale for p in positions], dtype=np.float64)
    valuations = np.array(
        [vault.get_valuation(p.token_id) / scale for p in positions],
        dtype=np.float64,
    )
    return token_ids, debts, valuations


def liquidation_prices(debts: Numeric, valuations: Numeric, liquidation_limit_rate: Rate) -> Numeric:
    """
    Price multiplier at or below which each position is liquidatable.

    Solves debt >= shock * valuation * limit for shock; positions with zero
    valuation or a zero limit are liquidatable at any shock (inf).
    """
    debts = np.asarray(debts, dtype=np.float64)
    capacity = np.asarray(valuations, dtype=np.float64) * _rate_float(liquidation_limit_rate)
    with np.errstate(divide='ignore', invalid='ignore'):
        return np.where(capacity > 0, debts / np.where(capacity > 0, capacity, 1.0), np.inf)


def stress_test(vault: NFTVault, shocks: Sequence[float], decimals: int = 18) -> StressResult:
    """
    Sweep the vault's open positions through a vector of price multipliers.

    Example:
        result = stress_test(vault, np.linspace(1.0, 0.5, 11))
        shock, shortfall = result.worst()
    """
    shocks = np.asarray(shocks, dtype=np.float64)
    if shocks.ndim != 1:
        raise ValueError(f"shocks must be one-dimensional, got shape {shocks.shape}")
    if not np.all(np.isfinite(shocks)) or np.any(shocks < 0):
        raise ValueError("shocks must be finite and non-negative")

    params = vault.params
    _, debts, valuations = position_arrays(vault, decimals)

    # (n_shocks, n_positions)
    shocked = shocks[:, None] * valuations[None, :]
    limits = shocked * _rate_float(params.liquidation_limit_rate)
    hit = debts[None, :] >= limits

    owed = debts * (1.0 + _rate_float(params.liquidation_fee_rate))
    uncovered = np.clip(owed[None, :] - shocked, 0.0, None)

    return StressResult(
        shocks=shocks,
        liquidatable=hit.sum(axis=1),
        debt_at_risk=np.where(hit, debts[None, :], 0.0).sum(axis=1),
        shortfall=np.where(hit, uncovered, 0.0).sum(axis=1),
        collateral_value=shocked.sum(axis=1),
    )
