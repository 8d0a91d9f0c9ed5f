"""
position.py - Collateralized debt positions

This module provides position accounting and operation planning for the vault
using a pure function architecture with explicit inputs.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs):
   - RateParameters (config.py): Immutable rate sheet, set at init
   - Position: Immutable snapshot of one token id's debt

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - Take all inputs explicitly as parameters
   - No vault, no clock, no hidden state
   - Example: calculate_pending_interest(principal, rate, last, now) -> int

3. PLANNERS (compute_*):
   - Take the current position, the rates and fresh oracle/clock readings
   - Validate, accrue, and build a PendingOperation
   - Never touch the vault; NFTVault applies the plan

Key Formulas:
    interest       = principal * rate.num * elapsed // (rate.den * SECONDS_PER_YEAR)
    debt           = principal + accrued_interest
    credit_limit   = valuation * credit_limit.num // credit_limit.den
    liquidatable   = debt >= valuation * liquidation_limit.num // liquidation_limit.den
    owed           = debt + debt * liquidation_fee.num // liquidation_fee.den

All arithmetic is on integers, multiply-then-divide, floored.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional, Tuple

from .core import (
    Address, Amount, TokenId, Move, Rate, PendingOperation, OperationType,
    SECONDS_PER_YEAR, ZERO_ADDRESS,
    InsufficientCollateral, PositionHealthy, DebtOutstanding,
    PositionNotOpen, Unauthorized,
    _require_amount,
)
from .config import RateParameters
from .clock import elapsed_seconds


# ============================================================================
# POSITION
# ============================================================================

@dataclass(frozen=True, slots=True)
class Position:
    """
    Immutable state of the debt secured by one collateral token.

    Attributes:
        token_id: Collateral token securing the debt.
        owner: Borrower who escrowed the token; receives it back on close.
        principal: Borrowed amount not yet repaid.
        accrued_interest: Interest charged but not yet repaid.
        last_accrual: Time interest was last rolled into accrued_interest.
        open: True from the first borrow until close or liquidation.
    """
    token_id: TokenId
    owner: Address
    principal: Amount = 0
    accrued_interest: Amount = 0
    last_accrual: Optional[datetime] = None
    open: bool = False

    def __post_init__(self):
        if not self.owner:
            raise ValueError("Position owner cannot be empty")
        for name in ("principal", "accrued_interest"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"Position {name} must be int, got {type(value).__name__}")
            if value < 0:
                raise ValueError(f"Position {name} cannot be negative, got {value}")
        if not self.open and (self.principal or self.accrued_interest):
            raise ValueError("A closed position cannot carry debt")

    @property
    def debt(self) -> Amount:
        return self.principal + self.accrued_interest

    def closed(self) -> Position:
        """Return this position zeroed and marked closed."""
        return replace(self, principal=0, accrued_interest=0, open=False)


# ============================================================================
# PURE CALCULATIONS
# ============================================================================

def calculate_pending_interest(
    principal: Amount,
    interest_rate: Rate,
    last_accrual: Optional[datetime],
    now: datetime,
) -> Amount:
    """
    Simple interest on principal since last_accrual, floored.

    PURE FUNCTION - All inputs explicit, no hidden state.

    Accrued interest is never itself charged interest. Splitting a span into
    several accruals can only lose dust to flooring, never gain it.

    Returns:
        0 if nothing elapsed, principal is zero or the rate is zero.
    """
    elapsed = elapsed_seconds(last_accrual, now)
    if elapsed == 0 or principal == 0 or interest_rate.numerator == 0:
        return 0
    return (principal * interest_rate.numerator * elapsed) // (
        interest_rate.denominator * SECONDS_PER_YEAR
    )


def accrue(position: Position, interest_rate: Rate, now: datetime) -> Tuple[Position, Amount]:
    """
    Roll pending interest into accrued_interest and move last_accrual to now.

    Returns:
        (updated position, interest charged)
    """
    interest = calculate_pending_interest(
        position.principal, interest_rate, position.last_accrual, now
    )
    return replace(
        position,
        accrued_interest=position.accrued_interest + interest,
        last_accrual=now,
    ), interest


def calculate_debt(position: Optional[Position], interest_rate: Rate, now: datetime) -> Amount:
    """Debt including interest pending since the last accrual."""
    if position is None or not position.open:
        return 0
    return position.debt + calculate_pending_interest(
        position.principal, interest_rate, position.last_accrual, now
    )


def calculate_credit_limit(valuation: Amount, credit_limit_rate: Rate) -> Amount:
    """Maximum debt a token valued at valuation can carry after a borrow."""
    return credit_limit_rate.apply(valuation)


def calculate_liquidation_limit(valuation: Amount, liquidation_limit_rate: Rate) -> Amount:
    """Debt level at or above which a token valued at valuation may be liquidated."""
    return liquidation_limit_rate.apply(valuation)


def is_liquidatable(debt: Amount, valuation: Amount, liquidation_limit_rate: Rate) -> bool:
    return debt >= calculate_liquidation_limit(valuation, liquidation_limit_rate)


def split_repayment(
    amount: Amount,
    accrued_interest: Amount,
    principal: Amount,
) -> Tuple[Amount, Amount]:
    """
    Allocate a repayment to interest first, then principal.

    Payments above the debt are clamped, so the allocation never takes a
    position below zero.

    Returns:
        (interest_paid, principal_paid)
    """
    interest_paid = min(amount, accrued_interest)
    principal_paid = min(amount - interest_paid, principal)
    return interest_paid, principal_paid


def calculate_liquidation_settlement(owed: Amount, proceeds: Amount) -> Tuple[Amount, Amount, Amount]:
    """
    Split swap proceeds against the owed amount.

    Returns:
        (burned, surplus, shortfall) where burned + surplus == proceeds and
        burned + shortfall == owed.
    """
    burned = min(owed, proceeds)
    return burned, proceeds - burned, owed - burned


# ============================================================================
# PLANNERS
# ============================================================================

def compute_borrow(
    params: RateParameters,
    position: Optional[Position],
    sender: Address,
    token_id: TokenId,
    amount: Amount,
    valuation: Amount,
    now: datetime,
    vault: Address,
    credit_asset: Address,
) -> PendingOperation:
    """
    Plan a borrow against token_id.

    Opens a position (escrowing the collateral) when none is open, otherwise
    tops up the open one. Interest is accrued before the limit check, so the
    fee on the pre-top-up balance is charged first.

    Raises:
        InvalidAmount: If amount is not a positive int.
        Unauthorized: If the position is open and sender is not its owner.
        InsufficientCollateral: If the resulting debt exceeds the credit limit.
    """
    _require_amount("amount", amount)
    is_new = position is None or not position.open
    if not is_new and sender != position.owner:
        raise Unauthorized(f"only {position.owner} may borrow against token {token_id}")

    if is_new:
        current = Position(token_id=token_id, owner=sender, last_accrual=now, open=True)
        interest = 0
    else:
        current, interest = accrue(position, params.interest_rate, now)

    credit_limit = calculate_credit_limit(valuation, params.credit_limit_rate)
    new_debt = current.debt + amount
    if new_debt > credit_limit:
        raise InsufficientCollateral(
            f"token {token_id}: debt {new_debt} would exceed credit limit {credit_limit}"
        )

    origination_fee = params.origination_fee_rate.apply(amount)
    net_amount = amount - origination_fee
    new_position = replace(current, principal=current.principal + amount, last_accrual=now)

    moves = []
    if is_new:
        moves.append(Move(params.collateral_asset, sender, vault, 1, token_id, "escrow"))
    if net_amount > 0:
        moves.append(Move(credit_asset, ZERO_ADDRESS, sender, net_amount, memo="borrow"))

    return PendingOperation(
        operation=OperationType.BORROW,
        token_id=token_id,
        sender=sender,
        old_position=position if not is_new else None,
        new_position=new_position,
        debt_delta=interest + amount,
        fee_delta=interest + origination_fee,
        moves=tuple(moves),
        timestamp=now,
        details={
            'amount': amount,
            'valuation': valuation,
            'credit_limit': credit_limit,
            'interest': interest,
            'origination_fee': origination_fee,
            'net_amount': net_amount,
        },
    )


def compute_repay(
    params: RateParameters,
    position: Optional[Position],
    sender: Address,
    token_id: TokenId,
    amount: Amount,
    now: datetime,
    vault: Address,
    credit_asset: Address,
) -> PendingOperation:
    """
    Plan a repayment of up to amount against token_id.

    Anyone may repay. The payment is clamped to the debt after accrual; only
    the clamped amount is pulled from sender, and it is burned.

    Raises:
        InvalidAmount: If amount is not a positive int.
        PositionNotOpen: If no position is open for token_id.
    """
    _require_amount("amount", amount)
    if position is None or not position.open:
        raise PositionNotOpen(f"no open position for token {token_id}")

    current, interest = accrue(position, params.interest_rate, now)
    interest_paid, principal_paid = split_repayment(
        amount, current.accrued_interest, current.principal
    )
    paid = interest_paid + principal_paid
    new_position = replace(
        current,
        accrued_interest=current.accrued_interest - interest_paid,
        principal=current.principal - principal_paid,
    )

    moves = ()
    if paid > 0:
        moves = (
            Move(credit_asset, sender, vault, paid, memo="repay"),
            Move(credit_asset, vault, ZERO_ADDRESS, paid, memo="repay_burn"),
        )

    return PendingOperation(
        operation=OperationType.REPAY,
        token_id=token_id,
        sender=sender,
        old_position=position,
        new_position=new_position,
        debt_delta=interest - paid,
        fee_delta=interest,
        moves=moves,
        timestamp=now,
        details={
            'requested': amount,
            'paid': paid,
            'interest': interest,
            'interest_paid': interest_paid,
            'principal_paid': principal_paid,
        },
    )


def compute_close(
    params: RateParameters,
    position: Optional[Position],
    sender: Address,
    token_id: TokenId,
    now: datetime,
    vault: Address,
) -> PendingOperation:
    """
    Plan returning the collateral of a fully repaid position to its owner.

    Raises:
        PositionNotOpen: If no position is open for token_id.
        Unauthorized: If sender is not the position owner.
        DebtOutstanding: If principal or interest remain after accrual.
    """
    if position is None or not position.open:
        raise PositionNotOpen(f"no open position for token {token_id}")
    if sender != position.owner:
        raise Unauthorized(f"only {position.owner} may close token {token_id}")

    current, _ = accrue(position, params.interest_rate, now)
    if current.debt:
        raise DebtOutstanding(
            f"token {token_id}: principal {current.principal}, "
            f"interest {current.accrued_interest} outstanding"
        )

    return PendingOperation(
        operation=OperationType.CLOSE,
        token_id=token_id,
        sender=sender,
        old_position=position,
        new_position=current.closed(),
        debt_delta=0,
        fee_delta=0,
        moves=(Move(params.collateral_asset, vault, position.owner, 1, token_id, "release"),),
        timestamp=now,
    )


def compute_liquidation(
    params: RateParameters,
    position: Optional[Position],
    sender: Address,
    token_id: TokenId,
    valuation: Amount,
    now: datetime,
    vault: Address,
    swapper: Address,
    beneficiary: Address,
) -> PendingOperation:
    """
    Plan seizing the collateral of an undercollateralized position.

    The plan removes the whole debt from the books and charges the
    liquidation fee, then hands the collateral to swapper. Settlement of the
    swap proceeds (burn, surplus, shortfall) happens in the vault after the
    swapper callback returns; details['owed'] is what the swapper is asked for.

    Raises:
        PositionNotOpen: If no position is open for token_id.
        PositionHealthy: If debt is below the liquidation limit.
    """
    if position is None or not position.open:
        raise PositionNotOpen(f"no open position for token {token_id}")

    current, interest = accrue(position, params.interest_rate, now)
    debt = current.debt
    liquidation_limit = calculate_liquidation_limit(valuation, params.liquidation_limit_rate)
    if debt < liquidation_limit:
        raise PositionHealthy(
            f"token {token_id}: debt {debt} below liquidation limit {liquidation_limit}"
        )

    liquidation_fee = params.liquidation_fee_rate.apply(debt)
    return PendingOperation(
        operation=OperationType.LIQUIDATE,
        token_id=token_id,
        sender=sender,
        old_position=position,
        new_position=current.closed(),
        debt_delta=interest - debt,
        fee_delta=interest + liquidation_fee,
        moves=(Move(params.collateral_asset, vault, swapper, 1, token_id, "seize"),),
        timestamp=now,
        details={
            'valuation': valuation,
            'liquidation_limit': liquidation_limit,
            'interest': interest,
            'debt': debt,
            'liquidation_fee': liquidation_fee,
            'owed': debt + liquidation_fee,
            'swapper': swapper,
            'beneficiary': beneficiary,
        },
    )


def compute_collect(
    fee: Amount,
    sender: Address,
    fee_to: Address,
    now: datetime,
    credit_asset: Address,
) -> PendingOperation:
    """Plan minting the accumulated fee to fee_to. A zero fee yields no moves."""
    moves = ()
    if fee > 0:
        moves = (Move(credit_asset, ZERO_ADDRESS, fee_to, fee, memo="fee"),)
    return PendingOperation(
        operation=OperationType.COLLECT,
        token_id=None,
        sender=sender,
        old_position=None,
        new_position=None,
        debt_delta=0,
        fee_delta=-fee,
        moves=moves,
        timestamp=now,
        details={'fee': fee, 'fee_to': fee_to},
    )
