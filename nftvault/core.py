"""
Core types and pure functions for the NFT vault.

This module provides the foundational data structures and protocols for the vault:
1. Protocols: collaborator interfaces (oracle, credit asset, collateral asset, swapper)
2. Immutable data structures: Rate, Move, PendingOperation, Transaction
3. Exceptions: VaultError and domain-specific error types
4. Type aliases: Address, Amount, TokenId
5. Fixed-point helpers: mul_div and amount formatting

All functions in this module are pure. No function can mutate vault state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
import hashlib
from typing import (
    Dict, Optional, Any, Protocol, Tuple, runtime_checkable
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Interest rates are quoted per year; accrual divides by this many seconds.
SECONDS_PER_YEAR = 365 * 86400

# Base units per whole credit token (18-decimals convention).
WAD = 10 ** 18

# Mints originate from and burns terminate at the zero address.
ZERO_ADDRESS = "0x" + "00" * 20

# Config blob word size and the largest value a word can carry.
WORD_SIZE = 32
MAX_UINT256 = 2 ** 256 - 1


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Hex string "0x" + 40 lowercase hex characters.
Address = str

# Integer amount of credit asset in base units.
Amount = int

# Identifier of a non-fungible collateral token.
TokenId = int


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class PriceOracle(Protocol):
    """
    Valuation source for collateral tokens.

    Returns the value of one collateral token, denominated in base units of
    the credit asset. The vault queries it fresh on every borrow and
    liquidate decision; implementations must not be cached by the caller.
    """

    def valuation(self, collateral_asset: Address, token_id: TokenId) -> Amount:
        ...


@runtime_checkable
class CreditAsset(Protocol):
    """Fungible credit token the vault issues against collateral."""

    address: Address

    def balance_of(self, account: Address) -> Amount:
        ...

    def transfer(self, sender: Address, to: Address, amount: Amount) -> None:
        ...

    def transfer_from(self, sender: Address, source: Address, to: Address, amount: Amount) -> None:
        ...

    def mint(self, sender: Address, to: Address, amount: Amount) -> None:
        ...

    def burn(self, sender: Address, amount: Amount) -> None:
        ...

    def revert(self, sender: Address, move: Move, restore_allowance: bool = False) -> None:
        ...


@runtime_checkable
class CollateralAsset(Protocol):
    """Non-fungible collateral token held in escrow while a position is open."""

    address: Address

    def owner_of(self, token_id: TokenId) -> Address:
        ...

    def transfer_from(self, sender: Address, source: Address, to: Address, token_id: TokenId) -> None:
        ...

    def revert(self, sender: Address, move: Move) -> None:
        ...


@runtime_checkable
class Swapper(Protocol):
    """
    Receives seized collateral during liquidation.

    By the time swap() is called the swapper already owns token_id. It is
    expected to make `owed` of the credit asset available to the vault
    (sender, the caller of swap) and may sell the collateral to do so. The
    return value is informational; the vault measures what actually arrived.

    If swap() raises, the vault takes token_id back and returns whatever
    credit arrived during the call, so a failing swapper must still hold
    token_id when it raises.
    """

    def swap(
        self,
        sender: Address,
        collateral_asset: Address,
        token_id: TokenId,
        owed: Amount,
        beneficiary: Address,
    ) -> Amount:
        ...


# ============================================================================
# ENUMS
# ============================================================================

class OperationType(Enum):
    """Kind of vault operation recorded in the transaction log."""
    INIT = "init"
    BORROW = "borrow"
    REPAY = "repay"
    CLOSE = "close"
    LIQUIDATE = "liquidate"
    COLLECT = "collect"
    SET_FEE_TO = "set_fee_to"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class VaultError(Exception):
    """Base exception for all vault-related errors."""
    pass


class InsufficientCollateral(VaultError):
    """Raised when a borrow would push debt above the credit limit."""
    pass


class PositionHealthy(VaultError):
    """Raised when liquidating a position whose debt is below the liquidation limit."""
    pass


class DebtOutstanding(VaultError):
    """Raised when closing a position that still carries principal or interest."""
    pass


class OverRepayment(VaultError):
    """
    Raised when a repayment exceeds the outstanding debt.

    The vault clamps repayments, so it never raises this itself. The type
    exists for callers that want strict matching on top of get_debt_amount().
    """
    pass


class AlreadyInitialized(VaultError):
    """Raised when configuring an instance a second time."""
    pass


class NotInitialized(VaultError):
    """Raised when operating on an instance that has no configuration."""
    pass


class Unauthorized(VaultError):
    """Raised when a role-restricted call comes from the wrong sender."""
    pass


class PositionNotOpen(VaultError):
    """Raised when repaying, closing or liquidating a token id with no open position."""
    pass


class InvalidAmount(VaultError):
    """Raised when an amount is not a positive integer."""
    pass


class InvalidConfiguration(VaultError):
    """Raised when a config blob is malformed or its rates are out of range."""
    pass


class ReentrantCall(VaultError):
    """Raised when an external call re-enters the vault that is calling it."""
    pass


class CloneAlreadyDeployed(VaultError):
    """Raised when a salted deployment targets an address that is already taken."""
    pass


class UnknownAddress(VaultError):
    """Raised when an address does not resolve to a registered contract."""
    pass


class PriceUnavailable(VaultError):
    """Raised when the oracle has no valuation for a collateral token."""
    pass


class TokenError(VaultError):
    """Base exception for credit and collateral token failures."""
    pass


class InsufficientBalance(TokenError):
    """Raised when a transfer or burn exceeds the holder's balance."""
    pass


class InsufficientAllowance(TokenError):
    """Raised when transfer_from exceeds the spender's allowance."""
    pass


class NotOwnerNorApproved(TokenError):
    """Raised when a collateral transfer is attempted by an unapproved operator."""
    pass


class NonexistentToken(TokenError):
    """Raised when a collateral token id has not been minted."""
    pass


# ============================================================================
# FIXED-POINT HELPERS
# ============================================================================

def mul_div(a: int, b: int, c: int) -> int:
    """
    Compute a * b // c with full intermediate precision.

    Multiply first, then floor-divide. Python integers are unbounded so the
    product never overflows; the result is truncated toward zero for the
    non-negative inputs the vault uses.
    """
    if c <= 0:
        raise ValueError(f"divisor must be positive, got {c}")
    if a < 0 or b < 0:
        raise ValueError(f"mul_div operands must be non-negative, got {a}, {b}")
    return a * b // c


def format_amount(amount: Amount, decimals: int = 18) -> str:
    """Render a base-unit amount as a human-readable decimal string."""
    value = Decimal(amount).scaleb(-decimals)
    normalized = value.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _require_amount(name: str, value: Any, allow_zero: bool = False) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmount(f"{name} must be an int, got {type(value).__name__}")
    if value < 0 or (value == 0 and not allow_zero):
        raise InvalidAmount(f"{name} must be positive, got {value}")
    return value


# ============================================================================
# RATE
# ============================================================================

@dataclass(frozen=True, slots=True)
class Rate:
    """
    A rational rate expressed as numerator / denominator.

    Attributes:
        numerator: Non-negative integer numerator.
        denominator: Strictly positive integer denominator.
    """
    numerator: int
    denominator: int

    def __post_init__(self):
        for name in ("numerator", "denominator"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"Rate {name} must be an int, got {type(value).__name__}")
        if self.denominator <= 0:
            raise ValueError(f"Rate denominator must be positive, got {self.denominator}")
        if self.numerator < 0:
            raise ValueError(f"Rate numerator cannot be negative, got {self.numerator}")

    @property
    def is_fraction(self) -> bool:
        """True when the rate is at most one."""
        return self.numerator <= self.denominator

    def apply(self, amount: Amount) -> Amount:
        """Return floor(amount * numerator / denominator)."""
        return mul_div(amount, self.numerator, self.denominator)

    def as_decimal(self) -> Decimal:
        return Decimal(self.numerator) / Decimal(self.denominator)

    def __repr__(self) -> str:
        return f"Rate({self.numerator}/{self.denominator})"


# ============================================================================
# MOVES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single movement of credit or collateral caused by a vault operation.

    Fungible moves carry a quantity; non-fungible moves carry a token_id and
    quantity 1. Mints use ZERO_ADDRESS as source, burns use it as dest.

    Attributes:
        asset: Address of the token contract.
        source: Address debited.
        dest: Address credited.
        quantity: Amount in base units (1 for a collateral token).
        token_id: Collateral token id, None for credit moves.
        memo: Short reason string (e.g. "borrow", "repay", "liquidation_surplus").
    """
    asset: Address
    source: Address
    dest: Address
    quantity: Amount
    token_id: Optional[TokenId] = None
    memo: str = ""

    def __post_init__(self):
        if not self.asset or not self.asset.strip():
            raise ValueError("Move asset cannot be empty")
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    @property
    def is_mint(self) -> bool:
        return self.source == ZERO_ADDRESS

    @property
    def is_burn(self) -> bool:
        return self.dest == ZERO_ADDRESS

    def __repr__(self) -> str:
        what = f"#{self.token_id}" if self.token_id is not None else str(self.quantity)
        return f"Move({what} {self.asset[:10]}: {self.source[:10]}→{self.dest[:10]} {self.memo})"


# ============================================================================
# CANONICAL SERIALIZATION
# ============================================================================

def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Dict ordering and dataclass construction history do not affect the
    output, so semantically equal states hash identically.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"I:{value}"
    if isinstance(value, Decimal):
        return f"D:{value.normalize()}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, Enum):
        return f"E:{value.value}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if hasattr(value, "__dataclass_fields__"):
        fields = {name: getattr(value, name) for name in value.__dataclass_fields__}
        return f"{type(value).__name__}{_canonicalize(fields)}"
    return f"R:{repr(value)}"


def content_hash(value: Any, length: int = 16) -> str:
    """sha256 of the canonical form of value, truncated to length hex chars."""
    return hashlib.sha256(_canonicalize(value).encode()).hexdigest()[:length]


# ============================================================================
# PENDING OPERATIONS AND TRANSACTIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class PendingOperation:
    """
    A planned vault operation before execution - represents INTENT.

    Built by the compute_* planners in position.py from explicit inputs and
    handed to NFTVault for execution. Contains everything needed to apply the
    operation: the position before and after, the exact deltas to apply to
    the aggregates, and the token moves to perform.

    Attributes:
        operation: Kind of operation.
        token_id: Position affected (None for collect).
        sender: Caller address.
        old_position: Position before the operation (None if none was open).
        new_position: Position after the operation (None once closed).
        debt_delta: Signed change to total_debt_amount.
        fee_delta: Signed change to total_fee_collected.
        moves: Token moves to perform, in order.
        timestamp: Clock reading the plan was computed at.
        details: Operation-specific figures (interest, fees, valuation, ...).
    """
    operation: OperationType
    token_id: Optional[TokenId]
    sender: Address
    old_position: Any
    new_position: Any
    debt_delta: int
    fee_delta: int
    moves: Tuple[Move, ...]
    timestamp: datetime
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def intent_id(self) -> str:
        """Content hash of the operation's intent."""
        return content_hash((
            self.operation, self.token_id, self.sender, self.old_position,
            self.new_position, self.debt_delta, self.fee_delta, self.moves,
            self.timestamp,
        ))

    def __repr__(self) -> str:
        return (
            f"PendingOperation({self.operation.value}, token={self.token_id}, "
            f"{len(self.moves)} moves, debt{self.debt_delta:+d}, fee{self.fee_delta:+d})"
        )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of a vault operation - represents FACT.

    Attributes:
        operation: Kind of operation.
        token_id: Position affected (None for collect/admin operations).
        sender: Caller address.
        old_position: Position before execution.
        new_position: Position after execution.
        debt_delta: Applied change to total_debt_amount.
        fee_delta: Applied change to total_fee_collected.
        moves: Token moves actually performed.
        timestamp: Clock reading at execution.
        intent_id: Content hash of the planned operation.
        exec_id: Unique execution identifier (vault + sequence + time).
        vault_address: Address of the executing vault.
        sequence_number: Monotonic sequence within the vault.
        details: Operation-specific figures.
    """
    operation: OperationType
    token_id: Optional[TokenId]
    sender: Address
    old_position: Any
    new_position: Any
    debt_delta: int
    fee_delta: int
    moves: Tuple[Move, ...]
    timestamp: datetime
    intent_id: str
    exec_id: str
    vault_address: Address
    sequence_number: int
    details: Dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   operation      : ' + self.operation.value)}│",
            f"│{pad('   token_id       : ' + str(self.token_id))}│",
            f"│{pad('   sender         : ' + self.sender)}│",
            f"│{pad('   timestamp      : ' + str(self.timestamp))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   debt delta     : ' + format_amount(abs(self.debt_delta)) + (' (-)' if self.debt_delta < 0 else ''))}│",
            f"│{pad('   fee delta      : ' + format_amount(abs(self.fee_delta)) + (' (-)' if self.fee_delta < 0 else ''))}│",
        ]
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│")
        for i, move in enumerate(self.moves):
            what = f"#{move.token_id}" if move.token_id is not None else format_amount(move.quantity)
            lines.append(f"│{pad(f'   [{i}] {what} {move.memo}: {move.source} → {move.dest}')}│")
        if self.details:
            lines.append(f"├{bar}┤")
            for key, value in self.details.items():
                lines.append(f"│{pad(f'   {key}: {value!r}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)
