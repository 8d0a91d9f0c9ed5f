"""
config.py - Vault rate parameters and the config blob codec

A vault clone receives its configuration exactly once, as an opaque byte
blob, and decodes it into an immutable RateParameters value.

WIRE FORMAT:
============

Twelve 32-byte big-endian words, in this fixed order:

    0  interest_rate.numerator
    1  interest_rate.denominator
    2  credit_limit_rate.numerator
    3  credit_limit_rate.denominator
    4  liquidation_limit_rate.numerator
    5  liquidation_limit_rate.denominator
    6  origination_fee_rate.numerator
    7  origination_fee_rate.denominator
    8  liquidation_fee_rate.numerator
    9  liquidation_fee_rate.denominator
    10 collateral_asset  (20-byte address, left-padded with zeros)
    11 oracle            (20-byte address, left-padded with zeros)

Decoding order equals encoding order; this is the contract between the
factory and the instance initializer.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import List, Sequence, Tuple, Union

from .core import (
    Address, Rate, InvalidConfiguration,
    MAX_UINT256, WORD_SIZE,
)
from .addresses import is_address


RATE_FIELDS = (
    'interest_rate',
    'credit_limit_rate',
    'liquidation_limit_rate',
    'origination_fee_rate',
    'liquidation_fee_rate',
)

# Rates that are fractions of one; interest_rate is unbounded.
FRACTION_RATE_FIELDS = RATE_FIELDS[1:]

CONFIG_WORDS = 2 * len(RATE_FIELDS) + 2
CONFIG_SIZE = CONFIG_WORDS * WORD_SIZE

RateLike = Union[Rate, Tuple[int, int], Sequence[int]]


# ============================================================================
# RATE PARAMETERS
# ============================================================================

@dataclass(frozen=True, slots=True)
class RateParameters:
    """
    Immutable per-instance configuration - set at init, never changes.

    Attributes:
        interest_rate: Simple interest per year on principal.
        credit_limit_rate: Maximum debt as a fraction of valuation at borrow time.
        liquidation_limit_rate: Debt-to-valuation fraction at which liquidation is allowed.
        origination_fee_rate: One-time fee on each borrowed amount.
        liquidation_fee_rate: Fee on the debt settled by a liquidation.
        collateral_asset: Address of the non-fungible collateral token.
        oracle: Address of the price oracle.
    """
    interest_rate: Rate
    credit_limit_rate: Rate
    liquidation_limit_rate: Rate
    origination_fee_rate: Rate
    liquidation_fee_rate: Rate
    collateral_asset: Address
    oracle: Address

    def __post_init__(self):
        for name in RATE_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, Rate):
                raise InvalidConfiguration(f"{name} must be a Rate, got {type(value).__name__}")
        for name in FRACTION_RATE_FIELDS:
            rate = getattr(self, name)
            if not rate.is_fraction:
                raise InvalidConfiguration(
                    f"{name} must not exceed one, got {rate.numerator}/{rate.denominator}"
                )
        if not is_address(self.collateral_asset):
            raise InvalidConfiguration(f"collateral_asset is not an address: {self.collateral_asset!r}")
        if not is_address(self.oracle):
            raise InvalidConfiguration(f"oracle is not an address: {self.oracle!r}")

    def to_words(self) -> List[int]:
        """Flatten into the positional word sequence of the wire format."""
        words: List[int] = []
        for name in RATE_FIELDS:
            rate = getattr(self, name)
            words.extend((rate.numerator, rate.denominator))
        words.append(int(self.collateral_asset, 16))
        words.append(int(self.oracle, 16))
        return words


def _as_rate(name: str, value: RateLike) -> Rate:
    if isinstance(value, Rate):
        return value
    try:
        numerator, denominator = value
        return Rate(numerator, denominator)
    except (TypeError, ValueError) as e:
        raise InvalidConfiguration(f"{name}: {e}") from e


def make_rate_parameters(
    interest_rate: RateLike,
    credit_limit_rate: RateLike,
    liquidation_limit_rate: RateLike,
    origination_fee_rate: RateLike,
    liquidation_fee_rate: RateLike,
    collateral_asset: Address,
    oracle: Address,
) -> RateParameters:
    """
    Build RateParameters from Rate objects or (numerator, denominator) pairs.

    Example:
        params = make_rate_parameters(
            interest_rate=(2, 10000),
            credit_limit_rate=(85, 100),
            liquidation_limit_rate=(95, 100),
            origination_fee_rate=(3, 1000),
            liquidation_fee_rate=(2, 100),
            collateral_asset=nft.address,
            oracle=oracle.address,
        )
    """
    return RateParameters(
        interest_rate=_as_rate('interest_rate', interest_rate),
        credit_limit_rate=_as_rate('credit_limit_rate', credit_limit_rate),
        liquidation_limit_rate=_as_rate('liquidation_limit_rate', liquidation_limit_rate),
        origination_fee_rate=_as_rate('origination_fee_rate', origination_fee_rate),
        liquidation_fee_rate=_as_rate('liquidation_fee_rate', liquidation_fee_rate),
        collateral_asset=collateral_asset.lower(),
        oracle=oracle.lower(),
    )


# ============================================================================
# CODEC
# ============================================================================

def encode_words(words: Sequence[int]) -> bytes:
    """Encode unsigned integers as consecutive 32-byte big-endian words."""
    out = bytearray()
    for i, word in enumerate(words):
        if isinstance(word, bool) or not isinstance(word, int):
            raise InvalidConfiguration(f"word {i} must be an int, got {type(word).__name__}")
        if word < 0 or word > MAX_UINT256:
            raise InvalidConfiguration(f"word {i} out of uint256 range: {word}")
        out += word.to_bytes(WORD_SIZE, "big")
    return bytes(out)


def decode_words(data: bytes) -> List[int]:
    """Split data into 32-byte big-endian words."""
    if len(data) % WORD_SIZE:
        raise InvalidConfiguration(
            f"config length {len(data)} is not a multiple of {WORD_SIZE}"
        )
    return [
        int.from_bytes(data[i:i + WORD_SIZE], "big")
        for i in range(0, len(data), WORD_SIZE)
    ]


def _word_to_address(index: int, word: int) -> Address:
    if word >> 160:
        raise InvalidConfiguration(f"word {index} has dirty high bytes for an address")
    return "0x" + format(word, "040x")


def encode_config(params: RateParameters) -> bytes:
    """Encode RateParameters into the config blob."""
    return encode_words(params.to_words())


def decode_config(data: bytes) -> RateParameters:
    """
    Decode a config blob into RateParameters.

    Raises:
        InvalidConfiguration: On wrong length, zero denominators, fraction
                              rates above one, or malformed address words.
    """
    if not isinstance(data, (bytes, bytearray)):
        raise InvalidConfiguration(f"config must be bytes, got {type(data).__name__}")
    if len(data) != CONFIG_SIZE:
        raise InvalidConfiguration(
            f"config must be {CONFIG_SIZE} bytes ({CONFIG_WORDS} words), got {len(data)}"
        )
    words = decode_words(bytes(data))

    rates = {}
    for i, name in enumerate(RATE_FIELDS):
        numerator, denominator = words[2 * i], words[2 * i + 1]
        if denominator == 0:
            raise InvalidConfiguration(f"{name} denominator must be positive")
        rates[name] = Rate(numerator, denominator)

    return RateParameters(
        collateral_asset=_word_to_address(CONFIG_WORDS - 2, words[-2]),
        oracle=_word_to_address(CONFIG_WORDS - 1, words[-1]),
        **rates,
    )
