"""
nftvault - NFT-Collateralized Debt Vaults

Borrow a fungible credit token against a single non-fungible collateral
token, with simple interest, origination and liquidation fees, and a factory
that deploys independently configured clones of one master vault.

Usage:
    from nftvault import (
        AddressBook, LogicalClock, CreditToken, CollateralToken,
        StaticPriceOracle, NFTVault, Factory, make_rate_parameters,
        encode_config, WAD,
    )

    book = AddressBook()
    owner, alice = book.account("owner"), book.account("alice")
    clock = LogicalClock()

    clink = CreditToken("Clink", "CLK", owner=owner)
    nft = CollateralToken("Test NFT", "TNFT", owner=owner)
    oracle = StaticPriceOracle()
    for contract in (clink, nft, oracle):
        book.deploy(contract)

    master = NFTVault(clink, owner=owner, address_book=book, clock=clock)
    vault = Factory(book).deploy(master, encode_config(make_rate_parameters(
        (2, 10000), (85, 100), (95, 100), (3, 1000), (2, 100),
        collateral_asset=nft.address, oracle=oracle.address,
    )))
    clink.add_minter(owner, vault.address)

    token_id = nft.mint(owner, alice)
    oracle.set_price(nft.address, token_id, 10000 * WAD)
    nft.set_approval_for_all(alice, vault.address, True)
    vault.borrow(alice, token_id, 8500 * WAD)
"""

# Core types
from .core import (
    PriceOracle,
    CreditAsset,
    CollateralAsset,
    Swapper,
    OperationType,
    Rate,
    Move,
    PendingOperation,
    Transaction,
    VaultError,
    InsufficientCollateral,
    PositionHealthy,
    DebtOutstanding,
    OverRepayment,
    AlreadyInitialized,
    NotInitialized,
    Unauthorized,
    PositionNotOpen,
    InvalidAmount,
    InvalidConfiguration,
    ReentrantCall,
    CloneAlreadyDeployed,
    UnknownAddress,
    PriceUnavailable,
    TokenError,
    InsufficientBalance,
    InsufficientAllowance,
    NotOwnerNorApproved,
    NonexistentToken,
    SECONDS_PER_YEAR,
    WAD,
    ZERO_ADDRESS,
    MAX_UINT256,
    mul_div,
    format_amount,
    content_hash,
)

# Configuration
from .config import (
    RateParameters,
    make_rate_parameters,
    encode_config,
    decode_config,
    CONFIG_SIZE,
)

# Environment
from .addresses import AddressBook, derive_address, is_address
from .clock import Clock, LogicalClock, SystemClock, elapsed_seconds

# Positions
from .position import (
    Position,
    calculate_pending_interest,
    calculate_debt,
    calculate_credit_limit,
    calculate_liquidation_limit,
    calculate_liquidation_settlement,
    is_liquidatable,
    split_repayment,
    accrue,
    compute_borrow,
    compute_repay,
    compute_close,
    compute_liquidation,
    compute_collect,
)

# Vault and factory
from .vault import NFTVault
from .factory import Factory, DeployEvent

# Collaborators
from .tokens import CreditToken, CollateralToken
from .oracle import StaticPriceOracle, TimeSeriesPriceOracle
from .swapper import FixedPriceSwapper

# Risk
from .stress import StressResult, position_arrays, liquidation_prices, stress_test


__all__ = [
    # Protocols
    'PriceOracle', 'CreditAsset', 'CollateralAsset', 'Swapper', 'Clock',
    # Core types
    'OperationType', 'Rate', 'Move', 'PendingOperation', 'Transaction',
    'RateParameters', 'Position', 'DeployEvent', 'StressResult',
    # Exceptions
    'VaultError', 'InsufficientCollateral', 'PositionHealthy', 'DebtOutstanding',
    'OverRepayment', 'AlreadyInitialized', 'NotInitialized', 'Unauthorized',
    'PositionNotOpen', 'InvalidAmount', 'InvalidConfiguration', 'ReentrantCall',
    'CloneAlreadyDeployed', 'UnknownAddress', 'PriceUnavailable',
    'TokenError', 'InsufficientBalance', 'InsufficientAllowance',
    'NotOwnerNorApproved', 'NonexistentToken',
    # Constants
    'SECONDS_PER_YEAR', 'WAD', 'ZERO_ADDRESS', 'MAX_UINT256', 'CONFIG_SIZE',
    # Helpers
    'mul_div', 'format_amount', 'content_hash', 'derive_address', 'is_address',
    'elapsed_seconds',
    # Configuration
    'make_rate_parameters', 'encode_config', 'decode_config',
    # Pure position functions
    'calculate_pending_interest', 'calculate_debt', 'calculate_credit_limit',
    'calculate_liquidation_limit', 'calculate_liquidation_settlement',
    'is_liquidatable', 'split_repayment', 'accrue',
    'compute_borrow', 'compute_repay', 'compute_close', 'compute_liquidation',
    'compute_collect',
    # Stateful components
    'AddressBook', 'LogicalClock', 'SystemClock', 'NFTVault', 'Factory',
    'CreditToken', 'CollateralToken', 'StaticPriceOracle', 'TimeSeriesPriceOracle',
    'FixedPriceSwapper',
    # Risk
    'position_arrays', 'liquidation_prices', 'stress_test',
]

__version__ = '1.0.0'
