"""
vault.py - Stateful NFT-Collateralized Debt Vault

The NFTVault class is the position ledger of the system. It is the only
module that mutates position state, ensuring controlled and auditable changes.

Key responsibilities:
    - Owns positions and the debt and fee aggregates of one vault instance
    - Runs every mutating operation under a per-instance lock, all-or-nothing
      across its own state and the token moves it makes
    - Applies plans built by the pure compute_* functions in position.py
    - Records every executed operation in transaction_log
    - Serves as the master contract that factory clones are bound to
"""

from __future__ import annotations
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union
import threading

from .core import (
    # Types
    Address, Amount, TokenId, Move, PendingOperation, Transaction, OperationType,
    PriceOracle, CreditAsset, CollateralAsset, Swapper,
    # Constants
    ZERO_ADDRESS,
    # Exceptions
    AlreadyInitialized, NotInitialized, Unauthorized, PriceUnavailable,
    PositionNotOpen, ReentrantCall,
    # Helpers
    content_hash,
)
from .config import RateParameters, decode_config
from .addresses import AddressBook, is_address
from .clock import Clock, SystemClock
from .position import (
    Position,
    calculate_debt, calculate_credit_limit, calculate_liquidation_limit,
    calculate_liquidation_settlement,
    compute_borrow, compute_repay, compute_close, compute_liquidation, compute_collect,
)
from .position import is_liquidatable as _is_liquidatable


class NFTVault:
    """
    Collateralized debt ledger over one non-fungible collateral asset.

    A vault constructed directly is a master contract: it holds the owner
    and fee recipient roles and serves as the template for clones. Clones
    are made by Factory.deploy(), share the master's credit asset, address
    book and clock, and each receive their own rates through init().

    Design Principles:
        - Always validates: plans are built from fresh oracle and clock
          readings and rejected before any state is touched.
        - Checks, effects, interactions: position and aggregate updates are
          applied before any token is moved or any swapper is called.
        - All-or-nothing: a failure at any point reverts the token moves the
          call made and restores the vault to its state before the call.
        - Always logs: every executed operation lands in transaction_log.

    Thread Safety:
        Mutating calls are serialized by a per-instance lock. Re-entering the
        same instance from within one of its external calls raises
        ReentrantCall. Read accessors do not take the lock.

    Example:
        master = NFTVault(clink, owner=owner, address_book=book, clock=clock)
        vault = factory.deploy(master, encode_config(params))
        clink.add_minter(owner, vault.address)

        nft.set_approval_for_all(alice, vault.address, True)
        vault.borrow(alice, token_id, 8500 * WAD)
    """

    def __init__(
        self,
        credit_asset: CreditAsset,
        owner: Address,
        address_book: AddressBook,
        clock: Optional[Clock] = None,
        fee_to: Optional[Address] = None,
        verbose: bool = False,
        label: str = "NFTVault",
    ):
        """
        Create and deploy a master vault.

        Args:
            credit_asset: Token the vault issues and burns
            owner: Account allowed to change the fee recipient
            address_book: Environment the vault and its clones are deployed into
            clock: Time source for interest accrual (default: SystemClock)
            fee_to: Fee recipient (default: owner)
            verbose: Print every applied and rejected operation (default: False)
            label: Address book label
        """
        if not is_address(owner):
            raise ValueError(f"owner is not an address: {owner!r}")
        if fee_to is not None and not is_address(fee_to):
            raise ValueError(f"fee_to is not an address: {fee_to!r}")
        self.credit_asset = credit_asset
        self.address_book = address_book
        self.clock = clock or SystemClock()
        self.verbose = verbose
        self.owner: Optional[Address] = owner
        self._fee_to: Optional[Address] = fee_to or owner
        self.master: Optional[NFTVault] = None
        self.address: Address = ""
        self._reset_state()
        address_book.deploy(self, label)

    def _reset_state(self) -> None:
        self.params: Optional[RateParameters] = None
        self.collateral_asset: Optional[CollateralAsset] = None
        self.oracle: Optional[PriceOracle] = None
        self._positions: Dict[TokenId, Position] = {}
        self._total_debt_amount: Amount = 0
        self._total_fee_collected: Amount = 0
        self._cumulative_fees_charged: Amount = 0
        self._cumulative_fees_swept: Amount = 0
        self._total_bad_debt: Amount = 0
        self.transaction_log: List[Transaction] = []
        # Monotonic sequence counter for execution ordering
        self._next_sequence: int = 0
        self._lock = threading.Lock()
        self._active_thread: Optional[int] = None
        # Token moves made by the running operation, with whether each was a pull
        self._journal: List[Tuple[Move, bool]] = []

    def clone(self) -> NFTVault:
        """
        Create a fresh, uninitialized instance bound to this master.

        The clone shares the master's credit asset, address book and clock
        and starts with no rates, no positions and zeroed aggregates. It has
        no address until a Factory deploys it.
        """
        if not self.is_master:
            raise ValueError(f"{self.address} is a clone; only a master can be cloned")
        instance = NFTVault.__new__(NFTVault)
        instance.credit_asset = self.credit_asset
        instance.address_book = self.address_book
        instance.clock = self.clock
        instance.verbose = self.verbose
        instance.owner = self.owner
        instance._fee_to = None
        instance.master = self
        instance.address = ""
        instance._reset_state()
        return instance

    # ========================================================================
    # ROLES
    # ========================================================================

    @property
    def is_master(self) -> bool:
        return self.master is None

    @property
    def fee_to(self) -> Address:
        """Fee recipient; clones read it from their master."""
        if self.master is not None:
            return self.master.fee_to
        return self._fee_to

    @property
    def is_initialized(self) -> bool:
        return self.params is not None

    # ========================================================================
    # READ-ONLY ACCESSORS
    # ========================================================================

    @property
    def rates(self) -> Optional[RateParameters]:
        return self.params

    @property
    def total_debt_amount(self) -> Amount:
        return self._total_debt_amount

    @property
    def total_fee_collected(self) -> Amount:
        return self._total_fee_collected

    @property
    def total_bad_debt(self) -> Amount:
        return self._total_bad_debt

    @property
    def cumulative_fees_charged(self) -> Amount:
        return self._cumulative_fees_charged

    @property
    def cumulative_fees_swept(self) -> Amount:
        return self._cumulative_fees_swept

    def get_position(self, token_id: TokenId) -> Optional[Position]:
        return self._positions.get(token_id)

    def open_positions(self) -> List[Position]:
        return [self._positions[token_id] for token_id in sorted(self._positions)]

    def positions_of(self, owner: Address) -> List[Position]:
        return [p for p in self.open_positions() if p.owner == owner]

    def get_debt_amount(self, token_id: TokenId) -> Amount:
        """Current debt of token_id, including interest not yet accrued. 0 if not open."""
        if self.params is None:
            return 0
        return calculate_debt(self._positions.get(token_id), self.params.interest_rate, self.clock.now())

    def get_credit_limit(self, token_id: TokenId) -> Amount:
        """Maximum debt token_id may carry after a borrow at the current valuation."""
        self._require_initialized()
        return calculate_credit_limit(self._valuation(token_id), self.params.credit_limit_rate)

    def get_liquidation_limit(self, token_id: TokenId) -> Amount:
        """Debt at or above which token_id may be liquidated at the current valuation."""
        self._require_initialized()
        return calculate_liquidation_limit(self._valuation(token_id), self.params.liquidation_limit_rate)

    def get_valuation(self, token_id: TokenId) -> Amount:
        """Fresh oracle valuation of token_id, checked to be a non-negative int."""
        self._require_initialized()
        return self._valuation(token_id)

    def is_liquidatable(self, token_id: TokenId) -> bool:
        self._require_initialized()
        position = self._positions.get(token_id)
        if position is None:
            return False
        return _is_liquidatable(
            self.get_debt_amount(token_id),
            self._valuation(token_id),
            self.params.liquidation_limit_rate,
        )

    def verify_reconciliation(self) -> Dict[str, Any]:
        """
        Verify that the aggregates agree with the positions.

        Checks:
        1. total_debt_amount equals the sum of principal + accrued_interest
           over open positions.
        2. total_fee_collected equals fees charged minus fees swept.
        3. Every open position's collateral token is held by the vault.

        Returns:
            Dict with keys:
            - 'valid': bool - True if every check holds
            - 'total_debt_amount', 'position_debt': the two sides of check 1
            - 'total_fee_collected', 'fees_charged', 'fees_swept': check 2
            - 'discrepancies': List[Dict] describing each failed check

        Example:
            result = vault.verify_reconciliation()
            assert result['valid'], result['discrepancies']
        """
        discrepancies = []
        position_debt = sum(p.debt for p in self._positions.values())
        if position_debt != self._total_debt_amount:
            discrepancies.append({
                'check': 'total_debt_amount',
                'expected': position_debt,
                'actual': self._total_debt_amount,
            })

        fee_balance = self._cumulative_fees_charged - self._cumulative_fees_swept
        if fee_balance != self._total_fee_collected:
            discrepancies.append({
                'check': 'total_fee_collected',
                'expected': fee_balance,
                'actual': self._total_fee_collected,
            })

        for token_id, position in sorted(self._positions.items()):
            if not position.open:
                discrepancies.append({'check': 'open', 'token_id': token_id})
            elif self.collateral_asset.owner_of(token_id) != self.address:
                discrepancies.append({
                    'check': 'escrow',
                    'token_id': token_id,
                    'holder': self.collateral_asset.owner_of(token_id),
                })

        return {
            'valid': not discrepancies,
            'total_debt_amount': self._total_debt_amount,
            'position_debt': position_debt,
            'total_fee_collected': self._total_fee_collected,
            'fees_charged': self._cumulative_fees_charged,
            'fees_swept': self._cumulative_fees_swept,
            'discrepancies': discrepancies,
        }

    def state_digest(self) -> str:
        """sha256 over the canonical form of rates, positions and aggregates."""
        return content_hash({
            'params': self.params,
            'positions': self._positions,
            'total_debt_amount': self._total_debt_amount,
            'total_fee_collected': self._total_fee_collected,
            'fees_charged': self._cumulative_fees_charged,
            'fees_swept': self._cumulative_fees_swept,
            'total_bad_debt': self._total_bad_debt,
        }, length=64)

    # ========================================================================
    # INITIALIZATION
    # ========================================================================

    def init(self, data: bytes, sender: Address = ZERO_ADDRESS) -> RateParameters:
        """
        Configure a clone from a config blob, exactly once.

        Decodes the blob, resolves the collateral asset and oracle addresses
        through the address book, and locks the rates for the life of the
        instance.

        Raises:
            AlreadyInitialized: On a second call, or on a master contract.
            InvalidConfiguration: If the blob is malformed.
            UnknownAddress: If an address does not resolve to the right kind
                            of contract.
        """
        with self._operation(OperationType.INIT):
            if self.is_master:
                raise AlreadyInitialized("a master contract is never initialized")
            if self.params is not None:
                raise AlreadyInitialized(f"vault {self.address} is already initialized")
            params = decode_config(data)
            collateral_asset = self.address_book.resolve(params.collateral_asset, CollateralAsset)
            oracle = self.address_book.resolve(params.oracle, PriceOracle)

            self.params = params
            self.collateral_asset = collateral_asset
            self.oracle = oracle

            now = self.clock.now()
            plan = PendingOperation(
                operation=OperationType.INIT,
                token_id=None,
                sender=sender,
                old_position=None,
                new_position=None,
                debt_delta=0,
                fee_delta=0,
                moves=(),
                timestamp=now,
                details={'params': params},
            )
            self._record(plan)
            return params

    def set_fee_to(self, sender: Address, fee_to: Address) -> None:
        """
        Change the fee recipient of the master and all its clones.

        Raises:
            Unauthorized: If called on a clone, or sender is not the owner.
        """
        with self._operation(OperationType.SET_FEE_TO):
            if not self.is_master:
                raise Unauthorized("the fee recipient is set on the master contract")
            if sender != self.owner:
                raise Unauthorized(f"{sender} is not the owner")
            if not is_address(fee_to):
                raise ValueError(f"fee_to is not an address: {fee_to!r}")
            old = self._fee_to
            self._fee_to = fee_to
            self._record(PendingOperation(
                operation=OperationType.SET_FEE_TO,
                token_id=None,
                sender=sender,
                old_position=None,
                new_position=None,
                debt_delta=0,
                fee_delta=0,
                moves=(),
                timestamp=self.clock.now(),
                details={'old_fee_to': old, 'fee_to': fee_to},
            ))

    # ========================================================================
    # POSITION OPERATIONS (Mutating)
    # ========================================================================

    def borrow(self, sender: Address, token_id: TokenId, amount: Amount) -> Amount:
        """
        Borrow amount against token_id.

        The first borrow escrows the collateral token, so the vault must be
        approved for it. Returns the amount credited to sender after the
        origination fee.
        """
        with self._operation(OperationType.BORROW):
            self._require_initialized()
            valuation = self._valuation(token_id)
            plan = compute_borrow(
                self.params, self._positions.get(token_id), sender, token_id, amount,
                valuation, self.clock.now(), self.address, self.credit_asset.address,
            )
            self._apply(plan)
            self._perform_moves(plan.moves)
            self._record(plan)
            return plan.details['net_amount']

    def repay(self, sender: Address, token_id: TokenId, amount: Amount) -> Amount:
        """
        Repay up to amount of token_id's debt, interest first.

        The payment is clamped to the debt; only the amount paid is pulled
        from sender, who must have approved the vault for it. Returns the
        amount paid.
        """
        with self._operation(OperationType.REPAY):
            self._require_initialized()
            plan = compute_repay(
                self.params, self._positions.get(token_id), sender, token_id, amount,
                self.clock.now(), self.address, self.credit_asset.address,
            )
            self._apply(plan)
            self._perform_moves(plan.moves)
            self._record(plan)
            return plan.details['paid']

    def close_position(self, sender: Address, token_id: TokenId) -> None:
        """Return the collateral of a fully repaid position to its owner."""
        with self._operation(OperationType.CLOSE):
            self._require_initialized()
            plan = compute_close(
                self.params, self._positions.get(token_id), sender, token_id,
                self.clock.now(), self.address,
            )
            self._apply(plan)
            self._perform_moves(plan.moves)
            self._record(plan)

    def liquidate(
        self,
        sender: Address,
        token_id: TokenId,
        swapper: Union[Swapper, Address],
        beneficiary: Address,
    ) -> Amount:
        """
        Liquidate an undercollateralized position through swapper.

        The debt leaves the books and the liquidation fee is charged before
        the collateral is handed to swapper and swapper.swap() is called.
        Whatever credit arrives at the vault during the callback is the
        proceeds: up to the owed amount is burned, any surplus goes to
        beneficiary, and any shortfall is recorded as bad debt. Recovery of
        the owed amount is not enforced.

        Returns:
            Proceeds received from the swapper.

        Raises:
            PositionNotOpen: If no position is open for token_id.
            PositionHealthy: If the debt is below the liquidation limit.
            ValueError: If beneficiary is not an address or is the vault itself.
        """
        swapper = self._resolve_swapper(swapper)
        if not is_address(beneficiary):
            raise ValueError(f"beneficiary is not an address: {beneficiary!r}")
        if beneficiary == self.address:
            raise ValueError("the vault cannot be the beneficiary of its own liquidation")

        with self._operation(OperationType.LIQUIDATE):
            self._require_initialized()
            if token_id not in self._positions:
                raise PositionNotOpen(f"no open position for token {token_id}")
            valuation = self._valuation(token_id)
            plan = compute_liquidation(
                self.params, self._positions.get(token_id), sender, token_id,
                valuation, self.clock.now(), self.address, swapper.address, beneficiary,
            )
            self._apply(plan)
            self._perform_moves(plan.moves)

            owed = plan.details['owed']
            credit = self.credit_asset.address
            balance_before = self.credit_asset.balance_of(self.address)
            try:
                swapper.swap(self.address, self.params.collateral_asset, token_id, owed, beneficiary)
            finally:
                proceeds = max(0, self.credit_asset.balance_of(self.address) - balance_before)
                if proceeds:
                    # returned to the swapper if the operation fails from here on
                    self._journal.append(
                        (Move(credit, swapper.address, self.address, proceeds, memo="swap_proceeds"), False)
                    )

            burned, surplus, shortfall = calculate_liquidation_settlement(owed, proceeds)
            settlement = []
            if burned:
                settlement.append(Move(credit, self.address, ZERO_ADDRESS, burned, memo="liquidation_burn"))
            if surplus:
                settlement.append(Move(credit, self.address, beneficiary, surplus, memo="liquidation_surplus"))
            self._perform_moves(settlement)
            self._total_bad_debt += shortfall

            self._record(plan, plan.moves + tuple(settlement), {
                **plan.details,
                'proceeds': proceeds,
                'burned': burned,
                'surplus': surplus,
                'shortfall': shortfall,
            })
            return proceeds

    def collect(self, sender: Address) -> Amount:
        """
        Mint the accumulated fee to the fee recipient and reset it to zero.

        Callable by anyone. With nothing accumulated this is a no-op that
        returns 0 and logs nothing.
        """
        with self._operation(OperationType.COLLECT):
            self._require_initialized()
            fee = self._total_fee_collected
            if fee == 0:
                return 0
            plan = compute_collect(
                fee, sender, self.fee_to, self.clock.now(), self.credit_asset.address,
            )
            self._apply(plan)
            self._perform_moves(plan.moves)
            self._record(plan)
            return fee

    # ========================================================================
    # EXECUTION
    # ========================================================================

    @contextmanager
    def _operation(self, operation: OperationType) -> Iterator[None]:
        """
        Run one mutating operation under the instance lock.

        Captures the vault's own state on entry. If the body raises, every
        token move the operation made is reverted, last first, and the vault
        state is put back. Token holdings nobody touched in this operation,
        including those of other vaults sharing the tokens, are left alone.
        """
        me = threading.get_ident()
        if self._active_thread == me:
            raise ReentrantCall(f"{operation.value} re-entered vault {self.address}")
        with self._lock:
            self._active_thread = me
            self._journal = []
            try:
                state = self._snapshot()
                try:
                    yield
                except Exception as e:
                    try:
                        self._compensate()
                    finally:
                        self._restore(state)
                    if self.verbose:
                        print(f"✗ REJECTED {operation.value}: {type(e).__name__}: {e}")
                    raise
            finally:
                self._journal = []
                self._active_thread = None

    def _snapshot(self) -> Tuple[Any, ...]:
        return (
            dict(self._positions),
            self._total_debt_amount,
            self._total_fee_collected,
            self._cumulative_fees_charged,
            self._cumulative_fees_swept,
            self._total_bad_debt,
            len(self.transaction_log),
            self._next_sequence,
            self.params,
            self.collateral_asset,
            self.oracle,
            self._fee_to,
        )

    def _restore(self, state: Tuple[Any, ...]) -> None:
        (
            positions,
            self._total_debt_amount,
            self._total_fee_collected,
            self._cumulative_fees_charged,
            self._cumulative_fees_swept,
            self._total_bad_debt,
            log_length,
            self._next_sequence,
            self.params,
            self.collateral_asset,
            self.oracle,
            self._fee_to,
        ) = state
        self._positions = positions
        del self.transaction_log[log_length:]

    def _compensate(self) -> None:
        """Revert the moves journaled by the current operation, newest first."""
        while self._journal:
            move, pulled = self._journal.pop()
            if move.token_id is not None:
                self.collateral_asset.revert(self.address, move)
            else:
                self.credit_asset.revert(self.address, move, restore_allowance=pulled)

    def _require_initialized(self) -> None:
        if self.params is None:
            raise NotInitialized(f"vault {self.address or '<undeployed>'} has no configuration")

    def _valuation(self, token_id: TokenId) -> Amount:
        """Fresh oracle valuation of token_id; never cached."""
        value = self.oracle.valuation(self.params.collateral_asset, token_id)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise PriceUnavailable(f"oracle returned {value!r} for token {token_id}")
        return value

    def _resolve_swapper(self, swapper: Union[Swapper, Address]) -> Swapper:
        if isinstance(swapper, str):
            return self.address_book.resolve(swapper, Swapper)
        if not isinstance(swapper, Swapper) or not is_address(getattr(swapper, 'address', None)):
            raise ValueError(f"{swapper!r} is not a deployed swapper")
        return swapper

    def _apply(self, plan: PendingOperation) -> None:
        """Apply a plan's position and aggregate effects."""
        if plan.token_id is not None and plan.new_position is not None:
            if plan.new_position.open:
                self._positions[plan.token_id] = plan.new_position
            else:
                self._positions.pop(plan.token_id, None)
        self._total_debt_amount += plan.debt_delta
        self._total_fee_collected += plan.fee_delta
        if plan.fee_delta > 0:
            self._cumulative_fees_charged += plan.fee_delta
        else:
            self._cumulative_fees_swept -= plan.fee_delta

    def _perform_moves(self, moves) -> None:
        """
        Carry out token moves, acting as the vault.

        Collateral moves use transfer_from; credit moves mint, burn,
        transfer from the vault, or pull from another holder. Each completed
        move is journaled so a failure later in the operation can revert it.
        """
        for move in moves:
            pulled = False
            if move.token_id is not None:
                self.collateral_asset.transfer_from(self.address, move.source, move.dest, move.token_id)
            elif move.is_mint:
                self.credit_asset.mint(self.address, move.dest, move.quantity)
            elif move.is_burn:
                self.credit_asset.burn(self.address, move.quantity)
            elif move.source == self.address:
                self.credit_asset.transfer(self.address, move.dest, move.quantity)
            else:
                self.credit_asset.transfer_from(self.address, move.source, move.dest, move.quantity)
                pulled = True
            self._journal.append((move, pulled))

    def _generate_exec_id(self, sequence: int, timestamp: datetime) -> str:
        """
        Generate a unique execution ID.

        Format: exec:{vault_address}:{sequence:012d}:{timestamp_micros}
        """
        micros = int(timestamp.timestamp() * 1_000_000)
        return f"exec:{self.address}:{sequence:012d}:{micros}"

    def _record(
        self,
        plan: PendingOperation,
        moves: Optional[Tuple[Move, ...]] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Transaction:
        sequence = self._next_sequence
        self._next_sequence += 1
        tx = Transaction(
            operation=plan.operation,
            token_id=plan.token_id,
            sender=plan.sender,
            old_position=plan.old_position,
            new_position=plan.new_position,
            debt_delta=plan.debt_delta,
            fee_delta=plan.fee_delta,
            moves=plan.moves if moves is None else tuple(moves),
            timestamp=plan.timestamp,
            intent_id=plan.intent_id,
            exec_id=self._generate_exec_id(sequence, plan.timestamp),
            vault_address=self.address,
            sequence_number=sequence,
            details=dict(plan.details if details is None else details),
        )
        # Log transaction (always - audit trail is mandatory)
        self.transaction_log.append(tx)
        if self.verbose:
            self._print_tx_result(tx, "APPLIED", "✓")
        return tx

    def _print_tx_result(self, tx: Transaction, result: str, icon: str) -> None:
        """Print the boxed Transaction repr with a result line appended."""
        lines = repr(tx).split('\n')
        w = 100
        bar = "─" * w
        line = ' ' + icon + ' ' + result
        lines[-1] = f"├{bar}┤"
        lines.append(f"│{line[:w].ljust(w)}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    def __repr__(self) -> str:
        kind = "master" if self.is_master else "clone"
        return (
            f"NFTVault({kind}, address={self.address}, positions={len(self._positions)}, "
            f"debt={self._total_debt_amount}, fee={self._total_fee_collected})"
        )
