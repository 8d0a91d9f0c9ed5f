"""
tokens.py - In-memory credit and collateral tokens

Reference implementations of the two token collaborators the vault moves
value through:

- CreditToken: fungible credit asset with an owner-managed minter whitelist.
  The vault is added as a minter so it can issue credit on borrow and fees on
  collect, and burns what borrowers and swappers pay back.
- CollateralToken: non-fungible collateral asset with per-token approvals and
  operator approvals, enumerable by owner.

Both tokens keep a transfer log of Move records (mints from ZERO_ADDRESS,
burns to ZERO_ADDRESS). Both can revert a single move on behalf of a party
to it, so a failed vault operation undoes its own moves and nothing else.
"""

from __future__ import annotations
from collections import defaultdict
from typing import Dict, List, Optional, Set, Tuple

from .core import (
    Address, Amount, TokenId, Move,
    ZERO_ADDRESS, MAX_UINT256,
    Unauthorized, InsufficientBalance, InsufficientAllowance,
    NotOwnerNorApproved, NonexistentToken, TokenError,
    _require_amount,
)


def _require_account(name: str, address: Address) -> None:
    if not address or address == ZERO_ADDRESS:
        raise TokenError(f"{name} cannot be the zero address")


# ============================================================================
# CREDIT TOKEN
# ============================================================================

class CreditToken:
    """
    Fungible credit token with a minter whitelist.

    The owner may mint and may add or remove minters. Whitelisted minters may
    mint. Any holder may burn its own balance.

    Allowances of MAX_UINT256 are treated as infinite and never decremented.

    Example:
        clink = CreditToken("Clink", "CLK", owner=owner)
        book.deploy(clink, "clink")
        clink.add_minter(owner, vault.address)
        clink.mint(owner, alice, 1000 * WAD)
    """

    def __init__(self, name: str, symbol: str, owner: Address, decimals: int = 18):
        if not name or not name.strip():
            raise ValueError("token name cannot be empty")
        if not symbol or not symbol.strip():
            raise ValueError("token symbol cannot be empty")
        _require_account("owner", owner)
        self.name = name
        self.symbol = symbol
        self.decimals = decimals
        self.owner = owner
        self.address: Address = ""
        self.minters: Set[Address] = set()
        self.balances: Dict[Address, Amount] = defaultdict(int)
        self.allowances: Dict[Tuple[Address, Address], Amount] = {}
        self._total_supply: Amount = 0
        self.transfer_log: List[Move] = []

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def total_supply(self) -> Amount:
        return self._total_supply

    def balance_of(self, account: Address) -> Amount:
        return self.balances.get(account, 0)

    def allowance(self, holder: Address, spender: Address) -> Amount:
        return self.allowances.get((holder, spender), 0)

    def is_minter(self, account: Address) -> bool:
        return account == self.owner or account in self.minters

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def add_minter(self, sender: Address, minter: Address) -> None:
        """Whitelist minter. Owner only."""
        if sender != self.owner:
            raise Unauthorized(f"{sender} is not the owner of {self.symbol}")
        _require_account("minter", minter)
        self.minters.add(minter)

    def remove_minter(self, sender: Address, minter: Address) -> None:
        """Remove minter from the whitelist. Owner only."""
        if sender != self.owner:
            raise Unauthorized(f"{sender} is not the owner of {self.symbol}")
        self.minters.discard(minter)

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def mint(self, sender: Address, to: Address, amount: Amount) -> None:
        if not self.is_minter(sender):
            raise Unauthorized(f"{sender} is not a minter of {self.symbol}")
        _require_account("recipient", to)
        _require_amount("amount", amount)
        self._move(ZERO_ADDRESS, to, amount, "mint")

    def burn(self, sender: Address, amount: Amount) -> None:
        _require_amount("amount", amount)
        self._move(sender, ZERO_ADDRESS, amount, "burn")

    def transfer(self, sender: Address, to: Address, amount: Amount) -> None:
        _require_account("recipient", to)
        _require_amount("amount", amount)
        self._move(sender, to, amount, "transfer")

    def approve(self, sender: Address, spender: Address, amount: Amount) -> None:
        _require_account("spender", spender)
        _require_amount("amount", amount, allow_zero=True)
        if amount > MAX_UINT256:
            raise TokenError(f"allowance out of range: {amount}")
        self.allowances[(sender, spender)] = amount

    def transfer_from(self, sender: Address, source: Address, to: Address, amount: Amount) -> None:
        """
        Move amount from source to to on behalf of sender.

        Raises:
            InsufficientAllowance: If sender is not source and lacks allowance.
            InsufficientBalance: If source holds less than amount.
        """
        _require_account("recipient", to)
        _require_amount("amount", amount)
        if sender != source:
            allowed = self.allowance(source, sender)
            if allowed < amount:
                raise InsufficientAllowance(
                    f"{sender} may spend {allowed} of {source}'s {self.symbol}, needs {amount}"
                )
            if allowed != MAX_UINT256:
                self.allowances[(source, sender)] = allowed - amount
        self._move(source, to, amount, "transfer")

    def _move(self, source: Address, dest: Address, amount: Amount, memo: str) -> None:
        if source != ZERO_ADDRESS:
            balance = self.balances.get(source, 0)
            if balance < amount:
                raise InsufficientBalance(
                    f"{source} holds {balance} {self.symbol}, needs {amount}"
                )
            self.balances[source] = balance - amount
        else:
            self._total_supply += amount
        if dest != ZERO_ADDRESS:
            self.balances[dest] += amount
        else:
            self._total_supply -= amount
        self.transfer_log.append(Move(self.address or self.symbol, source, dest, amount, memo=memo))

    # ------------------------------------------------------------------
    # Compensation
    # ------------------------------------------------------------------

    def revert(self, sender: Address, move: Move, restore_allowance: bool = False) -> None:
        """
        Apply the inverse of a move this token carried out.

        A caller uses this to undo its own moves when the operation that made
        them fails, leaving every other holder's balance alone. sender must
        be a party to the move, or a minter when the move was a mint. With
        restore_allowance the allowance the original transfer_from consumed
        is given back to sender.

        Raises:
            TokenError: If move is not a move of this token.
            Unauthorized: If sender may not revert move.
            InsufficientBalance: If the recipient no longer holds the amount.
        """
        if move.asset != self.address or move.token_id is not None:
            raise TokenError(f"{move!r} is not a {self.symbol} move")
        if sender not in (move.source, move.dest) and not (move.is_mint and self.is_minter(sender)):
            raise Unauthorized(f"{sender} is not party to the {self.symbol} move it reverts")
        self._move(move.dest, move.source, move.quantity, "revert")
        if restore_allowance and move.source != ZERO_ADDRESS:
            allowed = self.allowance(move.source, sender)
            if allowed != MAX_UINT256:
                self.allowances[(move.source, sender)] = allowed + move.quantity

    def verify_supply(self) -> bool:
        """True when the sum of balances equals total supply."""
        return sum(self.balances.values()) == self._total_supply

    def __repr__(self) -> str:
        return f"CreditToken({self.symbol}, supply={self._total_supply}, address={self.address})"


# ============================================================================
# COLLATERAL TOKEN
# ============================================================================

class CollateralToken:
    """
    Non-fungible collateral token.

    Token ids are minted sequentially from 1 by the owner. Transfers succeed
    when the sender owns the token, is approved for it, or is an approved
    operator for the owner; a transfer clears the per-token approval.

    Example:
        nft = CollateralToken("TEST-NFT", "TNFT", owner=owner)
        book.deploy(nft, "nft")
        token_id = nft.mint(owner, alice)
        nft.set_approval_for_all(alice, vault.address, True)
    """

    def __init__(self, name: str, symbol: str, owner: Address):
        if not name or not name.strip():
            raise ValueError("token name cannot be empty")
        if not symbol or not symbol.strip():
            raise ValueError("token symbol cannot be empty")
        _require_account("owner", owner)
        self.name = name
        self.symbol = symbol
        self.owner = owner
        self.address: Address = ""
        self.owners: Dict[TokenId, Address] = {}
        # Inverted index owner -> token ids in acquisition order
        self._tokens_by_owner: Dict[Address, List[TokenId]] = defaultdict(list)
        self.token_approvals: Dict[TokenId, Address] = {}
        self.operator_approvals: Set[Tuple[Address, Address]] = set()
        self._next_token_id: TokenId = 1
        self.transfer_log: List[Move] = []

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def owner_of(self, token_id: TokenId) -> Address:
        holder = self.owners.get(token_id)
        if holder is None:
            raise NonexistentToken(f"{self.symbol} #{token_id} does not exist")
        return holder

    def exists(self, token_id: TokenId) -> bool:
        return token_id in self.owners

    def balance_of(self, holder: Address) -> int:
        return len(self._tokens_by_owner.get(holder, ()))

    def token_of_owner_by_index(self, holder: Address, index: int) -> TokenId:
        tokens = self._tokens_by_owner.get(holder, [])
        if index < 0 or index >= len(tokens):
            raise TokenError(f"{holder} has no {self.symbol} at index {index}")
        return tokens[index]

    def tokens_of(self, holder: Address) -> List[TokenId]:
        return list(self._tokens_by_owner.get(holder, []))

    def get_approved(self, token_id: TokenId) -> Optional[Address]:
        self.owner_of(token_id)
        return self.token_approvals.get(token_id)

    def is_approved_for_all(self, holder: Address, operator: Address) -> bool:
        return (holder, operator) in self.operator_approvals

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def mint(self, sender: Address, to: Address) -> TokenId:
        """Mint the next token id to to. Owner only."""
        if sender != self.owner:
            raise Unauthorized(f"{sender} is not the owner of {self.symbol}")
        _require_account("recipient", to)
        token_id = self._next_token_id
        self._next_token_id += 1
        self.owners[token_id] = to
        self._tokens_by_owner[to].append(token_id)
        self.transfer_log.append(Move(self.address or self.symbol, ZERO_ADDRESS, to, 1, token_id, "mint"))
        return token_id

    def approve(self, sender: Address, spender: Address, token_id: TokenId) -> None:
        holder = self.owner_of(token_id)
        if sender != holder and not self.is_approved_for_all(holder, sender):
            raise NotOwnerNorApproved(f"{sender} cannot approve {self.symbol} #{token_id}")
        self.token_approvals[token_id] = spender

    def set_approval_for_all(self, sender: Address, operator: Address, approved: bool) -> None:
        if sender == operator:
            raise TokenError("cannot approve self as operator")
        if approved:
            self.operator_approvals.add((sender, operator))
        else:
            self.operator_approvals.discard((sender, operator))

    def transfer_from(self, sender: Address, source: Address, to: Address, token_id: TokenId) -> None:
        """
        Transfer token_id from source to to on behalf of sender.

        Raises:
            NonexistentToken: If token_id was never minted.
            NotOwnerNorApproved: If source does not own the token or sender is
                                 neither the owner, approved, nor an operator.
        """
        holder = self.owner_of(token_id)
        if holder != source:
            raise NotOwnerNorApproved(f"{source} does not own {self.symbol} #{token_id}")
        _require_account("recipient", to)
        if (
            sender != holder
            and self.token_approvals.get(token_id) != sender
            and not self.is_approved_for_all(holder, sender)
        ):
            raise NotOwnerNorApproved(f"{sender} is not approved for {self.symbol} #{token_id}")
        self._reassign(token_id, holder, to, "transfer")

    def _reassign(self, token_id: TokenId, holder: Address, to: Address, memo: str) -> None:
        self.token_approvals.pop(token_id, None)
        self._tokens_by_owner[holder].remove(token_id)
        if not self._tokens_by_owner[holder]:
            del self._tokens_by_owner[holder]
        self.owners[token_id] = to
        self._tokens_by_owner[to].append(token_id)
        self.transfer_log.append(Move(self.address or self.symbol, holder, to, 1, token_id, memo))

    # ------------------------------------------------------------------
    # Compensation
    # ------------------------------------------------------------------

    def revert(self, sender: Address, move: Move) -> None:
        """
        Move a token back from the recipient of move to its source.

        Only a party to the move may revert it, and only while the recipient
        still holds the token. A per-token approval cleared by the original
        transfer is not reinstated.

        Raises:
            TokenError: If move is not a transfer of this token.
            Unauthorized: If sender is not party to move.
            NotOwnerNorApproved: If the recipient no longer holds the token.
        """
        if move.asset != self.address or move.token_id is None or move.is_mint or move.is_burn:
            raise TokenError(f"{move!r} is not a {self.symbol} transfer")
        if sender not in (move.source, move.dest):
            raise Unauthorized(f"{sender} is not party to the {self.symbol} move it reverts")
        if self.owner_of(move.token_id) != move.dest:
            raise NotOwnerNorApproved(
                f"{move.dest} no longer holds {self.symbol} #{move.token_id}"
            )
        self._reassign(move.token_id, move.dest, move.source, "revert")

    def __repr__(self) -> str:
        return f"CollateralToken({self.symbol}, {len(self.owners)} minted, address={self.address})"
