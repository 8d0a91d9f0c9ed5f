"""
addresses.py - Address assignment and resolution

Every participant in the vault system is identified by a 20-byte hex address:
externally owned accounts (borrowers, fee recipients) and contracts (tokens,
oracles, vaults, swappers, the factory). The AddressBook hands out
deterministic addresses and resolves contract addresses back to objects,
which is what lets a config blob name its oracle and collateral asset by
address alone.
"""

from __future__ import annotations
import hashlib
from typing import Any, Dict, List, Optional

from .core import Address, UnknownAddress, ZERO_ADDRESS


def derive_address(*parts: str) -> Address:
    """Derive a deterministic address from an ordered sequence of strings."""
    digest = hashlib.sha256("|".join(parts).encode()).hexdigest()
    return "0x" + digest[:40]


def is_address(value: Any) -> bool:
    """True for a "0x"-prefixed, 40 hex character string."""
    if not isinstance(value, str) or len(value) != 42 or not value.startswith("0x"):
        return False
    try:
        int(value[2:], 16)
    except ValueError:
        return False
    return True


class AddressBook:
    """
    Registry of accounts and contracts for one deployment environment.

    Contracts are assigned sequential, CREATE-style addresses derived from
    the book name and a nonce. Accounts are derived from a label, so the same
    label always yields the same account address.

    Thread Safety:
        Not thread-safe. Deploy contracts before sharing the book.

    Example:
        book = AddressBook("local")
        alice = book.account("alice")
        token = CreditToken("Clink", "CLK", owner=alice)
        book.deploy(token, "clink")
        assert book.resolve(token.address) is token
    """

    def __init__(self, name: str = "local"):
        self.name = name
        self._contracts: Dict[Address, Any] = {}
        self._labels: Dict[Address, str] = {ZERO_ADDRESS: "zero"}
        self._nonce = 0

    def account(self, label: str) -> Address:
        """Return the externally owned account address for label."""
        if not label or not label.strip():
            raise ValueError("account label cannot be empty")
        address = derive_address("account", self.name, label)
        self._labels.setdefault(address, label)
        return address

    def next_address(self) -> Address:
        """Return the address the next deploy() will assign."""
        return derive_address("contract", self.name, str(self._nonce))

    def deploy(self, contract: Any, label: Optional[str] = None) -> Address:
        """
        Assign the next contract address to contract and register it.

        Sets contract.address and returns it.
        """
        address = self.next_address()
        self._nonce += 1
        self.register_at(address, contract, label)
        return address

    def register_at(self, address: Address, contract: Any, label: Optional[str] = None) -> Address:
        """
        Register contract at a caller-chosen address.

        Raises:
            ValueError: If the address is malformed or already occupied.
        """
        if not is_address(address):
            raise ValueError(f"malformed address {address!r}")
        if address in self._contracts or address == ZERO_ADDRESS:
            raise ValueError(f"address {address} already occupied")
        contract.address = address
        self._contracts[address] = contract
        self._labels[address] = label or type(contract).__name__
        return address

    def is_contract(self, address: Address) -> bool:
        return address in self._contracts

    def resolve(self, address: Address, expected: Optional[type] = None) -> Any:
        """
        Return the contract registered at address.

        Raises:
            UnknownAddress: If nothing is registered there, or the contract is
                            not an instance of expected.
        """
        contract = self._contracts.get(address)
        if contract is None:
            raise UnknownAddress(f"no contract at {address}")
        if expected is not None and not isinstance(contract, expected):
            raise UnknownAddress(
                f"contract at {address} is {type(contract).__name__}, expected {expected.__name__}"
            )
        return contract

    def label_of(self, address: Address) -> str:
        return self._labels.get(address, address)

    def contracts(self) -> List[Address]:
        return sorted(self._contracts)

    def __repr__(self) -> str:
        return f"AddressBook({self.name}, {len(self._contracts)} contracts)"
