"""
factory.py - Clone deployment and registry

One NFTVault master holds the logic and the owner/fee recipient roles; the
Factory stamps out independently stateful clones of it, each configured once
from a config blob.

    master = NFTVault(clink, owner, book, clock)
    factory = Factory(book)
    vault = factory.deploy(master, encode_config(params))

deploy() is all-or-nothing: a blob that fails to decode or resolve leaves no
clone, no address, no registry entry and no event behind.
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from .core import Address, CloneAlreadyDeployed
from .addresses import AddressBook, derive_address
from .vault import NFTVault

Salt = Union[bytes, str]


@dataclass(frozen=True, slots=True)
class DeployEvent:
    """Record of one clone deployment, in deployment order."""
    master_contract: Address
    data: bytes
    clone_address: Address

    def __repr__(self) -> str:
        return f"DeployEvent({self.master_contract} → {self.clone_address}, {len(self.data)} bytes)"


def _salt_hex(salt: Salt) -> str:
    if isinstance(salt, (bytes, bytearray)):
        return bytes(salt).hex()
    if isinstance(salt, str) and salt:
        return salt.encode().hex()
    raise ValueError(f"salt must be non-empty bytes or str, got {salt!r}")


class Factory:
    """
    Deploys configured clones of master vaults.

    Attributes:
        master_contract_of: clone address -> master address, for registered clones
        events: DeployEvent per deployment, registered or not

    Thread Safety:
        Not thread-safe. Deploy from one thread.
    """

    def __init__(self, address_book: AddressBook, verbose: bool = False):
        self.address_book = address_book
        self.verbose = verbose
        self.address: Address = ""
        self.master_contract_of: Dict[Address, Address] = {}
        self._clones: Dict[Address, List[Address]] = defaultdict(list)
        self.events: List[DeployEvent] = []
        address_book.deploy(self, "Factory")

    def predict_address(self, master: NFTVault, salt: Salt) -> Address:
        """Address deploy(master, data, salt=salt) will assign, whatever data is."""
        return derive_address("clone", self.address, master.address, _salt_hex(salt))

    def deploy(
        self,
        master: NFTVault,
        data: bytes,
        register: bool = True,
        salt: Optional[Salt] = None,
    ) -> NFTVault:
        """
        Deploy a clone of master and initialize it from data.

        Args:
            master: Master vault the clone is bound to
            data: Config blob passed to the clone's init()
            register: Record the clone in master_contract_of / clones_of
            salt: Deterministic address seed (see predict_address)

        Returns:
            The initialized clone.

        Raises:
            CloneAlreadyDeployed: If salt targets an occupied address.
            InvalidConfiguration, UnknownAddress: If data does not initialize.
            ValueError: If master is itself a clone.
        """
        if salt is not None:
            address = self.predict_address(master, salt)
            if self.address_book.is_contract(address):
                raise CloneAlreadyDeployed(f"salt {salt!r} already deployed at {address}")
        else:
            address = self.address_book.next_address()

        clone = master.clone()
        clone.address = address
        clone.init(bytes(data), sender=self.address)

        label = f"{self.address_book.label_of(master.address)}-clone"
        if salt is not None:
            self.address_book.register_at(address, clone, label)
        else:
            self.address_book.deploy(clone, label)

        if register:
            self.master_contract_of[address] = master.address
            self._clones[master.address].append(address)
        event = DeployEvent(master.address, bytes(data), address)
        self.events.append(event)
        if self.verbose:
            print(f"✓ DEPLOYED {event!r}")
        return clone

    def clones_of(self, master: Union[NFTVault, Address]) -> List[Address]:
        """Registered clone addresses of master, in deployment order."""
        key = master.address if isinstance(master, NFTVault) else master
        return list(self._clones.get(key, []))

    def is_clone(self, address: Address) -> bool:
        return address in self.master_contract_of

    def __repr__(self) -> str:
        return f"Factory(address={self.address}, {len(self.events)} deployments)"
