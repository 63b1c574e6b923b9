# docshare/ledger.py
"""
Access-control ledger.

`Ledger` is the uniform interface over the document-sharing contract: register
a document, grant/revoke/query access, enumerate accessors. Users act through
their derived wallets (docshare/wallets.py). `SimulatedLedger` keeps the same
state in process memory for development; the chain-backed implementation is
docshare/utils/contract.py.
"""

import logging
import random
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from docshare.errors import LedgerError
from docshare.hashutil import compute_document_id
from docshare.wallets import WalletCache

logger = logging.getLogger(__name__)

ONE_ETHER = 10 ** 18


@dataclass(frozen=True)
class DocumentRegistration:
    document_id: str
    transaction_hash: str
    block_number: int
    wallet_address: str


@dataclass(frozen=True)
class LedgerReceipt:
    transaction_hash: str
    block_number: int
    target_wallet_address: Optional[str] = None


@dataclass(frozen=True)
class BatchReceipt:
    transaction_hash: str
    block_number: int
    target_addresses: Tuple[str, ...] = ()


@dataclass(frozen=True)
class LedgerDocument:
    blob_address: str
    owner: str
    created_at: int
    metadata: str


@dataclass(frozen=True)
class WalletBalance:
    address: str
    balance: int  # wei
    balance_formatted: str  # ether


def now_ms() -> int:
    return int(time.time() * 1000)


class Ledger(ABC):
    mode = "production"

    def __init__(self, wallets: WalletCache):
        self.wallets = wallets

    def generate_document_id(self, user_id: str, blob_address: str,
                             timestamp_ms: Optional[int] = None) -> str:
        return compute_document_id(str(user_id), blob_address,
                                   now_ms() if timestamp_ms is None else timestamp_ms)

    async def get_wallet_address(self, user_id: str) -> str:
        return self.wallets.address_of(user_id)

    @abstractmethod
    async def add_document(self, user_id: str, blob_address: str, metadata: str,
                           timestamp_ms: Optional[int] = None) -> DocumentRegistration: ...

    @abstractmethod
    async def grant_access(self, owner_id: str, document_id: str, target_id: str) -> LedgerReceipt: ...

    @abstractmethod
    async def revoke_access(self, owner_id: str, document_id: str, target_id: str) -> LedgerReceipt: ...

    @abstractmethod
    async def has_access(self, user_id: str, document_id: str) -> bool: ...

    @abstractmethod
    async def get_document(self, user_id: str, document_id: str) -> LedgerDocument: ...

    @abstractmethod
    async def get_accessors(self, owner_id: str, document_id: str) -> List[str]: ...

    @abstractmethod
    async def batch_grant_access(self, owner_id: str, document_id: str,
                                 target_ids: Sequence[str]) -> BatchReceipt: ...

    @abstractmethod
    async def remove_document(self, owner_id: str, document_id: str) -> LedgerReceipt: ...

    @abstractmethod
    async def get_wallet_balance(self, user_id: str) -> WalletBalance: ...

    @abstractmethod
    async def fund_wallet(self, address: str, amount_wei: int) -> str: ...

    @abstractmethod
    def get_status(self) -> Dict[str, Any]: ...


@dataclass
class _SimulatedDocument:
    blob_address: str
    owner: str
    metadata: str
    created_at: int


def _fake_tx() -> Tuple[str, int]:
    return "0x" + secrets.token_hex(32), random.randint(15_000_000, 15_999_999)


class SimulatedLedger(Ledger):
    """
    In-memory ledger. State lives only as long as the process, so anything
    registered before a restart is unknown here afterwards.

    Grants are kept apart from registrations as (document id, address)
    pairs, so a batch grant against a document this process never saw
    still records the permissions.
    """

    mode = "development"

    def __init__(self, wallets: WalletCache):
        super().__init__(wallets)
        self.is_connected = True
        self._documents: Dict[str, _SimulatedDocument] = {}
        self._permissions: Set[Tuple[str, str]] = set()
        logger.info("Dev ledger initialized (simulation mode)")

    def _require_connected(self) -> None:
        if not self.is_connected:
            raise LedgerError("Dev ledger not connected")

    def _owned(self, owner_id: str, document_id: str, action: str) -> _SimulatedDocument:
        doc = self._documents.get(document_id)
        if doc is None:
            raise LedgerError("Document not found on ledger", detail=document_id)
        if doc.owner != self.wallets.address_of(owner_id):
            raise LedgerError(f"Only document owner can {action}")
        return doc

    async def add_document(self, user_id, blob_address, metadata, timestamp_ms=None):
        self._require_connected()
        owner = self.wallets.address_of(user_id)
        document_id = self.generate_document_id(user_id, blob_address, timestamp_ms)
        self._documents[document_id] = _SimulatedDocument(
            blob_address=blob_address,
            owner=owner,
            metadata=metadata,
            created_at=now_ms() // 1000,
        )
        self._permissions.add((document_id, owner))
        tx_hash, block = _fake_tx()
        logger.info("Dev ledger: document added %s owner=%s", document_id, owner)
        return DocumentRegistration(document_id, tx_hash, block, owner)

    async def grant_access(self, owner_id, document_id, target_id):
        self._require_connected()
        self._owned(owner_id, document_id, "grant access")
        target = self.wallets.address_of(target_id)
        self._permissions.add((document_id, target))
        tx_hash, block = _fake_tx()
        logger.info("Dev ledger: access granted %s -> %s", document_id, target)
        return LedgerReceipt(tx_hash, block, target)

    async def revoke_access(self, owner_id, document_id, target_id):
        self._require_connected()
        self._owned(owner_id, document_id, "revoke access")
        target = self.wallets.address_of(target_id)
        self._permissions.discard((document_id, target))
        tx_hash, block = _fake_tx()
        logger.info("Dev ledger: access revoked %s -> %s", document_id, target)
        return LedgerReceipt(tx_hash, block, target)

    async def has_access(self, user_id, document_id):
        self._require_connected()
        return (document_id, self.wallets.address_of(user_id)) in self._permissions

    async def get_document(self, user_id, document_id):
        self._require_connected()
        doc = self._documents.get(document_id)
        if doc is None or not await self.has_access(user_id, document_id):
            raise LedgerError("Access denied to document")
        return LedgerDocument(doc.blob_address, doc.owner, doc.created_at, doc.metadata)

    async def get_accessors(self, owner_id, document_id):
        self._require_connected()
        doc = self._owned(owner_id, document_id, "view accessors")
        return sorted(a for d, a in self._permissions if d == document_id and a != doc.owner)

    async def batch_grant_access(self, owner_id, document_id, target_ids):
        # no registration or ownership check here, unlike single grants
        self._require_connected()
        targets = tuple(self.wallets.address_of(t) for t in target_ids)
        self._permissions.update((document_id, t) for t in targets)
        tx_hash, block = _fake_tx()
        logger.info("Dev ledger: batch access granted %s -> %d targets", document_id, len(targets))
        return BatchReceipt(tx_hash, block, targets)

    async def remove_document(self, owner_id, document_id):
        self._require_connected()
        self._owned(owner_id, document_id, "remove document")
        del self._documents[document_id]
        self._permissions = {p for p in self._permissions if p[0] != document_id}
        tx_hash, block = _fake_tx()
        return LedgerReceipt(tx_hash, block)

    async def get_wallet_balance(self, user_id):
        return WalletBalance(self.wallets.address_of(user_id), ONE_ETHER, "1.0")

    async def fund_wallet(self, address, amount_wei):
        logger.info("Dev ledger: simulated funding of %s with %d wei", address, amount_wei)
        return _fake_tx()[0]

    def get_status(self):
        return {
            "isConnected": self.is_connected,
            "hasContract": True,
            "hasWallet": True,
            "contractAddress": "dev_contract_simulation",
            "gasPrice": "20 gwei",
            "mode": self.mode,
        }
