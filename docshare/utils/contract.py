"""
Smart contract integration for document sharing
Every write is signed by the acting user's derived wallet; the operator
wallet tops those wallets up so users never need funds of their own.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence

from eth_account import Account
from fastapi.concurrency import run_in_threadpool
from web3 import Web3

from docshare.chain_config import load_contract_info
from docshare.errors import LedgerError
from docshare.eth import connect, current_gas_price
from docshare.ledger import (
    BatchReceipt,
    DocumentRegistration,
    Ledger,
    LedgerDocument,
    LedgerReceipt,
    WalletBalance,
    now_ms,
)
from docshare.wallets import Wallet, WalletCache

logger = logging.getLogger(__name__)

TRANSFER_GAS = 21000
GRANTEE_SEED_ETHER = "0.01"


def _doc_id(document_id: str) -> bytes:
    return Web3.to_bytes(hexstr=document_id)


class ContractLedger(Ledger):
    """Ledger backed by the deployed document-sharing contract."""

    def __init__(
        self,
        wallets: WalletCache,
        rpc_url: str,
        operator_key: str,
        contract_address: Optional[str],
        abi_path: Optional[str] = None,
        gas_limit: int = 500_000,
        fallback_gas_price_gwei: int = 20,
        w3: Optional[Web3] = None,
    ):
        """
        Args:
            wallets: Shared wallet cache (user id -> derived wallet)
            rpc_url: Ledger RPC endpoint
            operator_key: Private key of the wallet that pays for user gas
            contract_address: Deployed contract address
            abi_path: Optional compiled artifact overriding the built-in ABI
            w3: Preconnected Web3 instance (skips connecting on first use)
        """
        super().__init__(wallets)
        self.rpc_url = rpc_url
        self.operator = Account.from_key(operator_key)
        self.contract_address = contract_address
        self.abi_path = abi_path
        self.gas_limit = gas_limit
        self.fallback_gas_price_gwei = fallback_gas_price_gwei
        self.w3 = w3
        self.contract = None
        self.gas_price: Optional[int] = None
        self._lock = threading.Lock()
        self._nonce_locks: Dict[str, threading.Lock] = {}

    @property
    def is_connected(self) -> bool:
        return self.contract is not None

    def _require_contract(self):
        with self._lock:
            if self.contract is None:
                if self.w3 is None:
                    self.w3 = connect(self.rpc_url)
                address, abi = load_contract_info(self.contract_address, self.abi_path)
                self.contract = self.w3.eth.contract(address=address, abi=abi)
                self.gas_price = current_gas_price(self.w3, self.fallback_gas_price_gwei)
                logger.info("Ledger initialized with contract at %s", address)
            return self.contract

    async def _call(self, action: str, fn: Callable, *args):
        """Run a blocking web3 interaction off the event loop, normalising failures."""
        try:
            return await run_in_threadpool(fn, *args)
        except LedgerError:
            raise
        except Exception as e:
            logger.error("Ledger %s failed: %s", action, e)
            raise LedgerError(f"Failed to {action} on ledger", detail=str(e)) from e

    # -- transactions -------------------------------------------------------

    def _nonce_lock(self, address: str) -> threading.Lock:
        with self._lock:
            return self._nonce_locks.setdefault(address, threading.Lock())

    def _send(self, sender: str, key, build: Callable[[int], Dict[str, Any]]):
        """Sign and send one transaction from `sender`, returning (hash, receipt).

        The sender's lock is held from nonce lookup until the receipt arrives,
        so concurrent writes from one wallet never reuse a nonce.
        """
        with self._nonce_lock(sender):
            nonce = self.w3.eth.get_transaction_count(sender, "pending")
            signed = self.w3.eth.account.sign_transaction(build(nonce), key)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash)
        return tx_hash, receipt

    def _ensure_funded(self, address: str, gas_limit: int) -> None:
        cost = self.gas_price * gas_limit
        if self.w3.eth.get_balance(address) < cost:
            self._fund(address, cost * 2)

    def _fund(self, address: str, amount_wei: int) -> str:
        tx_hash, _ = self._send(self.operator.address, self.operator.key, lambda nonce: {
            "to": address,
            "value": amount_wei,
            "gas": TRANSFER_GAS,
            "gasPrice": self.gas_price,
            "nonce": nonce,
            "chainId": self.w3.eth.chain_id,
        })
        logger.info("Funded wallet %s with %s ether", address, Web3.from_wei(amount_wei, "ether"))
        return Web3.to_hex(tx_hash)

    def _transact(self, wallet: Wallet, call, gas_limit: int) -> Dict[str, Any]:
        # funding goes through the operator's lock, never while holding the wallet's
        self._ensure_funded(wallet.address, gas_limit)
        tx_hash, receipt = self._send(wallet.address, wallet.private_key, lambda nonce: call.build_transaction({
            "from": wallet.address,
            "gas": gas_limit,
            "gasPrice": self.gas_price,
            "nonce": nonce,
        }))
        if receipt["status"] != 1:
            raise LedgerError("Ledger transaction reverted", detail=Web3.to_hex(tx_hash))
        return receipt

    # -- Ledger contract ----------------------------------------------------

    def _add_document(self, user_id, blob_address, metadata, timestamp_ms):
        contract = self._require_contract()
        wallet = self.wallets.get(user_id)
        document_id = self.generate_document_id(user_id, blob_address, timestamp_ms)
        receipt = self._transact(
            wallet,
            contract.functions.addDocument(_doc_id(document_id), blob_address, metadata),
            self.gas_limit,
        )
        return DocumentRegistration(
            document_id=document_id,
            transaction_hash=Web3.to_hex(receipt["transactionHash"]),
            block_number=receipt["blockNumber"],
            wallet_address=wallet.address,
        )

    async def add_document(self, user_id, blob_address, metadata, timestamp_ms=None):
        ts = now_ms() if timestamp_ms is None else timestamp_ms
        return await self._call("add document", self._add_document, user_id, blob_address, metadata, ts)

    def _grant(self, owner_id, document_id, target_id):
        contract = self._require_contract()
        owner = self.wallets.get(owner_id)
        target = self.wallets.address_of(target_id)
        # grantees get a little gas money up front for their own future writes
        if self.w3.eth.get_balance(target) == 0:
            self._fund(target, Web3.to_wei(GRANTEE_SEED_ETHER, "ether"))
        receipt = self._transact(owner, contract.functions.grantAccess(_doc_id(document_id), target), self.gas_limit)
        return LedgerReceipt(Web3.to_hex(receipt["transactionHash"]), receipt["blockNumber"], target)

    async def grant_access(self, owner_id, document_id, target_id):
        return await self._call("grant access", self._grant, owner_id, document_id, target_id)

    def _revoke(self, owner_id, document_id, target_id):
        contract = self._require_contract()
        owner = self.wallets.get(owner_id)
        target = self.wallets.address_of(target_id)
        receipt = self._transact(owner, contract.functions.revokeAccess(_doc_id(document_id), target), self.gas_limit)
        return LedgerReceipt(Web3.to_hex(receipt["transactionHash"]), receipt["blockNumber"], target)

    async def revoke_access(self, owner_id, document_id, target_id):
        return await self._call("revoke access", self._revoke, owner_id, document_id, target_id)

    def _has_access(self, user_id, document_id) -> bool:
        contract = self._require_contract()
        address = self.wallets.address_of(user_id)
        return bool(contract.functions.hasAccess(_doc_id(document_id), address).call())

    async def has_access(self, user_id, document_id):
        return await self._call("check access", self._has_access, user_id, document_id)

    def _get_document(self, user_id, document_id) -> LedgerDocument:
        if not self._has_access(user_id, document_id):
            raise LedgerError("Access denied to document")
        address = self.wallets.address_of(user_id)
        blob_address, owner, created_at, metadata = self.contract.functions.getDocument(
            _doc_id(document_id)
        ).call({"from": address})
        return LedgerDocument(blob_address, owner, int(created_at), metadata)

    async def get_document(self, user_id, document_id):
        return await self._call("get document", self._get_document, user_id, document_id)

    def _get_accessors(self, owner_id, document_id) -> List[str]:
        contract = self._require_contract()
        owner = self.wallets.address_of(owner_id)
        return list(contract.functions.getDocumentAccessors(_doc_id(document_id)).call({"from": owner}))

    async def get_accessors(self, owner_id, document_id):
        return await self._call("get document accessors", self._get_accessors, owner_id, document_id)

    def _batch_grant(self, owner_id, document_id, target_ids: Sequence[str]):
        contract = self._require_contract()
        owner = self.wallets.get(owner_id)
        targets = [self.wallets.address_of(t) for t in target_ids]
        receipt = self._transact(
            owner,
            contract.functions.batchGrantAccess(_doc_id(document_id), targets),
            self.gas_limit * max(len(targets), 1),
        )
        return BatchReceipt(Web3.to_hex(receipt["transactionHash"]), receipt["blockNumber"], tuple(targets))

    async def batch_grant_access(self, owner_id, document_id, target_ids):
        return await self._call("batch grant access", self._batch_grant, owner_id, document_id, list(target_ids))

    def _remove(self, owner_id, document_id):
        contract = self._require_contract()
        owner = self.wallets.get(owner_id)
        receipt = self._transact(owner, contract.functions.removeDocument(_doc_id(document_id)), self.gas_limit)
        return LedgerReceipt(Web3.to_hex(receipt["transactionHash"]), receipt["blockNumber"])

    async def remove_document(self, owner_id, document_id):
        return await self._call("remove document", self._remove, owner_id, document_id)

    def _balance(self, user_id) -> WalletBalance:
        self._require_contract()
        address = self.wallets.address_of(user_id)
        balance = self.w3.eth.get_balance(address)
        return WalletBalance(address, balance, str(Web3.from_wei(balance, "ether")))

    async def get_wallet_balance(self, user_id):
        return await self._call("get wallet balance", self._balance, user_id)

    def _fund_checked(self, address, amount_wei):
        self._require_contract()
        return self._fund(address, amount_wei)

    async def fund_wallet(self, address, amount_wei):
        return await self._call("fund user wallet", self._fund_checked, address, amount_wei)

    def get_status(self):
        return {
            "isConnected": self.is_connected,
            "hasContract": self.contract is not None,
            "hasWallet": True,
            "contractAddress": self.contract_address,
            "networkConfigured": bool(self.rpc_url),
            "gasPrice": f"{Web3.from_wei(self.gas_price, 'gwei')} gwei" if self.gas_price else None,
            "mode": self.mode,
        }
