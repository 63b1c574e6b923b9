# docshare/wallets.py
"""
Ledger identities for application users.

Every user gets a deterministic keypair derived from their id and a
process-wide secret, so nothing has to be persisted. The flip side: anyone
holding the secret can re-derive every user's private key. Derivation sits
behind `WalletDeriver` so it can be replaced by per-user stored key material
without touching the ledger adapters.
"""

import hashlib
import threading
from dataclasses import dataclass
from typing import Dict, Protocol

from eth_account import Account


@dataclass(frozen=True)
class Wallet:
    address: str
    private_key: str  # 0x-prefixed hex

    def __repr__(self) -> str:
        return f"Wallet(address={self.address!r})"


class WalletDeriver(Protocol):
    def derive(self, user_id: str) -> Wallet: ...


class SecretWalletDeriver:
    """private key = sha256("<user_id>_<secret>")"""

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("wallet derivation secret must not be empty")
        self._secret = secret

    def derive(self, user_id: str) -> Wallet:
        seed = hashlib.sha256(f"{user_id}_{self._secret}".encode("utf-8")).digest()
        account = Account.from_key(seed)
        return Wallet(address=account.address, private_key="0x" + seed.hex())


class WalletCache:
    """
    Process-wide, append-only map user_id -> Wallet.

    Two callers racing on a cold entry may both derive; the results are
    identical so the first one stored wins and nothing is lost.
    """

    def __init__(self, deriver: WalletDeriver):
        self._deriver = deriver
        self._wallets: Dict[str, Wallet] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Wallet:
        user_id = str(user_id)
        with self._lock:
            cached = self._wallets.get(user_id)
        if cached is not None:
            return cached
        wallet = self._deriver.derive(user_id)
        with self._lock:
            return self._wallets.setdefault(user_id, wallet)

    def address_of(self, user_id: str) -> str:
        return self.get(user_id).address

    def clear(self) -> None:
        with self._lock:
            self._wallets.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._wallets)

    def __contains__(self, user_id: object) -> bool:
        with self._lock:
            return str(user_id) in self._wallets
