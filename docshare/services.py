# docshare/services.py
"""
Picks the real or simulated blob store and ledger once at startup, from
which credentials are configured. Missing either set puts the process in
development mode, which relaxes some reconciliation failure policies.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict

from docshare.config import Settings
from docshare.ipfs import BlobStore, LocalBlobStore
from docshare.ledger import Ledger, SimulatedLedger
from docshare.utils.contract import ContractLedger
from docshare.utils.ipfs import IPFSBlobStore
from docshare.wallets import SecretWalletDeriver, WalletCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Services:
    blob_store: BlobStore
    ledger: Ledger
    wallets: WalletCache
    development_mode: bool

    def status(self) -> Dict[str, Any]:
        return {
            "ipfs": self.blob_store.get_status(),
            "blockchain": self.ledger.get_status(),
            "mode": "development" if self.development_mode else "production",
        }


def select_services(settings: Settings, wallets: WalletCache | None = None) -> Services:
    if wallets is None:
        wallets = WalletCache(SecretWalletDeriver(settings.derivation_secret))

    if settings.has_ipfs_config:
        blob_store: BlobStore = IPFSBlobStore(
            settings.ipfs_api_url, settings.ipfs_project_id, settings.ipfs_project_secret)
    else:
        blob_store = LocalBlobStore(settings.dev_storage_dir)

    if settings.has_ledger_config:
        ledger: Ledger = ContractLedger(
            wallets,
            rpc_url=settings.ledger_rpc_url,
            operator_key=settings.ledger_private_key,
            contract_address=settings.contract_address,
            abi_path=settings.contract_abi_path,
            gas_limit=settings.ledger_gas_limit,
            fallback_gas_price_gwei=settings.ledger_fallback_gas_price_gwei,
        )
    else:
        ledger = SimulatedLedger(wallets)

    development_mode = not (settings.has_ledger_config and settings.has_ipfs_config)
    logger.info(
        "Service configuration: ipfs=%s blockchain=%s mode=%s",
        "production (IPFS)" if settings.has_ipfs_config else "development (local)",
        "production (contract)" if settings.has_ledger_config else "development (simulation)",
        "development" if development_mode else "production",
    )
    return Services(blob_store=blob_store, ledger=ledger, wallets=wallets,
                    development_mode=development_mode)
