# docshare/config.py
import os
import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

REPO_ROOT = Path(__file__).resolve().parents[1]

# Values shipped in the .env template; treated as "not configured".
PLACEHOLDERS = {
    "https://polygon-mumbai.g.alchemy.com/v2/YOUR_API_KEY",
    "your_wallet_private_key_for_contract_deployment",
    "your_infura_ipfs_project_id",
    "your_infura_ipfs_secret",
}


def _configured(value: Optional[str]) -> bool:
    return bool(value) and value not in PLACEHOLDERS


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    ledger_rpc_url: Optional[str] = None
    ledger_private_key: Optional[str] = None
    contract_address: Optional[str] = None
    contract_abi_path: Optional[str] = None
    ledger_gas_limit: int = 500_000
    ledger_fallback_gas_price_gwei: int = 20

    ipfs_api_url: str = "https://ipfs.infura.io:5001/api/v0"
    ipfs_project_id: Optional[str] = None
    ipfs_project_secret: Optional[str] = None
    dev_storage_dir: Path = REPO_ROOT / "dev_storage"

    database_url: Optional[str] = None

    jwt_secret: str = "change-me"
    jwt_expires_days: int = 7
    wallet_secret: Optional[str] = None

    app_env: str = "production"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from the process environment (and a .env file, if any).
        Called once at startup; the result is passed down explicitly.
        """
        load_dotenv()
        values = {
            "ledger_rpc_url": os.getenv("LEDGER_RPC_URL"),
            "ledger_private_key": os.getenv("LEDGER_PRIVATE_KEY"),
            "contract_address": os.getenv("CONTRACT_ADDRESS"),
            "contract_abi_path": os.getenv("CONTRACT_ABI_PATH"),
            "ledger_gas_limit": os.getenv("LEDGER_GAS_LIMIT"),
            "ledger_fallback_gas_price_gwei": os.getenv("LEDGER_FALLBACK_GAS_PRICE_GWEI"),
            "ipfs_api_url": os.getenv("IPFS_API_URL"),
            "ipfs_project_id": os.getenv("IPFS_PROJECT_ID"),
            "ipfs_project_secret": os.getenv("IPFS_PROJECT_SECRET"),
            "dev_storage_dir": os.getenv("DEV_STORAGE_DIR"),
            "database_url": os.getenv("DATABASE_URL"),
            "jwt_secret": os.getenv("JWT_SECRET"),
            "jwt_expires_days": os.getenv("JWT_EXPIRES_DAYS"),
            "wallet_secret": os.getenv("WALLET_SECRET"),
            "app_env": os.getenv("APP_ENV"),
            "log_level": os.getenv("LOG_LEVEL"),
        }
        return cls(**{k: v for k, v in values.items() if v is not None})

    @property
    def has_ledger_config(self) -> bool:
        return _configured(self.ledger_rpc_url) and _configured(self.ledger_private_key)

    @property
    def has_ipfs_config(self) -> bool:
        return _configured(self.ipfs_project_id) and _configured(self.ipfs_project_secret)

    @property
    def derivation_secret(self) -> str:
        # the wallet secret historically defaulted to the token-signing secret
        return self.wallet_secret or self.jwt_secret

    @property
    def expose_error_detail(self) -> bool:
        return self.app_env == "development"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
