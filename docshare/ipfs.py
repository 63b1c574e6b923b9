# docshare/ipfs.py
"""
Content-addressed blob storage.

`BlobStore` is the interface the rest of the app talks to; `LocalBlobStore`
is the development stand-in that keeps blobs on local disk under a fake
CIDv0-shaped address. The IPFS-backed implementation lives in
docshare/utils/ipfs.py.
"""

import base64
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import nacl.utils
from fastapi.concurrency import run_in_threadpool
from nacl.exceptions import CryptoError
from nacl.secret import SecretBox

from docshare.errors import BlobStoreError
from docshare.hashutil import sha256_hex

logger = logging.getLogger(__name__)

LOCAL_ADDRESS_RE = re.compile(r"Qm[0-9A-Za-z]{44}")


@dataclass(frozen=True)
class UploadResult:
    address: str
    size: int
    encryption_key: Optional[str] = None  # base64; only set when encrypt=True


def encrypt_buffer(data: bytes) -> Tuple[bytes, str]:
    """
    Encrypt with a fresh 256-bit key and a random 24-byte nonce
    (XSalsa20-Poly1305). The nonce is prepended to the ciphertext.
    Returns (encrypted bytes, base64 key).
    """
    key = nacl.utils.random(SecretBox.KEY_SIZE)
    encrypted = SecretBox(key).encrypt(data)
    return bytes(encrypted), base64.b64encode(key).decode("ascii")


def decrypt_buffer(data: bytes, key_b64: str) -> bytes:
    try:
        key = base64.b64decode(key_b64)
        return SecretBox(key).decrypt(data)
    except (CryptoError, ValueError, TypeError) as e:
        raise BlobStoreError("Failed to decrypt document", detail=str(e)) from e


class BlobStore(ABC):
    """
    Upload/download with optional encryption. Subclasses only move bytes;
    the key is handed back to the caller and never kept here.
    """

    mode = "production"

    @abstractmethod
    def _put(self, data: bytes) -> Tuple[str, int]:
        """Store bytes, return (address, stored size)."""

    @abstractmethod
    def _get(self, address: str) -> bytes:
        ...

    @abstractmethod
    def _exists(self, address: str) -> bool:
        ...

    @abstractmethod
    def is_valid_address(self, address: Any) -> bool:
        ...

    @abstractmethod
    def get_status(self) -> Dict[str, Any]:
        ...

    async def upload(self, data: bytes, encrypt: bool = False) -> UploadResult:
        key = None
        if encrypt:
            data, key = encrypt_buffer(data)
        try:
            address, size = await run_in_threadpool(self._put, data)
        except BlobStoreError:
            raise
        except Exception as e:
            raise BlobStoreError("Failed to upload file to blob store", detail=str(e)) from e
        return UploadResult(address=address, size=size, encryption_key=key)

    async def download(self, address: str, decrypt: bool = False,
                       encryption_key: Optional[str] = None) -> bytes:
        if not self.is_valid_address(address):
            raise BlobStoreError("Invalid content address format", detail=str(address))
        try:
            data = await run_in_threadpool(self._get, address)
        except BlobStoreError:
            raise
        except Exception as e:
            raise BlobStoreError("Failed to download file from blob store", detail=str(e)) from e
        if decrypt and encryption_key:
            data = decrypt_buffer(data, encryption_key)
        return data

    async def verify_upload(self, address: str) -> bool:
        return await run_in_threadpool(self._exists, address)

    async def pin(self, address: str) -> bool:
        return True

    async def unpin(self, address: str) -> bool:
        return True


class LocalBlobStore(BlobStore):
    """Blobs as files named by address under `storage_dir`."""

    mode = "development"

    def __init__(self, storage_dir: Path):
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Dev blob storage initialized at %s", self.storage_dir)

    @staticmethod
    def address_for(data: bytes) -> str:
        return "Qm" + sha256_hex(data)[:44]

    def _put(self, data: bytes) -> Tuple[str, int]:
        address = self.address_for(data)
        (self.storage_dir / address).write_bytes(data)
        logger.debug("Stored %d bytes locally as %s", len(data), address)
        return address, len(data)

    def _get(self, address: str) -> bytes:
        path = self.storage_dir / address
        if not path.exists():
            raise BlobStoreError("File not found in dev storage", detail=address)
        return path.read_bytes()

    def _exists(self, address: str) -> bool:
        return (self.storage_dir / address).exists()

    def is_valid_address(self, address: Any) -> bool:
        return isinstance(address, str) and LOCAL_ADDRESS_RE.fullmatch(address) is not None

    async def pin(self, address: str) -> bool:
        logger.debug("Dev blob store: pin simulated for %s", address)
        return True

    async def unpin(self, address: str) -> bool:
        logger.debug("Dev blob store: unpin simulated for %s", address)
        return True

    def get_status(self) -> Dict[str, Any]:
        return {
            "isConnected": self.storage_dir.is_dir(),
            "mode": self.mode,
            "storageDir": str(self.storage_dir),
        }
