# docshare/hashutil.py
import json, hashlib
from typing import Any, Dict

from web3 import Web3

def canonical_bytes(obj: Any) -> bytes:
    """
    Return a stable JSON byte representation:
    - Keys sorted
    - No extra spaces
    - UTF-8 encoded
    Used for the metadata string written next to a document on the ledger.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")

def sha256_hex(b: bytes, prefix: bool = False) -> str:
    """
    SHA-256 of bytes -> hex string, optionally '0x'-prefixed for ledger contexts.
    """
    h = hashlib.sha256(b).hexdigest()
    return f"0x{h}" if prefix else h

def ledger_metadata(fields: Dict[str, Any]) -> str:
    """
    Canonical JSON string stored on the ledger with a document registration.
    """
    return canonical_bytes(fields).decode("utf-8")

def compute_document_id(user_id: str, blob_address: str, timestamp_ms: int) -> str:
    """
    Ledger document id: keccak-256 over "<user>-<blob address>-<ms timestamp>" -> '0x...'.
    Owner and content address make it unique per upload; the timestamp
    separates re-uploads of the same content.
    """
    data = f"{user_id}-{blob_address}-{timestamp_ms}"
    return Web3.to_hex(Web3.keccak(text=data))
