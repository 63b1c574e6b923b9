# docshare/chain_config.py
import json, pathlib
from typing import Any, Dict, List, Optional, Tuple

from web3 import Web3

from docshare.errors import LedgerError

class ContractConfigError(LedgerError):
    pass

def _fn(name: str, inputs: List[Tuple[str, str]], outputs: List[Tuple[str, str]] = (),
        view: bool = False) -> Dict[str, Any]:
    return {
        "name": name,
        "type": "function",
        "stateMutability": "view" if view else "nonpayable",
        "inputs": [{"name": n, "type": t, "internalType": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t, "internalType": t} for n, t in outputs],
    }

def _event(name: str, inputs: List[Tuple[str, str, bool]]) -> Dict[str, Any]:
    return {
        "name": name,
        "type": "event",
        "anonymous": False,
        "inputs": [{"name": n, "type": t, "internalType": t, "indexed": i} for n, t, i in inputs],
    }

# Document-sharing contract interface; a compiled artifact can override it.
DOCUMENT_SHARING_ABI: List[Dict[str, Any]] = [
    _fn("addDocument", [("documentId", "bytes32"), ("ipfsHash", "string"), ("metadata", "string")]),
    _fn("grantAccess", [("documentId", "bytes32"), ("user", "address")]),
    _fn("revokeAccess", [("documentId", "bytes32"), ("user", "address")]),
    _fn("hasAccess", [("documentId", "bytes32"), ("user", "address")], [("", "bool")], view=True),
    _fn(
        "getDocument",
        [("documentId", "bytes32")],
        [("ipfsHash", "string"), ("documentOwner", "address"), ("createdAt", "uint256"), ("metadata", "string")],
        view=True,
    ),
    _fn("getDocumentAccessors", [("documentId", "bytes32")], [("", "address[]")], view=True),
    _fn("batchGrantAccess", [("documentId", "bytes32"), ("users", "address[]")]),
    _fn("removeDocument", [("documentId", "bytes32")]),
    _event("DocumentAdded", [("documentId", "bytes32", True), ("owner", "address", True),
                             ("ipfsHash", "string", False), ("metadata", "string", False)]),
    _event("AccessGranted", [("documentId", "bytes32", True), ("owner", "address", True),
                             ("user", "address", True)]),
    _event("AccessRevoked", [("documentId", "bytes32", True), ("owner", "address", True),
                             ("user", "address", True)]),
]

def load_contract_info(address: Optional[str], abi_path: Optional[str] = None) -> Tuple[str, List[Dict[str, Any]]]:
    # 1) Check address
    if not address:
        raise ContractConfigError("CONTRACT_ADDRESS is not configured")
    if not Web3.is_address(address):
        raise ContractConfigError(f"CONTRACT_ADDRESS is not a valid address: {address}")

    # 2) ABI: artifact file if given, else the built-in interface
    if not abi_path:
        return Web3.to_checksum_address(address), DOCUMENT_SHARING_ABI

    path = pathlib.Path(abi_path)
    if not path.exists():
        raise ContractConfigError(f"ABI not found at {path}")
    artifact = json.loads(path.read_text(encoding="utf-8"))
    abi = artifact.get("abi") if isinstance(artifact, dict) else artifact
    if not abi:
        raise ContractConfigError(f"ABI missing in {path}")

    return Web3.to_checksum_address(address), abi
