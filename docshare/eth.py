# docshare/eth.py
import logging

from web3 import Web3

from docshare.errors import LedgerError

logger = logging.getLogger(__name__)

RPC_TIMEOUT = 30

def connect(rpc_url: str) -> Web3:
    w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": RPC_TIMEOUT}))
    if not w3.is_connected():
        raise LedgerError("Ledger RPC not reachable", detail=rpc_url)
    logger.info("Connected to ledger network (chain id %s)", w3.eth.chain_id)
    return w3

def current_gas_price(w3: Web3, fallback_gwei: int) -> int:
    try:
        return w3.eth.gas_price
    except Exception as e:
        logger.warning("Failed to update gas price, using %d gwei: %s", fallback_gwei, e)
        return Web3.to_wei(fallback_gwei, "gwei")
