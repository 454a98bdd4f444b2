"""Thin wrapper over the Safe multisig contract's read and execute surface."""

import structlog
from web3 import Web3

from vault_allocator.chain.contracts import SAFE_ABI
from vault_allocator.chain.reader import ChainReadError
from vault_allocator.config import ZERO_ADDRESS

logger = structlog.get_logger(__name__)

OPERATION_CALL = 0


def safe_tx_args(to: str, data: bytes) -> list:
    """Common Safe tx arguments: zero value, CALL, no gas refund fields."""
    return [to, 0, data, OPERATION_CALL, 0, 0, 0, ZERO_ADDRESS, ZERO_ADDRESS]


class SafeClient:
    """Reads Safe ownership, threshold, nonce and transaction hashes."""

    def __init__(self, w3: Web3, safe_address: str):
        self.address = safe_address
        self._w3 = w3
        self._contract = w3.eth.contract(address=safe_address, abi=SAFE_ABI)

    def _call(self, name: str, *args):
        try:
            return getattr(self._contract.functions, name)(*args).call()
        except Exception as e:
            logger.error("safe.read_failed", call=name, safe=self.address, error=str(e))
            raise ChainReadError(f"Safe {name}() failed: {e}") from e

    def nonce(self) -> int:
        return int(self._call("nonce"))

    def threshold(self) -> int:
        return int(self._call("getThreshold"))

    def is_owner(self, account: str) -> bool:
        return bool(self._call("isOwner", account))

    def transaction_hash(self, to: str, data: bytes, nonce: int) -> bytes:
        """Ask the Safe itself for the EIP-712 digest of a CALL to `to`."""
        digest = self._call("getTransactionHash", *safe_tx_args(to, data), nonce)
        digest = bytes(digest)
        if len(digest) != 32:
            raise ChainReadError(f"Malformed getTransactionHash result: {digest.hex()}")
        return digest

    def build_exec_transaction(self, to: str, data: bytes, signatures: bytes, tx_params: dict) -> dict:
        """Build (and gas-estimate) the outer execTransaction transaction."""
        return self._contract.functions.execTransaction(
            *safe_tx_args(to, data), signatures
        ).build_transaction(tx_params)
