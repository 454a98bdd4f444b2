"""Safe transaction signing with eth_sign-style (message-prefixed) signatures."""

from typing import Optional

import structlog
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

from vault_allocator.models import SignedCall
from vault_allocator.safe.client import SafeClient

logger = structlog.get_logger(__name__)

# Safe treats v > 30 as "eth_sign" and strips 4 before ecrecover on the prefixed hash
ETH_SIGN_V_OFFSET = 4


class SigningError(Exception):
    """Raised when the signing key is unavailable or signing fails."""


def adjust_recovery_byte(signature: bytes) -> bytes:
    """Shift the trailing v byte so the Safe verifies it as an eth_sign signature."""
    if len(signature) != 65:
        raise SigningError(f"Expected 65-byte signature, got {len(signature)} bytes")
    sig = bytearray(signature)
    sig[64] += ETH_SIGN_V_OFFSET
    return bytes(sig)


class SafeTransactionSigner:
    """Signs Safe transactions for a threshold-one Safe.

    The Safe nonce is read fresh for every signature and the digest is always
    obtained from the Safe's own getTransactionHash.
    """

    def __init__(self, safe: SafeClient, account: Optional[LocalAccount]):
        self._safe = safe
        self._account = account

    @property
    def address(self) -> str:
        if self._account is None:
            raise SigningError("No signing key loaded")
        return self._account.address

    def sign(self, to: str, data: bytes) -> SignedCall:
        """Produce a SignedCall for a zero-value CALL of `data` on `to`.

        Raises:
            SigningError: If no key is loaded or signing fails.
            ChainReadError: If the Safe nonce or hash cannot be read.
        """
        if self._account is None:
            raise SigningError("No signing key loaded")

        nonce = self._safe.nonce()
        safe_tx_hash = self._safe.transaction_hash(to, data, nonce)

        try:
            signed = self._account.sign_message(encode_defunct(primitive=safe_tx_hash))
        except Exception as e:
            logger.error("signer.sign_failed", nonce=nonce, error=str(e))
            raise SigningError(f"Failed to sign Safe tx {safe_tx_hash.hex()}: {e}") from e

        signature = adjust_recovery_byte(bytes(signed.signature))

        logger.debug(
            "signer.signed",
            safe_nonce=nonce,
            safe_tx_hash="0x" + safe_tx_hash.hex(),
            v=signature[64],
        )

        return SignedCall(
            to=to,
            data=data,
            signature=signature,
            safe_nonce=nonce,
            safe_tx_hash=safe_tx_hash,
        )
