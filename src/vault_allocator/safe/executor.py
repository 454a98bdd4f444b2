"""Submits signed Safe calls through execTransaction and waits for receipts."""

import requests
import structlog
from eth_account.signers.local import LocalAccount
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from web3 import Web3
from web3.exceptions import TimeExhausted

from vault_allocator.config import AppConfig
from vault_allocator.models import ExecutionReceipt, SignedCall
from vault_allocator.safe.client import SafeClient

logger = structlog.get_logger(__name__)


class SubmissionError(Exception):
    """Raised when a transaction is rejected, times out or reverts."""


class SafeExecutor:
    """Sends execTransaction from the bot's EOA, one call at a time.

    The EOA only pays gas; the allocator role belongs to the Safe.
    """

    def __init__(self, w3: Web3, safe: SafeClient, account: LocalAccount, config: AppConfig):
        self._w3 = w3
        self._safe = safe
        self._account = account
        self._chain_id = config.network.chain_id
        self._timeout = config.execution.confirmation_timeout_seconds
        self._poll_latency = config.execution.poll_latency_seconds

    def submit(self, call: SignedCall) -> ExecutionReceipt:
        """Submit one signed call and block until it is mined.

        Raises:
            SubmissionError: On build/send failure, confirmation timeout,
                or a reverted receipt.
        """
        try:
            tx = self._safe.build_exec_transaction(
                call.to,
                call.data,
                call.signature,
                {
                    "from": self._account.address,
                    "nonce": self._w3.eth.get_transaction_count(self._account.address, "pending"),
                    "chainId": self._chain_id,
                },
            )
            signed_tx = self._account.sign_transaction(tx)
            tx_hash = self._send_raw(bytes(signed_tx.raw_transaction))
        except Exception as e:
            logger.error("executor.submit_failed", safe_nonce=call.safe_nonce, error=str(e))
            raise SubmissionError(f"execTransaction submission failed: {e}") from e

        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.info("executor.submitted", tx_hash=tx_hash_hex, safe_nonce=call.safe_nonce)

        try:
            receipt = self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._timeout, poll_latency=self._poll_latency
            )
        except TimeExhausted as e:
            logger.error("executor.confirmation_timeout", tx_hash=tx_hash_hex, timeout=self._timeout)
            raise SubmissionError(
                f"Transaction {tx_hash_hex} not confirmed within {self._timeout}s"
            ) from e
        except Exception as e:
            logger.error("executor.receipt_failed", tx_hash=tx_hash_hex, error=str(e))
            raise SubmissionError(f"Waiting for {tx_hash_hex} failed: {e}") from e

        result = ExecutionReceipt(
            tx_hash=tx_hash_hex,
            block_number=int(receipt["blockNumber"]),
            status=int(receipt["status"]),
            gas_used=int(receipt.get("gasUsed", 0)),
        )

        if result.status != 1:
            logger.error("executor.reverted", tx_hash=tx_hash_hex, block=result.block_number)
            raise SubmissionError(f"Transaction {tx_hash_hex} reverted in block {result.block_number}")

        logger.info(
            "executor.confirmed",
            tx_hash=tx_hash_hex,
            block=result.block_number,
            gas_used=result.gas_used,
        )
        return result

    @retry(
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        reraise=True,
    )
    def _send_raw(self, raw_transaction: bytes) -> bytes:
        # identical raw bytes always map to the same tx hash
        return self._w3.eth.send_raw_transaction(raw_transaction)
