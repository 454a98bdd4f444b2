"""Tests for Safe execTransaction submission."""

from unittest.mock import MagicMock

import pytest
import requests
from web3.exceptions import TimeExhausted

from vault_allocator.models import SignedCall
from vault_allocator.safe.executor import SafeExecutor, SubmissionError

from factories import VAULT

BOT = "0x" + "b0" * 20
TX_HASH = bytes.fromhex("ab" * 32)


def _call() -> SignedCall:
    return SignedCall(
        to=VAULT,
        data=b"\x01\x02",
        signature=bytes(64) + bytes([31]),
        safe_nonce=3,
        safe_tx_hash=bytes(32),
    )


class TestSafeExecutor:
    @pytest.fixture
    def w3(self):
        w3 = MagicMock()
        w3.eth.get_transaction_count.return_value = 42
        w3.eth.send_raw_transaction.return_value = TX_HASH
        w3.eth.wait_for_transaction_receipt.return_value = {
            "status": 1,
            "blockNumber": 555,
            "gasUsed": 90_000,
        }
        return w3

    @pytest.fixture
    def safe(self):
        safe = MagicMock()
        safe.build_exec_transaction.return_value = {"to": "0xsafe", "data": "0x"}
        return safe

    @pytest.fixture
    def account(self):
        account = MagicMock()
        account.address = BOT
        account.sign_transaction.return_value.raw_transaction = b"raw-tx"
        return account

    @pytest.fixture
    def executor(self, w3, safe, account, test_config, monkeypatch):
        monkeypatch.setattr(SafeExecutor._send_raw.retry, "sleep", lambda seconds: None)
        return SafeExecutor(w3, safe, account, test_config)

    def test_submit_success(self, executor, w3, safe, account):
        receipt = executor.submit(_call())

        assert receipt.tx_hash == "0x" + "ab" * 32
        assert receipt.block_number == 555
        assert receipt.status == 1
        assert receipt.gas_used == 90_000

        to, data, signatures, params = safe.build_exec_transaction.call_args[0]
        assert (to, data, signatures) == (VAULT, b"\x01\x02", _call().signature)
        assert params == {"from": BOT, "nonce": 42, "chainId": 1}
        w3.eth.get_transaction_count.assert_called_once_with(BOT, "pending")
        w3.eth.send_raw_transaction.assert_called_once_with(b"raw-tx")

    def test_wait_uses_configured_timeout(self, executor, w3):
        executor.submit(_call())
        _, kwargs = w3.eth.wait_for_transaction_receipt.call_args
        assert kwargs["timeout"] == 30

    def test_reverted_receipt_raises(self, executor, w3):
        w3.eth.wait_for_transaction_receipt.return_value = {"status": 0, "blockNumber": 556}
        with pytest.raises(SubmissionError, match="reverted"):
            executor.submit(_call())

    def test_confirmation_timeout_raises(self, executor, w3):
        w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("too slow")
        with pytest.raises(SubmissionError, match="not confirmed within 30s"):
            executor.submit(_call())

    def test_build_failure_raises(self, executor, safe, w3):
        """Gas estimation fails when the inner call would revert."""
        safe.build_exec_transaction.side_effect = ValueError("execution reverted: GS013")
        with pytest.raises(SubmissionError, match="GS013"):
            executor.submit(_call())
        w3.eth.send_raw_transaction.assert_not_called()

    def test_send_retried_on_connection_error(self, executor, w3):
        w3.eth.send_raw_transaction.side_effect = [requests.ConnectionError("reset"), TX_HASH]
        receipt = executor.submit(_call())
        assert receipt.block_number == 555
        assert w3.eth.send_raw_transaction.call_count == 2

    def test_send_gives_up_after_three_attempts(self, executor, w3):
        w3.eth.send_raw_transaction.side_effect = requests.Timeout("slow node")
        with pytest.raises(SubmissionError, match="slow node"):
            executor.submit(_call())
        assert w3.eth.send_raw_transaction.call_count == 3

    def test_rejected_transaction_not_retried(self, executor, w3):
        w3.eth.send_raw_transaction.side_effect = ValueError("nonce too low")
        with pytest.raises(SubmissionError, match="nonce too low"):
            executor.submit(_call())
        assert w3.eth.send_raw_transaction.call_count == 1
