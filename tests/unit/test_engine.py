"""Tests for the allocator engine run loop."""

from unittest.mock import MagicMock, PropertyMock

import pytest

from vault_allocator.chain.reader import ChainReadError
from vault_allocator.models import (
    Direction,
    ExecutionReceipt,
    OutcomeStatus,
    RunState,
    SignedCall,
)
from vault_allocator.rebalancing.engine import AllocatorEngine
from vault_allocator.safe.executor import SubmissionError
from vault_allocator.safe.signer import SigningError

from factories import SAFE, VAULT, make_config

BOT = "0x" + "b0" * 20


def _signed(nonce: int = 0) -> SignedCall:
    return SignedCall(
        to=VAULT,
        data=b"\x00",
        signature=bytes(64) + bytes([31]),
        safe_nonce=nonce,
        safe_tx_hash=bytes([nonce]) * 32,
    )


def _receipt(block: int) -> ExecutionReceipt:
    return ExecutionReceipt(tx_hash=f"0x{block:064x}", block_number=block, status=1)


class TestAllocatorEngine:
    @pytest.fixture
    def reader(self, snapshot):
        reader = MagicMock()
        reader.is_allocator.return_value = True
        # 1000 total, nothing allocated: 4 x 50 increases
        reader.read_snapshot.side_effect = [snapshot(1000, 0), snapshot(1000, 200, block=110)]
        return reader

    @pytest.fixture
    def safe(self):
        safe = MagicMock()
        safe.address = SAFE
        safe.is_owner.return_value = True
        safe.threshold.return_value = 1
        return safe

    @pytest.fixture
    def signer(self):
        signer = MagicMock()
        signer.address = BOT
        signer.sign.side_effect = lambda to, data: _signed(signer.sign.call_count)
        return signer

    @pytest.fixture
    def executor(self):
        executor = MagicMock()
        executor.submit.side_effect = lambda call: _receipt(200 + call.safe_nonce)
        return executor

    def _engine(self, config, reader, safe, signer, executor):
        return AllocatorEngine(config, reader, safe, signer, executor)

    def test_full_run_executes_all_actions(self, test_config, reader, safe, signer, executor):
        report = self._engine(test_config, reader, safe, signer, executor).run()

        assert report.state is RunState.DONE
        assert report.exit_code == 0
        assert len(report.outcomes) == 4
        assert report.confirmed == 4
        assert all(o.action.direction is Direction.INCREASE for o in report.outcomes)
        assert executor.submit.call_count == 4
        assert report.final.block_number == 110
        assert reader.read_snapshot.call_count == 2

    def test_failed_action_does_not_stop_loop(self, test_config, reader, safe, signer, executor):
        def submit(call):
            if call.safe_nonce == 2:
                raise SubmissionError("reverted")
            return _receipt(200 + call.safe_nonce)

        executor.submit.side_effect = submit
        report = self._engine(test_config, reader, safe, signer, executor).run()

        assert executor.submit.call_count == 4
        assert report.confirmed == 3
        assert report.failed == 1
        failed = report.outcomes[1]
        assert failed.status is OutcomeStatus.FAILED
        assert failed.error_kind == "SubmissionError"
        assert report.state is RunState.DONE
        assert report.exit_code == 0

    def test_signing_error_isolated_per_action(self, test_config, reader, safe, signer, executor):
        calls = iter([_signed(1), SigningError("nonce read failed"), _signed(3), _signed(4)])

        def sign(to, data):
            result = next(calls)
            if isinstance(result, Exception):
                raise result
            return result

        signer.sign.side_effect = sign
        report = self._engine(test_config, reader, safe, signer, executor).run()

        assert [o.status for o in report.outcomes] == [
            OutcomeStatus.CONFIRMED,
            OutcomeStatus.FAILED,
            OutcomeStatus.CONFIRMED,
            OutcomeStatus.CONFIRMED,
        ]
        assert report.outcomes[1].error_kind == "SigningError"
        assert executor.submit.call_count == 3

    def test_every_action_signed_against_vault(self, test_config, reader, safe, signer, executor):
        self._engine(test_config, reader, safe, signer, executor).run()
        targets = {c.args[0] for c in signer.sign.call_args_list}
        assert targets == {test_config.contracts.vault}

    def test_dry_run_signs_but_never_submits(self, reader, safe, signer, executor):
        config = make_config(execution={"dry_run": True})
        report = self._engine(config, reader, safe, signer, executor).run()

        assert report.dry_run is True
        assert signer.sign.call_count == 4
        executor.submit.assert_not_called()
        assert report.skipped == 4
        assert all(o.status is OutcomeStatus.DRY_RUN for o in report.outcomes)
        assert report.exit_code == 0

    def test_within_threshold_takes_no_action(self, test_config, reader, safe, signer, executor, snapshot):
        reader.read_snapshot.side_effect = [snapshot(1000, 205)]
        report = self._engine(test_config, reader, safe, signer, executor).run()

        assert report.state is RunState.DONE
        assert report.plan.needs_rebalance is False
        assert report.outcomes == []
        assert report.final is None
        reader.read_snapshot.assert_called_once()
        signer.sign.assert_not_called()

    def test_final_read_failure_is_not_fatal(self, test_config, reader, safe, signer, executor, snapshot):
        reader.read_snapshot.side_effect = [snapshot(1000, 0), ChainReadError("rpc down")]
        report = self._engine(test_config, reader, safe, signer, executor).run()

        assert report.state is RunState.DONE
        assert report.final is None
        assert report.confirmed == 4
        assert report.exit_code == 0


class TestPreconditions:
    @pytest.fixture
    def parts(self, snapshot):
        reader = MagicMock()
        reader.is_allocator.return_value = True
        reader.read_snapshot.return_value = snapshot(1000, 0)
        safe = MagicMock()
        safe.address = SAFE
        safe.is_owner.return_value = True
        safe.threshold.return_value = 1
        signer = MagicMock()
        signer.address = BOT
        executor = MagicMock()
        return reader, safe, signer, executor

    def _run(self, parts):
        reader, safe, signer, executor = parts
        return AllocatorEngine(make_config(), reader, safe, signer, executor).run()

    def _assert_fatal_before_read(self, report, parts, kind):
        reader, _, signer, executor = parts
        assert report.state is RunState.FATAL
        assert report.exit_code == 1
        assert report.error_kind == kind
        reader.read_snapshot.assert_not_called()
        signer.sign.assert_not_called()
        executor.submit.assert_not_called()

    def test_signer_not_owner(self, parts):
        parts[1].is_owner.return_value = False
        report = self._run(parts)
        self._assert_fatal_before_read(report, parts, "PermissionCheckError")
        assert "not an owner" in report.error

    @pytest.mark.parametrize("threshold", [0, 2, 3])
    def test_threshold_must_be_one(self, parts, threshold):
        parts[1].threshold.return_value = threshold
        report = self._run(parts)
        self._assert_fatal_before_read(report, parts, "PermissionCheckError")
        assert f"threshold is {threshold}" in report.error

    def test_safe_not_allocator(self, parts):
        parts[0].is_allocator.return_value = False
        report = self._run(parts)
        self._assert_fatal_before_read(report, parts, "PermissionCheckError")
        parts[0].is_allocator.assert_called_once_with(SAFE)

    def test_missing_key_is_fatal(self, parts):
        type(parts[2]).address = PropertyMock(side_effect=SigningError("No signing key loaded"))
        report = self._run(parts)
        self._assert_fatal_before_read(report, parts, "SigningError")

    def test_initial_read_failure_is_fatal(self, parts):
        reader, _, signer, executor = parts
        reader.read_snapshot.side_effect = ChainReadError("Failed to read vault state: timeout")
        report = self._run(parts)

        assert report.state is RunState.FATAL
        assert report.exit_code == 1
        assert report.error_kind == "ChainReadError"
        assert report.plan is None
        signer.sign.assert_not_called()
        executor.submit.assert_not_called()
