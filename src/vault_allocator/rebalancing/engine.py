"""Allocator engine - one stateless rebalancing run of the vault."""

from datetime import datetime, timezone
from typing import Optional

import structlog

from vault_allocator.chain.contracts import encode_vault_call
from vault_allocator.chain.reader import ChainReadError, ChainStateReader
from vault_allocator.config import AppConfig
from vault_allocator.logging_config import get_action_logger, get_decision_logger
from vault_allocator.models import (
    ActionOutcome,
    AllocationAction,
    MarketTarget,
    RunReport,
    RunState,
    VaultSnapshot,
    build_market_targets,
    format_units,
)
from vault_allocator.rebalancing.planner import plan_allocation
from vault_allocator.safe.client import SafeClient
from vault_allocator.safe.executor import SafeExecutor, SubmissionError
from vault_allocator.safe.signer import SafeTransactionSigner, SigningError

logger = structlog.get_logger(__name__)

REQUIRED_THRESHOLD = 1


class PermissionCheckError(Exception):
    """Raised when the bot, Safe or vault roles do not permit autonomous execution."""


class AllocatorEngine:
    """Keeps the vault at its idle/allocated target through the Safe.

    Init -> PreconditionCheck -> ReadState -> Plan -> Execute -> ReadFinalState -> Done,
    with Fatal reachable before planning.
    """

    def __init__(
        self,
        config: AppConfig,
        reader: ChainStateReader,
        safe: SafeClient,
        signer: SafeTransactionSigner,
        executor: SafeExecutor,
        markets: Optional[tuple[MarketTarget, ...]] = None,
    ):
        self._config = config
        self._reader = reader
        self._safe = safe
        self._signer = signer
        self._executor = executor
        self._markets = markets if markets is not None else build_market_targets(config)
        self._action_log = get_action_logger()
        self._decision_log = get_decision_logger()

    def _fmt(self, amount: int) -> str:
        strategy = self._config.strategy
        return f"{format_units(amount, strategy.asset_decimals)} {strategy.asset_symbol}"

    def _enter(self, report: RunReport, state: RunState) -> None:
        logger.debug("engine.state", previous=report.state.value, state=state.value)
        report.state = state

    def run(self) -> RunReport:
        """Run one rebalancing pass and return its report.

        Fatal errors (permissions, initial read) end the run before planning;
        per-action failures are recorded and never stop the loop.
        """
        report = RunReport(dry_run=self._config.execution.dry_run)

        print("=" * 80)
        print("VAULT ALLOCATOR")
        print("=" * 80)
        print(f"Start Time: {report.started_at.isoformat()}")
        print(f"Mode:       {'DRY RUN' if report.dry_run else 'LIVE'}")
        print(f"Safe:       {self._config.contracts.safe}")
        print(f"Vault:      {self._config.contracts.vault}")
        print(f"Adapter:    {self._config.contracts.adapter}")
        print()

        logger.info(
            "engine.starting",
            timestamp=report.started_at.isoformat(),
            dry_run=report.dry_run,
            safe=self._config.contracts.safe,
            vault=self._config.contracts.vault,
        )

        try:
            self._enter(report, RunState.PRECONDITION_CHECK)
            self._check_preconditions()

            self._enter(report, RunState.READ_STATE)
            report.initial = self._reader.read_snapshot()
            self._print_snapshot("Current vault state:", report.initial)
        except (PermissionCheckError, ChainReadError, SigningError) as e:
            return self._fatal(report, e)
        except Exception as e:
            logger.error("engine.unexpected_error", error=str(e), exc_info=True)
            return self._fatal(report, e)

        self._enter(report, RunState.PLAN)
        report.plan = self._plan(report.initial)

        if report.plan.actions:
            self._enter(report, RunState.EXECUTE)
            print(f"Executing {len(report.plan.actions)} allocation actions:")
            print("-" * 60)
            for index, action in enumerate(report.plan.actions):
                report.outcomes.append(self._execute(index, action, report.dry_run))
            print("-" * 60)

            self._enter(report, RunState.READ_FINAL_STATE)
            try:
                report.final = self._reader.read_snapshot()
                self._print_snapshot("Final vault state:", report.final)
            except ChainReadError as e:
                print(f"  Final state read failed: {e}")
                logger.error("engine.final_read_failed", error=str(e))

        self._enter(report, RunState.DONE)
        report.finished_at = datetime.now(timezone.utc)
        self._summarize(report)
        return report

    def _check_preconditions(self) -> None:
        signer = self._signer.address
        safe = self._safe.address

        if not self._safe.is_owner(signer):
            raise PermissionCheckError(f"Bot signer {signer} is not an owner of Safe {safe}")

        threshold = self._safe.threshold()
        if threshold != REQUIRED_THRESHOLD:
            raise PermissionCheckError(
                f"Safe threshold is {threshold}, expected {REQUIRED_THRESHOLD}. "
                "Bot cannot execute autonomously."
            )
        logger.info("engine.safe_verified", signer=signer, safe=safe, threshold=threshold)

        if not self._reader.is_allocator(safe):
            raise PermissionCheckError(f"Safe {safe} is not an allocator for this vault")
        logger.info("engine.allocator_verified", safe=safe)

    def _plan(self, snapshot: VaultSnapshot):
        strategy = self._config.strategy
        for market in self._markets:
            if not market.is_deployable:
                logger.info("engine.market_skipped", market=market.name, reason="oracle_not_configured")

        plan = plan_allocation(
            snapshot,
            self._markets,
            allocated_bps=self._config.allocated_bps,
            rebalance_threshold_bps=strategy.rebalance_threshold_bps,
            min_allocation_amount=strategy.min_allocation_amount,
        )

        self._decision_log.info(
            "planner.decision",
            block=snapshot.block_number,
            total_assets=snapshot.total_assets,
            adapter_assets=snapshot.adapter_assets,
            target_allocated=plan.target_allocated,
            deviation_bps=plan.deviation_bps,
            threshold_bps=strategy.rebalance_threshold_bps,
            needs_rebalance=plan.needs_rebalance,
            direction=plan.direction.value if plan.direction else None,
            actions=[(a.market.name, a.amount) for a in plan.actions],
        )

        print(f"Target allocated: {self._fmt(plan.target_allocated)} "
              f"({self._config.allocated_bps / 100:.2f}%)")
        print(f"Deviation:        {plan.deviation_bps / 100:.2f}% "
              f"(threshold: {strategy.rebalance_threshold_bps / 100:.2f}%)")
        print()

        if not plan.needs_rebalance:
            print("Allocation within threshold, no rebalancing needed")
            logger.info("engine.within_threshold", deviation_bps=plan.deviation_bps)
        elif not plan.actions:
            print("No actions needed (amounts below minimum or no deployable markets)")
            logger.info(
                "engine.no_actions",
                deviation_bps=plan.deviation_bps,
                min_allocation_amount=strategy.min_allocation_amount,
            )
        return plan

    def _execute(self, index: int, action: AllocationAction, dry_run: bool) -> ActionOutcome:
        market = action.market.name
        verb = action.direction.vault_function
        print(f"  [{index + 1}] {verb} {self._fmt(action.amount)} -> {market}")

        try:
            data = encode_vault_call(self._config.contracts.adapter, action)
            signed = self._signer.sign(self._config.contracts.vault, data)

            if dry_run:
                print(f"      [DRY RUN] Skipping submission (safe tx 0x{signed.safe_tx_hash.hex()})")
                outcome = ActionOutcome.dry_run(action, signed.safe_tx_hash)
            else:
                receipt = self._executor.submit(signed)
                print(f"      Confirmed in block {receipt.block_number}: {receipt.tx_hash}")
                outcome = ActionOutcome.ok(action, receipt)
        except (SigningError, SubmissionError, ChainReadError) as e:
            print(f"      ERROR: {e}")
            outcome = ActionOutcome.err(action, type(e).__name__, str(e))
        except Exception as e:
            print(f"      ERROR: {e}")
            logger.error("engine.action_unexpected_error", market=market, error=str(e), exc_info=True)
            outcome = ActionOutcome.err(action, type(e).__name__, str(e))

        self._action_log.info(
            "engine.action_outcome",
            index=index,
            market=market,
            direction=action.direction.value,
            amount=action.amount,
            amount_formatted=self._fmt(action.amount),
            status=outcome.status.value,
            tx_hash=outcome.receipt.tx_hash if outcome.receipt else None,
            block=outcome.receipt.block_number if outcome.receipt else None,
            error_kind=outcome.error_kind,
            detail=outcome.detail or None,
        )
        return outcome

    def _fatal(self, report: RunReport, error: Exception) -> RunReport:
        failed_in = report.state
        report.error_kind = type(error).__name__
        report.error = str(error)
        self._enter(report, RunState.FATAL)
        report.finished_at = datetime.now(timezone.utc)

        print(f"\nFATAL ERROR: {error}")
        logger.error(
            "engine.fatal_error",
            state=failed_in.value,
            error_kind=report.error_kind,
            error=report.error,
        )
        return report

    def _print_snapshot(self, title: str, snapshot: VaultSnapshot) -> None:
        print(title)
        print(f"  Block:          {snapshot.block_number}")
        print(f"  Total assets:   {self._fmt(snapshot.total_assets)}")
        print(f"  Adapter assets: {self._fmt(snapshot.adapter_assets)}")
        print(f"  Idle balance:   {self._fmt(snapshot.idle_balance)}")
        print(f"  Allocation:     {snapshot.allocation_bps / 100:.2f}%")
        for name, assets in snapshot.market_assets:
            print(f"    {name}: {self._fmt(assets)}")
        print()

        logger.info(
            "engine.snapshot",
            title=title,
            block=snapshot.block_number,
            total_assets=snapshot.total_assets,
            adapter_assets=snapshot.adapter_assets,
            idle_balance=snapshot.idle_balance,
            allocation_bps=snapshot.allocation_bps,
            market_assets=dict(snapshot.market_assets) or None,
        )

    def _summarize(self, report: RunReport) -> None:
        logger.info(
            "engine.completed",
            duration_seconds=round(report.duration_seconds, 2),
            actions=len(report.outcomes),
            confirmed=report.confirmed,
            failed=report.failed,
            dry_run_skipped=report.skipped,
            final_allocation_bps=report.final.allocation_bps if report.final else None,
        )

        print()
        print("=" * 80)
        print("ALLOCATION COMPLETE")
        print("=" * 80)
        print(f"  Duration:  {report.duration_seconds:.1f} seconds")
        print(f"  Confirmed: {report.confirmed}")
        print(f"  Failed:    {report.failed}")
        if report.dry_run:
            print(f"  Dry run:   {report.skipped}")
        print()
