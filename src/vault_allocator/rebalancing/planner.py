"""Allocation planning - convert a vault snapshot into allocate/deallocate actions."""

from typing import Iterable

from vault_allocator.config import BPS_DENOMINATOR
from vault_allocator.models import (
    AllocationAction,
    AllocationPlan,
    Direction,
    MarketTarget,
    VaultSnapshot,
    bps_of,
)


def plan_allocation(
    snapshot: VaultSnapshot,
    markets: Iterable[MarketTarget],
    allocated_bps: int,
    rebalance_threshold_bps: int = 100,
    min_allocation_amount: int = 0,
) -> AllocationPlan:
    """Plan the actions that move the vault back to its target allocation.

    All configured markets share the allocated fraction equally. The adapter
    only reports an aggregate, so each market's current holding is taken as
    an equal share of it.

    Args:
        snapshot: Vault state at one block
        markets: Configured markets; those without an oracle are ignored
        allocated_bps: Target fraction of total assets held in markets
        rebalance_threshold_bps: Do nothing while deviation is below this
        min_allocation_amount: Dust floor; smaller per-market amounts are dropped

    Returns:
        AllocationPlan with all increases or all decreases, never both
    """
    total = snapshot.total_assets
    allocated = snapshot.adapter_assets

    target_allocated = total * allocated_bps // BPS_DENOMINATOR
    deviation = abs(allocated - target_allocated)
    dev_bps = bps_of(deviation, total)

    def _plan(actions=(), needs_rebalance=True) -> AllocationPlan:
        return AllocationPlan(
            target_allocated=target_allocated,
            deviation=deviation,
            deviation_bps=dev_bps,
            needs_rebalance=needs_rebalance,
            actions=tuple(actions),
        )

    if dev_bps < rebalance_threshold_bps:
        return _plan(needs_rebalance=False)

    deployable = [m for m in markets if m.is_deployable]
    count = len(deployable)
    if count == 0:
        return _plan()

    if allocated < target_allocated:
        direction = Direction.INCREASE
        target_per_market = target_allocated // count
        current_per_market = allocated // count
        amount = max(0, target_per_market - current_per_market)
        # Increases come out of idle funds
        amount = min(amount, snapshot.idle_balance // count)
    elif allocated > target_allocated:
        direction = Direction.DECREASE
        amount = (allocated - target_allocated) // count
    else:
        return _plan()

    if amount <= 0 or amount < min_allocation_amount:
        return _plan()

    return _plan(AllocationAction(market=m, direction=direction, amount=amount) for m in deployable)
