"""Rebalancing: allocation planning and the run orchestrator."""

from vault_allocator.rebalancing.engine import AllocatorEngine, PermissionCheckError
from vault_allocator.rebalancing.planner import plan_allocation

__all__ = [
    "AllocatorEngine",
    "PermissionCheckError",
    "plan_allocation",
]
