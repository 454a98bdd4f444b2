"""Domain models for the vault allocator."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from eth_abi import encode as abi_encode
from eth_utils import keccak

from vault_allocator.config import BPS_DENOMINATOR, AppConfig

MARKET_PARAMS_TYPE = "(address,address,address,address,uint256)"


def format_units(amount: int, decimals: int = 18) -> str:
    """Render a base-unit integer as a decimal string (like formatEther)."""
    value = Decimal(amount) / (Decimal(10) ** decimals)
    return format(value.normalize(), "f")


def bps_of(amount: int, total: int) -> int:
    """`amount` as a floored fraction of `total` in basis points; 0 for an empty total."""
    if total <= 0:
        return 0
    return amount * BPS_DENOMINATOR // total


class Direction(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"

    @property
    def vault_function(self) -> str:
        return "allocate" if self is Direction.INCREASE else "deallocate"


@dataclass(frozen=True)
class MarketParams:
    """Lending market identity: (loanToken, collateralToken, oracle, irm, lltv)."""

    loan_token: str
    collateral_token: str
    oracle: str
    irm: str
    lltv: int

    def as_tuple(self) -> tuple:
        return (self.loan_token, self.collateral_token, self.oracle, self.irm, self.lltv)

    def encode(self) -> bytes:
        """ABI-encode the struct as passed in allocate/deallocate `data`."""
        return abi_encode([MARKET_PARAMS_TYPE], [self.as_tuple()])

    @property
    def market_id(self) -> bytes:
        return keccak(self.encode())


@dataclass(frozen=True)
class MarketTarget:
    """A configured market and its target share of vault assets."""

    name: str
    collateral_token: str
    oracle: Optional[str]
    irm: str
    lltv: int
    target_bps: int
    loan_token: str

    @property
    def is_deployable(self) -> bool:
        return self.oracle is not None

    @property
    def params(self) -> MarketParams:
        if self.oracle is None:
            raise ValueError(f"market {self.name} has no oracle configured")
        return MarketParams(
            loan_token=self.loan_token,
            collateral_token=self.collateral_token,
            oracle=self.oracle,
            irm=self.irm,
            lltv=self.lltv,
        )


def build_market_targets(config: AppConfig) -> tuple[MarketTarget, ...]:
    return tuple(
        MarketTarget(
            name=m.name,
            collateral_token=m.collateral,
            oracle=m.oracle,
            irm=config.contracts.irm,
            lltv=m.lltv,
            target_bps=m.target_bps,
            loan_token=config.contracts.loan_token,
        )
        for m in config.markets
    )


@dataclass(frozen=True)
class VaultSnapshot:
    """Vault state as of a single block."""

    block_number: int
    total_assets: int
    adapter_assets: int
    idle_balance: int
    # (market name, supplied assets) pairs; empty when per-market reads are off
    market_assets: tuple[tuple[str, int], ...] = ()

    @property
    def allocation_bps(self) -> int:
        return bps_of(self.adapter_assets, self.total_assets)


@dataclass(frozen=True)
class AllocationAction:
    market: MarketTarget
    direction: Direction
    amount: int

    def __post_init__(self):
        if self.amount < 0:
            raise ValueError("amount must be non-negative")


@dataclass(frozen=True)
class AllocationPlan:
    """Planner output: the decision and the ordered actions it produced."""

    target_allocated: int
    deviation: int
    deviation_bps: int
    needs_rebalance: bool
    actions: tuple[AllocationAction, ...] = ()

    @property
    def direction(self) -> Optional[Direction]:
        return self.actions[0].direction if self.actions else None


@dataclass(frozen=True)
class SignedCall:
    """An inner call signed for the Safe, valid for exactly one nonce."""

    to: str
    data: bytes
    signature: bytes
    safe_nonce: int
    safe_tx_hash: bytes


@dataclass(frozen=True)
class ExecutionReceipt:
    tx_hash: str
    block_number: int
    status: int
    gas_used: int = 0


class OutcomeStatus(str, Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    DRY_RUN = "dry_run"


@dataclass(frozen=True)
class ActionOutcome:
    """Result of one action: Ok(receipt) or Err(kind, detail)."""

    action: AllocationAction
    status: OutcomeStatus
    receipt: Optional[ExecutionReceipt] = None
    error_kind: Optional[str] = None
    detail: str = ""

    @classmethod
    def ok(cls, action: AllocationAction, receipt: ExecutionReceipt) -> "ActionOutcome":
        return cls(action=action, status=OutcomeStatus.CONFIRMED, receipt=receipt)

    @classmethod
    def err(cls, action: AllocationAction, kind: str, detail: str) -> "ActionOutcome":
        return cls(action=action, status=OutcomeStatus.FAILED, error_kind=kind, detail=detail)

    @classmethod
    def dry_run(cls, action: AllocationAction, safe_tx_hash: bytes) -> "ActionOutcome":
        return cls(action=action, status=OutcomeStatus.DRY_RUN, detail="0x" + safe_tx_hash.hex())

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.CONFIRMED


class RunState(str, Enum):
    INIT = "init"
    PRECONDITION_CHECK = "precondition_check"
    READ_STATE = "read_state"
    PLAN = "plan"
    EXECUTE = "execute"
    READ_FINAL_STATE = "read_final_state"
    DONE = "done"
    FATAL = "fatal"


@dataclass
class RunReport:
    """Everything a single run did, built up as the engine advances."""

    dry_run: bool
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    state: RunState = RunState.INIT
    initial: Optional[VaultSnapshot] = None
    plan: Optional[AllocationPlan] = None
    outcomes: list[ActionOutcome] = field(default_factory=list)
    final: Optional[VaultSnapshot] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None

    @property
    def fatal(self) -> bool:
        return self.state is RunState.FATAL

    @property
    def exit_code(self) -> int:
        return 1 if self.fatal else 0

    @property
    def confirmed(self) -> int:
        return sum(1 for o in self.outcomes if o.status is OutcomeStatus.CONFIRMED)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status is OutcomeStatus.FAILED)

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.status is OutcomeStatus.DRY_RUN)

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds()
