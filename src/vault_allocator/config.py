"""Configuration loading and validation using Pydantic."""

import os
from pathlib import Path
from typing import Optional

import yaml
from eth_utils import is_address, to_checksum_address
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
BPS_DENOMINATOR = 10_000

DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


class ConfigError(Exception):
    """Raised when a required setting, address or key is missing or invalid."""


def _checksum(value: str) -> str:
    if not isinstance(value, str) or not is_address(value):
        raise ValueError(f"not a valid EVM address: {value!r}")
    return to_checksum_address(value)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class NetworkConfig(_Frozen):
    chain_id: int = Field(default=1, ge=1)
    request_timeout_seconds: int = Field(default=30, ge=1)


class ContractsConfig(_Frozen):
    """On-chain addresses the allocator talks to."""

    safe: str
    vault: str
    adapter: str
    loan_token: str
    irm: str

    @field_validator("safe", "vault", "adapter", "loan_token", "irm")
    @classmethod
    def valid_address(cls, v):
        return _checksum(v)


class MarketConfig(_Frozen):
    """One lending market the vault allocates into."""

    name: str
    collateral: str
    oracle: Optional[str] = None
    oracle_env: Optional[str] = None
    lltv: int = Field(gt=0, le=10**18)
    target_bps: int = Field(ge=0, le=BPS_DENOMINATOR)

    @field_validator("collateral")
    @classmethod
    def valid_collateral(cls, v):
        return _checksum(v)

    @field_validator("oracle")
    @classmethod
    def valid_oracle(cls, v):
        # "0x0" is how an unset oracle was historically written
        if v is None or v in ("", "0x0", "0x"):
            return None
        v = _checksum(v)
        return None if v == ZERO_ADDRESS else v


class StrategyConfig(_Frozen):
    idle_bps: int = Field(default=8000, ge=0, le=BPS_DENOMINATOR)
    rebalance_threshold_bps: int = Field(default=100, ge=0, le=BPS_DENOMINATOR)
    min_allocation_amount: int = Field(default=100 * 10**18, ge=0)
    asset_symbol: str = "USDS"
    asset_decimals: int = Field(default=18, ge=0, le=36)


class ExecutionConfig(_Frozen):
    dry_run: bool = False
    confirmation_timeout_seconds: int = Field(default=300, ge=1)
    poll_latency_seconds: float = Field(default=2.0, gt=0)
    read_market_balances: bool = False


class LoggingConfig(_Frozen):
    level: str = "INFO"
    app_log: str = "logs/allocator.log"
    action_log: str = "logs/actions.log"
    decision_log: str = "logs/decisions.log"
    max_bytes: int = 10485760
    backup_count: int = 5


class AppConfig(_Frozen):
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    contracts: ContractsConfig
    markets: list[MarketConfig] = Field(min_length=1)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def validate_market_targets(self):
        total = self.strategy.idle_bps + sum(m.target_bps for m in self.markets)
        if total != BPS_DENOMINATOR:
            raise ValueError(
                f"idle_bps + market target_bps must equal {BPS_DENOMINATOR}, got {total}"
            )
        shares = {m.target_bps for m in self.markets}
        if len(shares) > 1:
            raise ValueError(
                f"market target_bps must be equal, allocated funds are split evenly; got {sorted(shares)}"
            )
        names = [m.name for m in self.markets]
        if len(set(names)) != len(names):
            raise ValueError(f"market names must be unique: {names}")
        return self

    @property
    def allocated_bps(self) -> int:
        return BPS_DENOMINATOR - self.strategy.idle_bps


class Secrets(BaseSettings):
    """Loaded from .env file automatically."""

    rpc_url: str = "https://eth.llamarpc.com"
    private_key: str

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


CONTRACT_ENV_VARS = {
    "safe": "SAFE_ADDRESS",
    "vault": "VAULT_ADDRESS",
    "adapter": "ADAPTER_ADDRESS",
}


def _apply_env_overrides(raw: dict) -> dict:
    """Resolve contract, DRY_RUN and per-market oracle_env overrides into the raw mapping."""
    contracts = dict(raw.get("contracts") or {})
    for key, env_name in CONTRACT_ENV_VARS.items():
        if os.getenv(env_name):
            contracts[key] = os.getenv(env_name)
    raw["contracts"] = contracts

    dry_run = os.getenv("DRY_RUN")
    if dry_run is not None and dry_run.strip():
        execution = dict(raw.get("execution") or {})
        execution["dry_run"] = dry_run.strip().lower() in ("1", "true", "yes")
        raw["execution"] = execution

    markets = []
    for market in raw.get("markets") or []:
        market = dict(market)
        env_name = market.get("oracle_env")
        if env_name and os.getenv(env_name):
            market["oracle"] = os.getenv(env_name)
        markets.append(market)
    if markets:
        raw["markets"] = markets
    return raw


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and validate application configuration from YAML.

    The path defaults to ALLOCATOR_CONFIG, then config/settings.yaml.

    Raises:
        ConfigError: If the file is missing, unreadable or fails validation.
    """
    if config_path is None:
        config_path = Path(os.getenv("ALLOCATOR_CONFIG") or DEFAULT_CONFIG_PATH)

    try:
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read config file {config_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")

    try:
        return AppConfig(**_apply_env_overrides(raw))
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e


def load_secrets() -> Secrets:
    """Load RPC_URL and PRIVATE_KEY from the environment / .env."""
    try:
        secrets = Secrets()
    except ValidationError as e:
        raise ConfigError(
            f"Missing secrets ({e.error_count()} error(s)); "
            "ensure .env or the environment provides PRIVATE_KEY"
        ) from e
    if not secrets.private_key.strip():
        raise ConfigError("PRIVATE_KEY is empty")
    if not secrets.rpc_url.strip():
        raise ConfigError("RPC_URL is empty")
    return secrets
