"""Shared test fixtures."""

import pytest

from vault_allocator.config import AppConfig, Secrets
from vault_allocator.models import VaultSnapshot, build_market_targets

from factories import TEST_PRIVATE_KEY, WAD, make_config


@pytest.fixture
def test_config() -> AppConfig:
    """Provide the reference 80/20 strategy over four markets."""
    return make_config()


@pytest.fixture
def mock_secrets() -> Secrets:
    return Secrets(rpc_url="http://localhost:8545", private_key=TEST_PRIVATE_KEY)


@pytest.fixture
def markets(test_config):
    return build_market_targets(test_config)


@pytest.fixture
def snapshot():
    """Build a VaultSnapshot from whole-token amounts."""

    def _make(total: float, adapter: float, idle: float | None = None, block: int = 100) -> VaultSnapshot:
        total_units = int(total * WAD)
        adapter_units = int(adapter * WAD)
        idle_units = total_units - adapter_units if idle is None else int(idle * WAD)
        return VaultSnapshot(
            block_number=block,
            total_assets=total_units,
            adapter_assets=adapter_units,
            idle_balance=idle_units,
        )

    return _make
