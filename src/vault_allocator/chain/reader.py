"""Read-only access to vault, adapter and loan-token state."""

from typing import Optional

import structlog
from web3 import Web3

from vault_allocator.chain.contracts import ADAPTER_ABI, ERC20_ABI, VAULT_ABI
from vault_allocator.config import AppConfig
from vault_allocator.models import MarketTarget, VaultSnapshot

logger = structlog.get_logger(__name__)


class ChainReadError(Exception):
    """Raised when an RPC call fails or returns malformed data."""


def _as_uint(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ChainReadError(f"Malformed {field}: expected uint256, got {value!r}")
    return value


class ChainStateReader:
    """Reads vault state at one pinned block. No business logic."""

    def __init__(self, w3: Web3, config: AppConfig, markets: tuple[MarketTarget, ...] = ()):
        self._w3 = w3
        self._contracts = config.contracts
        self._read_market_balances = config.execution.read_market_balances
        self._markets = markets
        self._vault = w3.eth.contract(address=config.contracts.vault, abi=VAULT_ABI)
        self._adapter = w3.eth.contract(address=config.contracts.adapter, abi=ADAPTER_ABI)
        self._token = w3.eth.contract(address=config.contracts.loan_token, abi=ERC20_ABI)

    def read_snapshot(self, block_number: Optional[int] = None) -> VaultSnapshot:
        """Read totalAssets, adapter realAssets and idle balance at one block.

        Args:
            block_number: Block to read at. Defaults to the current head,
                fetched once so every read shares it.

        Raises:
            ChainReadError: On RPC failure or malformed return data.
        """
        try:
            if block_number is None:
                block_number = self._w3.eth.block_number
            block = _as_uint(block_number, "block_number")

            total_assets = self._vault.functions.totalAssets().call(block_identifier=block)
            adapter_assets = self._adapter.functions.realAssets().call(block_identifier=block)
            idle_balance = self._token.functions.balanceOf(self._contracts.vault).call(
                block_identifier=block
            )

            snapshot = VaultSnapshot(
                block_number=block,
                total_assets=_as_uint(total_assets, "totalAssets"),
                adapter_assets=_as_uint(adapter_assets, "realAssets"),
                idle_balance=_as_uint(idle_balance, "balanceOf"),
                market_assets=self._read_market_assets(block) if self._read_market_balances else (),
            )
        except ChainReadError as e:
            logger.error("reader.malformed_response", error=str(e))
            raise
        except Exception as e:
            logger.error("reader.read_failed", error=str(e))
            raise ChainReadError(f"Failed to read vault state: {e}") from e

        logger.debug(
            "reader.snapshot",
            block=snapshot.block_number,
            total_assets=snapshot.total_assets,
            adapter_assets=snapshot.adapter_assets,
            idle_balance=snapshot.idle_balance,
            markets=len(snapshot.market_assets),
        )
        return snapshot

    def _read_market_assets(self, block: int) -> tuple[tuple[str, int], ...]:
        """Per-market supply at `block`, or empty when the adapter cannot report it."""
        balances = []
        try:
            for market in self._markets:
                if not market.is_deployable:
                    continue
                value = self._adapter.functions.expectedSupplyAssets(
                    market.params.market_id
                ).call(block_identifier=block)
                balances.append((market.name, _as_uint(value, f"expectedSupplyAssets[{market.name}]")))
        except Exception as e:
            logger.warning("reader.market_balances_unavailable", block=block, error=str(e))
            return ()
        return tuple(balances)

    def is_allocator(self, account: str) -> bool:
        """Whether `account` holds the allocator role on the vault."""
        try:
            result = self._vault.functions.isAllocator(account).call()
        except Exception as e:
            logger.error("reader.read_failed", call="isAllocator", error=str(e))
            raise ChainReadError(f"isAllocator({account}) failed: {e}") from e
        if not isinstance(result, bool):
            raise ChainReadError(f"Malformed isAllocator result: {result!r}")
        return result
