"""Factories that wire chain clients and the engine from config and secrets."""

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from vault_allocator.chain.reader import ChainStateReader
from vault_allocator.config import AppConfig, ConfigError, Secrets
from vault_allocator.models import build_market_targets
from vault_allocator.rebalancing.engine import AllocatorEngine
from vault_allocator.safe.client import SafeClient
from vault_allocator.safe.executor import SafeExecutor
from vault_allocator.safe.signer import SafeTransactionSigner


def create_web3(config: AppConfig, secrets: Secrets) -> Web3:
    """Create an HTTP-backed Web3 client for RPC_URL."""
    return Web3(
        Web3.HTTPProvider(
            secrets.rpc_url,
            request_kwargs={"timeout": config.network.request_timeout_seconds},
        )
    )


def load_account(secrets: Secrets) -> LocalAccount:
    """Build the bot's signing account from PRIVATE_KEY."""
    try:
        return Account.from_key(secrets.private_key.strip())
    except Exception as e:
        # never echo the key itself
        raise ConfigError(f"PRIVATE_KEY is not a valid secp256k1 key ({type(e).__name__})") from e


def create_engine(config: AppConfig, secrets: Secrets, w3: Web3 | None = None) -> AllocatorEngine:
    """Assemble the reader, Safe client, signer and executor into an engine."""
    w3 = w3 or create_web3(config, secrets)
    account = load_account(secrets)
    markets = build_market_targets(config)

    safe = SafeClient(w3, config.contracts.safe)
    return AllocatorEngine(
        config,
        reader=ChainStateReader(w3, config, markets),
        safe=safe,
        signer=SafeTransactionSigner(safe, account),
        executor=SafeExecutor(w3, safe, account, config),
        markets=markets,
    )
