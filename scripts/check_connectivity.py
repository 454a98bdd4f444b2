"""Verify RPC access and the Safe/vault permissions before the first run."""

import sys

from dotenv import load_dotenv

from vault_allocator.chain.reader import ChainStateReader
from vault_allocator.config import AppConfig, ConfigError, load_config, load_secrets
from vault_allocator.models import build_market_targets, format_units
from vault_allocator.providers import create_web3, load_account
from vault_allocator.safe.client import SafeClient


def check_rpc(w3, config: AppConfig) -> bool:
    """Verify the RPC endpoint answers on the configured chain."""
    print("Checking RPC endpoint...")
    try:
        chain_id = w3.eth.chain_id
        print(f"  Chain id: {chain_id}")
        print(f"  Latest block: {w3.eth.block_number}")
        if chain_id != config.network.chain_id:
            print(f"  RPC: FAILED - expected chain id {config.network.chain_id}")
            return False
        print("  RPC: OK")
        return True
    except Exception as e:
        print(f"  RPC: FAILED - {e}")
        return False


def check_safe(safe: SafeClient, signer: str) -> bool:
    """Verify the bot owns the Safe and can execute alone."""
    print("\nChecking Safe...")
    try:
        threshold = safe.threshold()
        owner = safe.is_owner(signer)
        print(f"  Safe: {safe.address}")
        print(f"  Bot signer: {signer} (owner: {'Yes' if owner else 'No'})")
        print(f"  Threshold: {threshold}")
        if not owner or threshold != 1:
            print("  Safe: FAILED - bot must be an owner and threshold must be 1")
            return False
        print("  Safe: OK")
        return True
    except Exception as e:
        print(f"  Safe: FAILED - {e}")
        return False


def check_vault(reader: ChainStateReader, config: AppConfig) -> bool:
    """Verify the Safe holds the allocator role and the vault is readable."""
    print("\nChecking vault...")
    strategy = config.strategy
    try:
        if not reader.is_allocator(config.contracts.safe):
            print("  Vault: FAILED - Safe is not an allocator")
            return False
        snapshot = reader.read_snapshot()
        print(f"  Total assets: {format_units(snapshot.total_assets, strategy.asset_decimals)} "
              f"{strategy.asset_symbol}")
        print(f"  Allocation: {snapshot.allocation_bps / 100:.2f}%")
        print("  Vault: OK")
        return True
    except Exception as e:
        print(f"  Vault: FAILED - {e}")
        return False


def main():
    print("=" * 50)
    print("Vault Allocator - Connectivity Check")
    print("=" * 50)

    load_dotenv()
    try:
        config = load_config()
        secrets = load_secrets()
        account = load_account(secrets)
    except ConfigError as e:
        print(f"\nFailed to load configuration: {e}")
        print("Make sure .env provides RPC_URL, PRIVATE_KEY, SAFE_ADDRESS, VAULT_ADDRESS, ADAPTER_ADDRESS")
        sys.exit(1)

    w3 = create_web3(config, secrets)
    markets = build_market_targets(config)
    reader = ChainStateReader(w3, config, markets)
    safe = SafeClient(w3, config.contracts.safe)

    results = [
        check_rpc(w3, config),
        check_safe(safe, account.address),
        check_vault(reader, config),
    ]

    skipped = [m.name for m in markets if not m.is_deployable]
    if skipped:
        print(f"\nMarkets without oracle (skipped): {', '.join(skipped)}")

    print("\n" + "=" * 50)
    if all(results):
        print("All checks passed. Ready to allocate.")
    else:
        print("Some checks failed. Fix the issues above.")
        sys.exit(1)


if __name__ == "__main__":
    main()
