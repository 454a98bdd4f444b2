"""Entry point: python -m vault_allocator"""

import sys

from dotenv import load_dotenv

from vault_allocator.config import ConfigError, load_config, load_secrets
from vault_allocator.logging_config import configure_logging
from vault_allocator.providers import create_engine


def main() -> int:
    # contract/oracle overrides in .env must be visible to os.getenv
    load_dotenv()
    try:
        config = load_config()
        secrets = load_secrets()
    except ConfigError as e:
        print(f"Configuration error: {e}")
        print("Ensure config/settings.yaml exists and .env provides PRIVATE_KEY (and RPC_URL)")
        return 1

    configure_logging(config.logging)

    try:
        engine = create_engine(config, secrets)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        return 1

    report = engine.run()
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
