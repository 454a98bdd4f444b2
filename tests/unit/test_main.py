"""Tests for the command-line entry point."""

from unittest.mock import MagicMock, patch

from vault_allocator.__main__ import main
from vault_allocator.config import ConfigError


class TestMain:
    def test_config_error_exits_one(self):
        with patch("vault_allocator.__main__.load_dotenv"), \
             patch("vault_allocator.__main__.load_config", side_effect=ConfigError("missing vault")), \
             patch("vault_allocator.__main__.configure_logging") as configure:
            assert main() == 1
        configure.assert_not_called()

    def test_invalid_key_exits_one(self, test_config, mock_secrets):
        with patch("vault_allocator.__main__.load_dotenv"), \
             patch("vault_allocator.__main__.load_config", return_value=test_config), \
             patch("vault_allocator.__main__.load_secrets", return_value=mock_secrets), \
             patch("vault_allocator.__main__.configure_logging"), \
             patch("vault_allocator.__main__.create_engine", side_effect=ConfigError("bad key")):
            assert main() == 1

    def test_returns_report_exit_code(self, test_config, mock_secrets):
        engine = MagicMock()
        engine.run.return_value.exit_code = 0
        with patch("vault_allocator.__main__.load_dotenv"), \
             patch("vault_allocator.__main__.load_config", return_value=test_config), \
             patch("vault_allocator.__main__.load_secrets", return_value=mock_secrets), \
             patch("vault_allocator.__main__.configure_logging") as configure, \
             patch("vault_allocator.__main__.create_engine", return_value=engine):
            assert main() == 0
        configure.assert_called_once_with(test_config.logging)
        engine.run.assert_called_once()
