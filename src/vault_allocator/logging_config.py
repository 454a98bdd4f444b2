"""Structured logging configuration with multiple output streams."""

import logging
import logging.handlers
from pathlib import Path

import structlog

from vault_allocator.config import LoggingConfig

ACTION_LOGGER = "vault_allocator.actions"
DECISION_LOGGER = "vault_allocator.decisions"

REDACTED_KEYS = frozenset({"private_key", "rpc_url", "signature"})


def redact_secrets(logger, method_name, event_dict):
    """Mask event fields that may carry key material or RPC credentials."""
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def configure_logging(config: LoggingConfig) -> None:
    """Set up structured logging with console + file outputs."""
    for log_path in [config.app_log, config.action_log, config.decision_log]:
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    json_formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=shared_processors,
    )

    console_formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.dev.ConsoleRenderer(colors=True),
        foreign_pre_chain=shared_processors,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper()))

    # RPC URLs often carry API keys in the path
    for noisy_logger in ["urllib3", "web3", "aiohttp"]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(console_formatter)
    root_logger.addHandler(console_handler)

    app_handler = logging.handlers.RotatingFileHandler(
        config.app_log,
        maxBytes=config.max_bytes,
        backupCount=config.backup_count,
    )
    app_handler.setFormatter(json_formatter)
    root_logger.addHandler(app_handler)

    for name, path in [(ACTION_LOGGER, config.action_log), (DECISION_LOGGER, config.decision_log)]:
        stream_logger = logging.getLogger(name)
        handler = logging.handlers.RotatingFileHandler(
            path,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
        )
        handler.setFormatter(json_formatter)
        stream_logger.addHandler(handler)
        stream_logger.propagate = True


def get_action_logger() -> structlog.stdlib.BoundLogger:
    """Get the per-action execution logger."""
    return structlog.get_logger(ACTION_LOGGER)


def get_decision_logger() -> structlog.stdlib.BoundLogger:
    """Get the planner-decision logger."""
    return structlog.get_logger(DECISION_LOGGER)
