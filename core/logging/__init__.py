# Structured logging with channel support
from typing import Optional
import structlog

from core.config.settings import Settings
from .channels import LogChannel
from .enhanced_logging import (
    configure_enhanced_logging,
    get_enhanced_logger,
    get_channel_logger,
    get_trading_logger,
    get_market_data_logger,
    get_api_logger,
    get_audit_logger,
    get_database_logger,
    get_error_logger,
    redact_mapping,
)


def configure_logging(settings: Settings) -> None:
    """Configure the logging system (idempotent)."""
    configure_enhanced_logging(settings)


def get_logger(name: str, component: Optional[str] = None) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return get_enhanced_logger(name, component)


__all__ = [
    "LogChannel",
    "configure_logging",
    "get_logger",
    "get_channel_logger",
    "get_trading_logger",
    "get_market_data_logger",
    "get_api_logger",
    "get_audit_logger",
    "get_database_logger",
    "get_error_logger",
    "redact_mapping",
]
