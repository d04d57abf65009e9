# Structured logging with channel support
import sys
import logging
from typing import Dict, Iterable, Optional
import structlog

from core.config.settings import Settings
from .channels import LogChannel, get_channel_for_component

# Global logger manager instance
_logger_manager: Optional['LoggerManager'] = None

REDACTED = "[REDACTED]"

DEFAULT_REDACT_KEYS = (
    "authorization", "access_token", "refresh_token", "token", "appkey",
    "secretkey", "app_key", "app_secret", "api_key", "secret", "password",
)


def redact_mapping(obj, keys: Iterable[str], replacement: str = REDACTED):
    """Return a copy of ``obj`` with sensitive keys replaced, recursing into dicts and lists."""
    keys_to_redact = {k.lower() for k in keys}

    def _redact(value):
        if isinstance(value, dict):
            out = {}
            for k, v in value.items():
                if isinstance(k, str) and k.lower() in keys_to_redact:
                    out[k] = replacement
                else:
                    out[k] = _redact(v)
            return out
        if isinstance(value, list):
            return [_redact(v) for v in value]
        return value

    return _redact(obj)


def build_redact_processor(keys: Iterable[str]):
    """structlog processor redacting sensitive fields from the event dict."""
    keys = tuple(keys)

    def redact_sensitive(logger, name, event_dict):
        return redact_mapping(event_dict, keys)

    return redact_sensitive


def normalize_error(logger, name, event_dict):
    """Map ``error`` to ``error_message`` so error events share one field."""
    if "error" in event_dict and not event_dict.get("error_message"):
        event_dict["error_message"] = str(event_dict["error"])
    return event_dict


class LoggerManager:
    """Logging manager: console handler plus structlog processor chain."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.configured_loggers: Dict[str, structlog.BoundLogger] = {}
        self._setup_console_logging()
        self._configure_structlog()
        self._apply_channel_levels()

    def _setup_console_logging(self) -> None:
        root_logger = logging.getLogger()
        level = getattr(logging, self.settings.logging.level.upper(), logging.INFO)

        console_processor = (
            structlog.processors.JSONRenderer()
            if self.settings.logging.json_format
            else structlog.dev.ConsoleRenderer()
        )
        formatter = structlog.stdlib.ProcessorFormatter(
            processor=console_processor,
            foreign_pre_chain=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso"),
            ],
        )

        # Reconfigure an existing stdout handler instead of stacking another one
        for handler in root_logger.handlers:
            if isinstance(handler, logging.StreamHandler) and getattr(handler, "stream", None) == sys.stdout:
                handler.setLevel(level)
                handler.setFormatter(formatter)
                root_logger.setLevel(level)
                return

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)
        root_logger.setLevel(level)

    def _configure_structlog(self) -> None:
        app_name = self.settings.app_name
        env = self.settings.environment

        def add_standard_context(logger, name, event_dict):
            event_dict.setdefault("service", app_name)
            event_dict.setdefault("env", str(getattr(env, "value", env)))
            return event_dict

        processors = [
            add_standard_context,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            normalize_error,
            structlog.processors.UnicodeDecoder(),
            build_redact_processor(self.settings.logging.redact_keys),
            # Defer final rendering to handlers via ProcessorFormatter
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ]

        structlog.configure(
            processors=processors,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    def _apply_channel_levels(self) -> None:
        levels = {
            LogChannel.TRADING: self.settings.logging.trading_level,
            LogChannel.MARKET_DATA: self.settings.logging.market_data_level,
            LogChannel.API: self.settings.logging.api_level,
        }
        for channel, level in levels.items():
            logging.getLogger(f"channel.{channel.value}").setLevel(level.upper())

    def get_logger(self, name: str, component: Optional[str] = None) -> structlog.BoundLogger:
        """Get a structured logger for a component."""
        key = f"{name}:{component or ''}"
        if key in self.configured_loggers:
            return self.configured_loggers[key]

        if component:
            channel = get_channel_for_component(component)
            logger = self.get_channel_logger(name, channel).bind(component=component)
        else:
            logger = structlog.get_logger(name)

        self.configured_loggers[key] = logger
        return logger

    def get_channel_logger(self, name: str, channel: LogChannel) -> structlog.BoundLogger:
        """Get a logger for a specific channel."""
        # Stdlib logger hierarchy: channel.<channel>.<name> so channel levels apply
        return structlog.get_logger(f"channel.{channel.value}.{name}").bind(channel=channel.value)


def configure_enhanced_logging(settings: Settings) -> None:
    """Configure the logging system once per process."""
    global _logger_manager
    if _logger_manager is not None:
        return
    _logger_manager = LoggerManager(settings)


def get_enhanced_logger(name: str, component: Optional[str] = None) -> structlog.BoundLogger:
    """Get a structured logger, usable before configuration as well."""
    if _logger_manager is None:
        logger = structlog.get_logger(name)
        if component:
            logger = logger.bind(component=component,
                                 channel=get_channel_for_component(component).value)
        return logger
    return _logger_manager.get_logger(name, component)


def get_channel_logger(name: str, channel: LogChannel) -> structlog.BoundLogger:
    """Get a logger for a specific channel."""
    if _logger_manager is None:
        return structlog.get_logger(name).bind(channel=channel.value)
    return _logger_manager.get_channel_logger(name, channel)


# Convenience functions for specific components
def get_trading_logger(name: str) -> structlog.BoundLogger:
    """Get a trading-specific logger."""
    return get_channel_logger(name, LogChannel.TRADING)


def get_market_data_logger(name: str) -> structlog.BoundLogger:
    """Get a market data logger."""
    return get_channel_logger(name, LogChannel.MARKET_DATA)


def get_api_logger(name: str) -> structlog.BoundLogger:
    """Get an API logger."""
    return get_channel_logger(name, LogChannel.API)


def get_audit_logger(name: str) -> structlog.BoundLogger:
    """Get an audit logger."""
    return get_channel_logger(name, LogChannel.AUDIT)


def get_database_logger(name: str) -> structlog.BoundLogger:
    """Get a database logger."""
    return get_channel_logger(name, LogChannel.DATABASE)


def get_error_logger(name: str) -> structlog.BoundLogger:
    """Get an error logger."""
    return get_channel_logger(name, LogChannel.ERROR)
