"""
Logging channel definitions for the trading agent.
Every structured event carries a ``channel`` field so downstream collectors
can route trading, market data, brokerage API and audit events separately.
"""

from enum import Enum
from typing import Dict


class LogChannel(str, Enum):
    """Logging channels for different components."""

    APPLICATION = "application"  # General application logs
    TRADING = "trading"          # Decisions and executions
    MARKET_DATA = "market_data"  # Quotes, realtime push, universe
    DATABASE = "database"        # Persistence layer
    API = "api"                  # Brokerage and LLM requests/responses
    AUDIT = "audit"              # Audit trail
    ERROR = "error"              # Error logs


COMPONENT_CHANNELS: Dict[str, LogChannel] = {
    # Trading components
    "decision_engine": LogChannel.TRADING,
    "execution_engine": LogChannel.TRADING,
    "scheduler": LogChannel.TRADING,

    # Market data components
    "market_data": LogChannel.MARKET_DATA,
    "websocket": LogChannel.MARKET_DATA,
    "universe": LogChannel.MARKET_DATA,
    "news": LogChannel.MARKET_DATA,

    # Infrastructure components
    "database": LogChannel.DATABASE,
    "storage": LogChannel.DATABASE,

    # API components
    "kiwoom": LogChannel.API,
    "auth": LogChannel.API,
    "llm": LogChannel.API,
}


def get_channel_for_component(component: str) -> LogChannel:
    """Get the appropriate logging channel for a component."""
    return COMPONENT_CHANNELS.get(component, LogChannel.APPLICATION)
