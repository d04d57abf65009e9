# Structured exception hierarchy for the Kiwoom trading agent

from typing import Dict, Any, Optional
from datetime import datetime, timezone


class TradingAgentException(Exception):
    """Base exception for all trading agent specific errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)


class ConfigurationError(TradingAgentException):
    """Required configuration is missing or invalid"""
    pass


# Brokerage connectivity errors
class AuthError(TradingAgentException):
    """Missing credentials, failed token issue or failed websocket login"""

    def __init__(self, message: str, provider: str = "kiwoom", **kwargs):
        super().__init__(message, **kwargs)
        self.provider = provider


class UpstreamProtocolError(TradingAgentException):
    """Non-zero return_code, non-2xx status or a malformed brokerage payload"""

    def __init__(self, message: str, api_id: Optional[str] = None,
                 status_code: Optional[int] = None,
                 response: Optional[Dict[str, Any]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.api_id = api_id
        self.status_code = status_code
        self.response = response or {}


class RequestTimeoutError(TradingAgentException, TimeoutError):
    """A REST call or websocket request exceeded its deadline"""

    def __init__(self, message: str, key: Optional[str] = None,
                 timeout_seconds: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.key = key
        self.timeout_seconds = timeout_seconds


class ConnectionClosedError(TradingAgentException):
    """The shared websocket closed while a request was waiting for its answer"""
    pass


# Execution errors
class OrderPlacementError(TradingAgentException):
    """A real order could not be placed; the decision's ledger update is aborted"""

    def __init__(self, message: str, symbol: str, side: str, **kwargs):
        super().__init__(message, **kwargs)
        self.symbol = symbol
        self.side = side
