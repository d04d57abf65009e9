from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TradeSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class TradeStatus(str, Enum):
    EXECUTED = "EXECUTED"
    SKIPPED_INSUFFICIENT_CASH = "SKIPPED_INSUFFICIENT_CASH"
    SKIPPED_INSUFFICIENT_HOLDING = "SKIPPED_INSUFFICIENT_HOLDING"
    SKIPPED_DUPLICATE_SYMBOL = "SKIPPED_DUPLICATE_SYMBOL"
    SKIPPED_POLICY = "SKIPPED_POLICY"


class TradeMode(str, Enum):
    VIRTUAL = "VIRTUAL"
    REAL = "REAL"


class TradingPolicy(BaseModel):
    """Numeric risk policy read from the ``## Trading Policy`` section."""
    model_config = ConfigDict(frozen=True)

    take_profit_pct: float = 2.5
    stop_loss_pct: float = -2.5
    position_size_pct: float = 10.0
    min_hold_minutes: float = 0.0


class UniversePolicy(BaseModel):
    """Universe selection knobs read from the ``## Universe Selection`` section."""
    model_config = ConfigDict(frozen=True)

    top_market_cap: int = 20
    top_liquidity: int = 20
    top_news: int = 10
    max_universe: int = 40
    liquidity_candidates: int = 100
    liquidity_days: int = 5
    markets: List[str] = Field(default_factory=lambda: ["0", "10"])
    include_managed: bool = False
    stex: str = "1"


class Holding(BaseModel):
    symbol: str
    quantity: int = 0
    avg_price: float = 0.0


class PortfolioState(BaseModel):
    """Singleton cash ledger, keyed ``default``."""
    id: str = "default"
    cash: float
    initial_capital: float
    virtual_mode: bool = True


class TradeDecision(BaseModel):
    symbol: str
    side: TradeSide
    quantity: int = Field(default=0, ge=0)
    reason: str = ""
    confidence: float = 0.0


class TradeOutcome(BaseModel):
    """Executed or skipped result of applying one decision."""
    symbol: str
    side: TradeSide
    quantity: int
    price: float
    total_amount: float
    reason: str = ""
    status: TradeStatus
    realized_pnl: Optional[float] = None


class ExecutionReport(BaseModel):
    executed: List[TradeOutcome] = Field(default_factory=list)
    skipped: List[TradeOutcome] = Field(default_factory=list)
    cash: float
    holdings_value: float
    total_asset: float


class TradeLogRecord(BaseModel):
    symbol: str
    side: TradeSide
    quantity: int
    price: float
    total_amount: float
    reason: str = ""
    mode: TradeMode
    realized_pnl: Optional[float] = None
    created_at: datetime = Field(default_factory=utc_now)


class PortfolioSnapshotRecord(BaseModel):
    cash: float
    holdings_value: float
    total_asset: float
    created_at: datetime = Field(default_factory=utc_now)


class ApiCallRecord(BaseModel):
    provider: str
    endpoint: str
    method: str
    request_body: Any = None
    response_body: Any = None
    status_code: Optional[int] = None
    success: bool
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class LlmCallRecord(BaseModel):
    model: str
    input_text: str
    output_text: Optional[str] = None
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    success: bool
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
