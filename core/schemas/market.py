from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class Quote(BaseModel):
    """Point-in-time REST quote. Price is always a non-negative magnitude."""
    model_config = ConfigDict(frozen=True)

    symbol: str
    price: float
    change_rate: float = 0.0
    volume: float = 0.0
    as_of: datetime

    @field_validator("price")
    @classmethod
    def absolute_price(cls, v: float) -> float:
        return abs(v)


class RealtimePriceEntry(BaseModel):
    symbol: str
    price: float
    as_of: datetime
    type: str = ""


class OrderbookEntry(BaseModel):
    symbol: str
    bid_total: float
    ask_total: float
    as_of: datetime
    type: str = "0D"


class PricePoint(BaseModel):
    price: float
    at: datetime


class RealtimeSignal(BaseModel):
    symbol: str
    price: Optional[float] = None
    price_as_of: Optional[datetime] = None
    change_1m_pct: Optional[float] = None
    change_5m_pct: Optional[float] = None
    bid_total: Optional[float] = None
    ask_total: Optional[float] = None
    orderbook_imbalance: Optional[float] = None
    orderbook_as_of: Optional[datetime] = None


class MarketQuoteRecord(BaseModel):
    """Quote persisted by each market cycle; read back for liquidity ranking."""
    symbol: str
    price: float
    change_rate: float = 0.0
    volume: float = 0.0
    as_of: datetime

    @classmethod
    def from_quote(cls, quote: Quote) -> "MarketQuoteRecord":
        return cls(symbol=quote.symbol, price=quote.price, change_rate=quote.change_rate,
                   volume=quote.volume, as_of=quote.as_of)
