# Kiwoom Service Models
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List


class DailyClose(BaseModel):
    """Latest daily close from ka10081"""
    symbol: str
    close_price: float
    as_of: str
    source: str = "ka10081"


class StockListing(BaseModel):
    """One row of the ka10099 stock list"""
    symbol: str
    name: str = ""
    list_count: float = 0.0
    last_price: float = 0.0
    market_code: Optional[str] = None
    market_name: Optional[str] = None

    @property
    def market_cap(self) -> float:
        return self.list_count * self.last_price


class RankedStock(BaseModel):
    """Row of a ranking query (ka10032 trading value, ka10030 trading volume)"""
    symbol: str
    name: str = ""
    price: float = 0.0
    trade_value: Optional[float] = None
    volume: Optional[float] = None


class IntradayBar(BaseModel):
    price: float
    volume: float = 0.0
    time: str = ""
    open: float = 0.0
    high: float = 0.0
    low: float = 0.0
    change: float = 0.0
    change_sign: str = ""


class IntradaySeries(BaseModel):
    """Tick (ka10079) or minute (ka10080) bars for one symbol"""
    symbol: str
    bars: List[IntradayBar] = Field(default_factory=list)
    source: str


class AccountHolding(BaseModel):
    symbol: str
    name: str = ""
    quantity: float = 0.0
    tradable_quantity: float = 0.0
    avg_price: float = 0.0
    price: float = 0.0
    market_value: float = 0.0
    unrealized_pnl: float = 0.0
    profit_rate: float = 0.0


class AccountEvaluation(BaseModel):
    """kt00018 account evaluation; cash is derived as total asset minus holdings value"""
    cash: float
    total_asset: float
    holdings_value: float
    holdings: List[AccountHolding] = Field(default_factory=list)
    source: str = "kt00018"
    raw: Optional[Dict[str, Any]] = None


class ConditionSearchResult(BaseModel):
    """CNSRREQ response with the normalized matching symbols"""
    seq: str
    return_code: Any = 0
    symbols: List[str] = Field(default_factory=list)
    raw: Dict[str, Any] = Field(default_factory=dict)
