"""Synthetic Kiwoom payloads used while ``KIWOOM__MOCK=true``."""

import random
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from core.schemas.market import Quote
from .models import (
    AccountEvaluation,
    DailyClose,
    IntradayBar,
    IntradaySeries,
    RankedStock,
    StockListing,
)


class MockKiwoomData:
    def __init__(self, rng: Optional[random.Random] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.rng = rng or random.Random()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def quote(self, symbol: str) -> Quote:
        return Quote(
            symbol=symbol,
            price=float(50000 + round(self.rng.random() * 100000)),
            change_rate=round((self.rng.random() - 0.5) * 6, 2),
            volume=float(round(100000 + self.rng.random() * 500000)),
            as_of=self._clock(),
        )

    @staticmethod
    def condition_list() -> Dict[str, Any]:
        return {"trnm": "CNSRLST", "return_code": 0, "data": [{"seq": "1", "name": "Mock Condition"}]}

    @staticmethod
    def condition_search(seq: str) -> Dict[str, Any]:
        return {
            "trnm": "CNSRREQ",
            "seq": seq,
            "return_code": 0,
            "data": [{"jmcode": "005930"}, {"jmcode": "000660"}],
        }

    def daily_close(self, symbol: str) -> DailyClose:
        return DailyClose(symbol=symbol, close_price=self.quote(symbol).price,
                          as_of=self._clock().isoformat(), source="mock")

    @staticmethod
    def stock_list(market_type: str) -> List[StockListing]:
        return [StockListing(
            symbol="005930",
            name="Samsung Electronics",
            list_count=5969782550,
            last_price=70000,
            market_code="0",
            market_name="KOSPI",
        )]

    @staticmethod
    def top_trading_value() -> List[RankedStock]:
        return [RankedStock(symbol="005930", name="Samsung Electronics", price=70000, trade_value=1_000_000_000)]

    @staticmethod
    def top_trading_volume() -> List[RankedStock]:
        return [RankedStock(symbol="005930", name="Samsung Electronics", price=70000, volume=10_000_000)]

    def intraday(self, symbol: str, volume: float) -> IntradaySeries:
        bar = IntradayBar(price=70000, volume=volume, time=self._clock().isoformat(),
                          open=70000, high=70100, low=69900)
        return IntradaySeries(symbol=symbol, bars=[bar], source="mock")

    @staticmethod
    def account_evaluation() -> AccountEvaluation:
        return AccountEvaluation(cash=10_000_000, total_asset=15_000_000, holdings_value=5_000_000,
                                 holdings=[], source="mock")

    def order(self, order: Dict[str, Any]) -> Dict[str, Any]:
        stamp = int(self._clock().timestamp() * 1000)
        return {"orderId": f"mock-{stamp}", "status": "accepted", **order}
