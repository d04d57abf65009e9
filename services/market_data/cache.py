from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence

from core.schemas.market import (
    OrderbookEntry,
    PricePoint,
    Quote,
    RealtimePriceEntry,
    RealtimeSignal,
)
from services.kiwoom.fields import normalize_symbol

HISTORY_WINDOW = timedelta(minutes=5)

Clock = Callable[[], datetime]


def utc_clock() -> datetime:
    return datetime.now(timezone.utc)


def is_fresh(as_of: datetime, now: datetime, ttl: timedelta) -> bool:
    """An entry is fresh while its age does not exceed the TTL (age == TTL is fresh)."""
    return now - as_of <= ttl


def compute_history_change(history: Sequence[PricePoint], since: datetime) -> Optional[float]:
    """Percent change from the oldest point at or after ``since`` to the latest point."""
    if not history:
        return None
    recent = history[-1]
    base = next((point for point in history if point.at >= since), history[0])
    if base.price == 0:
        return None
    return round((recent.price - base.price) / base.price * 100, 4)


def compute_imbalance(bid_total: Optional[float], ask_total: Optional[float]) -> Optional[float]:
    if bid_total is None or ask_total is None or bid_total + ask_total <= 0:
        return None
    return round((bid_total - ask_total) / (bid_total + ask_total), 4)


class MarketDataCache:
    """Realtime price/orderbook cache with TTL reads and a 5-minute price history.

    Owned by the Kiwoom service; every key is a normalized symbol.
    """

    def __init__(self, ttl_ms: int = 15_000, clock: Optional[Clock] = None,
                 history_window: timedelta = HISTORY_WINDOW):
        self.ttl = timedelta(milliseconds=ttl_ms)
        self.history_window = history_window
        self._clock = clock or utc_clock
        self._prices: Dict[str, RealtimePriceEntry] = {}
        self._orderbooks: Dict[str, OrderbookEntry] = {}
        self._history: Dict[str, List[PricePoint]] = {}

    def now(self) -> datetime:
        return self._clock()

    # Writes
    def update_price(self, symbol: str, price: float, type: str = "",
                     at: Optional[datetime] = None) -> Optional[RealtimePriceEntry]:
        symbol = normalize_symbol(symbol)
        price = abs(price)
        if not symbol or not price:
            return None
        at = at or self.now()
        entry = RealtimePriceEntry(symbol=symbol, price=price, as_of=at, type=type)
        self._prices[symbol] = entry
        self._append_history(symbol, price, at)
        return entry

    def update_orderbook(self, symbol: str, bid_total: float, ask_total: float,
                         type: str = "0D", at: Optional[datetime] = None) -> Optional[OrderbookEntry]:
        symbol = normalize_symbol(symbol)
        if not symbol or not (bid_total or ask_total):
            return None
        entry = OrderbookEntry(symbol=symbol, bid_total=bid_total, ask_total=ask_total,
                               as_of=at or self.now(), type=type)
        self._orderbooks[symbol] = entry
        return entry

    def _append_history(self, symbol: str, price: float, at: datetime) -> None:
        history = self._history.setdefault(symbol, [])
        history.append(PricePoint(price=price, at=at))
        cutoff = at - self.history_window
        while history and history[0].at < cutoff:
            history.pop(0)

    # Reads
    def get_realtime_price(self, symbol: str) -> Optional[RealtimePriceEntry]:
        entry = self._prices.get(normalize_symbol(symbol))
        if entry is None or not is_fresh(entry.as_of, self.now(), self.ttl):
            return None
        return entry

    def get_orderbook(self, symbol: str) -> Optional[OrderbookEntry]:
        entry = self._orderbooks.get(normalize_symbol(symbol))
        if entry is None or not is_fresh(entry.as_of, self.now(), self.ttl):
            return None
        return entry

    def price_history(self, symbol: str) -> List[PricePoint]:
        return list(self._history.get(normalize_symbol(symbol), []))

    def apply_realtime_to_quote(self, quote: Quote) -> Quote:
        """Overlay a fresh realtime price/timestamp; the REST quote is kept otherwise."""
        realtime = self.get_realtime_price(quote.symbol)
        if realtime is None:
            return quote
        return quote.model_copy(update={"price": realtime.price, "as_of": realtime.as_of})

    def apply_realtime_to_quotes(self, quotes: Sequence[Quote]) -> List[Quote]:
        return [self.apply_realtime_to_quote(quote) for quote in quotes]

    def get_realtime_signal(self, symbol: str) -> RealtimeSignal:
        symbol = normalize_symbol(symbol)
        now = self.now()
        price_entry = self.get_realtime_price(symbol)
        history = self._history.get(symbol, [])
        orderbook = self.get_orderbook(symbol)
        bid_total = orderbook.bid_total if orderbook else None
        ask_total = orderbook.ask_total if orderbook else None
        return RealtimeSignal(
            symbol=symbol,
            price=price_entry.price if price_entry else None,
            price_as_of=price_entry.as_of if price_entry else None,
            change_1m_pct=compute_history_change(history, now - timedelta(minutes=1)),
            change_5m_pct=compute_history_change(history, now - timedelta(minutes=5)),
            bid_total=bid_total,
            ask_total=ask_total,
            orderbook_imbalance=compute_imbalance(bid_total, ask_total),
            orderbook_as_of=orderbook.as_of if orderbook else None,
        )
