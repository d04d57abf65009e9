import asyncio
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from core.schemas.market import MarketQuoteRecord
from core.schemas.news import NewsArticle
from core.schemas.strategy import StrategyRevisionRecord
from core.schemas.universe import UniverseEntry, UniverseRevisionRecord
from core.trading.models import (
    ApiCallRecord,
    Holding,
    LlmCallRecord,
    PortfolioSnapshotRecord,
    PortfolioState,
    TradeLogRecord,
)
from .base import TradingStore


class InMemoryTradingStore(TradingStore):
    """Process-local store used by tests and ``DATABASE__BACKEND=memory``.

    Records are copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self):
        self.portfolio_state: Optional[PortfolioState] = None
        self.holdings: Dict[str, Holding] = {}
        self.trade_logs: List[TradeLogRecord] = []
        self.snapshots: List[PortfolioSnapshotRecord] = []
        self.universe_entries: List[UniverseEntry] = []
        self.universe_revisions: List[UniverseRevisionRecord] = []
        self.market_quotes: List[MarketQuoteRecord] = []
        self.news_articles: Dict[str, NewsArticle] = {}
        self.strategy_revisions: List[StrategyRevisionRecord] = []
        self.api_calls: List[ApiCallRecord] = []
        self.llm_calls: List[LlmCallRecord] = []
        self._lock = asyncio.Lock()

    async def get_portfolio_state(self) -> Optional[PortfolioState]:
        return self.portfolio_state.model_copy() if self.portfolio_state else None

    async def save_portfolio_state(self, state: PortfolioState) -> None:
        self.portfolio_state = state.model_copy()

    async def get_holding(self, symbol: str) -> Optional[Holding]:
        holding = self.holdings.get(symbol)
        return holding.model_copy() if holding else None

    async def list_holdings(self) -> List[Holding]:
        return [h.model_copy() for h in sorted(self.holdings.values(), key=lambda h: h.symbol)]

    async def record_trade(self, state: PortfolioState, holding: Holding,
                           trade_log: TradeLogRecord) -> None:
        async with self._lock:
            self.portfolio_state = state.model_copy()
            if holding.quantity <= 0:
                self.holdings.pop(holding.symbol, None)
            else:
                self.holdings[holding.symbol] = holding.model_copy()
            self.trade_logs.append(trade_log.model_copy())

    async def list_trade_logs(self, limit: int = 100) -> List[TradeLogRecord]:
        return list(reversed(self.trade_logs))[:limit]

    async def append_snapshot(self, snapshot: PortfolioSnapshotRecord) -> None:
        self.snapshots.append(snapshot.model_copy())

    async def list_snapshots(self, limit: int = 100) -> List[PortfolioSnapshotRecord]:
        return list(reversed(self.snapshots))[:limit]

    async def list_universe_entries(self) -> List[UniverseEntry]:
        return [e.model_copy() for e in sorted(self.universe_entries, key=lambda e: e.symbol)]

    async def replace_universe_entries(self, entries: List[UniverseEntry],
                                       revision: UniverseRevisionRecord) -> None:
        async with self._lock:
            deduped = {entry.symbol: entry for entry in entries}
            self.universe_entries = [e.model_copy() for e in deduped.values()]
            self.universe_revisions.append(revision.model_copy())

    async def save_market_quotes(self, quotes: Iterable[MarketQuoteRecord]) -> None:
        self.market_quotes.extend(q.model_copy() for q in quotes)

    async def list_market_quotes(self, symbols: Iterable[str], since: datetime) -> List[MarketQuoteRecord]:
        wanted = set(symbols)
        return [q.model_copy() for q in self.market_quotes if q.symbol in wanted and q.as_of >= since]

    async def upsert_news_articles(self, articles: Iterable[NewsArticle]) -> None:
        for article in articles:
            existing = self.news_articles.get(article.url)
            if existing is not None:
                article = article.model_copy(update={"created_at": existing.created_at})
            self.news_articles[article.url] = article.model_copy()

    async def latest_news(self, limit: int) -> List[NewsArticle]:
        ordered = sorted(self.news_articles.values(), key=lambda a: a.created_at, reverse=True)
        return [a.model_copy() for a in ordered[:limit]]

    async def append_strategy_revision(self, revision: StrategyRevisionRecord) -> None:
        self.strategy_revisions.append(revision.model_copy())

    async def append_api_call(self, record: ApiCallRecord) -> None:
        self.api_calls.append(record.model_copy())

    async def append_llm_call(self, record: LlmCallRecord) -> None:
        self.llm_calls.append(record.model_copy())
