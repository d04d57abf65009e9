from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional

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


class TradingStore(ABC):
    """Abstract persistence collaborator for ledger, catalog and audit records."""

    # Portfolio ledger
    @abstractmethod
    async def get_portfolio_state(self) -> Optional[PortfolioState]:
        ...

    @abstractmethod
    async def save_portfolio_state(self, state: PortfolioState) -> None:
        ...

    @abstractmethod
    async def get_holding(self, symbol: str) -> Optional[Holding]:
        ...

    @abstractmethod
    async def list_holdings(self) -> List[Holding]:
        ...

    @abstractmethod
    async def record_trade(self, state: PortfolioState, holding: Holding,
                           trade_log: TradeLogRecord) -> None:
        """Commit one fill: cash ledger, holding row and trade log together.

        A holding whose quantity is zero or below is deleted instead of saved.
        """
        ...

    @abstractmethod
    async def list_trade_logs(self, limit: int = 100) -> List[TradeLogRecord]:
        ...

    @abstractmethod
    async def append_snapshot(self, snapshot: PortfolioSnapshotRecord) -> None:
        ...

    @abstractmethod
    async def list_snapshots(self, limit: int = 100) -> List[PortfolioSnapshotRecord]:
        ...

    # Universe catalog
    @abstractmethod
    async def list_universe_entries(self) -> List[UniverseEntry]:
        ...

    @abstractmethod
    async def replace_universe_entries(self, entries: List[UniverseEntry],
                                       revision: UniverseRevisionRecord) -> None:
        ...

    # Market data
    @abstractmethod
    async def save_market_quotes(self, quotes: Iterable[MarketQuoteRecord]) -> None:
        ...

    @abstractmethod
    async def list_market_quotes(self, symbols: Iterable[str], since: datetime) -> List[MarketQuoteRecord]:
        ...

    # News and strategy
    @abstractmethod
    async def upsert_news_articles(self, articles: Iterable[NewsArticle]) -> None:
        ...

    @abstractmethod
    async def latest_news(self, limit: int) -> List[NewsArticle]:
        ...

    @abstractmethod
    async def append_strategy_revision(self, revision: StrategyRevisionRecord) -> None:
        ...

    # Audit
    @abstractmethod
    async def append_api_call(self, record: ApiCallRecord) -> None:
        ...

    @abstractmethod
    async def append_llm_call(self, record: LlmCallRecord) -> None:
        ...
