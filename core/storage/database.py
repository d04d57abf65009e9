from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import delete, select

from core.database.connection import DatabaseManager
from core.database.models import (
    ApiCallLogRow,
    HoldingRow,
    LlmCallLogRow,
    MarketQuoteRow,
    NewsArticleRow,
    PortfolioSnapshotRow,
    PortfolioStateRow,
    StrategyRevisionRow,
    TradeLogRow,
    UniverseEntryRow,
    UniverseRevisionRow,
)
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
    TradeMode,
    TradeSide,
)
from .base import TradingStore


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DatabaseTradingStore(TradingStore):
    """SQLAlchemy-backed store. Each call is its own unit of work."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    async def get_portfolio_state(self) -> Optional[PortfolioState]:
        async with self.db_manager.get_session() as session:
            row = await session.get(PortfolioStateRow, "default")
            if row is None:
                return None
            return PortfolioState(id=row.id, cash=row.cash, initial_capital=row.initial_capital,
                                  virtual_mode=row.virtual_mode)

    async def save_portfolio_state(self, state: PortfolioState) -> None:
        async with self.db_manager.get_session() as session:
            await self._merge_state(session, state)
            await session.commit()

    async def _merge_state(self, session, state: PortfolioState) -> None:
        await session.merge(PortfolioStateRow(id=state.id, cash=state.cash,
                                              initial_capital=state.initial_capital,
                                              virtual_mode=state.virtual_mode))

    async def get_holding(self, symbol: str) -> Optional[Holding]:
        async with self.db_manager.get_session() as session:
            row = await session.get(HoldingRow, symbol)
            return Holding(symbol=row.symbol, quantity=row.quantity, avg_price=row.avg_price) if row else None

    async def list_holdings(self) -> List[Holding]:
        async with self.db_manager.get_session() as session:
            result = await session.execute(select(HoldingRow).order_by(HoldingRow.symbol))
            return [Holding(symbol=r.symbol, quantity=r.quantity, avg_price=r.avg_price)
                    for r in result.scalars()]

    async def record_trade(self, state: PortfolioState, holding: Holding,
                           trade_log: TradeLogRecord) -> None:
        async with self.db_manager.get_session() as session:
            await self._merge_state(session, state)
            if holding.quantity <= 0:
                await session.execute(delete(HoldingRow).where(HoldingRow.symbol == holding.symbol))
            else:
                await session.merge(HoldingRow(symbol=holding.symbol, quantity=holding.quantity,
                                               avg_price=holding.avg_price))
            session.add(TradeLogRow(
                symbol=trade_log.symbol,
                side=trade_log.side.value,
                quantity=trade_log.quantity,
                price=trade_log.price,
                total_amount=trade_log.total_amount,
                reason=trade_log.reason,
                mode=trade_log.mode.value,
                realized_pnl=trade_log.realized_pnl,
                created_at=trade_log.created_at,
            ))
            await session.commit()

    async def list_trade_logs(self, limit: int = 100) -> List[TradeLogRecord]:
        async with self.db_manager.get_session() as session:
            result = await session.execute(
                select(TradeLogRow).order_by(TradeLogRow.id.desc()).limit(limit)
            )
            return [
                TradeLogRecord(symbol=r.symbol, side=TradeSide(r.side), quantity=r.quantity,
                               price=r.price, total_amount=r.total_amount, reason=r.reason or "",
                               mode=TradeMode(r.mode), realized_pnl=r.realized_pnl,
                               created_at=_aware(r.created_at))
                for r in result.scalars()
            ]

    async def append_snapshot(self, snapshot: PortfolioSnapshotRecord) -> None:
        async with self.db_manager.get_session() as session:
            session.add(PortfolioSnapshotRow(**snapshot.model_dump()))
            await session.commit()

    async def list_snapshots(self, limit: int = 100) -> List[PortfolioSnapshotRecord]:
        async with self.db_manager.get_session() as session:
            result = await session.execute(
                select(PortfolioSnapshotRow).order_by(PortfolioSnapshotRow.id.desc()).limit(limit)
            )
            return [
                PortfolioSnapshotRecord(cash=r.cash, holdings_value=r.holdings_value,
                                        total_asset=r.total_asset, created_at=_aware(r.created_at))
                for r in result.scalars()
            ]

    async def list_universe_entries(self) -> List[UniverseEntry]:
        async with self.db_manager.get_session() as session:
            result = await session.execute(select(UniverseEntryRow).order_by(UniverseEntryRow.symbol))
            return [
                UniverseEntry(symbol=r.symbol, name=r.name, market_cap=r.market_cap,
                              market_code=r.market_code, market_name=r.market_name)
                for r in result.scalars()
            ]

    async def replace_universe_entries(self, entries: List[UniverseEntry],
                                       revision: UniverseRevisionRecord) -> None:
        # Wholesale replace: no incremental diff against the previous catalog
        deduped = {entry.symbol: entry for entry in entries}
        async with self.db_manager.get_session() as session:
            await session.execute(delete(UniverseEntryRow))
            session.add_all(UniverseEntryRow(**entry.model_dump()) for entry in deduped.values())
            session.add(UniverseRevisionRow(**revision.model_dump()))
            await session.commit()

    async def save_market_quotes(self, quotes: Iterable[MarketQuoteRecord]) -> None:
        async with self.db_manager.get_session() as session:
            session.add_all(MarketQuoteRow(**quote.model_dump()) for quote in quotes)
            await session.commit()

    async def list_market_quotes(self, symbols: Iterable[str], since: datetime) -> List[MarketQuoteRecord]:
        symbols = list(symbols)
        if not symbols:
            return []
        async with self.db_manager.get_session() as session:
            result = await session.execute(
                select(MarketQuoteRow)
                .where(MarketQuoteRow.symbol.in_(symbols), MarketQuoteRow.as_of >= since)
                .order_by(MarketQuoteRow.as_of)
            )
            return [
                MarketQuoteRecord(symbol=r.symbol, price=r.price, change_rate=r.change_rate,
                                  volume=r.volume, as_of=_aware(r.as_of))
                for r in result.scalars()
            ]

    async def upsert_news_articles(self, articles: Iterable[NewsArticle]) -> None:
        async with self.db_manager.get_session() as session:
            for article in articles:
                result = await session.execute(
                    select(NewsArticleRow).where(NewsArticleRow.url == article.url)
                )
                row = result.scalar_one_or_none()
                if row is None:
                    session.add(NewsArticleRow(**article.model_dump()))
                else:
                    row.title = article.title
                    row.source = article.source
                    row.published_at = article.published_at
                    row.summary = article.summary
            await session.commit()

    async def latest_news(self, limit: int) -> List[NewsArticle]:
        async with self.db_manager.get_session() as session:
            result = await session.execute(
                select(NewsArticleRow).order_by(NewsArticleRow.created_at.desc()).limit(limit)
            )
            return [
                NewsArticle(title=r.title, url=r.url, source=r.source,
                            published_at=_aware(r.published_at), summary=r.summary,
                            created_at=_aware(r.created_at))
                for r in result.scalars()
            ]

    async def append_strategy_revision(self, revision: StrategyRevisionRecord) -> None:
        async with self.db_manager.get_session() as session:
            session.add(StrategyRevisionRow(**revision.model_dump()))
            await session.commit()

    async def append_api_call(self, record: ApiCallRecord) -> None:
        async with self.db_manager.get_session() as session:
            session.add(ApiCallLogRow(**record.model_dump(mode="json", exclude={"created_at"}),
                                      created_at=record.created_at))
            await session.commit()

    async def append_llm_call(self, record: LlmCallRecord) -> None:
        async with self.db_manager.get_session() as session:
            session.add(LlmCallLogRow(**record.model_dump()))
            await session.commit()
