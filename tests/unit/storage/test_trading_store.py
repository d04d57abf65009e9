from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from core.database.connection import DatabaseManager
from core.schemas.market import MarketQuoteRecord
from core.schemas.news import NewsArticle
from core.schemas.strategy import StrategyRevisionRecord
from core.schemas.universe import UniverseEntry, UniverseRevisionRecord
from core.storage.database import DatabaseTradingStore
from core.storage.memory import InMemoryTradingStore
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

T0 = datetime(2026, 3, 2, 1, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def trading_store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryTradingStore()
        return
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'agent.db'}")
    await manager.init(create_schema=True)
    try:
        yield DatabaseTradingStore(manager)
    finally:
        await manager.shutdown()


def _log(symbol, side=TradeSide.BUY, **kwargs):
    return TradeLogRecord(symbol=symbol, side=side, quantity=1, price=100.0, total_amount=100.0,
                          reason="test", mode=TradeMode.VIRTUAL, **kwargs)


@pytest.mark.asyncio
async def test_portfolio_state_round_trip(trading_store):
    assert await trading_store.get_portfolio_state() is None

    await trading_store.save_portfolio_state(PortfolioState(cash=1_000.0, initial_capital=1_000.0))
    await trading_store.save_portfolio_state(PortfolioState(cash=750.0, initial_capital=1_000.0,
                                                            virtual_mode=False))

    state = await trading_store.get_portfolio_state()
    assert state.id == "default"
    assert state.cash == 750.0
    assert state.virtual_mode is False


@pytest.mark.asyncio
async def test_record_trade_commits_ledger_holding_and_log(trading_store):
    state = PortfolioState(cash=900.0, initial_capital=1_000.0)
    await trading_store.record_trade(state, Holding(symbol="005930", quantity=1, avg_price=100.0),
                                     _log("005930"))

    assert (await trading_store.get_portfolio_state()).cash == 900.0
    assert (await trading_store.get_holding("005930")).quantity == 1
    logs = await trading_store.list_trade_logs()
    assert [(log.symbol, log.side, log.mode) for log in logs] == [("005930", TradeSide.BUY, TradeMode.VIRTUAL)]


@pytest.mark.asyncio
async def test_record_trade_deletes_emptied_holding(trading_store):
    state = PortfolioState(cash=900.0, initial_capital=1_000.0)
    await trading_store.record_trade(state, Holding(symbol="A", quantity=1, avg_price=100.0), _log("A"))
    await trading_store.record_trade(state.model_copy(update={"cash": 1_000.0}),
                                     Holding(symbol="A", quantity=0, avg_price=100.0),
                                     _log("A", side=TradeSide.SELL, realized_pnl=0.0))

    assert await trading_store.get_holding("A") is None
    assert await trading_store.list_holdings() == []
    logs = await trading_store.list_trade_logs()
    assert [log.side for log in logs] == [TradeSide.SELL, TradeSide.BUY]
    assert logs[0].realized_pnl == 0.0


@pytest.mark.asyncio
async def test_snapshots_are_listed_newest_first(trading_store):
    for cash in (1.0, 2.0, 3.0):
        await trading_store.append_snapshot(PortfolioSnapshotRecord(cash=cash, holdings_value=0.0,
                                                                    total_asset=cash))
    snapshots = await trading_store.list_snapshots(limit=2)
    assert [s.cash for s in snapshots] == [3.0, 2.0]


@pytest.mark.asyncio
async def test_universe_replace_is_wholesale_and_deduplicated(trading_store):
    await trading_store.replace_universe_entries(
        [UniverseEntry(symbol="000660", name="Old")],
        UniverseRevisionRecord(source="kiwoom", entry_count=1),
    )
    await trading_store.replace_universe_entries(
        [UniverseEntry(symbol="005930", name="First"), UniverseEntry(symbol="005930", name="Second"),
         UniverseEntry(symbol="035420", name="NAVER", market_cap=1.5e13)],
        UniverseRevisionRecord(source="kiwoom", entry_count=2),
    )

    entries = await trading_store.list_universe_entries()
    assert [(e.symbol, e.name) for e in entries] == [("005930", "Second"), ("035420", "NAVER")]
    assert entries[1].market_cap == 1.5e13


@pytest.mark.asyncio
async def test_market_quotes_filtered_by_symbol_and_time(trading_store):
    await trading_store.save_market_quotes([
        MarketQuoteRecord(symbol="A", price=1.0, volume=10.0, as_of=T0 - timedelta(days=10)),
        MarketQuoteRecord(symbol="A", price=2.0, volume=20.0, as_of=T0),
        MarketQuoteRecord(symbol="B", price=3.0, volume=30.0, as_of=T0),
    ])

    quotes = await trading_store.list_market_quotes(["A"], T0 - timedelta(days=1))

    assert [(q.symbol, q.price) for q in quotes] == [("A", 2.0)]
    assert quotes[0].as_of == T0
    assert await trading_store.list_market_quotes([], T0) == []


@pytest.mark.asyncio
async def test_news_upsert_by_url_and_latest_ordering(trading_store):
    await trading_store.upsert_news_articles([
        NewsArticle(title="old", url="https://news.test/1", created_at=T0),
        NewsArticle(title="new", url="https://news.test/2", created_at=T0 + timedelta(minutes=5)),
    ])
    await trading_store.upsert_news_articles([
        NewsArticle(title="old, updated", url="https://news.test/1", created_at=T0 + timedelta(hours=1)),
    ])

    latest = await trading_store.latest_news(limit=10)

    assert [a.title for a in latest] == ["new", "old, updated"]
    assert await trading_store.latest_news(limit=1) == latest[:1]


@pytest.mark.asyncio
async def test_audit_records_are_appended(trading_store):
    await trading_store.append_strategy_revision(StrategyRevisionRecord(source="news", content="# S"))
    await trading_store.append_api_call(ApiCallRecord(
        provider="kiwoom", endpoint="/api/dostk/stkinfo", method="POST",
        request_body={"stk_cd": "005930"}, response_body={"return_code": 0},
        status_code=200, success=True,
    ))
    await trading_store.append_llm_call(LlmCallRecord(model="primary-model", input_text="prompt",
                                                      success=False, status_code=429,
                                                      error_message="rate limited"))

    if isinstance(trading_store, InMemoryTradingStore):
        assert len(trading_store.strategy_revisions) == 1
        assert trading_store.api_calls[0].request_body == {"stk_cd": "005930"}
        assert trading_store.llm_calls[0].status_code == 429
