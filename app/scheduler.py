from typing import Any, Dict, List, Optional

from core.logging import get_error_logger, get_logger
from core.schemas.market import MarketQuoteRecord
from core.storage.base import TradingStore
from core.trading.interfaces import EventSink
from core.trading.models import ExecutionReport
from core.utils.exceptions import TradingAgentException
from services.kiwoom.service import KiwoomService
from services.news.service import NewsService
from services.trading.decision_engine import DecisionEngine
from services.trading.execution_engine import ExecutionEngine
from services.universe.resolver import UniverseResolver


class AgentScheduler:
    """Runs the market and news cycles. Cycle failures are logged, never raised to the trigger."""

    def __init__(self, store: TradingStore, kiwoom: KiwoomService, resolver: UniverseResolver,
                 decision_engine: DecisionEngine, execution_engine: ExecutionEngine,
                 news: NewsService, events: Optional[EventSink] = None):
        self.store = store
        self.kiwoom = kiwoom
        self.resolver = resolver
        self.decision_engine = decision_engine
        self.execution_engine = execution_engine
        self.news = news
        self.events = events
        self.logger = get_logger("agent_scheduler", component="application")
        self.error_logger = get_error_logger("agent_scheduler")

    async def start(self) -> None:
        await self.execution_engine.ensure_portfolio_state()
        self.logger.info("Agent scheduler initialized")

    def _emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        if self.events is not None:
            self.events.emit(event_type, payload)

    async def run_market_cycle(self) -> Optional[ExecutionReport]:
        selection = await self.resolver.resolve_universe_selection()
        symbols = selection.symbols
        if not symbols:
            self.logger.info("Market cycle skipped, no symbols to trade")
            return None

        try:
            await self.kiwoom.register_realtime_quotes(symbols)
        except TradingAgentException as e:
            self.logger.warning("Realtime registration failed, continuing with REST quotes", error=str(e))

        quotes = await self.kiwoom.get_quotes(symbols)
        failed = len(symbols) - len(quotes)
        if failed > 0:
            self.logger.warning("Market cycle quote failures", failed=failed)
        if not quotes:
            return None

        await self.store.save_market_quotes([MarketQuoteRecord.from_quote(q) for q in quotes])
        holdings = await self.store.list_holdings()
        state = await self.execution_engine.ensure_portfolio_state()

        decisions = await self.decision_engine.decide_trades(quotes, holdings, state.cash)
        quote_map = {quote.symbol: quote.price for quote in quotes}
        report = await self.execution_engine.execute_decisions(decisions, quote_map)

        self._emit("market", {
            "symbols": symbols,
            "usedFallback": selection.used_fallback,
            "quotes": [q.model_dump(mode="json") for q in quotes],
        })
        self._emit("report", report.model_dump(mode="json"))
        self.logger.info("Market cycle complete", quotes=len(quotes), decisions=len(decisions),
                         executed=len(report.executed), skipped=len(report.skipped))
        return report

    async def run_news_cycle(self) -> List[Any]:
        articles = await self.news.scrape_latest_news()
        refined = await self.news.refine_strategy_with_news()
        self._emit("news", {"articles": len(articles), "strategyUpdated": refined is not None})
        self.logger.info("News cycle complete", articles=len(articles), strategy_updated=refined is not None)
        return articles

    async def market_job(self) -> None:
        try:
            await self.run_market_cycle()
        except Exception as e:
            self.error_logger.error("Market cycle failed", error=str(e), exc_info=True)

    async def news_job(self) -> None:
        try:
            await self.run_news_cycle()
        except Exception as e:
            self.error_logger.error("News cycle failed", error=str(e), exc_info=True)
