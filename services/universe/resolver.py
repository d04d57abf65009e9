from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence

from core.logging import get_logger
from core.schemas.universe import UniverseSelection
from core.storage.base import TradingStore
from core.trading.interfaces import NewsSource
from core.trading.models import UniversePolicy
from services.kiwoom.fields import normalize_symbols
from services.kiwoom.service import KiwoomService
from services.strategy.service import StrategyService
from .ranking import (
    has_market_cap_data,
    liquidity_scores,
    merge_universe,
    rank_by_liquidity,
    rank_by_market_cap,
    rank_by_news,
)
from .service import UniverseService


class UniverseResolver:
    """
    Picks the symbols a market cycle trades.

    Precedence: held positions, top market cap, top trailing liquidity,
    top news mentions. Without a usable catalog the static watch-list is
    used instead.
    """

    def __init__(self, universe: UniverseService, strategy: StrategyService, store: TradingStore,
                 kiwoom: KiwoomService, news: NewsSource, watch_symbols: Sequence[str],
                 news_lookback: int = 20, clock: Optional[Callable[[], datetime]] = None):
        self.universe = universe
        self.strategy = strategy
        self.store = store
        self.kiwoom = kiwoom
        self.news = news
        self.watch_symbols = normalize_symbols(watch_symbols)
        self.news_lookback = news_lookback
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = get_logger("universe_resolver", component="universe")

    def _fallback(self, held: List[str]) -> UniverseSelection:
        return UniverseSelection(
            symbols=merge_universe([held, self.watch_symbols], 0),
            held=held,
            used_fallback=True,
        )

    async def resolve_universe_selection(self, policy: Optional[UniversePolicy] = None) -> UniverseSelection:
        policy = policy or self.strategy.get_universe_policy()
        held = [holding.symbol for holding in await self.store.list_holdings() if holding.quantity > 0]

        entries = await self.universe.get_entries()
        if not entries:
            self.logger.info("Universe catalog empty, using watch symbols", watch_symbols=self.watch_symbols)
            return self._fallback(held)
        if not has_market_cap_data(entries):
            self.logger.warning("Universe catalog has no market cap data, using watch symbols",
                                entries=len(entries))
            return self._fallback(held)

        market_cap = rank_by_market_cap(entries, policy.top_market_cap)
        liquidity = await self._rank_liquidity(entries, policy)

        news: List[str] = []
        if policy.top_news > 0:
            articles = await self.news.get_latest_news(self.news_lookback)
            news = rank_by_news(entries, articles, policy.top_news)

        symbols = merge_universe([held, market_cap, liquidity, news], policy.max_universe)
        self.logger.info("Universe resolved", symbols=len(symbols), held=len(held),
                         market_cap=len(market_cap), liquidity=len(liquidity), news=len(news))
        return UniverseSelection(symbols=symbols, held=held, market_cap=market_cap,
                                 liquidity=liquidity, news=news)

    async def resolve_universe(self, policy: Optional[UniversePolicy] = None) -> List[str]:
        return (await self.resolve_universe_selection(policy)).symbols

    async def _rank_liquidity(self, entries, policy: UniversePolicy) -> List[str]:
        if policy.top_liquidity <= 0:
            return []
        pool_size = max(policy.liquidity_candidates, policy.top_market_cap, policy.top_liquidity)
        candidates = rank_by_market_cap(entries, pool_size)
        if not candidates:
            return []

        since = self._clock() - timedelta(days=policy.liquidity_days)
        history = await self.store.list_market_quotes(candidates, since)
        scores = liquidity_scores(history)

        missing = [symbol for symbol in candidates if symbol not in scores]
        if missing:
            # No stored history yet: score from one live quote
            for quote in await self.kiwoom.get_quotes(missing):
                scores[quote.symbol] = quote.price * quote.volume
        return rank_by_liquidity(scores, candidates, policy.top_liquidity)
