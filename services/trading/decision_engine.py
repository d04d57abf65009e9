import json
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from core.logging import get_trading_logger
from core.schemas.market import Quote, RealtimeSignal
from core.schemas.news import NewsArticle, NewsSignal
from core.trading.interfaces import JsonGenerator, NewsSource, RealtimePriceSource
from core.trading.models import Holding, TradeDecision, TradeSide, TradingPolicy
from services.kiwoom.fields import normalize_symbol
from services.strategy.service import StrategyService
from services.universe.ranking import build_news_signals
from services.universe.service import UniverseService

TAKE_PROFIT_CHANGE = 2.5
STOP_LOSS_CHANGE = -2.5
MOMENTUM_ENTRY_CHANGE = 1.2


def rule_based_decisions(quotes: Sequence[Quote], holdings: Sequence[Holding]) -> List[TradeDecision]:
    """Deterministic decisions used whenever the LLM gives nothing usable."""
    held = {holding.symbol: holding for holding in holdings}
    decisions = []
    for quote in quotes:
        holding = held.get(quote.symbol)
        if holding and quote.change_rate >= TAKE_PROFIT_CHANGE:
            decisions.append(TradeDecision(
                symbol=quote.symbol,
                side=TradeSide.SELL,
                quantity=max(1, holding.quantity // 2),
                reason="Fallback take-profit rule (+2.5% or more)",
                confidence=0.6,
            ))
        if holding and quote.change_rate <= STOP_LOSS_CHANGE:
            decisions.append(TradeDecision(
                symbol=quote.symbol,
                side=TradeSide.SELL,
                quantity=holding.quantity,
                reason="Fallback stop-loss rule (-2.5% or less)",
                confidence=0.7,
            ))
        if not holding and quote.change_rate > MOMENTUM_ENTRY_CHANGE:
            decisions.append(TradeDecision(
                symbol=quote.symbol,
                side=TradeSide.BUY,
                quantity=1,
                reason="Fallback momentum entry rule",
                confidence=0.4,
            ))
    return decisions


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def build_decision_prompt(strategy: str, policy: TradingPolicy, cash: float,
                          holdings: Sequence[Holding], quotes: Sequence[Quote],
                          news: Sequence[NewsArticle], news_signals: Sequence[NewsSignal],
                          realtime_signals: Sequence[RealtimeSignal]) -> str:
    quote_rows = [
        {"symbol": q.symbol, "price": q.price, "changeRate": q.change_rate, "volume": q.volume}
        for q in quotes
    ]
    news_rows = [
        {"title": a.title, "summary": a.summary, "source": a.source,
         "publishedAt": a.published_at.isoformat() if a.published_at else None}
        for a in news
    ]
    return "\n\n".join([
        "Return JSON array only.",
        "Each item: {symbol, side(BUY|SELL|HOLD), quantity, reason, confidence}",
        "Use short-term strategy and current holdings.",
        f"Cash available: {cash}",
        f"Trading policy: {_dumps(policy.model_dump())}",
        f"Strategy markdown:\n{strategy}",
        f"Holdings:{_dumps([h.model_dump() for h in holdings])}",
        f"Quotes:{_dumps(quote_rows)}",
        f"Latest news:{_dumps(news_rows)}",
        f"News signals:{_dumps([s.model_dump() for s in news_signals])}",
        f"Realtime signals:{_dumps([s.model_dump(mode='json') for s in realtime_signals])}",
    ])


def parse_llm_decisions(raw: Any) -> Optional[List[TradeDecision]]:
    """Validate an LLM reply item by item. ``None`` means the reply is unusable."""
    if isinstance(raw, dict) and isinstance(raw.get("decisions"), list):
        raw = raw["decisions"]
    if not isinstance(raw, list):
        return None

    decisions = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        item = dict(item)
        if isinstance(item.get("side"), str):
            item["side"] = item["side"].strip().upper()
        if isinstance(item.get("symbol"), str):
            item["symbol"] = normalize_symbol(item["symbol"])
        if item.get("reason") is None:
            item["reason"] = ""
        try:
            decisions.append(TradeDecision.model_validate(item))
        except ValidationError:
            continue
    return decisions


def actionable(decisions: Sequence[TradeDecision]) -> List[TradeDecision]:
    return [d for d in decisions if d.side != TradeSide.HOLD and d.quantity > 0]


class DecisionEngine:
    """Turns quotes, holdings and context into BUY/SELL intents via the LLM with a rule fallback."""

    def __init__(self, llm: JsonGenerator, strategy: StrategyService, news: NewsSource,
                 universe: UniverseService, realtime: RealtimePriceSource, news_lookback: int = 20):
        self.llm = llm
        self.strategy = strategy
        self.news = news
        self.universe = universe
        self.realtime = realtime
        self.news_lookback = news_lookback
        self.logger = get_trading_logger("decision_engine")

    async def decide_trades(self, quotes: Sequence[Quote], holdings: Sequence[Holding],
                            cash: float) -> List[TradeDecision]:
        fallback = rule_based_decisions(quotes, holdings)

        strategy = self.strategy.get_current_strategy()
        policy = self.strategy.get_trading_policy()
        latest_news = await self.news.get_latest_news(self.news_lookback)
        entries = await self.universe.get_entries()
        symbols = [quote.symbol for quote in quotes]
        news_signals = build_news_signals(symbols, entries, latest_news)
        realtime_signals = [self.realtime.get_realtime_signal(symbol) for symbol in symbols]

        prompt = build_decision_prompt(strategy, policy, cash, holdings, quotes,
                                       latest_news, news_signals, realtime_signals)
        raw = await self.llm.generate_json(prompt, None)

        decisions = parse_llm_decisions(raw) if raw is not None else None
        if decisions is None:
            self.logger.info("Using rule-based fallback decisions", count=len(fallback))
            decisions = fallback
        else:
            self.logger.info("LLM decisions received", count=len(decisions))
        return actionable(decisions)
