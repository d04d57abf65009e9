"""Pure ranking functions behind universe selection and news signals."""

from collections import defaultdict
from datetime import date, tzinfo
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from core.schemas.market import MarketQuoteRecord
from core.schemas.news import NewsArticle, NewsSignal
from core.schemas.universe import UniverseEntry

KST = ZoneInfo("Asia/Seoul")


def _top(scores: Iterable[Tuple[str, float]], limit: int) -> List[str]:
    """Sort by score descending (stable for ties) and keep the first ``limit`` symbols."""
    if limit <= 0:
        return []
    ranked = sorted(scores, key=lambda item: item[1], reverse=True)
    return [symbol for symbol, _ in ranked[:limit]]


def has_market_cap_data(entries: Sequence[UniverseEntry]) -> bool:
    return any(entry.market_cap is not None and entry.market_cap > 0 for entry in entries)


def rank_by_market_cap(entries: Sequence[UniverseEntry], limit: int) -> List[str]:
    """Top ``limit`` symbols by market cap; entries without a positive cap are excluded."""
    return _top(
        ((entry.symbol, entry.market_cap) for entry in entries
         if entry.market_cap is not None and entry.market_cap > 0),
        limit,
    )


def liquidity_scores(quotes: Iterable[MarketQuoteRecord], tz: tzinfo = KST) -> Dict[str, float]:
    """Per symbol: mean over calendar days of (max volume that day x mean price that day)."""
    days: Dict[str, Dict[date, List[MarketQuoteRecord]]] = defaultdict(lambda: defaultdict(list))
    for quote in quotes:
        days[quote.symbol][quote.as_of.astimezone(tz).date()].append(quote)

    scores: Dict[str, float] = {}
    for symbol, by_day in days.items():
        daily = []
        for rows in by_day.values():
            max_volume = max(row.volume for row in rows)
            mean_price = sum(row.price for row in rows) / len(rows)
            daily.append(max_volume * mean_price)
        scores[symbol] = sum(daily) / len(daily)
    return scores


def rank_by_liquidity(scores: Mapping[str, float], candidates: Sequence[str], limit: int) -> List[str]:
    return _top(((symbol, scores[symbol]) for symbol in candidates if symbol in scores), limit)


def _article_text(article: NewsArticle) -> str:
    return f"{article.title or ''} {article.summary or ''}".lower()


def matching_titles(symbol: str, name: Optional[str], articles: Sequence[NewsArticle]) -> List[str]:
    """Titles of articles whose title or summary mentions the symbol or display name."""
    symbol_key = (symbol or "").lower()
    name_key = (name or "").lower()
    titles = []
    for article in articles:
        text = _article_text(article)
        if (symbol_key and symbol_key in text) or (name_key and name_key in text):
            titles.append(article.title or "")
    return titles


def rank_by_news(entries: Sequence[UniverseEntry], articles: Sequence[NewsArticle], limit: int) -> List[str]:
    if limit <= 0 or not articles:
        return []
    scores = []
    for entry in entries:
        mentions = len(matching_titles(entry.symbol, entry.name, articles))
        if mentions > 0:
            scores.append((entry.symbol, mentions))
    return _top(scores, limit)


def build_news_signals(symbols: Sequence[str], entries: Sequence[UniverseEntry],
                       articles: Sequence[NewsArticle]) -> List[NewsSignal]:
    names = {entry.symbol: entry.name for entry in entries}
    signals = []
    for symbol in symbols:
        name = names.get(symbol) or None
        titles = matching_titles(symbol, name, articles)
        signals.append(NewsSignal(
            symbol=symbol,
            name=name,
            mentions=len(titles),
            sample_titles=[title for title in titles if title][:3],
        ))
    return signals


def merge_universe(groups: Iterable[Sequence[str]], max_universe: int) -> List[str]:
    """Ordered union in group precedence, deduplicated, truncated when ``max_universe`` is positive."""
    seen = set()
    merged = []
    for group in groups:
        for symbol in group:
            if symbol and symbol not in seen:
                seen.add(symbol)
                merged.append(symbol)
    if max_universe > 0:
        merged = merged[:max_universe]
    return merged
