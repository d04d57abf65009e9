import json
from calendar import timegm
from datetime import datetime, timezone
from typing import Any, List, Optional

import feedparser
import httpx

from core.config.settings import NewsSettings
from core.logging import get_logger
from core.schemas.news import NewsArticle
from core.storage.base import TradingStore
from services.llm.service import LLMService
from services.strategy.service import StrategyService

REFINEMENT_SOURCE = "news-refinement"


def _published_at(entry: Any) -> Optional[datetime]:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return None
    return datetime.fromtimestamp(timegm(parsed), tz=timezone.utc)


def parse_feed(content: str, feed_url: str, limit: int = 10) -> List[NewsArticle]:
    """Top ``limit`` feed items as articles; items without a link or a title are skipped."""
    parsed = feedparser.parse(content)
    source = parsed.feed.get("title") or feed_url
    articles = []
    for entry in parsed.entries[:limit]:
        link = entry.get("link")
        title = entry.get("title")
        if not link or not title:
            continue
        articles.append(NewsArticle(
            title=title,
            url=link,
            source=source,
            published_at=_published_at(entry),
            summary=entry.get("summary") or None,
        ))
    return articles


class NewsService:
    """RSS news collection and LLM refinement of the strategy document."""

    def __init__(self, settings: NewsSettings, store: TradingStore, llm: LLMService,
                 strategy: StrategyService, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.store = store
        self.llm = llm
        self.strategy = strategy
        self.http = http_client
        self.logger = get_logger("news_service", component="news")

    async def get_latest_news(self, limit: int = 20) -> List[NewsArticle]:
        return await self.store.latest_news(limit)

    async def _fetch(self, url: str) -> str:
        if self.http is not None:
            response = await self.http.get(url, follow_redirects=True)
        else:
            async with httpx.AsyncClient(timeout=self.settings.request_timeout_seconds) as client:
                response = await client.get(url, follow_redirects=True)
        response.raise_for_status()
        return response.text

    async def scrape_latest_news(self) -> List[NewsArticle]:
        articles: List[NewsArticle] = []
        for feed_url in self.settings.feeds:
            try:
                content = await self._fetch(feed_url)
            except httpx.HTTPError as e:
                self.logger.warning("Failed to scrape feed", feed=feed_url, error=str(e))
                continue
            items = parse_feed(content, feed_url, self.settings.items_per_feed)
            self.logger.info("Scraped feed", feed=feed_url, items=len(items))
            articles.extend(items)

        if articles:
            await self.store.upsert_news_articles(articles)
        return articles

    async def refine_strategy_with_news(self, limit: int = 20) -> Optional[str]:
        """Ask the LLM to rewrite the strategy from recent news. Returns the new text, if any."""
        latest = await self.store.latest_news(limit)
        if not latest:
            return None

        current = self.strategy.get_current_strategy()
        news_json = json.dumps(
            [{"title": a.title, "summary": a.summary, "source": a.source} for a in latest],
            ensure_ascii=False,
        )
        prompt = "\n\n".join([
            "You are an equity trading strategy updater.",
            "Update the strategy markdown for short-term trading using latest news.",
            "Keep it practical and risk-aware.",
            "Return markdown only.",
            "Current strategy:",
            current,
            "Latest news:",
            news_json,
        ])

        updated = (await self.llm.generate_text(prompt)).strip()
        if not updated:
            self.logger.info("Strategy refinement produced no output")
            return None
        await self.strategy.update_strategy(updated, REFINEMENT_SOURCE)
        return updated
