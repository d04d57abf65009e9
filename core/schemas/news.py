from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from core.trading.models import utc_now


class NewsArticle(BaseModel):
    title: str
    url: str
    source: Optional[str] = None
    published_at: Optional[datetime] = None
    summary: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class NewsSignal(BaseModel):
    symbol: str
    name: Optional[str] = None
    mentions: int = 0
    sample_titles: List[str] = Field(default_factory=list)
