from datetime import datetime

from pydantic import BaseModel, Field

from core.trading.models import utc_now


class StrategyRevisionRecord(BaseModel):
    source: str
    content: str
    created_at: datetime = Field(default_factory=utc_now)
