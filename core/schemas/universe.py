from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from core.trading.models import utc_now


class UniverseEntry(BaseModel):
    symbol: str
    name: Optional[str] = None
    market_cap: Optional[float] = None
    market_code: Optional[str] = None
    market_name: Optional[str] = None


class UniverseRevisionRecord(BaseModel):
    source: str
    note: Optional[str] = None
    entry_count: int
    created_at: datetime = Field(default_factory=utc_now)


class UniverseSelection(BaseModel):
    """Resolved trading universe plus the ranking lists it was built from."""
    symbols: List[str] = Field(default_factory=list)
    held: List[str] = Field(default_factory=list)
    market_cap: List[str] = Field(default_factory=list)
    liquidity: List[str] = Field(default_factory=list)
    news: List[str] = Field(default_factory=list)
    used_fallback: bool = False
