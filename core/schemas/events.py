# Realtime event envelope handed to dashboards and other downstream listeners

from pydantic import BaseModel, Field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict
import uuid


class RealtimeEventType(str, Enum):
    CONDITION = "condition"
    MARKET = "market"
    NEWS = "news"
    REPORT = "report"


class RealtimeEvent(BaseModel):
    """Envelope for a fire-and-forget event."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    type: RealtimeEventType
    ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: Dict[str, Any] = Field(default_factory=dict)
