from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, TypeVar, runtime_checkable

from core.schemas.market import RealtimePriceEntry, RealtimeSignal

T = TypeVar("T")


@runtime_checkable
class OrderClient(Protocol):
    """Places real orders. Used by the execution engine outside virtual mode."""

    async def place_order(self, symbol: str, side: str, quantity: int, price: float) -> Dict[str, Any]:
        ...


@runtime_checkable
class RealtimePriceSource(Protocol):
    """Live price lookup honouring the realtime TTL."""

    def get_realtime_price(self, symbol: str) -> Optional[RealtimePriceEntry]:
        ...

    def get_realtime_signal(self, symbol: str) -> RealtimeSignal:
        ...


@runtime_checkable
class JsonGenerator(Protocol):
    """LLM collaborator contract: always returns, falling back on any failure."""

    async def generate_json(self, prompt: str, fallback: T) -> T:
        ...


@runtime_checkable
class NewsSource(Protocol):
    async def get_latest_news(self, limit: int) -> List[Any]:
        ...


@runtime_checkable
class EventSink(Protocol):
    """Fire-and-forget publication of named realtime events."""

    def emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        ...
