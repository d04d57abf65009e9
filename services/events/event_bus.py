import asyncio
from typing import Any, Dict, List

from core.logging import get_logger
from core.schemas.events import RealtimeEvent, RealtimeEventType


class RealtimeEventBus:
    """Fire-and-forget fan-out of realtime events to subscriber queues.

    No delivery guarantee: a subscriber whose queue is full misses the event.
    """

    def __init__(self, queue_size: int = 1000):
        self.queue_size = queue_size
        self._subscribers: List[asyncio.Queue] = []
        self._dropped_events = 0
        self.logger = get_logger("realtime_event_bus", component="events")

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def dropped_events(self) -> int:
        return self._dropped_events

    def emit(self, event_type: str, payload: Dict[str, Any]) -> RealtimeEvent:
        event = RealtimeEvent(type=RealtimeEventType(event_type), data=payload)
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                self._dropped_events += 1
                self.logger.warning("Subscriber queue full, dropping event",
                                    event_type=event.type.value, dropped=self._dropped_events)
        return event
