import asyncio
from collections import deque
from typing import Any, Deque, Dict, Optional

from core.utils.exceptions import RequestTimeoutError


class PendingRequest:
    """Handle for one waiter: its future plus the timer that expires it."""

    __slots__ = ("key", "future", "timeout", "timer")

    def __init__(self, key: str, future: asyncio.Future, timeout: float):
        self.key = key
        self.future = future
        self.timeout = timeout
        self.timer: Optional[asyncio.TimerHandle] = None


class PendingRequestRegistry:
    """Correlates request/response messages on the shared websocket.

    Waiters are queued per transaction name (``trnm``) and resolved FIFO
    when a matching message arrives. Unanswered waiters expire with
    ``RequestTimeoutError`` and are removed from the table.
    """

    def __init__(self):
        self._pending: Dict[str, Deque[PendingRequest]] = {}

    def register(self, key: str, timeout: float) -> PendingRequest:
        loop = asyncio.get_running_loop()
        handle = PendingRequest(key, loop.create_future(), timeout)
        handle.timer = loop.call_later(timeout, self.expire, handle)
        self._pending.setdefault(key, deque()).append(handle)
        return handle

    def resolve(self, key: str, payload: Any) -> bool:
        """Resolve the oldest live waiter for ``key``. Returns False if nobody was waiting."""
        queue = self._pending.get(key)
        while queue:
            handle = queue.popleft()
            self._cancel_timer(handle)
            if not handle.future.done():
                handle.future.set_result(payload)
                self._drop_if_empty(key)
                return True
        self._drop_if_empty(key)
        return False

    def expire(self, handle: PendingRequest) -> None:
        self.discard(handle)
        if not handle.future.done():
            handle.future.set_exception(RequestTimeoutError(
                f"Kiwoom websocket request timeout for {handle.key}",
                key=handle.key,
                timeout_seconds=handle.timeout,
            ))

    def discard(self, handle: PendingRequest) -> None:
        self._cancel_timer(handle)
        queue = self._pending.get(handle.key)
        if queue and handle in queue:
            queue.remove(handle)
        self._drop_if_empty(handle.key)

    def reject_all(self, exc: BaseException) -> None:
        pending, self._pending = self._pending, {}
        for queue in pending.values():
            for handle in queue:
                self._cancel_timer(handle)
                if not handle.future.done():
                    handle.future.set_exception(exc)

    def pending_count(self, key: Optional[str] = None) -> int:
        if key is not None:
            return len(self._pending.get(key, ()))
        return sum(len(queue) for queue in self._pending.values())

    def _drop_if_empty(self, key: str) -> None:
        if key in self._pending and not self._pending[key]:
            del self._pending[key]

    @staticmethod
    def _cancel_timer(handle: PendingRequest) -> None:
        if handle.timer is not None:
            handle.timer.cancel()
            handle.timer = None
