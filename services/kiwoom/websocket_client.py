import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from core.config.settings import KiwoomSettings
from core.logging import get_market_data_logger, get_error_logger
from core.trading.interfaces import EventSink
from core.utils.exceptions import AuthError, ConnectionClosedError, UpstreamProtocolError
from services.market_data.cache import MarketDataCache
from .audit import ApiCallAuditor
from .auth import TokenManager
from .fields import normalize_symbol, normalize_symbols, resolve, to_number
from .pending_requests import PendingRequestRegistry

Connector = Callable[[str, Dict[str, str]], Awaitable[Any]]

DEFAULT_REALTIME_TYPES = ("0B",)


async def default_connect(url: str, headers: Dict[str, str]):
    return await websockets.connect(url, additional_headers=headers)


class KiwoomWebSocketClient:
    """Single shared Kiwoom websocket.

    Handles LOGIN, PING echo, REAL push routing into the market data cache,
    request/response correlation by ``trnm`` and one delayed reconnect after
    an established connection drops.
    """

    def __init__(self, settings: KiwoomSettings, token_manager: TokenManager,
                 cache: MarketDataCache, auditor: ApiCallAuditor,
                 events: Optional[EventSink] = None,
                 connect: Optional[Connector] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.settings = settings
        self.token_manager = token_manager
        self.cache = cache
        self.auditor = auditor
        self.events = events
        self._connect = connect or default_connect
        self._sleep = sleep

        self.pending = PendingRequestRegistry()
        # symbol -> realtime types it was registered with
        self.subscriptions: Dict[str, Tuple[str, ...]] = {}

        self._ws = None
        self._connected = False
        self._closing = False
        self._connect_task: Optional[asyncio.Task] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._login_future: Optional[asyncio.Future] = None

        self.logger = get_market_data_logger("kiwoom_websocket")
        self.error_logger = get_error_logger("kiwoom_websocket_errors")

    @property
    def url(self) -> str:
        return self.settings.resolve_ws_url()

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and self._connected

    @property
    def subscribed_symbols(self) -> List[str]:
        return list(self.subscriptions)

    async def ensure_connected(self):
        """Return the live connection, opening and logging in at most once concurrently."""
        if self.is_connected:
            return self._ws

        self._closing = False
        if self._connect_task is None:
            self._connect_task = asyncio.ensure_future(self._open())
        return await asyncio.shield(self._connect_task)

    async def _open(self):
        try:
            return await self._connect_and_login()
        finally:
            self._connect_task = None

    async def _connect_and_login(self):
        token = await self.token_manager.get_access_token()
        await self._drop_connection()

        url = self.url
        try:
            ws = await self._connect(url, {"authorization": f"Bearer {token}"})
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            self.error_logger.error("Kiwoom websocket connect failed", url=url, error=str(e))
            raise UpstreamProtocolError(f"Kiwoom websocket connect failed: {e}", api_id="CONNECT") from e
        self._ws = ws
        self._connected = False
        self._login_future = asyncio.get_running_loop().create_future()
        self._reader_task = asyncio.ensure_future(self._read_loop(ws))

        try:
            await ws.send(json.dumps({"trnm": "LOGIN", "token": token}))
            await asyncio.wait_for(self._login_future, timeout=self.settings.ws_login_timeout_seconds)
        except asyncio.TimeoutError as e:
            await self._drop_connection()
            raise UpstreamProtocolError("Kiwoom websocket LOGIN timed out", api_id="LOGIN") from e
        except Exception:
            await self._drop_connection()
            raise
        finally:
            self._login_future = None

        self._connected = True
        self.logger.info("Kiwoom websocket connected", url=url)

        if self.subscriptions:
            await self._send_registrations(ws, self.subscriptions)
        return ws

    async def _drop_connection(self) -> None:
        """Close the current socket without scheduling a reconnect."""
        ws, reader = self._ws, self._reader_task
        self._ws = None
        self._connected = False
        self._reader_task = None
        if reader is not None and not reader.done() and reader is not asyncio.current_task():
            reader.cancel()
        if ws is not None:
            await self._close_quietly(ws)

    async def _read_loop(self, ws) -> None:
        try:
            async for message in ws:
                try:
                    await self.handle_message(ws, message)
                except ConnectionClosed:
                    raise
                except Exception as e:
                    # A bad frame must not take down the shared connection
                    self.error_logger.error("Failed to handle websocket message",
                                            error=str(e), exc_info=True)
        except ConnectionClosed as e:
            self.logger.warning("Kiwoom websocket closed", error=str(e))
        finally:
            if self._handle_close(ws):
                await self._close_quietly(ws)

    async def _close_quietly(self, ws) -> None:
        try:
            await ws.close()
        except Exception as e:
            self.logger.debug("Ignoring error while closing stale websocket", error=str(e))

    def _handle_close(self, ws) -> bool:
        """Tear down state for ``ws`` if it is still current. Returns whether it was."""
        if ws is not self._ws:
            return False
        was_connected = self._connected
        self._ws = None
        self._connected = False
        self._reader_task = None

        closed = ConnectionClosedError("Kiwoom websocket closed")
        if self._login_future is not None and not self._login_future.done():
            self._login_future.set_exception(closed)
        self.pending.reject_all(closed)

        if was_connected and not self._closing:
            self._schedule_reconnect()
        return True

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.ensure_future(self._reconnect_after_delay())

    async def _reconnect_after_delay(self) -> None:
        await self._sleep(self.settings.reconnect_delay_seconds)
        self._reconnect_task = None
        if self._closing:
            return
        try:
            await self.ensure_connected()
        except Exception as e:
            self.error_logger.warning("Kiwoom websocket reconnect failed", error=str(e))

    @property
    def reconnect_scheduled(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    # Inbound
    async def handle_message(self, ws, raw: Any) -> None:
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        if not raw:
            return
        try:
            payload = json.loads(raw)
        except ValueError:
            self.logger.debug("Skipping non-JSON websocket frame")
            return
        if not isinstance(payload, dict):
            return

        trnm = str(payload.get("trnm", ""))
        if trnm == "PING":
            await ws.send(raw)
            return
        if trnm == "LOGIN":
            self._resolve_login(payload)
            return
        if trnm == "REAL":
            self._handle_real(payload)
            return
        if not self.pending.resolve(trnm, payload):
            self.logger.debug("Unmatched websocket response", trnm=trnm)

    def _resolve_login(self, payload: Dict[str, Any]) -> None:
        future = self._login_future
        if future is None or future.done():
            return
        return_code = str(payload.get("return_code", ""))
        if return_code == "0":
            future.set_result(payload)
        else:
            message = payload.get("return_msg") or return_code
            future.set_exception(AuthError(f"Kiwoom WS LOGIN failed: {message}"))

    def _handle_real(self, payload: Dict[str, Any]) -> None:
        rows = payload.get("data") or []
        if not isinstance(rows, list):
            return
        for entry in rows:
            if not isinstance(entry, dict):
                continue
            values = entry.get("values") or {}
            if not isinstance(values, dict):
                self.logger.debug("Skipping REAL entry with malformed values", item=entry.get("item"))
                continue
            symbol = normalize_symbol(
                str(resolve(values, "rt_symbol") or entry.get("item") or entry.get("name") or "")
            )
            if not symbol:
                continue

            realtime_type = str(entry.get("type", ""))
            condition_flag = resolve(values, "rt_condition_flag")
            if condition_flag in ("I", "D") and self.events is not None:
                self.events.emit("condition", {
                    "action": condition_flag,
                    "symbol": symbol,
                    "time": resolve(values, "rt_time"),
                    "raw": entry,
                })

            if realtime_type == "0D":
                bid_total = to_number(resolve(values, "rt_bid_total", 0))
                ask_total = to_number(resolve(values, "rt_ask_total", 0))
                self.cache.update_orderbook(symbol, bid_total, ask_total, realtime_type)
                continue

            price = abs(to_number(resolve(values, "rt_price", 0)))
            if price:
                self.cache.update_price(symbol, price, realtime_type)

    # Outbound
    async def send_request(self, trnm: str, payload: Dict[str, Any], api_id: Optional[str] = None,
                           timeout: Optional[float] = None) -> Dict[str, Any]:
        """Send a message and wait for the next inbound message with the same ``trnm``."""
        ws = await self.ensure_connected()
        handle = self.pending.register(trnm, timeout or self.settings.ws_request_timeout_seconds)
        try:
            await ws.send(json.dumps(payload))
            logged = {**payload, "apiId": api_id} if api_id else payload
            await self.auditor.record("WS", self.url, logged, {"status": "sent"}, 200, True)
            return await handle.future
        finally:
            self.pending.discard(handle)

    async def register_realtime_quotes(self, symbols: Iterable[str],
                                       types: Optional[Sequence[str]] = None) -> List[str]:
        """Subscribe only symbols not yet subscribed. Returns the newly registered symbols."""
        realtime_types = tuple(types) if types else DEFAULT_REALTIME_TYPES
        requested = normalize_symbols(symbols)
        if all(symbol in self.subscriptions for symbol in requested):
            return []

        # Connect first: a fresh login re-registers everything already in subscriptions
        ws = await self.ensure_connected()
        new_symbols = [symbol for symbol in requested if symbol not in self.subscriptions]
        if not new_symbols:
            return []

        for symbol in new_symbols:
            self.subscriptions[symbol] = realtime_types
        try:
            payload = self._registration_payload(new_symbols, realtime_types)
            await ws.send(json.dumps(payload))
        except Exception:
            for symbol in new_symbols:
                self.subscriptions.pop(symbol, None)
            raise

        await self.auditor.record("WS", self.url, payload, {"status": "sent"}, 200, True)
        self.logger.info("Registered realtime quotes", symbols=new_symbols, types=list(realtime_types))
        return new_symbols

    @staticmethod
    def _registration_payload(symbols: List[str], types: Sequence[str]) -> Dict[str, Any]:
        return {
            "trnm": "REG",
            "grp_no": "1",
            "refresh": "1",
            "data": [{"item": list(symbols), "type": list(types)}],
        }

    async def _send_registrations(self, ws, subscriptions: Dict[str, Tuple[str, ...]]) -> None:
        groups: Dict[Tuple[str, ...], List[str]] = {}
        for symbol, types in subscriptions.items():
            groups.setdefault(types, []).append(symbol)
        for types, symbols in groups.items():
            await ws.send(json.dumps(self._registration_payload(symbols, types)))
        self.logger.info("Re-registered realtime quotes", count=len(subscriptions))

    async def close(self) -> None:
        self._closing = True
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None
        await self._drop_connection()
        self.pending.reject_all(ConnectionClosedError("Kiwoom websocket client closed"))
