# Kiwoom brokerage service: quotes, rankings, account, orders and realtime push

import asyncio
import random
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import httpx

from core.config.settings import KiwoomSettings
from core.logging import get_api_logger, get_error_logger, get_market_data_logger
from core.schemas.market import Quote, RealtimePriceEntry, RealtimeSignal
from core.storage.base import TradingStore
from core.trading.interfaces import EventSink
from core.utils.exceptions import AuthError, OrderPlacementError, RequestTimeoutError, UpstreamProtocolError
from services.market_data.cache import MarketDataCache
from .audit import ApiCallAuditor
from .auth import TokenManager
from .fields import (
    normalize_symbol,
    normalize_symbols,
    resolve,
    resolve_list,
    resolve_number,
    resolve_text,
    to_number,
)
from .mock import MockKiwoomData
from .models import (
    AccountEvaluation,
    AccountHolding,
    ConditionSearchResult,
    DailyClose,
    IntradayBar,
    IntradaySeries,
    RankedStock,
    StockListing,
)
from .rate_limiter import RequestScheduler
from .rest_client import KiwoomRestClient
from .websocket_client import Connector, KiwoomWebSocketClient

CONDITION_REALTIME_TYPES = ("0B", "0D")


class KiwoomService:
    """
    Facade over the Kiwoom REST and websocket APIs.

    Owns the token manager, the process-wide request scheduler, the shared
    websocket and the realtime market data cache. In mock mode every
    operation returns synthetic data and never touches the network.
    """

    def __init__(
        self,
        settings: KiwoomSettings,
        store: Optional[TradingStore] = None,
        events: Optional[EventSink] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        connect: Optional[Connector] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._owns_http = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=settings.request_timeout_seconds)

        self.auditor = ApiCallAuditor(store, provider="kiwoom")
        self.scheduler = RequestScheduler(settings.min_request_interval_ms)
        self.token_manager = TokenManager(settings, self.http, self.scheduler, self.auditor, clock=self._clock)
        self.rest = KiwoomRestClient(settings, self.http, self.token_manager, self.scheduler, self.auditor)
        self.cache = MarketDataCache(settings.realtime_ttl_ms, clock=self._clock)
        self.websocket = KiwoomWebSocketClient(settings, self.token_manager, self.cache, self.auditor,
                                               events=events, connect=connect)
        self.mock = MockKiwoomData(rng, clock=self._clock)

        self.logger = get_api_logger("kiwoom_service")
        self.market_logger = get_market_data_logger("kiwoom_quotes")
        self.error_logger = get_error_logger("kiwoom_service_errors")

    @property
    def use_mock(self) -> bool:
        return self.settings.mock

    async def _audit_mock(self, method: str, endpoint: str, request_body: Any, response_body: Any) -> None:
        await self.auditor.record(method, endpoint, request_body, response_body, 200, True)

    # Quotes
    async def get_quote(self, symbol: str) -> Quote:
        symbol = normalize_symbol(symbol)
        if self.use_mock:
            quote = self.mock.quote(symbol)
            await self._audit_mock("GET", f"/mock/quote/{symbol}", None, quote.model_dump(mode="json"))
            return quote

        try:
            response = await self.rest.post("stkinfo", "ka10001", {"stk_cd": symbol})
        except Exception as e:
            self.error_logger.error("Failed to fetch quote", symbol=symbol, error=str(e))
            raise

        payload = response.payload
        quote = Quote(
            symbol=symbol,
            price=resolve_number(payload, "price"),
            change_rate=resolve_number(payload, "change_rate"),
            volume=resolve_number(payload, "volume"),
            as_of=self._clock(),
        )
        return self.cache.apply_realtime_to_quote(quote)

    async def get_quotes(self, symbols: Sequence[str]) -> List[Quote]:
        """Fetch quotes concurrently; failed symbols are dropped and counted."""
        results = await asyncio.gather(*(self.get_quote(symbol) for symbol in symbols),
                                       return_exceptions=True)
        quotes = [result for result in results if isinstance(result, Quote)]
        failures = len(results) - len(quotes)
        if failures:
            self.market_logger.warning("Some quotes failed", failed=failures, requested=len(symbols))
        return quotes

    def get_realtime_price(self, symbol: str) -> Optional[RealtimePriceEntry]:
        return self.cache.get_realtime_price(symbol)

    def get_realtime_signal(self, symbol: str) -> RealtimeSignal:
        return self.cache.get_realtime_signal(symbol)

    def apply_realtime_to_quotes(self, quotes: Sequence[Quote]) -> List[Quote]:
        return self.cache.apply_realtime_to_quotes(quotes)

    async def register_realtime_quotes(self, symbols: Iterable[str],
                                       types: Optional[Sequence[str]] = None) -> List[str]:
        symbols = list(symbols)
        if self.use_mock or not symbols:
            return []
        return await self.websocket.register_realtime_quotes(symbols, types)

    # Condition search
    async def get_condition_list(self) -> Dict[str, Any]:
        if self.use_mock:
            payload = self.mock.condition_list()
            await self._audit_mock("WS", self.websocket.url, {"trnm": "CNSRLST"}, payload)
            return payload
        return await self.websocket.send_request("CNSRLST", {"trnm": "CNSRLST"}, api_id="ka10171")

    async def request_condition_search(self, seq: str, search_type: str = "0",
                                       stex_tp: str = "K") -> ConditionSearchResult:
        if self.use_mock:
            payload = self.mock.condition_search(str(seq))
            await self._audit_mock("WS", self.websocket.url, {"trnm": "CNSRREQ", "seq": str(seq)}, payload)
            return ConditionSearchResult(seq=str(seq), symbols=extract_condition_symbols(payload), raw=payload)

        request = {
            "trnm": "CNSRREQ",
            "seq": str(seq),
            "search_type": search_type,
            "stex_tp": stex_tp,
        }
        api_id = "ka10173" if search_type == "1" else "ka10172"
        payload = await self.websocket.send_request("CNSRREQ", request, api_id=api_id)
        symbols = extract_condition_symbols(payload)
        # Realtime condition search keeps pushing, so subscribe quotes and orderbook
        if search_type == "1" and symbols:
            await self.register_realtime_quotes(symbols, CONDITION_REALTIME_TYPES)
        return ConditionSearchResult(seq=str(seq), return_code=payload.get("return_code", 0),
                                     symbols=symbols, raw=payload)

    # Charts and listings
    async def get_daily_close_price(self, symbol: str) -> DailyClose:
        symbol = normalize_symbol(symbol)
        if self.use_mock:
            result = self.mock.daily_close(symbol)
            await self._audit_mock("GET", f"/mock/daily-close/{symbol}", None, result.model_dump(mode="json"))
            return result

        response = await self.rest.post("chart", "ka10081", {"stk_cd": symbol, "base_dt": "", "upd_dt": "1"})
        payload = response.payload
        rows = resolve_list(payload, "ka10081")
        first = rows[0] if rows else payload
        as_of = resolve_text(first, "date")
        return DailyClose(
            symbol=symbol,
            close_price=abs(resolve_number(first, "close")),
            as_of=as_of or self._clock().isoformat(),
        )

    async def get_stock_list(self, market_type: str) -> List[StockListing]:
        """All listed stocks of one market, following ``cont-yn``/``next-key`` continuation."""
        if self.use_mock:
            listings = self.mock.stock_list(market_type)
            await self._audit_mock("GET", f"/mock/stock-list/{market_type}", None,
                                   [listing.model_dump(mode="json") for listing in listings])
            return listings

        listings: List[StockListing] = []
        cont_yn, next_key = None, None
        while True:
            response = await self.rest.post("stkinfo", "ka10099", {"mrkt_tp": market_type},
                                             cont_yn=cont_yn, next_key=next_key)
            for row in resolve_list(response.payload, "ka10099"):
                symbol = normalize_symbol(resolve_text(row, "symbol"))
                if not symbol:
                    continue
                listings.append(StockListing(
                    symbol=symbol,
                    name=resolve_text(row, "name"),
                    list_count=resolve_number(row, "list_count"),
                    last_price=abs(resolve_number(row, "last_price")),
                    market_code=resolve_text(row, "market_code") or None,
                    market_name=resolve_text(row, "market_name") or None,
                ))
            if response.cont_yn != "Y":
                break
            cont_yn, next_key = "Y", response.next_key

        self.logger.info("Fetched stock list", market_type=market_type, count=len(listings))
        return listings

    async def get_top_trading_value(self, market_type: str, include_managed: bool = False,
                                    stex_type: str = "1") -> List[RankedStock]:
        if self.use_mock:
            ranked = self.mock.top_trading_value()
            await self._audit_mock("GET", f"/mock/top-trading-value/{market_type}",
                                   {"marketType": market_type, "includeManaged": include_managed},
                                   [row.model_dump(mode="json") for row in ranked])
            return ranked

        body = {
            "mrkt_tp": market_type,
            "mang_stk_incls": "1" if include_managed else "0",
            "stex_tp": stex_type,
        }
        response = await self.rest.post("rkinfo", "ka10032", body)
        return [
            RankedStock(
                symbol=normalize_symbol(resolve_text(row, "rank_symbol")),
                name=resolve_text(row, "rank_name"),
                price=abs(resolve_number(row, "rank_price")),
                trade_value=resolve_number(row, "trade_value"),
            )
            for row in resolve_list(response.payload, "ka10032")
        ]

    async def get_top_trading_volume(self, market_type: str, include_managed: bool = False,
                                     credit_type: str = "0", volume_threshold: str = "0",
                                     price_type: str = "0", trade_value_type: str = "0",
                                     market_open_type: str = "1",
                                     stex_type: str = "1") -> List[RankedStock]:
        if self.use_mock:
            ranked = self.mock.top_trading_volume()
            await self._audit_mock("GET", f"/mock/top-trading-volume/{market_type}",
                                   {"marketType": market_type, "includeManaged": include_managed},
                                   [row.model_dump(mode="json") for row in ranked])
            return ranked

        # ka10030 inverts the managed-stock flag relative to ka10032
        body = {
            "mrkt_tp": market_type,
            "sort_tp": "1",
            "mang_stk_incls": "0" if include_managed else "1",
            "crd_tp": credit_type,
            "trde_qty_tp": volume_threshold,
            "pric_tp": price_type,
            "trde_prica_tp": trade_value_type,
            "mrkt_open_tp": market_open_type,
            "stex_tp": stex_type,
        }
        response = await self.rest.post("rkinfo", "ka10030", body)
        return [
            RankedStock(
                symbol=normalize_symbol(resolve_text(row, "rank_symbol")),
                name=resolve_text(row, "rank_name"),
                price=abs(resolve_number(row, "rank_price")),
                volume=resolve_number(row, "trade_volume"),
            )
            for row in resolve_list(response.payload, "ka10030")
        ]

    async def get_intraday_ticks(self, symbol: str, tick_scope: str,
                                 adjusted_price: str = "1") -> IntradaySeries:
        symbol = normalize_symbol(symbol)
        if self.use_mock:
            series = self.mock.intraday(symbol, volume=120)
            await self._audit_mock("GET", f"/mock/intraday-ticks/{symbol}",
                                   {"symbol": symbol, "tickScope": tick_scope}, series.model_dump(mode="json"))
            return series

        body = {"stk_cd": symbol, "tic_scope": tick_scope, "upd_stkpc_tp": adjusted_price}
        response = await self.rest.post("chart", "ka10079", body)
        return self._intraday_series(symbol, response.payload, "ka10079")

    async def get_intraday_minutes(self, symbol: str, minute_scope: str, base_date: str = "",
                                   adjusted_price: str = "1") -> IntradaySeries:
        symbol = normalize_symbol(symbol)
        if self.use_mock:
            series = self.mock.intraday(symbol, volume=2400)
            await self._audit_mock("GET", f"/mock/intraday-minutes/{symbol}",
                                   {"symbol": symbol, "minuteScope": minute_scope}, series.model_dump(mode="json"))
            return series

        body = {
            "stk_cd": symbol,
            "tic_scope": minute_scope,
            "upd_stkpc_tp": adjusted_price,
            "base_dt": base_date,
        }
        response = await self.rest.post("chart", "ka10080", body)
        return self._intraday_series(symbol, response.payload, "ka10080")

    @staticmethod
    def _intraday_series(symbol: str, payload: Dict[str, Any], api_id: str) -> IntradaySeries:
        bars = [
            IntradayBar(
                price=abs(resolve_number(row, "bar_price")),
                volume=resolve_number(row, "bar_volume"),
                time=resolve_text(row, "bar_time"),
                open=abs(resolve_number(row, "bar_open")),
                high=abs(resolve_number(row, "bar_high")),
                low=abs(resolve_number(row, "bar_low")),
                change=resolve_number(row, "bar_change"),
                change_sign=resolve_text(row, "bar_change_sign"),
            )
            for row in resolve_list(payload, api_id)
        ]
        symbol = normalize_symbol(str(payload.get("stk_cd") or symbol))
        return IntradaySeries(symbol=symbol, bars=bars, source=api_id)

    # Account and orders
    async def get_account_evaluation(self, query_type: str = "1",
                                     exchange_type: str = "KRX") -> AccountEvaluation:
        if self.use_mock:
            evaluation = self.mock.account_evaluation()
            await self._audit_mock("GET", "/mock/account-evaluation",
                                   {"queryType": query_type, "exchangeType": exchange_type},
                                   evaluation.model_dump(mode="json"))
            return evaluation

        response = await self.rest.post("acnt", "kt00018", {"qry_tp": query_type, "dmst_stex_tp": exchange_type})
        payload = response.payload
        holdings = [
            AccountHolding(
                symbol=normalize_symbol(resolve_text(row, "acct_symbol")),
                name=resolve_text(row, "acct_name"),
                quantity=resolve_number(row, "acct_quantity"),
                tradable_quantity=resolve_number(row, "acct_tradable"),
                avg_price=abs(resolve_number(row, "acct_avg_price")),
                price=abs(resolve_number(row, "acct_price")),
                market_value=abs(resolve_number(row, "acct_market_value")),
                unrealized_pnl=resolve_number(row, "acct_pnl"),
                profit_rate=resolve_number(row, "acct_profit_rate"),
            )
            for row in resolve_list(payload, "kt00018")
        ]
        holdings_value = to_number(payload.get("tot_evlt_amt", 0))
        total_asset = to_number(payload.get("prsm_dpst_aset_amt", 0))
        return AccountEvaluation(
            cash=total_asset - holdings_value,
            total_asset=total_asset,
            holdings_value=holdings_value,
            holdings=holdings,
            raw=payload,
        )

    async def place_order(self, symbol: str, side: str, quantity: int, price: float) -> Dict[str, Any]:
        """Place a real order; any failure surfaces as ``OrderPlacementError``."""
        symbol = normalize_symbol(symbol)
        order = {"symbol": symbol, "side": side, "quantity": quantity, "price": price}
        if self.use_mock:
            payload = self.mock.order(order)
            await self._audit_mock("POST", "/mock/orders", order, payload)
            return payload

        try:
            payload = await self.rest.post_order(order)
        except (AuthError, UpstreamProtocolError, RequestTimeoutError, httpx.HTTPError) as e:
            self.error_logger.error("Order placement failed", symbol=symbol, side=side,
                                    quantity=quantity, error=str(e))
            raise OrderPlacementError(f"Order placement failed for {symbol}: {e}",
                                      symbol=symbol, side=side) from e

        self.logger.info("Order placed", symbol=symbol, side=side, quantity=quantity, price=price)
        return payload

    async def close(self) -> None:
        await self.websocket.close()
        if self._owns_http:
            await self.http.aclose()


def extract_condition_symbols(payload: Dict[str, Any]) -> List[str]:
    rows = payload.get("data") or []
    if not isinstance(rows, list):
        return []
    return normalize_symbols(
        str(resolve(row, "condition_symbol") or "") for row in rows if isinstance(row, dict)
    )
