import json
import random
from unittest.mock import AsyncMock

import httpx
import pytest

from core.utils.exceptions import OrderPlacementError
from services.kiwoom.service import KiwoomService, extract_condition_symbols
from tests.fakes import FakeClock


def _routes(handlers):
    """Dispatch MockTransport requests on path, answering the token endpoint automatically."""
    calls = []

    def handler(request):
        calls.append(request)
        if request.url.path == "/oauth2/token":
            return httpx.Response(200, json={"token": "tok", "expires_in": 3600})
        return handlers[(request.url.path, request.headers.get("api-id"))](request)

    return handler, calls


def _service(settings, store, handler, clock=None):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return KiwoomService(settings, store=store, http_client=http, clock=clock or FakeClock())


@pytest.mark.asyncio
async def test_mock_mode_returns_synthetic_quote_and_audits(kiwoom_settings, store):
    settings = kiwoom_settings.model_copy(update={"mock": True})
    service = KiwoomService(settings, store=store, rng=random.Random(7), clock=FakeClock())

    quote = await service.get_quote("005930")

    assert 50_000 <= quote.price <= 150_000
    assert -3 <= quote.change_rate <= 3
    assert store.api_calls[-1].endpoint == "/mock/quote/005930"
    assert await service.register_realtime_quotes(["005930"]) == []
    await service.close()


@pytest.mark.asyncio
async def test_quote_uses_absolute_price_and_realtime_overlay(kiwoom_settings, store):
    handler, _ = _routes({
        ("/api/dostk/stkinfo", "ka10001"): lambda r: httpx.Response(
            200, json={"return_code": 0, "cur_prc": "-70,000", "flu_rt": "-1.20", "trde_qty": "1,500"}),
    })
    clock = FakeClock()
    service = _service(kiwoom_settings, store, handler, clock)

    quote = await service.get_quote("005930")
    assert quote.price == 70_000
    assert quote.change_rate == -1.2
    assert quote.volume == 1500

    service.cache.update_price("005930", 70_400)
    assert (await service.get_quote("005930")).price == 70_400
    await service.close()


@pytest.mark.asyncio
async def test_get_quotes_drops_failed_symbols(kiwoom_settings, store):
    def quote(request):
        symbol = json.loads(request.content)["stk_cd"]
        if symbol == "999999":
            return httpx.Response(200, json={"return_code": 1, "return_msg": "unknown"})
        return httpx.Response(200, json={"return_code": 0, "cur_prc": "1000"})

    handler, _ = _routes({("/api/dostk/stkinfo", "ka10001"): quote})
    service = _service(kiwoom_settings, store, handler)

    quotes = await service.get_quotes(["005930", "999999", "000660"])
    assert [q.symbol for q in quotes] == ["005930", "000660"]
    await service.close()


@pytest.mark.asyncio
async def test_stock_list_follows_continuation(kiwoom_settings, store):
    pages = [
        httpx.Response(200, json={"return_code": 0, "list": [
            {"code": "005930", "name": "Samsung", "listCount": "100", "lastPrice": "70000", "marketCode": "0"},
        ]}, headers={"cont-yn": "Y", "next-key": "page-2"}),
        httpx.Response(200, json={"return_code": 0, "list": [
            {"code": "000660", "name": "SK hynix", "listCount": "10", "lastPrice": "-150000"},
        ]}),
    ]
    next_keys = []

    def stock_list(request):
        next_keys.append(request.headers.get("next-key"))
        return pages.pop(0)

    handler, _ = _routes({("/api/dostk/stkinfo", "ka10099"): stock_list})
    service = _service(kiwoom_settings, store, handler)

    listings = await service.get_stock_list("0")
    assert [l.symbol for l in listings] == ["005930", "000660"]
    assert listings[1].last_price == 150_000
    assert listings[0].market_cap == 7_000_000
    assert next_keys == [None, "page-2"]
    await service.close()


@pytest.mark.asyncio
async def test_top_trading_volume_inverts_managed_flag(kiwoom_settings, store):
    bodies = []

    def ranking(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"return_code": 0, "tdy_trde_qty_upper": [
            {"stk_cd": "005930", "stk_nm": "Samsung", "cur_prc": "-70000", "trde_qty": "900"},
        ]})

    handler, _ = _routes({("/api/dostk/rkinfo", "ka10030"): ranking})
    service = _service(kiwoom_settings, store, handler)

    ranked = await service.get_top_trading_volume("0", include_managed=True)
    assert bodies[0]["mang_stk_incls"] == "0"
    assert ranked[0].price == 70_000 and ranked[0].volume == 900
    await service.close()


@pytest.mark.asyncio
async def test_account_evaluation_derives_cash(kiwoom_settings, store):
    handler, _ = _routes({
        ("/api/dostk/acnt", "kt00018"): lambda r: httpx.Response(200, json={
            "return_code": 0, "tot_evlt_amt": "300,000", "prsm_dpst_aset_amt": "1,000,000",
            "acnt_evlt_remn_indv_tot": [{"stk_cd": "A005930", "rmnd_qty": "3", "pur_pric": "65000"}],
        }),
    })
    service = _service(kiwoom_settings, store, handler)

    evaluation = await service.get_account_evaluation()
    assert evaluation.cash == 700_000
    assert evaluation.holdings[0].symbol == "005930"
    assert evaluation.holdings[0].quantity == 3
    await service.close()


@pytest.mark.asyncio
async def test_failed_order_raises_order_placement_error(kiwoom_settings, store):
    handler, _ = _routes({
        ("/orders", None): lambda r: httpx.Response(400, json={"return_code": 1, "return_msg": "rejected"}),
    })
    service = _service(kiwoom_settings, store, handler)

    with pytest.raises(OrderPlacementError) as exc_info:
        await service.place_order("005930", "BUY", 1, 70_000)
    assert exc_info.value.symbol == "005930"
    await service.close()


@pytest.mark.asyncio
async def test_realtime_condition_search_registers_quotes_and_orderbook(kiwoom_settings, store):
    handler, _ = _routes({})
    service = _service(kiwoom_settings, store, handler)
    service.websocket = AsyncMock()
    service.websocket.send_request.return_value = {
        "trnm": "CNSRREQ", "return_code": 0, "data": [{"jmcode": "A005930"}, {"jmcode": "000660"}],
    }

    result = await service.request_condition_search("3", search_type="1")

    assert result.symbols == ["005930", "000660"]
    assert service.websocket.send_request.await_args.kwargs["api_id"] == "ka10173"
    service.websocket.register_realtime_quotes.assert_awaited_once_with(["005930", "000660"], ("0B", "0D"))
    await service.http.aclose()


def test_extract_condition_symbols_skips_bad_rows():
    payload = {"data": [{"jmcode": "A005930"}, "junk", {"code": "005930"}, {"other": 1}]}
    assert extract_condition_symbols(payload) == ["005930"]
    assert extract_condition_symbols({"data": "x"}) == []


@pytest.mark.asyncio
async def test_mock_order_is_accepted_without_network(kiwoom_settings, store):
    settings = kiwoom_settings.model_copy(update={"mock": True})
    service = KiwoomService(settings, store=store, clock=FakeClock())

    result = await service.place_order("005930", "BUY", 3, 70_000)

    assert result["orderId"].startswith("mock-")
    assert result["status"] == "accepted"
    assert result["quantity"] == 3
    assert store.api_calls[-1].endpoint == "/mock/orders"
    assert store.api_calls[-1].request_body["side"] == "BUY"
    await service.close()


@pytest.mark.asyncio
async def test_prefixed_symbols_are_normalized_before_request(kiwoom_settings, store):
    bodies = []

    def quote(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"return_code": 0, "cur_prc": "70000"})

    handler, _ = _routes({("/api/dostk/stkinfo", "ka10001"): quote})
    service = _service(kiwoom_settings, store, handler)

    quote_result = await service.get_quote("A005930")

    assert bodies[0]["stk_cd"] == "005930"
    assert quote_result.symbol == "005930"
    await service.close()


@pytest.mark.asyncio
async def test_stock_list_and_rankings_strip_market_prefix(kiwoom_settings, store):
    handler, _ = _routes({
        ("/api/dostk/stkinfo", "ka10099"): lambda r: httpx.Response(200, json={"return_code": 0, "list": [
            {"code": "A005930", "name": "Samsung", "listCount": "100", "lastPrice": "70000"},
        ]}),
        ("/api/dostk/rkinfo", "ka10032"): lambda r: httpx.Response(200, json={
            "return_code": 0, "trde_prica_upper": [{"stk_cd": "A000660", "stk_nm": "SK hynix"}],
        }),
    })
    service = _service(kiwoom_settings, store, handler)

    listings = await service.get_stock_list("0")
    ranked = await service.get_top_trading_value("0")

    assert listings[0].symbol == "005930"
    assert ranked[0].symbol == "000660"
    await service.close()


@pytest.mark.asyncio
async def test_daily_close_uses_first_chart_row_and_absolute_price(kiwoom_settings, store):
    bodies = []

    def chart(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"return_code": 0, "stk_dt_pole_chart_qry": [
            {"dt": "20240105", "cur_prc": "-71,000", "close_prc": "-71,200"},
            {"dt": "20240104", "close_prc": "70,500"},
        ]})

    handler, _ = _routes({("/api/dostk/chart", "ka10081"): chart})
    service = _service(kiwoom_settings, store, handler)

    daily = await service.get_daily_close_price("A005930")

    assert bodies[0] == {"stk_cd": "005930", "base_dt": "", "upd_dt": "1"}
    assert daily.symbol == "005930"
    assert daily.close_price == 71_200
    assert daily.as_of == "20240105"
    await service.close()


@pytest.mark.asyncio
async def test_top_trading_value_passes_managed_flag_through(kiwoom_settings, store):
    bodies = []

    def ranking(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"return_code": 0, "trde_prica_upper": [
            {"stk_cd": "005930", "stk_nm": "Samsung", "cur_prc": "+70000", "trde_prica": "1,234,000"},
            {"stk_cd": "000660", "stk_nm": "SK hynix", "cur_prc": "-150000", "trde_prica": "900"},
        ]})

    handler, _ = _routes({("/api/dostk/rkinfo", "ka10032"): ranking})
    service = _service(kiwoom_settings, store, handler)

    ranked = await service.get_top_trading_value("001", include_managed=True)

    assert bodies[0] == {"mrkt_tp": "001", "mang_stk_incls": "1", "stex_tp": "1"}
    assert [r.symbol for r in ranked] == ["005930", "000660"]
    assert ranked[0].trade_value == 1_234_000
    assert ranked[1].price == 150_000
    await service.close()


@pytest.mark.asyncio
async def test_intraday_ticks_and_minutes_parse_bars(kiwoom_settings, store):
    bodies = {}
    bar = {"cur_prc": "-70,100", "trde_qty": "15", "cntr_tm": "20240105090100",
           "open_pric": "-70,000", "high_pric": "+70,300", "low_pric": "-69,900",
           "pred_pre": "-400", "pred_pre_sig": "5"}

    def ticks(request):
        bodies["ka10079"] = json.loads(request.content)
        return httpx.Response(200, json={"return_code": 0, "stk_cd": "005930", "stk_tic_chart_qry": [bar]})

    def minutes(request):
        bodies["ka10080"] = json.loads(request.content)
        return httpx.Response(200, json={"return_code": 0, "stk_min_pole_chart_qry": [bar, bar]})

    handler, _ = _routes({
        ("/api/dostk/chart", "ka10079"): ticks,
        ("/api/dostk/chart", "ka10080"): minutes,
    })
    service = _service(kiwoom_settings, store, handler)

    tick_series = await service.get_intraday_ticks("A005930", "1")
    minute_series = await service.get_intraday_minutes("000660", "5", base_date="20240105")

    assert bodies["ka10079"] == {"stk_cd": "005930", "tic_scope": "1", "upd_stkpc_tp": "1"}
    assert bodies["ka10080"]["base_dt"] == "20240105"
    assert tick_series.symbol == "005930" and tick_series.source == "ka10079"
    first = tick_series.bars[0]
    assert (first.price, first.open, first.high, first.low) == (70_100, 70_000, 70_300, 69_900)
    assert first.volume == 15 and first.change == -400 and first.change_sign == "5"
    assert minute_series.symbol == "000660" and len(minute_series.bars) == 2
    await service.close()
