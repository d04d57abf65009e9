from services.kiwoom.fields import (
    normalize_symbol,
    normalize_symbols,
    resolve,
    resolve_list,
    resolve_number,
    to_number,
)


def test_normalize_symbol_strips_single_market_prefix():
    assert normalize_symbol("A005930") == "005930"
    assert normalize_symbol(" 005930 ") == "005930"
    assert normalize_symbol("AA12") == "A12"
    assert normalize_symbol("") == ""
    assert normalize_symbol(None) == ""


def test_normalize_symbols_dedupes_in_order():
    assert normalize_symbols(["A005930", "000660", "005930", "", "A"]) == ["005930", "000660"]


def test_resolve_prefers_first_present_alias():
    payload = {"stk_prpr": "70,000", "cur_prc": "-71,000"}
    assert resolve(payload, "price") == "-71,000"
    assert resolve({}, "price", "fallback") == "fallback"
    assert resolve({"cur_prc": None, "price": 5}, "price") == 5


def test_to_number_handles_comma_strings_and_garbage():
    assert to_number("1,234.5") == 1234.5
    assert to_number("-71,000") == -71000.0
    assert to_number("") == 0.0
    assert to_number("n/a") == 0.0
    assert to_number(None) == 0.0
    assert to_number(12) == 12.0


def test_resolve_number_and_list():
    assert resolve_number({"flu_rt": "+1.25"}, "change_rate") == 1.25
    payload = {"stk_list": [{"code": "005930"}, "junk"]}
    assert resolve_list(payload, "ka10099") == [{"code": "005930"}]
    assert resolve_list({}, "ka10099") == []
