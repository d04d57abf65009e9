"""Declarative field-alias table for Kiwoom payload variants.

Kiwoom endpoints (and the mock server) name the same value differently,
e.g. ``cur_prc``/``stk_prpr``/``price``. Each logical field lists its
candidate keys in priority order; the first key present wins.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional

FIELD_ALIASES: Dict[str, List[str]] = {
    # ka10001 quote
    "price": ["currentPrice", "cur_prc", "stk_prpr", "price"],
    "change_rate": ["changeRate", "flu_rt", "fluc_rt", "prdy_ctrt", "rate"],
    "volume": ["volume", "trde_qty", "acml_vol"],
    # ka10081 daily chart
    "close": ["close", "stk_clpr", "close_prc", "clpr"],
    "date": ["date", "stk_date", "base_dt", "dt"],
    # ka10099 stock list
    "symbol": ["code", "stk_cd", "symbol"],
    "name": ["name", "stk_nm", "symbol_name"],
    "list_count": ["listCount", "list_count", "list_cnt"],
    "last_price": ["lastPrice", "last_prc", "last_price", "cur_prc"],
    "market_code": ["marketCode", "market_cd", "mrkt_cd"],
    "market_name": ["marketName", "market_nm", "mrkt_nm"],
    # ka10032 / ka10030 rankings
    "rank_symbol": ["stk_cd", "code", "symbol"],
    "rank_name": ["stk_nm", "name"],
    "rank_price": ["cur_prc", "price", "now_price"],
    "trade_value": ["trde_prica", "trde_amt", "trade_value", "amount"],
    "trade_volume": ["trde_qty", "volume", "qty"],
    # ka10079 / ka10080 intraday bars
    "bar_price": ["cur_prc", "price"],
    "bar_volume": ["trde_qty", "volume"],
    "bar_time": ["cntr_tm", "time"],
    "bar_open": ["open_pric", "open"],
    "bar_high": ["high_pric", "high"],
    "bar_low": ["low_pric", "low"],
    "bar_change": ["pred_pre", "change"],
    "bar_change_sign": ["pred_pre_sig", "change_sign"],
    # kt00018 account evaluation rows
    "acct_symbol": ["stk_cd", "symbol"],
    "acct_name": ["stk_nm", "name"],
    "acct_quantity": ["rmnd_qty", "qty"],
    "acct_tradable": ["trde_able_qty"],
    "acct_avg_price": ["pur_pric", "avg_price"],
    "acct_price": ["cur_prc", "price"],
    "acct_market_value": ["evlt_amt", "market_value"],
    "acct_pnl": ["evltv_prft", "pnl"],
    "acct_profit_rate": ["prft_rt"],
    # condition search rows
    "condition_symbol": ["jmcode", "code", "symbol"],
    # realtime REAL values
    "rt_symbol": ["9001"],
    "rt_price": ["10", "currentPrice", "cur_prc"],
    "rt_bid_total": ["6065", "bid_total", "total_bid"],
    "rt_ask_total": ["6064", "ask_total", "total_ask"],
    "rt_condition_flag": ["843"],
    "rt_time": ["20"],
}

# Response list keys per api-id, first present wins
LIST_KEYS: Dict[str, List[str]] = {
    "ka10081": ["list", "items", "stk_chart", "stk_dt_pole_chart_qry"],
    "ka10099": ["list", "stk_list", "items"],
    "ka10032": ["trde_prica_upper", "list", "items"],
    "ka10030": ["tdy_trde_qty_upper", "list", "items"],
    "ka10079": ["stk_tic_chart_qry", "list", "items"],
    "ka10080": ["stk_min_pole_chart_qry", "list", "items"],
    "kt00018": ["acnt_evlt_remn_indv_tot", "list"],
}


def resolve(payload: Mapping[str, Any], field: str, default: Any = None) -> Any:
    """Return the first present (non-None) candidate value for a logical field."""
    for key in FIELD_ALIASES[field]:
        value = payload.get(key)
        if value is not None:
            return value
    return default


def to_number(value: Any) -> float:
    """Coerce numbers and comma-formatted numeric strings ("1,234" -> 1234.0).

    Anything unparseable becomes 0.0.
    """
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = value.replace(",", "").strip()
        if not cleaned:
            return 0.0
        try:
            return float(cleaned)
        except ValueError:
            return 0.0
    return 0.0


def resolve_number(payload: Mapping[str, Any], field: str) -> float:
    return to_number(resolve(payload, field, 0))


def resolve_text(payload: Mapping[str, Any], field: str) -> str:
    value = resolve(payload, field, "")
    return str(value).strip()


def resolve_list(payload: Mapping[str, Any], api_id: str) -> List[Dict[str, Any]]:
    for key in LIST_KEYS.get(api_id, ["list", "items"]):
        value = payload.get(key)
        if isinstance(value, list):
            return [row for row in value if isinstance(row, dict)]
    return []


def normalize_symbol(value: Optional[str]) -> str:
    """Strip one leading market prefix ``A`` ("A005930" -> "005930")."""
    if not value:
        return ""
    value = str(value).strip()
    if value.startswith("A"):
        value = value[1:]
    return value.strip()


def normalize_symbols(values: Iterable[str]) -> List[str]:
    """Normalize, drop empties and dedupe while keeping order."""
    seen = set()
    out = []
    for value in values:
        symbol = normalize_symbol(value)
        if symbol and symbol not in seen:
            seen.add(symbol)
            out.append(symbol)
    return out
