"""Pure parsers for the machine-readable sections of the strategy markdown.

The strategy document is read twice: as free text by the LLM prompt and
here, as ``KEY=value`` lines under ``## Trading Policy`` and
``## Universe Selection``. Every field falls back to its default on its
own when the section, the key or a valid value is missing.
"""

import math
import re
from typing import Callable, Dict, List, Optional

from core.trading.models import TradingPolicy, UniversePolicy

TRADING_POLICY_SECTION = "Trading Policy"
UNIVERSE_SECTION = "Universe Selection"

TRUE_TOKENS = {"true", "1", "yes", "y"}
COMMENT_PREFIXES = ("#", "//", "<!--")

_HEADER = re.compile(r"^\s*(#{2,6})\s+(.*?)\s*#*\s*$")


def parse_section(content: str, section: str) -> Dict[str, str]:
    """Collect ``KEY=value`` lines under the ``## <section>`` header (keys upper-cased).

    The section ends at the next header of the same or a higher level.
    """
    values: Dict[str, str] = {}
    if not content:
        return values

    target = section.strip().lower()
    in_section = False
    section_level = 0
    for raw_line in content.splitlines():
        header = _HEADER.match(raw_line)
        if header:
            level = len(header.group(1))
            if in_section and level <= section_level:
                break
            if not in_section and header.group(2).strip().lower() == target:
                in_section = True
                section_level = level
            continue
        if not in_section:
            continue

        line = raw_line.strip()
        if not line or line.startswith(COMMENT_PREFIXES) or "=" not in line:
            continue
        # Tolerate markdown bullets: "- KEY=value"
        line = line.lstrip("-*+ ").strip()
        key, _, value = line.partition("=")
        key = key.strip().upper()
        if key:
            values[key] = value.strip()
    return values


def _number(raw: Optional[str]) -> Optional[float]:
    if raw is None:
        return None
    try:
        value = float(raw.replace(",", "").replace("%", "").strip())
    except ValueError:
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def _positive(value: float) -> bool:
    return value > 0


def _non_negative(value: float) -> bool:
    return value >= 0


def _pick(values: Dict[str, str], key: str, default, valid: Callable[[float], bool], cast=float):
    value = _number(values.get(key))
    if value is None or not valid(value):
        return default
    return cast(value)


def parse_bool(raw: Optional[str], default: bool) -> bool:
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in TRUE_TOKENS


def parse_list(raw: Optional[str]) -> List[str]:
    if raw is None:
        return []
    return [item.strip().upper() for item in raw.split(",") if item.strip()]


def parse_trading_policy(content: str) -> TradingPolicy:
    values = parse_section(content, TRADING_POLICY_SECTION)
    defaults = TradingPolicy()

    stop_loss = _number(values.get("STOP_LOSS_PCT"))
    if stop_loss is None or stop_loss == 0:
        stop_loss = defaults.stop_loss_pct
    else:
        # A stop loss is a loss threshold whichever sign it was written with
        stop_loss = -abs(stop_loss)

    return TradingPolicy(
        take_profit_pct=_pick(values, "TAKE_PROFIT_PCT", defaults.take_profit_pct, _positive),
        stop_loss_pct=stop_loss,
        position_size_pct=_pick(values, "POSITION_SIZE_PCT", defaults.position_size_pct,
                                lambda v: 0 < v <= 100),
        min_hold_minutes=_pick(values, "MIN_HOLD_MINUTES", defaults.min_hold_minutes, _non_negative),
    )


def parse_universe_policy(content: str) -> UniversePolicy:
    values = parse_section(content, UNIVERSE_SECTION)
    defaults = UniversePolicy()

    markets = parse_list(values.get("MARKETS")) or list(defaults.markets)
    stex = values.get("STEX", "").strip().upper() or defaults.stex

    return UniversePolicy(
        top_market_cap=_pick(values, "TOP_MARKET_CAP", defaults.top_market_cap, _non_negative, int),
        top_liquidity=_pick(values, "TOP_LIQUIDITY", defaults.top_liquidity, _non_negative, int),
        top_news=_pick(values, "TOP_NEWS", defaults.top_news, _non_negative, int),
        max_universe=_pick(values, "MAX_UNIVERSE", defaults.max_universe, _non_negative, int),
        liquidity_candidates=_pick(values, "LIQUIDITY_CANDIDATES", defaults.liquidity_candidates, _positive, int),
        liquidity_days=_pick(values, "LIQUIDITY_DAYS", defaults.liquidity_days, _positive, int),
        markets=markets,
        include_managed=parse_bool(values.get("INCLUDE_MANAGED"), defaults.include_managed),
        stex=stex,
    )
