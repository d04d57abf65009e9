from core.trading.models import TradingPolicy, UniversePolicy
from services.strategy.policy import (
    parse_bool,
    parse_section,
    parse_trading_policy,
    parse_universe_policy,
)

STRATEGY = """# Short-Term Strategy

Free text the LLM reads.

## Trading Policy
- TAKE_PROFIT_PCT=4
- STOP_LOSS_PCT=3
POSITION_SIZE_PCT = 15%
# MIN_HOLD_MINUTES=99

### Notes
MIN_HOLD_MINUTES=30

## Universe Selection
TOP_MARKET_CAP=5
top_liquidity=7
TOP_NEWS=0
MAX_UNIVERSE=0
MARKETS=0, 10 ,50
INCLUDE_MANAGED=yes
STEX=k
"""


def test_trading_policy_reads_keys_and_normalizes_stop_loss():
    policy = parse_trading_policy(STRATEGY)
    assert policy.take_profit_pct == 4
    assert policy.stop_loss_pct == -3
    assert policy.position_size_pct == 15
    assert policy.min_hold_minutes == 30


def test_universe_policy_reads_keys():
    policy = parse_universe_policy(STRATEGY)
    assert policy.top_market_cap == 5
    assert policy.top_liquidity == 7
    assert policy.top_news == 0
    assert policy.max_universe == 0
    assert policy.markets == ["0", "10", "50"]
    assert policy.include_managed is True
    assert policy.stex == "K"
    assert policy.liquidity_days == UniversePolicy().liquidity_days


def test_parsing_is_idempotent():
    assert parse_trading_policy(STRATEGY) == parse_trading_policy(STRATEGY)
    assert parse_universe_policy(STRATEGY) == parse_universe_policy(STRATEGY)


def test_missing_section_yields_defaults():
    assert parse_trading_policy("# Nothing here\n") == TradingPolicy()
    assert parse_universe_policy("") == UniversePolicy()


def test_invalid_values_fall_back_per_field():
    content = """## Trading Policy
TAKE_PROFIT_PCT=-1
STOP_LOSS_PCT=abc
POSITION_SIZE_PCT=150
MIN_HOLD_MINUTES=nan
"""
    assert parse_trading_policy(content) == TradingPolicy()


def test_zero_stop_loss_falls_back_to_default():
    policy = parse_trading_policy("## Trading Policy\nSTOP_LOSS_PCT=0\n")
    assert policy.stop_loss_pct == TradingPolicy().stop_loss_pct


def test_negative_universe_counts_fall_back():
    policy = parse_universe_policy("## Universe Selection\nTOP_MARKET_CAP=-3\nLIQUIDITY_DAYS=0\n")
    assert policy.top_market_cap == UniversePolicy().top_market_cap
    assert policy.liquidity_days == UniversePolicy().liquidity_days


def test_section_includes_subsections_and_ends_at_same_level_header():
    values = parse_section(STRATEGY, "Trading Policy")
    assert values["TAKE_PROFIT_PCT"] == "4"
    assert values["MIN_HOLD_MINUTES"] == "30"
    assert "TOP_MARKET_CAP" not in values


def test_parse_bool_tokens():
    assert parse_bool("TRUE", False) is True
    assert parse_bool("1", False) is True
    assert parse_bool("no", True) is False
    assert parse_bool("  ", True) is True
