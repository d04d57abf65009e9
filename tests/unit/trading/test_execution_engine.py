import pytest
from pydantic import ValidationError

from core.trading.models import (
    Holding,
    PortfolioState,
    TradeDecision,
    TradeMode,
    TradeSide,
    TradeStatus,
    TradingPolicy,
)
from core.utils.exceptions import OrderPlacementError
from services.trading.execution_engine import ExecutionEngine, weighted_average_price
from tests.fakes import FakeRealtime

POLICY = TradingPolicy(take_profit_pct=2.5, stop_loss_pct=-2.5, position_size_pct=10)


def _buy(symbol, quantity, reason="test buy"):
    return TradeDecision(symbol=symbol, side=TradeSide.BUY, quantity=quantity, reason=reason)


def _sell(symbol, quantity, reason="test sell"):
    return TradeDecision(symbol=symbol, side=TradeSide.SELL, quantity=quantity, reason=reason)


@pytest.fixture
def engine(store, strategy_service, realtime, order_client, trading_settings):
    return ExecutionEngine(store, strategy_service, realtime, order_client, trading_settings)


async def _seed(store, cash, holdings=(), virtual_mode=True):
    await store.save_portfolio_state(PortfolioState(cash=cash, initial_capital=cash, virtual_mode=virtual_mode))
    for holding in holdings:
        store.holdings[holding.symbol] = holding


def test_weighted_average_price():
    assert weighted_average_price(None, 10, 100) == 100
    assert weighted_average_price(Holding(symbol="A", quantity=10, avg_price=100), 10, 200) == 150


@pytest.mark.asyncio
async def test_portfolio_state_is_seeded_from_settings(engine, store):
    state = await engine.ensure_portfolio_state()
    assert state.cash == 1_000_000
    assert state.virtual_mode is True
    assert (await store.get_portfolio_state()).cash == 1_000_000


@pytest.mark.asyncio
async def test_buy_within_cap_executes_and_updates_ledger(engine, store):
    await _seed(store, 1_000_000, [Holding(symbol="A", quantity=1, avg_price=10_000)])

    report = await engine.execute_decisions([_buy("A", 3)], {"A": 20_000}, POLICY)

    outcome = report.executed[0]
    assert outcome.status == TradeStatus.EXECUTED and outcome.quantity == 3
    holding = await store.get_holding("A")
    assert holding.quantity == 4
    assert holding.avg_price == pytest.approx((10_000 + 3 * 20_000) / 4)
    assert report.cash == 940_000
    assert report.total_asset == 940_000 + 4 * 20_000
    log = store.trade_logs[-1]
    assert log.mode == TradeMode.VIRTUAL and log.total_amount == 60_000


@pytest.mark.asyncio
async def test_buy_is_resized_to_position_cap(engine, store):
    await _seed(store, 1_000_000)

    report = await engine.execute_decisions([_buy("A", 50, "momentum")], {"A": 10_000}, POLICY)

    outcome = report.executed[0]
    assert outcome.quantity == 10
    assert outcome.reason == "momentum (auto-resized from 50 to 10)"


@pytest.mark.asyncio
async def test_buy_blocked_by_cap_is_policy_skip(engine, store):
    await _seed(store, 1_000_000)

    report = await engine.execute_decisions([_buy("A", 1, "pricey")], {"A": 150_000}, POLICY)

    outcome = report.skipped[0]
    assert outcome.status == TradeStatus.SKIPPED_POLICY
    assert outcome.reason == "pricey (position cap 10%)"
    assert store.trade_logs == []


@pytest.mark.asyncio
async def test_buy_without_cash_or_price_is_skipped(engine, store):
    await _seed(store, 500)

    report = await engine.execute_decisions([_buy("A", 1), _buy("B", 1)], {"A": 1_000}, POLICY)

    assert [o.status for o in report.skipped] == [TradeStatus.SKIPPED_INSUFFICIENT_CASH] * 2
    assert report.cash == 500


@pytest.mark.asyncio
async def test_cash_never_goes_negative_across_a_pass(engine, store):
    await _seed(store, 100_000)
    policy = POLICY.model_copy(update={"position_size_pct": 100})
    decisions = [_buy("A", 6), _buy("B", 6), _buy("C", 6)]

    report = await engine.execute_decisions(decisions, {"A": 10_000, "B": 10_000, "C": 10_000}, policy)

    assert [o.quantity for o in report.executed] == [6, 4]
    assert report.skipped[0].status == TradeStatus.SKIPPED_INSUFFICIENT_CASH
    assert report.cash == 0


@pytest.mark.asyncio
async def test_position_cap_uses_asset_captured_at_pass_start(engine, store):
    await _seed(store, 100_000)

    report = await engine.execute_decisions([_buy("A", 5), _buy("B", 5)], {"A": 5_000, "B": 5_000}, POLICY)

    # 10% of the starting 100,000 caps both buys at 2 shares even after cash drops
    assert [o.quantity for o in report.executed] == [2, 2]


@pytest.mark.asyncio
async def test_duplicate_symbol_in_one_pass_is_skipped(engine, store):
    await _seed(store, 1_000_000, [Holding(symbol="A", quantity=10, avg_price=100)])

    report = await engine.execute_decisions([_sell("A", 1), _buy("A", 1)], {"A": 200}, POLICY)

    assert len(report.executed) == 1
    assert report.skipped[0].status == TradeStatus.SKIPPED_DUPLICATE_SYMBOL
    assert report.skipped[0].side == TradeSide.BUY


@pytest.mark.asyncio
async def test_sell_gate_blocks_only_inside_band(engine, store):
    await _seed(store, 0, [
        Holding(symbol="IN", quantity=1, avg_price=100),
        Holding(symbol="TP", quantity=1, avg_price=100),
        Holding(symbol="SL", quantity=1, avg_price=100),
    ])
    policy = TradingPolicy(take_profit_pct=25, stop_loss_pct=-25, position_size_pct=10)
    quote_map = {"IN": 110, "TP": 125, "SL": 75}

    report = await engine.execute_decisions(
        [_sell("IN", 1, "trim"), _sell("TP", 1), _sell("SL", 1)], quote_map, policy)

    assert [o.symbol for o in report.executed] == ["TP", "SL"]
    skipped = report.skipped[0]
    assert skipped.status == TradeStatus.SKIPPED_POLICY
    assert skipped.reason == "trim (policy take=25%, stop=-25%)"


@pytest.mark.asyncio
async def test_sell_realizes_pnl_and_removes_empty_holding(engine, store):
    await _seed(store, 0, [Holding(symbol="A", quantity=2, avg_price=100)])

    report = await engine.execute_decisions([_sell("A", 2)], {"A": 110}, POLICY)

    assert report.executed[0].realized_pnl == 20
    assert await store.get_holding("A") is None
    assert report.cash == 220
    assert store.trade_logs[-1].realized_pnl == 20


@pytest.mark.asyncio
async def test_sell_more_than_held_is_skipped(engine, store):
    await _seed(store, 0, [Holding(symbol="A", quantity=1, avg_price=100)])
    report = await engine.execute_decisions([_sell("A", 2), _sell("B", 1)], {"A": 200, "B": 1}, POLICY)
    assert [o.status for o in report.skipped] == [TradeStatus.SKIPPED_INSUFFICIENT_HOLDING] * 2


@pytest.mark.asyncio
async def test_realtime_price_wins_over_quote_batch(store, strategy_service, order_client, trading_settings):
    engine = ExecutionEngine(store, strategy_service, FakeRealtime({"A": 1_000}), order_client, trading_settings)
    await _seed(store, 1_000_000)

    report = await engine.execute_decisions([_buy("A", 1)], {"A": 9_999}, POLICY)
    assert report.executed[0].price == 1_000


@pytest.mark.asyncio
async def test_real_mode_places_order_before_ledger(engine, store, order_client):
    await _seed(store, 1_000_000, virtual_mode=False)

    report = await engine.execute_decisions([_buy("A", 1)], {"A": 10_000}, POLICY)

    order_client.place_order.assert_awaited_once_with("A", "BUY", 1, 10_000)
    assert store.trade_logs[-1].mode == TradeMode.REAL
    assert report.executed[0].status == TradeStatus.EXECUTED


@pytest.mark.asyncio
async def test_failed_real_order_leaves_decision_uncommitted(engine, store, order_client):
    await _seed(store, 1_000_000, virtual_mode=False)
    order_client.place_order.side_effect = [
        {"orderId": "1"},
        OrderPlacementError("rejected", symbol="B", side="BUY"),
    ]

    with pytest.raises(OrderPlacementError):
        await engine.execute_decisions([_buy("A", 1), _buy("B", 1)], {"A": 10_000, "B": 10_000}, POLICY)

    assert [log.symbol for log in store.trade_logs] == ["A"]
    assert await store.get_holding("B") is None
    assert (await store.get_portfolio_state()).cash == 990_000
    assert len(store.snapshots) == 1
    assert store.snapshots[-1].cash == 990_000
    assert store.snapshots[-1].holdings_value == 10_000


@pytest.mark.asyncio
async def test_non_positive_quantities_never_touch_the_ledger(engine, store, order_client):
    await _seed(store, 1_000_000, [Holding(symbol="A", quantity=2, avg_price=100)], virtual_mode=False)
    negative = TradeDecision.model_construct(symbol="A", side=TradeSide.SELL, quantity=-3,
                                             reason="bad", confidence=0.0)

    report = await engine.execute_decisions([negative, _buy("B", 0)], {"A": 500, "B": 100}, POLICY)

    assert report.executed == []
    assert [o.status for o in report.skipped] == [TradeStatus.SKIPPED_POLICY] * 2
    assert (await store.get_holding("A")).quantity == 2
    assert (await store.get_portfolio_state()).cash == 1_000_000
    order_client.place_order.assert_not_awaited()
    assert store.trade_logs == []


def test_negative_decision_quantity_is_rejected():
    with pytest.raises(ValidationError):
        _sell("A", -1)


@pytest.mark.asyncio
async def test_empty_pass_still_snapshots(engine, store):
    await _seed(store, 1_000, [Holding(symbol="A", quantity=2, avg_price=100)])

    report = await engine.execute_decisions([], {}, POLICY)

    assert report.executed == [] and report.skipped == []
    assert report.holdings_value == 200
    assert store.snapshots[-1].total_asset == 1_200


@pytest.mark.asyncio
async def test_policy_defaults_to_strategy_document(engine, store, strategy_service):
    await strategy_service.update_strategy("## Trading Policy\nPOSITION_SIZE_PCT=1\n", "test")
    await _seed(store, 1_000_000)

    report = await engine.execute_decisions([_buy("A", 5)], {"A": 5_000})
    assert report.executed[0].quantity == 2
