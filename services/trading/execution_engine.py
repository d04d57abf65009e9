import asyncio
import math
from typing import List, Mapping, Optional, Sequence

from core.config.settings import TradingSettings
from core.logging import get_trading_logger
from core.storage.base import TradingStore
from core.trading.interfaces import OrderClient, RealtimePriceSource
from core.trading.models import (
    ExecutionReport,
    Holding,
    PortfolioSnapshotRecord,
    PortfolioState,
    TradeDecision,
    TradeLogRecord,
    TradeMode,
    TradeOutcome,
    TradeSide,
    TradeStatus,
    TradingPolicy,
)
from services.strategy.service import StrategyService


def _fmt(value: float) -> str:
    return f"{value:g}"


def _annotate(reason: str, note: str) -> str:
    return f"{reason or ''} {note}".strip()


def weighted_average_price(holding: Optional[Holding], quantity: int, price: float) -> float:
    if holding is None or holding.quantity <= 0:
        return price
    total_quantity = holding.quantity + quantity
    return (holding.avg_price * holding.quantity + price * quantity) / total_quantity


def holdings_market_value(holdings: Sequence[Holding], quote_map: Mapping[str, float]) -> float:
    """Quote price where available, average cost otherwise."""
    return sum(quote_map.get(h.symbol, h.avg_price) * h.quantity for h in holdings)


class ExecutionEngine:
    """
    Applies trade decisions to the portfolio ledger.

    Decisions run sequentially in input order, at most one per symbol per
    pass. Position sizing uses the total asset captured once at the start of
    the pass. Outside virtual mode the real order is placed before the
    ledger is touched, so a failed order leaves that decision uncommitted.
    """

    def __init__(self, store: TradingStore, strategy: StrategyService,
                 realtime: RealtimePriceSource, orders: OrderClient,
                 settings: TradingSettings):
        self.store = store
        self.strategy = strategy
        self.realtime = realtime
        self.orders = orders
        self.settings = settings
        self._lock = asyncio.Lock()
        self.logger = get_trading_logger("execution_engine")

    async def ensure_portfolio_state(self) -> PortfolioState:
        state = await self.store.get_portfolio_state()
        if state is not None:
            return state
        state = PortfolioState(
            cash=self.settings.initial_capital,
            initial_capital=self.settings.initial_capital,
            virtual_mode=self.settings.virtual_mode,
        )
        await self.store.save_portfolio_state(state)
        self.logger.info("Portfolio state initialised", cash=state.cash, virtual_mode=state.virtual_mode)
        return state

    def resolve_execution_price(self, symbol: str, quote_map: Mapping[str, float]) -> float:
        realtime = self.realtime.get_realtime_price(symbol)
        if realtime is not None and realtime.price:
            return realtime.price
        return quote_map.get(symbol, 0.0)

    async def execute_decisions(self, decisions: Sequence[TradeDecision], quote_map: Mapping[str, float],
                                policy: Optional[TradingPolicy] = None) -> ExecutionReport:
        async with self._lock:
            return await self._execute(decisions, quote_map, policy or self.strategy.get_trading_policy())

    async def _execute(self, decisions: Sequence[TradeDecision], quote_map: Mapping[str, float],
                       policy: TradingPolicy) -> ExecutionReport:
        executed: List[TradeOutcome] = []
        skipped: List[TradeOutcome] = []
        state = await self.ensure_portfolio_state()

        try:
            if decisions:
                await self._apply_decisions(state, decisions, quote_map, policy, executed, skipped)
        finally:
            # Trades committed before a failed order still reach the state row and snapshot
            await self.store.save_portfolio_state(state)
            snapshot = await self.snapshot_asset(quote_map, state)

        self.logger.info("Execution pass complete", executed=len(executed), skipped=len(skipped),
                         cash=snapshot.cash, total_asset=snapshot.total_asset)
        return ExecutionReport(
            executed=executed,
            skipped=skipped,
            cash=snapshot.cash,
            holdings_value=snapshot.holdings_value,
            total_asset=snapshot.total_asset,
        )

    async def _apply_decisions(self, state: PortfolioState, decisions: Sequence[TradeDecision],
                               quote_map: Mapping[str, float], policy: TradingPolicy,
                               executed: List[TradeOutcome], skipped: List[TradeOutcome]) -> None:
        holdings_for_sizing = holdings_market_value(await self.store.list_holdings(), quote_map)
        total_asset_for_sizing = state.cash + holdings_for_sizing
        max_position_value = (
            total_asset_for_sizing * policy.position_size_pct / 100 if policy.position_size_pct > 0 else 0.0
        )
        processed = set()

        for decision in decisions:
            if decision.side == TradeSide.HOLD:
                continue
            price = self.resolve_execution_price(decision.symbol, quote_map)

            if decision.quantity <= 0:
                self.logger.warning("Skipping decision with non-positive quantity",
                                    symbol=decision.symbol, quantity=decision.quantity)
                skipped.append(self._outcome(decision, price, TradeStatus.SKIPPED_POLICY,
                                             _annotate(decision.reason, "(non-positive quantity)")))
                continue

            if decision.symbol in processed:
                self.logger.warning("Skipping duplicate symbol in same pass",
                                    symbol=decision.symbol, side=decision.side.value)
                skipped.append(self._outcome(decision, price, TradeStatus.SKIPPED_DUPLICATE_SYMBOL))
                continue
            processed.add(decision.symbol)

            if decision.side == TradeSide.BUY:
                outcome = await self._buy(state, decision, price, max_position_value, policy)
            else:
                outcome = await self._sell(state, decision, price, policy)
            (executed if outcome.status == TradeStatus.EXECUTED else skipped).append(outcome)

    @staticmethod
    def _outcome(decision: TradeDecision, price: float, status: TradeStatus,
                 reason: Optional[str] = None) -> TradeOutcome:
        return TradeOutcome(
            symbol=decision.symbol,
            side=decision.side,
            quantity=decision.quantity,
            price=price,
            total_amount=decision.quantity * price,
            reason=decision.reason if reason is None else reason,
            status=status,
        )

    def _mode(self, state: PortfolioState) -> TradeMode:
        return TradeMode.VIRTUAL if state.virtual_mode else TradeMode.REAL

    async def _buy(self, state: PortfolioState, decision: TradeDecision, price: float,
                   max_position_value: float, policy: TradingPolicy) -> TradeOutcome:
        symbol = decision.symbol
        if price <= 0:
            self.logger.warning("Skipping BUY, invalid price", symbol=symbol, price=price)
            return self._outcome(decision, price, TradeStatus.SKIPPED_INSUFFICIENT_CASH)

        max_affordable = math.floor(state.cash / price)
        max_by_policy = math.floor(max_position_value / price) if max_position_value > 0 else max_affordable
        if max_affordable <= 0:
            self.logger.warning("Skipping BUY, insufficient cash", symbol=symbol, cash=state.cash, price=price)
            return self._outcome(decision, price, TradeStatus.SKIPPED_INSUFFICIENT_CASH)

        quantity = min(decision.quantity, max_affordable, max_by_policy)
        if quantity <= 0:
            self.logger.warning("Skipping BUY, position size limit", symbol=symbol,
                                position_size_pct=policy.position_size_pct)
            return self._outcome(decision, price, TradeStatus.SKIPPED_POLICY,
                                 _annotate(decision.reason, f"(position cap {_fmt(policy.position_size_pct)}%)"))

        reason = decision.reason
        if quantity < decision.quantity:
            self.logger.warning("Reducing BUY quantity", symbol=symbol,
                                requested=decision.quantity, allowed=quantity)
            reason = _annotate(reason, f"(auto-resized from {decision.quantity} to {quantity})")

        if not state.virtual_mode:
            await self.orders.place_order(symbol, TradeSide.BUY.value, quantity, price)

        total = quantity * price
        holding = await self.store.get_holding(symbol)
        updated = Holding(
            symbol=symbol,
            quantity=(holding.quantity if holding else 0) + quantity,
            avg_price=weighted_average_price(holding, quantity, price),
        )
        state.cash -= total
        await self.store.record_trade(state, updated, TradeLogRecord(
            symbol=symbol, side=TradeSide.BUY, quantity=quantity, price=price,
            total_amount=total, reason=reason, mode=self._mode(state),
        ))
        return TradeOutcome(symbol=symbol, side=TradeSide.BUY, quantity=quantity, price=price,
                            total_amount=total, reason=reason, status=TradeStatus.EXECUTED)

    async def _sell(self, state: PortfolioState, decision: TradeDecision, price: float,
                    policy: TradingPolicy) -> TradeOutcome:
        symbol = decision.symbol
        holding = await self.store.get_holding(symbol)
        if holding is None or holding.quantity < decision.quantity:
            self.logger.warning("Skipping SELL, insufficient holding", symbol=symbol,
                                requested=decision.quantity, held=holding.quantity if holding else 0)
            return self._outcome(decision, price, TradeStatus.SKIPPED_INSUFFICIENT_HOLDING)

        if price <= 0:
            self.logger.warning("Skipping SELL, invalid price", symbol=symbol, price=price)
            return self._outcome(decision, price, TradeStatus.SKIPPED_POLICY,
                                 _annotate(decision.reason, "(no valid price)"))

        profit_pct = (price - holding.avg_price) / holding.avg_price * 100 if holding.avg_price > 0 else 0.0
        if policy.stop_loss_pct < profit_pct < policy.take_profit_pct:
            self.logger.warning("Skipping SELL, profit within take/stop band", symbol=symbol,
                                profit_pct=round(profit_pct, 3))
            return self._outcome(
                decision, price, TradeStatus.SKIPPED_POLICY,
                _annotate(decision.reason,
                          f"(policy take={_fmt(policy.take_profit_pct)}%, stop={_fmt(policy.stop_loss_pct)}%)"),
            )

        if not state.virtual_mode:
            await self.orders.place_order(symbol, TradeSide.SELL.value, decision.quantity, price)

        total = decision.quantity * price
        realized_pnl = (price - holding.avg_price) * decision.quantity
        state.cash += total
        remaining = holding.model_copy(update={"quantity": holding.quantity - decision.quantity})
        await self.store.record_trade(state, remaining, TradeLogRecord(
            symbol=symbol, side=TradeSide.SELL, quantity=decision.quantity, price=price,
            total_amount=total, reason=decision.reason, mode=self._mode(state), realized_pnl=realized_pnl,
        ))
        return TradeOutcome(symbol=symbol, side=TradeSide.SELL, quantity=decision.quantity, price=price,
                            total_amount=total, reason=decision.reason, status=TradeStatus.EXECUTED,
                            realized_pnl=realized_pnl)

    async def snapshot_asset(self, quote_map: Mapping[str, float],
                             state: Optional[PortfolioState] = None) -> PortfolioSnapshotRecord:
        state = state or await self.ensure_portfolio_state()
        holdings_value = holdings_market_value(await self.store.list_holdings(), quote_map)
        snapshot = PortfolioSnapshotRecord(
            cash=state.cash,
            holdings_value=holdings_value,
            total_asset=state.cash + holdings_value,
        )
        await self.store.append_snapshot(snapshot)
        return snapshot
