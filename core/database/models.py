# Database models for ledger, catalog and audit state
from sqlalchemy import Column, Integer, String, Float, JSON, Boolean, DateTime, Text, Index
from sqlalchemy.sql import func
from .connection import Base


class PortfolioStateRow(Base):
    """Singleton cash ledger (id is always ``default``)"""
    __tablename__ = "portfolio_state"

    id = Column(String, primary_key=True)
    cash = Column(Float, nullable=False)
    initial_capital = Column(Float, nullable=False)
    virtual_mode = Column(Boolean, default=True, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class HoldingRow(Base):
    __tablename__ = "holdings"

    symbol = Column(String, primary_key=True)
    quantity = Column(Integer, nullable=False)
    avg_price = Column(Float, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class TradeLogRow(Base):
    __tablename__ = "trade_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String, nullable=False, index=True)
    side = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Float, nullable=False)
    total_amount = Column(Float, nullable=False)
    reason = Column(Text)
    mode = Column(String, nullable=False)
    realized_pnl = Column(Float)
    created_at = Column(DateTime(timezone=True), nullable=False)


class PortfolioSnapshotRow(Base):
    __tablename__ = "portfolio_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cash = Column(Float, nullable=False)
    holdings_value = Column(Float, nullable=False)
    total_asset = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)


class UniverseEntryRow(Base):
    __tablename__ = "universe_entries"

    symbol = Column(String, primary_key=True)
    name = Column(String)
    market_cap = Column(Float)
    market_code = Column(String)
    market_name = Column(String)


class UniverseRevisionRow(Base):
    __tablename__ = "universe_revisions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source = Column(String, nullable=False)
    note = Column(Text)
    entry_count = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class MarketQuoteRow(Base):
    __tablename__ = "market_quotes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String, nullable=False)
    price = Column(Float, nullable=False)
    change_rate = Column(Float, nullable=False)
    volume = Column(Float, nullable=False)
    as_of = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index('idx_market_quotes_symbol_as_of', 'symbol', 'as_of'),
    )


class NewsArticleRow(Base):
    __tablename__ = "news_articles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    url = Column(String, nullable=False, unique=True)
    title = Column(Text, nullable=False)
    source = Column(String)
    published_at = Column(DateTime(timezone=True))
    summary = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)


class StrategyRevisionRow(Base):
    __tablename__ = "strategy_revisions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class ApiCallLogRow(Base):
    """Brokerage request/response audit trail"""
    __tablename__ = "api_call_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider = Column(String, nullable=False)
    endpoint = Column(String, nullable=False)
    method = Column(String, nullable=False)
    request_body = Column(JSON)
    response_body = Column(JSON)
    status_code = Column(Integer)
    success = Column(Boolean, nullable=False)
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)


class LlmCallLogRow(Base):
    __tablename__ = "llm_call_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    model = Column(String, nullable=False)
    input_text = Column(Text, nullable=False)
    output_text = Column(Text)
    prompt_tokens = Column(Integer)
    completion_tokens = Column(Integer)
    total_tokens = Column(Integer)
    success = Column(Boolean, nullable=False)
    status_code = Column(Integer)
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
