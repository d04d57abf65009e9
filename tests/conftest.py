"""
Pytest configuration and shared fixtures for the Kiwoom agent tests.
"""
from unittest.mock import AsyncMock

import pytest

from core.config.settings import (
    KiwoomSettings,
    LLMSettings,
    NewsSettings,
    TradingSettings,
    UniverseSettings,
)
from core.storage.memory import InMemoryTradingStore
from services.strategy.service import StrategyService
from tests.fakes import FakeClock, FakeRealtime, RecordingEvents


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryTradingStore()


@pytest.fixture
def kiwoom_settings():
    return KiwoomSettings(
        base_url="https://api.kiwoom.test",
        app_key="test-app-key",
        app_secret="test-app-secret",
        mock=False,
        ws_url="wss://ws.kiwoom.test/websocket",
        min_request_interval_ms=0,
        reconnect_delay_seconds=0,
    )


@pytest.fixture
def trading_settings():
    return TradingSettings(initial_capital=1_000_000, virtual_mode=True)


@pytest.fixture
def llm_settings():
    return LLMSettings(api_key="test-llm-key", model="primary-model",
                       fallback_models=["backup-model"])


@pytest.fixture
def universe_settings():
    return UniverseSettings(watch_symbols="005930,000660")


@pytest.fixture
def news_settings():
    return NewsSettings(feeds=[])


@pytest.fixture
def strategy_service(tmp_path, store):
    return StrategyService(str(tmp_path / "INVESTMENT_STRATEGY.md"), store)


@pytest.fixture
def realtime():
    return FakeRealtime()


@pytest.fixture
def order_client():
    client = AsyncMock()
    client.place_order.return_value = {"orderId": "test-order", "status": "accepted"}
    return client


@pytest.fixture
def events():
    return RecordingEvents()
