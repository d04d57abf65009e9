import pytest

from app.main import validate_settings
from core.config.settings import DatabaseSettings, KiwoomSettings, Settings
from core.utils.exceptions import ConfigurationError


def _settings(**overrides):
    return Settings(**overrides)


def test_mock_mode_needs_no_credentials():
    validate_settings(_settings(kiwoom=KiwoomSettings(mock=True)))


def test_live_mode_requires_app_key_and_secret():
    with pytest.raises(ConfigurationError):
        validate_settings(_settings(kiwoom=KiwoomSettings(mock=False, app_key="key")))

    validate_settings(_settings(kiwoom=KiwoomSettings(mock=False, app_key="key", app_secret="secret")))


def test_unknown_storage_backend_is_rejected():
    with pytest.raises(ConfigurationError):
        validate_settings(_settings(database=DatabaseSettings(backend="redis")))


def test_nested_env_vars_parse_csv_lists(monkeypatch):
    monkeypatch.setenv("UNIVERSE__WATCH_SYMBOLS", "005930, 000660")
    monkeypatch.setenv("KIWOOM__MOCK", "false")
    monkeypatch.setenv("TRADING__INITIAL_CAPITAL", "5000000")

    settings = Settings(_env_file=None)

    assert settings.universe.watch_symbols == ["005930", "000660"]
    assert settings.kiwoom.mock is False
    assert settings.trading.initial_capital == 5_000_000


def test_websocket_url_follows_mock_flag():
    assert "mockapi" in KiwoomSettings(mock=True).resolve_ws_url()
    assert KiwoomSettings(mock=False).resolve_ws_url() == "wss://api.kiwoom.com:10000/api/dostk/websocket"
    assert KiwoomSettings(ws_url="wss://custom").resolve_ws_url() == "wss://custom"
