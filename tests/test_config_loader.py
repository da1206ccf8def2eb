# tests/test_config_loader.py

from __future__ import annotations

import pytest
import yaml

from core.config_loader import DEFAULT_CONFIG_PATH, ENV_TO_CFG, get_config, get_nested
from core.sim_engine import SimEngineConfig
from live.session import LiveConfig

BASE = {
    "logging": {"level": "INFO", "dir": "data/logs"},
    "backtest": {"initial_balance": 10000.0, "min_candles": 50},
    "live": {"window_size": 100, "heartbeat_timeout_s": 30},
    "exchange": {"rest_url": "https://example.test/klines", "ws_url": "wss://example.test"},
}


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    # sin .env del directorio de trabajo ni overrides heredados
    monkeypatch.chdir(tmp_path)
    for var in ENV_TO_CFG:
        monkeypatch.delenv(var, raising=False)


def _write(tmp_path, data) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return str(path)


def test_default_config_is_valid() -> None:
    """Test que el config.yaml del repo pasa la validación de esquema."""
    cfg = get_config(DEFAULT_CONFIG_PATH, use_cache=False)
    assert get_nested(cfg, "backtest", "min_candles") == 50
    assert get_nested(cfg, "live", "max_connections") == 300
    assert SimEngineConfig.from_config(cfg) == SimEngineConfig()


def test_env_overrides(tmp_path, monkeypatch) -> None:
    """Test overrides por entorno con conversión de tipo."""
    monkeypatch.setenv("INITIAL_BALANCE", "2500")
    monkeypatch.setenv("BINANCE_WS_URL", "wss://other.test")
    cfg = get_config(_write(tmp_path, BASE), use_cache=False)
    assert cfg["backtest"]["initial_balance"] == 2500.0
    assert LiveConfig.from_config(cfg).ws_url == "wss://other.test"

    monkeypatch.setenv("RISK_PER_TRADE", "mucho")
    with pytest.raises(ValueError):
        get_config(_write(tmp_path, BASE), use_cache=False)


def test_missing_keys_and_files(tmp_path) -> None:
    """Test claves imprescindibles ausentes y archivo inexistente."""
    broken = {k: v for k, v in BASE.items() if k != "exchange"}
    with pytest.raises(ValueError, match="exchange.rest_url"):
        get_config(_write(tmp_path, broken), use_cache=False)
    with pytest.raises(FileNotFoundError):
        get_config(tmp_path / "nope.yaml", use_cache=False)


def test_live_config_from_sections(tmp_path) -> None:
    cfg = get_config(_write(tmp_path, BASE), use_cache=False)
    live = LiveConfig.from_config(cfg)
    assert live.heartbeat_timeout_s == 30.0
    assert isinstance(live.heartbeat_timeout_s, float)
    assert live.window_size == 100
    assert live.ws_url == "wss://example.test"
    assert live.policy().max_attempts == 5


def test_get_nested_default() -> None:
    assert get_nested({"a": {"b": 1}}, "a", "b") == 1
    assert get_nested({"a": 1}, "a", "b", default="x") == "x"
