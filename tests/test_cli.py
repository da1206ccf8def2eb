# tests/test_cli.py

from __future__ import annotations

import json
from pathlib import Path
import sys

from loguru import logger
import pandas as pd
import pytest
import yaml

from conftest import make_candles, rsi_payload
from core.service import OperationResult
from data.candles import candles_to_frame

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

import main as cli  # noqa: E402


@pytest.fixture
def workspace(tmp_path):
    cfg = yaml.safe_load((ROOT / "src" / "config" / "config.yaml").read_text(encoding="utf-8"))
    cfg["logging"]["dir"] = str(tmp_path / "logs")
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(yaml.safe_dump(cfg), encoding="utf-8")

    closes = [100.0 + (i % 20) - 10 * ((i // 20) % 2) for i in range(120)]
    candles_path = tmp_path / "candles.csv"
    candles_to_frame(make_candles(closes, spread=0.5)).to_csv(candles_path, index=False)

    strategy_path = tmp_path / "rsi.json"
    strategy_path.write_text(json.dumps(rsi_payload()), encoding="utf-8")
    yield tmp_path, cfg_path, candles_path, strategy_path
    logger.remove()


def _json(out: str) -> dict:
    return json.loads(out[out.index("{"):])


def test_backtest_command(workspace, capsys) -> None:
    """Test subcomando backtest: JSON con métricas y traza CSV opcional."""
    tmp_path, cfg_path, candles_path, strategy_path = workspace
    debug_path = tmp_path / "debug.csv"
    code = cli.main(
        [
            "--config", str(cfg_path),
            "--log-level", "ERROR",
            "backtest",
            "--candles", str(candles_path),
            "--strategy", str(strategy_path),
            "--debug-csv", str(debug_path),
        ]
    )
    out = _json(capsys.readouterr().out)
    assert code == 0
    assert out["ok"] is True
    assert "metrics" in out["data"]
    assert "equity" not in out["data"]
    debug = pd.read_csv(debug_path)
    assert {"decision", "r_rsi"} <= set(debug.columns)


def test_backtest_command_invalid_strategy(workspace, capsys) -> None:
    tmp_path, cfg_path, candles_path, strategy_path = workspace
    strategy_path.write_text(json.dumps(rsi_payload(exitConditions=[])), encoding="utf-8")
    code = cli.main(
        ["--config", str(cfg_path), "--log-level", "ERROR", "backtest",
         "--candles", str(candles_path), "--strategy", str(strategy_path)]
    )
    assert code == 1
    assert _json(capsys.readouterr().out)["code"] == "invalid_strategy"


@pytest.mark.parametrize("content", [None, "", "open_time,open,high,low,close,volume\n"])
def test_backtest_command_bad_candles_file(workspace, capsys, content) -> None:
    """Test CSV inexistente, vacío o sin filas → resultado invalid_data, sin traceback."""
    tmp_path, cfg_path, _, strategy_path = workspace
    candles_path = tmp_path / "bad.csv"
    if content is not None:
        candles_path.write_text(content, encoding="utf-8")
    code = cli.main(
        ["--config", str(cfg_path), "--log-level", "CRITICAL", "backtest",
         "--candles", str(candles_path), "--strategy", str(strategy_path)]
    )
    out = _json(capsys.readouterr().out)
    assert code == 1
    assert out["ok"] is False
    assert out["code"] == "invalid_data"
    assert out["details"]["path"] == str(candles_path)


def test_print_result_is_strict_json(capsys) -> None:
    """Test profit_factor infinito y NaN → null en la salida JSON."""
    res = OperationResult.success({"metrics": {"profit_factor": float("inf"), "sharpe": float("nan")}, "n": [1.5]})
    assert cli._print_result(res) == 0
    text = capsys.readouterr().out
    assert "Infinity" not in text and "NaN" not in text
    out = json.loads(text)
    assert out["data"] == {"metrics": {"profit_factor": None, "sharpe": None}, "n": [1.5]}
