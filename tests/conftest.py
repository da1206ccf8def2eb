import sys
from pathlib import Path

import pytest

# Ensure the `src` folder is on sys.path when running pytest so imports like
# `from core import ...` or `from live import ...` work without needing to
# install the package. This keeps tests consistent with running tools using
# PYTHONPATH=$(pwd)/src.
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from core.types import Candle  # noqa: E402

MINUTE_MS = 60_000


def make_candles(closes, start=1_700_000_000_000, step=MINUTE_MS, spread=0.0):
    """Velas sintéticas: open = close previo, high/low = close ± spread."""
    out = []
    prev = closes[0]
    for i, close in enumerate(closes):
        t = start + i * step
        out.append(
            Candle(
                open_time=t,
                open=float(prev),
                high=float(max(prev, close) + spread),
                low=float(min(prev, close) - spread),
                close=float(close),
                volume=1.0,
                close_time=t + step - 1,
            )
        )
        prev = close
    return out


def rsi_payload(**overrides):
    payload = {
        "name": "RSI reversal",
        "description": "compra en sobreventa, vende en sobrecompra",
        "indicators": {"rsi": {"type": "rsi", "params": {"period": 14}}},
        "entryConditions": [{"indicator": "rsi", "comparison": "below", "value": 30}],
        "exitConditions": [{"indicator": "rsi", "comparison": "above", "value": 70}],
        "riskManagement": {"stopLoss": 2, "takeProfit": 4, "maxPositionSize": 10},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def candle_factory():
    return make_candles


@pytest.fixture
def rsi_strategy_payload():
    return rsi_payload()
