# tests/test_technical_indicators.py

from __future__ import annotations

import math

import pytest

from conftest import make_candles
from core.errors import InsufficientData, InvalidData, InvalidStrategy
from core.types import Candle
from features.technical_indicators import (
    IndicatorSpec,
    bollinger,
    compute_indicators,
    ema,
    indicator_frame,
    indicator_offset,
    macd,
    max_offset,
    readings_at,
    rsi,
    sma,
    validate_candles,
)


def _zigzag(n: int) -> list[float]:
    return [100.0 + (i % 7) * 1.5 - (i % 3) * 2.0 for i in range(n)]


@pytest.mark.parametrize(
    "fn, kwargs, offset",
    [
        (rsi, {"period": 14}, 14),
        (sma, {"period": 20}, 19),
        (ema, {"period": 20}, 19),
        (bollinger, {"period": 20, "std_dev": 2.0}, 19),
        (macd, {"fast_period": 12, "slow_period": 26, "signal_period": 9}, 33),
    ],
)
def test_series_length_matches_offset(fn, kwargs, offset) -> None:
    """Test que len(serie) == len(velas) - offset para cada indicador."""
    candles = make_candles(_zigzag(80))
    series = fn(candles, **kwargs)
    assert series.offset == offset
    assert len(series) == len(candles) - offset


def test_sma_values_and_alignment() -> None:
    """Test SMA simple y que el valor i corresponde a la vela i + offset."""
    candles = make_candles([1, 2, 3, 4, 5, 6])
    series = sma(candles, 3)
    assert series.values() == [2.0, 3.0, 4.0, 5.0]
    assert series.at(2) == {"value": 2.0}
    assert series.at(1) is None
    assert series.at(6) is None


def test_ema_seeded_with_sma() -> None:
    """Test EMA sembrada con la SMA inicial y k = 2/(period+1)."""
    candles = make_candles([1, 2, 3, 4, 4])
    series = ema(candles, 3)
    # semilla = 2.0; k = 0.5 → 3.0; 3.5
    assert series.values() == [2.0, 3.0, 3.5]


def test_rsi_all_gains_is_100() -> None:
    """Test RSI = 100 cuando no hay pérdidas."""
    candles = make_candles([float(i) for i in range(1, 40)])
    series = rsi(candles, 14)
    assert all(v == 100.0 for v in series.values())


def test_rsi_wilder_smoothing() -> None:
    """Test RSI con suavizado de Wilder sobre un caso calculado a mano."""
    # deltas: +1, -1, +2 ; period 2
    candles = make_candles([10, 11, 10, 12])
    series = rsi(candles, 2)
    # primeras medias: gain 0.5, loss 0.5 → RSI 50
    # luego: gain (0.5*1 + 2)/2 = 1.25, loss (0.5*1 + 0)/2 = 0.25 → RS 5 → 83.33
    assert series.values() == [50.0, 83.33]


def test_rsi_rounded_to_two_decimals() -> None:
    """Test que RSI se redondea a 2 decimales."""
    series = rsi(make_candles(_zigzag(40)), 14)
    assert all(round(v, 2) == v for v in series.values())


def test_macd_components_share_offset() -> None:
    """Test que MACD emite tripletas completas (línea, señal, histograma)."""
    candles = make_candles(_zigzag(60))
    series = macd(candles, 3, 6, 4)
    assert series.offset == 6 + 4 - 2
    n = len(series)
    assert len(series.values("signal")) == n
    assert len(series.values("histogram")) == n
    for line, sig, hist in zip(series.values(), series.values("signal"), series.values("histogram")):
        assert hist == pytest.approx(line - sig, abs=1e-7)


def test_macd_minimum_required() -> None:
    """Test InsufficientData con menos de max(fast, slow) + signal velas."""
    with pytest.raises(InsufficientData):
        macd(make_candles(_zigzag(34)), 12, 26, 9)
    assert len(macd(make_candles(_zigzag(35)), 12, 26, 9)) == 2


def test_bollinger_uses_sample_std() -> None:
    """Test bandas con desviación estándar muestral (ddof=1)."""
    candles = make_candles([1, 2, 3])
    series = bollinger(candles, 3, 2.0)
    # media 2, std muestral 1 → 4 / 2 / 0
    assert series.at(2) == {"upper": 4.0, "middle": 2.0, "lower": 0.0}
    assert series.primary == "middle"


@pytest.mark.parametrize("period", [0, -3, 2.5])
def test_invalid_period_raises(period) -> None:
    """Test ValueError con periodos no enteros o no positivos."""
    with pytest.raises(ValueError):
        sma(make_candles(_zigzag(30)), period)


def test_insufficient_data() -> None:
    """Test InsufficientData con menos velas que el mínimo."""
    with pytest.raises(InsufficientData):
        rsi(make_candles(_zigzag(14)), 14)
    with pytest.raises(InsufficientData):
        sma(make_candles(_zigzag(19)), 20)


def test_validate_candles_rejects_nan_and_short() -> None:
    """Test InvalidData con NaN o con menos velas que las exigidas."""
    candles = make_candles(_zigzag(10))
    validate_candles(candles, 10)
    with pytest.raises(InvalidData):
        validate_candles(candles, 11)
    bad = list(candles)
    bad[3] = Candle(bad[3].open_time, 1.0, 1.0, 1.0, math.nan, 1.0, bad[3].close_time)
    with pytest.raises(InvalidData):
        validate_candles(bad, 1)


def test_spec_normalization_and_offsets() -> None:
    """Test alias de tipos/parámetros y cálculo de offsets."""
    bb = IndicatorSpec.from_dict({"type": "BB", "params": {"period": 10, "stdDev": 1.5}})
    assert bb.type == "bollinger"
    assert bb.params["std_dev"] == 1.5
    m = IndicatorSpec.from_dict({"type": "macd", "params": {"fastPeriod": 5, "slowPeriod": 10}})
    assert indicator_offset(m) == 10 + 9 - 2
    assert max_offset({"bb": bb, "m": m}) == 17
    with pytest.raises(InvalidStrategy):
        IndicatorSpec.from_dict({"type": "stochastic"})


def test_readings_flatten_components() -> None:
    """Test lecturas planas: componente principal + name_componente + campos de vela."""
    candles = make_candles(_zigzag(60))
    series = compute_indicators(
        candles,
        {
            "rsi": {"type": "rsi", "params": {"period": 14}},
            "macd": {"type": "macd", "params": {}},
            "bb": {"type": "bb", "params": {"period": 20}},
        },
    )
    last = readings_at(series, candles, len(candles) - 1)
    assert last["price"] == candles[-1].close
    assert last["macd"] == last["macd_value"]
    assert {"macd_signal", "macd_histogram", "bb_upper", "bb_lower"} <= set(last)
    assert last["bb"] == last["bb_middle"]

    early = readings_at(series, candles, 20)
    assert "rsi" in early and "bb" in early
    assert "macd" not in early


def test_indicator_frame_pads_warmup_with_nan() -> None:
    """Test DataFrame alineado con NaN durante el warm-up."""
    candles = make_candles(_zigzag(30))
    df = indicator_frame(candles, {"sma": {"type": "sma", "params": {"period": 5}}})
    assert len(df) == 30
    assert df["sma"].isna().sum() == 4
