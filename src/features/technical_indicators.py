# src/features/technical_indicators.py
"""
Cálculo de indicadores técnicos sobre secuencias ordenadas de velas.

Indicadores implementados:
- Medias móviles: SMA, EMA
- Momentum: RSI (suavizado de Wilder), MACD
- Volatilidad: Bollinger Bands (desviación estándar muestral)

Diseño:
- Funciones puras: misma entrada → misma salida (backtest y live comparten código).
- Cada indicador devuelve un `IndicatorSeries` alineado con las velas:
  el valor en el índice `i` de la serie corresponde a la vela `i + offset`,
  donde `offset` es el warm-up del indicador.
- Redondeo fijo para comparaciones estables: 8 decimales en precios, 2 en RSI.

Tabla de warm-up:
    indicador    mínimo de velas             offset
    RSI          period + 1                  period
    MACD         max(fast, slow) + signal    max(fast, slow) + signal - 2
    Bollinger    period                      period - 1
    SMA / EMA    period                      period - 1
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
import math
from typing import Any, Callable

import numpy as np
import pandas as pd

from core.errors import InsufficientData, InvalidData, InvalidStrategy
from core.types import Candle, Readings

PRICE_DECIMALS = 8
RSI_DECIMALS = 2

CANDLE_FIELDS: tuple[str, ...] = (
    "open_time",
    "open",
    "high",
    "low",
    "close",
    "volume",
    "close_time",
)

DEFAULT_PARAMS: dict[str, dict[str, float]] = {
    "rsi": {"period": 14},
    "macd": {"fast_period": 12, "slow_period": 26, "signal_period": 9},
    "bollinger": {"period": 20, "std_dev": 2.0},
    "sma": {"period": 20},
    "ema": {"period": 20},
}

_TYPE_ALIASES = {
    "bb": "bollinger",
    "bbands": "bollinger",
    "bollinger_bands": "bollinger",
    "bollingerbands": "bollinger",
}

# Nombres de parámetros aceptados en payloads (camelCase heredado del frontend)
_PARAM_ALIASES = {
    "fastPeriod": "fast_period",
    "slowPeriod": "slow_period",
    "signalPeriod": "signal_period",
    "stdDev": "std_dev",
    "fast": "fast_period",
    "slow": "slow_period",
    "signal": "signal_period",
    "multiplier": "std_dev",
}


# ==================== SERIES Y ESPECIFICACIONES ====================


@dataclass(frozen=True)
class IndicatorSeries:
    """
    Serie de un indicador alineada con las velas de entrada.

    `components` guarda sub-series paralelas que comparten offset:
      - RSI/SMA/EMA: {"value"}
      - MACD: {"value", "signal", "histogram"}
      - Bollinger: {"upper", "middle", "lower"}
    """

    name: str
    kind: str
    offset: int
    components: dict[str, list[float]]
    primary: str = "value"

    def __len__(self) -> int:
        return len(self.components[self.primary])

    def at(self, candle_index: int) -> dict[str, float] | None:
        """Valores en la vela `candle_index` (None si cae en el warm-up o fuera de rango)."""
        i = candle_index - self.offset
        if i < 0 or i >= len(self):
            return None
        return {k: v[i] for k, v in self.components.items()}

    def latest(self) -> dict[str, float] | None:
        if len(self) == 0:
            return None
        return {k: v[-1] for k, v in self.components.items()}

    def values(self, component: str | None = None) -> list[float]:
        return list(self.components[component or self.primary])


@dataclass(frozen=True)
class IndicatorSpec:
    """Declaración de un indicador dentro de una estrategia: tipo + parámetros."""

    type: str
    params: dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | IndicatorSpec) -> IndicatorSpec:
        if isinstance(data, IndicatorSpec):
            return data
        if not isinstance(data, Mapping) or "type" not in data:
            raise InvalidStrategy(f"Indicador sin 'type': {data!r}")
        kind = normalize_indicator_type(str(data["type"]))
        return cls(type=kind, params=normalize_params(kind, data.get("params") or {}))

    @property
    def offset(self) -> int:
        return indicator_offset(self)

    @property
    def minimum(self) -> int:
        return minimum_required(self)


def normalize_indicator_type(kind: str) -> str:
    k = kind.strip().lower()
    k = _TYPE_ALIASES.get(k, k)
    if k not in DEFAULT_PARAMS:
        raise InvalidStrategy(f"Tipo de indicador no soportado: {kind}")
    return k


def normalize_params(kind: str, params: Mapping[str, Any]) -> dict[str, float]:
    """Mezcla parámetros por defecto con los recibidos (aceptando alias camelCase)."""
    out: dict[str, float] = dict(DEFAULT_PARAMS[kind])
    for key, raw in params.items():
        key = _PARAM_ALIASES.get(key, key)
        if key not in out:
            continue
        try:
            value = float(raw)
        except (TypeError, ValueError) as e:
            raise InvalidStrategy(f"Parámetro '{key}' inválido para {kind}: {raw!r}") from e
        if key.endswith("period"):
            if not value.is_integer() or value < 1:
                raise InvalidStrategy(f"'{key}' debe ser un entero positivo (recibido {raw!r})")
            out[key] = int(value)
        else:
            if value <= 0:
                raise InvalidStrategy(f"'{key}' debe ser positivo (recibido {raw!r})")
            out[key] = value
    return out


def indicator_offset(spec: IndicatorSpec) -> int:
    p = spec.params
    if spec.type == "rsi":
        return int(p["period"])
    if spec.type == "macd":
        return max(int(p["fast_period"]), int(p["slow_period"])) + int(p["signal_period"]) - 2
    return int(p["period"]) - 1


def minimum_required(spec: IndicatorSpec) -> int:
    p = spec.params
    if spec.type == "rsi":
        return int(p["period"]) + 1
    if spec.type == "macd":
        return max(int(p["fast_period"]), int(p["slow_period"])) + int(p["signal_period"])
    return int(p["period"])


def max_offset(specs: Mapping[str, IndicatorSpec]) -> int:
    return max((indicator_offset(s) for s in specs.values()), default=0)


# ==================== VALIDACIÓN ====================


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
        return False
    return not math.isnan(float(value))


def validate_candles(candles: Sequence[Candle], min_length: int) -> None:
    """
    Lanza InvalidData si hay menos de `min_length` velas o si algún campo OHLCV/tiempo
    no es numérico (o es NaN).
    """
    if candles is None or len(candles) < min_length:
        n = 0 if candles is None else len(candles)
        raise InvalidData(f"Velas inválidas: se necesitan al menos {min_length} (hay {n})")

    for i, candle in enumerate(candles):
        for name in CANDLE_FIELDS:
            if isinstance(candle, Mapping):
                value = candle.get(name)
            else:
                value = getattr(candle, name, None)
            if not _is_number(value):
                raise InvalidData(f"Vela {i} inválida: campo '{name}'={value!r}")


# ==================== CÁLCULOS INTERNOS ====================


def _check_period(period: Any, label: str) -> int:
    if isinstance(period, bool) or not isinstance(period, (int, float)):
        raise ValueError(f"{label} debe ser un entero positivo (recibido {period!r})")
    if float(period) != int(period) or int(period) < 1:
        raise ValueError(f"{label} debe ser un entero positivo (recibido {period!r})")
    return int(period)


def _require(candles: Sequence[Candle], minimum: int, label: str) -> None:
    if len(candles) < minimum:
        raise InsufficientData(
            f"Datos insuficientes para {label}: se necesitan al menos {minimum} velas "
            f"(hay {len(candles)})"
        )


def _closes(candles: Sequence[Candle]) -> np.ndarray:
    return np.array([c.close for c in candles], dtype="float64")


def _rounded(values: np.ndarray, decimals: int) -> list[float]:
    return [float(x) for x in np.round(values, decimals)]


def _ema_raw(values: np.ndarray, period: int) -> np.ndarray:
    """
    EMA sin redondear, sembrada con la SMA de los primeros `period` valores.
    Longitud: len(values) - period + 1 (el elemento 0 corresponde a values[period-1]).
    """
    k = 2.0 / (period + 1)
    out = np.empty(len(values) - period + 1, dtype="float64")
    out[0] = float(np.mean(values[:period]))
    for i in range(1, len(out)):
        price = values[period - 1 + i]
        out[i] = (price - out[i - 1]) * k + out[i - 1]
    return out


# ==================== API PÚBLICA ====================


def sma(candles: Sequence[Candle], period: int = 20, *, name: str = "sma") -> IndicatorSeries:
    """Simple Moving Average de los cierres."""
    period = _check_period(period, "period")
    _require(candles, period, "SMA")
    mean = pd.Series(_closes(candles)).rolling(window=period).mean().to_numpy()[period - 1 :]
    return IndicatorSeries(
        name=name,
        kind="sma",
        offset=period - 1,
        components={"value": _rounded(mean, PRICE_DECIMALS)},
    )


def ema(candles: Sequence[Candle], period: int = 20, *, name: str = "ema") -> IndicatorSeries:
    """Exponential Moving Average (k = 2/(period+1), semilla = SMA inicial)."""
    period = _check_period(period, "period")
    _require(candles, period, "EMA")
    values = _ema_raw(_closes(candles), period)
    return IndicatorSeries(
        name=name,
        kind="ema",
        offset=period - 1,
        components={"value": _rounded(values, PRICE_DECIMALS)},
    )


def rsi(candles: Sequence[Candle], period: int = 14, *, name: str = "rsi") -> IndicatorSeries:
    """
    Relative Strength Index con suavizado de Wilder.

    - Primeras medias: media simple de los primeros `period` deltas.
    - Después: avg = (avg_prev * (period - 1) + actual) / period
    - RSI = 100 si la pérdida media es 0; si no, 100 - 100 / (1 + RS)
    """
    period = _check_period(period, "period")
    _require(candles, period + 1, "RSI")

    deltas = np.diff(_closes(candles))
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = float(np.sum(gains[:period])) / period
    avg_loss = float(np.sum(losses[:period])) / period
    out = np.empty(len(deltas) - period + 1, dtype="float64")

    for j in range(len(out)):
        if j > 0:
            i = period + j - 1
            avg_gain = (avg_gain * (period - 1) + gains[i]) / period
            avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        if avg_loss == 0:
            out[j] = 100.0
        else:
            out[j] = 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)

    return IndicatorSeries(
        name=name,
        kind="rsi",
        offset=period,
        components={"value": _rounded(out, RSI_DECIMALS)},
    )


def macd(
    candles: Sequence[Candle],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
    *,
    name: str = "macd",
) -> IndicatorSeries:
    """
    MACD = EMA(fast) - EMA(slow); señal = EMA(signal) de la línea MACD;
    histograma = MACD - señal. Sólo se emiten tripletas completas.
    """
    fast = _check_period(fast_period, "fast_period")
    slow = _check_period(slow_period, "slow_period")
    signal = _check_period(signal_period, "signal_period")
    longest = max(fast, slow)
    _require(candles, longest + signal, "MACD")

    closes = _closes(candles)
    fast_ema = _ema_raw(closes, fast)  # alineada en la vela fast - 1
    slow_ema = _ema_raw(closes, slow)  # alineada en la vela slow - 1
    start = longest - 1
    line = fast_ema[start - (fast - 1) :] - slow_ema[start - (slow - 1) :]

    signal_line = _ema_raw(line, signal)
    line = line[signal - 1 :]
    histogram = line - signal_line

    return IndicatorSeries(
        name=name,
        kind="macd",
        offset=longest + signal - 2,
        components={
            "value": _rounded(line, PRICE_DECIMALS),
            "signal": _rounded(signal_line, PRICE_DECIMALS),
            "histogram": _rounded(histogram, PRICE_DECIMALS),
        },
    )


def bollinger(
    candles: Sequence[Candle],
    period: int = 20,
    std_dev: float = 2.0,
    *,
    name: str = "bollinger",
) -> IndicatorSeries:
    """Bollinger Bands: SMA ± std_dev * desviación estándar muestral de la ventana."""
    period = _check_period(period, "period")
    if std_dev <= 0:
        raise ValueError(f"std_dev debe ser positivo (recibido {std_dev!r})")
    _require(candles, period, "Bollinger Bands")

    window = pd.Series(_closes(candles)).rolling(window=period)
    middle = window.mean().to_numpy()[period - 1 :]
    # ddof=1 (muestral); con period=1 pandas devuelve NaN → banda nula
    std = window.std(ddof=1).fillna(0.0).to_numpy()[period - 1 :]

    return IndicatorSeries(
        name=name,
        kind="bollinger",
        offset=period - 1,
        primary="middle",
        components={
            "upper": _rounded(middle + std_dev * std, PRICE_DECIMALS),
            "middle": _rounded(middle, PRICE_DECIMALS),
            "lower": _rounded(middle - std_dev * std, PRICE_DECIMALS),
        },
    )


_CALCULATORS: dict[str, Callable[..., IndicatorSeries]] = {
    "rsi": lambda c, p, n: rsi(c, int(p["period"]), name=n),
    "macd": lambda c, p, n: macd(
        c, int(p["fast_period"]), int(p["slow_period"]), int(p["signal_period"]), name=n
    ),
    "bollinger": lambda c, p, n: bollinger(c, int(p["period"]), float(p["std_dev"]), name=n),
    "sma": lambda c, p, n: sma(c, int(p["period"]), name=n),
    "ema": lambda c, p, n: ema(c, int(p["period"]), name=n),
}


def compute_indicator(
    candles: Sequence[Candle], name: str, spec: IndicatorSpec | Mapping[str, Any]
) -> IndicatorSeries:
    spec = IndicatorSpec.from_dict(spec)
    return _CALCULATORS[spec.type](candles, spec.params, name)


def compute_indicators(
    candles: Sequence[Candle], specs: Mapping[str, IndicatorSpec | Mapping[str, Any]]
) -> dict[str, IndicatorSeries]:
    """Calcula todas las series declaradas por una estrategia (nombre → serie)."""
    return {name: compute_indicator(candles, name, spec) for name, spec in specs.items()}


def readings_at(
    series_map: Mapping[str, IndicatorSeries], candles: Sequence[Candle], index: int
) -> Readings:
    """
    Lecturas planas en la vela `index`:

        {"price", "open", "high", "low", "close", "volume",
         "<name>", "<name>_<componente>", ...}

    `<name>` es el componente principal (MACD: línea; Bollinger: banda media).
    Un indicador todavía en warm-up no aparece.
    """
    candle = candles[index]
    readings: Readings = {
        "price": candle.close,
        "open": candle.open,
        "high": candle.high,
        "low": candle.low,
        "close": candle.close,
        "volume": candle.volume,
    }
    for name, series in series_map.items():
        point = series.at(index)
        if point is None:
            continue
        readings[name] = point[series.primary]
        for component, value in point.items():
            readings[f"{name}_{component}"] = value
    return readings


# ==================== BATCH (para DataFrames) ====================


def indicator_frame(
    candles: Sequence[Candle], specs: Mapping[str, IndicatorSpec | Mapping[str, Any]]
) -> pd.DataFrame:
    """
    DataFrame alineado con las velas (una fila por vela, NaN durante el warm-up).

    Uso:
        df = indicator_frame(candles, {"rsi": {"type": "rsi", "params": {"period": 14}}})
        df[["close", "rsi"]].tail()
    """
    df = pd.DataFrame(
        {
            "open_time": [c.open_time for c in candles],
            "close": [c.close for c in candles],
        }
    )
    for name, series in compute_indicators(candles, specs).items():
        for component, values in series.components.items():
            column = name if component == series.primary else f"{name}_{component}"
            padded = [np.nan] * series.offset + list(values)
            df[column] = padded
    return df


__all__ = [
    "PRICE_DECIMALS",
    "RSI_DECIMALS",
    "DEFAULT_PARAMS",
    "IndicatorSeries",
    "IndicatorSpec",
    "normalize_indicator_type",
    "normalize_params",
    "indicator_offset",
    "minimum_required",
    "max_offset",
    "validate_candles",
    "sma",
    "ema",
    "rsi",
    "macd",
    "bollinger",
    "compute_indicator",
    "compute_indicators",
    "readings_at",
    "indicator_frame",
]
