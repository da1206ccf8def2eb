# src/features/__init__.py
"""
Indicadores técnicos para estrategias.

Módulos:
- technical_indicators: RSI, MACD, Bollinger, SMA, EMA con alineación por warm-up.
"""

from .technical_indicators import (
    IndicatorSeries,
    IndicatorSpec,
    compute_indicators,
    readings_at,
    validate_candles,
)

__all__ = [
    "IndicatorSeries",
    "IndicatorSpec",
    "compute_indicators",
    "readings_at",
    "validate_candles",
]
