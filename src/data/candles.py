# src/data/candles.py
"""
Conversión entre listas de `Candle` y DataFrames de pandas, y carga desde CSV.

Columnas canónicas: open_time, open, high, low, close, volume, close_time.
Se aceptan alias habituales en CSVs exportados (t, openTime, closeTime, o/h/l/c/v).
Si falta `close_time` se deriva de la siguiente `open_time` (o de la mediana
del paso entre velas para la última).
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import numpy as np
import pandas as pd

from core.errors import InvalidData
from core.types import Candle

CANDLE_COLUMNS: list[str] = ["open_time", "open", "high", "low", "close", "volume", "close_time"]

_ALIASES: dict[str, str] = {
    "t": "open_time",
    "time": "open_time",
    "timestamp": "open_time",
    "openTime": "open_time",
    "t_open": "open_time",
    "closeTime": "close_time",
    "t_close": "close_time",
    "o": "open",
    "h": "high",
    "l": "low",
    "c": "close",
    "v": "volume",
}


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    return pd.DataFrame([c.as_dict() for c in candles], columns=CANDLE_COLUMNS)


def candles_from_frame(df: pd.DataFrame) -> list[Candle]:
    """DataFrame → lista de Candle ordenada por open_time (sin duplicados)."""
    df = df.rename(columns={k: v for k, v in _ALIASES.items() if k in df.columns})
    missing = [c for c in CANDLE_COLUMNS if c not in df.columns and c != "close_time"]
    if missing:
        raise InvalidData(f"Faltan columnas de vela: {missing}")

    df = df.copy()
    if np.issubdtype(df["open_time"].dtype, np.datetime64):
        df["open_time"] = df["open_time"].astype("datetime64[ms]").astype("int64")
    numeric = [c for c in CANDLE_COLUMNS if c in df.columns]
    df[numeric] = df[numeric].apply(pd.to_numeric, errors="coerce")
    if df[numeric].isna().any().any():
        bad = df[numeric].isna().any(axis=1)
        first = int(np.flatnonzero(bad.to_numpy())[0])
        raise InvalidData(f"Valores no numéricos en {int(bad.sum())} filas (p.ej. fila {first})")

    df = (
        df.sort_values("open_time", kind="stable")
        .drop_duplicates("open_time", keep="last")
        .reset_index(drop=True)
    )

    if "close_time" not in df.columns:
        step = df["open_time"].diff().median() if len(df) > 1 else 60_000
        step = 60_000 if pd.isna(step) else int(step)
        df["close_time"] = df["open_time"].shift(-1).fillna(df["open_time"] + step) - 1

    return [
        Candle(
            open_time=int(row.open_time),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
            close_time=int(row.close_time),
        )
        for row in df[CANDLE_COLUMNS].itertuples(index=False)
    ]


def load_candles_csv(path: str | Path) -> list[Candle]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"No existe el CSV de velas: {p}")
    df = pd.read_csv(p)
    if df.empty:
        raise InvalidData(f"CSV vacío: {p}")
    return candles_from_frame(df)


__all__ = ["CANDLE_COLUMNS", "candles_to_frame", "candles_from_frame", "load_candles_csv"]
