# src/data/binance_klines.py
"""
Velas históricas de Binance por REST (`/api/v3/klines`).

Objetivo
- Dar al simulador y a las sesiones live un colaborador de datos históricos
  con un contrato simple: velas `Candle` ordenadas por tiempo y sin duplicados.

Contrato
- Rangos largos se parten en bloques contiguos de como mucho `limit` velas.
- Las peticiones son bloqueantes (urllib) y se ejecutan en un hilo
  (`asyncio.to_thread`) para no bloquear el event loop.
- Cualquier fallo HTTP/URL/parseo se convierte en DataFetchError.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
import json
from typing import Any, Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from loguru import logger

from core.errors import DataFetchError, InvalidData
from core.types import Candle

DEFAULT_REST_URL = "https://api.binance.com/api/v3/klines"
MAX_LIMIT = 1000

_MINUTE = 60_000
_INTERVAL_MS: dict[str, int] = {
    "1s": 1_000,
    "1m": _MINUTE,
    "3m": 3 * _MINUTE,
    "5m": 5 * _MINUTE,
    "15m": 15 * _MINUTE,
    "30m": 30 * _MINUTE,
    "1h": 60 * _MINUTE,
    "2h": 120 * _MINUTE,
    "4h": 240 * _MINUTE,
    "6h": 360 * _MINUTE,
    "8h": 480 * _MINUTE,
    "12h": 720 * _MINUTE,
    "1d": 1_440 * _MINUTE,
    "3d": 3 * 1_440 * _MINUTE,
    "1w": 7 * 1_440 * _MINUTE,
    # Mes aproximado a 30 días (sólo se usa para trocear rangos)
    "1M": 30 * 1_440 * _MINUTE,
}

VALID_INTERVALS: tuple[str, ...] = tuple(_INTERVAL_MS)


def validate_interval(interval: str) -> str:
    if interval not in _INTERVAL_MS:
        raise ValueError(
            f"Intervalo inválido: {interval!r}. Válidos: {', '.join(VALID_INTERVALS)}"
        )
    return interval


def interval_to_ms(interval: str) -> int:
    return _INTERVAL_MS[validate_interval(interval)]


def plan_chunks(start: int, end: int, interval: str, limit: int = MAX_LIMIT) -> list[tuple[int, int]]:
    """
    Parte [start, end) en bloques contiguos de como mucho `limit` velas.

    >>> plan_chunks(0, 150_000, "1m", limit=1)
    [(0, 60000), (60000, 120000), (120000, 150000)]
    """
    if end <= start:
        return []
    step = max(1, int(limit)) * interval_to_ms(interval)
    chunks: list[tuple[int, int]] = []
    cursor = start
    while cursor < end:
        chunk_end = min(cursor + step, end)
        chunks.append((cursor, chunk_end))
        cursor = chunk_end
    return chunks


def parse_kline_row(row: Sequence[Any]) -> Candle:
    """Fila REST `[openTime, o, h, l, c, v, closeTime, ...]` → Candle."""
    try:
        candle = Candle(
            open_time=int(row[0]),
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5]),
            close_time=int(row[6]),
        )
    except (IndexError, TypeError, ValueError, OverflowError) as e:
        raise InvalidData(f"Fila de kline inválida: {row!r}") from e
    if not candle.is_finite():
        raise InvalidData(f"Fila de kline con valores no finitos: {row!r}")
    return candle


def dedupe_sorted(candles: Sequence[Candle]) -> list[Candle]:
    """Ordena por open_time y se queda con la última vela de cada open_time."""
    by_time: dict[int, Candle] = {}
    for c in candles:
        by_time[c.open_time] = c
    return [by_time[t] for t in sorted(by_time)]


class CandleFetcher(Protocol):
    """Contrato del colaborador de datos históricos."""

    async def fetch_candles(
        self, symbol: str, interval: str, start: int, end: int
    ) -> list[Candle]: ...

    async def fetch_recent(self, symbol: str, interval: str, limit: int) -> list[Candle]: ...


class BinanceKlinesClient:
    """Cliente REST mínimo de klines (sin dependencias extra, urllib)."""

    def __init__(
        self,
        rest_url: str = DEFAULT_REST_URL,
        limit: int = MAX_LIMIT,
        timeout_s: float = 10.0,
    ) -> None:
        self.rest_url = rest_url
        self.limit = max(1, min(int(limit), MAX_LIMIT))
        self.timeout_s = float(timeout_s)

    # ------------------------------------------------------------------ API
    async def fetch_candles(self, symbol: str, interval: str, start: int, end: int) -> list[Candle]:
        return await asyncio.to_thread(self.fetch_candles_sync, symbol, interval, start, end)

    async def fetch_recent(self, symbol: str, interval: str, limit: int) -> list[Candle]:
        return await asyncio.to_thread(self.fetch_recent_sync, symbol, interval, limit)

    def fetch_candles_sync(self, symbol: str, interval: str, start: int, end: int) -> list[Candle]:
        if not symbol:
            raise DataFetchError("Falta el símbolo")
        try:
            validate_interval(interval)
        except ValueError as e:
            raise DataFetchError(str(e)) from e
        if end <= start:
            raise DataFetchError("end debe ser mayor que start")

        out: list[Candle] = []
        for chunk_start, chunk_end in plan_chunks(start, end, interval, self.limit):
            rows = self._request(
                {
                    "symbol": symbol.upper(),
                    "interval": interval,
                    "startTime": chunk_start,
                    "endTime": chunk_end,
                    "limit": self.limit,
                }
            )
            out.extend(self._parse_rows(rows))
        candles = dedupe_sorted(out)
        logger.info(f"Klines {symbol.upper()} {interval}: {len(candles)} velas [{start}, {end})")
        return candles

    def fetch_recent_sync(self, symbol: str, interval: str, limit: int) -> list[Candle]:
        """Últimas `limit` velas (la última puede estar aún abierta)."""
        if not symbol:
            raise DataFetchError("Falta el símbolo")
        try:
            validate_interval(interval)
        except ValueError as e:
            raise DataFetchError(str(e)) from e
        params = {
            "symbol": symbol.upper(),
            "interval": interval,
            "limit": max(1, min(int(limit), MAX_LIMIT)),
        }
        return dedupe_sorted(self._parse_rows(self._request(params)))

    # ------------------------------------------------------------- internos
    def _request(self, params: dict[str, Any]) -> list[Any]:
        url = f"{self.rest_url}?{urlencode(params)}"
        req = Request(url, headers={"User-Agent": "cripto_engine/1.0"})
        try:
            with urlopen(req, timeout=self.timeout_s) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except (HTTPError, URLError, TimeoutError, OSError, ValueError) as e:
            logger.error(f"Klines REST falló ({params.get('symbol')} {params.get('interval')}): {e!r}")
            raise DataFetchError(f"Fallo al descargar velas: {e}") from e
        if not isinstance(payload, list):
            raise DataFetchError(f"Respuesta REST inesperada: {str(payload)[:200]}")
        return payload

    @staticmethod
    def _parse_rows(rows: list[Any]) -> list[Candle]:
        try:
            return [parse_kline_row(r) for r in rows]
        except InvalidData as e:
            raise DataFetchError(str(e)) from e


__all__ = [
    "DEFAULT_REST_URL",
    "MAX_LIMIT",
    "VALID_INTERVALS",
    "validate_interval",
    "interval_to_ms",
    "plan_chunks",
    "parse_kline_row",
    "dedupe_sorted",
    "CandleFetcher",
    "BinanceKlinesClient",
]
