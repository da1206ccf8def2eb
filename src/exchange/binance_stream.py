# ============================================================
# src/exchange/binance_stream.py — Transporte WS Binance Spot
# ------------------------------------------------------------
"""
Transporte de streaming para sesiones live + parseo de mensajes de Binance.

✅ Objetivo
-----------
- Abrir el stream combinado `{symbol}@kline_{interval}` + `{symbol}@trade`.
- Entregar a la sesión una secuencia de `TransportEvent`
  (message / ping / pong / error / close) por una cola asyncio.
- Parsear velas y trades del payload de Binance.

🧠 Diseño
--------
- `StreamTransport.connect(url)` → `StreamConnection` (send / recv / pong / close).
  La sesión sólo conoce estos protocolos, así los tests usan transportes falsos.
- `WebsocketsTransport` implementa el protocolo sobre `websockets`:
    * una tarea lectora vuelca mensajes/cierres/errores a la cola,
    * una tarea keepalive hace `ping` cada 180 s y publica el `pong` recibido.
  `websockets` contesta sola a los pings del servidor y no los expone, así que
  el heartbeat visible para la sesión son nuestros pongs.
- No hay reconexión aquí: la decide la sesión (backoff + presupuesto).

Endpoint (stream combinado):
    wss://stream.binance.com:9443/stream?streams=btcusdt@kline_1m/btcusdt@trade
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
import json
import math
from typing import Any, Optional, Protocol

from loguru import logger
import websockets

from core.errors import InvalidData, StreamConnectionError
from core.types import Candle

# =============================================================================
# Constantes de conexión
# =============================================================================

DEFAULT_WS_URL = "wss://stream.binance.com:9443"

PING_INTERVAL_S = 180.0
PONG_TIMEOUT_S = 20.0
CONNECT_TIMEOUT_S = 10.0
CLOSE_TIMEOUT_S = 5.0


# =============================================================================
# Eventos y protocolos
# =============================================================================


class EventKind(str, Enum):
    MESSAGE = "message"
    PING = "ping"
    PONG = "pong"
    ERROR = "error"
    CLOSE = "close"


@dataclass(frozen=True)
class TransportEvent:
    kind: EventKind
    data: Optional[str] = None
    error: Optional[BaseException] = None


class StreamConnection(Protocol):
    async def send(self, data: str) -> None: ...

    async def recv(self) -> TransportEvent: ...

    async def pong(self, data: bytes = b"") -> None: ...

    async def close(self) -> None: ...


class StreamTransport(Protocol):
    async def connect(self, url: str) -> StreamConnection: ...


# =============================================================================
# Utilidades de URL y mensajes
# =============================================================================


def stream_url(symbol: str, interval: str, base: str = DEFAULT_WS_URL) -> str:
    """URL del stream combinado kline + trade (símbolo en minúsculas)."""
    sym = symbol.lower()
    return f"{base.rstrip('/')}/stream?streams={sym}@kline_{interval}/{sym}@trade"


def subscribe_message(symbol: str, interval: str, request_id: int = 1) -> dict[str, Any]:
    sym = symbol.lower()
    return {
        "method": "SUBSCRIBE",
        "params": [f"{sym}@kline_{interval}", f"{sym}@trade"],
        "id": int(request_id),
    }


def unwrap_stream_payload(payload: Any) -> Any:
    """Quita el sobre `{"stream": ..., "data": ...}` del stream combinado."""
    if isinstance(payload, dict) and "stream" in payload and "data" in payload:
        return payload["data"]
    return payload


def parse_kline_event(payload: Any) -> Optional[tuple[Candle, bool]]:
    """
    Evento `kline` → (Candle, is_closed). None si el payload no es una kline.
    Lanza InvalidData si es una kline con campos inválidos.
    """
    data = unwrap_stream_payload(payload)
    if not isinstance(data, dict) or data.get("e") != "kline":
        return None
    k = data.get("k")
    if not isinstance(k, dict):
        raise InvalidData("Evento kline sin campo 'k'")
    try:
        candle = Candle(
            open_time=int(k["t"]),
            open=float(k["o"]),
            high=float(k["h"]),
            low=float(k["l"]),
            close=float(k["c"]),
            volume=float(k["v"]),
            close_time=int(k["T"]),
        )
    except (KeyError, TypeError, ValueError, OverflowError) as e:
        raise InvalidData(f"Kline inválida: {e!r}") from e
    if not candle.is_finite():
        raise InvalidData(f"Kline con valores no finitos: {candle}")
    return candle, bool(k.get("x", False))


def parse_trade_event(payload: Any) -> Optional[float]:
    """Evento `trade` → precio. None si no es un trade o el precio no es válido."""
    data = unwrap_stream_payload(payload)
    if not isinstance(data, dict) or data.get("e") != "trade":
        return None
    try:
        price = float(data["p"])
    except (KeyError, TypeError, ValueError):
        return None
    return price if math.isfinite(price) else None


# =============================================================================
# Implementación sobre `websockets`
# =============================================================================


class WebsocketsConnection:
    """Conexión viva: lector + keepalive alimentando una cola de eventos."""

    def __init__(
        self,
        ws: Any,
        ping_interval_s: float = PING_INTERVAL_S,
        pong_timeout_s: float = PONG_TIMEOUT_S,
    ) -> None:
        self._ws = ws
        self._queue: asyncio.Queue[TransportEvent] = asyncio.Queue()
        self._ping_interval_s = float(ping_interval_s)
        self._pong_timeout_s = float(pong_timeout_s)
        self._closed = False
        self._tasks = [
            asyncio.create_task(self._reader(), name="ws-reader"),
            asyncio.create_task(self._keepalive(), name="ws-keepalive"),
        ]

    async def _reader(self) -> None:
        try:
            async for raw in self._ws:
                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8", errors="replace")
                await self._queue.put(TransportEvent(EventKind.MESSAGE, data=raw))
        except websockets.ConnectionClosedOK:
            await self._queue.put(TransportEvent(EventKind.CLOSE))
            return
        except (websockets.WebSocketException, OSError) as e:
            await self._queue.put(TransportEvent(EventKind.ERROR, error=e))
            return
        # Fin del iterador sin excepción = cierre limpio
        await self._queue.put(TransportEvent(EventKind.CLOSE))

    async def _keepalive(self) -> None:
        while True:
            await asyncio.sleep(self._ping_interval_s)
            try:
                waiter = await self._ws.ping()
                await asyncio.wait_for(waiter, timeout=self._pong_timeout_s)
            except asyncio.TimeoutError as e:
                await self._queue.put(TransportEvent(EventKind.ERROR, error=e))
                return
            except (websockets.WebSocketException, OSError):
                # El lector ya publicará el cierre/error
                return
            await self._queue.put(TransportEvent(EventKind.PONG))

    async def send(self, data: str) -> None:
        try:
            await self._ws.send(data)
        except (websockets.WebSocketException, OSError) as e:
            raise StreamConnectionError(f"Fallo al enviar: {e!r}") from e

    async def recv(self) -> TransportEvent:
        return await self._queue.get()

    async def pong(self, data: bytes = b"") -> None:
        try:
            await self._ws.pong(data)
        except (websockets.WebSocketException, OSError) as e:
            raise StreamConnectionError(f"Fallo al enviar pong: {e!r}") from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        try:
            await self._ws.close()
        except (websockets.WebSocketException, OSError) as e:
            logger.debug(f"Cierre WS con error: {e!r}")


class WebsocketsTransport:
    def __init__(
        self,
        ping_interval_s: float = PING_INTERVAL_S,
        pong_timeout_s: float = PONG_TIMEOUT_S,
        connect_timeout_s: float = CONNECT_TIMEOUT_S,
    ) -> None:
        self.ping_interval_s = ping_interval_s
        self.pong_timeout_s = pong_timeout_s
        self.connect_timeout_s = connect_timeout_s

    async def connect(self, url: str) -> WebsocketsConnection:
        try:
            ws = await websockets.connect(
                url,
                ping_interval=None,
                open_timeout=self.connect_timeout_s,
                close_timeout=CLOSE_TIMEOUT_S,
            )
        except (websockets.WebSocketException, OSError, asyncio.TimeoutError) as e:
            raise StreamConnectionError(f"No se pudo conectar a {url}: {e!r}") from e
        logger.info(f"WS conectado: {url}")
        return WebsocketsConnection(ws, self.ping_interval_s, self.pong_timeout_s)


# =============================================================================
# Decodificación de mensajes crudos
# =============================================================================


def decode_message(raw: str) -> Any:
    """JSON → objeto Python. InvalidData si el texto no es JSON."""
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise InvalidData(f"Mensaje no JSON: {str(raw)[:120]!r}") from e


__all__ = [
    "DEFAULT_WS_URL",
    "PING_INTERVAL_S",
    "EventKind",
    "TransportEvent",
    "StreamConnection",
    "StreamTransport",
    "WebsocketsConnection",
    "WebsocketsTransport",
    "stream_url",
    "subscribe_message",
    "unwrap_stream_payload",
    "parse_kline_event",
    "parse_trade_event",
    "decode_message",
]
