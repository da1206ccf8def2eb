# src/live/session.py
"""
Sesión live: simulación de trading alimentada por el stream de Binance.

Estados: INITIALIZING → RUNNING → (RECONNECTING)* → STOPPED

Cada sesión es una tarea asyncio independiente que:
- mantiene una ventana acotada de velas (100 por defecto),
- procesa los mensajes en orden (un único escritor sobre su ledger),
- en cada vela cerrada recalcula indicadores y aplica `core.decision.decide`
  exactamente igual que el simulador de backtest,
- vigila el heartbeat (ping/pong) y reconecta con backoff exponencial,
- consume un hueco del presupuesto de conexiones compartido en cada intento.

Los errores de decisión (datos insuficientes, invariantes del ledger) se
guardan en `last_error` y nunca paran la sesión.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
import json
import time
from typing import Any, Callable, Optional, Protocol

from loguru import logger

from core.decision import DEFAULT_RISK_FRACTION, decide
from core.errors import (
    InsufficientData,
    InvalidData,
    LedgerError,
    RateLimited,
    StreamConnectionError,
)
from core.ledger import TradeLedger
from core.types import Action, Candle, Readings
from exchange.binance_stream import (
    DEFAULT_WS_URL,
    EventKind,
    StreamConnection,
    StreamTransport,
    decode_message,
    parse_kline_event,
    parse_trade_event,
    stream_url,
    subscribe_message,
    unwrap_stream_payload,
)
from features.technical_indicators import compute_indicators, readings_at
from live.rate_limit import ConnectionBudget, MessageRateLimiter
from live.reconnect import ReconnectPolicy, ReconnectState
from strategies.definition import StrategyDefinition


class SessionStatus(str, Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


class StrategyLookup(Protocol):
    def find(self, strategy_id: str) -> Optional[StrategyDefinition]: ...


# ----------------------------- #
#  Configuración
# ----------------------------- #


@dataclass
class LiveConfig:
    """Parámetros del modo live (defaults = límites de Binance Spot)."""

    initial_balance: float = 10_000.0
    window_size: int = 100
    min_candles: int = 50
    risk_per_trade: float = DEFAULT_RISK_FRACTION
    message_limit: int = 5
    message_window_ms: float = 1000.0
    heartbeat_timeout_s: float = 600.0
    reconnect_base_delay_s: float = 5.0
    reconnect_max_delay_s: float = 60.0
    max_reconnect_attempts: int = 5
    max_connections: int = 300
    connection_window_s: float = 300.0
    ws_url: str = DEFAULT_WS_URL

    def policy(self) -> ReconnectPolicy:
        return ReconnectPolicy(
            base_delay_s=self.reconnect_base_delay_s,
            max_delay_s=self.reconnect_max_delay_s,
            max_attempts=self.max_reconnect_attempts,
        )

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any] | None) -> LiveConfig:
        """Sección `live` del config (+ `exchange.ws_url`)."""
        cfg = cfg or {}
        section = dict(cfg.get("live") or {})
        exchange = dict(cfg.get("exchange") or {})
        kwargs: dict[str, Any] = {}
        for name, fdef in cls.__dataclass_fields__.items():
            if name in section:
                kwargs[name] = type(fdef.default)(section[name])
        if exchange.get("ws_url"):
            kwargs["ws_url"] = str(exchange["ws_url"])
        return cls(**kwargs)


# ----------------------------- #
#  Sesión
# ----------------------------- #


class LiveSession:
    def __init__(
        self,
        session_id: str,
        strategy_id: str,
        symbol: str,
        interval: str,
        strategies: StrategyLookup,
        transport: StreamTransport,
        config: LiveConfig | None = None,
        budget: ConnectionBudget | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or LiveConfig()
        self.session_id = session_id
        self.strategy_id = strategy_id
        self.symbol = symbol.upper()
        self.interval = interval
        self.state = SessionStatus.INITIALIZING
        self.ledger = TradeLedger(self.config.initial_balance)
        self.window: deque[Candle] = deque(maxlen=self.config.window_size)
        self.reconnect = ReconnectState(self.config.policy())
        self.limiter = MessageRateLimiter(self.config.message_limit, self.config.message_window_ms)
        self.readings: Readings = {}
        self.last_price: Optional[float] = None
        self.last_error: Optional[str] = None
        self.stop_reason: Optional[str] = None
        self.closed_candles = 0

        self._strategies = strategies
        self._transport = transport
        self._budget = budget or ConnectionBudget(
            self.config.max_connections, self.config.connection_window_s
        )
        self._clock = clock
        self.start_time = clock()
        self._conn: Optional[StreamConnection] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._slot_reserved = False
        self._stopping = False
        self._finalized = False

    # ------------------------------------------------------------------ datos
    def seed(self, candles: Iterable[Candle]) -> None:
        """Llena la ventana con histórico (ordenado, sin duplicados)."""
        by_time = {c.open_time: c for c in candles}
        for t in sorted(by_time):
            self.window.append(by_time[t])
        if self.window:
            self.last_price = self.window[-1].close
        self._refresh_readings()
        logger.info(
            f"[{self.session_id}] Ventana inicial: {len(self.window)} velas {self.symbol} {self.interval}"
        )

    def switch_strategy(self, strategy_id: str) -> None:
        logger.info(f"[{self.session_id}] Estrategia {self.strategy_id} → {strategy_id}")
        self.strategy_id = strategy_id
        self._refresh_readings()

    def _strategy(self) -> Optional[StrategyDefinition]:
        strategy = self._strategies.find(self.strategy_id)
        if strategy is None:
            logger.warning(f"[{self.session_id}] Estrategia no encontrada: {self.strategy_id}")
        return strategy

    def _upsert(self, candle: Candle) -> bool:
        """Reemplaza la última vela si comparte open_time; añade si es nueva; ignora antiguas."""
        if self.window:
            last = self.window[-1]
            if candle.open_time < last.open_time:
                return False
            if candle.open_time == last.open_time:
                self.window[-1] = candle
                return True
        self.window.append(candle)
        return True

    def _compute(self, strategy: StrategyDefinition) -> tuple[Readings, Readings]:
        candles = list(self.window)
        series = compute_indicators(candles, strategy.indicators)
        current = readings_at(series, candles, len(candles) - 1)
        previous = readings_at(series, candles, len(candles) - 2)
        return current, previous

    def _refresh_readings(self) -> None:
        """Lecturas sólo para mostrar (velas abiertas / seed)."""
        if len(self.window) < self.config.min_candles:
            return
        strategy = self._strategies.find(self.strategy_id)
        if strategy is None:
            return
        try:
            self.readings, _ = self._compute(strategy)
        except InsufficientData as e:
            self.last_error = str(e)

    # -------------------------------------------------------------- mensajes
    def handle_message(self, raw: str) -> None:
        """Procesa un mensaje crudo del stream (secuencial por sesión)."""
        if not self.limiter.allow():
            return
        try:
            payload = decode_message(raw)
        except InvalidData as e:
            logger.warning(f"[{self.session_id}] {e}")
            return

        if isinstance(payload, dict) and "result" in payload and "id" in payload:
            logger.debug(f"[{self.session_id}] Suscripción confirmada (id={payload.get('id')})")
            return

        data = unwrap_stream_payload(payload)
        if not isinstance(data, dict) or "e" not in data:
            logger.warning(f"[{self.session_id}] Mensaje sin datos reconocibles: {str(raw)[:120]!r}")
            return

        event = data["e"]
        if event == "kline":
            try:
                parsed = parse_kline_event(data)
            except InvalidData as e:
                logger.warning(f"[{self.session_id}] {e}")
                return
            if parsed is not None:
                self._on_kline(*parsed)
        elif event == "trade":
            price = parse_trade_event(data)
            if price is not None:
                self.last_price = price
        else:
            logger.debug(f"[{self.session_id}] Evento ignorado: {event}")

    def _on_kline(self, candle: Candle, closed: bool) -> None:
        if not self._upsert(candle):
            logger.debug(f"[{self.session_id}] Vela antigua ignorada (t={candle.open_time})")
            return
        self.last_price = candle.close
        if closed:
            self._on_closed_candle(candle)
        else:
            self._refresh_readings()

    def _on_closed_candle(self, candle: Candle) -> None:
        self.closed_candles += 1
        if len(self.window) < self.config.min_candles:
            logger.debug(
                f"[{self.session_id}] {len(self.window)}/{self.config.min_candles} velas; sin decisión"
            )
            return
        strategy = self._strategy()
        if strategy is None:
            return

        try:
            current, previous = self._compute(strategy)
            self.readings = current
            action = decide(
                self.ledger.position,
                self.ledger.balance,
                strategy,
                current,
                previous,
                candle,
                self.config.risk_per_trade,
            )
            self._apply(action, candle)
        except (InsufficientData, LedgerError, ValueError) as e:
            self.last_error = str(e)
            logger.warning(f"[{self.session_id}] Decisión fallida: {e}")
        self.ledger.mark(candle.close)

    def _apply(self, action: Action, candle: Candle) -> None:
        if action.kind == "enter":
            self.ledger.enter(candle.open_time, action.price, action.quantity, action.side)
        elif action.kind == "exit":
            self.ledger.exit(candle.open_time, action.price, action.reason)
        else:
            logger.debug(f"[{self.session_id}] HOLD t={candle.open_time} {action.reason}")

    # ----------------------------------------------------------------- worker
    def start(self, slot_reserved: bool = True) -> asyncio.Task[None]:
        """Lanza el worker. `slot_reserved`: el primer hueco del presupuesto ya está tomado."""
        self._slot_reserved = slot_reserved
        self._task = asyncio.create_task(self.run(), name=f"live-{self.session_id}")
        return self._task

    async def run(self) -> None:
        url = stream_url(self.symbol, self.interval, self.config.ws_url)
        reason = "stopped"
        try:
            while not self._stopping:
                try:
                    if self._slot_reserved:
                        self._slot_reserved = False
                    else:
                        self._budget.acquire()
                    await self._connect_and_consume(url)
                    reason = "stream terminado"
                except RateLimited as e:
                    reason = f"rate limited: {e}"
                except StreamConnectionError as e:
                    reason = str(e)
                finally:
                    await self._close_connection()

                if self._stopping:
                    break
                delay = self.reconnect.on_failure(reason)
                if delay is None:
                    self.last_error = reason
                    break
                self.state = SessionStatus.RECONNECTING
                await asyncio.sleep(delay)
        finally:
            self._finalize(reason if not self._stopping else "stopped")

    async def _connect_and_consume(self, url: str) -> None:
        self._conn = await self._transport.connect(url)
        self.reconnect.on_connected()
        self.state = SessionStatus.RUNNING
        await self._conn.send(json.dumps(subscribe_message(self.symbol, self.interval)))
        logger.info(f"[{self.session_id}] Conectado y suscrito: {url}")

        loop = asyncio.get_running_loop()
        timeout = self.config.heartbeat_timeout_s
        deadline = loop.time() + timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise StreamConnectionError("heartbeat timeout")
            try:
                event = await asyncio.wait_for(self._conn.recv(), timeout=remaining)
            except asyncio.TimeoutError:
                logger.warning(f"[{self.session_id}] Sin ping/pong en {timeout:.0f}s")
                raise StreamConnectionError("heartbeat timeout") from None

            if event.kind == EventKind.MESSAGE:
                self.handle_message(event.data or "")
            elif event.kind == EventKind.PING:
                await self._conn.pong((event.data or "").encode())
                deadline = loop.time() + timeout
            elif event.kind == EventKind.PONG:
                deadline = loop.time() + timeout
            elif event.kind == EventKind.ERROR:
                raise StreamConnectionError(f"error de transporte: {event.error!r}")
            elif event.kind == EventKind.CLOSE:
                raise StreamConnectionError("conexión cerrada por el servidor")

    async def _close_connection(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            await conn.close()

    def _finalize(self, reason: str) -> None:
        if self._finalized:
            return
        self._finalized = True
        self.stop_reason = reason
        self.state = SessionStatus.STOPPED
        self.reconnect.on_stopped()
        if self.ledger.is_open and self.last_price is not None:
            t = self.window[-1].open_time if self.window else int(self._clock() * 1000)
            try:
                self.ledger.exit(t, self.last_price, "session_stopped")
            except LedgerError as e:
                self.last_error = str(e)
            self.ledger.mark(self.last_price)
        logger.info(
            f"[{self.session_id}] Sesión detenida ({reason}); balance {self.ledger.balance:.2f}, "
            f"trades {len(self.ledger.trades)}"
        )

    async def stop(self) -> dict[str, Any]:
        """Idempotente: cancela el worker, cierra la conexión y cierra la posición."""
        self._stopping = True
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self._close_connection()
        self._finalize("stopped")
        return self.status()

    # ----------------------------------------------------------------- status
    def status(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "strategy_id": self.strategy_id,
            "symbol": self.symbol,
            "interval": self.interval,
            "status": self.state.value,
            "balance": self.ledger.balance,
            "position": self.ledger.position.as_dict(),
            "trades": [t.as_dict() for t in self.ledger.trades],
            "metrics": self.ledger.metrics(),
            "readings": dict(self.readings),
            "last_price": self.last_price,
            "last_error": self.last_error,
            "stop_reason": self.stop_reason,
            "reconnect_attempts": self.reconnect.attempts,
            "dropped_messages": self.limiter.dropped,
            "candles": len(self.window),
            "running_time_s": self._clock() - self.start_time,
        }


__all__ = ["SessionStatus", "LiveConfig", "LiveSession", "StrategyLookup"]
