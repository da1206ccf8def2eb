# src/live/manager.py
"""
Gestor de sesiones live.

- `start` valida el intervalo, resuelve la estrategia, descarga la ventana
  inicial, reserva un hueco del presupuesto de conexiones y lanza el worker.
- Las sesiones no comparten nada salvo el `ConnectionBudget` inyectado.
- `stop` es idempotente y devuelve el estado final de la sesión.
"""

from __future__ import annotations

import secrets
import time
from typing import Any, Callable

from loguru import logger

from core.errors import DataFetchError, InvalidData, SessionNotFound
from data.binance_klines import CandleFetcher, validate_interval
from exchange.binance_stream import StreamTransport
from live.rate_limit import ConnectionBudget
from live.session import LiveConfig, LiveSession, SessionStatus
from strategies.store import StrategyStore


class LiveSessionManager:
    def __init__(
        self,
        strategies: StrategyStore,
        fetcher: CandleFetcher,
        transport: StreamTransport,
        config: LiveConfig | None = None,
        budget: ConnectionBudget | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or LiveConfig()
        self.budget = budget or ConnectionBudget(
            self.config.max_connections, self.config.connection_window_s
        )
        self._strategies = strategies
        self._fetcher = fetcher
        self._transport = transport
        self._clock = clock
        self._sessions: dict[str, LiveSession] = {}

    def _new_id(self, symbol: str) -> str:
        return f"live_{symbol.lower()}_{int(self._clock() * 1000)}_{secrets.token_hex(3)}"

    def _get(self, session_id: str) -> LiveSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"Sesión no encontrada: {session_id}")
        return session

    async def start(self, strategy_id: str, symbol: str, interval: str = "1m") -> str:
        validate_interval(interval)
        self._strategies.get(strategy_id)

        try:
            candles = await self._fetcher.fetch_recent(symbol, interval, self.config.window_size)
        except DataFetchError:
            logger.error(f"Inicio fallido ({symbol} {interval}): sin histórico")
            raise
        except (OSError, ValueError, InvalidData) as e:
            logger.error(f"Inicio fallido ({symbol} {interval}): {e!r}")
            raise DataFetchError(f"No se pudo descargar el histórico: {e}") from e

        session = LiveSession(
            session_id=self._new_id(symbol),
            strategy_id=strategy_id,
            symbol=symbol,
            interval=interval,
            strategies=self._strategies,
            transport=self._transport,
            config=self.config,
            budget=self.budget,
            clock=self._clock,
        )
        session.seed(candles)

        # RateLimited se propaga: la sesión no llega a registrarse
        self.budget.acquire()
        self._sessions[session.session_id] = session
        session.start(slot_reserved=True)
        logger.info(
            f"Sesión live iniciada: {session.session_id} ({strategy_id} {symbol.upper()} {interval})"
        )
        return session.session_id

    async def stop(self, session_id: str) -> dict[str, Any]:
        return await self._get(session_id).stop()

    async def remove(self, session_id: str) -> dict[str, Any]:
        """Para la sesión si sigue viva y la olvida. Devuelve su estado final."""
        final = await self._get(session_id).stop()
        self._sessions.pop(session_id, None)
        logger.info(f"Sesión {session_id} eliminada del gestor")
        return final

    async def stop_all(self) -> dict[str, dict[str, Any]]:
        """Para todas las sesiones y olvida las ya paradas."""
        finals = {sid: await s.stop() for sid, s in list(self._sessions.items())}
        for sid in [sid for sid, s in self._sessions.items() if s.state == SessionStatus.STOPPED]:
            del self._sessions[sid]
        return finals

    def status(self, session_id: str) -> dict[str, Any]:
        return self._get(session_id).status()

    def active_sessions(self) -> list[dict[str, Any]]:
        return [s.status() for s in self._sessions.values() if s.state != SessionStatus.STOPPED]

    def switch_strategy(self, session_id: str, strategy_id: str) -> None:
        session = self._get(session_id)
        self._strategies.get(strategy_id)
        session.switch_strategy(strategy_id)

    def session(self, session_id: str) -> LiveSession:
        return self._get(session_id)


__all__ = ["LiveConfig", "LiveSessionManager"]
