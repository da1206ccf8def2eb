# src/live/rate_limit.py
"""
Límites de tasa para el modo live.

- MessageRateLimiter: mensajes entrantes por sesión en una ventana deslizante
  (por defecto 5 mensajes/segundo). Los rechazados se descartan en silencio.
- ConnectionBudget: intentos de conexión compartidos por TODAS las sesiones
  (por defecto 300 cada 5 minutos). Thread-safe.

Los relojes son inyectables (`clock`) para que los tests no dependan del tiempo real.
"""

from __future__ import annotations

from collections import deque
import math
import threading
import time
from typing import Callable

from loguru import logger

from core.errors import RateLimited

Clock = Callable[[], float]


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class MessageRateLimiter:
    """Ventana deslizante de `limit` mensajes cada `window_ms` milisegundos."""

    def __init__(self, limit: int = 5, window_ms: float = 1000.0, clock: Clock = _monotonic_ms) -> None:
        if limit < 1:
            raise ValueError("limit debe ser >= 1")
        self.limit = int(limit)
        self.window_ms = float(window_ms)
        self._clock = clock
        self._stamps: deque[float] = deque()
        self.dropped = 0

    def allow(self) -> bool:
        now = self._clock()
        while self._stamps and now - self._stamps[0] >= self.window_ms:
            self._stamps.popleft()
        if len(self._stamps) >= self.limit:
            self.dropped += 1
            return False
        self._stamps.append(now)
        return True

    def reset(self) -> None:
        self._stamps.clear()


class ConnectionBudget:
    """
    Presupuesto de intentos de conexión en ventana deslizante.

    Se comparte por referencia entre sesiones; `acquire` registra el intento
    o lanza RateLimited con los segundos hasta que quede un hueco libre.
    """

    def __init__(self, max_connections: int = 300, window_s: float = 300.0, clock: Clock = time.monotonic) -> None:
        if max_connections < 1:
            raise ValueError("max_connections debe ser >= 1")
        self.max_connections = int(max_connections)
        self.window_s = float(window_s)
        self._clock = clock
        self._attempts: deque[float] = deque()
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        while self._attempts and now - self._attempts[0] >= self.window_s:
            self._attempts.popleft()

    def acquire(self) -> None:
        with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._attempts) >= self.max_connections:
                retry_after = max(1, math.ceil(self.window_s - (now - self._attempts[0])))
                logger.warning(
                    f"Presupuesto de conexiones agotado ({self.max_connections}/"
                    f"{self.window_s:.0f}s); reintentar en {retry_after}s"
                )
                raise RateLimited(f"retry after {retry_after} seconds", retry_after_s=retry_after)
            self._attempts.append(now)

    def remaining(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return self.max_connections - len(self._attempts)


__all__ = ["MessageRateLimiter", "ConnectionBudget"]
