# src/live/reconnect.py
"""
Máquina de estados de reconexión con backoff exponencial.

    IDLE ──connected──▶ CONNECTED ──failure──▶ RECONNECTING ──connected──▶ CONNECTED
                                                   │
                                     attempts agotados / stopped
                                                   ▼
                                                STOPPED

La máquina no duerme ni conecta: sólo dice cuánto esperar. El bucle de la
sesión es quien hace el `sleep` (cancelable) y vuelve a conectar.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from loguru import logger


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ReconnectPolicy:
    base_delay_s: float = 5.0
    max_delay_s: float = 60.0
    max_attempts: int = 5

    def delay_for(self, attempt: int) -> float:
        """min(base · 2^attempt, max). Intentos 0..4 → 5, 10, 20, 40, 60 s."""
        return min(self.base_delay_s * (2 ** max(0, int(attempt))), self.max_delay_s)


class ReconnectState:
    def __init__(self, policy: ReconnectPolicy | None = None) -> None:
        self.policy = policy or ReconnectPolicy()
        self.state = ConnectionState.IDLE
        self.attempts = 0
        self.last_reason: Optional[str] = None

    def on_connected(self) -> None:
        self.state = ConnectionState.CONNECTED
        self.attempts = 0

    def on_failure(self, reason: str) -> Optional[float]:
        """
        Registra un fallo. Devuelve el retardo antes del siguiente intento,
        o None si se agotaron los intentos (estado STOPPED).
        """
        self.last_reason = reason
        if self.state == ConnectionState.STOPPED:
            return None
        if self.attempts >= self.policy.max_attempts:
            self.state = ConnectionState.STOPPED
            logger.error(f"Reconexión abandonada tras {self.attempts} intentos: {reason}")
            return None
        delay = self.policy.delay_for(self.attempts)
        self.attempts += 1
        self.state = ConnectionState.RECONNECTING
        logger.warning(
            f"Conexión perdida ({reason}); intento {self.attempts}/"
            f"{self.policy.max_attempts} en {delay:.0f}s"
        )
        return delay

    def on_stopped(self) -> None:
        self.state = ConnectionState.STOPPED

    @property
    def stopped(self) -> bool:
        return self.state == ConnectionState.STOPPED


__all__ = ["ConnectionState", "ReconnectPolicy", "ReconnectState"]
