# src/core/errors.py
"""
Errores de dominio del motor.

Todos heredan de `EngineError` para que la capa de servicio pueda traducirlos
a resultados estructurados sin atrapar excepciones ajenas.

- Datos: InsufficientData, InvalidData, DataFetchError
- Estrategias: InvalidStrategy, StrategyNotFound, RiskRejected
- Ledger (invariantes): AlreadyInPosition, NotInPosition
- Live (transitorios): StreamConnectionError, RateLimited
- Sesiones: SessionNotFound
"""

from __future__ import annotations


class EngineError(Exception):
    """Base de todos los errores del motor."""

    code = "engine_error"


class InsufficientData(EngineError):
    """No hay velas suficientes para un indicador o para una ejecución."""

    code = "insufficient_data"


class InvalidData(EngineError):
    """Velas mal formadas (campos no numéricos, NaN) o demasiado cortas."""

    code = "invalid_data"


class InvalidStrategy(EngineError):
    """Definición de estrategia inválida (se detecta al crear/actualizar)."""

    code = "invalid_strategy"


class StrategyNotFound(EngineError):
    code = "strategy_not_found"


class RiskRejected(EngineError):
    """Las reglas de riesgo impiden operar (p.ej. balance no positivo)."""

    code = "risk_rejected"


class LedgerError(EngineError):
    """Violación de invariantes del ledger (error de programación)."""

    code = "ledger_error"


class AlreadyInPosition(LedgerError):
    code = "already_in_position"


class NotInPosition(LedgerError):
    code = "not_in_position"


class StreamConnectionError(EngineError):
    """Fallo de transporte (error, cierre inesperado, timeout de heartbeat)."""

    code = "connection_error"


class RateLimited(EngineError):
    """Presupuesto de conexiones agotado en la ventana deslizante."""

    code = "rate_limited"

    def __init__(self, message: str, retry_after_s: int = 0) -> None:
        super().__init__(message)
        self.retry_after_s = int(retry_after_s)


class DataFetchError(EngineError):
    """El colaborador de datos históricos no pudo devolver velas."""

    code = "data_fetch_error"


class SessionNotFound(EngineError):
    code = "session_not_found"


__all__ = [
    "EngineError",
    "InsufficientData",
    "InvalidData",
    "InvalidStrategy",
    "StrategyNotFound",
    "RiskRejected",
    "LedgerError",
    "AlreadyInPosition",
    "NotInPosition",
    "StreamConnectionError",
    "RateLimited",
    "DataFetchError",
    "SessionNotFound",
]
