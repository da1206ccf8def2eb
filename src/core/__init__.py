"""Core engine components (tipos, errores, ledger, decisión, simulador, servicio)."""

# Re-export de tipos y errores (sin dependencias pesadas para evitar ciclos)
from core.errors import (
    DataFetchError,
    EngineError,
    InsufficientData,
    InvalidData,
    InvalidStrategy,
    RateLimited,
    RiskRejected,
    SessionNotFound,
    StrategyNotFound,
)
from core.types import Action, Candle, ClosedTrade, PositionState

__all__ = [
    # Tipos
    "Action",
    "Candle",
    "ClosedTrade",
    "PositionState",
    # Errores
    "EngineError",
    "InsufficientData",
    "InvalidData",
    "InvalidStrategy",
    "StrategyNotFound",
    "RiskRejected",
    "RateLimited",
    "DataFetchError",
    "SessionNotFound",
]
