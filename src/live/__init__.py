# src/live/__init__.py
"""
Modo live: sesiones alimentadas por el stream de Binance (sin órdenes reales).
"""

from .manager import LiveSessionManager
from .rate_limit import ConnectionBudget, MessageRateLimiter
from .reconnect import ConnectionState, ReconnectPolicy, ReconnectState
from .session import LiveConfig, LiveSession, SessionStatus

__all__ = [
    "LiveSessionManager",
    "LiveSession",
    "LiveConfig",
    "SessionStatus",
    "ConnectionBudget",
    "MessageRateLimiter",
    "ConnectionState",
    "ReconnectPolicy",
    "ReconnectState",
]
