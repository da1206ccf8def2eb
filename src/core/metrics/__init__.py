"""
Core metrics package.

Métricas de performance calculadas sobre el log de trades del ledger
(win rate, profit factor, drawdown, Sharpe) y sobre la curva de equity.
"""

from __future__ import annotations

from .performance import (
    ANNUALIZATION_FACTOR,
    calculate_profit_drawdown,
    calculate_profit_factor,
    calculate_sharpe,
    compute_metrics,
    equity_drawdown,
)

__all__ = [
    "ANNUALIZATION_FACTOR",
    "calculate_sharpe",
    "calculate_profit_factor",
    "calculate_profit_drawdown",
    "equity_drawdown",
    "compute_metrics",
]
