from __future__ import annotations

# -----------------------------------------------------------------------------
# Métricas de Performance sobre el log de trades (win rate, PF, Sharpe, MaxDD)
# -----------------------------------------------------------------------------

from collections.abc import Sequence
import math
from typing import Any

from core.types import ClosedTrade

# Factor de anualización heredado de fórmulas de Sharpe diario.
# Se aplica a retornos por trade, no por unidad de tiempo (ver DESIGN.md).
ANNUALIZATION_FACTOR = math.sqrt(252)


def calculate_sharpe(returns_pct: Sequence[float]) -> float:
    """
    Sharpe aproximado = media(retorno % por trade) / desviación muestral × √252

    Con menos de 2 trades o desviación nula devuelve 0.0.
    """
    if len(returns_pct) < 2:
        return 0.0
    mean_return = sum(returns_pct) / len(returns_pct)
    variance = sum((r - mean_return) ** 2 for r in returns_pct) / (len(returns_pct) - 1)
    std_return = variance**0.5
    if std_return == 0:
        return 0.0
    return (mean_return / std_return) * ANNUALIZATION_FACTOR


def calculate_profit_factor(trades_pnl: Sequence[float]) -> float:
    """
    Profit Factor = Gross Profit / Gross Loss

    - Sin pérdidas y sin beneficios: 0.0
    - Beneficios sin pérdidas: inf (caso "sin pérdidas")
    """
    gross_profit = sum(p for p in trades_pnl if p > 0)
    gross_loss = abs(sum(p for p in trades_pnl if p < 0))

    if gross_loss == 0:
        return float("inf") if gross_profit > 0 else 0.0
    return gross_profit / gross_loss


def calculate_profit_drawdown(trades_pnl: Sequence[float], initial_balance: float) -> float:
    """
    Máximo drawdown (%) del balance corrido (inicial + beneficio acumulado),
    con el pico arrancando en el balance inicial.
    """
    max_dd = 0.0
    peak = float(initial_balance)
    running = float(initial_balance)
    for pnl in trades_pnl:
        running += pnl
        if running > peak:
            peak = running
        dd = ((peak - running) / peak) * 100 if peak > 0 else 0.0
        if dd > max_dd:
            max_dd = dd
    return max_dd


def equity_drawdown(equity_curve: Sequence[float]) -> float:
    """
    Máximo drawdown (%) de la curva de equity contra su pico móvil.
    """
    if len(equity_curve) < 2:
        return 0.0
    peak = equity_curve[0]
    max_dd = 0.0
    for value in equity_curve:
        if value > peak:
            peak = value
        dd = ((peak - value) / peak) * 100 if peak > 0 else 0.0
        if dd > max_dd:
            max_dd = dd
    return max_dd


def compute_metrics(trades: Sequence[ClosedTrade], initial_balance: float) -> dict[str, Any]:
    """
    Calcula todas las métricas de una vez (función pura sobre el log de trades
    y el balance inicial de la sesión).

    Returns:
        Dict con total/winning/losing trades, win_rate (%), profit_factor,
        total_profit, max_drawdown (%), average_profit, average_loss,
        sharpe_ratio, total_win_amount, total_loss_amount
    """
    pnl = [t.profit for t in trades]
    winners = [p for p in pnl if p > 0]
    losers = [p for p in pnl if p < 0]
    total_win = sum(winners)
    total_loss = abs(sum(losers))

    return {
        "total_trades": len(pnl),
        "winning_trades": len(winners),
        "losing_trades": len(losers),
        "win_rate": (len(winners) / len(pnl)) * 100 if pnl else 0.0,
        "profit_factor": calculate_profit_factor(pnl),
        "total_profit": sum(pnl),
        "max_drawdown": calculate_profit_drawdown(pnl, initial_balance),
        "average_profit": total_win / len(winners) if winners else 0.0,
        "average_loss": total_loss / len(losers) if losers else 0.0,
        "sharpe_ratio": calculate_sharpe([t.profit_percentage for t in trades]),
        "total_win_amount": total_win,
        "total_loss_amount": total_loss,
    }
