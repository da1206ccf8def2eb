# ============================================================
# src/core/ledger.py — Ciclo de vida de trades de una sesión
# ------------------------------------------------------------
# - Dos estados: Flat (sin posición) y Open (una posición)
# - enter/exit con PnL long/short, log de trades append-only
# - Curva de equity y drawdown contra el pico móvil
# - Métricas derivadas (core.metrics.performance)
# - Compartido por el simulador de backtest y las sesiones live
#
# El ledger es el único dueño de balance/posición/trades/equity
# de una sesión: quien lo use debe tenerlo por referencia.
# ============================================================

from __future__ import annotations

import math
from typing import Any

from loguru import logger

from core.errors import AlreadyInPosition, NotInPosition
from core.metrics.performance import compute_metrics, equity_drawdown
from core.types import SIDES, ClosedTrade, PositionState, Side


class TradeLedger:
    """
    Ledger de una sesión (backtest o live).

    Reglas:
      - Sin piramidación ni netting: como mucho una posición abierta.
      - El lado (long/short) se fija al entrar.
      - Los errores de invariantes se registran y no modifican el estado.
    """

    def __init__(self, initial_balance: float = 10_000.0) -> None:
        self.initial_balance: float = float(initial_balance)
        self.balance: float = float(initial_balance)
        self.position: PositionState = PositionState()
        self._trades: list[ClosedTrade] = []
        self._equity: list[float] = [self.initial_balance]
        self._drawdowns: list[float] = [0.0]
        self._peak: float = self.initial_balance

    # -------- Lectura --------
    @property
    def is_open(self) -> bool:
        return self.position.in_position

    @property
    def trades(self) -> list[ClosedTrade]:
        return list(self._trades)

    @property
    def equity_curve(self) -> list[float]:
        return list(self._equity)

    @property
    def drawdown_curve(self) -> list[float]:
        return list(self._drawdowns)

    def unrealized_pnl(self, price: float) -> float:
        """PnL no realizado de la posición abierta a `price` (0.0 si Flat)."""
        pos = self.position
        if not pos.in_position:
            return 0.0
        return (price - pos.entry_price) * pos.quantity * pos.side_mult

    def equity(self, price: float) -> float:
        return self.balance + self.unrealized_pnl(price)

    # -------- Transiciones --------
    def enter(self, time: int, price: float, quantity: float, side: Side = "long") -> PositionState:
        """Flat → Open."""
        if self.position.in_position:
            logger.error(
                f"enter rechazado: ya hay posición abierta ({self.position.side} "
                f"{self.position.quantity:.8f} @ {self.position.entry_price:.8f})"
            )
            raise AlreadyInPosition("Ya hay una posición abierta")
        if side not in SIDES:
            raise ValueError(f"side inválido: {side!r}")
        if not (math.isfinite(price) and math.isfinite(quantity)):
            raise ValueError(f"price y quantity deben ser finitos (price={price}, qty={quantity})")
        if price <= 0 or quantity <= 0:
            raise ValueError(f"price y quantity deben ser > 0 (price={price}, qty={quantity})")

        self.position = PositionState(
            in_position=True,
            entry_price=float(price),
            quantity=float(quantity),
            side=side,
            entry_time=int(time),
        )
        logger.info(f"ENTRY {side} {quantity:.8f} @ {price:.8f} (t={time})")
        return self.position

    def exit(self, time: int, price: float, reason: str = "") -> ClosedTrade:
        """Open → Flat. Registra el trade cerrado y actualiza el balance."""
        pos = self.position
        if not pos.in_position:
            logger.error("exit rechazado: no hay posición abierta")
            raise NotInPosition("No hay posición abierta")

        profit = (price - pos.entry_price) * pos.quantity * pos.side_mult
        trade = ClosedTrade(
            entry_time=pos.entry_time,
            exit_time=int(time),
            entry_price=pos.entry_price,
            exit_price=float(price),
            side=pos.side,
            quantity=pos.quantity,
            profit=profit,
            profit_percentage=(profit / (pos.entry_price * pos.quantity)) * 100,
            exit_reason=reason,
        )
        self._trades.append(trade)
        self.balance += profit
        self.position = PositionState()

        logger.info(
            f"EXIT {trade.side} {trade.quantity:.8f} @ {price:.8f} "
            f"pnl={profit:.4f} ({trade.profit_percentage:.2f}%) reason={reason or '-'}"
        )
        return trade

    def mark(self, price: float) -> float:
        """
        Añade un punto a la curva de equity (balance si Flat, balance + PnL no
        realizado si Open) y recalcula el drawdown contra el pico móvil.
        """
        value = self.equity(price) if self.position.in_position else self.balance
        self._equity.append(value)
        if value > self._peak:
            self._peak = value
        self._drawdowns.append(((self._peak - value) / self._peak) * 100 if self._peak > 0 else 0.0)
        return value

    # -------- Reporting --------
    def metrics(self) -> dict[str, Any]:
        data = compute_metrics(self._trades, self.initial_balance)
        data["equity_drawdown"] = equity_drawdown(self._equity)
        return data

    def snapshot(self) -> dict[str, Any]:
        """Resumen serializable del estado actual."""
        return {
            "initial_balance": self.initial_balance,
            "balance": self.balance,
            "position": self.position.as_dict(),
            "trades": [t.as_dict() for t in self._trades],
            "equity_points": len(self._equity),
            "last_equity": self._equity[-1],
            "last_drawdown": self._drawdowns[-1],
        }
