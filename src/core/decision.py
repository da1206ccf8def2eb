# src/core/decision.py
"""
Decisión por vela compartida por backtest y live.

`decide` es una función pura: recibe el estado de la posición, el balance,
la estrategia, las lecturas actual/previa y la vela, y devuelve un `Action`.
Quien la llama (SimEngine o LiveSession) aplica el Action a su ledger.

Orden de evaluación con posición abierta:
    1) stop-loss (gana si SL y TP se tocan en la misma vela)
    2) take-profit
    3) condiciones de salida (modo "any")
"""

from __future__ import annotations

from collections.abc import Mapping
import math

from loguru import logger

from core.errors import RiskRejected
from core.types import Action, Candle, PositionState, Side
from strategies.conditions import evaluate
from strategies.definition import RiskManagement, StrategyDefinition

DEFAULT_RISK_FRACTION = 0.01


def stop_loss_price(entry: float, pct: float, side: Side = "long") -> float:
    """Precio de stop a `pct`% de la entrada, en contra de la posición."""
    if side == "short":
        return entry * (100 + pct) / 100
    return entry * (100 - pct) / 100


def take_profit_price(entry: float, pct: float, side: Side = "long") -> float:
    """Precio objetivo a `pct`% de la entrada, a favor de la posición."""
    if side == "short":
        return entry * (100 - pct) / 100
    return entry * (100 + pct) / 100


def size_position(
    balance: float,
    price: float,
    risk: RiskManagement,
    side: Side = "long",
    risk_fraction: float = DEFAULT_RISK_FRACTION,
) -> float:
    """
    Tamaño = min(riesgo / distancia al stop, tope por % del balance).

    - riesgo = balance · risk_fraction
    - sin distancia al stop (SL 0%) sólo aplica el tope
    - balance no positivo → RiskRejected
    """
    if balance <= 0:
        raise RiskRejected(f"Balance no positivo ({balance}): operación rechazada por riesgo")
    if not math.isfinite(price) or price <= 0:
        return 0.0

    max_qty = balance * risk.max_position_size_pct / 100 / price
    stop_distance = abs(price - stop_loss_price(price, risk.stop_loss_pct, side))
    if stop_distance == 0:
        return max_qty
    return min(balance * risk_fraction / stop_distance, max_qty)


def _protective_exit(position: PositionState, risk: RiskManagement, candle: Candle) -> Action | None:
    entry = position.entry_price
    side = position.side

    if risk.stop_loss_pct > 0:
        stop = stop_loss_price(entry, risk.stop_loss_pct, side)
        hit = candle.low <= stop if side == "long" else candle.high >= stop
        if hit:
            return Action("exit", price=stop, quantity=position.quantity, side=side, reason="stop_loss")

    if risk.take_profit_pct > 0:
        target = take_profit_price(entry, risk.take_profit_pct, side)
        hit = candle.high >= target if side == "long" else candle.low <= target
        if hit:
            return Action(
                "exit", price=target, quantity=position.quantity, side=side, reason="take_profit"
            )
    return None


def decide(
    position: PositionState,
    balance: float,
    strategy: StrategyDefinition,
    current: Mapping[str, float],
    previous: Mapping[str, float] | None,
    candle: Candle,
    risk_fraction: float = DEFAULT_RISK_FRACTION,
) -> Action:
    if not position.in_position:
        entry_signal = evaluate(strategy.entry_conditions, "all", current, previous)
        if not entry_signal:
            return Action("hold", entry_signal=False)
        try:
            qty = size_position(balance, candle.close, strategy.risk, strategy.side, risk_fraction)
        except RiskRejected as e:
            logger.warning(f"Entrada descartada: {e}")
            return Action("hold", reason="risk_rejected", entry_signal=True)
        if not math.isfinite(qty) or qty <= 0:
            return Action("hold", reason="size_zero", entry_signal=True)
        return Action(
            "enter",
            price=candle.close,
            quantity=qty,
            side=strategy.side,
            reason="entry_signal",
            entry_signal=True,
        )

    protective = _protective_exit(position, strategy.risk, candle)
    if protective is not None:
        return protective

    exit_signal = evaluate(strategy.exit_conditions, "any", current, previous)
    if exit_signal:
        return Action(
            "exit",
            price=candle.close,
            quantity=position.quantity,
            side=position.side,
            reason="exit_signal",
            exit_signal=True,
        )
    return Action("hold", exit_signal=False)


__all__ = [
    "DEFAULT_RISK_FRACTION",
    "stop_loss_price",
    "take_profit_price",
    "size_position",
    "decide",
]
