# src/core/types.py
"""
Tipos y estructuras comunes para el motor (backtest y live).
Pensado para ser estable y compartido por el simulador, el ledger y las sesiones live.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
import math
from typing import Any, Literal, TypedDict

# ------------------------------ Literales ---------------------------------

Side = Literal["long", "short"]
Comparison = Literal["above", "below", "crosses_above", "crosses_below"]
EvalMode = Literal["all", "any"]
ActionKind = Literal["enter", "exit", "hold"]

# Lecturas planas de indicadores en un índice de vela: {"rsi": 28.4, "macd_signal": ...}
Readings = dict[str, float]

SIDES: tuple[str, ...] = ("long", "short")
COMPARISONS: tuple[str, ...] = ("above", "below", "crosses_above", "crosses_below")

# ------------------------------ TypedDicts --------------------------------


class EquityRow(TypedDict, total=False):
    t: int
    equity: float
    drawdown: float


class DecisionRow(TypedDict, total=False):
    """Fila de la traza de depuración (una por vela evaluada)."""

    t: int
    index: int
    close: float
    entry: bool | None
    exit: bool | None
    decision: str
    reason: str
    readings: dict[str, float]


# ------------------------------ Dataclasses -------------------------------


@dataclass(frozen=True)
class Candle:
    """
    Vela OHLCV de intervalo fijo.

    Tiempos en milisegundos UNIX. Inmutable: una vela abierta que recibe
    actualizaciones se sustituye entera en la ventana, no se muta.
    """

    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    close_time: int

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def is_finite(self) -> bool:
        """True si todos los precios y el volumen son finitos."""
        return all(math.isfinite(v) for v in (self.open, self.high, self.low, self.close, self.volume))


@dataclass
class PositionState:
    """
    Snapshot de la posición abierta (como mucho una por sesión).
    """

    in_position: bool = False
    entry_price: float = 0.0
    quantity: float = 0.0
    side: Side = "long"
    entry_time: int = 0

    @property
    def side_mult(self) -> int:
        return -1 if self.side == "short" else 1

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ClosedTrade:
    """Trade cerrado. Se crea al pasar de Open a Flat y no cambia nunca más."""

    entry_time: int
    exit_time: int
    entry_price: float
    exit_price: float
    side: Side
    quantity: float
    profit: float
    profit_percentage: float
    exit_reason: str = ""

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Action:
    """
    Resultado de `core.decision.decide`.

    - kind: "enter" | "exit" | "hold"
    - price/quantity: sólo relevantes en enter/exit
    - entry_signal/exit_signal: evaluación de condiciones (None si no se evaluó)
    """

    kind: ActionKind
    price: float = 0.0
    quantity: float = 0.0
    side: Side = "long"
    reason: str = ""
    entry_signal: bool | None = None
    exit_signal: bool | None = None


__all__ = [
    "Side",
    "Comparison",
    "EvalMode",
    "ActionKind",
    "Readings",
    "SIDES",
    "COMPARISONS",
    "EquityRow",
    "DecisionRow",
    "Candle",
    "PositionState",
    "ClosedTrade",
    "Action",
]
