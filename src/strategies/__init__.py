# src/strategies/__init__.py
"""
Estrategias declarativas.

- `definition`: StrategyDefinition / Condition / RiskManagement (+ validación)
- `conditions`: evaluador de condiciones (above/below/crosses_*)
- `store`: almacén en memoria con ids generados
"""

from __future__ import annotations

from .conditions import evaluate, evaluate_condition, explain
from .definition import Condition, RiskManagement, StrategyDefinition
from .store import StrategyStore, generate_strategy_id

__all__ = [
    "Condition",
    "RiskManagement",
    "StrategyDefinition",
    "StrategyStore",
    "evaluate",
    "evaluate_condition",
    "explain",
    "generate_strategy_id",
]
