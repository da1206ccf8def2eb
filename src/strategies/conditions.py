# src/strategies/conditions.py
"""
Evaluador de condiciones sobre lecturas planas de indicadores.

- above / below: comparación contra el valor actual del objetivo.
- crosses_above / crosses_below: necesitan lectura previa del indicador
  (y del objetivo si es otro indicador); sin ella la condición es falsa.
- Lecturas ausentes → condición falsa (nunca lanza).
- Entrada: modo "all". Salida: modo "any". Lista vacía → False.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import math

from core.types import EvalMode
from strategies.definition import Condition

__all__ = ["evaluate_condition", "evaluate", "explain"]


def _lookup(readings: Mapping[str, float] | None, key: str) -> float | None:
    if readings is None:
        return None
    value = readings.get(key)
    if value is None:
        return None
    value = float(value)
    return None if math.isnan(value) else value


def _target(cond: Condition, readings: Mapping[str, float] | None) -> float | None:
    if cond.target_indicator is not None:
        return _lookup(readings, cond.target_indicator)
    return cond.value


def evaluate_condition(
    cond: Condition,
    current: Mapping[str, float],
    previous: Mapping[str, float] | None = None,
) -> bool:
    value = _lookup(current, cond.indicator)
    target = _target(cond, current)
    if value is None or target is None:
        return False

    if cond.comparison == "above":
        return value > target
    if cond.comparison == "below":
        return value < target

    prev_value = _lookup(previous, cond.indicator)
    # Con objetivo literal el objetivo previo es el mismo literal
    prev_target = _target(cond, previous) if cond.target_indicator else cond.value
    if prev_value is None or prev_target is None:
        return False

    if cond.comparison == "crosses_above":
        return prev_value <= prev_target and value > target
    if cond.comparison == "crosses_below":
        return prev_value >= prev_target and value < target
    return False


def evaluate(
    conditions: Sequence[Condition],
    mode: EvalMode,
    current: Mapping[str, float],
    previous: Mapping[str, float] | None = None,
) -> bool:
    if not conditions:
        return False
    results = (evaluate_condition(c, current, previous) for c in conditions)
    if mode == "all":
        return all(results)
    if mode == "any":
        return any(results)
    raise ValueError(f"Modo de evaluación inválido: {mode!r}")


def explain(
    conditions: Sequence[Condition],
    current: Mapping[str, float],
    previous: Mapping[str, float] | None = None,
) -> list[dict[str, object]]:
    """Resultado de cada condición por separado (para trazas de depuración)."""
    out: list[dict[str, object]] = []
    for cond in conditions:
        out.append(
            {
                "indicator": cond.indicator,
                "comparison": cond.comparison,
                "target": cond.target_indicator if cond.target_indicator else cond.value,
                "value": _lookup(current, cond.indicator),
                "result": evaluate_condition(cond, current, previous),
            }
        )
    return out
