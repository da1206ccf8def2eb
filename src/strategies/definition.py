# src/strategies/definition.py
"""
Definición declarativa de estrategias.

Una estrategia es datos, no código:
- indicadores con nombre (tipo + parámetros),
- condiciones de entrada (se evalúan en modo "all"),
- condiciones de salida (modo "any"),
- parámetros de riesgo (stop-loss %, take-profit %, tamaño máximo %),
- lado de las operaciones (long por defecto).

`StrategyDefinition.from_dict` acepta tanto el payload camelCase
(`entryConditions`, `riskManagement.stopLoss`, `targetIndicator`, ...) como
snake_case. Cualquier incoherencia se detecta aquí y lanza InvalidStrategy.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from core.errors import InvalidStrategy
from core.types import COMPARISONS, SIDES, Comparison, Side
from features.technical_indicators import IndicatorSpec, max_offset

# Campos de vela siempre disponibles como "indicador" en las condiciones
READING_FIELDS: tuple[str, ...] = ("price", "open", "high", "low", "close", "volume")


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _as_float(value: Any, label: str) -> float:
    if isinstance(value, bool):
        raise InvalidStrategy(f"{label} debe ser numérico (recibido {value!r})")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise InvalidStrategy(f"{label} debe ser numérico (recibido {value!r})") from e


# ------------------------------- Condiciones -------------------------------


@dataclass(frozen=True)
class Condition:
    """
    Regla atómica: `indicator` `comparison` (`value` | `target_indicator`).

    Exactamente uno de `value` / `target_indicator` está activo.
    """

    indicator: str
    comparison: Comparison
    value: float | None = None
    target_indicator: str | None = None

    def __post_init__(self) -> None:
        if not self.indicator:
            raise InvalidStrategy("Condición sin indicador")
        if self.comparison not in COMPARISONS:
            raise InvalidStrategy(f"Comparación no soportada: {self.comparison!r}")
        if (self.value is None) == (self.target_indicator is None):
            raise InvalidStrategy(
                f"La condición sobre '{self.indicator}' necesita exactamente uno de "
                "value / target_indicator"
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | Condition) -> Condition:
        if isinstance(data, Condition):
            return data
        if not isinstance(data, Mapping):
            raise InvalidStrategy(f"Condición inválida: {data!r}")

        indicator = _pick(data, "indicator")
        comparison = _pick(data, "comparison")
        target = _pick(data, "target_indicator", "targetIndicator")
        raw_value = _pick(data, "value")

        value: float | None = None
        if target is not None:
            # Con indicador objetivo el literal se ignora (los payloads camelCase suelen mandar ambos)
            target = str(target)
        elif isinstance(raw_value, str) and raw_value.strip():
            try:
                value = float(raw_value)
            except ValueError:
                target = raw_value.strip()
        elif raw_value is not None:
            value = _as_float(raw_value, f"value de '{indicator}'")

        return cls(
            indicator=str(indicator or ""),
            comparison=str(comparison or "").strip().lower(),  # type: ignore[arg-type]
            value=value,
            target_indicator=target,
        )

    def references(self) -> tuple[str, ...]:
        return (self.indicator,) if self.target_indicator is None else (
            self.indicator,
            self.target_indicator,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "indicator": self.indicator,
            "comparison": self.comparison,
            "value": self.value,
            "target_indicator": self.target_indicator,
        }


# ----------------------------------- Riesgo -----------------------------------


@dataclass(frozen=True)
class RiskManagement:
    """Porcentajes (2.0 == 2%)."""

    stop_loss_pct: float
    take_profit_pct: float
    max_position_size_pct: float

    def __post_init__(self) -> None:
        if self.stop_loss_pct < 0 or self.stop_loss_pct >= 100:
            raise InvalidStrategy(f"stop_loss_pct fuera de rango: {self.stop_loss_pct}")
        if self.take_profit_pct < 0:
            raise InvalidStrategy(f"take_profit_pct negativo: {self.take_profit_pct}")
        if self.max_position_size_pct <= 0 or self.max_position_size_pct > 100:
            raise InvalidStrategy(
                f"max_position_size_pct debe estar en (0, 100]: {self.max_position_size_pct}"
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | RiskManagement) -> RiskManagement:
        if isinstance(data, RiskManagement):
            return data
        if not isinstance(data, Mapping):
            raise InvalidStrategy("La estrategia debe tener parámetros de riesgo")
        sl = _pick(data, "stop_loss_pct", "stop_loss", "stopLoss")
        tp = _pick(data, "take_profit_pct", "take_profit", "takeProfit")
        size = _pick(data, "max_position_size_pct", "max_position_size", "maxPositionSize")
        pairs = (("stop_loss", sl), ("take_profit", tp), ("max_position_size", size))
        missing = [k for k, v in pairs if v is None]
        if missing:
            raise InvalidStrategy(f"Faltan parámetros de riesgo: {missing}")
        return cls(
            stop_loss_pct=_as_float(sl, "stop_loss"),
            take_profit_pct=_as_float(tp, "take_profit"),
            max_position_size_pct=_as_float(size, "max_position_size"),
        )

    def as_dict(self) -> dict[str, float]:
        return {
            "stop_loss_pct": self.stop_loss_pct,
            "take_profit_pct": self.take_profit_pct,
            "max_position_size_pct": self.max_position_size_pct,
        }


# --------------------------------- Estrategia ---------------------------------


@dataclass(frozen=True)
class StrategyDefinition:
    id: str
    name: str
    indicators: dict[str, IndicatorSpec]
    entry_conditions: tuple[Condition, ...]
    exit_conditions: tuple[Condition, ...]
    risk: RiskManagement
    description: str = ""
    side: Side = "long"
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        if not self.name:
            raise InvalidStrategy("La estrategia necesita un nombre")
        if not self.indicators:
            raise InvalidStrategy("La estrategia debe tener al menos un indicador")
        if not self.entry_conditions:
            raise InvalidStrategy("La estrategia debe tener al menos una condición de entrada")
        if not self.exit_conditions:
            raise InvalidStrategy("La estrategia debe tener al menos una condición de salida")
        if self.side not in SIDES:
            raise InvalidStrategy(f"side inválido: {self.side!r}")
        for cond in (*self.entry_conditions, *self.exit_conditions):
            for ref in cond.references():
                if not self.knows(ref):
                    raise InvalidStrategy(f"La condición usa un indicador no declarado: '{ref}'")

    # ------------------------------------------------------------------
    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StrategyDefinition:
        if not isinstance(data, Mapping):
            raise InvalidStrategy(f"Estrategia inválida: {type(data).__name__}")

        raw_indicators = _pick(data, "indicators", default={})
        if not isinstance(raw_indicators, Mapping):
            raise InvalidStrategy("'indicators' debe ser un diccionario nombre → {type, params}")
        indicators = {str(k): IndicatorSpec.from_dict(v) for k, v in raw_indicators.items()}

        entry = _pick(data, "entry_conditions", "entryConditions", default=[])
        exit_ = _pick(data, "exit_conditions", "exitConditions", default=[])
        if not isinstance(entry, (list, tuple)) or not isinstance(exit_, (list, tuple)):
            raise InvalidStrategy("Las condiciones deben ser listas")

        risk_raw = _pick(data, "risk", "risk_management", "riskManagement")
        if risk_raw is None:
            raise InvalidStrategy("La estrategia debe tener parámetros de riesgo")

        known = {
            "id", "name", "description", "indicators", "side",
            "entry_conditions", "entryConditions", "exit_conditions", "exitConditions",
            "risk", "risk_management", "riskManagement",
        }
        return cls(
            id=str(_pick(data, "id", default="")),
            name=str(_pick(data, "name", default="")),
            description=str(_pick(data, "description", default="")),
            indicators=indicators,
            entry_conditions=tuple(Condition.from_dict(c) for c in entry),
            exit_conditions=tuple(Condition.from_dict(c) for c in exit_),
            risk=RiskManagement.from_dict(risk_raw),
            side=str(_pick(data, "side", default="long")).lower(),  # type: ignore[arg-type]
            extra={k: v for k, v in data.items() if k not in known},
        )

    def with_id(self, strategy_id: str) -> StrategyDefinition:
        return replace(self, id=strategy_id)

    # ------------------------------------------------------------------
    def knows(self, ref: str) -> bool:
        """True si `ref` es un campo de vela, un indicador o `<indicador>_<componente>`."""
        if ref in READING_FIELDS or ref in self.indicators:
            return True
        base, _, component = ref.rpartition("_")
        return bool(component) and base in self.indicators

    @property
    def warmup(self) -> int:
        return max_offset(self.indicators)

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "side": self.side,
            "indicators": {
                name: {"type": spec.type, "params": dict(spec.params)}
                for name, spec in self.indicators.items()
            },
            "entry_conditions": [c.as_dict() for c in self.entry_conditions],
            "exit_conditions": [c.as_dict() for c in self.exit_conditions],
            "risk": self.risk.as_dict(),
        }


__all__ = ["READING_FIELDS", "Condition", "RiskManagement", "StrategyDefinition"]
