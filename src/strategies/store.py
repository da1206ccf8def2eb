# src/strategies/store.py
"""
Almacén en memoria de estrategias (vive lo que vive el proceso).

Valida al añadir y al actualizar; genera ids `strat_<ms>_<sufijo>` si faltan.
Los accesos son síncronos: una sesión live consulta aquí su estrategia
en cada vela cerrada, así que un `update` se ve en la vela siguiente.
"""

from __future__ import annotations

from collections.abc import Mapping
import secrets
import string
import threading
import time
from typing import Any

from loguru import logger

from core.errors import StrategyNotFound
from strategies.definition import StrategyDefinition

_ALPHABET = string.ascii_lowercase + string.digits


def generate_strategy_id() -> str:
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(9))
    return f"strat_{int(time.time() * 1000)}_{suffix}"


def _coerce(strategy: StrategyDefinition | Mapping[str, Any]) -> StrategyDefinition:
    if isinstance(strategy, StrategyDefinition):
        return strategy
    return StrategyDefinition.from_dict(strategy)


class StrategyStore:
    def __init__(self) -> None:
        self._items: dict[str, StrategyDefinition] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, strategy_id: object) -> bool:
        return strategy_id in self._items

    def add(self, strategy: StrategyDefinition | Mapping[str, Any]) -> str:
        """Valida y guarda. Devuelve el id (generado si no venía)."""
        definition = _coerce(strategy)
        if not definition.id:
            definition = definition.with_id(generate_strategy_id())
        with self._lock:
            self._items[definition.id] = definition
        logger.info(f"Estrategia registrada: {definition.id} ({definition.name})")
        return definition.id

    def get(self, strategy_id: str) -> StrategyDefinition:
        definition = self._items.get(strategy_id)
        if definition is None:
            raise StrategyNotFound(f"Estrategia no encontrada: {strategy_id}")
        return definition

    def find(self, strategy_id: str) -> StrategyDefinition | None:
        return self._items.get(strategy_id)

    def update(self, strategy_id: str, strategy: StrategyDefinition | Mapping[str, Any]) -> StrategyDefinition:
        """Reemplaza la definición conservando el id. StrategyNotFound si no existe."""
        if strategy_id not in self._items:
            raise StrategyNotFound(f"Estrategia no encontrada: {strategy_id}")
        definition = _coerce(strategy).with_id(strategy_id)
        with self._lock:
            self._items[strategy_id] = definition
        logger.info(f"Estrategia actualizada: {strategy_id}")
        return definition

    def delete(self, strategy_id: str) -> bool:
        with self._lock:
            removed = self._items.pop(strategy_id, None)
        if removed is not None:
            logger.info(f"Estrategia eliminada: {strategy_id}")
        return removed is not None

    def list(self) -> list[StrategyDefinition]:
        return list(self._items.values())
