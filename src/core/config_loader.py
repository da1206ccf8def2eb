# ============================================================
# src/core/config_loader.py — Cargador central de configuración
# ------------------------------------------------------------
# OBJETIVO:
#   Leer la configuración del motor desde un archivo YAML
#   (src/config/config.yaml) y aplicar "overrides" desde variables
#   de entorno (.env).
#
# CARACTERÍSTICAS:
#   - Cache interna (evita relecturas del archivo en cada import).
#   - Overrides vía .env (LOG_LEVEL, INITIAL_BALANCE, RISK_PER_TRADE,
#     BINANCE_REST_URL, BINANCE_WS_URL).
#   - Validación mínima del esquema (claves imprescindibles).
#
# USO BÁSICO:
#   from core.config_loader import get_config
#   from core.sim_engine import SimEngineConfig
#   cfg = get_config()
#   engine_cfg = SimEngineConfig.from_config(cfg)
#
# NOTA:
#   Este módulo NO configura logs (evita dependencia circular).
# ============================================================

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, MutableMapping, Optional

from dotenv import load_dotenv
import yaml

# ------------------------------------------------------------
# Constantes y cache interna
# ------------------------------------------------------------
DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[1] / "config" / "config.yaml"

# Cache global para evitar relecturas constantes.
# Se invalida llamando a reload_config().
_CONFIG_CACHE: Optional[Dict[str, Any]] = None

# Mapeo: ENV_VAR -> (ruta en config.yaml, tipo)
ENV_TO_CFG: Dict[str, tuple[tuple[str, str], type]] = {
    "LOG_LEVEL": (("logging", "level"), str),
    "INITIAL_BALANCE": (("backtest", "initial_balance"), float),
    "RISK_PER_TRADE": (("backtest", "risk_per_trade"), float),
    "BINANCE_REST_URL": (("exchange", "rest_url"), str),
    "BINANCE_WS_URL": (("exchange", "ws_url"), str),
}

REQUIRED_PATHS: List[tuple[str, str]] = [
    ("backtest", "initial_balance"),
    ("backtest", "min_candles"),
    ("live", "window_size"),
    ("exchange", "rest_url"),
    ("exchange", "ws_url"),
    ("logging", "level"),
]


# ------------------------------------------------------------
# Utilidades internas
# ------------------------------------------------------------
def _ensure_file_exists(path: Path) -> None:
    if not path.exists():
        raise FileNotFoundError(f"No se encontró el archivo de configuración: {path.resolve()}")


def _deep_set(d: MutableMapping[str, Any], keys: Iterable[str], value: Any) -> None:
    """
    Asigna value en un diccionario anidado siguiendo la lista de 'keys'.
    Crea los nodos intermedios si no existen.
    """
    keys = list(keys)
    current = d
    for k in keys[:-1]:
        if k not in current or not isinstance(current[k], dict):
            current[k] = {}
        current = current[k]
    current[keys[-1]] = value


# ------------------------------------------------------------
# Carga YAML + overrides desde .env
# ------------------------------------------------------------
def _load_yaml_config(path: Path) -> Dict[str, Any]:
    _ensure_file_exists(path)
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"El YAML debe mapear a dict en la raíz. Archivo: {path}")
    return data


def _apply_env_overrides(cfg: Dict[str, Any]) -> None:
    """
    Aplica overrides de variables de entorno (.env) sobre el dict `cfg`.
    Mantén este mapeo corto y explícito para evitar sorpresas.
    """
    load_dotenv(override=False)

    for env_var, (path_keys, kind) in ENV_TO_CFG.items():
        raw = os.getenv(env_var)
        if raw is None or raw == "":
            continue
        try:
            value = kind(raw)
        except ValueError as e:
            raise ValueError(f"{env_var}={raw!r} no es un {kind.__name__} válido") from e
        _deep_set(cfg, path_keys, value)


# ------------------------------------------------------------
# Validación mínima del esquema (imprescindibles)
# ------------------------------------------------------------
def _validate_schema(cfg: Dict[str, Any]) -> None:
    """
    Valida que existan las secciones y claves mínimas.
    Lanza ValueError si falta algo crítico.
    """
    missing: List[str] = []
    for path_keys in REQUIRED_PATHS:
        if get_nested(cfg, *path_keys, default=None) is None:
            missing.append(".".join(path_keys))

    if missing:
        raise ValueError(
            "Faltan claves imprescindibles en config.yaml (o tras overrides): " + ", ".join(missing)
        )


# ------------------------------------------------------------
# API pública
# ------------------------------------------------------------
def get_config(path: Optional[Path | str] = None, use_cache: bool = True) -> Dict[str, Any]:
    """
    Devuelve la configuración como diccionario.
    - path: ruta alternativa al YAML (opcional).
    - use_cache: si True, reutiliza la última carga (más rápido).
    """
    global _CONFIG_CACHE
    if use_cache and _CONFIG_CACHE is not None and path is None:
        return _CONFIG_CACHE

    cfg_path = Path(path) if path else DEFAULT_CONFIG_PATH
    cfg = _load_yaml_config(cfg_path)
    _apply_env_overrides(cfg)
    _validate_schema(cfg)

    if path is None:
        _CONFIG_CACHE = cfg
    return cfg


def reload_config(path: Optional[Path | str] = None) -> Dict[str, Any]:
    """Fuerza la recarga del YAML y re-aplica overrides del .env."""
    global _CONFIG_CACHE
    _CONFIG_CACHE = None
    return get_config(path=path, use_cache=False)


def get_nested(cfg: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """
    Acceso seguro a valores anidados: get_nested(cfg, "exchange", "ws_url")
    Devuelve `default` si no existe la ruta.
    """
    node: Any = cfg
    for k in keys:
        if not isinstance(node, dict) or k not in node:
            return default
        node = node[k]
    return node
