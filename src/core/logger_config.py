# ============================================================
# src/core/logger_config.py — Configuración central del logger
# ------------------------------------------------------------
# Este módulo define una función init_logger() que configura
# el logger global de Loguru según las variables del entorno (.env)
#
# Todos los módulos hacen `from loguru import logger`; sólo los
# puntos de entrada (main.py, tools) llaman a init_logger().
#
# El logger escribe en:
#   - Consola (colorizada, nivel configurable)
#   - Archivo de logs (rotación diaria en data/logs/)
#
# ============================================================

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


# ============================================================
# Función: init_logger
# ============================================================
def init_logger(
    level: str | None = None,
    log_dir: str | Path | None = "data/logs",
    filename: str = "engine.log",
) -> Path | None:
    """
    Inicializa la configuración global del logger.

    - level: nivel explícito; si es None se lee LOG_LEVEL del entorno (.env), INFO por defecto.
    - log_dir: carpeta del archivo de logs; None desactiva el sink de archivo.

    Devuelve la ruta del archivo de logs (o None).
    """

    # --- Cargar variables del .env ---
    load_dotenv(override=False)
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    # --- Eliminar configuración previa ---
    logger.remove()

    # --- Añadir salida a consola (colorizada) ---
    logger.add(
        sink=lambda msg: print(msg, end=""),
        level=log_level,
        colorize=True,
        format=LOG_FORMAT,
    )

    if log_dir is None:
        logger.debug(f"Logger inicializado (nivel {log_level}, sin archivo)")
        return None

    # --- Crear carpeta para logs (si no existe) ---
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    log_file_path = log_path / filename

    # --- Añadir salida a archivo (rotación diaria) ---
    logger.add(
        sink=log_file_path,
        level=log_level,
        rotation="1 day",  # crea un archivo nuevo cada día
        retention="7 days",  # mantiene 7 días de logs
        enqueue=True,  # thread-safe
        backtrace=True,
        diagnose=False,
        format=LOG_FORMAT,
    )

    logger.info(f"Logger inicializado (nivel {log_level})")
    logger.debug(f"Logs guardados en: {log_file_path}")
    return log_file_path
