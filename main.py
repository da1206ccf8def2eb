# ============================================================
# main.py — Punto de entrada de "cripto_engine"
# ------------------------------------------------------------
# Añade /src al sys.path ANTES de importar módulos del paquete
# "core.*" y expone dos subcomandos:
#
#   backtest  → estrategia JSON + CSV de velas → métricas
#   live      → sesión live (stream de Binance) durante N segundos
#
# Ejemplos:
#   python main.py backtest --candles data/btc_1m.csv --strategy rsi.json
#   python main.py live --strategy rsi.json --symbol BTCUSDT --interval 1m --duration 60
# ============================================================

from __future__ import annotations

import argparse
import asyncio
import json
import math
from pathlib import Path
import sys
from typing import Any

# --- 1) AÑADIR ./src AL sys.path ANTES DE NADA ----------------
PROJECT_ROOT = Path(__file__).parent
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

# --- 2) CARGAR .env (opcional, pero útil pronto) --------------
from dotenv import load_dotenv  # noqa: E402

load_dotenv()

from loguru import logger  # noqa: E402

from core.errors import InvalidData  # noqa: E402
from core.config_loader import get_config, get_nested  # noqa: E402
from core.logger_config import init_logger  # noqa: E402
from core.service import OperationResult, TradingService  # noqa: E402
from data.candles import load_candles_csv  # noqa: E402


def _load_strategy(path: str) -> dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"No existe el JSON de estrategia: {p}")
    with p.open("r", encoding="utf-8") as f:
        return json.load(f)


def _json_safe(value: Any) -> Any:
    """inf/nan → None (JSON estricto), recursivo sobre dicts y listas."""
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


def _print_result(res: OperationResult) -> int:
    print(json.dumps(_json_safe(res.as_dict()), indent=2, default=str, allow_nan=False))
    return 0 if res.ok else 1


def _cmd_backtest(service: TradingService, args: argparse.Namespace) -> int:
    created = service.create_strategy(_load_strategy(args.strategy))
    if not created.ok:
        return _print_result(created)
    try:
        candles = load_candles_csv(args.candles)
    except (FileNotFoundError, InvalidData, ValueError) as e:
        logger.error(f"No se pudieron cargar las velas de {args.candles}: {e}")
        return _print_result(OperationResult.failure("invalid_data", str(e), path=str(args.candles)))
    res = service.run_backtest(
        created.data["id"],
        candles,
        initial_balance=args.balance,
        collect_debug=bool(args.debug_csv),
    )
    if res.ok and args.debug_csv:
        import pandas as pd

        rows = []
        for row in res.data.pop("debug"):
            flat = {k: v for k, v in row.items() if k != "readings"}
            flat.update({f"r_{k}": v for k, v in row.get("readings", {}).items()})
            rows.append(flat)
        pd.DataFrame(rows).to_csv(args.debug_csv, index=False)
        logger.info(f"Traza de depuración guardada en {args.debug_csv}")
    if res.ok and not args.full:
        res.data = {k: v for k, v in res.data.items() if k not in ("equity", "drawdowns")}
    return _print_result(res)


async def _cmd_live(service: TradingService, args: argparse.Namespace) -> int:
    created = service.create_strategy(_load_strategy(args.strategy))
    if not created.ok:
        return _print_result(created)
    started = await service.start_live(created.data["id"], args.symbol, args.interval)
    if not started.ok:
        return _print_result(started)

    session_id = started.data["session_id"]
    try:
        await asyncio.sleep(args.duration)
    finally:
        stopped = await service.stop_live(session_id, forget=True)
    return _print_result(stopped)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Motor de estrategias por indicadores (backtest / live).")
    ap.add_argument("--config", default=None, help="Ruta alternativa a config.yaml")
    ap.add_argument("--log-level", default=None, help="Nivel de log (por defecto LOG_LEVEL o INFO)")
    sub = ap.add_subparsers(dest="command", required=True)

    bt = sub.add_parser("backtest", help="Backtest de una estrategia sobre un CSV de velas")
    bt.add_argument("--candles", required=True, help="CSV con open_time,open,high,low,close,volume")
    bt.add_argument("--strategy", required=True, help="JSON con la definición de la estrategia")
    bt.add_argument("--balance", type=float, default=None, help="Balance inicial")
    bt.add_argument("--debug-csv", default=None, help="Guardar traza por vela en este CSV")
    bt.add_argument("--full", action="store_true", help="Incluir curvas de equity/drawdown")

    lv = sub.add_parser("live", help="Sesión live sobre el stream de Binance (sin órdenes reales)")
    lv.add_argument("--strategy", required=True, help="JSON con la definición de la estrategia")
    lv.add_argument("--symbol", default="BTCUSDT")
    lv.add_argument("--interval", default="1m")
    lv.add_argument("--duration", type=float, default=60.0, help="Segundos antes de parar")
    return ap


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = get_config(args.config)
    init_logger(
        level=args.log_level or get_nested(cfg, "logging", "level"),
        log_dir=get_nested(cfg, "logging", "dir", default="data/logs"),
    )
    service = TradingService.from_config(cfg)

    if args.command == "backtest":
        return _cmd_backtest(service, args)
    return asyncio.run(_cmd_live(service, args))


if __name__ == "__main__":
    sys.exit(main())
