# src/core/sim_engine.py

"""
SimEngine: orquestador de backtests (velas → indicadores → decide → ledger → métricas).

✅ Principios:
- NO hace I/O (ni disco ni red): recibe las velas ya cargadas.
- Determinista: sin reloj ni aleatoriedad; mismas entradas → mismo resultado.
- La decisión por vela es `core.decision.decide`, la misma que usa el modo live.
- Callbacks de eventos ("trade", "equity") para enchufar reporters sin tocar el loop.

📦 Uso típico:
    from core.sim_engine import SimEngine, SimEngineConfig

    engine = SimEngine(SimEngineConfig(initial_balance=10_000, collect_debug=True))
    engine.on("trade", on_trade_callback)
    result = engine.run(candles, strategy)
    result.trades_frame().to_csv("trades.csv")
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Callable

from loguru import logger
import pandas as pd

from core.decision import DEFAULT_RISK_FRACTION, decide
from core.errors import InsufficientData, RiskRejected
from core.ledger import TradeLedger
from core.types import Action, Candle, ClosedTrade, DecisionRow
from features.technical_indicators import compute_indicators, readings_at, validate_candles
from strategies.conditions import explain
from strategies.definition import StrategyDefinition

MIN_CANDLES = 50


# ----------------------------- #
#  Configuración
# ----------------------------- #


@dataclass
class SimEngineConfig:
    """Parámetros del engine.

    Args:
        initial_balance: Balance de partida del ledger.
        min_candles: Mínimo de velas para aceptar un backtest.
        risk_per_trade: Fracción del balance arriesgada por trade (0.01 == 1%).
        exit_at_end: Si True, cierra la posición abierta al cierre de la última vela.
        collect_debug: Si True, guarda una traza por vela (lecturas, señales, acción).
    """

    initial_balance: float = 10_000.0
    min_candles: int = MIN_CANDLES
    risk_per_trade: float = DEFAULT_RISK_FRACTION
    exit_at_end: bool = True
    collect_debug: bool = False

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any] | None) -> SimEngineConfig:
        """Construye desde el dict de config (sección `backtest`), con defaults."""
        section = dict((cfg or {}).get("backtest") or {})
        return cls(
            initial_balance=float(section.get("initial_balance", cls.initial_balance)),
            min_candles=int(section.get("min_candles", cls.min_candles)),
            risk_per_trade=float(section.get("risk_per_trade", cls.risk_per_trade)),
            exit_at_end=bool(section.get("exit_at_end", cls.exit_at_end)),
            collect_debug=bool(section.get("collect_debug", cls.collect_debug)),
        )


# ----------------------------- #
#  Infraestructura de eventos
# ----------------------------- #


class EventBus:
    """Bus de eventos muy simple."""

    def __init__(self) -> None:
        self._subs: dict[str, list[Callable[[dict[str, Any]], None]]] = {}

    def on(self, event: str, fn: Callable[[dict[str, Any]], None]) -> None:
        self._subs.setdefault(event, []).append(fn)

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        for fn in self._subs.get(event, []):
            try:
                fn(payload)
            except Exception as e:  # noqa: BLE001
                # No interrumpir el loop por un callback externo (reporter/dash).
                logger.warning(f"Callback de '{event}' falló: {e!r}")


# ----------------------------- #
#  Resultado
# ----------------------------- #


@dataclass
class BacktestResult:
    trades: list[ClosedTrade]
    metrics: dict[str, Any]
    equity_curve: list[float]
    drawdown_curve: list[float]
    initial_balance: float
    final_balance: float
    equity_times: list[int] = field(default_factory=list)
    debug: list[DecisionRow] = field(default_factory=list)

    def trades_frame(self) -> pd.DataFrame:
        cols = list(ClosedTrade.__dataclass_fields__)
        return pd.DataFrame([t.as_dict() for t in self.trades], columns=cols)

    def equity_frame(self) -> pd.DataFrame:
        df = pd.DataFrame({"equity": self.equity_curve, "drawdown": self.drawdown_curve})
        if len(self.equity_times) == len(df):
            df.insert(0, "t", self.equity_times)
        return df

    def debug_frame(self) -> pd.DataFrame:
        """Traza por vela; las lecturas se expanden a columnas."""
        cols = ["t", "index", "close", "entry", "exit", "decision", "reason"]
        if not self.debug:
            return pd.DataFrame(columns=cols)
        base = pd.DataFrame([{k: row.get(k) for k in cols} for row in self.debug], columns=cols)
        readings = pd.DataFrame([row.get("readings", {}) for row in self.debug])
        readings = readings.drop(columns=[c for c in readings.columns if c in cols])
        return pd.concat([base, readings], axis=1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "trades": [t.as_dict() for t in self.trades],
            "metrics": dict(self.metrics),
            "equity": list(self.equity_curve),
            "drawdowns": list(self.drawdown_curve),
            "initial_balance": self.initial_balance,
            "final_balance": self.final_balance,
        }


# ----------------------------- #
#  Engine principal
# ----------------------------- #


class SimEngine:
    """Motor de simulación de backtests."""

    def __init__(self, cfg: SimEngineConfig | None = None) -> None:
        self.cfg = cfg or SimEngineConfig()
        self.events = EventBus()

    def on(self, event: str, fn: Callable[[dict[str, Any]], None]) -> None:
        """Eventos: 'trade', 'equity'."""
        self.events.on(event, fn)

    def run(self, candles: Sequence[Candle], strategy: StrategyDefinition) -> BacktestResult:
        """Ejecuta el backtest completo.
        - Valida velas y balance.
        - Calcula todas las series una vez.
        - Recorre desde max(offsets, 1): lecturas actual/previa → decide → ledger → mark.
        - Al final, si `exit_at_end`, cierra la posición abierta (end_of_data).
        """
        cfg = self.cfg
        if candles is None or len(candles) < cfg.min_candles:
            n = 0 if candles is None else len(candles)
            raise InsufficientData(
                f"Backtest necesita al menos {cfg.min_candles} velas (hay {n})"
            )
        validate_candles(candles, cfg.min_candles)
        if cfg.initial_balance <= 0:
            raise RiskRejected(f"Balance inicial no positivo: {cfg.initial_balance}")

        series = compute_indicators(candles, strategy.indicators)
        start = max(strategy.warmup, 1)
        ledger = TradeLedger(cfg.initial_balance)
        debug: list[DecisionRow] = []
        times: list[int] = [candles[start - 1].open_time]

        logger.info(
            f"Backtest '{strategy.name}': {len(candles)} velas, warm-up {start}, "
            f"balance {cfg.initial_balance:.2f}"
        )

        previous = readings_at(series, candles, start - 1)
        last = len(candles) - 1
        for i in range(start, len(candles)):
            candle = candles[i]
            current = readings_at(series, candles, i)
            action = decide(
                ledger.position,
                ledger.balance,
                strategy,
                current,
                previous,
                candle,
                cfg.risk_per_trade,
            )
            self._apply(ledger, action, candle)

            if cfg.collect_debug:
                debug.append(self._debug_row(i, candle, action, strategy, current, previous))

            if i == last and cfg.exit_at_end and ledger.is_open:
                trade = ledger.exit(candle.open_time, candle.close, "end_of_data")
                self.events.emit("trade", {"t": candle.open_time, "trade": trade.as_dict()})

            equity = ledger.mark(candle.close)
            times.append(candle.open_time)
            self.events.emit(
                "equity",
                {"t": candle.open_time, "equity": equity, "drawdown": ledger.drawdown_curve[-1]},
            )
            previous = current

        trades = ledger.trades
        result = BacktestResult(
            trades=trades,
            metrics=ledger.metrics(),
            equity_curve=ledger.equity_curve,
            drawdown_curve=ledger.drawdown_curve,
            initial_balance=cfg.initial_balance,
            final_balance=ledger.balance,
            equity_times=times,
            debug=debug,
        )
        logger.info(
            f"Backtest '{strategy.name}' terminado: {len(trades)} trades, "
            f"balance final {ledger.balance:.2f}"
        )
        return result

    # ------------------------- #
    #  Helpers internos del loop
    # ------------------------- #

    def _apply(self, ledger: TradeLedger, action: Action, candle: Candle) -> None:
        if action.kind == "enter":
            ledger.enter(candle.open_time, action.price, action.quantity, action.side)
            self.events.emit(
                "trade",
                {"t": candle.open_time, "entry": ledger.position.as_dict()},
            )
        elif action.kind == "exit":
            trade = ledger.exit(candle.open_time, action.price, action.reason)
            self.events.emit("trade", {"t": candle.open_time, "trade": trade.as_dict()})

    @staticmethod
    def _debug_row(
        index: int,
        candle: Candle,
        action: Action,
        strategy: StrategyDefinition,
        current: dict[str, float],
        previous: dict[str, float],
    ) -> DecisionRow:
        row: DecisionRow = {
            "t": candle.open_time,
            "index": index,
            "close": candle.close,
            "entry": action.entry_signal,
            "exit": action.exit_signal,
            "decision": action.kind,
            "reason": action.reason,
            "readings": dict(current),
        }
        if action.entry_signal is not None:
            logger.debug(
                f"[{index}] entry={action.entry_signal} "
                f"{explain(strategy.entry_conditions, current, previous)}"
            )
        return row


__all__ = ["MIN_CANDLES", "SimEngineConfig", "EventBus", "BacktestResult", "SimEngine"]
