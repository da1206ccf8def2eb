# src/core/service.py
"""
Fachada de servicio: une almacén de estrategias, simulador y gestor live,
y traduce los errores de dominio a resultados estructurados.

Nunca lanza errores de dominio hacia fuera: devuelve `OperationResult`
con `ok=False` y un `code` estable (session_not_found, strategy_not_found,
insufficient_data, invalid_data, invalid_strategy, risk_rejected,
rate_limited, data_fetch_error, invalid_request, backtest_not_found).
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from loguru import logger

from core.errors import EngineError, InsufficientData, RateLimited, RiskRejected
from core.sim_engine import BacktestResult, SimEngine, SimEngineConfig
from core.types import Candle
from data.binance_klines import DEFAULT_REST_URL, BinanceKlinesClient, CandleFetcher
from exchange.binance_stream import StreamTransport, WebsocketsTransport
from features.technical_indicators import DEFAULT_PARAMS, IndicatorSpec, indicator_frame
from live.manager import LiveSessionManager
from live.rate_limit import ConnectionBudget
from live.session import LiveConfig
from strategies.store import StrategyStore

# Velas mínimas para `analyze_indicators`
ANALYSIS_MIN_CANDLES = 50


@dataclass
class OperationResult:
    ok: bool
    code: str = "ok"
    message: str = ""
    data: Any = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, data: Any = None, message: str = "") -> OperationResult:
        return cls(ok=True, data=data, message=message)

    @classmethod
    def failure(cls, code: str, message: str, **details: Any) -> OperationResult:
        return cls(ok=False, code=code, message=message, details=details)

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ok": self.ok, "code": self.code, "message": self.message}
        if self.data is not None:
            out["data"] = self.data
        if self.details:
            out["details"] = dict(self.details)
        return out


def _from_error(e: Exception) -> OperationResult:
    if isinstance(e, RateLimited):
        return OperationResult.failure(e.code, str(e), retry_after_s=e.retry_after_s)
    if isinstance(e, RiskRejected):
        return OperationResult.failure(e.code, f"operation rejected by risk rules: {e}")
    if isinstance(e, EngineError):
        return OperationResult.failure(e.code, str(e))
    return OperationResult.failure("invalid_request", str(e))


class TradingService:
    def __init__(
        self,
        store: Optional[StrategyStore] = None,
        fetcher: Optional[CandleFetcher] = None,
        transport: Optional[StreamTransport] = None,
        sim_config: Optional[SimEngineConfig] = None,
        live_config: Optional[LiveConfig] = None,
        budget: Optional[ConnectionBudget] = None,
    ) -> None:
        self.store = store or StrategyStore()
        self.fetcher = fetcher or BinanceKlinesClient()
        self.sim_config = sim_config or SimEngineConfig()
        self.live = LiveSessionManager(
            self.store,
            self.fetcher,
            transport or WebsocketsTransport(),
            config=live_config,
            budget=budget,
        )
        self._results: dict[str, BacktestResult] = {}

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any], **kwargs: Any) -> TradingService:
        exchange = dict(cfg.get("exchange") or {})
        fetcher = kwargs.pop("fetcher", None) or BinanceKlinesClient(
            rest_url=exchange.get("rest_url", DEFAULT_REST_URL),
            timeout_s=float(exchange.get("request_timeout_s", 10.0)),
        )
        return cls(
            fetcher=fetcher,
            sim_config=SimEngineConfig.from_config(cfg),
            live_config=LiveConfig.from_config(cfg),
            **kwargs,
        )

    # ------------------------------------------------------------ estrategias
    def create_strategy(self, payload: Mapping[str, Any]) -> OperationResult:
        try:
            strategy_id = self.store.add(payload)
        except (EngineError, ValueError) as e:
            return _from_error(e)
        return OperationResult.success({"id": strategy_id}, "strategy created")

    def get_strategy(self, strategy_id: str) -> OperationResult:
        try:
            return OperationResult.success(self.store.get(strategy_id).as_dict())
        except EngineError as e:
            return _from_error(e)

    def list_strategies(self) -> OperationResult:
        return OperationResult.success([s.as_dict() for s in self.store.list()])

    def update_strategy(self, strategy_id: str, payload: Mapping[str, Any]) -> OperationResult:
        try:
            definition = self.store.update(strategy_id, payload)
        except (EngineError, ValueError) as e:
            return _from_error(e)
        return OperationResult.success(definition.as_dict(), "strategy updated")

    def delete_strategy(self, strategy_id: str) -> OperationResult:
        if not self.store.delete(strategy_id):
            return OperationResult.failure(
                "strategy_not_found", f"Estrategia no encontrada: {strategy_id}"
            )
        self._results.pop(strategy_id, None)
        return OperationResult.success({"id": strategy_id}, "strategy deleted")

    # --------------------------------------------------------------- backtest
    def _engine(self, initial_balance: Optional[float], collect_debug: bool) -> SimEngine:
        cfg = self.sim_config
        if initial_balance is not None:
            cfg = replace(cfg, initial_balance=float(initial_balance))
        if collect_debug:
            cfg = replace(cfg, collect_debug=True)
        return SimEngine(cfg)

    def run_backtest(
        self,
        strategy_id: str,
        candles: Sequence[Candle],
        initial_balance: Optional[float] = None,
        collect_debug: bool = False,
    ) -> OperationResult:
        try:
            strategy = self.store.get(strategy_id)
            result = self._engine(initial_balance, collect_debug).run(candles, strategy)
        except (EngineError, ValueError) as e:
            logger.warning(f"Backtest {strategy_id} fallido: {e}")
            return _from_error(e)
        self._results[strategy_id] = result
        data = result.to_dict()
        if collect_debug:
            data["debug"] = list(result.debug)
        return OperationResult.success(data)

    async def backtest_range(
        self,
        strategy_id: str,
        symbol: str,
        interval: str,
        start: int,
        end: int,
        initial_balance: Optional[float] = None,
    ) -> OperationResult:
        try:
            self.store.get(strategy_id)
            candles = await self.fetcher.fetch_candles(symbol, interval, start, end)
        except (EngineError, ValueError) as e:
            return _from_error(e)
        return self.run_backtest(strategy_id, candles, initial_balance)

    def backtest_result(self, strategy_id: str) -> OperationResult:
        """Último resultado de backtest guardado para la estrategia."""
        if self.store.find(strategy_id) is None:
            return OperationResult.failure(
                "strategy_not_found", f"Estrategia no encontrada: {strategy_id}"
            )
        result = self._results.get(strategy_id)
        if result is None:
            return OperationResult.failure(
                "backtest_not_found", f"Sin resultado de backtest para {strategy_id}"
            )
        return OperationResult.success(result.to_dict())

    # --------------------------------------------------------------- análisis
    async def analyze_indicators(
        self,
        symbol: str,
        interval: str,
        start: int,
        end: int,
        specs: Optional[Mapping[str, IndicatorSpec | Mapping[str, Any]]] = None,
    ) -> OperationResult:
        """
        Velas del rango + indicadores alineados (una fila por vela).

        Sin `specs` calcula el juego por defecto (RSI, MACD, Bollinger, SMA, EMA)
        con sus parámetros por defecto. Los valores de warm-up salen como None.
        """
        if specs is None:
            specs = {kind: {"type": kind} for kind in DEFAULT_PARAMS}
        try:
            candles = await self.fetcher.fetch_candles(symbol, interval, start, end)
            if len(candles) < ANALYSIS_MIN_CANDLES:
                raise InsufficientData(
                    f"Análisis necesita al menos {ANALYSIS_MIN_CANDLES} velas (hay {len(candles)})"
                )
            df = indicator_frame(candles, specs)
        except (EngineError, ValueError) as e:
            logger.warning(f"Análisis de indicadores {symbol} {interval} fallido: {e}")
            return _from_error(e)
        records = df.astype(object).where(df.notna(), None).to_dict(orient="records")
        return OperationResult.success(
            {
                "symbol": symbol.upper(),
                "interval": interval,
                "columns": list(df.columns),
                "rows": records,
            }
        )

    # ------------------------------------------------------------------ live
    async def start_live(self, strategy_id: str, symbol: str, interval: str = "1m") -> OperationResult:
        try:
            session_id = await self.live.start(strategy_id, symbol, interval)
        except (EngineError, ValueError) as e:
            logger.error(f"No se pudo iniciar la sesión live ({strategy_id} {symbol}): {e}")
            return _from_error(e)
        return OperationResult.success({"session_id": session_id}, "session started")

    async def stop_live(self, session_id: str, forget: bool = False) -> OperationResult:
        """Para la sesión. Con `forget` además la elimina del gestor."""
        try:
            final = await (self.live.remove(session_id) if forget else self.live.stop(session_id))
            return OperationResult.success(final, "session stopped")
        except EngineError as e:
            return _from_error(e)

    def live_status(self, session_id: Optional[str] = None) -> OperationResult:
        if session_id is None:
            return OperationResult.success(self.live.active_sessions())
        try:
            return OperationResult.success(self.live.status(session_id))
        except EngineError as e:
            return _from_error(e)


__all__ = ["OperationResult", "TradingService"]
