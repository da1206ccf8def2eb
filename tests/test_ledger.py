# tests/test_ledger.py

from __future__ import annotations

import pytest

from core.errors import AlreadyInPosition, NotInPosition
from core.ledger import TradeLedger


def test_long_round_trip() -> None:
    """Test entrada/salida long: PnL, porcentaje y balance."""
    ledger = TradeLedger(1_000.0)
    ledger.enter(1, 100.0, 2.0)
    assert ledger.is_open
    trade = ledger.exit(2, 110.0, "exit_signal")
    assert trade.profit == pytest.approx(20.0)
    assert trade.profit_percentage == pytest.approx(10.0)
    assert trade.exit_reason == "exit_signal"
    assert ledger.balance == pytest.approx(1_020.0)
    assert not ledger.is_open


def test_short_profit_inverted() -> None:
    """Test que el PnL short es el inverso del long."""
    ledger = TradeLedger(1_000.0)
    ledger.enter(1, 100.0, 1.0, side="short")
    trade = ledger.exit(2, 90.0)
    assert trade.profit == pytest.approx(10.0)
    assert trade.side == "short"


def test_invariant_violations_leave_state_untouched() -> None:
    """Test AlreadyInPosition / NotInPosition sin modificar el estado."""
    ledger = TradeLedger(1_000.0)
    with pytest.raises(NotInPosition):
        ledger.exit(1, 100.0)
    ledger.enter(1, 100.0, 1.0)
    with pytest.raises(AlreadyInPosition):
        ledger.enter(2, 50.0, 3.0)
    assert ledger.position.entry_price == 100.0
    assert ledger.position.quantity == 1.0
    assert ledger.trades == []


@pytest.mark.parametrize(
    "price, qty",
    [(0.0, 1.0), (100.0, 0.0), (-1.0, 1.0), (float("inf"), 1.0), (float("nan"), 1.0), (100.0, float("nan"))],
)
def test_enter_rejects_non_positive(price, qty) -> None:
    """Test ValueError con precio o cantidad no positivos o no finitos."""
    ledger = TradeLedger()
    with pytest.raises(ValueError):
        ledger.enter(1, price, qty)
    assert not ledger.is_open


def test_mark_equity_and_drawdown() -> None:
    """Test curva de equity (balance + no realizado) y drawdown contra el pico."""
    ledger = TradeLedger(1_000.0)
    assert ledger.equity_curve == [1_000.0]
    assert ledger.drawdown_curve == [0.0]

    ledger.enter(1, 100.0, 5.0)
    ledger.mark(120.0)  # 1100
    ledger.mark(80.0)  # 900
    assert ledger.equity_curve == [1_000.0, 1_100.0, 900.0]
    assert ledger.drawdown_curve[-1] == pytest.approx((1_100 - 900) / 1_100 * 100)

    ledger.exit(3, 80.0)
    ledger.mark(500.0)  # flat → balance
    assert ledger.equity_curve[-1] == pytest.approx(900.0)


def test_snapshot_and_metrics() -> None:
    """Test snapshot serializable y métricas derivadas."""
    ledger = TradeLedger(1_000.0)
    ledger.enter(1, 100.0, 1.0)
    ledger.exit(2, 105.0)
    snap = ledger.snapshot()
    assert snap["balance"] == pytest.approx(1_005.0)
    assert snap["position"]["in_position"] is False
    assert len(snap["trades"]) == 1
    metrics = ledger.metrics()
    assert metrics["total_trades"] == 1
    assert metrics["winning_trades"] == 1
    assert "equity_drawdown" in metrics


def test_metrics_drawdown_uses_initial_balance() -> None:
    """Test max_drawdown del ledger con sólo pérdidas (pico = balance inicial)."""
    ledger = TradeLedger(10_000.0)
    ledger.enter(1, 100.0, 10.0)
    ledger.exit(2, 90.0)  # -100
    ledger.enter(3, 100.0, 20.0)
    ledger.exit(4, 90.0)  # -200
    assert ledger.balance == pytest.approx(9_700.0)
    assert ledger.metrics()["max_drawdown"] == pytest.approx(3.0)
