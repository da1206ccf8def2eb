# tests/test_rate_limit_reconnect.py

from __future__ import annotations

import threading

import pytest

from core.errors import RateLimited
from live.rate_limit import ConnectionBudget, MessageRateLimiter
from live.reconnect import ConnectionState, ReconnectPolicy, ReconnectState


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_message_limiter_accepts_first_five() -> None:
    """Test 10 mensajes en la misma ventana con límite 5 → se aceptan los 5 primeros."""
    clock = FakeClock()
    limiter = MessageRateLimiter(limit=5, window_ms=1000, clock=clock)
    results = [limiter.allow() for _ in range(10)]
    assert results == [True] * 5 + [False] * 5
    assert limiter.dropped == 5

    clock.now = 1000.0
    assert limiter.allow() is True


def test_message_limiter_sliding_window() -> None:
    """Test que la ventana es deslizante (no por bloques fijos)."""
    clock = FakeClock()
    limiter = MessageRateLimiter(limit=2, window_ms=1000, clock=clock)
    assert limiter.allow()
    clock.now = 600.0
    assert limiter.allow()
    clock.now = 900.0
    assert not limiter.allow()
    clock.now = 1000.0  # expira el primero
    assert limiter.allow()


def test_connection_budget_retry_after() -> None:
    """Test RateLimited con retry_after = ceil(ventana - (ahora - más antiguo))."""
    clock = FakeClock()
    budget = ConnectionBudget(max_connections=2, window_s=300, clock=clock)
    budget.acquire()
    clock.now = 10.0
    budget.acquire()
    clock.now = 100.5
    with pytest.raises(RateLimited) as exc:
        budget.acquire()
    assert exc.value.retry_after_s == 200
    assert "retry after 200 seconds" in str(exc.value)

    clock.now = 300.0
    budget.acquire()
    assert budget.remaining() == 0


def test_connection_budget_is_thread_safe() -> None:
    """Test que hilos concurrentes nunca superan el presupuesto."""
    budget = ConnectionBudget(max_connections=50, window_s=300)
    accepted: list[int] = []
    lock = threading.Lock()

    def worker() -> None:
        for _ in range(20):
            try:
                budget.acquire()
            except RateLimited:
                continue
            with lock:
                accepted.append(1)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(accepted) == 50


def test_backoff_delays() -> None:
    """Test backoff 0..4 con base 5 s y tope 60 s → 5, 10, 20, 40, 60."""
    policy = ReconnectPolicy(base_delay_s=5, max_delay_s=60, max_attempts=5)
    assert [policy.delay_for(a) * 1000 for a in range(5)] == [5000, 10000, 20000, 40000, 60000]


def test_reconnect_state_machine() -> None:
    """Test fallos sucesivos → retardos crecientes → STOPPED al agotar intentos."""
    state = ReconnectState()
    assert state.state == ConnectionState.IDLE
    state.on_connected()
    delays = [state.on_failure("drop") for _ in range(5)]
    assert delays == [5, 10, 20, 40, 60]
    assert state.state == ConnectionState.RECONNECTING
    assert state.on_failure("drop") is None
    assert state.stopped
    assert state.last_reason == "drop"


def test_successful_connect_resets_attempts() -> None:
    state = ReconnectState()
    state.on_failure("a")
    state.on_failure("b")
    state.on_connected()
    assert state.attempts == 0
    assert state.on_failure("c") == 5
