# tests/test_binance_stream.py

from __future__ import annotations

import json

import pytest

from core.errors import InvalidData
from exchange.binance_stream import (
    decode_message,
    parse_kline_event,
    parse_trade_event,
    stream_url,
    subscribe_message,
    unwrap_stream_payload,
)


def kline_message(t: int, o: float, h: float, l: float, c: float, closed: bool = True) -> dict:
    data = {
        "e": "kline",
        "E": t + 1,
        "s": "BTCUSDT",
        "k": {
            "t": t,
            "T": t + 59_999,
            "s": "BTCUSDT",
            "i": "1m",
            "o": str(o),
            "h": str(h),
            "l": str(l),
            "c": str(c),
            "v": "12.5",
            "x": closed,
        },
    }
    return {"stream": "btcusdt@kline_1m", "data": data}


def test_stream_url_and_subscribe() -> None:
    """Test URL del stream combinado y mensaje SUBSCRIBE en minúsculas."""
    assert stream_url("BTCUSDT", "1m") == (
        "wss://stream.binance.com:9443/stream?streams=btcusdt@kline_1m/btcusdt@trade"
    )
    assert stream_url("ethusdt", "5m", "wss://example.test/").startswith("wss://example.test/stream?")
    msg = subscribe_message("BTCUSDT", "1m", request_id=7)
    assert msg == {"method": "SUBSCRIBE", "params": ["btcusdt@kline_1m", "btcusdt@trade"], "id": 7}


def test_parse_kline_with_and_without_envelope() -> None:
    """Test kline con sobre combinado y sin él → misma vela."""
    wrapped = kline_message(1_000, 1.0, 2.0, 0.5, 1.5, closed=False)
    candle, closed = parse_kline_event(wrapped)
    assert closed is False
    assert (candle.open_time, candle.close_time) == (1_000, 60_999)
    assert (candle.open, candle.high, candle.low, candle.close) == (1.0, 2.0, 0.5, 1.5)
    assert candle.volume == 12.5
    assert parse_kline_event(unwrap_stream_payload(wrapped)) == (candle, False)


def test_parse_kline_rejects_bad_fields() -> None:
    msg = kline_message(1_000, 1.0, 2.0, 0.5, 1.5)
    msg["data"]["k"]["c"] = "abc"
    with pytest.raises(InvalidData):
        parse_kline_event(msg)
    with pytest.raises(InvalidData):
        parse_kline_event({"e": "kline"})


def test_parse_kline_rejects_non_finite_values() -> None:
    """Test tiempos desbordados y precios inf/nan → InvalidData."""
    raw = json.dumps(kline_message(1_000, 1.0, 2.0, 0.5, 1.5)).replace('"t": 1000', '"t": 1e400')
    overflow = decode_message(raw)
    assert overflow["data"]["k"]["t"] == float("inf")
    with pytest.raises(InvalidData):
        parse_kline_event(overflow)
    for field in ("o", "h", "l", "c", "v"):
        for bad in ("inf", "-inf", "nan"):
            msg = kline_message(1_000, 1.0, 2.0, 0.5, 1.5)
            msg["data"]["k"][field] = bad
            with pytest.raises(InvalidData):
                parse_kline_event(msg)


def test_non_kline_payloads_return_none() -> None:
    assert parse_kline_event({"e": "trade", "p": "1"}) is None
    assert parse_kline_event([1, 2, 3]) is None
    assert parse_trade_event({"e": "kline"}) is None


def test_parse_trade_event() -> None:
    """Test precio del evento trade; precio inválido → None."""
    assert parse_trade_event({"stream": "btcusdt@trade", "data": {"e": "trade", "p": "43000.5"}}) == 43000.5
    assert parse_trade_event({"e": "trade", "p": "nope"}) is None
    assert parse_trade_event({"e": "trade", "p": "inf"}) is None
    assert parse_trade_event({"e": "trade", "p": "nan"}) is None


def test_decode_message() -> None:
    assert decode_message(json.dumps({"result": None, "id": 1})) == {"result": None, "id": 1}
    with pytest.raises(InvalidData):
        decode_message("{not json")
