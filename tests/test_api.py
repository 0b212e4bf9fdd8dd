from __future__ import annotations

from datetime import date

import pytest
from fastapi.testclient import TestClient

from backend import main
from backend.gateway import MarketDataGateway
from market_sources.base import (
    NETWORK_ERROR,
    RATE_LIMITED,
    DividendHistory,
    HistoryPoint,
    NormalizedQuote,
    PriceHistory,
    RawDividend,
)

from tests.conftest import FakeProvider

PTT_QUOTE = NormalizedQuote(
    symbol="PTT.BK",
    display_name="PTT Public Company Limited",
    price=33.254,
    currency="THB",
    as_of="2024-06-03T09:30:00+00:00",
)

PTT_HISTORY = PriceHistory(
    symbol="PTT.BK",
    currency="THB",
    points=[
        HistoryPoint(date(2024, 5, 30), 33.0, 1_000_000),
        HistoryPoint(date(2024, 5, 31), 33.5, 1_200_000),
    ],
)

PTT_DIVIDENDS = DividendHistory(
    symbol="PTT.BK",
    currency="THB",
    events=[
        RawDividend(date(2024, 2, 20), 1.2, "THB"),
        RawDividend(date(2024, 8, 19), 0.8, "THB"),
    ],
    prices=[
        HistoryPoint(date(2024, 2, 20), 32.0, 900_000),
        HistoryPoint(date(2024, 8, 16), 34.0, 950_000),
    ],
)


def _provider(**kwargs) -> FakeProvider:
    kwargs.setdefault("quotes", {"PTT.BK": PTT_QUOTE})
    kwargs.setdefault("histories", {"PTT.BK": PTT_HISTORY})
    kwargs.setdefault("dividends", {"PTT.BK": PTT_DIVIDENDS})
    kwargs.setdefault("fx", {"USDTHB": 35.0})
    return FakeProvider(**kwargs)


@pytest.fixture
def install(monkeypatch, cache, breaker):
    def _install(*providers) -> MarketDataGateway:
        gw = MarketDataGateway(cache, breaker, list(providers))
        monkeypatch.setattr(main, "GATEWAY", gw)
        return gw

    return _install


@pytest.fixture
def client() -> TestClient:
    return TestClient(main.app)


def test_health(install, client) -> None:
    install(_provider(name="primary"))
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["providers"] == ["primary"]
    assert body["breaker"]["tripped"] is False


def test_quote_resolves_suffix_and_is_cached(install, client) -> None:
    src = _provider()
    install(src)

    first = client.get("/api/stock/ptt")
    assert first.status_code == 200
    body = first.json()
    assert body["symbol"] == "PTT.BK"
    assert body["longName"] == "PTT Public Company Limited"
    assert body["currentPrice"] == 33.25
    assert body["currency"] == "THB"

    calls = list(src.calls)
    second = client.get("/api/stock/PTT")
    assert second.status_code == 200
    assert second.json() == body
    assert src.calls == calls


def test_quote_not_found(install, client) -> None:
    install(_provider(quotes={}))
    r = client.get("/api/stock/ZZZZ")
    assert r.status_code == 404
    assert r.json() == {"error": "Ticker 'ZZZZ' not found."}


def test_quote_upstream_failure(install, client) -> None:
    install(_provider(errors={("quote", "*"): NETWORK_ERROR}))
    r = client.get("/api/stock/PTT")
    assert r.status_code == 500
    assert "network_error" in r.json()["error"]


def test_rate_limit_then_breaker_rejects(install, client) -> None:
    src = _provider(errors={("quote", "*"): RATE_LIMITED})
    install(src)

    r = client.get("/api/stock/PTT")
    assert r.status_code == 429
    assert r.headers["Retry-After"] == "30"
    assert src.calls == [("quote", "PTT")]

    r = client.get("/api/stock/AAPL")
    assert r.status_code == 503
    assert r.headers["Retry-After"] == "30"
    assert "30 seconds" in r.json()["error"]
    assert src.calls == [("quote", "PTT")]


def test_history(install, client) -> None:
    install(_provider())
    r = client.get("/api/stock/history/PTT", params={"startDate": "2024-05-01", "endDate": "2024-05-31"})
    assert r.status_code == 200
    body = r.json()
    assert body["symbol"] == "PTT.BK"
    assert body["currency"] == "THB"
    assert body["history"] == [
        {"date": "2024-05-30", "close": 33.0, "volume": 1_000_000},
        {"date": "2024-05-31", "close": 33.5, "volume": 1_200_000},
    ]


def test_history_default_window_resolves_suffix_and_is_cached(install, client, cache) -> None:
    src = _provider()
    install(src)

    first = client.get("/api/stock/history/PTT")
    assert first.status_code == 200
    body = first.json()
    assert body["symbol"] == "PTT.BK"
    assert body["currency"] == "THB"
    assert len(body["history"]) == 2
    assert cache.get("history_PTT.BK_90d_today") == body

    calls = list(src.calls)
    second = client.get("/api/stock/history/ptt")
    assert second.status_code == 200
    assert second.json() == body
    assert src.calls == calls


@pytest.mark.parametrize(
    "params",
    [
        {"startDate": "2024-13-01"},
        {"startDate": "01/02/2024"},
        {"startDate": "2024-06-01", "endDate": "2024-05-01"},
    ],
)
def test_history_bad_dates_rejected_without_upstream(install, client, params) -> None:
    src = _provider()
    install(src)
    r = client.get("/api/stock/history/PTT", params=params)
    assert r.status_code == 400
    assert "error" in r.json()
    assert src.calls == []


def test_dividends(install, client) -> None:
    install(_provider())
    r = client.get("/api/stock/dividends/PTT", params={"startDate": "2024-01-01", "endDate": "2024-12-31"})
    assert r.status_code == 200
    body = r.json()

    assert body["ticker"] == "PTT"
    assert body["resolvedTicker"] == "PTT.BK"
    assert body["currency"] == "THB"
    assert body["meta"]["currentUsdThbRate"] == 35.0
    assert body["period"] == {"start": "2024-01-01", "end": "2024-12-31"}

    latest, earliest = body["events"]
    assert latest["date"] == "2024-08-19"
    assert latest["priceDate"] == "2024-08-16"
    assert earliest["yieldPercent"] == 3.75
    assert earliest["amountUSD"] == round(1.2 / 35, 4)
    assert body["quality"]["flaggedEvents"] == 1
    assert 0 < body["quality"]["coverageRatio"] <= 1


def test_usd_thb(install, client) -> None:
    install(_provider())
    r = client.get("/api/forex/usd-thb")
    assert r.status_code == 200
    body = r.json()
    assert body["currencyPair"] == "USD/THB"
    assert body["rate"] == 35.0


def test_usd_thb_unavailable(install, client) -> None:
    install(_provider(fx={}))
    r = client.get("/api/forex/usd-thb")
    assert r.status_code == 503
    assert "USD/THB" in r.json()["error"]
