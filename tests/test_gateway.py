from __future__ import annotations

from datetime import date

import pytest

from backend.dateranges import build_date_range, span_days
from backend.errors import DateRangeError
from backend.fx import fx_cache_key
from backend.gateway import MarketDataGateway

from tests.conftest import FakeProvider

TODAY = date(2024, 6, 15)


def test_default_window_ends_today() -> None:
    start, end = build_date_range(None, None, 90, today=TODAY)
    assert end == TODAY
    assert (end - start).days == 90


def test_future_end_is_clamped() -> None:
    assert build_date_range("2024-06-01", "2030-01-01", 90, today=TODAY) == (date(2024, 6, 1), TODAY)


def test_inverted_window_rejected() -> None:
    with pytest.raises(DateRangeError) as exc:
        build_date_range("2024-06-10", "2024-06-01", 90, today=TODAY)
    assert exc.value.status_code == 400


def test_span_is_inclusive() -> None:
    assert span_days(TODAY, TODAY) == 1


def test_maintenance_purges_and_warms_fx(cache, breaker, clock) -> None:
    src = FakeProvider(fx={"USDTHB": 35.0})
    gw = MarketDataGateway(cache, breaker, [src])
    cache.set("quote_OLD", {"p": 1})
    clock.advance(3600)

    gw.maintenance()

    assert cache.get("quote_OLD") is None
    assert cache.get(fx_cache_key("USD", "THB")) == 35.0
    assert src.calls == [("fx", "USDTHB")]


def test_maintenance_skips_fx_while_breaker_open(cache, breaker) -> None:
    src = FakeProvider(fx={"USDTHB": 35.0})
    gw = MarketDataGateway(cache, breaker, [src])
    breaker.trip()

    gw.maintenance()

    assert src.calls == []
