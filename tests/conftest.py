from __future__ import annotations

import pytest

from backend.cache_store import CacheStore
from backend.circuit_breaker import CircuitBreaker
from market_sources.base import NOT_FOUND


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider:
    """In-memory provider; `errors` maps (op, symbol) -> error code, "*" matches any symbol."""

    def __init__(
        self,
        name: str = "fake",
        trips_breaker: bool = True,
        quotes=None,
        histories=None,
        dividends=None,
        fx=None,
        errors=None,
        raises=None,
    ) -> None:
        self.name = name
        self.trips_breaker = trips_breaker
        self.quotes = quotes or {}
        self.histories = histories or {}
        self.dividends = dividends or {}
        self.fx = fx or {}
        self.errors = errors or {}
        self.raises = raises or {}
        self.calls: list[tuple[str, str]] = []

    def _lookup(self, op, symbol, table):
        self.calls.append((op, symbol))
        exc = self.raises.get((op, symbol)) or self.raises.get((op, "*"))
        if exc is not None:
            raise exc
        code = self.errors.get((op, symbol)) or self.errors.get((op, "*"))
        if code:
            return None, code
        if symbol in table:
            return table[symbol], None
        return None, NOT_FOUND

    def get_quote(self, symbol):
        return self._lookup("quote", symbol, self.quotes)

    def get_history(self, symbol, start, end):
        return self._lookup("history", symbol, self.histories)

    def get_dividends(self, symbol, start, end):
        return self._lookup("dividends", symbol, self.dividends)

    def get_fx_rate(self, base, quote):
        return self._lookup("fx", f"{base}{quote}", self.fx)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(tmp_path, clock) -> CacheStore:
    return CacheStore(str(tmp_path / "cache.json"), ttl_seconds=3600, fx_ttl_seconds=900, clock=clock)


@pytest.fixture
def breaker(clock) -> CircuitBreaker:
    return CircuitBreaker(cooldown_seconds=30, clock=clock)
